"""
Fixed ABI of the CreditScoring contract.
"""


def _inputs(*pairs):
    return [{"name": name, "type": type_} for name, type_ in pairs]


BORROWER_FIELDS = (
    ("accountBalance", "uint256"),
    ("totalTransactions", "uint256"),
    ("onTimePayments", "uint256"),
    ("missedPayments", "uint256"),
    ("totalRemainingLoan", "uint256"),
    ("creditAgeMonths", "uint256"),
    ("professionRiskScore", "uint256"),
)

CREDIT_SCORING_ABI = [
    {
        "type": "function",
        "name": "addBorrower",
        "inputs": _inputs(("nid", "string"), ("name", "string"), ("profession", "string"), *BORROWER_FIELDS),
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "calculateCreditScore",
        "inputs": _inputs(("nid", "string")),
        "outputs": _inputs(("", "uint256")),
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getCreditRating",
        "inputs": _inputs(("nid", "string")),
        "outputs": _inputs(("", "string")),
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getMaxLoanAmount",
        "inputs": _inputs(("nid", "string"), ("monthlyIncome", "uint256")),
        "outputs": _inputs(("", "uint256")),
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "requestLoan",
        "inputs": _inputs(("nid", "string"), ("amount", "uint256")),
        "outputs": [],
        "stateMutability": "nonpayable",
    },
    {
        "type": "function",
        "name": "getBorrower",
        "inputs": _inputs(("nid", "string")),
        "outputs": _inputs(
            ("name", "string"), ("profession", "string"), *BORROWER_FIELDS, ("exists", "bool")
        ),
        "stateMutability": "view",
    },
    {
        "type": "function",
        "name": "getScoreBreakdown",
        "inputs": _inputs(("nid", "string")),
        "outputs": _inputs(
            ("accountScore", "uint256"),
            ("txnScore", "uint256"),
            ("paymentScore", "uint256"),
            ("remainingScore", "uint256"),
            ("ageScore", "uint256"),
            ("professionScore", "uint256"),
        ),
        "stateMutability": "view",
    },
    {
        "type": "event",
        "name": "BorrowerAdded",
        "anonymous": False,
        "inputs": [
            {"name": "nid", "type": "bytes32", "indexed": True},
            {"name": "name", "type": "string", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "LoanRequested",
        "anonymous": False,
        "inputs": [
            {"name": "nid", "type": "bytes32", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
]

CHAIN_EVENTS = ("BorrowerAdded", "LoanRequested")
