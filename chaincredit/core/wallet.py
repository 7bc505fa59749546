"""
Signing account loaded from the environment.
"""
import logging
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from chaincredit.core.config import Settings
from chaincredit.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def load_account(settings: Settings) -> Optional[LocalAccount]:
    """Get the signing account from WALLET_PRIVATE_KEY, or None when unset."""
    if settings.WALLET_PRIVATE_KEY is None:
        logger.warning("WALLET_PRIVATE_KEY is not set, write calls are disabled")
        return None
    private_key = settings.WALLET_PRIVATE_KEY.get_secret_value().strip()
    if not private_key:
        return None
    try:
        return Account.from_key(private_key)
    except (ValueError, TypeError) as e:
        raise ConfigurationError("WALLET_PRIVATE_KEY is not a valid private key") from e
