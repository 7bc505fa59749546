from fastapi import Request

from chaincredit.services.registry import Services


def get_services(request: Request) -> Services:
    """Services owned by the application lifespan."""
    return request.app.state.services
