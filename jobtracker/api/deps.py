from typing import Optional

from fastapi import Header, Request

from ..container import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def actor_email(x_user_email: Optional[str] = Header(None)) -> Optional[str]:
    """Caller identity as forwarded by the auth proxy."""
    return x_user_email
