"""
FastAPI dependencies.

The user id header is where an authentication layer plugs in; this
service only needs an already authenticated user id and tier.
"""
from typing import Optional

from fastapi import Header, Request

from enhancer.core.config import SubscriptionTier
from enhancer.core.exceptions import AuthenticationError, ValidationError


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Authenticated user id."""
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Missing X-User-Id header")
    return x_user_id.strip()


def get_user_tier(x_user_tier: Optional[str] = Header(default=None)) -> SubscriptionTier:
    if not x_user_tier:
        return SubscriptionTier.FREE
    try:
        return SubscriptionTier(x_user_tier.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown subscription tier: {x_user_tier}")


def get_services(request: Request):
    """Service container built by ``create_application``."""
    return request.app.state.services
