"""Authentication module for the Content Autopilot API."""
from .jwt import (
    create_access_token,
    verify_token,
    verify_webhook_secret,
    TokenData,
)
from .dependencies import (
    get_current_user,
    require_scopes,
    bearer_scheme,
)

__all__ = [
    "create_access_token",
    "verify_token",
    "verify_webhook_secret",
    "TokenData",
    "get_current_user",
    "require_scopes",
    "bearer_scheme",
]
