"""API dependencies - re-exports from submodules."""

from .auth import (
    AuthenticatedUser,
    CurrentAccount,
    CurrentUser,
    DbSession,
    get_current_account,
    get_current_user,
    get_jwks,
    get_signing_key,
    security,
)
from .request_context import client_ip, get_request_context, verify_admin_secret

__all__ = [
    # Auth
    "security",
    "get_jwks",
    "get_signing_key",
    "get_current_user",
    "get_current_account",
    "AuthenticatedUser",
    "DbSession",
    "CurrentUser",
    "CurrentAccount",
    # Request context
    "client_ip",
    "get_request_context",
    "verify_admin_secret",
]
