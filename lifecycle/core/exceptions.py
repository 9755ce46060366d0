from typing import Any

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    """404 for a missing account, request or other named resource."""

    def __init__(self, resource: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ForbiddenError(HTTPException):
    """403 for a rejected operator secret."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=message,
        )


class ValidationError(HTTPException):
    """400 for input that parses but names no usable state (bad token, no live request)."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=message,
        )


# ─────────────────────────────────────────────────────────────
# Service-layer errors (not HTTP-aware; translated at the router edge)
# ─────────────────────────────────────────────────────────────


class LifecycleError(Exception):
    """Base class for account lifecycle failures."""


class AuthError(LifecycleError):
    """Bad password, token or session. Message is safe to show the caller."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)
        self.message = message


class InvalidTokenError(LifecycleError):
    """Confirmation token is unknown, used, or expired."""


class ConflictError(LifecycleError):
    """State conflict, e.g. a confirmed deletion request already exists."""


class NoActiveRequestError(LifecycleError):
    """No pending or confirmed deletion request matched."""


class NoActiveSubscriptionError(LifecycleError):
    """The account has no active subscription to act on."""


class ExternalServiceError(LifecycleError):
    """Gateway, email, CRM or identity provider failed or was unreachable."""

    def __init__(self, service: str, message: str):
        super().__init__(f"{service}: {message}")
        self.service = service


class DeletionExecutionError(ExternalServiceError):
    """The data-deletion RPC did not report success."""

    def __init__(self, message: str):
        super().__init__("deletion_rpc", message)


class RateLimitExceeded(HTTPException):
    """Raised when a caller exceeds a fixed-window rate limit."""

    def __init__(self, retry_after: int):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )


class QuotaExceededError(HTTPException):
    """Raised when an account has used every generation in its window."""

    def __init__(self, quota_status: dict[str, Any]):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": "Generation quota exhausted", "quota": quota_status},
        )


class AccountNotFoundError(LifecycleError):
    """No account profile exists for the caller."""
