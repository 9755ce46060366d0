"""Security utilities for token generation and validation."""

import hmac
import secrets


def generate_confirmation_token() -> str:
    """Generate a single-use token for account deletion confirmation links.

    Returns a 43-character URL-safe string with 256 bits of entropy.
    """
    return secrets.token_urlsafe(32)


def secrets_match(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of an operator-supplied secret.

    An empty expected secret never matches, so unconfigured deployments
    reject every admin call.
    """
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
