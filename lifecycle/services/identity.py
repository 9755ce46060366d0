"""Identity provider boundary: out-of-band password re-verification."""

import asyncio
import logging

from supabase import AuthApiError, AuthError as SupabaseAuthError

from lifecycle.core.exceptions import ExternalServiceError
from lifecycle.services.supabase import get_supabase_auth_client

logger = logging.getLogger(__name__)


class IdentityService:
    """Checks credentials against Supabase Auth without issuing a session to the caller."""

    def _sign_in(self, email: str, password: str) -> bool:
        client = get_supabase_auth_client()
        response = client.auth.sign_in_with_password({"email": email, "password": password})
        if response.user is None:
            return False
        # Discard the server-side session created by the check
        client.auth.sign_out()
        return True

    async def verify_password(self, email: str, password: str) -> bool:
        """
        Return True if the password is correct for this email.

        Invalid credentials return False; a provider outage raises
        ExternalServiceError so callers can answer 5xx instead of 401.
        """
        try:
            return await asyncio.to_thread(self._sign_in, email, password)
        except AuthApiError as e:
            if e.status and e.status >= 500:
                logger.error(f"Identity provider error verifying {email}: {e}")
                raise ExternalServiceError("identity", str(e)) from e
            return False
        except SupabaseAuthError as e:
            logger.error(f"Identity provider unreachable verifying {email}: {e}")
            raise ExternalServiceError("identity", str(e)) from e


identity_service = IdentityService()
