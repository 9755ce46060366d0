"""Supabase client for server-side identity operations."""

from supabase import Client, create_client

from lifecycle.config.settings import settings


def get_supabase_auth_client() -> Client:
    """
    Get a fresh anon-key client for password re-verification.

    A new client per call: signing in stores the session on the client,
    which must never leak between users.
    """
    if not settings.supabase_anon_key:
        raise ValueError(
            "SUPABASE_ANON_KEY not configured. "
            "Set it in .env for password re-verification."
        )

    return create_client(
        settings.supabase_url,
        settings.supabase_anon_key,
    )
