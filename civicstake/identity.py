"""Supabase identity client.

Supabase issues and verifies access tokens and keeps the profile row
(display name, role). The core only ever sees the resulting user id + role.
"""

import logging
from typing import Optional

from supabase import create_client, Client

from civicstake.config import get_settings
from civicstake.models.user import UserRole

logger = logging.getLogger(__name__)

_supabase_client: Client | None = None


def get_supabase() -> Client:
    """Get Supabase client instance."""
    global _supabase_client

    if _supabase_client is None:
        settings = get_settings()
        _supabase_client = create_client(
            settings.supabase_url,
            settings.supabase_key
        )

    return _supabase_client


def get_supabase_admin() -> Client:
    """Get Supabase client with service role key for admin operations."""
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_service_key
    )


def resolve_token(token: str) -> Optional[dict]:
    """
    Verify an access token and load the caller's profile.

    Returns {"id", "email", "display_name", "role"} or None if the token
    is invalid or the profile is missing.
    """
    supabase = get_supabase()

    try:
        user_response = supabase.auth.get_user(token)
        if not user_response or not user_response.user:
            return None

        profile = supabase.table("profiles").select("id, display_name, role").eq(
            "id", user_response.user.id
        ).single().execute()
    except Exception:
        logger.info("Token verification failed", exc_info=True)
        return None

    if not profile.data:
        return None

    return {
        "id": profile.data["id"],
        "email": user_response.user.email,
        "display_name": profile.data["display_name"],
        "role": UserRole(profile.data["role"]),
    }
