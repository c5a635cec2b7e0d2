"""Authentication router."""

import logging
from fastapi import APIRouter, HTTPException, Depends, Header
from typing import Optional

from civicstake.core import get_core
from civicstake.identity import get_supabase, get_supabase_admin, resolve_token
from civicstake.models.user import (
    UserCreate, UserLogin, UserProfile, UserPublic, UserRole
)
from civicstake.services.lifecycle import QuestionLifecycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def build_profile(core: QuestionLifecycle, user_id: str, email: str) -> UserProfile:
    """Assemble the router-facing profile from the core's records."""
    user = core.store.user(user_id)
    wallet = core.wallet(user_id)
    mu, sigma = core.ratings.default_mu, core.ratings.default_sigma
    if user.role == UserRole.POLITICIAN:
        rating = core.ratings.get(user_id)
        mu, sigma = rating.mu, rating.sigma
    return UserProfile(
        id=user.id,
        email=email,
        display_name=user.display_name,
        role=user.role,
        mu=mu,
        sigma=sigma,
        civic_points=wallet.available_points,
        created_at=user.registered_at,
    )


async def get_current_user(
    authorization: Optional[str] = Header(None),
    core: QuestionLifecycle = Depends(get_core),
) -> Optional[UserProfile]:
    """Extract and validate current user from auth header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None

    token = authorization.replace("Bearer ", "")
    claims = resolve_token(token)
    if claims is None:
        return None

    # Mirror identities the core has not seen yet (e.g. after a restart)
    core.register_user(claims["id"], claims["display_name"], claims["role"])
    return build_profile(core, claims["id"], claims["email"])


async def require_auth(user: Optional[UserProfile] = Depends(get_current_user)) -> UserProfile:
    """Require authenticated user."""
    if not user:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user


async def require_citizen(user: UserProfile = Depends(require_auth)) -> UserProfile:
    """Require authenticated citizen."""
    if user.role != UserRole.CITIZEN:
        raise HTTPException(status_code=403, detail="Citizen role required")
    return user


async def require_politician(user: UserProfile = Depends(require_auth)) -> UserProfile:
    """Require authenticated politician."""
    if user.role != UserRole.POLITICIAN:
        raise HTTPException(status_code=403, detail="Politician role required")
    return user


@router.post("/register", response_model=UserPublic)
async def register(user_data: UserCreate, core: QuestionLifecycle = Depends(get_core)):
    """Register a new user (citizen or politician)."""
    supabase = get_supabase()

    try:
        # Create auth user with metadata (role passed to trigger)
        auth_response = supabase.auth.sign_up({
            "email": user_data.email,
            "password": user_data.password,
            "options": {
                "data": {
                    "role": user_data.role.value,
                    "display_name": user_data.display_name
                }
            }
        })
    except Exception as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not auth_response.user:
        raise HTTPException(status_code=400, detail="Registration failed")

    user_id = auth_response.user.id

    # The trigger may have already created a basic profile, so use upsert
    get_supabase_admin().table("profiles").upsert({
        "id": user_id,
        "display_name": user_data.display_name,
        "role": user_data.role.value,
        "verified": False,
    }).execute()

    core.register_user(user_id, user_data.display_name, user_data.role)
    profile = build_profile(core, user_id, user_data.email)

    return UserPublic(
        id=user_id,
        display_name=profile.display_name,
        role=profile.role,
        verified=False,
        mu=profile.mu,
        sigma=profile.sigma
    )


@router.post("/login")
async def login(credentials: UserLogin):
    """Login and get access token."""
    supabase = get_supabase()

    try:
        response = supabase.auth.sign_in_with_password({
            "email": credentials.email,
            "password": credentials.password
        })
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not response.session:
        raise HTTPException(status_code=401, detail="Invalid credentials")

    profile = supabase.table("profiles").select("*").eq(
        "id", response.user.id
    ).single().execute()

    return {
        "access_token": response.session.access_token,
        "token_type": "bearer",
        "user": {
            "id": response.user.id,
            "email": response.user.email,
            "display_name": profile.data["display_name"],
            "role": profile.data["role"]
        }
    }


@router.get("/me", response_model=UserProfile)
async def get_me(user: UserProfile = Depends(require_auth)):
    """Get current user profile."""
    return user
