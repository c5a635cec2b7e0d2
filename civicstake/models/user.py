"""User models for Citizens and Politicians."""

from enum import Enum
from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional


class UserRole(str, Enum):
    """User role enumeration."""
    CITIZEN = "citizen"
    POLITICIAN = "politician"


class UserBase(BaseModel):
    """Base user fields."""
    email: EmailStr
    display_name: str
    role: UserRole


class UserCreate(UserBase):
    """User registration payload."""
    password: str


class UserLogin(BaseModel):
    """User login payload."""
    email: EmailStr
    password: str


class User(BaseModel):
    """Core user record. Never deleted."""
    id: str
    display_name: str
    role: UserRole
    registered_at: datetime
    registration_seq: int  # tie-break for equal rankings


class UserProfile(BaseModel):
    """Authenticated user as seen by the routers."""
    id: str
    email: str
    display_name: str
    role: UserRole
    avatar_url: Optional[str] = None
    verified: bool = False
    mu: float = 25.0  # TrueSkill skill rating
    sigma: float = 8.333  # TrueSkill uncertainty
    civic_points: int = 100
    created_at: datetime

    class Config:
        from_attributes = True


class UserPublic(BaseModel):
    """Public user info (no sensitive data)."""
    id: str
    display_name: str
    role: UserRole
    avatar_url: Optional[str] = None
    verified: bool = False
    mu: float = 25.0
    sigma: float = 8.333


class LeaderboardEntry(BaseModel):
    """One ranked politician on the leaderboard."""
    politician_id: str
    display_name: str
    mu: float
    sigma: float
    conservative_score: float
    questions_answered: int = 0
    rank: int = 0


class PoliticianDetail(LeaderboardEntry):
    """Extended politician stats for the profile page."""
    open_bounty_total: int = 0  # Bounty held on open/answered questions
    total_charity_released: int = 0  # Points released to charities
    questions_received: int = 0  # Total questions directed at this politician
    satisfaction_rate: Optional[float] = None
