"""Bounties router for staking civic points."""

from fastapi import APIRouter, Depends

from civicstake.core import get_core
from civicstake.models.user import UserProfile
from civicstake.models.escrow import StakeCreate, StakeResult, WalletInfo, PointsPurchase
from civicstake.models.question import QuestionBounty
from civicstake.routers.auth import require_auth, require_citizen
from civicstake.services.lifecycle import QuestionLifecycle

router = APIRouter(prefix="/bounties", tags=["Bounties"])


@router.post("/questions/{question_id}/stake", response_model=StakeResult)
async def stake_points(
    question_id: str,
    data: StakeCreate,
    user: UserProfile = Depends(require_citizen),
    core: QuestionLifecycle = Depends(get_core)
):
    """Stake civic points on a question's bounty."""
    return await core.stake(question_id, user.id, data.amount)


@router.get("/questions/{question_id}", response_model=QuestionBounty)
async def get_bounty_details(question_id: str, core: QuestionLifecycle = Depends(get_core)):
    """Get bounty details and contributors (top stakers first) for a question."""
    return core.bounty_details(question_id)


@router.get("/wallet", response_model=WalletInfo)
async def get_wallet(
    user: UserProfile = Depends(require_auth),
    core: QuestionLifecycle = Depends(get_core)
):
    """Get current user's wallet info."""
    return core.wallet(user.id)


@router.post("/purchase", response_model=WalletInfo)
async def purchase_points(
    data: PointsPurchase,
    user: UserProfile = Depends(require_auth),
    core: QuestionLifecycle = Depends(get_core)
):
    """Mock purchase of civic points (for MVP demo)."""
    return await core.purchase(user.id, data.amount)
