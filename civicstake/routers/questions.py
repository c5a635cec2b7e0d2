"""Questions router."""

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from typing import Optional, List

from civicstake.config import get_settings
from civicstake.core import get_core
from civicstake.models.user import UserProfile
from civicstake.models.question import (
    QuestionCreate, QuestionCreated, QuestionFlag, Question, QuestionWithDetails, QuestionStatus
)
from civicstake.routers.auth import require_citizen
from civicstake.services.lifecycle import QuestionLifecycle

router = APIRouter(prefix="/questions", tags=["Questions"])


@router.post("", response_model=QuestionCreated)
async def create_question(
    data: QuestionCreate,
    user: UserProfile = Depends(require_citizen),
    core: QuestionLifecycle = Depends(get_core)
):
    """Create a new question targeting a politician."""
    question = await core.create_question(
        citizen_id=user.id,
        title=data.title,
        body=data.body,
        target_politician_id=data.target_politician_id,
        initial_stake=data.initial_stake,
    )
    return QuestionCreated(id=question.id)


@router.get("", response_model=List[QuestionWithDetails])
async def list_questions(
    status: Optional[QuestionStatus] = None,
    politician_id: Optional[str] = None,
    sort_by: str = Query("bounty", pattern="^(bounty|recent|deadline)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    core: QuestionLifecycle = Depends(get_core)
):
    """List questions with optional filters."""
    return core.list_questions(
        status=status,
        politician_id=politician_id,
        sort_by=sort_by,
        limit=limit,
        offset=offset,
    )


@router.get("/{question_id}", response_model=QuestionWithDetails)
async def get_question(question_id: str, core: QuestionLifecycle = Depends(get_core)):
    """Get question details by ID."""
    return core.question_details(question_id)


@router.post("/{question_id}/flag", response_model=Question)
async def flag_question(
    question_id: str,
    data: QuestionFlag,
    x_moderation_token: Optional[str] = Header(None),
    core: QuestionLifecycle = Depends(get_core)
):
    """Moderation override: flag a question, optionally refunding its stakers."""
    token = get_settings().moderation_token
    if not token or x_moderation_token != token:
        raise HTTPException(status_code=403, detail="Moderation token required")
    return await core.flag(question_id, data.reason, refund=data.refund)
