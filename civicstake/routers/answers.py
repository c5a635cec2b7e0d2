"""Answers router with voting."""

from fastapi import APIRouter, Depends
from typing import Optional

from civicstake.core import get_core
from civicstake.models.user import UserProfile
from civicstake.models.answer import AnswerCreate, AnswerCreated, AnswerWithVotes, VoteCreate, VoteSummary
from civicstake.routers.auth import require_politician, require_citizen, get_current_user
from civicstake.services.lifecycle import QuestionLifecycle

router = APIRouter(prefix="/answers", tags=["Answers"])


@router.post("/questions/{question_id}", response_model=AnswerCreated)
async def submit_answer(
    question_id: str,
    data: AnswerCreate,
    user: UserProfile = Depends(require_politician),
    core: QuestionLifecycle = Depends(get_core)
):
    """Submit an answer to a question (politician only)."""
    answer = await core.submit_answer(user.id, question_id, data.content)
    return AnswerCreated(answer_id=answer.id)


@router.get("/questions/{question_id}", response_model=AnswerWithVotes)
async def get_question_answer(question_id: str, core: QuestionLifecycle = Depends(get_core)):
    """Get the answer for a question."""
    return core.get_answer_for_question(question_id)


@router.post("/{answer_id}/vote", response_model=VoteSummary)
async def vote_on_answer(
    answer_id: str,
    data: VoteCreate,
    user: UserProfile = Depends(require_citizen),
    core: QuestionLifecycle = Depends(get_core)
):
    """Vote on an answer (stakers only). Returns the updated tallies."""
    return await core.vote(answer_id, user.id, data.is_helpful)


@router.get("/{answer_id}/votes", response_model=VoteSummary)
async def get_vote_summary(
    answer_id: str,
    user: Optional[UserProfile] = Depends(get_current_user),
    core: QuestionLifecycle = Depends(get_core)
):
    """Get voting summary for an answer."""
    return core.vote_summary(answer_id, user.id if user else None)
