"""Answer and Vote models."""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class AnswerCreate(BaseModel):
    """Payload to submit an answer."""
    content: str


class AIAnalysis(BaseModel):
    """AI analysis of an answer."""
    directness_score: float  # 0-100
    summary: str
    flags: list[str] = []  # e.g., ["political_fluff", "off_topic"]


class Answer(BaseModel):
    """Full answer model."""
    id: str
    question_id: str
    politician_id: str
    content: str
    ai_analysis: Optional[AIAnalysis] = None
    created_at: datetime
    helpful_count: int = 0
    evasive_count: int = 0
    voting_closes_at: datetime
    voting_open: bool = True

    class Config:
        from_attributes = True

    @property
    def directness_score(self) -> Optional[float]:
        if self.ai_analysis is None:
            return None
        return self.ai_analysis.directness_score


class AnswerWithVotes(BaseModel):
    """Answer with voting statistics."""
    id: str
    question_id: str
    politician_id: str
    content: str
    ai_analysis: Optional[AIAnalysis] = None
    created_at: datetime
    voting_closes_at: datetime
    voting_open: bool
    total_votes: int = 0
    helpful_votes: int = 0
    evasive_votes: int = 0
    satisfaction: Optional[float] = None


class AnswerCreated(BaseModel):
    """Submit answer response."""
    answer_id: str


class VoteCreate(BaseModel):
    """Payload to cast a vote on an answer."""
    is_helpful: bool


class Vote(BaseModel):
    """Vote record."""
    answer_id: str
    citizen_id: str
    is_helpful: bool
    created_at: datetime
    updated_at: datetime


class VoteSummary(BaseModel):
    """Voting summary for an answer."""
    answer_id: str
    total_votes: int
    helpful_votes: int
    evasive_votes: int
    helpful_percentage: Optional[float] = None
    user_vote: Optional[bool] = None  # Current user's vote if any
