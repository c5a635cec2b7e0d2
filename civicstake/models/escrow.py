"""Wallet, escrow and settlement models."""

from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Optional


class EscrowStatus(str, Enum):
    """Escrow lifecycle status."""
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class SettlementOutcome(str, Enum):
    """Terminal destination of an escrow bucket."""
    RELEASED = "released"
    REFUNDED = "refunded"


class Wallet(BaseModel):
    """A user's point balances."""
    user_id: str
    available_points: int = 0
    staked_points: int = 0
    earned_or_released_points: int = 0


class LedgerBucket(BaseModel):
    """The ledger's view of the funds staked on one question."""
    bucket_id: str
    holdings: Dict[str, int] = Field(default_factory=dict)  # citizen_id -> amount, insertion ordered
    total: int = 0
    settled: bool = False
    outcome: Optional[SettlementOutcome] = None


class Contribution(BaseModel):
    """A single stake on a question."""
    citizen_id: str
    amount: int
    staked_at: datetime


class EscrowEntry(BaseModel):
    """Escrow for one question."""
    question_id: str
    contributions: List[Contribution] = Field(default_factory=list)
    total_bounty: int = 0
    finalized: bool = False  # write-once
    outcome: Optional[SettlementOutcome] = None
    charity_id: Optional[str] = None
    finalized_at: Optional[datetime] = None

    @property
    def status(self) -> EscrowStatus:
        if not self.finalized:
            return EscrowStatus.HELD
        return EscrowStatus(self.outcome.value)


class Release(BaseModel):
    """Settle a bucket to a politician's charity account."""
    politician_id: str
    charity_id: str


class Refund(BaseModel):
    """Settle a bucket back to each contributor."""


class SettlementRecord(BaseModel):
    """Result of a ledger settlement."""
    bucket_id: str
    outcome: SettlementOutcome
    amount: int
    credits: Dict[str, int] = Field(default_factory=dict)  # user_id -> amount credited
    politician_id: Optional[str] = None
    charity_id: Optional[str] = None
    settled_at: datetime


class CharityReceipt(BaseModel):
    """Funds handed to the charity payout sink."""
    question_id: str
    politician_id: str
    charity_id: str
    amount: int
    received_at: datetime


class StakeCreate(BaseModel):
    """Payload to stake points on a question."""
    amount: int


class StakeResult(BaseModel):
    """Stake response: the updated bounty."""
    question_id: str
    citizen_id: str
    amount: int
    total_bounty: int
    staked_at: datetime


class WalletInfo(BaseModel):
    """User's wallet information."""
    user_id: str
    available_points: int
    staked_points: int
    earned_or_released_points: int


class PointsPurchase(BaseModel):
    """Mock purchase of civic points."""
    amount: int
