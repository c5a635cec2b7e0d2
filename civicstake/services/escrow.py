"""Escrow service for managing staked points.

One escrow entry per question. Contributions are kept in insertion order
(the tie-break for "top stakers" displays) and the entry is finalized
exactly once, either released to the politician's charity account or
refunded to each contributor for exactly what they staked.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from civicstake.errors import (
    AlreadyFinalized,
    InvalidAmount,
    InvariantViolation,
    QuestionNotOpen,
)
from civicstake.models.escrow import (
    Contribution,
    EscrowEntry,
    Refund,
    Release,
    SettlementOutcome,
    SettlementRecord,
    StakeResult,
)
from civicstake.models.question import QuestionStatus
from civicstake.services.ledger import Ledger
from civicstake.services.locks import KeyedLocks
from civicstake.services.store import CoreStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def question_key(question_id: str) -> str:
    return f"question:{question_id}"


class Escrow:
    """Question bounties on top of the ledger.

    The question lock (`question_key`) serializes stake and finalize for a
    question; `finalize_held` is for callers that already hold it.
    """

    def __init__(
        self,
        store: CoreStore,
        ledger: Ledger,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
        default_charity_id: str = "default_charity",
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._locks = locks or KeyedLocks()
        self._clock = clock
        self.default_charity_id = default_charity_id
        self._entries: Dict[str, EscrowEntry] = {}

    async def open_bounty(self, question_id: str, citizen_id: str, initial_stake: int = 0) -> EscrowEntry:
        """Create the escrow entry, reserving the asker's initial stake if any."""
        if initial_stake < 0:
            raise InvalidAmount("Initial stake cannot be negative", question_id=question_id)
        async with self._locks.hold(question_key(question_id)):
            if question_id in self._entries:
                raise ValueError(f"Escrow already open for question {question_id}")
            entry = EscrowEntry(question_id=question_id)
            self._ledger.open_bucket(question_id)
            if initial_stake > 0:
                try:
                    await self._ledger.reserve(citizen_id, initial_stake, question_id)
                except Exception:
                    self._ledger.discard_bucket(question_id)
                    raise
                entry.contributions.append(
                    Contribution(citizen_id=citizen_id, amount=initial_stake, staked_at=self._clock())
                )
                entry.total_bounty = initial_stake
            self._entries[question_id] = entry
            return entry.model_copy(deep=True)

    async def stake(self, question_id: str, citizen_id: str, amount: int) -> StakeResult:
        """Add a contribution to an open question's bounty."""
        async with self._locks.hold(question_key(question_id)):
            question = self._store.question(question_id)
            entry = self._entry(question_id)
            now = self._clock()
            if question.status != QuestionStatus.OPEN or entry.finalized:
                raise QuestionNotOpen(
                    "Question is not open for staking", question_id=question_id, operation="stake"
                )
            if now > question.deadline:
                raise QuestionNotOpen(
                    "Question deadline has passed", question_id=question_id, operation="stake"
                )
            await self._ledger.reserve(citizen_id, amount, question_id)
            entry.contributions.append(Contribution(citizen_id=citizen_id, amount=amount, staked_at=now))
            entry.total_bounty += amount
            question.total_bounty = entry.total_bounty
            return StakeResult(
                question_id=question_id,
                citizen_id=citizen_id,
                amount=amount,
                total_bounty=entry.total_bounty,
                staked_at=now,
            )

    async def finalize(
        self,
        question_id: str,
        outcome: SettlementOutcome,
        politician_id: Optional[str] = None,
    ) -> SettlementRecord:
        async with self._locks.hold(question_key(question_id)):
            return await self.finalize_held(question_id, outcome, politician_id)

    async def finalize_held(
        self,
        question_id: str,
        outcome: SettlementOutcome,
        politician_id: Optional[str] = None,
    ) -> SettlementRecord:
        """Finalize with the question lock already held by the caller."""
        entry = self._entry(question_id)
        if entry.finalized:
            raise AlreadyFinalized(
                "Escrow already finalized", question_id=question_id, operation="finalize"
            )
        bucket = self._ledger.bucket(question_id)
        if bucket.settled:
            raise InvariantViolation("Double release detected", entity_id=question_id)
        if bucket.total != entry.total_bounty:
            raise InvariantViolation(
                f"Escrow total {entry.total_bounty} != ledger bucket {bucket.total}",
                entity_id=question_id,
            )

        if outcome == SettlementOutcome.RELEASED:
            if politician_id is None:
                politician_id = self._store.question(question_id).target_politician_id
            destination = Release(politician_id=politician_id, charity_id=self.default_charity_id)
        else:
            destination = Refund()

        record = await self._ledger.settle(question_id, destination)
        entry.finalized = True
        entry.outcome = outcome
        entry.charity_id = record.charity_id
        entry.finalized_at = record.settled_at
        logger.info("Escrow for question %s %s (%d points)", question_id, outcome.value, record.amount)
        return record

    # -- read side ----------------------------------------------------------

    def entry(self, question_id: str) -> EscrowEntry:
        return self._entry(question_id).model_copy(deep=True)

    def has_contributed(self, question_id: str, citizen_id: str) -> bool:
        entry = self._entries.get(question_id)
        if entry is None:
            return False
        return any(c.citizen_id == citizen_id for c in entry.contributions)

    def contributors(self, question_id: str) -> List[Contribution]:
        return [c.model_copy() for c in self._entry(question_id).contributions]

    def top_stakers(self, question_id: str, limit: Optional[int] = 5) -> List[Contribution]:
        """Aggregate stakes per citizen, largest first; ties keep first-stake order."""
        totals: "OrderedDict[str, Contribution]" = OrderedDict()
        for c in self._entry(question_id).contributions:
            if c.citizen_id in totals:
                totals[c.citizen_id].amount += c.amount
            else:
                totals[c.citizen_id] = c.model_copy()
        ranked = sorted(totals.values(), key=lambda c: -c.amount)
        return ranked if limit is None else ranked[:limit]

    def entries(self) -> List[EscrowEntry]:
        return list(self._entries.values())

    def check_invariants(self) -> None:
        """Cross-check every entry against the ledger's bucket view."""
        for question_id, entry in self._entries.items():
            if entry.total_bounty != sum(c.amount for c in entry.contributions):
                raise InvariantViolation("Bounty total does not match contributions", entity_id=question_id)
            bucket = self._ledger.bucket(question_id)
            if bucket.total != entry.total_bounty:
                raise InvariantViolation("Bounty total does not match ledger bucket", entity_id=question_id)
            if bucket.settled != entry.finalized:
                raise InvariantViolation("Finalization flag disagrees with ledger", entity_id=question_id)

    def _entry(self, question_id: str) -> EscrowEntry:
        entry = self._entries.get(question_id)
        if entry is None:
            raise ValueError(f"No escrow for question {question_id}")
        return entry
