"""Vote tally: helpful/evasive votes on answers, one per staker."""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from civicstake.errors import NotEligible, VotingClosed
from civicstake.models.answer import Answer, Vote, VoteSummary
from civicstake.services.escrow import Escrow
from civicstake.services.locks import KeyedLocks
from civicstake.services.ranking import satisfaction_signal
from civicstake.services.store import CoreStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def answer_key(answer_id: str) -> str:
    return f"answer:{answer_id}"


class VoteTally:
    """
    Per-answer vote counters.

    A voter's repeat vote overwrites their previous choice and moves one
    count across (-1/+1). Closing takes the same answer lock, so a racing
    vote either lands before the final read or is rejected.
    """

    def __init__(
        self,
        store: CoreStore,
        escrow: Escrow,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._escrow = escrow
        self._locks = locks or KeyedLocks()
        self._clock = clock

    async def vote(self, answer_id: str, voter_id: str, is_helpful: bool) -> Vote:
        async with self._locks.hold(answer_key(answer_id)):
            answer = self._store.answer(answer_id)
            if not answer.voting_open or self._escrow.entry(answer.question_id).finalized:
                raise VotingClosed("Voting has closed", answer_id=answer_id, operation="vote")
            if not self._escrow.has_contributed(answer.question_id, voter_id):
                raise NotEligible("Only stakers can vote on answers", answer_id=answer_id, operation="vote")

            now = self._clock()
            key = (answer_id, voter_id)
            previous = self._store.votes.get(key)
            if previous is None:
                vote = Vote(
                    answer_id=answer_id,
                    citizen_id=voter_id,
                    is_helpful=is_helpful,
                    created_at=now,
                    updated_at=now,
                )
                self._bump(answer, is_helpful, +1)
            else:
                vote = previous.model_copy(update={"is_helpful": is_helpful, "updated_at": now})
                if previous.is_helpful != is_helpful:
                    self._bump(answer, previous.is_helpful, -1)
                    self._bump(answer, is_helpful, +1)
            self._store.votes[key] = vote
            return vote.model_copy()

    async def close(self, answer_id: str) -> VoteSummary:
        """Close voting and return the final tally."""
        async with self._locks.hold(answer_key(answer_id)):
            answer = self._store.answer(answer_id)
            answer.voting_open = False
            return self._summary(answer_id)

    def summary(self, answer_id: str, voter_id: Optional[str] = None) -> VoteSummary:
        return self._summary(answer_id, voter_id)

    def signal(self, answer_id: str) -> Optional[float]:
        """Live satisfaction signal in [0, 1]."""
        answer = self._store.answer(answer_id)
        return satisfaction_signal(answer.helpful_count, answer.evasive_count, answer.directness_score)

    def _summary(self, answer_id: str, voter_id: Optional[str] = None) -> VoteSummary:
        answer = self._store.answer(answer_id)
        total = answer.helpful_count + answer.evasive_count
        user_vote = None
        if voter_id is not None:
            existing = self._store.votes.get((answer_id, voter_id))
            if existing is not None:
                user_vote = existing.is_helpful
        return VoteSummary(
            answer_id=answer_id,
            total_votes=total,
            helpful_votes=answer.helpful_count,
            evasive_votes=answer.evasive_count,
            helpful_percentage=(answer.helpful_count / total * 100) if total > 0 else None,
            user_vote=user_vote,
        )

    @staticmethod
    def _bump(answer: Answer, is_helpful: bool, delta: int) -> None:
        if is_helpful:
            answer.helpful_count += delta
        else:
            answer.evasive_count += delta
