"""Question/answer state machine.

    open ──answer──▶ answered ──voting window closes──▶ (finalized: released)
      │                 │
      ├──deadline──▶ expired (refunded)
      └──moderation──▶ flagged ◀──moderation──┘

Transitions take the question lock, validate, mutate and release it before
any external call (directness scorer, charity sink, event delivery).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from civicstake.errors import (
    AlreadyAnswered,
    CivicError,
    InvalidTransition,
    InvariantViolation,
    NotEligible,
    UnknownPolitician,
)
from civicstake.events import EventBus
from civicstake.models.answer import AIAnalysis, Answer, AnswerWithVotes, VoteSummary
from civicstake.models.escrow import SettlementOutcome, StakeResult, WalletInfo
from civicstake.models.question import (
    BountyContributor,
    Question,
    QuestionBounty,
    QuestionResolution,
    QuestionStatus,
    QuestionWithDetails,
    SweepReport,
)
from civicstake.models.rating import conservative_score
from civicstake.models.user import LeaderboardEntry, PoliticianDetail, User, UserRole
from civicstake.services.ai_arbiter import DirectnessScorer
from civicstake.services.charity import CharitySink, make_receipt
from civicstake.services.escrow import Escrow, question_key
from civicstake.services.ledger import Ledger
from civicstake.services.locks import KeyedLocks
from civicstake.services.ranking import RatingEngine, satisfaction_signal
from civicstake.services.store import CoreStore, new_id
from civicstake.services.tally import VoteTally, answer_key

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def _no_scorer(title: str, body: str, answer: str) -> Optional[AIAnalysis]:
    return None


class QuestionLifecycle:
    """Drives questions and answers, and through them escrow and ratings."""

    def __init__(
        self,
        store: CoreStore,
        ledger: Ledger,
        escrow: Escrow,
        ratings: RatingEngine,
        tally: VoteTally,
        events: EventBus,
        charity_sink: CharitySink,
        scorer: DirectnessScorer = _no_scorer,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
        escrow_timeout_days: int = 14,
        voting_window_hours: float = 72.0,
        vote_quorum: int = 0,
        initial_civic_points: int = 100,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.escrow = escrow
        self.ratings = ratings
        self.tally = tally
        self.events = events
        self.charity_sink = charity_sink
        self.scorer = scorer
        self._locks = locks or KeyedLocks()
        self._clock = clock
        self.escrow_timeout = timedelta(days=escrow_timeout_days)
        self.voting_window = timedelta(hours=voting_window_hours)
        self.vote_quorum = vote_quorum
        self.initial_civic_points = initial_civic_points

    def now(self) -> datetime:
        return self._clock()

    # -- users --------------------------------------------------------------

    def register_user(self, user_id: str, display_name: str, role: UserRole) -> User:
        """Create the user, their wallet and (for politicians) their rating prior."""
        existing = self.store.users.get(user_id)
        if existing is not None:
            return existing
        user = User(
            id=user_id,
            display_name=display_name,
            role=role,
            registered_at=self._clock(),
            registration_seq=len(self.store.users),
        )
        self.ledger.open_account(user_id, self.initial_civic_points)
        if role == UserRole.POLITICIAN:
            self.ratings.register(user_id)
        self.store.users[user_id] = user
        logger.info("Registered %s %s", role.value, user_id)
        return user

    # -- transitions ----------------------------------------------------------

    async def create_question(
        self,
        citizen_id: str,
        title: str,
        body: str,
        target_politician_id: str,
        initial_stake: int = 0,
    ) -> Question:
        citizen = self.store.user(citizen_id)
        if citizen.role != UserRole.CITIZEN:
            raise NotEligible("Citizen role required", user_id=citizen_id, operation="create_question")
        target = self.store.users.get(target_politician_id)
        if target is None or target.role != UserRole.POLITICIAN:
            raise UnknownPolitician("Politician not found", politician_id=target_politician_id)

        now = self._clock()
        question = Question(
            id=new_id(),
            title=title,
            body=body,
            citizen_id=citizen_id,
            target_politician_id=target_politician_id,
            status=QuestionStatus.OPEN,
            created_at=now,
            deadline=now + self.escrow_timeout,
        )
        # Not visible to anyone until stored, so a failed initial stake leaves no trace.
        entry = await self.escrow.open_bounty(question.id, citizen_id, initial_stake)
        question.total_bounty = entry.total_bounty
        self.store.questions[question.id] = question

        await self.events.emit(
            "question_created", question.id,
            {"politician_id": target_politician_id, "total_bounty": question.total_bounty},
        )
        return question.model_copy()

    async def stake(self, question_id: str, citizen_id: str, amount: int) -> StakeResult:
        citizen = self.store.user(citizen_id)
        if citizen.role != UserRole.CITIZEN:
            raise NotEligible("Citizen role required", user_id=citizen_id, operation="stake")
        result = await self.escrow.stake(question_id, citizen_id, amount)
        await self.events.emit(
            "stake", question_id,
            {"citizen_id": citizen_id, "amount": amount, "total_bounty": result.total_bounty},
        )
        return result

    async def submit_answer(self, politician_id: str, question_id: str, content: str) -> Answer:
        """Answer a question and open its voting window.

        The directness scorer runs after the question lock is released.
        """
        async with self._locks.hold(question_key(question_id)):
            question = self.store.question(question_id)
            if question.target_politician_id != politician_id:
                raise NotEligible("This question is not addressed to you", question_id=question_id)
            if question_id in self.store.answer_by_question:
                raise AlreadyAnswered("Question already answered", question_id=question_id)
            if question.status != QuestionStatus.OPEN:
                raise InvalidTransition(
                    f"Cannot answer a question that is {question.status.value}",
                    question_id=question_id,
                    operation="answer",
                )
            now = self._clock()
            if now > question.deadline:
                raise InvalidTransition(
                    "Question deadline has passed", question_id=question_id, operation="answer"
                )

            answer = Answer(
                id=new_id(),
                question_id=question_id,
                politician_id=politician_id,
                content=content,
                created_at=now,
                voting_closes_at=min(now + self.voting_window, question.deadline),
            )
            self.store.answers[answer.id] = answer
            self.store.answer_by_question[question_id] = answer.id
            question.status = QuestionStatus.ANSWERED
            title, body = question.title, question.body

        await self.events.emit("answer", question_id, {"answer_id": answer.id})

        analysis = await self._score(title, body, content)
        if analysis is not None:
            async with self._locks.hold(answer_key(answer.id)):
                if answer.voting_open:
                    answer.ai_analysis = analysis
                    question.ai_directness_score = analysis.directness_score
        return answer.model_copy()

    async def _score(self, title: str, body: str, content: str) -> Optional[AIAnalysis]:
        try:
            return await self.scorer(title, body, content)
        except Exception:
            # AI analysis is optional, continue without it
            logger.warning("Directness scorer raised; continuing without a score", exc_info=True)
            return None

    async def vote(self, answer_id: str, voter_id: str, is_helpful: bool) -> VoteSummary:
        await self.tally.vote(answer_id, voter_id, is_helpful)
        summary = self.tally.summary(answer_id, voter_id)
        question_id = self.store.answer(answer_id).question_id
        await self.events.emit(
            "vote", answer_id,
            {"question_id": question_id, "helpful": summary.helpful_votes, "evasive": summary.evasive_votes},
        )

        if self.vote_quorum > 0 and summary.total_votes >= self.vote_quorum:
            await self.close_voting(question_id, force=True)
        return summary

    async def close_voting(
        self,
        question_id: str,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> Optional[QuestionResolution]:
        """Finalize an answered question: rate the politician, release the bounty.

        Returns None when the question was already finalized, so repeated
        sweeps are harmless.
        """
        async with self._locks.hold(question_key(question_id)):
            question = self.store.question(question_id)
            entry = self.escrow.entry(question_id)
            if entry.finalized:
                return None
            if question.status != QuestionStatus.ANSWERED:
                raise InvalidTransition(
                    f"Cannot close voting on a question that is {question.status.value}",
                    question_id=question_id,
                    operation="close_voting",
                )
            answer = self.store.answer_for_question(question_id)
            now = now or self._clock()
            if not force and now < answer.voting_closes_at:
                raise InvalidTransition(
                    "Voting window is still open", question_id=question_id, operation="close_voting"
                )

            final = await self.tally.close(answer.id)
            signal = satisfaction_signal(final.helpful_votes, final.evasive_votes, answer.directness_score)
            # The rating only lands once the bounty has settled.
            async with self.ratings.pending_update(
                question.target_politician_id, signal, entry.total_bounty
            ) as rating:
                record = await self.escrow.finalize_held(
                    question_id, SettlementOutcome.RELEASED, question.target_politician_id
                )
            question.resolved_at = now

        if record.amount > 0:
            await self._pay_charity(question_id, question.target_politician_id, record.charity_id, record.amount)
        await self.events.emit(
            "finalize", question_id,
            {"outcome": "released", "amount": record.amount, "satisfaction": signal},
        )
        return QuestionResolution(
            question_id=question_id,
            status=question.status,
            outcome=record.outcome.value,
            amount=record.amount,
            satisfaction=signal,
            mu=rating.mu,
            sigma=rating.sigma,
            resolved_at=now,
        )

    async def expire(self, question_id: str, now: Optional[datetime] = None) -> Optional[QuestionResolution]:
        """Expire an unanswered question past its deadline and refund every staker."""
        async with self._locks.hold(question_key(question_id)):
            question = self.store.question(question_id)
            if question.status == QuestionStatus.EXPIRED:
                return None
            if question.status != QuestionStatus.OPEN or question_id in self.store.answer_by_question:
                raise InvalidTransition(
                    f"Cannot expire a question that is {question.status.value}",
                    question_id=question_id,
                    operation="expire",
                )
            now = now or self._clock()
            if now <= question.deadline:
                raise InvalidTransition(
                    "Question deadline has not passed", question_id=question_id, operation="expire"
                )
            record = await self.escrow.finalize_held(question_id, SettlementOutcome.REFUNDED)
            question.status = QuestionStatus.EXPIRED
            question.resolved_at = now

        await self.events.emit(
            "finalize", question_id, {"outcome": "refunded", "amount": record.amount}
        )
        return QuestionResolution(
            question_id=question_id,
            status=QuestionStatus.EXPIRED,
            outcome=record.outcome.value,
            amount=record.amount,
            resolved_at=now,
        )

    async def flag(self, question_id: str, reason: str, refund: bool = False) -> Question:
        """Moderation override. Flagged questions get no further automatic transitions."""
        async with self._locks.hold(question_key(question_id)):
            question = self.store.question(question_id)
            if question.status not in (QuestionStatus.OPEN, QuestionStatus.ANSWERED) or \
                    self.escrow.entry(question_id).finalized:
                raise InvalidTransition(
                    f"Cannot flag a question that is {question.status.value}",
                    question_id=question_id,
                    operation="flag",
                )
            answer_id = self.store.answer_by_question.get(question_id)
            if answer_id is not None:
                await self.tally.close(answer_id)
            record = None
            if refund:
                record = await self.escrow.finalize_held(question_id, SettlementOutcome.REFUNDED)
            question.status = QuestionStatus.FLAGGED
            question.flag_reason = reason
            if record is not None:
                question.resolved_at = record.settled_at
            logger.warning("Question %s flagged: %s", question_id, reason)

        await self.events.emit("flag", question_id, {"reason": reason, "refunded": refund})
        if record is not None:
            await self.events.emit("finalize", question_id, {"outcome": "refunded", "amount": record.amount})
        return question.model_copy()

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Fire every deadline-driven transition that is due.

        Safe to run concurrently with user requests and with itself.
        """
        now = now or self._clock()
        report = SweepReport()

        due_expiry = [
            q.id for q in self.store.questions.values()
            if q.status == QuestionStatus.OPEN and now > q.deadline
        ]
        due_close = [
            a.question_id for a in self.store.answers.values()
            if now >= a.voting_closes_at
            and self.store.questions[a.question_id].status == QuestionStatus.ANSWERED
            and not self.escrow.entry(a.question_id).finalized
        ]

        for question_id in due_expiry:
            try:
                if await self.expire(question_id, now=now) is not None:
                    report.expired.append(question_id)
            except InvalidTransition:
                # Answered or flagged since the snapshot
                continue
            except (CivicError, InvariantViolation):
                logger.exception("Sweep failed to expire question %s", question_id)
                report.failed.append(question_id)

        for question_id in due_close:
            try:
                if await self.close_voting(question_id, now=now) is not None:
                    report.finalized.append(question_id)
            except InvalidTransition:
                continue
            except (CivicError, InvariantViolation):
                logger.exception("Sweep failed to finalize question %s", question_id)
                report.failed.append(question_id)

        if report.expired or report.finalized:
            logger.info(
                "Sweep expired %d and finalized %d questions",
                len(report.expired), len(report.finalized),
            )
        return report

    async def _pay_charity(self, question_id: str, politician_id: str, charity_id: str, amount: int) -> None:
        try:
            await self.charity_sink.deposit(make_receipt(question_id, politician_id, charity_id, amount))
        except Exception:
            # Ledger already settled; the payout rail is retried out of band.
            logger.exception("Charity payout failed for question %s (%d points)", question_id, amount)

    # -- wallet -------------------------------------------------------------

    def wallet(self, user_id: str) -> WalletInfo:
        wallet = self.ledger.wallet(user_id)
        return WalletInfo(**wallet.model_dump())

    async def purchase(self, user_id: str, amount: int) -> WalletInfo:
        wallet = await self.ledger.purchase(user_id, amount)
        return WalletInfo(**wallet.model_dump())

    # -- read side ------------------------------------------------------------

    def get_question(self, question_id: str) -> Question:
        return self.store.question(question_id).model_copy()

    def question_details(self, question_id: str) -> QuestionWithDetails:
        question = self.store.question(question_id)
        citizen = self.store.users.get(question.citizen_id)
        politician = self.store.users.get(question.target_politician_id)
        stakers = {c.citizen_id for c in self.escrow.contributors(question_id)}

        vote_count = 0
        helpful_pct = None
        answer_id = self.store.answer_by_question.get(question_id)
        if answer_id is not None:
            summary = self.tally.summary(answer_id)
            vote_count = summary.total_votes
            helpful_pct = summary.helpful_percentage

        return QuestionWithDetails(
            **question.model_dump(),
            citizen_name=citizen.display_name if citizen else None,
            politician_name=politician.display_name if politician else None,
            staker_count=len(stakers),
            has_answer=answer_id is not None,
            vote_count=vote_count,
            helpful_percentage=helpful_pct,
        )

    def list_questions(
        self,
        status: Optional[QuestionStatus] = None,
        politician_id: Optional[str] = None,
        sort_by: str = "bounty",
        limit: int = 20,
        offset: int = 0,
    ) -> List[QuestionWithDetails]:
        questions = list(self.store.questions.values())
        if status:
            questions = [q for q in questions if q.status == status]
        if politician_id:
            questions = [q for q in questions if q.target_politician_id == politician_id]

        # Sorting
        if sort_by == "bounty":
            questions.sort(key=lambda q: (-q.total_bounty, q.created_at))
        elif sort_by == "recent":
            questions.sort(key=lambda q: q.created_at, reverse=True)
        elif sort_by == "deadline":
            questions.sort(key=lambda q: q.deadline)

        return [self.question_details(q.id) for q in questions[offset:offset + limit]]

    def bounty_details(self, question_id: str) -> QuestionBounty:
        question = self.store.question(question_id)
        contributors = []
        for c in self.escrow.top_stakers(question_id, limit=None):
            citizen = self.store.users.get(c.citizen_id)
            contributors.append(BountyContributor(
                citizen_id=c.citizen_id,
                citizen_name=citizen.display_name if citizen else "Anonymous",
                amount=c.amount,
                staked_at=c.staked_at,
            ))
        time_remaining = max(0.0, (question.deadline - self._clock()).total_seconds() / 3600)
        return QuestionBounty(
            question_id=question_id,
            total_bounty=question.total_bounty,
            contributors=contributors,
            time_remaining_hours=time_remaining,
        )

    def get_answer_for_question(self, question_id: str) -> AnswerWithVotes:
        answer = self.store.answer_for_question(question_id)
        summary = self.tally.summary(answer.id)
        return AnswerWithVotes(
            id=answer.id,
            question_id=answer.question_id,
            politician_id=answer.politician_id,
            content=answer.content,
            ai_analysis=answer.ai_analysis,
            created_at=answer.created_at,
            voting_closes_at=answer.voting_closes_at,
            voting_open=answer.voting_open,
            total_votes=summary.total_votes,
            helpful_votes=summary.helpful_votes,
            evasive_votes=summary.evasive_votes,
            satisfaction=self.tally.signal(answer.id),
        )

    def vote_summary(self, answer_id: str, voter_id: Optional[str] = None) -> VoteSummary:
        return self.tally.summary(answer_id, voter_id)

    def leaderboard(self, limit: int = 20, offset: int = 0) -> List[LeaderboardEntry]:
        """Global politician leaderboard sorted by conservative skill rating."""
        results = []
        for rank, rating in self.ratings.leaderboard()[offset:offset + limit]:
            user = self.store.users.get(rating.politician_id)
            results.append(LeaderboardEntry(
                politician_id=rating.politician_id,
                display_name=user.display_name if user else rating.politician_id,
                mu=rating.mu,
                sigma=rating.sigma,
                conservative_score=conservative_score(rating.mu, rating.sigma),
                questions_answered=rating.questions_answered,
                rank=rank,
            ))
        return results

    def politician_detail(self, politician_id: str) -> PoliticianDetail:
        """Rating fields plus open bounty and lifetime charity totals."""
        rating = self.ratings.get(politician_id)
        user = self.store.user(politician_id)
        rank = next(r for r, entry in self.ratings.leaderboard() if entry.politician_id == politician_id)

        received = [q for q in self.store.questions.values() if q.target_politician_id == politician_id]
        open_bounty = sum(
            q.total_bounty for q in received if not self.escrow.entry(q.id).finalized
        )

        helpful = total = 0
        for q in received:
            answer_id = self.store.answer_by_question.get(q.id)
            if answer_id is None:
                continue
            answer = self.store.answers[answer_id]
            helpful += answer.helpful_count
            total += answer.helpful_count + answer.evasive_count

        return PoliticianDetail(
            politician_id=politician_id,
            display_name=user.display_name,
            mu=rating.mu,
            sigma=rating.sigma,
            conservative_score=rating.conservative_score,
            questions_answered=rating.questions_answered,
            rank=rank,
            open_bounty_total=open_bounty,
            total_charity_released=self.ledger.charity_released(politician_id),
            questions_received=len(received),
            satisfaction_rate=(helpful / total * 100) if total else None,
        )

    def dashboard_stats(self) -> dict:
        """Platform-wide statistics."""
        questions = list(self.store.questions.values())
        entries = self.escrow.entries()
        return {
            "total_questions": len(questions),
            "open_questions": sum(1 for q in questions if q.status == QuestionStatus.OPEN),
            "total_politicians": sum(1 for u in self.store.users.values() if u.role == UserRole.POLITICIAN),
            "total_citizens": sum(1 for u in self.store.users.values() if u.role == UserRole.CITIZEN),
            "total_bounty_in_escrow": self.ledger.held_total(),
            "total_released_to_charity": sum(
                e.total_bounty for e in entries if e.outcome == SettlementOutcome.RELEASED
            ),
        }

    def check_invariants(self) -> None:
        self.ledger.check_invariants()
        self.escrow.check_invariants()
