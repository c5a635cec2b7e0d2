"""Tests for the question/answer state machine and deadline sweeps."""

import asyncio
import random

import pytest

from civicstake.errors import (
    AlreadyAnswered,
    CivicError,
    InvalidTransition,
    NotEligible,
    UnknownPolitician,
)
from civicstake.models.question import QuestionStatus
from civicstake.models.user import UserRole


async def _question(core, stake: int = 0, asker: str = "alice"):
    return await core.create_question(asker, "Transit", "Why was the bus line cut?", "pol", stake)


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_answer_vote_release(self, core, clock, sink) -> None:
        q = await _question(core, stake=40, asker="alice")
        for voter in ("bob", "carol"):
            await core.stake(q.id, voter, 5)
        prior = core.ratings.get("pol")

        answer = await core.submit_answer("pol", q.id, "Ridership fell; we are restoring it in May.")
        assert core.get_question(q.id).status == QuestionStatus.ANSWERED

        await core.vote(answer.id, "alice", True)
        await core.vote(answer.id, "bob", True)
        await core.vote(answer.id, "carol", False)

        clock.advance(hours=73)
        report = await core.sweep()
        assert report.finalized == [q.id]

        rating = core.ratings.get("pol")
        assert rating.mu > prior.mu
        assert rating.sigma < prior.sigma
        assert rating.questions_answered == prior.questions_answered + 1

        assert core.ledger.wallet("pol").earned_or_released_points == 50
        alice = core.wallet("alice")
        assert (alice.available_points, alice.staked_points) == (60, 0)
        assert [r.amount for r in sink.receipts] == [50]
        assert sink.receipts[0].politician_id == "pol"

        detail = core.politician_detail("pol")
        assert detail.total_charity_released == 50
        assert detail.open_bounty_total == 0
        assert detail.questions_received == 1
        core.check_invariants()

    @pytest.mark.asyncio
    async def test_two_of_three_satisfied(self, core_factory) -> None:
        core = core_factory(default_sigma=8.3)
        core.register_user("P", "P", UserRole.POLITICIAN)
        core.register_user("C", "C", UserRole.CITIZEN)
        voters = ("V1", "V2", "V3")
        for v in voters:
            core.register_user(v, v, UserRole.CITIZEN)

        q = await core.create_question("C", "Q", "Body", "P", 40)
        for v in voters:
            await core.stake(q.id, v, 1)
        answer = await core.submit_answer("P", q.id, "A")
        await core.vote(answer.id, "V1", True)
        await core.vote(answer.id, "V2", True)
        await core.vote(answer.id, "V3", False)

        resolution = await core.close_voting(q.id, force=True)
        assert resolution.satisfaction == pytest.approx(0.667, abs=1e-3)
        assert resolution.outcome == "released"
        assert resolution.mu > 25.0
        assert resolution.sigma < 8.3
        assert core.ratings.get("P").questions_answered == 1
        assert core.wallet("C").staked_points == 0
        assert core.wallet("P").earned_or_released_points == 43

    @pytest.mark.asyncio
    async def test_directness_score_blends_in(self, core, scorer) -> None:
        scorer.score = 100.0
        q = await _question(core, stake=10)
        await core.stake(q.id, "bob", 10)
        answer = await core.submit_answer("pol", q.id, "Yes, by June 3rd.")
        assert core.get_question(q.id).ai_directness_score == 100.0
        await core.vote(answer.id, "bob", False)
        resolution = await core.close_voting(q.id, force=True)
        assert resolution.satisfaction == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_failing_scorer_is_not_fatal(self, core_factory) -> None:
        async def broken(title, body, answer):
            raise RuntimeError("model unavailable")

        core = core_factory(directness_scorer=broken)
        core.register_user("pol", "P", UserRole.POLITICIAN)
        core.register_user("alice", "A", UserRole.CITIZEN)
        q = await _question(core, stake=10)
        answer = await core.submit_answer("pol", q.id, "...")
        assert answer.ai_analysis is None
        assert core.get_question(q.id).status == QuestionStatus.ANSWERED


class TestExpiry:
    @pytest.mark.asyncio
    async def test_exact_refund_and_untouched_rating(self, core, clock) -> None:
        q = await _question(core, stake=30, asker="alice")
        await core.stake(q.id, "bob", 70)
        prior = core.ratings.get("pol")

        clock.advance(days=14, seconds=1)
        report = await core.sweep()

        assert report.expired == [q.id]
        assert core.get_question(q.id).status == QuestionStatus.EXPIRED
        assert core.wallet("alice").available_points == 100
        assert core.wallet("bob").available_points == 100
        after = core.ratings.get("pol")
        assert (after.mu, after.sigma, after.questions_answered) == (
            prior.mu, prior.sigma, prior.questions_answered
        )
        core.check_invariants()

    @pytest.mark.asyncio
    async def test_not_before_deadline(self, core) -> None:
        q = await _question(core, stake=10)
        with pytest.raises(InvalidTransition):
            await core.expire(q.id)
        assert (await core.sweep()).expired == []

    @pytest.mark.asyncio
    async def test_expire_is_idempotent(self, core, clock) -> None:
        q = await _question(core, stake=10)
        clock.advance(days=15)
        assert await core.expire(q.id) is not None
        assert await core.expire(q.id) is None
        assert core.wallet("alice").available_points == 100

    @pytest.mark.asyncio
    async def test_answered_question_does_not_expire(self, core, clock) -> None:
        q = await _question(core, stake=10)
        await core.submit_answer("pol", q.id, "Answer")
        clock.advance(days=15)
        with pytest.raises(InvalidTransition):
            await core.expire(q.id)


class TestAnswer:
    @pytest.mark.asyncio
    async def test_second_answer_rejected(self, core) -> None:
        q = await _question(core)
        await core.submit_answer("pol", q.id, "First")
        with pytest.raises(AlreadyAnswered):
            await core.submit_answer("pol", q.id, "Second")

    @pytest.mark.asyncio
    async def test_concurrent_answers_one_wins(self, core) -> None:
        q = await _question(core)
        results = await asyncio.gather(
            core.submit_answer("pol", q.id, "One"),
            core.submit_answer("pol", q.id, "Two"),
            return_exceptions=True,
        )
        assert sum(isinstance(r, AlreadyAnswered) for r in results) == 1
        assert len(core.store.answers) == 1

    @pytest.mark.asyncio
    async def test_only_target_politician_answers(self, core) -> None:
        core.register_user("other", "Other", UserRole.POLITICIAN)
        q = await _question(core)
        with pytest.raises(NotEligible):
            await core.submit_answer("other", q.id, "Not mine")

    @pytest.mark.asyncio
    async def test_answer_after_deadline(self, core, clock) -> None:
        q = await _question(core)
        clock.advance(days=15)
        with pytest.raises(InvalidTransition):
            await core.submit_answer("pol", q.id, "Late")

    @pytest.mark.asyncio
    async def test_answer_flagged_question(self, core) -> None:
        q = await _question(core)
        await core.flag(q.id, "abusive")
        with pytest.raises(InvalidTransition):
            await core.submit_answer("pol", q.id, "Answer")

    @pytest.mark.asyncio
    async def test_voting_window_capped_by_deadline(self, core, clock) -> None:
        q = await _question(core)
        clock.advance(days=13)
        answer = await core.submit_answer("pol", q.id, "Just in time")
        assert answer.voting_closes_at == core.get_question(q.id).deadline


class TestCreate:
    @pytest.mark.asyncio
    async def test_unknown_politician(self, core) -> None:
        with pytest.raises(UnknownPolitician):
            await core.create_question("alice", "T", "B", "bob", 0)

    @pytest.mark.asyncio
    async def test_politicians_cannot_ask(self, core) -> None:
        core.register_user("other", "Other", UserRole.POLITICIAN)
        with pytest.raises(NotEligible):
            await core.create_question("other", "T", "B", "pol", 0)

    @pytest.mark.asyncio
    async def test_events_emitted(self, core) -> None:
        seen = []
        core.events.subscribe(lambda event: seen.append(event.type))
        q = await _question(core, stake=5)
        await core.stake(q.id, "bob", 5)
        answer = await core.submit_answer("pol", q.id, "A")
        await core.vote(answer.id, "bob", True)
        await core.close_voting(q.id, force=True)
        assert seen == ["question_created", "stake", "answer", "vote", "finalize"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_undo(self, core) -> None:
        def boom(event):
            raise RuntimeError("transport down")

        core.events.subscribe(boom)
        q = await _question(core, stake=5)
        assert core.escrow.entry(q.id).total_bounty == 5


class TestCloseVoting:
    @pytest.mark.asyncio
    async def test_failed_settlement_leaves_rating_alone(self, core, clock, sink) -> None:
        q = await _question(core, stake=20)
        answer = await core.submit_answer("pol", q.id, "A")
        await core.vote(answer.id, "alice", True)
        prior = core.ratings.get("pol")
        core.ledger._wallets["alice"].staked_points = 0
        clock.advance(days=4)

        for _ in range(2):
            report = await core.sweep()
            assert report.failed == [q.id]
        after = core.ratings.get("pol")
        assert (after.mu, after.sigma, after.questions_answered) == (
            prior.mu, prior.sigma, prior.questions_answered
        )
        assert not core.escrow.entry(q.id).finalized
        assert sink.receipts == []

        core.ledger._wallets["alice"].staked_points = 20
        assert (await core.sweep()).finalized == [q.id]
        assert core.ratings.get("pol").questions_answered == 1

    @pytest.mark.asyncio
    async def test_window_must_have_closed(self, core) -> None:
        q = await _question(core, stake=5)
        await core.submit_answer("pol", q.id, "A")
        with pytest.raises(InvalidTransition):
            await core.close_voting(q.id)

    @pytest.mark.asyncio
    async def test_open_question_cannot_close(self, core) -> None:
        q = await _question(core, stake=5)
        with pytest.raises(InvalidTransition):
            await core.close_voting(q.id, force=True)

    @pytest.mark.asyncio
    async def test_no_votes_no_score_only_counts(self, core) -> None:
        q = await _question(core, stake=5)
        await core.submit_answer("pol", q.id, "A")
        resolution = await core.close_voting(q.id, force=True)
        assert resolution.satisfaction is None
        rating = core.ratings.get("pol")
        assert (rating.mu, rating.sigma, rating.questions_answered) == (25.0, 8.333, 1)

    @pytest.mark.asyncio
    async def test_repeated_and_concurrent_sweeps_finalize_once(self, core, clock, sink) -> None:
        q = await _question(core, stake=20)
        answer = await core.submit_answer("pol", q.id, "A")
        await core.vote(answer.id, "alice", True)
        clock.advance(days=4)

        reports = await asyncio.gather(core.sweep(), core.sweep(), core.sweep())
        assert sum(len(r.finalized) for r in reports) == 1
        assert (await core.sweep()).finalized == []
        assert core.ratings.get("pol").questions_answered == 1
        assert core.wallet("pol").earned_or_released_points == 20
        assert len(sink.receipts) == 1

    @pytest.mark.asyncio
    async def test_quorum_closes_early(self, core_factory) -> None:
        core = core_factory(vote_quorum=2)
        core.register_user("pol", "P", UserRole.POLITICIAN)
        for name in ("alice", "bob"):
            core.register_user(name, name, UserRole.CITIZEN)
        q = await _question(core, stake=10)
        await core.stake(q.id, "bob", 10)
        answer = await core.submit_answer("pol", q.id, "A")
        await core.vote(answer.id, "alice", True)
        assert core.escrow.entry(q.id).finalized is False
        await core.vote(answer.id, "bob", True)
        assert core.escrow.entry(q.id).finalized is True
        assert core.ratings.get("pol").questions_answered == 1


class TestFlag:
    @pytest.mark.asyncio
    async def test_flag_blocks_automatic_transitions(self, core, clock) -> None:
        q = await _question(core, stake=10)
        await core.flag(q.id, "duplicate")
        clock.advance(days=30)
        report = await core.sweep()
        assert report.expired == [] and report.finalized == []
        assert core.get_question(q.id).status == QuestionStatus.FLAGGED
        assert core.wallet("alice").staked_points == 10

    @pytest.mark.asyncio
    async def test_flag_with_refund(self, core) -> None:
        q = await _question(core, stake=10)
        await core.stake(q.id, "bob", 15)
        await core.flag(q.id, "abusive", refund=True)
        assert core.wallet("alice").available_points == 100
        assert core.wallet("bob").available_points == 100
        core.check_invariants()

    @pytest.mark.asyncio
    async def test_flag_answered_closes_voting(self, core) -> None:
        q = await _question(core, stake=10)
        answer = await core.submit_answer("pol", q.id, "A")
        await core.flag(q.id, "off topic")
        assert not core.store.answer(answer.id).voting_open
        with pytest.raises(InvalidTransition):
            await core.close_voting(q.id, force=True)

    @pytest.mark.asyncio
    async def test_cannot_flag_finalized(self, core, clock) -> None:
        q = await _question(core, stake=10)
        clock.advance(days=15)
        await core.expire(q.id)
        with pytest.raises(InvalidTransition):
            await core.flag(q.id, "late")


class TestConservation:
    @pytest.mark.asyncio
    async def test_random_sequences_conserve_points(self, core_factory, scorer, sink, clock) -> None:
        rng = random.Random(1234)
        scorer.score = 60.0
        core = core_factory()
        politicians = [f"p{i}" for i in range(3)]
        citizens = [f"c{i}" for i in range(6)]
        for p in politicians:
            core.register_user(p, p, UserRole.POLITICIAN)
        for c in citizens:
            core.register_user(c, c, UserRole.CITIZEN)

        questions = []
        for _ in range(300):
            action = rng.random()
            try:
                if action < 0.15:
                    await core.purchase(rng.choice(citizens), rng.randint(1, 200))
                elif action < 0.3:
                    q = await core.create_question(
                        rng.choice(citizens), "T", "B", rng.choice(politicians), rng.randint(0, 40)
                    )
                    questions.append(q.id)
                elif action < 0.55 and questions:
                    await core.stake(rng.choice(questions), rng.choice(citizens), rng.randint(1, 50))
                elif action < 0.65 and questions:
                    q = core.get_question(rng.choice(questions))
                    await core.submit_answer(q.target_politician_id, q.id, "A")
                elif action < 0.85 and core.store.answers:
                    answer_id = rng.choice(list(core.store.answers))
                    await core.vote(answer_id, rng.choice(citizens), rng.random() < 0.6)
                else:
                    clock.advance(hours=rng.randint(1, 96))
                    await core.sweep()
            except CivicError:
                pass
            core.check_invariants()

        clock.advance(days=30)
        await core.sweep()
        core.check_invariants()

        wallets = [core.wallet(u) for u in politicians + citizens]
        assert sum(w.staked_points for w in wallets) == 0
        assert sum(
            w.available_points + w.staked_points + w.earned_or_released_points for w in wallets
        ) == core.ledger.minted
        released = sum(core.ledger.charity_released(p) for p in politicians)
        assert released == sink.total()
