"""Tests for the points ledger: conservation and exactly-once settlement."""

import asyncio

import pytest

from civicstake.errors import (
    AlreadySettled,
    InsufficientFunds,
    InvalidAmount,
    InvariantViolation,
    UnknownUser,
)
from civicstake.models.escrow import Refund, Release, SettlementOutcome
from civicstake.services.ledger import Ledger


@pytest.fixture
def ledger() -> Ledger:
    ledger = Ledger(max_purchase=1000)
    ledger.open_account("alice", initial_points=100)
    ledger.open_account("bob", initial_points=100)
    ledger.open_account("pol", initial_points=0)
    ledger.open_bucket("q1")
    return ledger


class TestPurchase:
    @pytest.mark.asyncio
    async def test_purchase_credits_available(self, ledger: Ledger) -> None:
        wallet = await ledger.purchase("alice", 250)
        assert wallet.available_points == 350
        assert ledger.minted == 450
        ledger.check_invariants()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 1001])
    async def test_purchase_rejects_bad_amounts(self, ledger: Ledger, amount: int) -> None:
        with pytest.raises(InvalidAmount):
            await ledger.purchase("alice", amount)
        assert ledger.wallet("alice").available_points == 100

    @pytest.mark.asyncio
    async def test_purchase_at_cap(self, ledger: Ledger) -> None:
        wallet = await ledger.purchase("alice", 1000)
        assert wallet.available_points == 1100

    @pytest.mark.asyncio
    async def test_unknown_user(self, ledger: Ledger) -> None:
        with pytest.raises(UnknownUser):
            await ledger.purchase("nobody", 10)


class TestReserve:
    @pytest.mark.asyncio
    async def test_reserve_moves_available_to_staked(self, ledger: Ledger) -> None:
        wallet = await ledger.reserve("alice", 40, "q1")
        assert wallet.available_points == 60
        assert wallet.staked_points == 40
        assert wallet.earned_or_released_points == 0
        assert ledger.bucket("q1").total == 40
        ledger.check_invariants()

    @pytest.mark.asyncio
    async def test_reserve_entire_balance(self, ledger: Ledger) -> None:
        wallet = await ledger.reserve("alice", 100, "q1")
        assert wallet.available_points == 0

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, ledger: Ledger) -> None:
        with pytest.raises(InsufficientFunds):
            await ledger.reserve("alice", 101, "q1")
        assert ledger.wallet("alice").available_points == 100
        assert ledger.bucket("q1").total == 0

    @pytest.mark.asyncio
    async def test_non_positive_amount(self, ledger: Ledger) -> None:
        with pytest.raises(InvalidAmount):
            await ledger.reserve("alice", 0, "q1")

    @pytest.mark.asyncio
    async def test_reserve_into_settled_bucket(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 10, "q1")
        await ledger.settle("q1", Refund())
        with pytest.raises(AlreadySettled):
            await ledger.reserve("bob", 10, "q1")

    @pytest.mark.asyncio
    async def test_concurrent_reserves_never_overdraw(self, ledger: Ledger) -> None:
        results = await asyncio.gather(
            *(ledger.reserve("alice", 30, "q1") for _ in range(10)),
            return_exceptions=True,
        )
        succeeded = [r for r in results if not isinstance(r, Exception)]
        failed = [r for r in results if isinstance(r, InsufficientFunds)]
        assert len(succeeded) == 3
        assert len(failed) == 7
        wallet = ledger.wallet("alice")
        assert wallet.available_points == 10
        assert wallet.staked_points == 90
        ledger.check_invariants()


class TestSettle:
    @pytest.mark.asyncio
    async def test_refund_is_exact_per_contributor(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 30, "q1")
        await ledger.reserve("bob", 70, "q1")
        record = await ledger.settle("q1", Refund())
        assert record.outcome == SettlementOutcome.REFUNDED
        assert record.credits == {"alice": 30, "bob": 70}
        assert ledger.wallet("alice").available_points == 100
        assert ledger.wallet("bob").available_points == 100
        assert ledger.wallet("alice").staked_points == 0
        ledger.check_invariants()

    @pytest.mark.asyncio
    async def test_release_credits_politician(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 40, "q1")
        record = await ledger.settle("q1", Release(politician_id="pol", charity_id="c1"))
        assert record.amount == 40
        assert record.charity_id == "c1"
        assert ledger.wallet("pol").earned_or_released_points == 40
        assert ledger.wallet("alice").staked_points == 0
        assert ledger.wallet("alice").available_points == 60
        assert ledger.charity_released("pol") == 40
        ledger.check_invariants()

    @pytest.mark.asyncio
    async def test_second_settle_is_rejected_without_mutation(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 40, "q1")
        await ledger.settle("q1", Release(politician_id="pol", charity_id="c1"))
        with pytest.raises(AlreadySettled):
            await ledger.settle("q1", Release(politician_id="pol", charity_id="c1"))
        with pytest.raises(AlreadySettled):
            await ledger.settle("q1", Refund())
        assert ledger.wallet("pol").earned_or_released_points == 40
        assert ledger.wallet("alice").available_points == 60

    @pytest.mark.asyncio
    async def test_concurrent_settles_pay_once(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 50, "q1")
        results = await asyncio.gather(
            ledger.settle("q1", Release(politician_id="pol", charity_id="c1")),
            ledger.settle("q1", Refund()),
            return_exceptions=True,
        )
        assert sum(isinstance(r, AlreadySettled) for r in results) == 1
        ledger.check_invariants()
        pol = ledger.wallet("pol").earned_or_released_points
        alice = ledger.wallet("alice").available_points
        assert (pol, alice) in {(50, 50), (0, 100)}


class TestInvariants:
    def test_fresh_ledger_is_consistent(self, ledger: Ledger) -> None:
        ledger.check_invariants()

    def test_negative_balance_detected(self, ledger: Ledger) -> None:
        ledger._wallets["alice"].available_points = -1
        with pytest.raises(InvariantViolation):
            ledger.check_invariants()

    def test_created_points_detected(self, ledger: Ledger) -> None:
        ledger._wallets["bob"].earned_or_released_points += 5
        with pytest.raises(InvariantViolation):
            ledger.check_invariants()

    @pytest.mark.asyncio
    async def test_staked_mismatch_detected(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 20, "q1")
        ledger._buckets["q1"].holdings["alice"] = 25
        with pytest.raises(InvariantViolation):
            ledger.check_invariants()

    @pytest.mark.asyncio
    async def test_settle_refuses_corrupted_bucket(self, ledger: Ledger) -> None:
        await ledger.reserve("alice", 20, "q1")
        ledger._wallets["alice"].staked_points = 5
        with pytest.raises(InvariantViolation):
            await ledger.settle("q1", Refund())
        # Nothing moved.
        assert ledger.wallet("alice").available_points == 80
        assert not ledger.bucket("q1").settled
