"""Points ledger: wallets, escrow buckets and settlement.

Points are only ever minted by registration grants and purchases. Every
other operation moves points between a wallet's `available_points`, its
`staked_points` (mirrored by the holdings of open buckets) and the terminal
`earned_or_released_points`, so

    sum(available) + sum(staked) + sum(earned_or_released) == minted

holds after every committed operation.
"""

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Union

from civicstake.errors import (
    AlreadySettled,
    InsufficientFunds,
    InvalidAmount,
    InvariantViolation,
    UnknownUser,
)
from civicstake.models.escrow import (
    LedgerBucket,
    Refund,
    Release,
    SettlementOutcome,
    SettlementRecord,
    Wallet,
)
from civicstake.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

Destination = Union[Release, Refund]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def wallet_key(user_id: str) -> str:
    return f"wallet:{user_id}"


def bucket_key(bucket_id: str) -> str:
    return f"bucket:{bucket_id}"


class Ledger:
    """In-memory points ledger with per-wallet and per-bucket locking.

    Usage:
        ledger = Ledger(max_purchase=1000)
        ledger.open_account("alice", initial_points=100)
        ledger.open_bucket("q1")
        await ledger.reserve("alice", 40, "q1")
        await ledger.settle("q1", Refund())
    """

    def __init__(
        self,
        max_purchase: int = 1000,
        locks: Optional[KeyedLocks] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.max_purchase = max_purchase
        self._locks = locks or KeyedLocks()
        self._clock = clock
        self._wallets: Dict[str, Wallet] = {}
        self._buckets: Dict[str, LedgerBucket] = {}
        self._minted = 0
        self._charity_released: Dict[str, int] = defaultdict(int)

    # -- accounts -----------------------------------------------------------

    def open_account(self, user_id: str, initial_points: int = 0) -> Wallet:
        """Create a wallet, granting `initial_points` of new supply."""
        if initial_points < 0:
            raise InvalidAmount("Initial points cannot be negative", user_id=user_id)
        if user_id in self._wallets:
            return self._wallets[user_id].model_copy()
        wallet = Wallet(user_id=user_id, available_points=initial_points)
        self._wallets[user_id] = wallet
        self._minted += initial_points
        return wallet.model_copy()

    def wallet(self, user_id: str) -> Wallet:
        """Snapshot of a user's balances."""
        return self._wallet(user_id).model_copy()

    async def purchase(self, user_id: str, amount: int) -> Wallet:
        """Mock purchase of civic points (demo cap per call)."""
        if amount <= 0:
            raise InvalidAmount("Amount must be positive", user_id=user_id, operation="purchase")
        if amount > self.max_purchase:
            raise InvalidAmount(
                f"Maximum {self.max_purchase} points per purchase",
                user_id=user_id,
                operation="purchase",
            )
        async with self._locks.hold(wallet_key(user_id)):
            wallet = self._wallet(user_id)
            wallet.available_points += amount
            self._minted += amount
            logger.info("User %s purchased %d points", user_id, amount)
            return wallet.model_copy()

    # -- buckets ------------------------------------------------------------

    def open_bucket(self, bucket_id: str) -> LedgerBucket:
        if bucket_id in self._buckets:
            raise ValueError(f"Bucket already exists: {bucket_id}")
        bucket = LedgerBucket(bucket_id=bucket_id)
        self._buckets[bucket_id] = bucket
        return bucket.model_copy(deep=True)

    def discard_bucket(self, bucket_id: str) -> None:
        """Drop a bucket that never received funds."""
        bucket = self._bucket(bucket_id)
        if bucket.total:
            raise ValueError(f"Cannot discard funded bucket: {bucket_id}")
        del self._buckets[bucket_id]

    def bucket(self, bucket_id: str) -> LedgerBucket:
        return self._bucket(bucket_id).model_copy(deep=True)

    async def reserve(self, user_id: str, amount: int, bucket_id: str) -> Wallet:
        """Move `amount` from the user's available points into a bucket."""
        if amount <= 0:
            raise InvalidAmount("Stake amount must be positive", user_id=user_id, operation="reserve")
        async with self._locks.hold(bucket_key(bucket_id), wallet_key(user_id)):
            bucket = self._bucket(bucket_id)
            wallet = self._wallet(user_id)
            if bucket.settled:
                raise AlreadySettled(
                    "Escrow already settled", bucket_id=bucket_id, operation="reserve"
                )
            if wallet.available_points < amount:
                raise InsufficientFunds(
                    f"Insufficient points. Available: {wallet.available_points}",
                    user_id=user_id,
                    operation="reserve",
                )
            wallet.available_points -= amount
            wallet.staked_points += amount
            bucket.holdings[user_id] = bucket.holdings.get(user_id, 0) + amount
            bucket.total += amount
            logger.debug("Reserved %d from %s into %s", amount, user_id, bucket_id)
            return wallet.model_copy()

    async def settle(self, bucket_id: str, destination: Destination) -> SettlementRecord:
        """Move a bucket's funds to their terminal destination, exactly once."""
        async with self._locks.hold(bucket_key(bucket_id)):
            bucket = self._bucket(bucket_id)
            if bucket.settled:
                raise AlreadySettled(
                    "Escrow already settled", bucket_id=bucket_id, operation="settle"
                )
            involved = list(bucket.holdings)
            if isinstance(destination, Release):
                involved.append(destination.politician_id)
            async with self._locks.hold(*(wallet_key(u) for u in involved)):
                return self._apply_settlement(bucket, destination)

    def _apply_settlement(self, bucket: LedgerBucket, destination: Destination) -> SettlementRecord:
        # Validate everything before the first mutation.
        wallets = {user_id: self._wallet(user_id) for user_id in bucket.holdings}
        for user_id, amount in bucket.holdings.items():
            if wallets[user_id].staked_points < amount:
                raise InvariantViolation(
                    f"Wallet {user_id} stakes {wallets[user_id].staked_points} "
                    f"but bucket holds {amount}",
                    entity_id=bucket.bucket_id,
                )
        if sum(bucket.holdings.values()) != bucket.total:
            raise InvariantViolation("Bucket total does not match holdings", entity_id=bucket.bucket_id)

        credits: Dict[str, int] = {}
        if isinstance(destination, Release):
            politician = self._wallet(destination.politician_id)
            for user_id, amount in bucket.holdings.items():
                wallets[user_id].staked_points -= amount
            politician.earned_or_released_points += bucket.total
            self._charity_released[destination.politician_id] += bucket.total
            credits[destination.politician_id] = bucket.total
            outcome = SettlementOutcome.RELEASED
        else:
            for user_id, amount in bucket.holdings.items():
                wallets[user_id].staked_points -= amount
                wallets[user_id].available_points += amount
                credits[user_id] = amount
            outcome = SettlementOutcome.REFUNDED

        bucket.settled = True
        bucket.outcome = outcome
        logger.info("Settled bucket %s (%s, %d points)", bucket.bucket_id, outcome.value, bucket.total)
        return SettlementRecord(
            bucket_id=bucket.bucket_id,
            outcome=outcome,
            amount=bucket.total,
            credits=credits,
            politician_id=getattr(destination, "politician_id", None),
            charity_id=getattr(destination, "charity_id", None),
            settled_at=self._clock(),
        )

    # -- read side ----------------------------------------------------------

    @property
    def minted(self) -> int:
        return self._minted

    def charity_released(self, politician_id: str) -> int:
        return self._charity_released.get(politician_id, 0)

    def held_total(self) -> int:
        return sum(b.total for b in self._buckets.values() if not b.settled)

    def check_invariants(self) -> None:
        """Raise `InvariantViolation` if conservation or bucket accounting is broken."""
        staked_by_user: Dict[str, int] = defaultdict(int)
        for bucket in self._buckets.values():
            if sum(bucket.holdings.values()) != bucket.total:
                raise InvariantViolation("Bucket total does not match holdings", entity_id=bucket.bucket_id)
            if bucket.settled:
                continue
            for user_id, amount in bucket.holdings.items():
                staked_by_user[user_id] += amount

        total = 0
        for wallet in self._wallets.values():
            if wallet.available_points < 0 or wallet.staked_points < 0:
                raise InvariantViolation("Negative balance detected", entity_id=wallet.user_id)
            if wallet.staked_points != staked_by_user.get(wallet.user_id, 0):
                raise InvariantViolation(
                    "Staked points do not match open escrow holdings", entity_id=wallet.user_id
                )
            total += wallet.available_points + wallet.staked_points + wallet.earned_or_released_points

        if total != self._minted:
            raise InvariantViolation(
                f"Conservation broken: balances {total} != minted {self._minted}"
            )

    def _wallet(self, user_id: str) -> Wallet:
        wallet = self._wallets.get(user_id)
        if wallet is None:
            raise UnknownUser(f"Unknown user: {user_id}", user_id=user_id)
        return wallet

    def _bucket(self, bucket_id: str) -> LedgerBucket:
        bucket = self._buckets.get(bucket_id)
        if bucket is None:
            raise ValueError(f"Unknown bucket: {bucket_id}")
        return bucket
