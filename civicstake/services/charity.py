"""Charity payout sink.

Released bounties are handed to an external payout rail. The core only
needs `deposit`; the in-memory sink records receipts for stats and tests.
"""

import logging
from datetime import datetime, timezone
from typing import List, Protocol

from civicstake.models.escrow import CharityReceipt

logger = logging.getLogger(__name__)


class CharitySink(Protocol):
    async def deposit(self, receipt: CharityReceipt) -> None:
        ...


class InMemoryCharitySink:
    """Mock charity rail (MVP demo)."""

    def __init__(self) -> None:
        self.receipts: List[CharityReceipt] = []

    async def deposit(self, receipt: CharityReceipt) -> None:
        self.receipts.append(receipt)
        logger.info(
            "Charity %s received %d points for question %s",
            receipt.charity_id, receipt.amount, receipt.question_id,
        )

    def total(self) -> int:
        return sum(r.amount for r in self.receipts)


def make_receipt(question_id: str, politician_id: str, charity_id: str, amount: int) -> CharityReceipt:
    return CharityReceipt(
        question_id=question_id,
        politician_id=politician_id,
        charity_id=charity_id,
        amount=amount,
        received_at=datetime.now(timezone.utc),
    )
