"""Wiring of the CivicStake core services."""

from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request

from civicstake.config import Settings, get_settings
from civicstake.events import EventBus
from civicstake.services.ai_arbiter import DirectnessScorer, analyze_answer_directness
from civicstake.services.charity import CharitySink, InMemoryCharitySink
from civicstake.services.escrow import Escrow
from civicstake.services.ledger import Ledger
from civicstake.services.lifecycle import QuestionLifecycle
from civicstake.services.locks import KeyedLocks
from civicstake.services.ranking import RatingEngine
from civicstake.services.store import CoreStore
from civicstake.services.tally import VoteTally


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_core(
    settings: Optional[Settings] = None,
    scorer: Optional[DirectnessScorer] = None,
    charity_sink: Optional[CharitySink] = None,
    clock: Callable[[], datetime] = _utcnow,
) -> QuestionLifecycle:
    """Build a fully wired core sharing one lock table and one clock."""
    settings = settings or get_settings()
    locks = KeyedLocks()
    store = CoreStore()
    ledger = Ledger(max_purchase=settings.max_purchase_points, locks=locks, clock=clock)
    escrow = Escrow(
        store, ledger, locks=locks, clock=clock,
        default_charity_id=settings.default_charity_id,
    )
    ratings = RatingEngine.from_settings(settings, locks=locks)
    tally = VoteTally(store, escrow, locks=locks, clock=clock)

    if scorer is None:
        async def scorer(title: str, body: str, answer: str):
            return await analyze_answer_directness(title, body, answer, settings=settings)

    return QuestionLifecycle(
        store=store,
        ledger=ledger,
        escrow=escrow,
        ratings=ratings,
        tally=tally,
        events=EventBus(),
        charity_sink=charity_sink or InMemoryCharitySink(),
        scorer=scorer,
        locks=locks,
        clock=clock,
        escrow_timeout_days=settings.escrow_timeout_days,
        voting_window_hours=settings.voting_window_hours,
        vote_quorum=settings.vote_quorum,
        initial_civic_points=settings.initial_civic_points,
    )


def get_core(request: Request) -> QuestionLifecycle:
    """FastAPI dependency: the core built during app startup."""
    return request.app.state.core
