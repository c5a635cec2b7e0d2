"""Shared fixtures: a fully wired core on a controllable clock."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from civicstake.config import Settings
from civicstake.core import build_core
from civicstake.models.answer import AIAnalysis
from civicstake.models.user import UserRole
from civicstake.services.charity import InMemoryCharitySink


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubScorer:
    """Directness scorer returning a fixed score (or None)."""

    def __init__(self, score: Optional[float] = None) -> None:
        self.score = score
        self.calls = 0

    async def __call__(self, title: str, body: str, answer: str) -> Optional[AIAnalysis]:
        self.calls += 1
        if self.score is None:
            return None
        return AIAnalysis(directness_score=self.score, summary="stub", flags=[])


def make_settings(**overrides) -> Settings:
    values = dict(
        gemini_api_key="",
        escrow_timeout_days=14,
        initial_civic_points=100,
        max_purchase_points=1000,
        voting_window_hours=72.0,
        vote_quorum=0,
        default_mu=25.0,
        default_sigma=8.333,
        sigma_min=1.0,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def scorer() -> StubScorer:
    return StubScorer()


@pytest.fixture
def sink() -> InMemoryCharitySink:
    return InMemoryCharitySink()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def core(settings, scorer, sink, clock):
    core = build_core(settings, scorer=scorer, charity_sink=sink, clock=clock)
    core.register_user("pol", "Politician P", UserRole.POLITICIAN)
    for name in ("alice", "bob", "carol", "dave"):
        core.register_user(name, name.title(), UserRole.CITIZEN)
    return core


@pytest.fixture
def core_factory(scorer, sink, clock):
    """Build an empty core with settings overrides, sharing the clock and sink."""

    def factory(directness_scorer=None, **overrides):
        return build_core(
            make_settings(**overrides),
            scorer=directness_scorer or scorer,
            charity_sink=sink,
            clock=clock,
        )

    return factory
