"""Ranking service using Bayesian TrueSkill-style rating."""

import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Optional, Tuple

from openskill.models import PlackettLuce

from civicstake.config import Settings
from civicstake.errors import UnknownPolitician
from civicstake.models.rating import PoliticianRating
from civicstake.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


def rating_key(politician_id: str) -> str:
    return f"rating:{politician_id}"


def satisfaction_signal(
    helpful: int,
    evasive: int,
    directness_score: Optional[float] = None,
) -> Optional[float]:
    """
    Blend citizen votes with the AI directness score into [0, 1].

    Simple average when both exist, votes only when the score is absent,
    score only when nobody voted. None when there is nothing to go on.
    """
    total = helpful + evasive
    vote_part = helpful / total if total > 0 else None
    score_part = None
    if directness_score is not None:
        score_part = min(max(directness_score, 0.0), 100.0) / 100

    if vote_part is not None and score_part is not None:
        return (vote_part + score_part) / 2
    if vote_part is not None:
        return vote_part
    return score_part


class RatingEngine:
    """
    Per-politician skill estimates, updated once per resolved question.

    A resolved question is a two-team Plackett-Luce "match" between the
    politician and a reference opponent. The win and loss outcomes are
    blended by the satisfaction signal, so a signal above the politician's
    expected win probability moves mu up and below it moves mu down.
    Sigma shrinks either way and never drops below `sigma_min`.
    """

    def __init__(
        self,
        default_mu: float = 25.0,
        default_sigma: float = 8.333,
        sigma_min: float = 1.0,
        reference_mu: float = 25.0,
        reference_sigma: float = 8.333,
        bounty_difficulty_scale: float = 0.0,
        locks: Optional[KeyedLocks] = None,
    ) -> None:
        if sigma_min <= 0:
            raise ValueError("sigma_min must be positive")
        self.default_mu = default_mu
        self.default_sigma = default_sigma
        self.sigma_min = sigma_min
        self.reference_mu = reference_mu
        self.reference_sigma = reference_sigma
        self.bounty_difficulty_scale = bounty_difficulty_scale
        # No dynamics term: an update never widens sigma
        self.model = PlackettLuce(mu=default_mu, sigma=default_sigma, tau=0.0, limit_sigma=True)
        self._locks = locks or KeyedLocks()
        self._ratings: Dict[str, PoliticianRating] = {}
        self._next_seq = 0

    @classmethod
    def from_settings(cls, settings: Settings, locks: Optional[KeyedLocks] = None) -> "RatingEngine":
        return cls(
            default_mu=settings.default_mu,
            default_sigma=settings.default_sigma,
            sigma_min=settings.sigma_min,
            reference_mu=settings.reference_mu,
            reference_sigma=settings.reference_sigma,
            bounty_difficulty_scale=settings.bounty_difficulty_scale,
            locks=locks,
        )

    def register(self, politician_id: str) -> PoliticianRating:
        """Initialize a politician at the prior. Re-registering is a no-op."""
        existing = self._ratings.get(politician_id)
        if existing is not None:
            return existing.model_copy()
        rating = PoliticianRating(
            politician_id=politician_id,
            mu=self.default_mu,
            sigma=self.default_sigma,
            registration_seq=self._next_seq,
        )
        self._next_seq += 1
        self._ratings[politician_id] = rating
        return rating.model_copy()

    def get(self, politician_id: str) -> PoliticianRating:
        rating = self._ratings.get(politician_id)
        if rating is None:
            raise UnknownPolitician("Politician not found", politician_id=politician_id)
        return rating.model_copy()

    def reference_difficulty(self, bounty: int = 0) -> float:
        """Reference opponent mu; bigger bounties are harder when the scale is set."""
        # Log scale so 1000 points isn't 100x harder than 10
        return self.reference_mu + self.bounty_difficulty_scale * math.log10(1 + max(bounty, 0))

    def project(self, mu: float, sigma: float, satisfaction: float, bounty: int = 0) -> Tuple[float, float]:
        """Pure rating update: returns (new_mu, new_sigma)."""
        s = min(max(satisfaction, 0.0), 1.0)
        opponent_mu = self.reference_difficulty(bounty)

        [[won], _] = self.model.rate(
            [[self.model.rating(mu=mu, sigma=sigma)],
             [self.model.rating(mu=opponent_mu, sigma=self.reference_sigma)]],
            ranks=[1, 2],
        )
        [[lost], _] = self.model.rate(
            [[self.model.rating(mu=mu, sigma=sigma)],
             [self.model.rating(mu=opponent_mu, sigma=self.reference_sigma)]],
            ranks=[2, 1],
        )

        new_mu = s * won.mu + (1 - s) * lost.mu
        new_sigma = min(s * won.sigma + (1 - s) * lost.sigma, sigma)
        return new_mu, max(new_sigma, self.sigma_min)

    @asynccontextmanager
    async def pending_update(
        self,
        politician_id: str,
        satisfaction: Optional[float],
        bounty: int = 0,
    ) -> AsyncIterator[PoliticianRating]:
        """
        Yield the politician's next rating, stored only if the block exits cleanly.

        The rating lock is held throughout, so work done inside the block
        (settling the bounty) decides whether the update happens at all.
        `questions_answered` always increments; mu/sigma only move when a
        satisfaction signal exists.
        """
        async with self._locks.hold(rating_key(politician_id)):
            projected = self._rating(politician_id).model_copy()
            if satisfaction is not None:
                projected.mu, projected.sigma = self.project(
                    projected.mu, projected.sigma, satisfaction, bounty
                )
            projected.questions_answered += 1
            yield projected.model_copy()

            self._ratings[politician_id] = projected
            logger.info(
                "Rating for %s -> mu=%.3f sigma=%.3f (satisfaction=%s)",
                politician_id, projected.mu, projected.sigma, satisfaction,
            )

    async def update(
        self,
        politician_id: str,
        satisfaction: Optional[float],
        bounty: int = 0,
    ) -> PoliticianRating:
        """Apply a resolved question to the politician's rating."""
        async with self.pending_update(politician_id, satisfaction, bounty) as rating:
            pass
        return rating

    def leaderboard(self) -> List[Tuple[int, PoliticianRating]]:
        """
        All ratings ranked by conservative score (μ - 3σ), then lower sigma,
        then earlier registration. Ranks are 1-based positions.
        """
        ordered = sorted(
            self._ratings.values(),
            key=lambda r: (-r.conservative_score, r.sigma, r.registration_seq),
        )
        return [(i + 1, r.model_copy()) for i, r in enumerate(ordered)]

    def _rating(self, politician_id: str) -> PoliticianRating:
        rating = self._ratings.get(politician_id)
        if rating is None:
            # Ratings are created at registration; a miss here is a bug.
            logger.critical("No rating record for politician %s", politician_id)
            raise UnknownPolitician("Politician not found", politician_id=politician_id)
        return rating
