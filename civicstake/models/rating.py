"""Politician skill rating model."""

from pydantic import BaseModel


def conservative_score(mu: float, sigma: float) -> float:
    """TrueSkill conservative rating, max(0, mu - 3 sigma)."""
    return max(0.0, mu - 3 * sigma)


class PoliticianRating(BaseModel):
    """Bayesian skill estimate for one politician."""
    politician_id: str
    mu: float
    sigma: float
    questions_answered: int = 0
    registration_seq: int = 0

    @property
    def conservative_score(self) -> float:
        return conservative_score(self.mu, self.sigma)
