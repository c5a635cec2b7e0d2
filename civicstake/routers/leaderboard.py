"""Leaderboard router for politician rankings."""

from fastapi import APIRouter, Depends, Query
from typing import List

from civicstake.core import get_core
from civicstake.models.user import LeaderboardEntry, PoliticianDetail
from civicstake.services.lifecycle import QuestionLifecycle

router = APIRouter(prefix="/leaderboard", tags=["Leaderboard"])


@router.get("", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    core: QuestionLifecycle = Depends(get_core)
):
    """Get global politician leaderboard sorted by conservative skill rating."""
    return core.leaderboard(limit=limit, offset=offset)


@router.get("/stats/dashboard")
async def get_dashboard_stats(core: QuestionLifecycle = Depends(get_core)):
    """Get platform-wide statistics."""
    return core.dashboard_stats()


@router.get("/{politician_id}", response_model=PoliticianDetail)
async def get_politician_stats(politician_id: str, core: QuestionLifecycle = Depends(get_core)):
    """Get detailed stats for a specific politician."""
    return core.politician_detail(politician_id)
