"""Leaderboard: users ranked by running step total."""

from __future__ import annotations

from fastapi import APIRouter, Query

from steptrack.dependencies import Services
from steptrack.models.steps import LeaderboardEntry

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])


@router.get("", response_model=list[LeaderboardEntry])
async def get_leaderboard(
    services: Services, limit: int = Query(default=100, ge=1, le=1000)
) -> list[LeaderboardEntry]:
    users = await services.storage.users.leaderboard(limit)
    return [
        LeaderboardEntry(
            rank=i, user_id=u.user_id, name=u.name, total_steps=u.total_steps
        )
        for i, u in enumerate(users, start=1)
    ]
