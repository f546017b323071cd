from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, status

from .domain import TeamProgress
from .errors import QuestlineError
from .http_errors import to_http_exception
from .progression import progression_service

router = APIRouter(prefix="/api/teams", tags=["teams"])


@router.get("/{team_id}/progress", response_model=TeamProgress, status_code=status.HTTP_200_OK)
def team_progress(team_id: str, level_id: Optional[str] = Query(default=None)) -> TeamProgress:
    try:
        return progression_service.get_team_progress(team_id, level_id=level_id)
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc
