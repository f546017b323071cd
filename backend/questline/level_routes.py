"""Read-only level endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, status

from .domain import Level, Task
from .errors import QuestlineError
from .http_errors import to_http_exception
from .progression import progression_service

router = APIRouter(prefix="/api/levels", tags=["levels"])


@router.get("/current", response_model=Level, status_code=status.HTTP_200_OK)
def current_level() -> Level:
    try:
        return progression_service.get_current_level()
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/week/{week}", response_model=Level, status_code=status.HTTP_200_OK)
def level_for_week(week: int) -> Level:
    try:
        return progression_service.get_level_by_week(week)
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/{level_id}/tasks", response_model=List[Task], status_code=status.HTTP_200_OK)
def level_tasks(level_id: str) -> List[Task]:
    try:
        return progression_service.list_level_tasks(level_id)
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc
