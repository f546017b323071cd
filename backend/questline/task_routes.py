"""Submission endpoints used by players."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field

from .domain import Submission
from .errors import QuestlineError
from .http_errors import to_http_exception
from .progression import SubmissionResult, progression_service

router = APIRouter(prefix="/api/tasks", tags=["tasks"])
logger = logging.getLogger(__name__)


class TaskSubmissionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict)


@router.post("/{task_id}/submit", response_model=SubmissionResult, status_code=status.HTTP_200_OK)
def submit_task(task_id: str, request: TaskSubmissionRequest) -> SubmissionResult:
    try:
        result = progression_service.submit_task(task_id, request.payload, request.user_id.strip())
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc
    logger.debug(
        "Submission %s for task %s: %s",
        result.submission.submission_id,
        task_id,
        result.submission.outcome,
    )
    return result


@router.get("/{task_id}/submissions", response_model=List[Submission], status_code=status.HTTP_200_OK)
def task_submissions(task_id: str, user_id: Optional[str] = Query(default=None)) -> List[Submission]:
    return progression_service.list_submissions(user_id=user_id, task_id=task_id)
