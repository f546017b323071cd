"""Administrative endpoints: recalculation, review, resets and level windows."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from .domain import Level, TeamProgress
from .errors import QuestlineError
from .http_errors import to_http_exception
from .points import RecalculationReport
from .progression import SubmissionResult, progression_service

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ReviewRequest(BaseModel):
    reviewer_id: str = Field(..., min_length=1)
    accept: bool
    reason: Optional[str] = Field(default=None, max_length=64)


class ResetRequest(BaseModel):
    actor: str = Field(..., min_length=1)


class LevelWindowRequest(BaseModel):
    opens_at: datetime
    closes_at: datetime


@router.post("/recalculate-points", response_model=RecalculationReport, status_code=status.HTTP_200_OK)
def recalculate_points() -> RecalculationReport:
    try:
        return progression_service.trigger_full_recalculation()
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc


@router.post(
    "/submissions/{submission_id}/review",
    response_model=SubmissionResult,
    status_code=status.HTTP_200_OK,
)
def review_submission(submission_id: str, request: ReviewRequest) -> SubmissionResult:
    try:
        return progression_service.review_submission(
            submission_id,
            request.reviewer_id.strip(),
            accept=request.accept,
            reason=request.reason,
        )
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/teams/{team_id}/reset", response_model=TeamProgress, status_code=status.HTTP_200_OK)
def reset_team(team_id: str, request: ResetRequest) -> TeamProgress:
    try:
        return progression_service.reset_team_progress(team_id, actor=request.actor.strip())
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc


@router.put("/levels/{level_id}/window", response_model=Level, status_code=status.HTTP_200_OK)
def set_level_window(level_id: str, request: LevelWindowRequest) -> Level:
    try:
        return progression_service.set_level_window(level_id, request.opens_at, request.closes_at)
    except QuestlineError as exc:
        raise to_http_exception(exc) from exc
