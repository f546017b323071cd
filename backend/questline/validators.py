"""Submission validators, selected by the task's criteria kind.

Validators are pure: they look at the task, the raw payload and the
validation context and return an outcome. They never touch the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol, Union

from .domain import ACCEPTED, PENDING, REJECTED, Level, SubmissionOutcome, Task, User

logger = logging.getLogger(__name__)

LEVEL_NOT_OPEN = "level_not_open"
LEVEL_CLOSED = "level_closed"
UNSUPPORTED_CRITERIA = "unsupported_criteria"
INVALID_PAYLOAD = "invalid_payload"
WRONG_ANSWER = "wrong_answer"
UNKNOWN_CHOICE = "unknown_choice"
TOO_FEW_FILES = "too_few_files"
TOO_MANY_FILES = "too_many_files"
UNSUPPORTED_FILE_TYPE = "unsupported_file_type"
REVIEW_REJECTED = "review_rejected"


@dataclass(frozen=True)
class Accepted:
    status: SubmissionOutcome = ACCEPTED


@dataclass(frozen=True)
class Rejected:
    reason: str
    message: Optional[str] = None
    status: SubmissionOutcome = REJECTED


@dataclass(frozen=True)
class PendingReview:
    message: Optional[str] = None
    status: SubmissionOutcome = PENDING


Outcome = Union[Accepted, Rejected, PendingReview]


@dataclass(frozen=True)
class ValidationContext:
    user: User
    level: Level
    now: datetime


class SubmissionValidator(Protocol):
    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        ...  # pragma: no cover - protocol definition


def _normalize_text(value: str, *, case_sensitive: bool = False) -> str:
    collapsed = " ".join(value.split())
    return collapsed if case_sensitive else collapsed.casefold()


def _normalize_code(value: str) -> str:
    return value.strip().upper()


def _text_field(payload: Mapping[str, Any], field: str) -> Optional[str]:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        return None
    return value


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, Iterable):
        return [item for item in value if isinstance(item, str)]
    return []


class AnswerValidator:
    """Free-text answers compared against a list of accepted answers."""

    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        answer = _text_field(payload, "answer")
        if answer is None:
            return Rejected(INVALID_PAYLOAD, "An answer is required.")
        params = task.criteria.params
        case_sensitive = bool(params.get("case_sensitive", False))
        accepted = {
            _normalize_text(candidate, case_sensitive=case_sensitive)
            for candidate in _string_list(params.get("answers"))
        }
        if _normalize_text(answer, case_sensitive=case_sensitive) in accepted:
            return Accepted()
        return Rejected(WRONG_ANSWER)


class CipherValidator:
    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        code = _text_field(payload, "code")
        if code is None:
            return Rejected(INVALID_PAYLOAD, "A code is required.")
        expected = task.criteria.params.get("code")
        if isinstance(expected, str) and _normalize_code(code) == _normalize_code(expected):
            return Accepted()
        return Rejected(WRONG_ANSWER)


class ChoiceValidator:
    """Vote-style tasks: any listed choice is a valid submission."""

    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        choice = _text_field(payload, "choice")
        if choice is None:
            return Rejected(INVALID_PAYLOAD, "A choice is required.")
        choices = _string_list(task.criteria.params.get("choices"))
        if choice.strip() in choices:
            return Accepted()
        return Rejected(UNKNOWN_CHOICE)


class UploadValidator:
    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        files = payload.get("files")
        if not isinstance(files, list) or not all(isinstance(entry, dict) for entry in files):
            return Rejected(INVALID_PAYLOAD, "Files must be a list of objects.")
        params = task.criteria.params
        min_files = int(params.get("min_files", 1))
        max_files = int(params.get("max_files", 1))
        if len(files) < min_files:
            return Rejected(TOO_FEW_FILES)
        if len(files) > max_files:
            return Rejected(TOO_MANY_FILES)
        accepted_types = {kind.lower() for kind in _string_list(params.get("accepted_types"))}
        if accepted_types:
            for entry in files:
                content_type = entry.get("content_type")
                if not isinstance(content_type, str) or content_type.lower() not in accepted_types:
                    return Rejected(UNSUPPORTED_FILE_TYPE, f"Unsupported file: {entry.get('name')}")
        return Accepted()


class QrCodeValidator:
    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        code = _text_field(payload, "code")
        if code is None:
            return Rejected(INVALID_PAYLOAD, "A scanned code is required.")
        codes = {_normalize_code(candidate) for candidate in _string_list(task.criteria.params.get("codes"))}
        if _normalize_code(code) in codes:
            return Accepted()
        return Rejected(WRONG_ANSWER)


class ManualReviewValidator:
    """Moderated tasks wait for a reviewer verdict."""

    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        return PendingReview("Submission queued for review.")


class ValidatorRegistry:
    """Dispatches evaluation by criteria kind after applying the level window."""

    def __init__(self, validators: Optional[Dict[str, SubmissionValidator]] = None) -> None:
        self._validators: Dict[str, SubmissionValidator] = dict(validators or {})

    @classmethod
    def default(cls) -> "ValidatorRegistry":
        return cls(
            {
                "answer": AnswerValidator(),
                "cipher": CipherValidator(),
                "choice": ChoiceValidator(),
                "upload": UploadValidator(),
                "qr": QrCodeValidator(),
                "manual": ManualReviewValidator(),
            }
        )

    def register(self, kind: str, validator: SubmissionValidator) -> None:
        self._validators[kind] = validator

    def kinds(self) -> set[str]:
        return set(self._validators)

    def evaluate(self, task: Task, payload: Mapping[str, Any], context: ValidationContext) -> Outcome:
        state = context.level.state(context.now)
        if state == "scheduled":
            return Rejected(LEVEL_NOT_OPEN, f"Level {context.level.week} is not open yet.")
        if state == "closed":
            return Rejected(LEVEL_CLOSED, f"Level {context.level.week} is closed.")

        validator = self._validators.get(task.criteria.kind)
        if validator is None:
            logger.warning("No validator registered for kind=%s task=%s", task.criteria.kind, task.task_id)
            return Rejected(UNSUPPORTED_CRITERIA)
        return validator.evaluate(task, payload, context)


validator_registry = ValidatorRegistry.default()

__all__ = [
    "Accepted",
    "AnswerValidator",
    "ChoiceValidator",
    "CipherValidator",
    "ManualReviewValidator",
    "Outcome",
    "PendingReview",
    "QrCodeValidator",
    "Rejected",
    "SubmissionValidator",
    "UploadValidator",
    "ValidationContext",
    "ValidatorRegistry",
    "validator_registry",
]
