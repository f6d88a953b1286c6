"""Engine error taxonomy.

Every error the engine can surface carries an ``ErrorKind`` so hosts can
map it to their transport (HTTP status, job retry, dead letter) without
string matching:

  validation              malformed event or ids; never retried
  unsupported_event       unknown event kind; dropped
  not_eligible            certificate requested before criteria are met
  conflict_retryable      uniqueness race at the storage boundary; raised by
                          repos only and always converted by the services
                          into an "already done" result
  persistence_unavailable storage is down; the caller retries with backoff
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    UNSUPPORTED_EVENT = "unsupported_event"
    NOT_ELIGIBLE = "not_eligible"
    CONFLICT_RETRYABLE = "conflict_retryable"
    PERSISTENCE_UNAVAILABLE = "persistence_unavailable"


class EngineError(Exception):
    kind: ErrorKind


class ValidationError(EngineError, ValueError):
    kind = ErrorKind.VALIDATION


class UnsupportedEventError(ValidationError):
    kind = ErrorKind.UNSUPPORTED_EVENT


class NotEligibleError(EngineError):
    kind = ErrorKind.NOT_ELIGIBLE

    def __init__(
        self,
        message: str,
        *,
        missing_lessons: int = 0,
        missing_quizzes: int = 0,
    ) -> None:
        super().__init__(message)
        self.missing_lessons = missing_lessons
        self.missing_quizzes = missing_quizzes


class ConflictRetryable(EngineError):
    kind = ErrorKind.CONFLICT_RETRYABLE


class PersistenceUnavailableError(EngineError):
    kind = ErrorKind.PERSISTENCE_UNAVAILABLE
