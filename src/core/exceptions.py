"""Domain exceptions for the generation pipeline.

Every error carries a stable `error_code` (analytics, client branching) and
the HTTP `status_code` it maps to when raised before a stream opens. Once a
stream is open the orchestrator converts them into terminal `error` frames
instead.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, eq=False)
class DomainError(Exception):
    """Base class for domain-specific errors."""

    message: str
    error_code: str
    status_code: int = 500

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class InvalidRequestError(DomainError):
    def __init__(self, message: str = "Invalid generation request") -> None:
        super().__init__(message=message, error_code="invalid_request", status_code=400)


class UnauthenticatedError(DomainError):
    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, error_code="unauthenticated", status_code=401)


class ForbiddenError(DomainError):
    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message=message, error_code="forbidden", status_code=403)


class InterviewNotFoundError(DomainError):
    def __init__(self, message: str = "Interview not found") -> None:
        super().__init__(
            message=message, error_code="interview_not_found", status_code=404
        )


class TopicNotFoundError(DomainError):
    def __init__(self, message: str = "Topic not found") -> None:
        super().__init__(message=message, error_code="topic_not_found", status_code=404)


class IterationQuotaExceededError(DomainError):
    def __init__(
        self, message: str = "Iteration limit reached. Please upgrade your plan."
    ) -> None:
        super().__init__(
            message=message, error_code="iteration_limit_reached", status_code=429
        )


class GeneratorFailureError(DomainError):
    def __init__(self, message: str = "Content generation failed") -> None:
        super().__init__(message=message, error_code="generator_failed", status_code=502)


class PersistenceFailureError(DomainError):
    def __init__(self, message: str = "Failed to save generated content") -> None:
        super().__init__(
            message=message, error_code="persistence_failed", status_code=500
        )


class StreamStoreError(DomainError):
    def __init__(
        self, message: str = "The stream could not be recorded. Please try again."
    ) -> None:
        super().__init__(
            message=message, error_code="stream_store_failed", status_code=503
        )
