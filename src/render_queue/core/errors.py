# src/render_queue/core/errors.py

from __future__ import annotations


class RenderQueueError(Exception):
    """Base class for domain errors."""


class ValidationError(RenderQueueError, ValueError):
    """Input rejected before it could become a task (e.g. empty prompt)."""


class InvalidTransitionError(RenderQueueError, ValueError):
    """A status change that the task state machine does not allow."""


class TaskNotFoundError(RenderQueueError, LookupError):
    pass


class GenerationError(RenderQueueError):
    """A single generation attempt failed. The message is user-facing."""


class NetworkError(GenerationError):
    """Request could not be sent or the response could not be parsed."""


class ServiceError(GenerationError):
    """Remote service answered with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyResultError(GenerationError):
    """Remote service answered successfully but without a usable image."""


class ExportFetchError(RenderQueueError):
    """One result could not be fetched during export (never fatal to the batch)."""


class ExportCancelled(RenderQueueError):
    """The user declined to pick an export destination."""
