# src/render_queue/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduler/executor/exporter depend on Protocols instead of concrete
implementations of the rendering service and the export destination.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Iterable, Protocol

from ..tasks.task_models import GenerationConfig, Task, TaskStatus


class GenerationClient(Protocol):
    """
    Rendering service port.

    Returns a result handle (http(s) URL or data: URL) or raises a
    GenerationError subclass with a user-facing message.
    """

    def generate(self, task: Task, config: GenerationConfig) -> Awaitable[str]: ...


@dataclass(frozen=True, slots=True)
class FetchedImage:
    data: bytes
    content_type: str


class ResultFetcher(Protocol):
    """Download the bytes behind a result handle (raises ExportFetchError)."""

    def fetch(self, url: str) -> Awaitable[FetchedImage]: ...


class DirectoryPicker(Protocol):
    """
    Ask the host for a writable export directory.

    Raises ExportCancelled when the user declines; any other exception
    means the grant failed and the caller falls back to an archive.
    """

    def __call__(self) -> Awaitable[Path]: ...


class TaskRepo(Protocol):
    # Queue API
    def create_task(
            self,
            prefix: str,
            *,
            prompt: str,
            reference_images: Iterable[str] = (),
            original_filename: str | None = None,
    ) -> Task: ...
    def enqueue(self, task: Task) -> None: ...
    def enqueue_many(self, tasks: Iterable[Task]) -> int: ...
    def get(self, task_id: str) -> Task | None: ...
    def remove(self, task_id: str) -> Task | None: ...
    def replace_with(
        self,
        task_id: str,
        new_task: Task,
        *,
        expected: Iterable[TaskStatus] | None = None,
    ) -> Task | None: ...
    def clear(self, *, keep: Iterable[TaskStatus] = ...) -> int: ...

    # Scheduler/executor API
    def claim_next(self, max_processing: int) -> Task | None: ...
    def transition(
            self,
            task_id: str,
            new_status: TaskStatus,
            *,
            result_url: str | None = None,
            error: str | None = None,
    ) -> Task | None: ...

    # Read-only snapshots
    def count(self, status: TaskStatus | None = None) -> int: ...
    def counts(self) -> dict[TaskStatus, int]: ...
    def list(self, status: TaskStatus | Iterable[TaskStatus] | None = None) -> list[Task]: ...
