# src/render_queue/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from pathlib import Path


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Legal moves: PENDING -> PROCESSING -> (COMPLETED | FAILED).
    A failed task never goes back to PENDING in place; retry inserts a new task.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AspectRatio(StrEnum):
    SQUARE = "1:1"
    PORTRAIT = "3:4"
    LANDSCAPE = "4:3"
    WIDE = "16:9"
    MOBILE = "9:16"
    ULTRAWIDE = "21:9"


class ImageSize(StrEnum):
    K1 = "1K"
    K2 = "2K"
    K4 = "4K"


@dataclass(frozen=True, slots=True)
class Task:
    id: str
    prompt: str
    reference_images: tuple[str, ...]
    status: TaskStatus
    created_at: float

    result_url: str | None = None
    error: str | None = None
    original_filename: str | None = None

    def with_status(
        self,
        status: TaskStatus,
        *,
        result_url: str | None = None,
        error: str | None = None,
    ) -> Task:
        """Return a copy with status/result_url/error replaced together."""
        if status == TaskStatus.COMPLETED and not result_url:
            raise ValueError("COMPLETED requires result_url")
        if status == TaskStatus.FAILED and not error:
            raise ValueError("FAILED requires error")
        return replace(
            self,
            status=status,
            result_url=result_url if status == TaskStatus.COMPLETED else None,
            error=error if status == TaskStatus.FAILED else None,
        )

    @property
    def display_name(self) -> str:
        return self.original_filename or self.id


@dataclass(frozen=True, slots=True)
class GenerationConfig:
    """Per-dispatch snapshot of the rendering parameters."""

    api_key: str
    base_url: str
    model: str
    aspect_ratio: AspectRatio
    image_size: ImageSize


@dataclass(frozen=True, slots=True)
class BatchItem:
    prompt: str
    reference_images: tuple[str, ...] = ()
    original_filename: str | None = None


@dataclass(slots=True)
class StagedText:
    id: str
    prompt: str = ""


@dataclass(slots=True)
class StagedFile:
    id: str
    path: Path
    payload: str
    prompt: str = ""

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(slots=True)
class StagingArea:
    texts: list[StagedText] = field(default_factory=list)
    files: list[StagedFile] = field(default_factory=list)
