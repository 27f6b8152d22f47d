# src/render_queue/export/orchestrator.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from ..core.activity import ActivityLog
from ..core.errors import ExportCancelled, ExportFetchError
from ..core.ports import ResultFetcher, TaskRepo
from ..tasks.task_models import Task, TaskStatus
from .strategies import (
    ArchiveWriteStrategy,
    DirectoryWriteStrategy,
    ExportStrategy,
    dedupe_filename,
    export_filename,
)

logger = logging.getLogger(__name__)


class ExportOutcome(StrEnum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
    EMPTY = "empty"  # nothing completed to export
    BUSY = "busy"  # another export is still running


@dataclass(frozen=True, slots=True)
class ExportResult:
    written_count: int
    strategy: str | None
    outcome: ExportOutcome
    path: Path | None = None
    failed_count: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome == ExportOutcome.COMPLETED


class ExportOrchestrator:
    """
    Bulk export of completed results.

    - directory strategy first (when available), archive as fallback
    - a cancelled directory pick aborts the run (no fallback, no writes)
    - per-item fetch/write errors are logged and skipped
    - one run at a time (busy flag)
    """

    def __init__(
        self,
        store: TaskRepo,
        fetcher: ResultFetcher,
        activity: ActivityLog,
        *,
        archive_strategy: ArchiveWriteStrategy,
        directory_strategy: DirectoryWriteStrategy | None = None,
        filename_suffix: str = "render",
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._activity = activity
        self._archive = archive_strategy
        self._directory = directory_strategy
        self._suffix = filename_suffix
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def completed_tasks(self) -> list[Task]:
        return [t for t in self._store.list(TaskStatus.COMPLETED) if t.result_url]

    async def export_all(self, *, directory_strategy: DirectoryWriteStrategy | None = None) -> ExportResult:
        """Export every COMPLETED task; directory_strategy overrides the configured one for this run."""
        completed = self.completed_tasks()
        if not completed:
            self._activity.error("No completed images to download.")
            return ExportResult(0, None, ExportOutcome.EMPTY)

        if self._busy:
            logger.info("Export already in progress; ignoring request.")
            return ExportResult(0, None, ExportOutcome.BUSY)

        self._busy = True
        try:
            return await self._export(completed, directory_strategy or self._directory)
        finally:
            self._busy = False

    async def _export(self, tasks: list[Task], directory: DirectoryWriteStrategy | None) -> ExportResult:
        if directory is not None:
            try:
                await directory.prepare()
            except ExportCancelled:
                self._activity.info("Download cancelled.")
                return ExportResult(0, directory.name, ExportOutcome.CANCELLED)
            except Exception as e:
                logger.warning("Directory export unavailable, falling back to archive: %r", e)
            else:
                self._activity.info("Saving to folder...")
                return await self._run(directory, tasks)

        self._activity.info("Preparing ZIP archive...")
        try:
            await self._archive.prepare()
        except Exception as e:
            logger.exception("Archive setup failed")
            self._activity.error(f"ZIP creation failed: {e}")
            return ExportResult(0, self._archive.name, ExportOutcome.FAILED, failed_count=len(tasks))
        return await self._run(self._archive, tasks)

    async def _run(self, strategy: ExportStrategy, tasks: list[Task]) -> ExportResult:
        written = 0
        failed = 0
        used_names: set[str] = set()

        for task in tasks:
            if not task.result_url:
                continue
            try:
                image = await self._fetcher.fetch(task.result_url)
            except ExportFetchError as e:
                failed += 1
                logger.warning("Fetch failed task_id=%s: %s", task.id, e)
                self._activity.error(f"Skipped image {task.id} (Fetch Error)")
                continue
            except Exception:
                failed += 1
                logger.exception("Fetch crashed task_id=%s", task.id)
                self._activity.error(f"Skipped image {task.id} (Fetch Error)")
                continue

            filename = dedupe_filename(export_filename(task, image.content_type, self._suffix), used_names)
            try:
                await strategy.write(filename, image)
            except Exception:
                failed += 1
                logger.exception("Write failed task_id=%s file=%s", task.id, filename)
                self._activity.error(f"Skipped image {task.id} (Write Error)")
                continue
            written += 1

        try:
            path = await strategy.finish(written)
        except Exception as e:
            logger.exception("Export finalization failed strategy=%s", strategy.name)
            self._activity.error(f"{strategy.name} export failed: {e}")
            return ExportResult(0, strategy.name, ExportOutcome.FAILED, failed_count=failed + written)

        if written == 0:
            if strategy.name == ArchiveWriteStrategy.name:
                self._activity.error("No valid images could be fetched for zipping.")
            else:
                self._activity.error("No images could be saved to the folder.")
            return ExportResult(0, strategy.name, ExportOutcome.FAILED, path=None, failed_count=failed)

        if strategy.name == ArchiveWriteStrategy.name:
            self._activity.success(f"ZIP archive ready: {path} ({written} images).")
        else:
            self._activity.success(f"Successfully saved {written} images to folder.")
        return ExportResult(written, strategy.name, ExportOutcome.COMPLETED, path=path, failed_count=failed)
