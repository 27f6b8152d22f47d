# src/render_queue/tasks/task_executor.py

from __future__ import annotations

import logging

from ..core.activity import ActivityLog
from ..core.errors import EmptyResultError, GenerationError
from ..core.ports import GenerationClient, TaskRepo
from .task_models import GenerationConfig, Task, TaskStatus

logger = logging.getLogger(__name__)


def _short(text: str, limit: int = 15) -> str:
    text = " ".join((text or "").split())
    return text if len(text) <= limit else text[:limit] + "..."


class TaskExecutor:
    """
    Runs one claimed (PROCESSING) task end-to-end.

    - calls the generation client exactly once (no internal retries)
    - writes COMPLETED/FAILED back to the store
    - never lets an exception escape: the scheduler loop must survive any task
    """

    def __init__(self, store: TaskRepo, client: GenerationClient, activity: ActivityLog) -> None:
        self._store = store
        self._client = client
        self._activity = activity

    async def execute(self, task: Task, config: GenerationConfig) -> Task | None:
        name = task.display_name
        self._activity.info(f"[ASYNC START] {name} ({_short(task.prompt)})")

        try:
            result_url = await self._client.generate(task, config)
            if not result_url:
                raise EmptyResultError("No image data returned from API")
        except GenerationError as e:
            return self._fail(task, str(e) or e.__class__.__name__)
        except Exception as e:
            logger.exception("Generation crashed task_id=%s", task.id)
            return self._fail(task, str(e) or "Unknown API Error")

        try:
            updated = self._store.transition(task.id, TaskStatus.COMPLETED, result_url=result_url)
        except Exception:
            logger.exception("transition(completed) failed task_id=%s", task.id)
            return None
        if updated is None:
            logger.warning("Task %s vanished before completion could be recorded", task.id)
            return None
        self._activity.success(f"[COMPLETED] {name}")
        return updated

    def _fail(self, task: Task, message: str) -> Task | None:
        try:
            updated = self._store.transition(task.id, TaskStatus.FAILED, error=message)
        except Exception:
            logger.exception("transition(failed) failed task_id=%s", task.id)
            return None
        if updated is None:
            logger.warning("Task %s vanished before failure could be recorded: %s", task.id, message)
            return None
        self._activity.error(f"[FAILED] {task.display_name}: {message}")
        return updated
