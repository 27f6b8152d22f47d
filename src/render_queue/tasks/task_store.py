# src/render_queue/tasks/task_store.py

from __future__ import annotations

import itertools
import logging
import threading
import time
from collections.abc import Callable, Iterable

from ..core.errors import InvalidTransitionError
from .task_models import Task, TaskStatus

logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]

_ALLOWED: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class TaskStore:
    """
    In-memory task store (the queue does not survive a restart).

    Ordering:
    - tasks are kept in insertion order; "oldest pending" is the first PENDING record

    Thread-safety:
    - every method takes one lock; records are immutable and replaced as a whole,
      so readers never see a half-updated status/result/error triple
    - change listeners run after the lock is released
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tasks: dict[str, Task] = {}
        self._seq = itertools.count(1)
        self._listeners: list[ChangeListener] = []

    # ---- low-level helpers ----

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("TaskStore change listener failed")

    def _transition_locked(
        self,
        task_id: str,
        new_status: TaskStatus,
        result_url: str | None,
        error: str | None,
    ) -> Task | None:
        current = self._tasks.get(task_id)
        if current is None:
            return None
        if new_status not in _ALLOWED[current.status]:
            raise InvalidTransitionError(
                f"Task {task_id}: {current.status.value} -> {new_status.value} is not allowed"
            )
        updated = current.with_status(new_status, result_url=result_url, error=error)
        self._tasks[task_id] = updated
        return updated

    # ---- listeners ----

    def subscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ---- public API ----

    def new_id(self, prefix: str) -> str:
        with self._lock:
            return f"{prefix}_{next(self._seq)}"

    def create_task(
        self,
        prefix: str,
        *,
        prompt: str,
        reference_images: Iterable[str] = (),
        original_filename: str | None = None,
    ) -> Task:
        """Build a fresh PENDING task with a unique id (not yet enqueued)."""
        return Task(
            id=self.new_id(prefix),
            prompt=prompt,
            reference_images=tuple(reference_images),
            status=TaskStatus.PENDING,
            created_at=time.monotonic(),
            original_filename=original_filename,
        )

    def enqueue(self, task: Task) -> None:
        self.enqueue_many([task])

    def enqueue_many(self, tasks: Iterable[Task]) -> int:
        batch = list(tasks)
        if not batch:
            return 0
        with self._lock:
            for task in batch:
                if task.id in self._tasks:
                    raise ValueError(f"duplicate task id: {task.id}")
                if task.status != TaskStatus.PENDING:
                    raise ValueError(f"only PENDING tasks can be enqueued (got {task.status.value})")
            for task in batch:
                self._tasks[task.id] = task
            total = len(self._tasks)
        logger.debug("Enqueued %d task(s); store size=%d", len(batch), total)
        self._notify()
        return len(batch)

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def transition(
        self,
        task_id: str,
        new_status: TaskStatus,
        *,
        result_url: str | None = None,
        error: str | None = None,
    ) -> Task | None:
        """
        Replace the status fields of one task as a unit.

        Returns the updated record, or None if the id no longer exists
        (e.g. removed while the call was in flight).
        """
        with self._lock:
            updated = self._transition_locked(task_id, new_status, result_url, error)
        if updated is None:
            logger.debug("transition ignored: task %s no longer exists", task_id)
            return None
        logger.debug("Task %s -> %s", task_id, new_status.value)
        self._notify()
        return updated

    def claim_next(self, max_processing: int) -> Task | None:
        """
        Atomically admit the oldest PENDING task.

        Returns None when max_processing tasks are already PROCESSING
        or nothing is pending. The check and the claim happen under one lock.
        """
        with self._lock:
            processing = 0
            candidate: Task | None = None
            for task in self._tasks.values():
                if task.status == TaskStatus.PROCESSING:
                    processing += 1
                elif candidate is None and task.status == TaskStatus.PENDING:
                    candidate = task
            if candidate is None or processing >= max_processing:
                return None
            claimed = self._transition_locked(candidate.id, TaskStatus.PROCESSING, None, None)
        self._notify()
        return claimed

    def remove(self, task_id: str) -> Task | None:
        with self._lock:
            removed = self._tasks.pop(task_id, None)
        if removed is not None:
            self._notify()
        return removed

    def replace_with(
        self,
        task_id: str,
        new_task: Task,
        *,
        expected: Iterable[TaskStatus] | None = None,
    ) -> Task | None:
        """
        Remove task_id and append new_task in one step. Returns the removed record.

        With `expected`, the swap only happens if the current status is one of
        them (checked under the lock); otherwise nothing changes and None is returned.
        """
        with self._lock:
            old = self._tasks.get(task_id)
            if old is None:
                return None
            if expected is not None and old.status not in frozenset(expected):
                return None
            if new_task.id in self._tasks:
                raise ValueError(f"duplicate task id: {new_task.id}")
            del self._tasks[task_id]
            self._tasks[new_task.id] = new_task
        self._notify()
        return old

    def clear(self, *, keep: Iterable[TaskStatus] = (TaskStatus.PROCESSING,)) -> int:
        """Remove every task whose status is not in keep. Returns how many were removed."""
        keep_set = frozenset(keep)
        with self._lock:
            before = len(self._tasks)
            self._tasks = {tid: t for tid, t in self._tasks.items() if t.status in keep_set}
            removed = before - len(self._tasks)
        if removed:
            self._notify()
        return removed

    def count(self, status: TaskStatus | None = None) -> int:
        with self._lock:
            if status is None:
                return len(self._tasks)
            return sum(1 for t in self._tasks.values() if t.status == status)

    def counts(self) -> dict[TaskStatus, int]:
        with self._lock:
            out = {s: 0 for s in TaskStatus}
            for t in self._tasks.values():
                out[t.status] += 1
            return out

    def list(self, status: TaskStatus | Iterable[TaskStatus] | None = None) -> list[Task]:
        """Snapshot in insertion order, optionally filtered by status."""
        with self._lock:
            tasks = list(self._tasks.values())
        if status is None:
            return tasks
        wanted = {status} if isinstance(status, TaskStatus) else set(status)
        return [t for t in tasks if t.status in wanted]

    def __len__(self) -> int:
        return self.count()
