# src/render_queue/tasks/task_scheduler.py

from __future__ import annotations

"""
Task scheduler.

A small admission loop that:
- counts PROCESSING tasks against the concurrency cap,
- claims the oldest PENDING task (atomic PENDING -> PROCESSING in the store),
- hands it to the executor as an independent asyncio task,
- never waits for a task to finish.

Timing:
- one admission per tick by default (the "stagger");
- the loop wakes on store changes (new work, finished work) or an idle timeout,
  then waits interval_seconds before the next tick.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable

from ..core.ports import TaskRepo
from .task_executor import TaskExecutor
from .task_models import GenerationConfig, Task

logger = logging.getLogger(__name__)

ConfigProvider = Callable[[], GenerationConfig]


class TaskScheduler:
    def __init__(
        self,
        store: TaskRepo,
        executor: TaskExecutor,
        config_provider: ConfigProvider,
        *,
        max_concurrent: int = 30,
        interval_seconds: float = 0.5,
        admit_per_tick: int | None = 1,
        idle_seconds: float = 5.0,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._store = store
        self._executor = executor
        self._config_provider = config_provider
        self.max_concurrent = int(max_concurrent)
        self._interval_s = max(0.0, float(interval_seconds))
        self._admit_per_tick = admit_per_tick if admit_per_tick and admit_per_tick > 0 else None
        self._idle_s = max(0.01, float(idle_seconds))

        self._running: set[asyncio.Task[Task | None]] = set()
        self._wake: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def in_flight(self) -> int:
        return len(self._running)

    # ---- admission ----

    def tick(self) -> list[Task]:
        """
        Admit pending tasks (FIFO) while below the cap.

        Must be called from inside the running event loop.
        Returns the claimed tasks.
        """
        limit = self._admit_per_tick if self._admit_per_tick is not None else self.max_concurrent
        admitted: list[Task] = []

        while len(admitted) < limit:
            task = self._store.claim_next(self.max_concurrent)
            if task is None:
                break
            # Snapshot now: later config changes must not affect this dispatch.
            config = self._config_provider()
            self._spawn(task, config)
            admitted.append(task)

        if admitted:
            logger.debug(
                "Admitted %s (in_flight=%d cap=%d)",
                ", ".join(t.id for t in admitted),
                len(self._running),
                self.max_concurrent,
            )
        return admitted

    def _spawn(self, task: Task, config: GenerationConfig) -> None:
        running = asyncio.create_task(
            self._executor.execute(task, config),
            name=f"render-{task.id}",
        )
        self._running.add(running)
        running.add_done_callback(self._running.discard)

    # ---- loop ----

    def _on_store_change(self) -> None:
        loop, wake = self._loop, self._wake
        if loop is None or wake is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(wake.set)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Run until stop_event is set (or the coroutine is cancelled).

        In-flight executions are awaited on exit, never cancelled.
        """
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        stop = stop_event or asyncio.Event()
        subscribe = getattr(self._store, "subscribe", None)
        unsubscribe = getattr(self._store, "unsubscribe", None)
        if callable(subscribe):
            subscribe(self._on_store_change)

        logger.info(
            "Scheduler started (cap=%d interval=%.2fs admit_per_tick=%s)",
            self.max_concurrent,
            self._interval_s,
            self._admit_per_tick or "fill",
        )
        try:
            while not stop.is_set():
                self._wake.clear()
                try:
                    self.tick()
                except Exception:
                    logger.exception("Scheduler tick failed")

                await self._wait_for_change(stop)
                if stop.is_set():
                    break
                await asyncio.sleep(self._interval_s)
        finally:
            if callable(unsubscribe):
                unsubscribe(self._on_store_change)
            await self.drain()
            self._wake = None
            self._loop = None
            logger.info("Scheduler stopped.")

    async def _wait_for_change(self, stop: asyncio.Event) -> None:
        assert self._wake is not None
        waiters = [
            asyncio.create_task(self._wake.wait()),
            asyncio.create_task(stop.wait()),
        ]
        try:
            await asyncio.wait(waiters, timeout=self._idle_s, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await w

    async def drain(self) -> None:
        """Wait for every in-flight execution to finish."""
        if not self._running:
            return
        logger.info("Waiting for %d in-flight task(s)...", len(self._running))
        await asyncio.gather(*list(self._running), return_exceptions=True)
