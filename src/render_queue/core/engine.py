# src/render_queue/core/engine.py

"""
Engine wiring and the background runner.

The engine (scheduler + executor + exporter) is async and wants its own event
loop; the console REPL is blocking (input()). So the engine runs in a
background thread and the console talks to it through the shared TaskStore
and run_coroutine_threadsafe().
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from collections.abc import Coroutine
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, TypeVar

from ..export.fetcher import HttpResultFetcher
from ..export.orchestrator import ExportOrchestrator
from ..export.strategies import ArchiveWriteStrategy
from ..generation.client import ImageGenerationClient
from ..tasks.task_executor import TaskExecutor
from ..tasks.task_scheduler import TaskScheduler
from .ports import GenerationClient, ResultFetcher
from .state import AppState

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class Engine:
    scheduler: TaskScheduler
    executor: TaskExecutor
    exporter: ExportOrchestrator
    client: GenerationClient
    fetcher: ResultFetcher

    async def aclose(self) -> None:
        for closeable in (self.client, self.fetcher):
            aclose = getattr(closeable, "aclose", None)
            if callable(aclose):
                try:
                    await aclose()
                except Exception:
                    logger.debug("Engine resource close failed.", exc_info=True)


def build_engine(
    state: AppState,
    *,
    client: GenerationClient | None = None,
    fetcher: ResultFetcher | None = None,
) -> Engine:
    """Wire the concrete engine from settings. Must be called inside the engine's event loop."""
    settings = state.settings
    client = client or ImageGenerationClient(timeout_seconds=settings.request_timeout_seconds)
    fetcher = fetcher or HttpResultFetcher()

    executor = TaskExecutor(state.task_store, client, state.activity)
    scheduler = TaskScheduler(
        state.task_store,
        executor,
        state.current_config,
        max_concurrent=settings.max_concurrent,
        interval_seconds=settings.scheduler_interval_seconds,
        admit_per_tick=settings.admit_per_tick or None,
    )
    exporter = ExportOrchestrator(
        state.task_store,
        fetcher,
        state.activity,
        archive_strategy=ArchiveWriteStrategy(settings.export_dir, folder_name=settings.archive_folder),
        filename_suffix=settings.filename_suffix,
    )
    return Engine(scheduler=scheduler, executor=executor, exporter=exporter, client=client, fetcher=fetcher)


@dataclass(slots=True)
class EngineRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event
    engine: Engine

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def call(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run a coroutine on the engine loop and block the calling thread for its result."""
        return self.submit(coro).result(timeout=timeout)

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except Exception:
            logger.debug("Failed to signal engine stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


async def _run_engine(engine: Engine, stop_event: asyncio.Event) -> None:
    try:
        await engine.scheduler.run(stop_event)
    finally:
        await engine.aclose()


def start_engine_in_background(state: AppState, **overrides: Any) -> EngineRunner | None:
    """Start the scheduler loop in a daemon thread with its own event loop."""
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        async def _build() -> Engine:
            return build_engine(state, **overrides)

        try:
            engine = loop.run_until_complete(_build())
        except Exception:
            logger.exception("Engine construction failed.")
            ready.set()
            loop.close()
            return

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        holder["engine"] = engine
        ready.set()

        try:
            loop.run_until_complete(_run_engine(engine, stop_event))
        except Exception:
            logger.exception("Engine loop crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="render-engine", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")
    engine = holder.get("engine")

    if (
        not isinstance(loop, asyncio.AbstractEventLoop)
        or not isinstance(stop_event, asyncio.Event)
        or not isinstance(engine, Engine)
    ):
        logger.error("Engine thread did not initialize properly.")
        return None

    logger.info("Engine background thread started.")
    return EngineRunner(thread=t, loop=loop, stop_event=stop_event, engine=engine)
