# src/render_queue/cli/commands.py

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from pathlib import Path
from typing import cast

from ..core.errors import ExportCancelled, RenderQueueError
from ..core.state import AppState
from ..export.orchestrator import ExportOutcome
from ..export.strategies import DirectoryWriteStrategy
from ..tasks import task_api
from ..tasks.task_models import AspectRatio, ImageSize, TaskStatus

CommandEmitter = Callable[[str], None]
CommandHandler2 = Callable[[AppState, list[str]], str]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], str]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

EXPORT_TIMEOUT_SECONDS = 3600.0


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /new, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except Exception:
            nparams = 3

        try:
            if nparams >= 3:
                h3 = cast(CommandHandler3, handler)
                return h3(state, args, emit)
            h2 = cast(CommandHandler2, handler)
            return h2(state, args)
        except RenderQueueError as e:
            return str(e)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


class ConsoleDirectoryPicker:
    """
    Directory "grant" for the console.

    With a preset answer it behaves like a remembered choice; otherwise it asks
    on stdin (from a worker thread, so the engine loop keeps running).
    An empty answer is a cancellation.
    """

    def __init__(self, answer: str | None = None, ask: Callable[[str], str] = input) -> None:
        self._answer = answer
        self._ask = ask

    async def __call__(self) -> Path:
        answer = self._answer
        if answer is None:
            answer = await asyncio.to_thread(self._ask, "Export directory (empty to cancel): ")
        answer = (answer or "").strip()
        if not answer:
            raise ExportCancelled("No directory selected")
        return Path(answer).expanduser()


def _join(args: list[str]) -> str:
    return " ".join(args).strip()


def _format_task_line(idx: int, task) -> str:
    line = f"{idx}. [{task.status.value}] {task.id}"
    if task.original_filename:
        line += f" ({task.original_filename})"
    line += f" :: {task.prompt[:60]}"
    if task.status == TaskStatus.COMPLETED and task.result_url:
        url = task.result_url
        line += f"\n     -> {url if not url.startswith('data:') else '<inline image>'}"
    if task.status == TaskStatus.FAILED and task.error:
        line += f"\n     !! {task.error} (use /retry {task.id})"
    return line


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    cfg = state.current_config()
    counts = task_api.queue_summary(state)
    runner = state.runner
    engine = "running" if runner is not None and runner.thread.is_alive() else "stopped"
    in_flight = runner.engine.scheduler.in_flight if runner is not None else 0
    queue = ", ".join(f"{s.value.lower()}={n}" for s, n in counts.items())
    return (
        "Status:\n"
        f"  Engine: {engine} (in flight: {in_flight}, cap: {state.settings.max_concurrent})\n"
        f"  Endpoint: {cfg.base_url} (key: {'set' if cfg.api_key else 'MISSING'})\n"
        f"  Model: {cfg.model}  Aspect: {cfg.aspect_ratio.value}  Size: {cfg.image_size.value}\n"
        f"  Queue: {queue}\n"
        f"  References: {len(state.reference_images)}  "
        f"Staged texts: {len(state.staging.texts)}  Staged images: {len(state.staging.files)}"
    )


_CONFIG_KEYS = {
    "model": "model",
    "aspect": "aspect_ratio",
    "aspect_ratio": "aspect_ratio",
    "size": "image_size",
    "image_size": "image_size",
    "base_url": "base_url",
    "endpoint": "base_url",
    "api_key": "api_key",
    "key": "api_key",
}


def cmd_config(state: AppState, args: list[str]) -> str:
    """
    /config              -> show generation parameters
    /config <key> <val>  -> change one (applies to tasks admitted from now on)
    """
    if len(args) < 2:
        cfg = state.current_config()
        return (
            "Generation config:\n"
            f"  model={cfg.model}\n"
            f"  aspect={cfg.aspect_ratio.value} (choices: {', '.join(a.value for a in AspectRatio)})\n"
            f"  size={cfg.image_size.value} (choices: {', '.join(s.value for s in ImageSize)})\n"
            f"  base_url={cfg.base_url}\n"
            "Usage: /config <model|aspect|size|base_url|api_key> <value>"
        )

    key = _CONFIG_KEYS.get(args[0].lower())
    if key is None:
        return f"Unknown config key: {args[0]}"
    value = _join(args[1:])
    try:
        state.update_config(**{key: value})
    except ValueError:
        return f"Invalid value for {args[0]}: {value}"
    shown = "***" if key == "api_key" else value
    state.activity.info(f"Config updated: {key}={shown}")
    return f"{key} set to {shown}. Applies to tasks admitted from now on."


def cmd_new(state: AppState, args: list[str]) -> str:
    task = task_api.enqueue_single(state, _join(args))
    return f"Queued {task.id} with {len(task.reference_images)} reference image(s)."


def cmd_refs(state: AppState, args: list[str]) -> str:
    """
    /refs add <path...>  -> add image files (or folders) to the reference library
    /refs clear          -> empty the library
    /refs                -> show library size
    """
    sub = args[0].lower() if args else "list"
    if sub == "add":
        if len(args) < 2:
            return "Usage: /refs add <path...>"
        added = task_api.add_reference_files(state, args[1:])
        return f"Added {added} reference image(s). Library size: {len(state.reference_images)}."
    if sub == "clear":
        task_api.clear_reference_images(state)
        return "Reference library cleared."
    return (
        f"Reference library: {len(state.reference_images)} image(s). "
        "Images are indexed 1..N in the order they were added."
    )


def _list_staged(state: AppState, target: str) -> str:
    items = state.staging.texts if target == "text" else state.staging.files
    if not items:
        return "Nothing staged."
    lines = []
    offset = len(state.reference_images) if target == "files" else 0
    for i, item in enumerate(items, start=1):
        label = getattr(item, "filename", None)
        prefix = f"{i}. (ref #{offset + i}) {label}: " if label else f"{i}. "
        lines.append(prefix + (item.prompt or "<empty>"))
    return "\n".join(lines)


def cmd_text(state: AppState, args: list[str]) -> str:
    """
    /text <count>          -> stage N empty prompt slots
    /text set <n> <prompt> -> edit slot n
    /text list | start | clear
    """
    if not args:
        return _list_staged(state, "text")
    sub = args[0].lower()
    if sub.isdigit():
        slots = task_api.stage_text_slots(state, int(sub))
        return f"Staged {len(slots)} empty slot(s). Fill them with /text set or /fill text."
    if sub == "set":
        if len(args) < 3 or not args[1].isdigit():
            return "Usage: /text set <n> <prompt>"
        task_api.set_staged_prompt(state, int(args[1]), _join(args[2:]), target="text")
        return f"Slot {args[1]} updated."
    if sub == "start":
        tasks = task_api.promote_staged_texts(state)
        return f"Queued {len(tasks)} text task(s)."
    if sub == "clear":
        task_api.clear_staged(state, "text")
        return "Staged texts cleared."
    return _list_staged(state, "text")


def cmd_images(state: AppState, args: list[str]) -> str:
    """
    /images <path...>        -> stage image files / folders
    /images set <n> <prompt> -> edit prompt of staged image n
    /images list | start | clear
    """
    if not args:
        return _list_staged(state, "files")
    sub = args[0].lower()
    if sub == "set":
        if len(args) < 3 or not args[1].isdigit():
            return "Usage: /images set <n> <prompt>"
        task_api.set_staged_prompt(state, int(args[1]), _join(args[2:]), target="files")
        return f"Image {args[1]} updated."
    if sub == "start":
        tasks = task_api.promote_staged_files(state)
        return f"Queued {len(tasks)} image task(s)."
    if sub == "clear":
        task_api.clear_staged(state, "files")
        return "Staged images cleared."
    if sub == "list":
        return _list_staged(state, "files")
    staged = task_api.stage_image_files(state, args)
    if not staged:
        return "No image files found."
    return f"Staged {len(staged)} image(s). Total staged: {len(state.staging.files)}."


def cmd_fill(state: AppState, args: list[str]) -> str:
    """/fill [--overwrite] <text|files> <prompt>"""
    overwrite = False
    if args and args[0] in ("--overwrite", "-o"):
        overwrite = True
        args = args[1:]
    if len(args) < 2 or args[0].lower() not in ("text", "files", "images"):
        return "Usage: /fill [--overwrite] <text|files> <prompt>"
    target = "text" if args[0].lower() == "text" else "files"
    touched = task_api.fill_staged_prompts(state, _join(args[1:]), overwrite=overwrite, target=target)
    return f"Updated {touched} staged item(s)."


def cmd_queue(state: AppState, args: list[str]) -> str:
    status = None
    if args:
        try:
            status = TaskStatus(args[0].upper())
        except ValueError:
            return f"Unknown status: {args[0]} (choices: {', '.join(s.value.lower() for s in TaskStatus)})"
    tasks = task_api.list_tasks(state, status)
    if not tasks:
        return "Queue is empty."
    counts = task_api.queue_summary(state)
    header = "Queue: " + ", ".join(f"{s.value.lower()}={n}" for s, n in counts.items())
    return "\n".join([header] + [_format_task_line(i, t) for i, t in enumerate(tasks, start=1)])


def cmd_clear(state: AppState, args: list[str]) -> str:
    removed = task_api.clear_queue(state)
    kept = state.task_store.count(TaskStatus.PROCESSING)
    return f"Removed {removed} task(s); {kept} still processing."


def cmd_retry(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /retry <task_id>"
    new_task = task_api.retry_task(state, args[0])
    return f"Re-queued as {new_task.id}."


def cmd_export(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /export         -> ask for a directory (empty answer cancels)
    /export <dir>   -> write into <dir> (falls back to a zip if it is not writable)
    /export zip     -> build a zip archive in the export dir
    """
    runner = state.runner
    if runner is None:
        return "Engine is not running."

    exporter = runner.engine.exporter
    directory: DirectoryWriteStrategy | None
    if args and args[0].lower() == "zip":
        directory = None
    else:
        directory = DirectoryWriteStrategy(ConsoleDirectoryPicker(_join(args) if args else None))

    if emit:
        emit("[EXPORT] Fetching completed results...")

    if directory is None:
        result = runner.call(exporter.export_all(), timeout=EXPORT_TIMEOUT_SECONDS)
    else:
        result = runner.call(exporter.export_all(directory_strategy=directory), timeout=EXPORT_TIMEOUT_SECONDS)

    if result.outcome == ExportOutcome.COMPLETED:
        where = f" -> {result.path}" if result.path else ""
        skipped = f", {result.failed_count} skipped" if result.failed_count else ""
        return f"Exported {result.written_count} image(s) via {result.strategy}{where}{skipped}."
    if result.outcome == ExportOutcome.CANCELLED:
        return "Export cancelled."
    if result.outcome == ExportOutcome.EMPTY:
        return "No completed images to export."
    if result.outcome == ExportOutcome.BUSY:
        return "An export is already running."
    return f"Export failed ({result.strategy}): nothing could be written."


def cmd_log(state: AppState, args: list[str]) -> str:
    n = int(args[0]) if args and args[0].isdigit() else 20
    entries = state.activity.tail(n)
    if not entries:
        return "Activity log is empty."
    return "\n".join(f"[{e.timestamp}] {e.kind.upper():7} {e.message}" for e in entries)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show engine, config and queue counters.")
registry.register("config", cmd_config, help_text="Show or change generation config: /config <key> <value>.")
registry.register("new", cmd_new, help_text="Queue one task: /new <prompt>.", aliases=["single"])
registry.register("refs", cmd_refs, help_text="Reference library: /refs add <path...> | clear.")
registry.register("text", cmd_text, help_text="Text batch: /text <count> | set <n> <prompt> | start | clear.")
registry.register(
    "images", cmd_images, help_text="Image batch: /images <path...> | set <n> <prompt> | start | clear."
)
registry.register("fill", cmd_fill, help_text="Fill staged prompts: /fill [--overwrite] <text|files> <prompt>.")
registry.register("queue", cmd_queue, help_text="List tasks: /queue [pending|processing|completed|failed].")
registry.register("clear", cmd_clear, help_text="Remove all tasks except those processing.")
registry.register("retry", cmd_retry, help_text="Re-queue a failed task under a new id: /retry <task_id>.")
registry.register("export", cmd_export, help_text="Export completed images: /export [dir|zip].")
registry.register("log", cmd_log, help_text="Show the activity log: /log [n].")
