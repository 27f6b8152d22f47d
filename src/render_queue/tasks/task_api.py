# src/render_queue/tasks/task_api.py

from __future__ import annotations

import itertools
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Literal

from ..core.errors import TaskNotFoundError, ValidationError
from ..core.state import AppState
from ..generation.media import expand_image_paths, load_image_file
from .task_models import BatchItem, StagedFile, StagedText, Task, TaskStatus

logger = logging.getLogger(__name__)

UNTITLED_PROMPT = "Untitled"

_staged_ids = itertools.count(1)


def _staged_id(prefix: str) -> str:
    return f"{prefix}{next(_staged_ids)}"


# ---- reference library ----


def add_reference_images(state: AppState, payloads: Iterable[str]) -> int:
    """Append encoded images to the shared reference library (order is kept)."""
    added = [p for p in payloads if p]
    state.reference_images.extend(added)
    return len(added)


def add_reference_files(state: AppState, paths: Iterable[str | Path]) -> int:
    files = expand_image_paths(paths)
    added = 0
    for path in files:
        try:
            added += add_reference_images(state, [load_image_file(path)])
        except (OSError, ValueError) as e:
            state.activity.error(f"Could not load reference {path}: {e}")
    if added:
        state.activity.info(f"Added {added} reference image(s); library size {len(state.reference_images)}.")
    return added


def clear_reference_images(state: AppState) -> None:
    state.reference_images.clear()
    state.activity.info("Reference library cleared.")


# ---- enqueue ----


def enqueue_single(state: AppState, prompt: str, refs: Iterable[str] | None = None) -> Task:
    """Queue one task. Raises ValidationError on an empty prompt (nothing is stored)."""
    text = (prompt or "").strip()
    if not text:
        raise ValidationError("Prompt is empty.")

    references = list(state.reference_images) if refs is None else list(refs)
    task = state.task_store.create_task("sgl", prompt=text, reference_images=references)
    state.task_store.enqueue(task)
    state.activity.info("Single task added to queue.")
    return task


def enqueue_batch(state: AppState, items: Iterable[BatchItem], *, prefix: str = "txt") -> list[Task]:
    """
    Queue many tasks in the given order.

    Items with an empty prompt are dropped. Each item's reference_images are
    used as-is (callers prepend the library themselves).
    """
    tasks: list[Task] = []
    dropped = 0
    for item in items:
        text = (item.prompt or "").strip()
        if not text:
            dropped += 1
            continue
        tasks.append(
            state.task_store.create_task(
                prefix,
                prompt=text,
                reference_images=item.reference_images,
                original_filename=item.original_filename,
            )
        )

    state.task_store.enqueue_many(tasks)
    if dropped:
        logger.info("enqueue_batch dropped %d item(s) with an empty prompt", dropped)
    return tasks


# ---- text staging ----


def stage_text_slots(state: AppState, count: int) -> list[StagedText]:
    """Replace the staged text list with `count` empty slots (at least one)."""
    n = max(1, int(count))
    state.staging.texts = [StagedText(id=_staged_id("t")) for _ in range(n)]
    state.activity.info(f"Generated list with {n} empty slots.")
    return state.staging.texts


def set_staged_prompt(state: AppState, index: int, prompt: str, *, target: Literal["text", "files"] = "text") -> None:
    """Edit one staged draft (1-based index, as shown to the operator)."""
    items = state.staging.texts if target == "text" else state.staging.files
    if index < 1 or index > len(items):
        raise ValidationError(f"No staged {target} item #{index} (have {len(items)}).")
    items[index - 1].prompt = prompt


def promote_staged_texts(state: AppState) -> list[Task]:
    if not state.staging.texts:
        return []
    refs = tuple(state.reference_images)
    items = [BatchItem(prompt=s.prompt, reference_images=refs) for s in state.staging.texts]
    tasks = enqueue_batch(state, items, prefix="txt")
    state.staging.texts = []
    state.activity.info(f"Added {len(tasks)} text tasks to processing queue.")
    return tasks


# ---- image staging ----


def stage_image_files(state: AppState, paths: Iterable[str | Path]) -> list[StagedFile]:
    """Load image files (directories are expanded) into the staging list."""
    staged: list[StagedFile] = []
    for path in expand_image_paths(paths):
        try:
            payload = load_image_file(path)
        except (OSError, ValueError) as e:
            state.activity.error(f"Could not load {path}: {e}")
            continue
        staged.append(StagedFile(id=_staged_id("f"), path=path, payload=payload))

    if staged:
        state.staging.files.extend(staged)
        state.activity.info(f"Loaded {len(staged)} images from folder to staging list.")
    return staged


def promote_staged_files(state: AppState) -> list[Task]:
    ready = [f for f in state.staging.files if f.payload]
    if not ready:
        return []
    refs = tuple(state.reference_images)
    items = [
        BatchItem(
            prompt=f.prompt.strip() or UNTITLED_PROMPT,
            reference_images=refs + (f.payload,),
            original_filename=f.filename,
        )
        for f in ready
    ]
    tasks = enqueue_batch(state, items, prefix="img")
    state.staging.files = []
    state.activity.info(f"Added {len(tasks)} image tasks to processing queue.")
    return tasks


def fill_staged_prompts(
    state: AppState,
    prompt: str,
    *,
    overwrite: bool,
    target: Literal["text", "files"],
) -> int:
    """Apply one prompt to staged drafts: only empty ones, or all of them when overwrite."""
    if not prompt:
        return 0
    items: list[StagedText] | list[StagedFile]
    items = state.staging.texts if target == "text" else state.staging.files
    if not items:
        what = "text prompts" if target == "text" else "images"
        state.activity.error(f"No staged {what} to fill.")
        return 0

    touched = 0
    for item in items:
        if overwrite or not item.prompt.strip():
            item.prompt = prompt
            touched += 1
    state.activity.info(f"Updated {touched} staged {'text' if target == 'text' else 'image'} items.")
    return touched


def clear_staged(state: AppState, target: Literal["text", "files"]) -> None:
    if target == "text":
        state.staging.texts = []
    else:
        state.staging.files = []


# ---- queue management ----


def clear_queue(state: AppState) -> int:
    """Drop every task that is not PROCESSING (in-flight calls stay tracked)."""
    removed = state.task_store.clear(keep=(TaskStatus.PROCESSING,))
    state.activity.info("Queue cleared.")
    return removed


def retry_task(state: AppState, task_id: str) -> Task:
    """
    Re-queue a FAILED task under a new id.

    The old record is removed and a fresh PENDING copy (same prompt and
    reference images) is appended. The status check is repeated inside the
    store swap, so a task that changed status in between is left alone.
    """
    old = state.task_store.get(task_id)
    if old is None:
        raise TaskNotFoundError(f"Task not found: {task_id}")
    if old.status != TaskStatus.FAILED:
        raise ValidationError(f"Only failed tasks can be retried ({task_id} is {old.status.value}).")

    new_task = state.task_store.create_task(
        "retry",
        prompt=old.prompt,
        reference_images=old.reference_images,
        original_filename=old.original_filename,
    )
    if state.task_store.replace_with(task_id, new_task, expected=(TaskStatus.FAILED,)) is None:
        current = state.task_store.get(task_id)
        if current is None:
            raise TaskNotFoundError(f"Task not found: {task_id}")
        raise ValidationError(f"Only failed tasks can be retried ({task_id} is {current.status.value}).")
    state.activity.info(f"Retrying task {task_id}...")
    return new_task


def list_tasks(state: AppState, status: TaskStatus | None = None) -> list[Task]:
    return state.task_store.list(status)


def queue_summary(state: AppState) -> dict[TaskStatus, int]:
    return state.task_store.counts()
