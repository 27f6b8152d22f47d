# tests/test_task_api.py

from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest

from render_queue.core.errors import TaskNotFoundError, ValidationError
from render_queue.core.state import AppState
from render_queue.tasks import task_api
from render_queue.tasks.task_executor import TaskExecutor
from render_queue.tasks.task_models import AspectRatio, BatchItem, ImageSize, TaskStatus
from render_queue.tasks.task_scheduler import TaskScheduler

from .fakes import FakeGenerationClient


def test_enqueue_single_uses_reference_library(state: AppState) -> None:
    task_api.add_reference_images(state, ["data:image/png;base64,AAA", ""])

    task = task_api.enqueue_single(state, "  a lighthouse at dusk  ")

    assert task.id.startswith("sgl_")
    assert task.prompt == "a lighthouse at dusk"
    assert task.reference_images == ("data:image/png;base64,AAA",)
    assert state.task_store.get(task.id).status == TaskStatus.PENDING


def test_enqueue_single_rejects_empty_prompt(state: AppState) -> None:
    with pytest.raises(ValidationError):
        task_api.enqueue_single(state, "   ")
    assert len(state.task_store) == 0


def test_enqueue_batch_drops_empty_prompts_and_keeps_order(state: AppState) -> None:
    items = [BatchItem(prompt="one"), BatchItem(prompt=" "), BatchItem(prompt="two")]

    tasks = task_api.enqueue_batch(state, items)

    assert [t.prompt for t in tasks] == ["one", "two"]
    assert all(t.id.startswith("txt_") for t in tasks)
    assert [t.id for t in state.task_store.list()] == [t.id for t in tasks]


def test_text_staging_flow(state: AppState) -> None:
    slots = task_api.stage_text_slots(state, 3)
    assert len(slots) == 3

    task_api.set_staged_prompt(state, 1, "castle")
    filled = task_api.fill_staged_prompts(state, "forest", overwrite=False, target="text")
    assert filled == 2
    assert [s.prompt for s in state.staging.texts] == ["castle", "forest", "forest"]

    tasks = task_api.promote_staged_texts(state)

    assert [t.prompt for t in tasks] == ["castle", "forest", "forest"]
    assert state.staging.texts == []


def test_fill_with_overwrite_touches_every_item(state: AppState) -> None:
    task_api.stage_text_slots(state, 2)
    task_api.set_staged_prompt(state, 2, "keep me?")

    assert task_api.fill_staged_prompts(state, "all", overwrite=True, target="text") == 2
    assert {s.prompt for s in state.staging.texts} == {"all"}


def test_fill_without_staged_items_reports_error(state: AppState) -> None:
    assert task_api.fill_staged_prompts(state, "x", overwrite=False, target="files") == 0
    assert state.activity.tail(1)[0].kind == "error"


def test_set_staged_prompt_out_of_range(state: AppState) -> None:
    task_api.stage_text_slots(state, 1)
    with pytest.raises(ValidationError):
        task_api.set_staged_prompt(state, 2, "x")


def test_image_staging_flow(state: AppState, png_file: Path) -> None:
    (png_file.parent / "notes.txt").write_text("not an image")
    task_api.add_reference_images(state, ["data:image/png;base64,REF"])

    staged = task_api.stage_image_files(state, [png_file.parent])
    assert [f.filename for f in staged] == ["cat.png"]
    assert staged[0].payload.startswith("data:image/png;base64,")

    (task,) = task_api.promote_staged_files(state)

    assert task.id.startswith("img_")
    assert task.prompt == task_api.UNTITLED_PROMPT
    assert task.original_filename == "cat.png"
    assert task.reference_images == ("data:image/png;base64,REF", staged[0].payload)
    assert state.staging.files == []


def test_retry_replaces_failed_task(state: AppState) -> None:
    store = state.task_store
    task = store.create_task("img", prompt="p", reference_images=["r"], original_filename="a.png")
    store.enqueue(task)
    store.claim_next(1)
    store.transition(task.id, TaskStatus.FAILED, error="boom")

    new = task_api.retry_task(state, task.id)

    assert new.id.startswith("retry_")
    assert new.status == TaskStatus.PENDING
    assert new.prompt == "p"
    assert new.reference_images == ("r",)
    assert new.original_filename == "a.png"
    assert store.get(task.id) is None
    assert [t.id for t in store.list()] == [new.id]


def test_retry_rejects_processing_and_unknown(state: AppState) -> None:
    task = task_api.enqueue_single(state, "p")
    state.task_store.claim_next(1)

    with pytest.raises(ValidationError):
        task_api.retry_task(state, task.id)
    with pytest.raises(TaskNotFoundError):
        task_api.retry_task(state, "sgl_404")


def test_clear_queue_keeps_processing(state: AppState) -> None:
    running = task_api.enqueue_single(state, "a")
    task_api.enqueue_single(state, "b")
    state.task_store.claim_next(1)

    assert task_api.clear_queue(state) == 1
    assert [t.id for t in task_api.list_tasks(state)] == [running.id]
    assert task_api.queue_summary(state)[TaskStatus.PROCESSING] == 1


def test_update_config_coerces_values(state: AppState) -> None:
    updated = state.update_config(aspect_ratio="1:1", image_size="4k")

    assert updated.aspect_ratio == AspectRatio.SQUARE
    assert updated.image_size == ImageSize.K4
    assert state.current_config() is updated


def test_retry_rejects_pending_task(state: AppState) -> None:
    task = task_api.enqueue_single(state, "p")

    with pytest.raises(ValidationError):
        task_api.retry_task(state, task.id)
    assert [t.id for t in state.task_store.list()] == [task.id]


@pytest.mark.asyncio
async def test_retry_leaves_task_claimed_after_the_status_read(state: AppState) -> None:
    store = state.task_store
    client = FakeGenerationClient(hold=True)
    scheduler = TaskScheduler(store, TaskExecutor(store, client, state.activity), state.current_config)
    task = task_api.enqueue_single(state, "a harbor at night")

    real_get = store.get
    reads: list[str] = []

    def get_then_claim(task_id: str):
        snapshot = real_get(task_id)
        if not reads:
            reads.append(task_id)
            # The engine admits the task right after retry looked at a stale FAILED copy.
            scheduler.tick()
            return replace(snapshot, status=TaskStatus.FAILED, error="HTTP Error 500")
        return snapshot

    store.get = get_then_claim  # type: ignore[method-assign]

    with pytest.raises(ValidationError):
        task_api.retry_task(state, task.id)

    assert [t.id for t in store.list()] == [task.id]
    assert real_get(task.id).status == TaskStatus.PROCESSING

    client.release(task.id)
    await scheduler.drain()
    assert client.started_ids == [task.id]
    assert real_get(task.id).status == TaskStatus.COMPLETED
