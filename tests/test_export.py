# tests/test_export.py

from __future__ import annotations

import asyncio
import base64
import threading
import zipfile
from pathlib import Path

import httpx
import pytest

from render_queue.core.activity import ActivityLog
from render_queue.core.errors import ExportFetchError
from render_queue.core.ports import FetchedImage
from render_queue.export.fetcher import HttpResultFetcher
from render_queue.export.orchestrator import ExportOrchestrator, ExportOutcome
from render_queue.export.strategies import (
    ArchiveWriteStrategy,
    DirectoryWriteStrategy,
    dedupe_filename,
    export_filename,
)
from render_queue.tasks.task_models import Task, TaskStatus
from render_queue.tasks.task_store import TaskStore

from .conftest import PNG_BYTES
from .fakes import FakeFetcher, FakePicker

JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"


def _completed(store: TaskStore, url: str, *, prefix: str = "sgl", original_filename: str | None = None) -> Task:
    task = store.create_task(prefix, prompt="p", original_filename=original_filename)
    store.enqueue(task)
    store.claim_next(100)
    return store.transition(task.id, TaskStatus.COMPLETED, result_url=url)


def _orchestrator(store, fetcher, tmp_path: Path, *, directory=None, activity=None) -> ExportOrchestrator:
    return ExportOrchestrator(
        store,
        fetcher,
        activity if activity is not None else ActivityLog(limit=50),
        archive_strategy=ArchiveWriteStrategy(tmp_path / "zips", folder_name="render_queue_images"),
        directory_strategy=directory,
    )


# ---- filenames ----


def test_export_filename_uses_source_stem_or_task_id() -> None:
    from_file = Task("img_3", "p", (), TaskStatus.COMPLETED, 0.0, result_url="u", original_filename="cat.final.PNG")
    from_text = Task("txt_7", "p", (), TaskStatus.COMPLETED, 0.0, result_url="u")
    dotfile = Task("img_4", "p", (), TaskStatus.COMPLETED, 0.0, result_url="u", original_filename=".hidden")

    assert export_filename(from_file, "image/png") == "cat.final_render.png"
    assert export_filename(from_text, "image/jpeg") == "txt_7_render.jpg"
    assert export_filename(from_text, "image/webp", suffix="x") == "txt_7_x.png"
    assert export_filename(dotfile, "image/png") == "hidden_render.png"


def test_dedupe_filename_appends_counter() -> None:
    used: set[str] = set()
    assert dedupe_filename("a_render.png", used) == "a_render.png"
    assert dedupe_filename("a_render.png", used) == "a_render_2.png"
    assert dedupe_filename("a_render.png", used) == "a_render_3.png"


# ---- orchestrator ----


@pytest.mark.asyncio
async def test_archive_skips_failed_fetches(store: TaskStore, tmp_path: Path) -> None:
    a = _completed(store, "https://img.test/a.png")
    _completed(store, "https://img.test/missing.png")
    c = _completed(store, "https://img.test/c.jpg", prefix="img", original_filename="dog.jpeg")
    fetcher = FakeFetcher(
        {
            "https://img.test/a.png": FetchedImage(PNG_BYTES, "image/png"),
            "https://img.test/c.jpg": FetchedImage(JPEG_BYTES, "image/jpeg"),
        }
    )
    activity = ActivityLog(limit=50)

    result = await _orchestrator(store, fetcher, tmp_path, activity=activity).export_all()

    assert result.outcome == ExportOutcome.COMPLETED
    assert result.strategy == "archive"
    assert result.written_count == 2
    assert result.failed_count == 1
    assert result.path is not None and result.path.suffix == ".zip"
    with zipfile.ZipFile(result.path) as zf:
        assert sorted(zf.namelist()) == [
            "render_queue_images/dog_render.jpg",
            f"render_queue_images/{a.id}_render.png",
        ]
        assert zf.read(f"render_queue_images/{a.id}_render.png") == PNG_BYTES
    assert c.id.startswith("img_")
    assert any("(Fetch Error)" in e.message for e in activity.tail())


@pytest.mark.asyncio
async def test_archive_with_no_fetchable_images_fails(store: TaskStore, tmp_path: Path) -> None:
    _completed(store, "https://img.test/gone.png")
    activity = ActivityLog(limit=50)

    result = await _orchestrator(store, FakeFetcher(), tmp_path, activity=activity).export_all()

    assert result.outcome == ExportOutcome.FAILED
    assert result.written_count == 0
    assert result.path is None
    assert not (tmp_path / "zips").exists() or not list((tmp_path / "zips").iterdir())
    assert activity.tail(1)[0].message == "No valid images could be fetched for zipping."


@pytest.mark.asyncio
async def test_directory_strategy_writes_files(store: TaskStore, tmp_path: Path) -> None:
    a = _completed(store, "https://img.test/a.png")
    b = _completed(store, "https://img.test/b.png")
    fetcher = FakeFetcher(
        {
            a.result_url: FetchedImage(PNG_BYTES, "image/png"),
            b.result_url: FetchedImage(PNG_BYTES, "image/png"),
        }
    )
    out = tmp_path / "picked"
    directory = DirectoryWriteStrategy(FakePicker(path=out))

    result = await _orchestrator(store, fetcher, tmp_path, directory=directory).export_all()

    assert result.outcome == ExportOutcome.COMPLETED
    assert result.strategy == "directory"
    assert result.path == out
    assert sorted(p.name for p in out.iterdir()) == sorted([f"{a.id}_render.png", f"{b.id}_render.png"])
    assert (out / f"{a.id}_render.png").read_bytes() == PNG_BYTES


@pytest.mark.asyncio
async def test_directory_cancel_aborts_without_fallback(store: TaskStore, tmp_path: Path) -> None:
    a = _completed(store, "https://img.test/a.png")
    fetcher = FakeFetcher({a.result_url: FetchedImage(PNG_BYTES, "image/png")})
    directory = DirectoryWriteStrategy(FakePicker(path=None))

    result = await _orchestrator(store, fetcher, tmp_path, directory=directory).export_all()

    assert result.outcome == ExportOutcome.CANCELLED
    assert result.written_count == 0
    assert fetcher.fetched == []
    assert not (tmp_path / "zips").exists()


@pytest.mark.asyncio
async def test_directory_grant_failure_falls_back_to_archive(store: TaskStore, tmp_path: Path) -> None:
    a = _completed(store, "https://img.test/a.png")
    fetcher = FakeFetcher({a.result_url: FetchedImage(PNG_BYTES, "image/png")})
    directory = DirectoryWriteStrategy(FakePicker(error=PermissionError("denied")))

    result = await _orchestrator(store, fetcher, tmp_path, directory=directory).export_all()

    assert result.outcome == ExportOutcome.COMPLETED
    assert result.strategy == "archive"
    assert result.written_count == 1


@pytest.mark.asyncio
async def test_export_with_nothing_completed_is_empty(store: TaskStore, tmp_path: Path) -> None:
    store.enqueue(store.create_task("sgl", prompt="pending"))
    activity = ActivityLog(limit=10)

    result = await _orchestrator(store, FakeFetcher(), tmp_path, activity=activity).export_all()

    assert result.outcome == ExportOutcome.EMPTY
    assert activity.tail(1)[0].message == "No completed images to download."


@pytest.mark.asyncio
async def test_second_export_while_running_is_ignored(store: TaskStore, tmp_path: Path) -> None:
    a = _completed(store, "https://img.test/a.png")
    gate = asyncio.Event()
    fetcher = FakeFetcher({a.result_url: FetchedImage(PNG_BYTES, "image/png")}, gate=gate)
    orchestrator = _orchestrator(store, fetcher, tmp_path)

    first = asyncio.create_task(orchestrator.export_all())
    await asyncio.sleep(0.01)
    assert orchestrator.busy

    second = await orchestrator.export_all()
    assert second.outcome == ExportOutcome.BUSY

    gate.set()
    assert (await first).outcome == ExportOutcome.COMPLETED
    assert not orchestrator.busy


# ---- fetcher ----


@pytest.mark.asyncio
async def test_http_fetcher_reads_body_and_content_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/ok.jpg":
            return httpx.Response(200, content=JPEG_BYTES, headers={"content-type": "IMAGE/JPEG; charset=binary"})
        return httpx.Response(404)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = HttpResultFetcher(client=client)
    try:
        image = await fetcher.fetch("https://img.test/ok.jpg")
        assert image.data == JPEG_BYTES
        assert image.content_type == "image/jpeg"

        with pytest.raises(ExportFetchError, match="HTTP 404"):
            await fetcher.fetch("https://img.test/missing.png")
    finally:
        await fetcher.aclose()


@pytest.mark.asyncio
async def test_http_fetcher_decodes_data_urls_locally() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no network call expected")

    fetcher = HttpResultFetcher(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
    try:
        image = await fetcher.fetch(url)
        assert image.data == PNG_BYTES
        assert image.content_type == "image/png"

        with pytest.raises(ExportFetchError):
            await fetcher.fetch("data:image/png,rawtext")
    finally:
        await fetcher.aclose()


@pytest.mark.asyncio
async def test_directory_strategy_skips_failed_fetches_and_writes(store: TaskStore, tmp_path: Path) -> None:
    a = _completed(store, "https://img.test/a.png")
    _completed(store, "https://img.test/missing.png")
    c = _completed(store, "https://img.test/c.png")
    d = _completed(store, "https://img.test/d.png")
    fetcher = FakeFetcher({t.result_url: FetchedImage(PNG_BYTES, "image/png") for t in (a, c, d)})
    out = tmp_path / "picked"
    # A directory squatting on c's file name makes that one write fail.
    (out / f"{c.id}_render.png").mkdir(parents=True)
    activity = ActivityLog(limit=50)
    directory = DirectoryWriteStrategy(FakePicker(path=out))

    result = await _orchestrator(store, fetcher, tmp_path, directory=directory, activity=activity).export_all()

    assert result.outcome == ExportOutcome.COMPLETED
    assert result.strategy == "directory"
    assert result.written_count == 2
    assert result.failed_count == 2
    assert (out / f"{a.id}_render.png").read_bytes() == PNG_BYTES
    assert (out / f"{d.id}_render.png").read_bytes() == PNG_BYTES
    assert (out / f"{c.id}_render.png").is_dir()
    messages = [e.message for e in activity.tail()]
    assert any("(Fetch Error)" in m for m in messages)
    assert any("(Write Error)" in m for m in messages)
    assert not [p for p in out.iterdir() if p.name.startswith(".part-")]


@pytest.mark.asyncio
async def test_directory_strategy_with_no_fetchable_images_fails(store: TaskStore, tmp_path: Path) -> None:
    _completed(store, "https://img.test/gone-1.png")
    _completed(store, "https://img.test/gone-2.png")
    out = tmp_path / "picked"
    directory = DirectoryWriteStrategy(FakePicker(path=out))

    result = await _orchestrator(store, FakeFetcher(), tmp_path, directory=directory).export_all()

    assert result.outcome == ExportOutcome.FAILED
    assert result.strategy == "directory"
    assert result.written_count == 0
    assert result.failed_count == 2
    assert list(out.iterdir()) == []
    assert not (tmp_path / "zips").exists()


@pytest.mark.asyncio
async def test_file_writes_run_off_the_event_loop_thread(
    store: TaskStore, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from render_queue.export import strategies

    a = _completed(store, "https://img.test/a.png")
    fetcher = FakeFetcher({a.result_url: FetchedImage(PNG_BYTES, "image/png")})
    loop_thread = threading.get_ident()
    writer_threads: list[int] = []
    original = strategies._write_atomic

    def recording_write(dest: Path, data: bytes) -> None:
        writer_threads.append(threading.get_ident())
        original(dest, data)

    monkeypatch.setattr(strategies, "_write_atomic", recording_write)

    directory = DirectoryWriteStrategy(FakePicker(path=tmp_path / "picked"))
    assert (await _orchestrator(store, fetcher, tmp_path, directory=directory).export_all()).ok
    assert (await _orchestrator(store, fetcher, tmp_path).export_all()).ok

    assert len(writer_threads) == 2  # one file, one archive
    assert loop_thread not in writer_threads
