# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from render_queue.core.activity import ActivityLog
from render_queue.core.state import AppState
from render_queue.tasks.task_models import AspectRatio, GenerationConfig, ImageSize
from render_queue.tasks.task_store import TaskStore

# Smallest valid PNG (1x1, transparent).
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000154a24f5d0000000049454e44ae426082"
)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the engine wiring.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated from the environment and any .env file.
    """
    return SimpleNamespace(
        app_name="render-queue-test",
        data_dir=tmp_path / "data",
        export_dir=tmp_path / "exports",
        archive_folder="render_queue_images",
        filename_suffix="render",
        max_concurrent=2,
        scheduler_interval_seconds=0.001,
        admit_per_tick=1,
        request_timeout_seconds=0.0,
        activity_log_limit=100,
    )


@pytest.fixture()
def gen_config() -> GenerationConfig:
    return GenerationConfig(
        api_key="sk-test",
        base_url="https://api.example.test",
        model="nano-banana-2",
        aspect_ratio=AspectRatio.MOBILE,
        image_size=ImageSize.K2,
    )


@pytest.fixture()
def store() -> TaskStore:
    return TaskStore()


@pytest.fixture()
def state(settings: SimpleNamespace, store: TaskStore, gen_config: GenerationConfig) -> AppState:
    return AppState(
        settings=settings,
        task_store=store,
        activity=ActivityLog(limit=settings.activity_log_limit),
        config=gen_config,
    )


@pytest.fixture()
def png_file(tmp_path: Path) -> Path:
    p = tmp_path / "images" / "cat.png"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(PNG_BYTES)
    return p
