# src/render_queue/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the task store, activity log and generation config into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.activity import ActivityLog
from ..core.state import AppState
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.export_dir.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    state = AppState(
        settings=settings,
        task_store=TaskStore(),
        activity=ActivityLog(limit=settings.activity_log_limit),
        config=settings.generation_config(),
    )
    if not state.config.api_key:
        state.activity.error("API key is not set (RENDERQ_API_KEY). Tasks will fail until it is configured.")
    return state
