# src/render_queue/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from typing import Any

from ..tasks.task_models import AspectRatio, GenerationConfig, ImageSize, StagingArea
from ..tasks.task_store import TaskStore
from .activity import ActivityLog


@dataclass
class AppState:
    """
    Everything the queue operations work on.

    The task store is the only piece shared with the engine thread;
    the rest is touched by the console thread only.
    """

    # Store Settings on the state for easy access in other modules later.
    settings: Any

    task_store: TaskStore
    activity: ActivityLog
    config: GenerationConfig

    reference_images: list[str] = field(default_factory=list)
    staging: StagingArea = field(default_factory=StagingArea)

    # EngineRunner once the background engine is up (None in tests / before start).
    runner: Any = None

    _config_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def current_config(self) -> GenerationConfig:
        with self._config_lock:
            return self.config

    def update_config(self, **changes: Any) -> GenerationConfig:
        """
        Replace the active config. Tasks already dispatched keep the snapshot
        they were admitted with.
        """
        if "aspect_ratio" in changes:
            changes["aspect_ratio"] = AspectRatio(changes["aspect_ratio"])
        if "image_size" in changes:
            changes["image_size"] = ImageSize(str(changes["image_size"]).upper())
        with self._config_lock:
            self.config = replace(self.config, **changes)
            return self.config
