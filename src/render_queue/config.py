# src/render_queue/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (the API key is checked per request).
- Endpoint/credential persistence is the job of .env, not of the app.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .tasks.task_models import AspectRatio, GenerationConfig, ImageSize

logger = logging.getLogger(__name__)

ENV_PREFIX = "RENDERQ"

DEFAULT_BASE_URL = "https://api.bltcy.ai"
DEFAULT_MODEL = "nano-banana-2"
MAX_CONCURRENT_TASKS = 30
STAGGER_DELAY_SECONDS = 0.5


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid integer %s=%r", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid number %s=%r", name, raw)
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_choice(name: str, enum_cls, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return enum_cls(raw.strip().upper() if enum_cls is ImageSize else raw.strip())
    except ValueError:
        logger.warning("Ignoring unsupported %s=%r (allowed: %s)", name, raw, ", ".join(enum_cls))
        return default


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Rendering service ----
    api_key: str
    base_url: str
    model: str
    aspect_ratio: AspectRatio
    image_size: ImageSize
    request_timeout_seconds: float  # 0 => no timeout

    # ---- Scheduler ----
    max_concurrent: int
    scheduler_interval_seconds: float
    admit_per_tick: int  # 0 => fill up to the cap

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    export_dir: Path

    # ---- Export naming ----
    archive_folder: str
    filename_suffix: str

    activity_log_limit: int

    @staticmethod
    def from_env(*, load_env_file: bool = True) -> "Settings":
        if load_env_file:
            load_dotenv(override=False)

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/render_queue"))

        return Settings(
            app_name=_env(_k("APP_NAME"), "render-queue"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            api_key=(_first_env(_k("API_KEY"), "OPENAI_API_KEY", default="") or "").strip(),
            base_url=_env(_k("BASE_URL"), DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL,
            model=_env(_k("MODEL"), DEFAULT_MODEL).strip() or DEFAULT_MODEL,
            aspect_ratio=_env_choice(_k("ASPECT_RATIO"), AspectRatio, AspectRatio.MOBILE),
            image_size=_env_choice(_k("IMAGE_SIZE"), ImageSize, ImageSize.K2),
            request_timeout_seconds=max(0.0, _env_float(_k("REQUEST_TIMEOUT_SECONDS"), 0.0)),
            max_concurrent=max(1, _env_int(_k("MAX_CONCURRENT"), MAX_CONCURRENT_TASKS)),
            scheduler_interval_seconds=max(
                0.01, _env_float(_k("SCHEDULER_INTERVAL_SECONDS"), STAGGER_DELAY_SECONDS)
            ),
            admit_per_tick=max(0, _env_int(_k("ADMIT_PER_TICK"), 1)),
            data_dir=data_dir,
            export_dir=_env_path(_k("EXPORT_DIR"), data_dir / "exports"),
            archive_folder=_env(_k("ARCHIVE_FOLDER"), "render_queue_images").strip("/ ")
            or "render_queue_images",
            filename_suffix=_env(_k("FILENAME_SUFFIX"), "render").strip() or "render",
            activity_log_limit=max(10, _env_int(_k("ACTIVITY_LOG_LIMIT"), 500)),
        )

    def generation_config(self) -> GenerationConfig:
        """Snapshot of the rendering parameters applied to newly dispatched tasks."""
        return GenerationConfig(
            api_key=self.api_key,
            base_url=self.base_url,
            model=self.model,
            aspect_ratio=self.aspect_ratio,
            image_size=self.image_size,
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS
