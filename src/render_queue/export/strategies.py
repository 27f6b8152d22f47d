# src/render_queue/export/strategies.py

from __future__ import annotations

"""
Export strategies.

Two mutually exclusive ways to persist completed results:
- DirectoryWriteStrategy: one file per result in a directory the host grants
- ArchiveWriteStrategy: one zip file (built in memory) under a fixed folder name

The orchestrator picks one per run and never mixes them.
"""

import asyncio
import io
import logging
import os
import re
import tempfile
import time
import zipfile
from pathlib import Path

from ..core.errors import ExportCancelled
from ..core.ports import DirectoryPicker, FetchedImage
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')


def extension_for(content_type: str) -> str:
    return "jpg" if (content_type or "").split(";", 1)[0].strip().lower() == "image/jpeg" else "png"


def export_filename(task: Task, content_type: str, suffix: str = "render") -> str:
    """
    {base}_{suffix}.{ext}

    base is the stem of the source image file when the task came from one,
    otherwise the task id.
    """
    base = task.id
    if task.original_filename:
        name = Path(task.original_filename).name
        stem = name[: name.rfind(".")] if name.rfind(".") > 0 else name
        base = stem or name or task.id
    base = _UNSAFE.sub("_", base).strip(" .") or task.id
    return f"{base}_{suffix}.{extension_for(content_type)}"


def _write_atomic(dest: Path, data: bytes) -> None:
    """Write data next to dest and move it into place (runs in a worker thread)."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".part-", dir=dest.parent)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def dedupe_filename(name: str, used: set[str]) -> str:
    if name not in used:
        used.add(name)
        return name
    stem, dot, ext = name.rpartition(".")
    n = 2
    while True:
        candidate = f"{stem}_{n}{dot}{ext}"
        if candidate not in used:
            used.add(candidate)
            return candidate
        n += 1


class ExportStrategy:
    """Base class: prepare() once, write() per item, finish() once."""

    name = "base"

    async def prepare(self) -> None:
        return

    async def write(self, filename: str, image: FetchedImage) -> None:
        raise NotImplementedError

    async def finish(self, written: int) -> Path | None:
        return None


class DirectoryWriteStrategy(ExportStrategy):
    """
    Write each result into a directory chosen through the picker.

    prepare() raises ExportCancelled if the user declines and any other
    exception if access could not be granted.
    """

    name = "directory"

    def __init__(self, picker: DirectoryPicker) -> None:
        self._picker = picker
        self._target: Path | None = None

    @property
    def target(self) -> Path | None:
        return self._target

    async def prepare(self) -> None:
        self._target = None
        chosen = await self._picker()
        if chosen is None:
            raise ExportCancelled("No directory selected")
        target = Path(chosen).expanduser()
        target.mkdir(parents=True, exist_ok=True)
        if not target.is_dir() or not os.access(target, os.W_OK):
            raise PermissionError(f"Directory is not writable: {target}")
        self._target = target

    async def write(self, filename: str, image: FetchedImage) -> None:
        if self._target is None:
            raise RuntimeError("prepare() must succeed before write()")
        await asyncio.to_thread(_write_atomic, self._target / filename, image.data)

    async def finish(self, written: int) -> Path | None:
        return self._target


class ArchiveWriteStrategy(ExportStrategy):
    """Collect results into an in-memory zip and emit one archive file."""

    name = "archive"

    def __init__(
        self,
        output_dir: str | Path,
        *,
        folder_name: str = "render_queue_images",
        archive_prefix: str = "render_batch",
    ) -> None:
        self._output_dir = Path(output_dir)
        self._folder = folder_name.strip("/") or "images"
        self._prefix = archive_prefix
        self._buffer: io.BytesIO | None = None
        self._zip: zipfile.ZipFile | None = None
        self.entries: list[str] = []

    async def prepare(self) -> None:
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, "w", compression=zipfile.ZIP_DEFLATED)
        self.entries = []

    async def write(self, filename: str, image: FetchedImage) -> None:
        if self._zip is None:
            raise RuntimeError("prepare() must succeed before write()")
        arcname = f"{self._folder}/{filename}"
        self._zip.writestr(arcname, image.data)
        self.entries.append(arcname)

    async def finish(self, written: int) -> Path | None:
        zf, buf = self._zip, self._buffer
        self._zip, self._buffer = None, None
        if zf is None or buf is None:
            return None
        zf.close()
        if written <= 0:
            return None

        dest = self._output_dir / f"{self._prefix}_{int(time.time() * 1000)}.zip"
        await asyncio.to_thread(_write_atomic, dest, buf.getvalue())
        logger.info("Archive written: %s (%d entries)", dest, written)
        return dest
