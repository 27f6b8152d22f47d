# src/render_queue/generation/media.py

from __future__ import annotations

import base64
import mimetypes
from collections.abc import Iterable
from pathlib import Path


def guess_mime(path: str | Path) -> str | None:
    mime, _ = mimetypes.guess_type(str(path))
    return mime


def is_image_file(path: str | Path) -> bool:
    p = Path(path)
    mime = guess_mime(p)
    return p.is_file() and bool(mime) and mime.startswith("image/")


def load_image_file(path: str | Path) -> str:
    """Read an image file and return it as a data: URL (what the service accepts as a reference)."""
    p = Path(path).expanduser()
    mime = guess_mime(p)
    if not mime or not mime.startswith("image/"):
        raise ValueError(f"Not an image file: {p}")
    encoded = base64.b64encode(p.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def expand_image_paths(paths: Iterable[str | Path]) -> list[Path]:
    """Files are taken as-is, directories contribute their image files (sorted, non-recursive)."""
    out: list[Path] = []
    for raw in paths:
        p = Path(raw).expanduser()
        if p.is_dir():
            out.extend(sorted(c for c in p.iterdir() if is_image_file(c)))
        elif is_image_file(p):
            out.append(p)
    return out
