# src/render_queue/export/fetcher.py

from __future__ import annotations

import base64
import binascii
import logging

import httpx

from ..core.errors import ExportFetchError
from ..core.ports import FetchedImage

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/png"


def _decode_data_url(url: str) -> FetchedImage:
    header, sep, payload = url.partition(",")
    if not sep:
        raise ExportFetchError("Malformed data URL")
    meta = header[len("data:"):]
    parts = [p.strip() for p in meta.split(";") if p.strip()]
    content_type = parts[0] if parts and "/" in parts[0] else DEFAULT_CONTENT_TYPE
    if "base64" not in parts:
        raise ExportFetchError("Only base64 data URLs are supported")
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ExportFetchError(f"Invalid base64 payload: {e}") from e
    return FetchedImage(data=data, content_type=content_type)


class HttpResultFetcher:
    """Fetch result bytes over HTTP(S); data: URLs are decoded locally."""

    def __init__(self, *, timeout_seconds: float = 60.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True)

    async def fetch(self, url: str) -> FetchedImage:
        if url.startswith("data:"):
            return _decode_data_url(url)
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ExportFetchError(f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ExportFetchError(str(e) or e.__class__.__name__) from e

        content_type = response.headers.get("content-type", DEFAULT_CONTENT_TYPE)
        content_type = content_type.split(";", 1)[0].strip().lower() or DEFAULT_CONTENT_TYPE
        return FetchedImage(data=response.content, content_type=content_type)

    async def aclose(self) -> None:
        await self._client.aclose()
