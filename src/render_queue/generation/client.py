# src/render_queue/generation/client.py

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..core.errors import EmptyResultError, NetworkError, ServiceError
from ..tasks.task_models import GenerationConfig, Task

logger = logging.getLogger(__name__)


def api_root(base_url: str) -> str:
    """Base URL as the SDK wants it: no trailing slashes, ending in /v1."""
    return f"{(base_url or '').strip().rstrip('/')}/v1"


def _make_timeout_obj(seconds: float) -> httpx.Timeout:
    # 0 means "no timeout": a stalled call keeps its concurrency slot until it returns.
    if seconds and seconds > 0:
        return httpx.Timeout(seconds, connect=min(10.0, seconds))
    return httpx.Timeout(None)


def _service_error_message(exc: openai.APIStatusError) -> str:
    body: Any = exc.body
    if isinstance(body, dict):
        msg = body.get("message")
        if not msg and isinstance(body.get("error"), dict):
            msg = body["error"].get("message")
        if isinstance(msg, str) and msg.strip():
            return msg.strip()
    return f"HTTP Error {exc.status_code}"


def build_request_body(task: Task, config: GenerationConfig) -> dict[str, Any]:
    """JSON body sent to the images endpoint (reference images omitted when empty)."""
    body: dict[str, Any] = {
        "model": config.model,
        "prompt": task.prompt,
        "response_format": "url",
        "aspect_ratio": config.aspect_ratio.value,
        "image_size": config.image_size.value,
    }
    if task.reference_images:
        body["image"] = list(task.reference_images)
    return body


class ImageGenerationClient:
    """
    OpenAI-compatible image generation client.

    IMPORTANT:
    - automatic SDK retries are disabled: one call per claimed task
    - every failure is re-raised as NetworkError / ServiceError / EmptyResultError
    - inline (b64_json) results come back as data: URLs
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 0.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = _make_timeout_obj(timeout_seconds)
        self._http_client = http_client
        self._clients: dict[tuple[str, str], AsyncOpenAI] = {}

    def _get_client(self, config: GenerationConfig) -> AsyncOpenAI:
        if not config.api_key.strip():
            raise ServiceError("API key is not configured. Set RENDERQ_API_KEY in your .env.")
        if not config.base_url.strip():
            raise ServiceError("Base URL is not configured. Set RENDERQ_BASE_URL in your .env.")

        key = (api_root(config.base_url), config.api_key)
        client = self._clients.get(key)
        if client is None:
            client = AsyncOpenAI(
                base_url=key[0],
                api_key=config.api_key,
                timeout=self._timeout,
                max_retries=0,
                http_client=self._http_client,
            )
            self._clients[key] = client
        return client

    async def generate(self, task: Task, config: GenerationConfig) -> str:
        client = self._get_client(config)
        body = build_request_body(task, config)
        extra = {k: v for k, v in body.items() if k not in {"model", "prompt", "response_format"}}

        logger.debug(
            "POST %s/images/generations task=%s model=%s refs=%d",
            api_root(config.base_url),
            task.id,
            config.model,
            len(task.reference_images),
        )
        try:
            response = await client.images.generate(
                model=body["model"],
                prompt=body["prompt"],
                response_format="url",
                extra_body=extra,
            )
        except openai.APIStatusError as e:
            raise ServiceError(_service_error_message(e), status_code=e.status_code) from e
        except (openai.APIConnectionError, openai.APIResponseValidationError) as e:
            raise NetworkError(str(e) or "Network error") from e
        except (json.JSONDecodeError, httpx.HTTPError) as e:
            raise NetworkError(str(e) or "Network error") from e

        data = getattr(response, "data", None) or []
        if not data:
            raise EmptyResultError("No image data returned from API")

        first = data[0]
        url = getattr(first, "url", None)
        if url:
            return str(url)
        b64 = getattr(first, "b64_json", None)
        if b64:
            return f"data:image/png;base64,{b64}"
        raise EmptyResultError("No image data returned from API")

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            try:
                await client.close()
            except Exception:
                logger.debug("Client close failed.", exc_info=True)
