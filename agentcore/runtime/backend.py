"""HTTP client for an Ollama-compatible inference backend.

Handles retries, error mapping, and newline-delimited JSON streaming. The
ModelRuntime builds lifecycle semantics on top of these raw calls.

Error bodies are capped at MAX_ERROR_BODY_SIZE so a misbehaving backend
cannot exhaust memory.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import urlparse

import httpx

from agentcore.config.schema import ModelRuntimeConfig
from agentcore.core.errors import (
    BackendResponseError,
    BackendUnreachableError,
    ConfigError,
    NotAvailableError,
)

logger = logging.getLogger(__name__)

# Hosts that are considered safe for HTTP (non-HTTPS) connections
_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "[::1]"})

MAX_ERROR_BODY_SIZE: int = 10 * 1024  # 10 KB

MAX_RETRY_DELAY = 10.0
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


def validate_base_url(url: str, allow_insecure: bool = False) -> None:
    """Reject backend URLs that could point requests somewhere unintended.

    Rules:
    - HTTPS URLs are always allowed
    - HTTP URLs are only allowed for loopback addresses unless allow_insecure
    - Other schemes (file://, ftp://, etc.) and scheme-less URLs are rejected

    Raises:
        ConfigError: If the URL fails validation.
    """
    if not url:
        raise ConfigError("Backend endpoint cannot be empty")

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    host = parsed.hostname or ""

    if scheme == "https":
        return

    if scheme == "http":
        if allow_insecure or host.lower() in _LOOPBACK_HOSTS:
            return
        raise ConfigError(
            f"HTTP endpoint '{url}' is only allowed for localhost. "
            f"Use HTTPS, or set allow_insecure_http=true to override."
        )

    if not scheme:
        raise ConfigError(f"Backend endpoint '{url}' must include a scheme (https:// or http://)")

    raise ConfigError(
        f"Backend endpoint scheme '{scheme}' is not allowed. Use https:// or http://localhost."
    )


def _error_detail(body: bytes) -> str:
    text = body[:MAX_ERROR_BODY_SIZE].decode(errors="replace")
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return text


class OllamaBackend:
    """Async client for the inference backend's HTTP API.

    Endpoints used: ``/api/tags``, ``/api/ps``, ``/api/generate``,
    ``/api/chat``, ``/api/pull``, ``/api/show`` and ``/api/embeddings``.

    Connection failures, timeouts, 429 and 5xx are retried with exponential
    backoff and jitter. A 404 for a request naming a model raises
    NotAvailableError. Other non-2xx answers raise BackendResponseError.

    Example:
        backend = OllamaBackend(ModelRuntimeConfig())
        try:
            tags = await backend.list_models()
        finally:
            await backend.aclose()
    """

    def __init__(self, config: ModelRuntimeConfig) -> None:
        """Initialize the backend client.

        Raises:
            ConfigError: If the endpoint fails URL validation.
        """
        base_url = config.resolved_endpoint()
        validate_base_url(base_url, allow_insecure=config.allow_insecure_http)

        self._base_url = base_url
        self._api_key = config.api_key
        self._timeout = config.request_timeout
        self._max_retries = config.max_retries
        self._retry_backoff = config.retry_backoff

        # Lazily created, instance-owned
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client. Safe to call multiple times."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with 0-1s of jitter, capped at MAX_RETRY_DELAY."""
        delay = (self._retry_backoff ** attempt) + random.uniform(0, 1)
        return min(delay, MAX_RETRY_DELAY)

    def _raise_for_status(self, status_code: int, body: bytes, model: str | None) -> None:
        detail = _error_detail(body)
        if status_code == 404 and model:
            raise NotAvailableError(model, f"Model {model} not found in backend: {detail}")
        raise BackendResponseError(
            f"Backend request failed with status {status_code}: {detail}",
            status_code=status_code,
        )

    def _unreachable(self, e: httpx.HTTPError) -> BackendUnreachableError:
        attempts = self._max_retries + 1
        if isinstance(e, httpx.TimeoutException):
            return BackendUnreachableError(
                f"Backend request timed out after {attempts} attempts: {e}"
            )
        return BackendUnreachableError(
            f"Failed to connect to backend at {self._base_url} after {attempts} attempts: {e}"
        )

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> dict[str, Any]:
        """Make a non-streaming request with retries.

        Args:
            method: HTTP method.
            path: API path, e.g. ``/api/tags``.
            body: JSON body for POST requests.
            model: Model the request concerns; turns a 404 into NotAvailableError.

        Returns:
            Parsed JSON response.

        Raises:
            BackendError: On failure after all retries.
        """
        url = self._url(path)
        logger.debug("Backend %s %s", method, url)

        for attempt in range(self._max_retries + 1):
            try:
                client = await self._ensure_client()
                response = await client.request(
                    method, url, headers=self._build_headers(), json=body
                )
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if attempt < self._max_retries:
                    await asyncio.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise self._unreachable(e) from e
            except httpx.HTTPError as e:
                raise BackendUnreachableError(f"HTTP error talking to backend: {e}") from e

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self._max_retries:
                logger.debug(
                    "Backend returned %d for %s, retrying", response.status_code, path
                )
                await asyncio.sleep(self._calculate_retry_delay(attempt))
                continue

            if response.status_code >= 400:
                self._raise_for_status(response.status_code, response.content, model)

            try:
                data = response.json()
            except ValueError as e:
                raise BackendResponseError(
                    f"Backend returned invalid JSON for {path}", response.status_code
                ) from e
            if isinstance(data, dict) and data.get("error"):
                raise BackendResponseError(str(data["error"]), response.status_code)
            return data if isinstance(data, dict) else {"data": data}

        # Loop always returns or raises
        raise BackendUnreachableError(f"Request to {path} failed unexpectedly")

    async def _stream(
        self,
        path: str,
        body: dict[str, Any],
        model: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Make a streaming request and yield each NDJSON object.

        Only the opening of the stream is retried; a failure after the first
        line has been received is raised. Malformed lines are skipped. Closing
        this generator closes the HTTP response.

        Raises:
            BackendError: On failure, or when a line carries an ``error`` field.
        """
        url = self._url(path)
        logger.debug("Backend stream POST %s", url)
        started = False

        for attempt in range(self._max_retries + 1):
            try:
                client = await self._ensure_client()
                async with client.stream(
                    "POST", url, headers=self._build_headers(), json=body
                ) as response:
                    if response.status_code >= 400:
                        error_body = await response.aread()
                        if (
                            response.status_code in RETRYABLE_STATUS_CODES
                            and attempt < self._max_retries
                        ):
                            await asyncio.sleep(self._calculate_retry_delay(attempt))
                            continue
                        self._raise_for_status(response.status_code, error_body, model)

                    async for line in response.aiter_lines():
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            data = json.loads(line)
                        except ValueError:
                            logger.debug("Skipping malformed stream line: %.200s", line)
                            continue
                        if not isinstance(data, dict):
                            continue
                        if data.get("error"):
                            raise BackendResponseError(str(data["error"]))
                        started = True
                        yield data
                    return

            except (httpx.ConnectError, httpx.TimeoutException) as e:
                if not started and attempt < self._max_retries:
                    await asyncio.sleep(self._calculate_retry_delay(attempt))
                    continue
                raise self._unreachable(e) from e
            except httpx.HTTPError as e:
                raise BackendUnreachableError(f"HTTP error talking to backend: {e}") from e

    # === API calls ===

    async def list_models(self) -> list[dict[str, Any]]:
        """``GET /api/tags``: models present in the backend."""
        data = await self._request("GET", "/api/tags")
        return list(data.get("models") or [])

    async def list_running(self) -> list[dict[str, Any]]:
        """``GET /api/ps``: models loaded in memory, with size and expiry."""
        data = await self._request("GET", "/api/ps")
        return list(data.get("models") or [])

    async def generate(self, body: dict[str, Any]) -> dict[str, Any]:
        """``POST /api/generate`` without streaming."""
        return await self._request(
            "POST", "/api/generate", {**body, "stream": False}, model=body.get("model")
        )

    async def chat(self, body: dict[str, Any]) -> dict[str, Any]:
        """``POST /api/chat`` without streaming."""
        return await self._request(
            "POST", "/api/chat", {**body, "stream": False}, model=body.get("model")
        )

    def stream_generate(self, body: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """``POST /api/generate`` with streaming."""
        return self._stream("/api/generate", {**body, "stream": True}, model=body.get("model"))

    def stream_chat(self, body: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        """``POST /api/chat`` with streaming."""
        return self._stream("/api/chat", {**body, "stream": True}, model=body.get("model"))

    def pull(self, model: str) -> AsyncIterator[dict[str, Any]]:
        """``POST /api/pull``: streamed download progress."""
        return self._stream("/api/pull", {"name": model, "stream": True})

    async def show(self, model: str) -> dict[str, Any]:
        """``POST /api/show``: model metadata."""
        return await self._request("POST", "/api/show", {"name": model}, model=model)

    async def embeddings(self, model: str, prompt: str) -> list[float]:
        """``POST /api/embeddings``: embedding vector for a text.

        Raises:
            BackendResponseError: If the response carries no embedding.
        """
        data = await self._request(
            "POST", "/api/embeddings", {"model": model, "prompt": prompt}, model=model
        )
        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise BackendResponseError("Backend returned no embedding")
        return [float(v) for v in embedding]
