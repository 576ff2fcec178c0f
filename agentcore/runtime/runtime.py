"""Model lifecycle orchestration against the inference backend."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import aclosing
from datetime import datetime
from types import TracebackType
from typing import Any

from agentcore.config.schema import ModelProvider, ModelRuntimeConfig, validate_config
from agentcore.core.cancel import CancellationToken, wait_cancellable
from agentcore.core.errors import BackendError, BackendResponseError, NotAvailableError
from agentcore.core.utils import model_names_match
from agentcore.runtime.backend import OllamaBackend
from agentcore.runtime.types import (
    GenerationChunk,
    GenerationRequest,
    GenerationResponse,
    ModelInstance,
    ModelState,
    PullProgress,
    StartOptions,
)

logger = logging.getLogger(__name__)

STOP_KEEP_ALIVE = "0s"

_SHOW_FIELDS = ("modelfile", "parameters", "template", "details", "license")
_CONNECTION_FIELDS = (
    "provider",
    "endpoint",
    "api_key",
    "request_timeout",
    "max_retries",
    "retry_backoff",
    "allow_insecure_http",
)


def _parse_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


async def _next_or_none(iterator: AsyncIterator[dict[str, Any]]) -> dict[str, Any] | None:
    try:
        return await anext(iterator)
    except StopAsyncIteration:
        return None


class ModelRuntime:
    """Starts, stops, swaps and queries models in the inference backend.

    Keeps one ModelInstance per known model name. The backend is the
    authority on what is loaded; list_running() reconciles the local view
    with it.

    Example:
        async with ModelRuntime({"model_name": "llama3"}) as runtime:
            await runtime.start("llama3")
            response = await runtime.generate(GenerationRequest(prompt="Hi"))
    """

    def __init__(
        self,
        config: ModelRuntimeConfig | Mapping[str, Any] | None = None,
        backend: OllamaBackend | None = None,
    ) -> None:
        """Initialize the runtime.

        Args:
            config: Runtime configuration; validated with defaults applied.
            backend: Backend client to use. Built from the config if None.

        Raises:
            ValidationError: If the config is invalid.
            ConfigError: If the endpoint is not allowed.
        """
        self._config = validate_config(ModelRuntimeConfig, config)
        self._backend = backend if backend is not None else OllamaBackend(self._config)
        self._instances: dict[str, ModelInstance] = {}
        self._current_model: str | None = None
        logger.info(
            "Model runtime initialized with provider %s at %s",
            self._config.provider.value, self._backend.base_url,
        )

    async def __aenter__(self) -> ModelRuntime:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the backend's HTTP resources."""
        await self._backend.aclose()

    # === Configuration ===

    def get_provider(self) -> ModelProvider:
        return self._config.provider

    def get_config(self) -> ModelRuntimeConfig:
        return self._config.model_copy(deep=True)

    async def update_config(self, changes: Mapping[str, Any]) -> ModelRuntimeConfig:
        """Merge changes into the runtime config and revalidate.

        Changing a connection setting builds a new backend client and
        closes the old one. On error the previous config and backend are kept.

        Raises:
            ValidationError: If the merged config is invalid.
            ConfigError: If the new endpoint is not allowed.
        """
        merged = {**self._config.model_dump(), **dict(changes)}
        config = validate_config(ModelRuntimeConfig, merged)

        if any(getattr(config, name) != getattr(self._config, name) for name in _CONNECTION_FIELDS):
            backend = OllamaBackend(config)
            previous, self._backend = self._backend, backend
            self._config = config
            await previous.aclose()
            logger.info("Backend connection moved to %s", backend.base_url)
        else:
            self._config = config
        return self.get_config()

    @property
    def current_model(self) -> str | None:
        """Model used by generation calls that don't name one."""
        return self._current_model

    def set_current_model(self, model_name: str) -> None:
        """Select the default model without starting it."""
        self._current_model = model_name

    def get_instance(self, model_name: str) -> ModelInstance | None:
        return self._instances.get(model_name)

    def _resolve_model(self, request: GenerationRequest) -> str:
        return request.model or self._current_model or self._config.model_name

    def _touch(self, model_name: str) -> None:
        instance = self._instances.get(model_name)
        if instance is not None:
            instance.last_used_at = datetime.now()

    # === Availability ===

    async def list_models(self) -> list[str]:
        """List model names present in the backend.

        Returns an empty list when the backend is unreachable or errors.
        """
        try:
            models = await self._backend.list_models()
        except BackendError as e:
            logger.warning("Failed to list available models: %s", e)
            return []
        return [m["name"] for m in models if isinstance(m, dict) and m.get("name")]

    async def is_available(self, model_name: str) -> bool:
        """Check whether the backend has a model, allowing tag prefixes.

        ``llama3`` matches ``llama3:8b`` and vice versa.
        """
        return any(model_names_match(model_name, name) for name in await self.list_models())

    async def _require_available(self, model_name: str) -> None:
        models = await self._backend.list_models()
        names = [m.get("name", "") for m in models if isinstance(m, dict)]
        if not any(model_names_match(model_name, name) for name in names):
            raise NotAvailableError(model_name)

    # === Lifecycle ===

    async def start(
        self, model_name: str, options: StartOptions | None = None
    ) -> ModelInstance:
        """Load a model into the backend.

        Transitions STOPPED -> STARTING -> LOADING -> RUNNING. A failed
        warm-up is logged and does not fail the start.

        Args:
            model_name: Model to start.
            options: Warm-up and keep-alive options.

        Returns:
            The running instance.

        Raises:
            NotAvailableError: If the backend doesn't have the model.
            BackendError: If the backend can't be reached. The instance is
                left in the ERROR state.
        """
        options = options or StartOptions()
        instance = ModelInstance(
            config=self._config.model_copy(update={"model_name": model_name}),
            state=ModelState.STARTING,
            started_at=datetime.now(),
        )
        self._instances[model_name] = instance
        logger.info("Starting model: %s", model_name)

        try:
            await self._require_available(model_name)
            instance.state = ModelState.LOADING

            if options.warm_up:
                await self._warm_up(model_name, options)
        except BackendError as e:
            instance.state = ModelState.ERROR
            instance.error = e.message
            logger.error("Failed to start model %s: %s", model_name, e)
            raise

        instance.state = ModelState.RUNNING
        instance.last_used_at = datetime.now()
        self._current_model = model_name
        logger.info("Model %s started", model_name)
        return instance

    async def _warm_up(self, model_name: str, options: StartOptions) -> None:
        body: dict[str, Any] = {
            "model": model_name,
            "prompt": "",
            "keep_alive": options.keep_alive or self._config.keep_alive,
        }
        num_gpu = options.num_gpu if options.num_gpu is not None else self._config.num_gpu
        if num_gpu is not None:
            body["options"] = {"num_gpu": num_gpu}
        try:
            await self._backend.generate(body)
        except BackendError as e:
            logger.warning("Warm-up for %s failed (model is still usable): %s", model_name, e)

    async def stop(self, model_name: str) -> None:
        """Evict a model from backend memory and drop its instance record.

        Stopping a model the runtime doesn't know is a no-op.

        Raises:
            BackendError: If the eviction request fails. The record is kept.
        """
        if model_name not in self._instances:
            logger.debug("No instance for model %s, nothing to stop", model_name)
            return

        await self._backend.generate(
            {"model": model_name, "prompt": "", "keep_alive": STOP_KEEP_ALIVE}
        )
        del self._instances[model_name]
        if self._current_model == model_name:
            self._current_model = None
        logger.info("Model %s stopped", model_name)

    async def switch_model(self, from_model: str, to_model: str) -> ModelInstance:
        """Replace one loaded model with another.

        The target must be available. Stopping the old model is best-effort.

        Raises:
            NotAvailableError: If the target model is not in the backend.
            BackendError: If starting the target fails.
        """
        logger.info("Switching model from %s to %s", from_model, to_model)
        if not await self.is_available(to_model):
            raise NotAvailableError(
                to_model, f"Target model {to_model} is not available. Pull it first."
            )

        try:
            await self.stop(from_model)
        except BackendError as e:
            logger.warning("Failed to stop model %s during switch: %s", from_model, e)

        instance = await self.start(to_model, StartOptions(warm_up=True))
        logger.info("Switched from %s to %s", from_model, to_model)
        return instance

    async def list_running(self) -> list[ModelInstance]:
        """Reconcile with the backend's loaded-model list and return all instances.

        Models the backend reports are marked RUNNING with their memory size
        and expiry; local RUNNING instances it no longer reports become
        STOPPED. If the backend can't be reached the local view is returned.
        """
        try:
            reported = await self._backend.list_running()
        except BackendError as e:
            logger.warning("Failed to list running models: %s", e)
            return list(self._instances.values())

        seen: set[str] = set()
        for entry in reported:
            if not isinstance(entry, dict):
                continue
            name = entry.get("name") or entry.get("model")
            if not name:
                continue

            key = next(
                (known for known in self._instances if model_names_match(known, name)),
                name,
            )
            instance = self._instances.get(key)
            if instance is None:
                instance = ModelInstance(
                    config=self._config.model_copy(update={"model_name": name})
                )
                self._instances[key] = instance

            instance.state = ModelState.RUNNING
            instance.error = None
            instance.memory_usage = entry.get("size")
            instance.expires_at = _parse_timestamp(entry.get("expires_at"))
            seen.add(key)

        for key, instance in self._instances.items():
            if key not in seen and instance.state == ModelState.RUNNING:
                instance.state = ModelState.STOPPED

        return list(self._instances.values())

    async def get_model_info(self, model_name: str) -> dict[str, Any]:
        """Fetch model metadata: modelfile, parameters, template, details, license.

        Raises:
            NotAvailableError: If the backend doesn't have the model.
            BackendError: On other failures.
        """
        data = await self._backend.show(model_name)
        return {key: data.get(key) for key in _SHOW_FIELDS}

    async def pull(
        self,
        model_name: str,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[PullProgress]:
        """Download a model, yielding progress updates.

        Abandoning iteration or cancelling the token closes the download.
        """
        async with aclosing(self._backend.pull(model_name)) as lines:
            while True:
                data = await wait_cancellable(_next_or_none(lines), cancel_token)
                if data is None:
                    break
                total, completed = data.get("total"), data.get("completed")
                progress = None
                if total and completed is not None:
                    progress = round(completed / total * 100)
                yield PullProgress(status=data.get("status") or "pulling", progress=progress)

        logger.info("Model %s pulled", model_name)

    # === Generation ===

    def _build_body(self, request: GenerationRequest, model_name: str) -> dict[str, Any]:
        options = self._config.options.to_backend_options()
        if self._config.num_gpu is not None:
            options["num_gpu"] = self._config.num_gpu

        body: dict[str, Any] = {
            "model": model_name,
            "options": options,
            "keep_alive": self._config.keep_alive,
        }
        if request.is_chat:
            body["messages"] = request.message_payloads()
        else:
            body["prompt"] = request.prompt or ""
            optional = {
                "system": request.system,
                "images": request.images,
                "format": request.format,
                "raw": request.raw,
                "context": request.context,
            }
            body.update({k: v for k, v in optional.items() if v is not None})
        return body

    @staticmethod
    def _content(data: dict[str, Any], is_chat: bool) -> str:
        if is_chat:
            return (data.get("message") or {}).get("content") or ""
        return data.get("response") or ""

    async def generate(
        self,
        request: GenerationRequest,
        cancel_token: CancellationToken | None = None,
    ) -> GenerationResponse:
        """Run a non-streaming generation.

        Uses the chat endpoint when the request has messages.

        Raises:
            NotAvailableError: If the backend doesn't have the model.
            BackendError: On other backend failures.
            asyncio.CancelledError: If the token fires first.
        """
        model_name = self._resolve_model(request)
        body = self._build_body(request, model_name)
        call = self._backend.chat(body) if request.is_chat else self._backend.generate(body)

        try:
            data = await wait_cancellable(call, cancel_token)
        except BackendError as e:
            logger.error("Generation failed for model %s: %s", model_name, e)
            raise

        self._touch(model_name)
        return GenerationResponse(
            content=self._content(data, request.is_chat),
            model=data.get("model") or model_name,
            context=data.get("context"),
            total_duration=data.get("total_duration") or 0,
            load_duration=data.get("load_duration") or 0,
            prompt_tokens=data.get("prompt_eval_count") or 0,
            completion_tokens=data.get("eval_count") or 0,
        )

    async def generate_stream(
        self,
        request: GenerationRequest,
        cancel_token: CancellationToken | None = None,
    ) -> AsyncIterator[GenerationChunk]:
        """Stream a generation chunk by chunk, in backend order.

        The last chunk has ``done=True`` and carries the statistics. The
        consumer may stop early; the HTTP response is closed either way.

        Raises:
            BackendResponseError: If the stream ends without a final chunk.
            asyncio.CancelledError: If the token fires mid-stream.
        """
        model_name = self._resolve_model(request)
        body = self._build_body(request, model_name)
        is_chat = request.is_chat
        source = self._backend.stream_chat(body) if is_chat else self._backend.stream_generate(body)

        async with aclosing(source) as lines:
            while True:
                data = await wait_cancellable(_next_or_none(lines), cancel_token)
                if data is None:
                    raise BackendResponseError(
                        f"Stream from model {model_name} ended before completion"
                    )

                chunk = GenerationChunk(
                    content=self._content(data, is_chat),
                    done=bool(data.get("done")),
                    model=data.get("model"),
                    context=data.get("context"),
                    total_duration=data.get("total_duration"),
                    load_duration=data.get("load_duration"),
                    prompt_eval_count=data.get("prompt_eval_count"),
                    eval_count=data.get("eval_count"),
                )
                if chunk.done:
                    self._touch(model_name)
                    yield chunk
                    return
                yield chunk
