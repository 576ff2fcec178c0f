"""Model lifecycle and generation types."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from agentcore.config.schema import ModelRuntimeConfig
from agentcore.core.types import Message


class ModelState(str, Enum):
    """Lifecycle state of a model inside the inference backend.

    Normal progression is STOPPED -> STARTING -> LOADING -> RUNNING. ERROR is
    reachable from any non-terminal state.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    LOADING = "loading"
    RUNNING = "running"
    ERROR = "error"


@dataclass
class ModelInstance:
    """The runtime's view of one model name.

    Attributes:
        id: Unique id for this instance record.
        config: Runtime config with ``model_name`` set to this model.
        state: Current lifecycle state.
        started_at: When start() was called (or when the backend reported it).
        last_used_at: Last successful start or generation.
        memory_usage: Bytes reported by the backend's running-model list.
        expires_at: When the backend will unload the model.
        error: Failure message when state is ERROR.
    """

    config: ModelRuntimeConfig
    state: ModelState = ModelState.STOPPED
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime | None = None
    last_used_at: datetime | None = None
    memory_usage: int | None = None
    expires_at: datetime | None = None
    error: str | None = None

    @property
    def model_name(self) -> str:
        return self.config.model_name


@dataclass
class StartOptions:
    """Options for ModelRuntime.start().

    Attributes:
        warm_up: Send an empty generation to force the model into memory.
        keep_alive: Override the configured keep-alive for the warm-up.
        num_gpu: GPU layers to offload (-1 for all).
    """

    warm_up: bool = True
    keep_alive: str | None = None
    num_gpu: int | None = None


@dataclass
class GenerationRequest:
    """A generation call.

    When ``messages`` is non-empty the chat endpoint is used, otherwise the
    completion endpoint with ``prompt``.

    Attributes:
        prompt: Prompt text for completion-style calls.
        messages: Chat history, as Message objects or role/content mappings.
        model: Model to use; defaults to the runtime's current model.
        system: System prompt override for completion-style calls.
        images: Base64 images for multimodal models.
        format: Response format, e.g. ``"json"``.
        raw: Bypass the model's prompt template.
        context: Opaque context tokens returned by a previous completion.
    """

    prompt: str | None = None
    messages: Sequence[Message | Mapping[str, Any]] | None = None
    model: str | None = None
    system: str | None = None
    images: list[str] | None = None
    format: str | None = None
    raw: bool | None = None
    context: list[int] | None = None

    @property
    def is_chat(self) -> bool:
        return bool(self.messages)

    def message_payloads(self) -> list[dict[str, Any]]:
        """Return the chat messages in wire form."""
        payloads: list[dict[str, Any]] = []
        for msg in self.messages or ():
            if isinstance(msg, Message):
                payloads.append(msg.to_payload())
            else:
                payloads.append(dict(msg))
        return payloads


@dataclass
class GenerationChunk:
    """One streamed piece of a generation.

    Statistics are only present on the final chunk (``done=True``).
    """

    content: str
    done: bool = False
    model: str | None = None
    context: list[int] | None = None
    total_duration: int | None = None
    load_duration: int | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None


@dataclass
class GenerationResponse:
    """Complete result of a non-streaming generation.

    Durations are in nanoseconds, as reported by the backend.
    """

    content: str
    model: str
    context: list[int] | None = None
    total_duration: int = 0
    load_duration: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class PullProgress:
    """Progress update from a model download."""

    status: str
    progress: int | None = None
    """Percent complete, when the backend reports sizes."""
