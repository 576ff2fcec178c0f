"""Pydantic models for agentcore configuration validation."""

import os
from collections.abc import Mapping
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from agentcore.core.constants import (
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_MODEL,
    get_model_max_tokens,
)
from agentcore.core.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


class ModelProvider(str, Enum):
    """Inference backends the runtime can be pointed at."""

    OLLAMA = "ollama"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    CUSTOM = "custom"


DEFAULT_ENDPOINTS: dict[ModelProvider, str] = {
    ModelProvider.OLLAMA: "http://localhost:11434",
    ModelProvider.OPENAI: "https://api.openai.com/v1",
    ModelProvider.ANTHROPIC: "https://api.anthropic.com",
    ModelProvider.CUSTOM: "http://localhost:11434",
}


class ContextWindowConfig(BaseModel):
    """Per-agent context window settings.

    Example:
        ContextWindowConfig(model_name="mistral", threshold_percent=75)
        # max_tokens defaults to 32768 from the model table
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    max_tokens: int = Field(gt=0)
    """Maximum tokens the model can handle. Defaults from the model table."""

    threshold_percent: float = Field(default=80, ge=0, le=100)
    """Usage percentage at which the window should rotate."""

    summary_max_tokens: int = Field(default=500, gt=0)
    """Token budget for the summary carried into a rotated window."""

    preserve_system_prompt: bool = True
    """Carry the system prompt into rotated windows."""

    model_name: str = DEFAULT_MODEL
    """Model the window feeds; selects the context size."""

    @model_validator(mode="before")
    @classmethod
    def _default_max_tokens(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("max_tokens") is None:
            model_name = data.get("model_name") or DEFAULT_MODEL
            data = {**data, "max_tokens": get_model_max_tokens(model_name)}
        return data


class GenerationOptions(BaseModel):
    """Sampling options forwarded to the backend with every generation."""

    model_config = ConfigDict(extra="forbid")

    temperature: float = Field(default=0.7, ge=0, le=2)
    top_p: float = Field(default=0.9, ge=0, le=1)
    top_k: int = Field(default=40, gt=0)
    context_length: int = Field(default=4096, gt=0)
    repeat_penalty: float = Field(default=1.1, ge=0, le=2)
    num_predict: int | None = Field(default=None, gt=0)
    stop: list[str] | None = None
    seed: int | None = None

    def to_backend_options(self) -> dict[str, Any]:
        """Translate into the backend's ``options`` object, dropping unset keys."""
        options: dict[str, Any] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "num_ctx": self.context_length,
            "repeat_penalty": self.repeat_penalty,
        }
        if self.num_predict is not None:
            options["num_predict"] = self.num_predict
        if self.stop:
            options["stop"] = list(self.stop)
        if self.seed is not None:
            options["seed"] = self.seed
        return options


class ModelRuntimeConfig(BaseModel):
    """Configuration for the model runtime and its backend connection."""

    model_config = ConfigDict(extra="forbid")

    provider: ModelProvider = ModelProvider.OLLAMA
    """Backend family. Only the Ollama wire protocol is spoken."""

    model_name: str = DEFAULT_MODEL
    """Model used when a request doesn't name one and none is current."""

    endpoint: str | None = None
    """Backend base URL. Defaults per provider; OLLAMA_URL overrides Ollama's."""

    api_key: str | None = None
    """Bearer token for hosted backends."""

    options: GenerationOptions = Field(default_factory=GenerationOptions)

    keep_alive: str = "5m"
    """How long the backend keeps a model loaded after last use."""

    num_gpu: int | None = Field(default=None, ge=-1)
    """GPU layers to offload (-1 for all)."""

    request_timeout: float = Field(default=300.0, gt=0)
    """Timeout in seconds for backend requests (model loads can be slow)."""

    max_retries: int = Field(default=2, ge=0, le=10)
    """Retry attempts for connection failures, timeouts, 429 and 5xx."""

    retry_backoff: float = Field(default=1.5, ge=1.0, le=5.0)
    """Exponential backoff multiplier between retries."""

    allow_insecure_http: bool = False
    """Allow plain HTTP to non-loopback hosts."""

    def resolved_endpoint(self) -> str:
        """Return the endpoint to use, applying provider defaults."""
        if self.endpoint:
            return self.endpoint.rstrip("/")
        if self.provider == ModelProvider.OLLAMA:
            env_url = os.environ.get("OLLAMA_URL")
            if env_url:
                return env_url.rstrip("/")
        return DEFAULT_ENDPOINTS[self.provider]


class ContextLearningConfig(BaseModel):
    """Controls what the learning layer extracts and stores."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    min_messages: int = Field(default=4, ge=1)
    """Conversations shorter than this are ignored."""

    store_embeddings: bool = True
    """Mirror knowledge into the retrieval store when one is attached."""

    summarize: bool = True
    """Build a topic/key-sentence summary entry per conversation."""

    focus_topics: list[str] | None = None
    """Insights mentioning these topics are kept ahead of others."""

    max_insights: int = Field(default=20, gt=0)


class RetrievalConfig(BaseModel):
    """Retrieval store settings."""

    model_config = ConfigDict(extra="forbid")

    dimension: int = Field(default=DEFAULT_EMBEDDING_DIMENSION, gt=0)
    """Dimensionality of fallback embeddings; vectors of other sizes are never compared."""

    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    default_top_k: int = Field(default=5, gt=0)
    default_min_score: float = Field(default=0.3, ge=-1, le=1)


class SummarizerConfig(BaseModel):
    """How rotation summaries are produced."""

    model_config = ConfigDict(extra="forbid")

    preserve_recent_messages: int = Field(default=2, ge=0)
    """Most recent non-system messages carried verbatim into a new window."""

    summary_timeout: float = Field(default=30.0, gt=0)
    """Seconds to wait for an external summarizer before falling back."""


class Config(BaseModel):
    """Root configuration for an agentcore deployment."""

    model_config = ConfigDict(extra="forbid")

    context: ContextWindowConfig = Field(default_factory=lambda: ContextWindowConfig())
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    runtime: ModelRuntimeConfig = Field(default_factory=ModelRuntimeConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    learning: ContextLearningConfig = Field(default_factory=ContextLearningConfig)


def format_validation_error(error: PydanticValidationError) -> str:
    """Render a pydantic error as ``field: reason; field: reason``."""
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "<root>"
        parts.append(f"{location}: {item.get('msg', 'invalid value')}")
    return "; ".join(parts)


def validate_config(
    model_cls: type[ModelT],
    data: "ModelT | Mapping[str, Any] | None" = None,
    **overrides: Any,
) -> ModelT:
    """Build a config model from a mapping, applying defaults.

    Args:
        model_cls: The pydantic config class to build.
        data: An existing instance, a mapping of field values, or None.
        **overrides: Field values applied on top of ``data``.

    Returns:
        A validated config instance.

    Raises:
        ValidationError: If any field is unknown or out of range.
    """
    if isinstance(data, model_cls) and not overrides:
        return data

    if isinstance(data, BaseModel):
        values: dict[str, Any] = data.model_dump(exclude_unset=True)
    else:
        values = dict(data or {})
    values.update(overrides)

    try:
        return model_cls.model_validate(values)
    except PydanticValidationError as e:
        raise ValidationError(
            f"Invalid {model_cls.__name__}: {format_validation_error(e)}"
        ) from e
