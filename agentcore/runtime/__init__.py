"""Model runtime: lifecycle and generation against the inference backend."""

from agentcore.runtime.backend import OllamaBackend, validate_base_url
from agentcore.runtime.runtime import ModelRuntime
from agentcore.runtime.types import (
    GenerationChunk,
    GenerationRequest,
    GenerationResponse,
    ModelInstance,
    ModelState,
    PullProgress,
    StartOptions,
)

__all__ = [
    "GenerationChunk",
    "GenerationRequest",
    "GenerationResponse",
    "ModelInstance",
    "ModelRuntime",
    "ModelState",
    "OllamaBackend",
    "PullProgress",
    "StartOptions",
    "validate_base_url",
]
