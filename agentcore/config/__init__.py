"""Configuration loading and validation."""

from agentcore.config.loader import get_config_dir, load_config
from agentcore.config.schema import (
    Config,
    ContextLearningConfig,
    ContextWindowConfig,
    GenerationOptions,
    ModelProvider,
    ModelRuntimeConfig,
    RetrievalConfig,
    SummarizerConfig,
    validate_config,
)

__all__ = [
    "Config",
    "ContextLearningConfig",
    "ContextWindowConfig",
    "GenerationOptions",
    "ModelProvider",
    "ModelRuntimeConfig",
    "RetrievalConfig",
    "SummarizerConfig",
    "get_config_dir",
    "load_config",
    "validate_config",
]
