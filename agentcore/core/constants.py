"""Static model tables and defaults shared across agentcore."""

DEFAULT_MODEL = "llama3"

# Context sizes keyed by model family. Lookups match the longest key contained
# in the normalized (lowercased, tag-stripped) model name.
MODEL_CONTEXT_SIZES: dict[str, int] = {
    "default": 4096,
    "llama2": 4096,
    "llama3": 8192,
    "llama3.1": 131072,
    "llama3.2": 131072,
    "llama3.3": 131072,
    "codellama": 16384,
    "mistral": 32768,
    "mixtral": 32768,
    "gemma": 8192,
    "gemma2": 8192,
    "phi3": 4096,
    "qwen": 8192,
    "qwen2": 32768,
    "qwen2.5": 32768,
    "deepseek-coder": 16384,
    "deepseek-r1": 131072,
    "command-r": 131072,
    "gpt-4": 8192,
    "gpt-4o": 128000,
    "claude": 200000,
}

DEFAULT_CONTEXT_SIZE = MODEL_CONTEXT_SIZES["default"]

DEFAULT_EMBEDDING_DIMENSION = 384
DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"

PREVIOUS_CONTEXT_PREFIX = "[PREVIOUS CONTEXT]"


def normalize_model_name(model_name: str | None) -> str:
    """Lowercase a model name and strip its ``:tag`` suffix."""
    if not model_name:
        return ""
    return model_name.strip().lower().split(":")[0]


def get_model_max_tokens(model_name: str | None) -> int:
    """Look up the context size for a model name.

    Args:
        model_name: Model name such as ``llama3``, ``llama3:8b`` or
            ``mistral-7b-instruct``.

    Returns:
        The family's context size, or DEFAULT_CONTEXT_SIZE when unknown.
    """
    normalized = normalize_model_name(model_name)
    if not normalized:
        return DEFAULT_CONTEXT_SIZE

    best_key = ""
    for key in MODEL_CONTEXT_SIZES:
        if key == "default":
            continue
        if key in normalized and len(key) > len(best_key):
            best_key = key

    return MODEL_CONTEXT_SIZES[best_key] if best_key else DEFAULT_CONTEXT_SIZE
