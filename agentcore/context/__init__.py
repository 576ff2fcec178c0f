"""Context window management: token counting, summarization, rotation."""

from agentcore.context.manager import ContextWindowManager
from agentcore.context.store import WindowStore
from agentcore.context.summarizer import (
    ContextSummarizer,
    RuntimeSummarizer,
    SummarizationResult,
    Summarizer,
)
from agentcore.context.token_counter import TokenCounter
from agentcore.context.types import ContextWindowState, RotationResult, TokenUsageStats

__all__ = [
    "ContextSummarizer",
    "ContextWindowManager",
    "ContextWindowState",
    "RotationResult",
    "RuntimeSummarizer",
    "SummarizationResult",
    "Summarizer",
    "TokenCounter",
    "TokenUsageStats",
    "WindowStore",
]
