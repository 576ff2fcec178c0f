"""Token estimation and model context sizes.

Estimates are character-based: deterministic for a given input and model,
monotonic in text length, and deliberately conservative. They are not meant
to match any vendor tokenizer exactly.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from agentcore.core.constants import DEFAULT_MODEL, get_model_max_tokens
from agentcore.core.types import Message, Role

ELLIPSIS = "..."


class TokenCounter:
    """Model-aware token estimator.

    Uses the ~4 characters per token heuristic common for English text, plus
    a fixed per-message overhead for the role framing chat APIs bill.

    Example:
        counter = TokenCounter("llama3:8b")
        counter.get_max_context_size()          # 8192
        counter.count_message_tokens("user", "Hello!")
    """

    CHARS_PER_TOKEN = 4
    OVERHEAD_PER_MESSAGE = 4

    def __init__(self, model_name: str = DEFAULT_MODEL) -> None:
        self.model_name = model_name

    def count_tokens(self, text: str) -> int:
        """Estimate the token count of a text string.

        Args:
            text: Text to estimate.

        Returns:
            Estimated token count (0 for empty text).
        """
        if not text:
            return 0
        return max(1, len(text) // self.CHARS_PER_TOKEN)

    def count_message_tokens(self, role: Role | str, content: str) -> int:
        """Estimate a message's cost: content tokens plus role overhead."""
        return self.count_tokens(content) + self.OVERHEAD_PER_MESSAGE

    def count_messages_tokens(
        self, messages: Iterable["Message | Mapping[str, Any]"]
    ) -> int:
        """Sum the estimated cost of several messages.

        Accepts Message objects or ``{"role", "content"}`` mappings.
        """
        total = 0
        for msg in messages:
            if isinstance(msg, Message):
                total += self.count_message_tokens(msg.role, msg.content)
            else:
                total += self.count_message_tokens(
                    msg.get("role", "user"), msg.get("content") or ""
                )
        return total

    def get_max_context_size(self) -> int:
        """Return the model's context size from the static model table."""
        return get_model_max_tokens(self.model_name)

    def truncate_to_fit(self, text: str, max_tokens: int) -> str:
        """Cut text down to a token budget.

        Returns the input unchanged when it already fits. Otherwise returns
        the longest prefix that, with an ellipsis appended, still fits.

        Args:
            text: Text to truncate.
            max_tokens: Token budget.

        Returns:
            Text whose estimate is at most ``max_tokens``.
        """
        if self.count_tokens(text) <= max_tokens:
            return text
        if max_tokens <= 0:
            return ""

        # Binary search relies on count_tokens being monotonic in length.
        low, high = 0, len(text)
        while low < high:
            mid = (low + high + 1) // 2
            if self.count_tokens(text[:mid] + ELLIPSIS) <= max_tokens:
                low = mid
            else:
                high = mid - 1

        return text[:low].rstrip() + ELLIPSIS
