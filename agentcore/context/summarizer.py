"""Conversation summarization for context rotation.

A rotation replaces old messages with a synopsis. The synopsis comes from a
pluggable summarizer (usually an LLM call) when one is configured, and from a
local key-point extractor otherwise or whenever the external call fails.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from agentcore.context.token_counter import TokenCounter
from agentcore.core.constants import DEFAULT_MODEL, PREVIOUS_CONTEXT_PREFIX
from agentcore.core.types import Message, Role

if TYPE_CHECKING:
    from agentcore.runtime.runtime import ModelRuntime

logger = logging.getLogger(__name__)

MAX_KEY_POINTS = 10

SUMMARIZE_PROMPT = """Provide a concise summary of the following conversation.

Focus on:
1. Key decisions made
2. Important information shared
3. Current context and state
4. Any pending tasks or questions

Keep the summary under {max_tokens} tokens.

CONVERSATION:
{conversation}

SUMMARY:"""

_QUESTION_PATTERN = re.compile(r"[^.!?]*\?")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_KEY_INDICATORS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"important:",
        r"note:",
        r"remember:",
        r"key point:",
        r"summary:",
        r"conclusion:",
        r"decision:",
        r"action:",
        r"todo:",
        r"must",
        r"should",
        r"critical",
    )
]


class Summarizer(Protocol):
    """External summarization callback injected by the host application."""

    async def summarize(self, messages: list[Message], max_tokens: int) -> str:
        """Return a synopsis of ``messages`` of at most ``max_tokens`` tokens."""
        ...


@dataclass
class SummarizationResult:
    """Result of summarizing part of a conversation."""

    summary: str
    token_count: int
    messages_processed: int
    key_points: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls) -> SummarizationResult:
        return cls(summary="", token_count=0, messages_processed=0)


def format_messages_for_summary(messages: Sequence[Message]) -> str:
    """Format messages as ``[ROLE]: content`` blocks for a summarization prompt."""
    return "\n\n".join(f"[{m.role.value.upper()}]: {m.content}" for m in messages)


class ContextSummarizer:
    """Builds compact summaries of conversation history.

    Args:
        max_summary_tokens: Hard budget for the produced summary.
        model_name: Model whose token estimates apply.
        preserve_recent_messages: Number of newest non-system messages that
            are kept verbatim rather than summarized.
        timeout: Seconds to wait for an external summarizer.
    """

    def __init__(
        self,
        max_summary_tokens: int = 500,
        model_name: str = DEFAULT_MODEL,
        preserve_recent_messages: int = 2,
        timeout: float = 30.0,
    ) -> None:
        self.max_summary_tokens = max_summary_tokens
        self.model_name = model_name
        self.preserve_recent_messages = preserve_recent_messages
        self.timeout = timeout
        self._counter = TokenCounter(model_name)

    def generate_summary_prompt(self, messages: Sequence[Message]) -> str:
        """Build the prompt for an LLM summarization call."""
        return SUMMARIZE_PROMPT.format(
            max_tokens=self.max_summary_tokens,
            conversation=format_messages_for_summary(messages),
        )

    def prepare_messages_for_summary(
        self, messages: Sequence[Message]
    ) -> tuple[list[Message], list[Message]]:
        """Split messages into (to_summarize, to_preserve).

        System messages are excluded from both; the system prompt is carried
        separately by the window.
        """
        conversation = [m for m in messages if m.role != Role.SYSTEM]
        keep = self.preserve_recent_messages
        if keep <= 0:
            return conversation, []
        return conversation[:-keep], conversation[-keep:]

    def extract_key_points(self, messages: Sequence[Message]) -> list[str]:
        """Pull likely-important sentences out of messages without an LLM.

        Questions and sentences containing indicator phrases ("important:",
        "decision:", "must", ...) are collected, deduplicated, and capped.
        """
        key_points: list[str] = []

        for msg in messages:
            questions = _QUESTION_PATTERN.findall(msg.content)
            key_points.extend(q.strip() for q in questions[:2] if q.strip())

            sentences = _SENTENCE_SPLIT.split(msg.content)
            for indicator in _KEY_INDICATORS:
                if not indicator.search(msg.content):
                    continue
                for sentence in sentences:
                    if indicator.search(sentence) and len(sentence.strip()) > 10:
                        key_points.append(sentence.strip())
                        break

        return list(dict.fromkeys(key_points))[:MAX_KEY_POINTS]

    def create_fallback_summary(
        self,
        messages: Sequence[Message],
        previous_summary: str | None = None,
    ) -> SummarizationResult:
        """Compose a summary from key points and recent turns, within budget."""
        key_points = self.extract_key_points(messages)

        user_topics = [
            self._counter.truncate_to_fit(m.content, 100)
            for m in messages
            if m.role == Role.USER
        ][-3:]
        assistant_replies = [m for m in messages if m.role == Role.ASSISTANT]
        last_response = (
            self._counter.truncate_to_fit(assistant_replies[-1].content, 200)
            if assistant_replies
            else ""
        )

        sections: list[str] = []
        if previous_summary:
            earlier = self._counter.truncate_to_fit(
                previous_summary, self.max_summary_tokens // 3
            )
            sections.append(f"Earlier context:\n{earlier}")
        if key_points:
            lines = "\n".join(f"{i}. {point}" for i, point in enumerate(key_points, 1))
            sections.append(f"Key points:\n{lines}")
        if user_topics:
            sections.append(
                "Recent user topics:\n" + "\n".join(f"- {t}" for t in user_topics)
            )
        if last_response:
            sections.append(f"Last response context:\n{last_response}")

        summary = self._counter.truncate_to_fit(
            "\n\n".join(sections), self.max_summary_tokens
        )
        return SummarizationResult(
            summary=summary,
            token_count=self._counter.count_tokens(summary),
            messages_processed=len(messages),
            key_points=key_points,
        )

    async def summarize(
        self,
        messages: Sequence[Message],
        summarizer: Summarizer | None = None,
        previous_summary: str | None = None,
    ) -> SummarizationResult:
        """Summarize everything older than the preserved recent messages.

        Args:
            messages: The window's full message log.
            summarizer: Optional external summarizer. Failures and timeouts
                fall back to the local extractor instead of propagating.
            previous_summary: Summary carried by the current window, folded
                into the new one so repeated rotations don't lose history.

        Returns:
            SummarizationResult whose summary never exceeds the token budget.
        """
        to_summarize, _ = self.prepare_messages_for_summary(messages)
        if not to_summarize:
            return SummarizationResult.empty()

        if summarizer is None:
            return self.create_fallback_summary(to_summarize, previous_summary)

        source = list(to_summarize)
        if previous_summary:
            source.insert(
                0,
                Message(
                    role=Role.SYSTEM,
                    content=f"{PREVIOUS_CONTEXT_PREFIX}\n{previous_summary}",
                ),
            )

        try:
            text = await asyncio.wait_for(
                summarizer.summarize(source, self.max_summary_tokens),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.warning("External summarization failed, using fallback: %s", e)
            return self.create_fallback_summary(to_summarize, previous_summary)

        summary = self._counter.truncate_to_fit((text or "").strip(), self.max_summary_tokens)
        if not summary:
            logger.warning("External summarizer returned empty text, using fallback")
            return self.create_fallback_summary(to_summarize, previous_summary)

        return SummarizationResult(
            summary=summary,
            token_count=self._counter.count_tokens(summary),
            messages_processed=len(to_summarize),
            key_points=self.extract_key_points(to_summarize),
        )


class RuntimeSummarizer:
    """Summarizer that asks a model served by the ModelRuntime.

    Example:
        manager = ContextWindowManager(summarizer=RuntimeSummarizer(runtime))
    """

    def __init__(self, runtime: ModelRuntime, model_name: str | None = None) -> None:
        self._runtime = runtime
        self._model_name = model_name

    async def summarize(self, messages: list[Message], max_tokens: int) -> str:
        from agentcore.runtime.types import GenerationRequest

        prompt = SUMMARIZE_PROMPT.format(
            max_tokens=max_tokens,
            conversation=format_messages_for_summary(messages),
        )
        response = await self._runtime.generate(
            GenerationRequest(prompt=prompt, model=self._model_name)
        )
        return response.content
