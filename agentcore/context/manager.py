"""Context window management for per-agent conversation state and token budgets."""

from __future__ import annotations

import dataclasses
import logging
import math
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from agentcore.config.schema import ContextWindowConfig, SummarizerConfig, validate_config
from agentcore.context.store import WindowStore
from agentcore.context.summarizer import ContextSummarizer, Summarizer
from agentcore.context.token_counter import TokenCounter
from agentcore.context.types import ContextWindowState, RotationResult, TokenUsageStats
from agentcore.core.constants import DEFAULT_CONTEXT_SIZE, DEFAULT_MODEL, PREVIOUS_CONTEXT_PREFIX
from agentcore.core.errors import AgentCoreError, RotationError, WindowNotFoundError
from agentcore.core.types import Message, Role

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_PERCENT = 80


class ContextWindowManager:
    """Owns one context window per agent.

    The ContextWindowManager is responsible for:
    - Appending messages and accruing their token cost
    - Reporting usage against the rotation threshold
    - Rotating over-budget windows into a summary-seeded successor
    - Building the ordered message list for the next model call

    Every mutation of an agent's window runs under that agent's lock, so a
    message added during a rotation or an executor turn waits for it to
    finish. Methods ending in ``_locked`` expect the caller to already hold
    ``lock(agent_id)``.

    Example:
        manager = ContextWindowManager()
        await manager.create_window("agent-1", {"model_name": "llama3"})
        await manager.add_message("agent-1", "system", "You are helpful.")
        await manager.add_message("agent-1", "user", "Hello!")

        if manager.should_rotate("agent-1"):
            await manager.rotate_window("agent-1")

        messages = manager.get_context_messages("agent-1")
    """

    def __init__(
        self,
        store: WindowStore | None = None,
        summarizer: Summarizer | None = None,
        summarizer_config: SummarizerConfig | Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Window store to operate on (a private one if None).
            summarizer: Optional external summarizer used during rotation.
                Without one, rotation uses the local key-point extractor.
            summarizer_config: Preserve-count and timeout for summarization.
        """
        self.store = store if store is not None else WindowStore()
        self._summarizer = summarizer
        self._summarizer_config = validate_config(SummarizerConfig, summarizer_config)

    @property
    def preserve_recent_messages(self) -> int:
        return self._summarizer_config.preserve_recent_messages

    def lock(self, agent_id: str) -> AbstractAsyncContextManager[None]:
        """The agent's mutation lock. Not re-entrant."""
        return self.store.lock(agent_id)

    # === Window lifecycle ===

    async def create_window(
        self,
        agent_id: str,
        config: ContextWindowConfig | Mapping[str, Any] | None = None,
    ) -> ContextWindowState:
        """Create a fresh window for an agent, replacing any existing one.

        Args:
            agent_id: The agent's identifier.
            config: Window settings. ``max_tokens`` defaults from the model table.

        Returns:
            The new window state.

        Raises:
            ValidationError: If the config is invalid. No state is changed.
        """
        parsed = validate_config(ContextWindowConfig, config)
        async with self.lock(agent_id):
            return self.create_window_locked(agent_id, parsed)

    def create_window_locked(
        self,
        agent_id: str,
        config: ContextWindowConfig | Mapping[str, Any] | None = None,
    ) -> ContextWindowState:
        parsed = validate_config(ContextWindowConfig, config)
        state = ContextWindowState(agent_id=agent_id, config=parsed)

        self.store.counter(agent_id, parsed.model_name)
        self.store.put(state)
        logger.debug(
            "Created context window %s for agent %s (max_tokens=%d)",
            state.id, agent_id, parsed.max_tokens,
        )
        return state

    def get_window(self, agent_id: str) -> ContextWindowState | None:
        """Get the current window for an agent, or None."""
        return self.store.get(agent_id)

    def restore_window_locked(
        self,
        agent_id: str,
        snapshot: ContextWindowState | None,
        expected: ContextWindowState | None = None,
    ) -> bool:
        """Put back a previously captured window state.

        Used to undo a turn that failed part-way. A None snapshot removes the
        window, matching an agent that had none before. With ``expected``,
        the restore only happens while the stored window is still that exact
        state.

        Returns:
            True if the window was restored.
        """
        if expected is not None and self.store.get(agent_id) is not expected:
            logger.debug("Window for agent %s moved on, not restoring", agent_id)
            return False
        if snapshot is None:
            self.store.remove(agent_id)
        else:
            self.store.put(snapshot)
        return True

    async def clear_window(self, agent_id: str) -> None:
        """Drop all messages and the summary, keeping the system prompt's cost."""
        async with self.lock(agent_id):
            window = self.store.get(agent_id)
            if window is None:
                return

            overhead = 0
            if window.system_prompt:
                overhead = self._counter(window).count_message_tokens(
                    Role.SYSTEM, window.system_prompt
                )

            self.store.put(
                dataclasses.replace(
                    window,
                    messages=(),
                    previous_summary=None,
                    total_tokens=overhead,
                    overhead_tokens=overhead,
                )
            )
        logger.debug("Cleared context window for agent %s", agent_id)

    async def remove_window(self, agent_id: str) -> bool:
        """Delete an agent's window and its cached token counter."""
        async with self.lock(agent_id):
            removed = self.store.remove(agent_id)
        if removed:
            logger.debug("Removed context window for agent %s", agent_id)
        return removed

    def active_agent_ids(self) -> list[str]:
        """Get all agent ids with a window."""
        return self.store.agent_ids()

    # === Messages ===

    async def add_message(self, agent_id: str, role: Role | str, content: str) -> Message:
        """Append a message, creating a default window if the agent has none.

        A system message also becomes the window's current system prompt.
        Waits for any in-flight rotation or turn on the agent.

        Args:
            agent_id: The agent's identifier.
            role: ``system``, ``user`` or ``assistant``.
            content: Message text.

        Returns:
            The stored message with its token count.

        Raises:
            ValidationError: If the role is unknown.
        """
        parsed_role = Role.parse(role)
        async with self.lock(agent_id):
            return self.add_message_locked(agent_id, parsed_role, content)

    def add_message_locked(self, agent_id: str, role: Role | str, content: str) -> Message:
        parsed_role = Role.parse(role)
        window = self.store.get(agent_id) or self.create_window_locked(agent_id)

        token_count = self._counter(window).count_message_tokens(parsed_role, content)
        message = Message(role=parsed_role, content=content, token_count=token_count)

        self.store.put(
            dataclasses.replace(
                window,
                messages=window.messages + (message,),
                total_tokens=window.total_tokens + token_count,
                system_prompt=content if parsed_role == Role.SYSTEM else window.system_prompt,
            )
        )
        return message

    # === Token tracking ===

    def get_token_usage(self, agent_id: str) -> TokenUsageStats:
        """Get token usage against the rotation threshold.

        ``threshold = floor(max * threshold_percent / 100)`` and
        ``should_rotate = current >= threshold``.
        """
        window = self.store.get(agent_id)
        if window is None:
            return TokenUsageStats(
                current=0,
                max=DEFAULT_CONTEXT_SIZE,
                threshold=math.floor(DEFAULT_CONTEXT_SIZE * DEFAULT_THRESHOLD_PERCENT / 100),
                percent_used=0.0,
                should_rotate=False,
            )

        max_tokens = window.config.max_tokens
        threshold = math.floor(max_tokens * window.config.threshold_percent / 100)
        return TokenUsageStats(
            current=window.total_tokens,
            max=max_tokens,
            threshold=threshold,
            percent_used=window.total_tokens / max_tokens * 100,
            should_rotate=window.total_tokens >= threshold,
        )

    def should_rotate(self, agent_id: str) -> bool:
        """Check if the agent's window has reached its rotation threshold."""
        return self.get_token_usage(agent_id).should_rotate

    # === Rotation ===

    async def rotate_window(self, agent_id: str) -> RotationResult:
        """Summarize old history and replace the window with a new generation.

        The new window keeps the system prompt (if configured), stores the
        summary as ``previous_summary``, and re-includes only the most recent
        messages. The agent's lock is held throughout, so concurrent
        rotations and appends queue behind this one. The swap is a single
        store assignment; on any failure the old window stays in place.

        Raises:
            WindowNotFoundError: If the agent has no window.
            RotationError: If the new window could not be built.
        """
        async with self.lock(agent_id):
            return await self.rotate_window_locked(agent_id)

    async def rotate_window_locked(self, agent_id: str) -> RotationResult:
        window = self.store.get(agent_id)
        if window is None:
            raise WindowNotFoundError(agent_id)

        try:
            return await self._rotate(window)
        except AgentCoreError:
            raise
        except Exception as e:
            raise RotationError(
                f"Failed to rotate context window for agent {agent_id}: {e}"
            ) from e

    async def _rotate(self, window: ContextWindowState) -> RotationResult:
        agent_id = window.agent_id
        counter = self._counter(window)
        summarizer = ContextSummarizer(
            max_summary_tokens=window.config.summary_max_tokens,
            model_name=window.config.model_name,
            preserve_recent_messages=self._summarizer_config.preserve_recent_messages,
            timeout=self._summarizer_config.summary_timeout,
        )

        result = await summarizer.summarize(
            window.messages, self._summarizer, previous_summary=window.previous_summary
        )
        _, preserved = summarizer.prepare_messages_for_summary(window.messages)
        preserved = tuple(preserved)

        summary = result.summary or window.previous_summary
        system_prompt = window.system_prompt if window.config.preserve_system_prompt else None

        overhead = 0
        if system_prompt:
            overhead += counter.count_message_tokens(Role.SYSTEM, system_prompt)
        if summary:
            overhead += counter.count_message_tokens(
                Role.SYSTEM, f"{PREVIOUS_CONTEXT_PREFIX}\n{summary}"
            )
        new_total = overhead + sum(m.token_count for m in preserved)

        now = datetime.now()
        new_window = ContextWindowState(
            agent_id=agent_id,
            config=window.config,
            window_number=window.window_number + 1,
            messages=preserved,
            total_tokens=new_total,
            overhead_tokens=overhead,
            system_prompt=system_prompt,
            previous_summary=summary,
            created_at=now,
            rotated_at=now,
        )
        self.store.put(new_window)

        rotation = RotationResult(
            previous_window_id=window.id,
            new_window_id=new_window.id,
            summary=result.summary,
            messages_dropped=len(window.messages) - len(preserved),
            tokens_saved=window.total_tokens - new_total,
        )
        logger.info(
            "Rotated context window for agent %s: window %d -> %d, "
            "%d messages dropped, %d tokens saved",
            agent_id, window.window_number, new_window.window_number,
            rotation.messages_dropped, rotation.tokens_saved,
        )
        return rotation

    # === Context building ===

    def get_context_messages(self, agent_id: str) -> list[Message]:
        """Build the ordered message list for the next model call.

        Order: system prompt, then the previous-context summary as a system
        message, then every non-system message in chronological order.
        """
        window = self.store.get(agent_id)
        if window is None:
            return []

        counter = self._counter(window)
        result: list[Message] = []

        if window.system_prompt:
            result.append(
                Message(
                    role=Role.SYSTEM,
                    content=window.system_prompt,
                    timestamp=window.created_at,
                    token_count=counter.count_message_tokens(Role.SYSTEM, window.system_prompt),
                )
            )

        if window.previous_summary:
            content = f"{PREVIOUS_CONTEXT_PREFIX}\n{window.previous_summary}"
            result.append(
                Message(
                    role=Role.SYSTEM,
                    content=content,
                    timestamp=window.rotated_at or window.created_at,
                    token_count=counter.count_message_tokens(Role.SYSTEM, content),
                )
            )

        result.extend(m for m in window.messages if m.role != Role.SYSTEM)
        return result

    def get_debug_info(self, agent_id: str) -> dict[str, Any] | None:
        """Summarize a window's state for diagnostics."""
        window = self.store.get(agent_id)
        if window is None:
            return None

        return {
            "window_id": window.id,
            "window_number": window.window_number,
            "message_count": len(window.messages),
            "token_usage": dataclasses.asdict(self.get_token_usage(agent_id)),
            "has_system_prompt": bool(window.system_prompt),
            "has_previous_summary": bool(window.previous_summary),
            "created_at": window.created_at,
            "rotated_at": window.rotated_at,
        }

    def _counter(self, window: ContextWindowState) -> TokenCounter:
        return self.store.counter(window.agent_id, window.config.model_name or DEFAULT_MODEL)
