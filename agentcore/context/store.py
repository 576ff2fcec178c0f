"""Explicit per-agent state store for context windows."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from agentcore.context.token_counter import TokenCounter
from agentcore.context.types import ContextWindowState


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class WindowStore:
    """In-memory windows, token counters, and locks keyed by agent id.

    Pass one store into a ContextWindowManager (or let it create its own);
    separate stores are fully isolated, which keeps tests independent.
    """

    def __init__(self) -> None:
        self._windows: dict[str, ContextWindowState] = {}
        self._counters: dict[str, TokenCounter] = {}
        self._locks: dict[str, _LockEntry] = {}

    def get(self, agent_id: str) -> ContextWindowState | None:
        return self._windows.get(agent_id)

    def put(self, state: ContextWindowState) -> None:
        """Replace the agent's window with ``state`` in a single assignment."""
        self._windows[state.agent_id] = state

    def remove(self, agent_id: str) -> bool:
        """Delete the agent's window and cached token counter.

        Returns:
            True if a window existed.
        """
        self._counters.pop(agent_id, None)
        return self._windows.pop(agent_id, None) is not None

    def agent_ids(self) -> list[str]:
        return list(self._windows)

    def counter(self, agent_id: str, model_name: str) -> TokenCounter:
        """Return the agent's cached token counter, creating it for the model."""
        counter = self._counters.get(agent_id)
        if counter is None or counter.model_name != model_name:
            counter = TokenCounter(model_name)
            self._counters[agent_id] = counter
        return counter

    def has_counter(self, agent_id: str) -> bool:
        return agent_id in self._counters

    @asynccontextmanager
    async def lock(self, agent_id: str) -> AsyncIterator[None]:
        """Hold the agent's mutation lock.

        The lock is a plain asyncio.Lock and is not re-entrant. Its entry is
        dropped once nobody holds or waits for it and the agent has no window.
        """
        entry = self._locks.get(agent_id)
        if entry is None:
            entry = self._locks[agent_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if (
                entry.users == 0
                and agent_id not in self._windows
                and self._locks.get(agent_id) is entry
            ):
                del self._locks[agent_id]

    def is_locked(self, agent_id: str) -> bool:
        entry = self._locks.get(agent_id)
        return entry is not None and entry.lock.locked()

    def lock_count(self) -> int:
        """Number of agents with a live lock entry."""
        return len(self._locks)

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._windows
