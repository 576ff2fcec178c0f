"""Context window state and result types."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from agentcore.config.schema import ContextWindowConfig
from agentcore.core.types import Message


@dataclass(frozen=True)
class ContextWindowState:
    """One generation of an agent's context window.

    States are immutable; every mutation stores a replacement state, so a
    reader always sees a complete window.

    Attributes:
        id: Unique id of this window generation.
        agent_id: Owning agent.
        config: Validated window configuration.
        window_number: Starts at 1, increments on every rotation.
        messages: Message log in chronological order.
        total_tokens: Sum of message token counts plus overhead_tokens.
        overhead_tokens: Cost of the carried system prompt and summary,
            charged when a window is rotated or cleared.
        system_prompt: Current system prompt, if any.
        previous_summary: Summary of history dropped by earlier rotations.
        created_at: When this generation was created.
        rotated_at: When this generation replaced its predecessor.
    """

    agent_id: str
    config: ContextWindowConfig
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    window_number: int = 1
    messages: tuple[Message, ...] = ()
    total_tokens: int = 0
    overhead_tokens: int = 0
    system_prompt: str | None = None
    previous_summary: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    rotated_at: datetime | None = None


@dataclass(frozen=True)
class TokenUsageStats:
    """Token usage of a window against its rotation threshold."""

    current: int
    max: int
    threshold: int
    percent_used: float
    should_rotate: bool


@dataclass(frozen=True)
class RotationResult:
    """Outcome of rotating a context window."""

    previous_window_id: str
    new_window_id: str
    summary: str
    messages_dropped: int
    tokens_saved: int
