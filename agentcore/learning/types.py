"""Knowledge entry types for context learning."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class KnowledgeType(str, Enum):
    """Kind of knowledge an entry holds."""

    CONVERSATION = "conversation"
    SUMMARY = "summary"
    INSIGHT = "insight"
    PREFERENCE = "preference"

    @classmethod
    def parse(cls, value: Any, default: KnowledgeType | None = None) -> KnowledgeType:
        """Coerce a stored type name, using ``default`` (INSIGHT) when unknown."""
        try:
            return cls(value)
        except ValueError:
            return default or cls.INSIGHT


@dataclass(frozen=True)
class KnowledgeEntry:
    """A durable piece of knowledge learned by an agent.

    Attributes:
        agent_id: Agent that learned it.
        type: What kind of knowledge this is.
        content: The knowledge text.
        metadata: Caller metadata plus provenance (e.g. ``source``).
        id: Unique id; shared with the mirrored retrieval document.
        learned_at: When it was learned.
    """

    agent_id: str
    type: KnowledgeType
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    learned_at: datetime = field(default_factory=datetime.now)


@dataclass
class LearningStats:
    """Per-agent learning counters."""

    document_count: int = 0
    conversation_count: int = 0
    insight_count: int = 0
    last_learned_at: datetime | None = None
