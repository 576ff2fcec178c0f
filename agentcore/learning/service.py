"""Context learning: turn finished conversations into recallable knowledge."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from agentcore.config.schema import ContextLearningConfig, validate_config
from agentcore.core.types import Message
from agentcore.learning.extraction import (
    create_conversation_summary,
    extract_insights,
    format_conversation,
    keyword_score,
    normalize_messages,
)
from agentcore.learning.types import KnowledgeEntry, KnowledgeType, LearningStats
from agentcore.retrieval.store import RetrievalStore
from agentcore.retrieval.types import RetrievalDocument

logger = logging.getLogger(__name__)

RESULT_SEPARATOR = "\n\n---\n\n"
KEYWORD_MIN_SCORE = 0.2
DEFAULT_TOP_K = 5

# Entry types mirrored into the retrieval store; summaries stay local.
MIRRORED_TYPES = frozenset(
    {KnowledgeType.CONVERSATION, KnowledgeType.INSIGHT, KnowledgeType.PREFERENCE}
)


class KnowledgeStore:
    """Append-only knowledge entries and learning counters, keyed by agent id."""

    def __init__(self) -> None:
        self._entries: dict[str, list[KnowledgeEntry]] = {}
        self._stats: dict[str, LearningStats] = {}

    def entries(self, agent_id: str) -> list[KnowledgeEntry]:
        return list(self._entries.get(agent_id, ()))

    def append(self, agent_id: str, entries: Iterable[KnowledgeEntry]) -> int:
        """Add entries and return the agent's new document count."""
        bucket = self._entries.setdefault(agent_id, [])
        bucket.extend(entries)
        self.stats(agent_id).document_count = len(bucket)
        return len(bucket)

    def stats(self, agent_id: str) -> LearningStats:
        stats = self._stats.get(agent_id)
        if stats is None:
            stats = self._stats[agent_id] = LearningStats()
        return stats

    def peek_stats(self, agent_id: str) -> LearningStats | None:
        return self._stats.get(agent_id)

    def remove(self, agent_id: str) -> list[KnowledgeEntry]:
        """Drop all of an agent's entries and counters, returning the entries."""
        self._stats.pop(agent_id, None)
        return self._entries.pop(agent_id, [])


class ContextLearning:
    """Learns preferences, decisions and facts from an agent's conversations.

    Knowledge is kept locally per agent and, when a retrieval store is
    attached and embeddings are enabled, mirrored into it for similarity
    search. Recall prefers the retrieval store and falls back to keyword
    overlap over the local entries.

    Example:
        learning = ContextLearning(retrieval=RetrievalStore())
        await learning.learn_from_conversation("agent-1", messages)
        context = await learning.get_learned_context("agent-1", "deploy target")
    """

    def __init__(
        self,
        config: ContextLearningConfig | Mapping[str, Any] | None = None,
        retrieval: RetrievalStore | None = None,
        store: KnowledgeStore | None = None,
    ) -> None:
        self._config = validate_config(ContextLearningConfig, config)
        self._retrieval = retrieval
        self._store = store if store is not None else KnowledgeStore()

    @property
    def config(self) -> ContextLearningConfig:
        return self._config

    def configure(self, changes: Mapping[str, Any]) -> ContextLearningConfig:
        """Merge changes into the learning config.

        Raises:
            ValidationError: If the merged config is invalid. The previous
                config is kept.
        """
        merged = {**self._config.model_dump(), **dict(changes)}
        self._config = validate_config(ContextLearningConfig, merged)
        logger.info("Learning config updated: %s", self._config.model_dump())
        return self._config

    @property
    def _mirroring(self) -> bool:
        return self._retrieval is not None and self._config.store_embeddings

    async def _mirror(self, entries: Sequence[KnowledgeEntry]) -> None:
        if not self._mirroring:
            return
        documents = [
            RetrievalDocument(
                id=mirror_id(entry),
                content=entry.content,
                metadata={**entry.metadata, "type": entry.type.value, "agent_id": entry.agent_id},
            )
            for entry in entries
            if entry.type in MIRRORED_TYPES
        ]
        if documents:
            await self._retrieval.add_documents(documents)

    async def learn_from_conversation(
        self,
        agent_id: str,
        messages: Sequence[Message | Mapping[str, Any]],
        metadata: Mapping[str, Any] | None = None,
    ) -> list[KnowledgeEntry]:
        """Extract and store knowledge from a finished conversation.

        Stores the raw conversation, one entry per insight, and (if enabled)
        a summary. Does nothing when learning is disabled or the conversation
        has fewer than ``min_messages`` messages.

        Returns:
            The entries created, empty when nothing was learned.
        """
        if not self._config.enabled:
            return []

        pairs = normalize_messages(messages)
        if len(pairs) < self._config.min_messages:
            logger.debug(
                "Skipping learning: only %d messages (min: %d)",
                len(pairs), self._config.min_messages,
            )
            return []

        extra = dict(metadata or {})
        insights = extract_insights(
            pairs,
            max_insights=self._config.max_insights,
            focus_topics=self._config.focus_topics,
        )
        summary = create_conversation_summary(pairs) if self._config.summarize else ""

        conversation = KnowledgeEntry(
            agent_id=agent_id,
            type=KnowledgeType.CONVERSATION,
            content=format_conversation(pairs),
            metadata={
                **extra,
                "message_count": len(pairs),
                "extracted_insights": len(insights),
            },
        )
        entries = [conversation]
        entries.extend(
            KnowledgeEntry(
                agent_id=agent_id,
                type=KnowledgeType.INSIGHT,
                content=insight,
                metadata={**extra, "source": conversation.id},
            )
            for insight in insights
        )
        if summary:
            entries.append(
                KnowledgeEntry(
                    agent_id=agent_id,
                    type=KnowledgeType.SUMMARY,
                    content=summary,
                    metadata={**extra, "source": conversation.id},
                )
            )

        await self._mirror(entries)
        self._store.append(agent_id, entries)

        stats = self._store.stats(agent_id)
        stats.conversation_count += 1
        stats.insight_count += len(insights)
        stats.last_learned_at = datetime.now()

        logger.info(
            "Learned from conversation for agent %s: %d insights, summary: %s",
            agent_id, len(insights), "yes" if summary else "no",
        )
        return entries

    async def learn_preference(
        self,
        agent_id: str,
        preference: str,
        category: str | None = None,
    ) -> KnowledgeEntry:
        """Record an explicit user preference."""
        entry = KnowledgeEntry(
            agent_id=agent_id,
            type=KnowledgeType.PREFERENCE,
            content=preference,
            metadata={"category": category} if category else {},
        )
        await self._mirror([entry])
        self._store.append(agent_id, [entry])
        self._store.stats(agent_id).last_learned_at = entry.learned_at
        logger.info("Learned preference for agent %s: %.50s", agent_id, preference)
        return entry

    async def get_learned_context(
        self,
        agent_id: str,
        query: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> str:
        """Recall knowledge relevant to a query as prompt-ready text.

        Args:
            agent_id: Agent whose knowledge to search.
            query: What the knowledge should relate to.
            top_k: Maximum entries (default 5).
            min_score: Similarity floor for the retrieval store.

        Returns:
            Matching contents joined with ``---`` separators, or "" if nothing
            matched.
        """
        if not query.strip():
            return ""
        top_k = top_k or DEFAULT_TOP_K

        if self._retrieval is not None:
            documents = await self._retrieval.query(
                query, top_k=top_k, min_score=min_score, filter={"agent_id": agent_id}
            )
            if documents:
                return RESULT_SEPARATOR.join(doc.content for doc in documents)

        scored = [
            (keyword_score(query, entry.content), entry)
            for entry in self._store.entries(agent_id)
        ]
        matches = [pair for pair in scored if pair[0] > KEYWORD_MIN_SCORE]
        matches.sort(key=lambda pair: pair[0], reverse=True)
        return RESULT_SEPARATOR.join(
            f"[{entry.type.value}] {entry.content}" for _, entry in matches[:top_k]
        )

    async def export_knowledge(self, agent_id: str) -> list[RetrievalDocument]:
        """Export an agent's entries as retrieval documents.

        The entry type and learn time travel in metadata as ``type`` and
        ``learned_at`` (ISO 8601).
        """
        return [
            RetrievalDocument(
                id=entry.id,
                content=entry.content,
                metadata={
                    "type": entry.type.value,
                    "learned_at": entry.learned_at.isoformat(),
                    **entry.metadata,
                },
            )
            for entry in self._store.entries(agent_id)
        ]

    async def import_knowledge(
        self,
        agent_id: str,
        documents: Iterable[RetrievalDocument | Mapping[str, Any]],
    ) -> int:
        """Add previously exported documents to an agent's knowledge.

        Returns:
            Number of entries imported.
        """
        entries: list[KnowledgeEntry] = []
        for raw in documents:
            doc = RetrievalDocument.coerce(raw)
            metadata = dict(doc.metadata)
            entry_type = KnowledgeType.parse(metadata.pop("type", None))
            learned_at = _parse_learned_at(metadata.pop("learned_at", None))
            metadata.pop("agent_id", None)

            fields: dict[str, Any] = {
                "agent_id": agent_id,
                "type": entry_type,
                "content": doc.content,
                "metadata": metadata,
                "learned_at": learned_at,
            }
            if doc.id:
                fields["id"] = doc.id
            entries.append(KnowledgeEntry(**fields))

        await self._mirror(entries)
        self._store.append(agent_id, entries)
        logger.info("Imported %d knowledge entries for agent %s", len(entries), agent_id)
        return len(entries)

    async def clear_knowledge(self, agent_id: str) -> int:
        """Delete an agent's entries, counters, and mirrored retrieval rows.

        Returns:
            Number of entries removed.
        """
        entries = self._store.remove(agent_id)
        if self._retrieval is not None and entries:
            await self._retrieval.delete_documents(mirror_id(entry) for entry in entries)
        logger.info("Cleared %d knowledge entries for agent %s", len(entries), agent_id)
        return len(entries)

    async def get_stats(self, agent_id: str) -> LearningStats:
        """Return a copy of the agent's learning counters."""
        stats = self._store.peek_stats(agent_id)
        if stats is None:
            return LearningStats()
        return LearningStats(
            document_count=stats.document_count,
            conversation_count=stats.conversation_count,
            insight_count=stats.insight_count,
            last_learned_at=stats.last_learned_at,
        )


def _parse_learned_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            logger.debug("Ignoring unparseable learned_at: %s", value)
    return datetime.now()


def mirror_id(entry: KnowledgeEntry) -> str:
    """Retrieval document id for an entry, scoped to its owning agent."""
    return f"{entry.agent_id}:{entry.id}"
