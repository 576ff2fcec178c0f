"""Retrieval store document types."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class RetrievalDocument:
    """A document going into or coming out of the retrieval store.

    Attributes:
        content: Document text.
        id: Document id; generated on insert when empty.
        metadata: Arbitrary key/value pairs used for exact-match filtering.
        embedding: Precomputed vector. Query results leave it unset.
        score: Cosine similarity to the query, on query results only.
    """

    content: str
    id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: list[float] | None = None
    score: float | None = None

    @classmethod
    def coerce(cls, doc: RetrievalDocument | Mapping[str, Any]) -> RetrievalDocument:
        """Accept a document or a ``{"content", "id", "metadata", "embedding"}`` mapping."""
        if isinstance(doc, RetrievalDocument):
            return doc
        return cls(
            content=str(doc.get("content") or ""),
            id=str(doc.get("id") or ""),
            metadata=dict(doc.get("metadata") or {}),
            embedding=list(doc["embedding"]) if doc.get("embedding") else None,
        )


@dataclass
class VectorEntry:
    """A stored document with its embedding."""

    id: str
    content: str
    embedding: list[float]
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def matches(self, filter: Mapping[str, Any] | None) -> bool:
        """Exact-match every filter key against the entry's metadata."""
        if not filter:
            return True
        return all(
            key in self.metadata and self.metadata[key] == value
            for key, value in filter.items()
        )
