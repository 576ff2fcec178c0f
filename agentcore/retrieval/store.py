"""Brute-force in-memory vector store for knowledge recall."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from agentcore.config.schema import RetrievalConfig, validate_config
from agentcore.context.token_counter import TokenCounter
from agentcore.core.errors import ValidationError
from agentcore.retrieval.embedding import Embedder, cosine_similarity, hash_embedding
from agentcore.retrieval.types import RetrievalDocument, VectorEntry

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_TOKENS = 2000


class RetrievalStore:
    """Stores documents with embeddings and answers similarity queries.

    Every query scores all stored vectors. Vectors whose length differs from
    the query's are skipped, never compared.

    Example:
        store = RetrievalStore()
        await store.add_documents([{"content": "The sky is blue"}])
        results = await store.query("sky color", top_k=3)
        prompt_context = store.build_context(results, max_tokens=500)
    """

    def __init__(
        self,
        config: RetrievalConfig | Mapping[str, Any] | None = None,
        embedder: Embedder | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            config: Dimension and query defaults.
            embedder: Optional embedding strategy. Without one, every text
                gets the hash fallback embedding.
        """
        self._config = validate_config(RetrievalConfig, config)
        self._embedder = embedder
        self._entries: dict[str, VectorEntry] = {}
        self._counter = TokenCounter()

    @property
    def dimension(self) -> int:
        return self._config.dimension

    @property
    def embedding_model(self) -> str:
        return self._config.embedding_model

    def set_embedding_model(self, model_name: str) -> None:
        """Switch the embedding model used for new embeddings."""
        self._config = self._config.model_copy(update={"embedding_model": model_name})
        if self._embedder is not None and hasattr(self._embedder, "model"):
            self._embedder.model = model_name
        logger.info("Embedding model set to: %s", model_name)

    async def embed(self, text: str) -> list[float]:
        """Embed a text, falling back to the hash embedding on any failure."""
        if self._embedder is None:
            return hash_embedding(text, self.dimension)

        try:
            embedding = await self._embedder.embed(text)
        except Exception as e:
            logger.warning("Embedding failed, using fallback: %s", e)
            return hash_embedding(text, self.dimension)

        if not embedding:
            logger.warning("Embedder returned an empty vector, using fallback")
            return hash_embedding(text, self.dimension)
        return list(embedding)

    async def add_documents(
        self, documents: Iterable[RetrievalDocument | Mapping[str, Any]]
    ) -> list[str]:
        """Store documents, embedding any that arrive without a vector.

        Returns:
            The ids of the stored documents, in input order.
        """
        ids: list[str] = []
        for raw in documents:
            doc = RetrievalDocument.coerce(raw)
            doc_id = doc.id or str(uuid.uuid4())
            embedding = list(doc.embedding) if doc.embedding else await self.embed(doc.content)
            self._entries[doc_id] = VectorEntry(
                id=doc_id,
                content=doc.content,
                embedding=embedding,
                metadata=dict(doc.metadata),
            )
            ids.append(doc_id)

        logger.info(
            "Added %d documents; vector store now contains %d", len(ids), len(self._entries)
        )
        return ids

    async def query(
        self,
        text: str,
        top_k: int | None = None,
        min_score: float | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> list[RetrievalDocument]:
        """Find the stored documents most similar to a text.

        Args:
            text: Query text.
            top_k: Maximum results (default from config, 5).
            min_score: Minimum cosine similarity (default from config, 0.3).
            filter: Metadata values every result must match exactly.

        Returns:
            Documents sorted by descending score, without embeddings.

        Raises:
            ValidationError: If top_k is less than 1.
        """
        top_k = self._config.default_top_k if top_k is None else top_k
        min_score = self._config.default_min_score if min_score is None else min_score
        if top_k < 1:
            raise ValidationError(f"top_k must be at least 1, got {top_k}")

        if not self._entries:
            return []

        query_embedding = await self.embed(text)
        scored: list[tuple[float, VectorEntry]] = []
        for entry in self._entries.values():
            if len(entry.embedding) != len(query_embedding):
                continue
            if not entry.matches(filter):
                continue
            score = cosine_similarity(query_embedding, entry.embedding)
            if score >= min_score:
                scored.append((score, entry))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [
            RetrievalDocument(
                id=entry.id,
                content=entry.content,
                metadata=dict(entry.metadata),
                score=score,
            )
            for score, entry in scored[:top_k]
        ]

    async def delete_documents(self, ids: Iterable[str]) -> int:
        """Delete documents by id. Unknown ids are ignored.

        Returns:
            Number of documents deleted.
        """
        deleted = sum(1 for doc_id in ids if self._entries.pop(doc_id, None) is not None)
        logger.info("Deleted %d documents from vector store", deleted)
        return deleted

    async def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("Cleared %d documents from vector store", count)

    async def count(self) -> int:
        return len(self._entries)

    async def get_all_documents(self) -> list[RetrievalDocument]:
        """Return every stored document, embeddings included."""
        return [
            RetrievalDocument(
                id=entry.id,
                content=entry.content,
                metadata=dict(entry.metadata),
                embedding=list(entry.embedding),
            )
            for entry in self._entries.values()
        ]

    def build_context(
        self,
        documents: Sequence[RetrievalDocument],
        max_tokens: int = DEFAULT_CONTEXT_TOKENS,
    ) -> str:
        """Concatenate documents with source tags until the token budget is reached.

        Documents are taken in order; the first one that would overflow the
        budget ends the context.
        """
        parts: list[str] = []
        used = 0
        for doc in documents:
            block = f"[Source: {doc.id}]\n{doc.content}\n\n"
            cost = self._counter.count_tokens(block)
            if used + cost > max_tokens:
                break
            parts.append(block)
            used += cost
        return "".join(parts).strip()
