"""Retrieval store: embeddings and cosine-similarity search."""

from agentcore.retrieval.embedding import (
    BackendEmbedder,
    Embedder,
    cosine_similarity,
    hash_embedding,
)
from agentcore.retrieval.store import RetrievalStore
from agentcore.retrieval.types import RetrievalDocument, VectorEntry

__all__ = [
    "BackendEmbedder",
    "Embedder",
    "RetrievalDocument",
    "RetrievalStore",
    "VectorEntry",
    "cosine_similarity",
    "hash_embedding",
]
