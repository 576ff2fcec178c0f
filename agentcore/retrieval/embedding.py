"""Embedding strategies for the retrieval store.

A store is given an optional Embedder. Without one, or whenever it fails,
the store falls back to hash_embedding(): a deterministic bag-of-words
vector that keeps lexical search working without an embedding model.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol

from agentcore.core.constants import DEFAULT_EMBEDDING_DIMENSION, DEFAULT_EMBEDDING_MODEL

if TYPE_CHECKING:
    from agentcore.runtime.backend import OllamaBackend


class Embedder(Protocol):
    """Produces an embedding vector for a text."""

    async def embed(self, text: str) -> list[float]:
        ...


class BackendEmbedder:
    """Embedder backed by the inference backend's embeddings endpoint."""

    def __init__(self, backend: OllamaBackend, model: str = DEFAULT_EMBEDDING_MODEL) -> None:
        self._backend = backend
        self.model = model

    async def embed(self, text: str) -> list[float]:
        return await self._backend.embeddings(self.model, text)


def _word_hash(word: str) -> int:
    # 32-bit signed rolling hash (h * 31 + c)
    h = 0
    for char in word:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def hash_embedding(text: str, dimension: int = DEFAULT_EMBEDDING_DIMENSION) -> list[float]:
    """Build a normalized bag-of-words vector from word hashes.

    Each word adds ``1 / (position + 1)`` to the slot its hash selects, so
    earlier words weigh more. Not semantically meaningful, but identical
    texts always produce identical vectors.
    """
    vector = [0.0] * dimension
    for i, word in enumerate(text.lower().split()):
        vector[abs(_word_hash(word)) % dimension] += 1 / (i + 1)

    magnitude = math.sqrt(sum(v * v for v in vector))
    if magnitude > 0:
        vector = [v / magnitude for v in vector]
    return vector


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for mismatched or zero vectors."""
    if len(a) != len(b) or not a:
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    magnitude = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if magnitude == 0:
        return 0.0
    return dot / magnitude
