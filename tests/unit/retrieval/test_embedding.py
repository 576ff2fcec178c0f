"""Tests for agentcore.retrieval.embedding."""

import math

import pytest

from agentcore.retrieval.embedding import BackendEmbedder, cosine_similarity, hash_embedding


class TestHashEmbedding:
    """Tests for the deterministic fallback embedding."""

    def test_dimension(self):
        assert len(hash_embedding("hello world", 64)) == 64

    def test_deterministic(self):
        assert hash_embedding("the sky is blue") == hash_embedding("the sky is blue")

    def test_normalized(self):
        vector = hash_embedding("several words in a sentence")
        assert math.sqrt(sum(v * v for v in vector)) == pytest.approx(1.0)

    def test_case_insensitive(self):
        assert hash_embedding("Hello World") == hash_embedding("hello world")

    def test_empty_text_is_zero_vector(self):
        assert hash_embedding("", 8) == [0.0] * 8

    def test_identical_text_scores_one(self):
        text = "retrieval augmented generation"
        assert cosine_similarity(hash_embedding(text), hash_embedding(text)) == pytest.approx(1.0)

    def test_shared_words_score_higher(self):
        query = hash_embedding("python asyncio tutorial")
        related = hash_embedding("asyncio tutorial for beginners")
        unrelated = hash_embedding("banana bread recipe")

        assert cosine_similarity(query, related) > cosine_similarity(query, unrelated)


class TestCosineSimilarity:
    def test_orthogonal(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_opposite(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)

    def test_mismatched_lengths(self):
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_empty(self):
        assert cosine_similarity([], []) == 0.0


class TestBackendEmbedder:
    @pytest.mark.asyncio
    async def test_uses_backend(self, backend, ollama):
        ollama.embedding = [0.1, 0.2, 0.3]
        embedder = BackendEmbedder(backend, model="mxbai-embed-large")

        assert await embedder.embed("hello") == [0.1, 0.2, 0.3]
        assert ollama.bodies("/api/embeddings")[0]["model"] == "mxbai-embed-large"
