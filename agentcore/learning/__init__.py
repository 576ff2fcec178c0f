"""Context learning: extract, store and recall knowledge from conversations."""

from agentcore.learning.service import ContextLearning, KnowledgeStore
from agentcore.learning.types import KnowledgeEntry, KnowledgeType, LearningStats

__all__ = [
    "ContextLearning",
    "KnowledgeEntry",
    "KnowledgeStore",
    "KnowledgeType",
    "LearningStats",
]
