"""Heuristic knowledge extraction from conversations.

These are approximate, English-oriented phrase patterns. They are tuned to
favor short, self-contained statements and are expected to miss things.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from agentcore.core.types import Message

MIN_INSIGHT_LENGTH = 10
MAX_INSIGHT_LENGTH = 200
MAX_TOPICS = 10
MAX_KEY_SENTENCES = 5
MAX_LAST_REQUEST_LENGTH = 200

_FLAGS = re.IGNORECASE | re.MULTILINE

PREFERENCE_PATTERNS = [
    re.compile(r"\bI (?:prefer|like|want|need|always|usually)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:please|always|never)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\bimportant(?:\s+to me)?:\s*(.+?)(?:\.|$)", _FLAGS),
]

DECISION_PATTERNS = [
    re.compile(r"\b(?:decided|chosen|going with|will use|opted for)\s+(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:decision|conclusion):\s*(.+?)(?:\.|$)", _FLAGS),
]

FACT_PATTERNS = [
    re.compile(r"\b(?:fact|note|remember|key point):\s*(.+?)(?:\.|$)", _FLAGS),
    re.compile(r"\b(?:the|my)\s+(\w+)\s+is\s+(.+?)(?:\.|$)", _FLAGS),
]

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been",
    "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can", "this", "that",
})

KEY_SENTENCE_INDICATORS = (
    "important", "key", "note", "remember", "must", "should",
    "always", "never", "please", "prefer", "need", "want", "?",
)

_SENTENCE = re.compile(r"[^.!?]+[.!?]*")


def normalize_messages(
    messages: Iterable[Message | Mapping[str, Any]],
) -> list[tuple[str, str]]:
    """Return ``(role, content)`` pairs from Messages or role/content mappings."""
    pairs: list[tuple[str, str]] = []
    for msg in messages:
        if isinstance(msg, Message):
            pairs.append((msg.role.value, msg.content))
        else:
            pairs.append((str(msg.get("role", "user")), str(msg.get("content") or "")))
    return pairs


def format_conversation(messages: Sequence[tuple[str, str]]) -> str:
    return "\n".join(f"[{role}]: {content}" for role, content in messages)


def _fits(text: str) -> bool:
    return MIN_INSIGHT_LENGTH < len(text) < MAX_INSIGHT_LENGTH


def extract_insights(
    messages: Sequence[tuple[str, str]],
    max_insights: int = 20,
    focus_topics: Sequence[str] | None = None,
) -> list[str]:
    """Pull preferences, decisions and facts out of a conversation.

    Results are prefixed ``User preference: ``, ``Decision: `` or ``Fact: ``,
    deduplicated in first-seen order, and capped at ``max_insights``. When
    focus topics are given, insights mentioning one of them come first.
    """
    insights: list[str] = []

    for _, content in messages:
        for pattern in PREFERENCE_PATTERNS:
            for match in pattern.finditer(content):
                text = match.group(1).strip()
                if _fits(text):
                    insights.append(f"User preference: {text}")

        for pattern in DECISION_PATTERNS:
            for match in pattern.finditer(content):
                text = match.group(1).strip()
                if _fits(text):
                    insights.append(f"Decision: {text}")

        for pattern in FACT_PATTERNS:
            for match in pattern.finditer(content):
                if match.lastindex and match.lastindex >= 2:
                    text = f"{match.group(1)} is {match.group(2)}".strip()
                else:
                    text = match.group(1).strip()
                if _fits(text):
                    insights.append(f"Fact: {text}")

    unique = list(dict.fromkeys(insights))
    if focus_topics:
        topics = [t.lower() for t in focus_topics if t]
        unique.sort(key=lambda insight: not any(t in insight.lower() for t in topics))
    return unique[:max_insights]


def is_stop_phrase(phrase: str) -> bool:
    return all(word.lower() in STOP_WORDS for word in phrase.split(" "))


def is_key_sentence(sentence: str) -> bool:
    lower = sentence.lower()
    return any(indicator in lower for indicator in KEY_SENTENCE_INDICATORS)


def create_conversation_summary(messages: Sequence[tuple[str, str]]) -> str:
    """Build a topic/key-sentence summary without calling a model.

    Sections: ``Topics:`` (first distinct word bigrams), ``Key points:``
    (sentences with indicator words or questions) and ``Last request:``
    (the final user message, when short).
    """
    topics: dict[str, None] = {}
    key_sentences: dict[str, None] = {}

    for _, content in messages:
        words = content.split()
        for first, second in zip(words, words[1:]):
            bigram = f"{first} {second}".lower()
            if len(bigram) > 5 and not is_stop_phrase(bigram):
                topics.setdefault(bigram)

        for sentence in _SENTENCE.findall(content):
            if is_key_sentence(sentence):
                text = sentence.strip().rstrip(".!").strip()
                if text:
                    key_sentences.setdefault(text)

    parts: list[str] = []
    topic_list = list(topics)[:MAX_TOPICS]
    if topic_list:
        parts.append(f"Topics: {', '.join(topic_list)}")

    points = list(key_sentences)[:MAX_KEY_SENTENCES]
    if points:
        parts.append("Key points:\n" + "\n".join(f"- {p}" for p in points))

    user_messages = [content for role, content in messages if role == "user"]
    if user_messages and len(user_messages[-1]) < MAX_LAST_REQUEST_LENGTH:
        parts.append(f"Last request: {user_messages[-1]}")

    return "\n\n".join(parts)


def keyword_score(query: str, content: str) -> float:
    """Fraction of query words that appear in the content (case-insensitive)."""
    words = query.lower().split()
    if not words:
        return 0.0
    lower = content.lower()
    return sum(1 for word in words if word in lower) / len(words)
