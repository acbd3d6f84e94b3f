"""Lightweight text features used for speaker attribution and message metadata."""

from __future__ import annotations

import re
from typing import List

_CAPITALS_RUN = re.compile(r"[A-Z]{3,}")

QUESTION_WORDS = ("how", "what", "why", "when", "where")

STOP_WORDS = frozenset(
    [
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "is", "are", "was", "were", "i", "you", "he", "she",
        "it", "we", "they",
    ]
)

POSITIVE_WORDS = (
    "good", "great", "excellent", "wonderful", "fantastic", "amazing",
    "awesome", "perfect",
)
NEGATIVE_WORDS = (
    "bad", "terrible", "awful", "horrible", "worst", "problem", "issue",
    "error", "fail",
)

MAX_KEYWORDS = 5


def word_count(text: str) -> int:
    words = text.split()
    return len(words) if words else 1


def extract_features(message: str) -> List[str]:
    """Return the ordered feature tags describing one utterance."""
    tags: List[str] = []
    lower = message.lower()

    count = word_count(message)
    if count < 10:
        tags.append("short_messages")
    elif count < 30:
        tags.append("medium_messages")
    else:
        tags.append("long_messages")

    if "?" in message:
        tags.append("asks_questions")
        for word in QUESTION_WORDS:
            if lower.startswith(word + " "):
                tags.append(f"{word}_questions")

    if "!" in message:
        tags.append("expressive")
    if "please" in lower or "thank" in lower:
        tags.append("polite")
    if "i think" in lower or "i believe" in lower:
        tags.append("opinionated")

    if len(message.split("\n")) > 1:
        tags.append("multi_line")
    if _CAPITALS_RUN.search(message):
        tags.append("uses_capitals")

    if "can you" in lower or "could you" in lower:
        tags.append("requests")
    if "tell me" in lower or "explain" in lower:
        tags.append("seeking_info")

    return tags


def extract_keywords(content: str, limit: int = MAX_KEYWORDS) -> List[str]:
    words = content.lower().split()
    return [w for w in words if len(w) > 3 and w not in STOP_WORDS][:limit]


def sentiment_score(content: str) -> float:
    lower = content.lower()
    score = 0.0
    for word in POSITIVE_WORDS:
        if word in lower:
            score += 0.1
    for word in NEGATIVE_WORDS:
        if word in lower:
            score -= 0.1
    return round(min(1.0, max(-1.0, score)), 2)


def looks_like_question(content: str) -> bool:
    text = content.strip()
    if text.endswith("?"):
        return True
    lower = text.lower()
    return any(lower.startswith(word + " ") for word in QUESTION_WORDS) and "?" in text
