"""Word lists used to derive pattern keys and detect trend topics.

The defaults target an EV-charging support chatbot. Another domain or
language can swap them out with a JSON file:

    {
        "stop_words": ["a", "the", ...],
        "key_terms": ["charge", "battery", ...],
        "trend_topics": [
            {"name": "charging_speed", "label": "charging speed",
             "keywords": ["speed", "slow", "fast"], "importance": 8}
        ]
    }
"""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("conversation-insights")

DEFAULT_STOP_WORDS = frozenset(
    {
        "a",
        "an",
        "the",
        "is",
        "are",
        "was",
        "were",
        "be",
        "been",
        "being",
        "to",
        "of",
        "and",
        "or",
        "but",
        "in",
        "on",
        "at",
        "for",
        "with",
        "by",
        "about",
        "like",
        "through",
        "over",
        "before",
        "after",
        "between",
        "under",
    }
)

# Domain terms that survive stop-word removal and lead the pattern key
DEFAULT_KEY_TERMS = frozenset(
    {
        "charge",
        "charging",
        "charger",
        "station",
        "battery",
        "ev",
        "electric",
        "vehicle",
        "power",
        "payment",
        "app",
        "connect",
        "error",
        "problem",
        "issue",
        "location",
        "find",
        "reservation",
        "book",
        "cancel",
        "cost",
        "price",
    }
)


@dataclass(frozen=True)
class TrendTopic:
    """A keyword-matched subset of patterns whose volume is tracked over time."""

    name: str
    keywords: tuple[str, ...]
    importance: int
    label: str = ""

    def __post_init__(self):
        """Validate keywords on construction."""
        if not self.keywords:
            raise ValueError(f"Trend topic '{self.name}' needs at least one keyword")

    @property
    def display_name(self) -> str:
        return self.label or self.name.replace("_", " ")

    def matches(self, pattern_key: str) -> bool:
        """True if any keyword occurs in the pattern key."""
        return any(keyword in pattern_key for keyword in self.keywords)


DEFAULT_TREND_TOPICS = (
    TrendTopic(
        name="charging_speed",
        keywords=("speed", "slow", "fast"),
        importance=8,
        label="charging speed",
    ),
    TrendTopic(
        name="app_connectivity",
        keywords=("app", "connect", "connection"),
        importance=6,
        label="app connection",
    ),
)


# Message text is lowercased before matching, so word lists must be too
def _lowercased(words) -> frozenset[str]:
    return frozenset(word.lower() for word in words)


@dataclass(frozen=True)
class Vocabulary:
    """Stop-words, allow-listed key terms and trend topics."""

    stop_words: frozenset[str] = DEFAULT_STOP_WORDS
    key_terms: frozenset[str] = DEFAULT_KEY_TERMS
    trend_topics: tuple[TrendTopic, ...] = field(default=DEFAULT_TREND_TOPICS)

    @classmethod
    def from_dict(cls, data: dict) -> "Vocabulary":
        """Build a vocabulary from a dict, falling back to defaults for missing keys."""
        topics = DEFAULT_TREND_TOPICS
        if "trend_topics" in data:
            topics = tuple(
                TrendTopic(
                    name=t["name"],
                    keywords=tuple(keyword.lower() for keyword in t["keywords"]),
                    importance=int(t["importance"]),
                    label=t.get("label", ""),
                )
                for t in data["trend_topics"]
            )

        return cls(
            stop_words=_lowercased(data.get("stop_words", DEFAULT_STOP_WORDS)),
            key_terms=_lowercased(data.get("key_terms", DEFAULT_KEY_TERMS)),
            trend_topics=topics,
        )


def load_vocabulary(path: Path | str | None = None) -> Vocabulary:
    """Load a vocabulary JSON file.

    Args:
        path: JSON file path; defaults to $CONVERSATION_INSIGHTS_VOCABULARY

    Returns:
        The loaded vocabulary, or the built-in defaults when no file is
        configured or the file cannot be read
    """
    if path is None:
        path = os.environ.get("CONVERSATION_INSIGHTS_VOCABULARY")
    if not path:
        return Vocabulary()

    path = Path(path)
    if not path.exists():
        logger.warning(f"Vocabulary file not found, using defaults: {path}")
        return Vocabulary()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return Vocabulary.from_dict(data)
    except (json.JSONDecodeError, OSError, AttributeError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Could not load vocabulary {path}: {e}")
        return Vocabulary()
