"""Pattern extraction, similarity merging and session correlation."""

import logging
import re
import uuid
from collections import Counter

from conversation_insights.storage import Message, Pattern, PatternExtractionConfig, Session
from conversation_insights.vocabulary import Vocabulary

logger = logging.getLogger("conversation-insights")

MAX_KEY_TOKENS = 5
MAX_EXAMPLES = 5

_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def new_id(prefix: str) -> str:
    """Short random identifier such as 'pattern_1a2b3c4d'."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def normalize_message(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    text = _NON_WORD_RE.sub("", text.lower())
    return _WHITESPACE_RE.sub(" ", text).strip()


def extract_pattern_key(normalized: str, vocabulary: Vocabulary | None = None) -> str:
    """Derive the pattern key of a normalized message.

    Stop-words are dropped unless they are key terms, key terms move to the
    front (keeping their relative order), and at most MAX_KEY_TOKENS words
    are kept.
    """
    vocabulary = vocabulary or Vocabulary()
    key_terms = vocabulary.key_terms

    words = [
        word
        for word in normalized.split()
        if word not in vocabulary.stop_words or word in key_terms
    ]
    # sorted() is stable, so non-key words keep their order
    words = sorted(words, key=lambda word: word not in key_terms)
    return " ".join(words[:MAX_KEY_TOKENS])


def count_pattern_keys(messages: list[Message], vocabulary: Vocabulary | None = None) -> Counter:
    """Count user messages per pattern key, without thresholds or merging."""
    counts: Counter = Counter()
    for message in messages:
        if message.sender != "user":
            continue
        counts[extract_pattern_key(normalize_message(message.content), vocabulary)] += 1
    return counts


def find_related_sessions(
    pattern_key: str,
    messages: list[Message],
    sessions: list[Session],
) -> list[Session]:
    """Sessions having a message whose normalized content contains the key.

    Containment is a plain substring test, looser than the token-based key
    derivation; an empty key therefore relates to every session with messages.
    """
    session_ids = {
        message.session_id
        for message in messages
        if pattern_key in normalize_message(message.content)
    }
    return [session for session in sessions if session.id in session_ids]


def classify_session(session: Session) -> list[str]:
    """Behavioral labels for one session.

    Exactly one of beginner/intermediate/expert from the message count, plus
    'efficient' for quick resolutions and 'needs_assistance' for agent transfers.
    """
    if session.message_count <= 3:
        labels = ["beginner"]
    elif session.message_count <= 7:
        labels = ["intermediate"]
    else:
        labels = ["expert"]

    if session.issue_resolved and session.resolution_steps <= 2:
        labels.append("efficient")
    if session.transferred_to_agent:
        labels.append("needs_assistance")

    return labels


def extract_user_types(sessions: list[Session]) -> list[str]:
    """Union of session labels, in first-seen order."""
    user_types: dict[str, None] = {}
    for session in sessions:
        for label in classify_session(session):
            user_types.setdefault(label)
    return list(user_types)


def extract_patterns(
    messages: list[Message],
    sessions: list[Session],
    config: PatternExtractionConfig,
    vocabulary: Vocabulary | None = None,
) -> list[Pattern]:
    """Build frequency-counted patterns from user messages.

    Args:
        messages: Messages of the analyzed sessions (non-user messages are ignored)
        sessions: Sessions used for user-type correlation
        config: Extraction settings
        vocabulary: Word lists for key derivation

    Returns:
        Patterns with frequency >= min_frequency, most frequent first, capped
        at max_patterns. Similar patterns are not merged yet.
    """
    user_messages = [m for m in messages if m.sender == "user"]

    buckets: dict[str, dict] = {}
    for message in user_messages:
        key = extract_pattern_key(normalize_message(message.content), vocabulary)
        bucket = buckets.setdefault(
            key,
            {
                "count": 0,
                "examples": [],
                "intents": {},
                "entities": Counter(),
                "sentiment_total": 0.0,
                "sentiment_count": 0,
            },
        )
        bucket["count"] += 1

        if len(bucket["examples"]) < MAX_EXAMPLES and message.content not in bucket["examples"]:
            bucket["examples"].append(message.content)

        if config.include_intents and message.intent:
            bucket["intents"].setdefault(message.intent)

        if config.include_entities and message.entities:
            for entity in message.entities:
                bucket["entities"][entity] += 1

        if config.include_sentiment and message.sentiment_score is not None:
            bucket["sentiment_total"] += message.sentiment_score
            bucket["sentiment_count"] += 1

    kept = sorted(
        ((key, data) for key, data in buckets.items() if data["count"] >= config.min_frequency),
        key=lambda item: item[1]["count"],
        reverse=True,
    )[: config.max_patterns]

    logger.debug(
        f"Extracted {len(buckets)} pattern keys from {len(user_messages)} user messages, "
        f"kept {len(kept)}"
    )

    patterns = []
    for key, data in kept:
        related_sessions = find_related_sessions(key, user_messages, sessions)
        average_sentiment = (
            data["sentiment_total"] / data["sentiment_count"] if data["sentiment_count"] else None
        )
        patterns.append(
            Pattern(
                id=new_id("pattern"),
                pattern_key=key,
                frequency=data["count"],
                examples=data["examples"],
                related_intents=list(data["intents"]),
                user_types=extract_user_types(related_sessions),
                common_entities=dict(data["entities"]),
                average_sentiment_score=average_sentiment,
            )
        )

    return patterns


def pattern_similarity(key_a: str, key_b: str) -> float:
    """Jaccard similarity of the whitespace token sets of two pattern keys."""
    tokens_a = set(key_a.split())
    tokens_b = set(key_b.split())

    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def merge_patterns(main: Pattern, similar: list[Pattern]) -> Pattern:
    """Fold similar patterns into main, keeping main's id and key."""
    members = [main, *similar]

    examples: dict[str, None] = {}
    intents: dict[str, None] = {}
    user_types: dict[str, None] = {}
    entities: Counter = Counter()
    for pattern in members:
        for example in pattern.examples:
            examples.setdefault(example)
        for intent in pattern.related_intents:
            intents.setdefault(intent)
        for user_type in pattern.user_types:
            user_types.setdefault(user_type)
        entities.update(pattern.common_entities)

    # Frequency-weighted mean over members that carry a score
    scored = [p for p in members if p.average_sentiment_score is not None]
    average_sentiment = None
    scored_frequency = sum(p.frequency for p in scored)
    if scored and scored_frequency > 0:
        average_sentiment = (
            sum(p.average_sentiment_score * p.frequency for p in scored) / scored_frequency
        )

    return Pattern(
        id=main.id,
        pattern_key=main.pattern_key,
        frequency=sum(p.frequency for p in members),
        examples=list(examples)[:MAX_EXAMPLES],
        related_intents=list(intents),
        user_types=list(user_types),
        common_entities=dict(entities),
        average_sentiment_score=average_sentiment,
    )


def merge_similar_patterns(patterns: list[Pattern], similarity_threshold: float) -> list[Pattern]:
    """Greedily merge near-duplicate patterns.

    Patterns are visited in the given order; each unprocessed pattern absorbs
    every later unprocessed pattern whose similarity reaches the threshold.
    Decisions are never revisited after a merge.

    Returns:
        Merged patterns sorted by frequency, highest first
    """
    result = []
    processed: set[int] = set()

    for i, current in enumerate(patterns):
        if i in processed:
            continue

        similar = []
        for j in range(i + 1, len(patterns)):
            if j in processed:
                continue
            if pattern_similarity(current.pattern_key, patterns[j].pattern_key) >= similarity_threshold:
                similar.append(patterns[j])
                processed.add(j)

        if similar:
            logger.debug(f"Merging {len(similar)} patterns into '{current.pattern_key}'")
            result.append(merge_patterns(current, similar))
        else:
            result.append(current)
        processed.add(i)

    result.sort(key=lambda p: p.frequency, reverse=True)
    return result
