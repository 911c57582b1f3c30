"""Intent-based clustering of patterns with per-cluster outcome statistics."""

import logging
from collections import Counter

from conversation_insights.patterns import find_related_sessions, new_id
from conversation_insights.storage import Cluster, Message, Pattern, Session

logger = logging.getLogger("conversation-insights")

UNKNOWN_INTENT = "unknown"
MAX_ISSUE_TYPES = 3


def group_patterns_by_intent(patterns: list[Pattern]) -> dict[str, list[Pattern]]:
    """Group patterns by related intent.

    A pattern with several intents lands in several groups; one without any
    intent goes to the 'unknown' group.
    """
    groups: dict[str, list[Pattern]] = {}
    for pattern in patterns:
        intents = pattern.related_intents or [UNKNOWN_INTENT]
        for intent in intents:
            groups.setdefault(intent, []).append(pattern)
    return groups


def find_related_sessions_for_patterns(
    patterns: list[Pattern],
    messages: list[Message],
    sessions: list[Session],
) -> list[Session]:
    """Deduplicated union of the related sessions of every pattern."""
    related: dict[str, Session] = {}
    for pattern in patterns:
        for session in find_related_sessions(pattern.pattern_key, messages, sessions):
            related.setdefault(session.id, session)
    return list(related.values())


def calculate_resolution_rate(sessions: list[Session]) -> float:
    """Share of resolved sessions; 0 when there are none."""
    if not sessions:
        return 0.0
    resolved = sum(1 for s in sessions if s.issue_resolved)
    return resolved / len(sessions)


def calculate_average_satisfaction(sessions: list[Session]) -> float | None:
    """Mean rating over rated sessions, None when nobody rated."""
    ratings = [s.user_satisfaction for s in sessions if s.user_satisfaction is not None]
    if not ratings:
        return None
    return sum(ratings) / len(ratings)


def extract_common_issue_types(sessions: list[Session]) -> list[str]:
    """Up to three most frequent issue types."""
    counts = Counter(s.issue_type for s in sessions)
    return [issue_type for issue_type, _ in counts.most_common(MAX_ISSUE_TYPES)]


def cluster_patterns(
    patterns: list[Pattern],
    messages: list[Message],
    sessions: list[Session],
) -> list[Cluster]:
    """Turn each intent group into a cluster.

    Args:
        patterns: Patterns to cluster
        messages: Messages used to correlate patterns with sessions
        sessions: Sessions providing the outcome statistics

    Returns:
        One cluster per intent group, in first-seen intent order
    """
    clusters = []
    for intent, group in group_patterns_by_intent(patterns).items():
        # max() returns the first maximal element, so ties keep input order
        central = max(group, key=lambda p: p.frequency)
        related_sessions = find_related_sessions_for_patterns(group, messages, sessions)

        clusters.append(
            Cluster(
                id=new_id("cluster"),
                name=intent,
                size=len(group),
                central_pattern=central.pattern_key,
                patterns=list(group),
                average_satisfaction_score=calculate_average_satisfaction(related_sessions),
                common_issue_types=extract_common_issue_types(related_sessions),
                resolution_rate=calculate_resolution_rate(related_sessions),
            )
        )
        logger.debug(
            f"Cluster '{intent}': {len(group)} patterns, {len(related_sessions)} related sessions"
        )

    return clusters
