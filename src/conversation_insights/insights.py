"""Insight generation from patterns, clusters and period-over-period trends."""

import logging
from collections import Counter
from datetime import datetime

from conversation_insights.patterns import new_id
from conversation_insights.storage import Cluster, Insight, Pattern
from conversation_insights.vocabulary import DEFAULT_TREND_TOPICS, TrendTopic

logger = logging.getLogger("conversation-insights")

HIGH_FREQUENCY_THRESHOLD = 10
NEGATIVE_SENTIMENT_THRESHOLD = -0.3
OUTLIER_FREQUENCY_THRESHOLD = 5
LOW_RESOLUTION_THRESHOLD = 0.6
LOW_RESOLUTION_MIN_PATTERNS = 3
LOW_SATISFACTION_THRESHOLD = 3.5
LARGE_CLUSTER_MIN_PATTERNS = 5

# Percentage change beyond which a metric counts as moving
TREND_CHANGE_THRESHOLD = 5


def _insight(
    type_: str,
    description: str,
    importance: int,
    related: list[str],
    detected_at: datetime,
) -> Insight:
    return Insight(
        id=new_id("insight"),
        type=type_,
        description=description,
        importance=importance,
        related_pattern_ids=related,
        detected_at=detected_at,
    )


def generate_pattern_insights(
    patterns: list[Pattern],
    clusters: list[Cluster],
    now: datetime | None = None,
) -> list[Insight]:
    """High-frequency, negative-sentiment and unclustered-pattern insights."""
    now = now or datetime.now()
    insights = []

    frequent = sorted(
        (p for p in patterns if p.frequency > HIGH_FREQUENCY_THRESHOLD),
        key=lambda p: p.frequency,
        reverse=True,
    )[:5]
    for pattern in frequent:
        insights.append(
            _insight(
                "pattern",
                f'Frequent pattern: "{pattern.pattern_key}" ({pattern.frequency} times)',
                min(8, 5 + pattern.frequency // 20),
                [pattern.id],
                now,
            )
        )

    negative = sorted(
        (
            p
            for p in patterns
            if p.average_sentiment_score is not None
            and p.average_sentiment_score < NEGATIVE_SENTIMENT_THRESHOLD
        ),
        key=lambda p: p.average_sentiment_score,
    )[:3]
    for pattern in negative:
        insights.append(
            _insight(
                "pattern",
                f'Negative sentiment pattern: "{pattern.pattern_key}" '
                f"(sentiment score: {pattern.average_sentiment_score:.2f})",
                9,
                [pattern.id],
                now,
            )
        )

    clustered_ids = {p.id for cluster in clusters for p in cluster.patterns}
    outliers = [
        p
        for p in patterns
        if p.id not in clustered_ids and p.frequency > OUTLIER_FREQUENCY_THRESHOLD
    ][:3]
    for pattern in outliers:
        insights.append(
            _insight(
                "anomaly",
                f'Unclustered frequent pattern: "{pattern.pattern_key}" '
                f"({pattern.frequency} times)",
                7,
                [pattern.id],
                now,
            )
        )

    return insights


def generate_cluster_insights(clusters: list[Cluster], now: datetime | None = None) -> list[Insight]:
    """Low-resolution, low-satisfaction and large-cluster insights."""
    now = now or datetime.now()
    insights = []

    low_resolution = sorted(
        (
            c
            for c in clusters
            if c.resolution_rate < LOW_RESOLUTION_THRESHOLD
            and len(c.patterns) > LOW_RESOLUTION_MIN_PATTERNS
        ),
        key=lambda c: c.resolution_rate,
    )[:3]
    for cluster in low_resolution:
        insights.append(
            _insight(
                "suggestion",
                f'Low resolution cluster: "{cluster.name}" '
                f"(resolution rate: {cluster.resolution_rate * 100:.1f}%)",
                10,
                [p.id for p in cluster.patterns],
                now,
            )
        )

    low_satisfaction = sorted(
        (
            c
            for c in clusters
            if c.average_satisfaction_score is not None
            and c.average_satisfaction_score < LOW_SATISFACTION_THRESHOLD
        ),
        key=lambda c: c.average_satisfaction_score,
    )[:3]
    for cluster in low_satisfaction:
        insights.append(
            _insight(
                "suggestion",
                f'Low satisfaction cluster: "{cluster.name}" '
                f"(satisfaction: {cluster.average_satisfaction_score:.1f}/5)",
                9,
                [p.id for p in cluster.patterns],
                now,
            )
        )

    large = sorted(
        (c for c in clusters if len(c.patterns) > LARGE_CLUSTER_MIN_PATTERNS),
        key=lambda c: len(c.patterns),
        reverse=True,
    )[:3]
    for cluster in large:
        insights.append(
            _insight(
                "pattern",
                f'Major conversation cluster: "{cluster.name}" ({len(cluster.patterns)} patterns)',
                6,
                [p.id for p in cluster.patterns],
                now,
            )
        )

    return insights


def calculate_change(current: float, previous: float) -> dict:
    """Calculate percentage change and direction."""
    if previous == 0:
        if current == 0:
            pct_change = 0.0
            direction = "unchanged"
        else:
            pct_change = 100.0
            direction = "up"
    else:
        pct_change = ((current - previous) / previous) * 100
        if pct_change > TREND_CHANGE_THRESHOLD:
            direction = "up"
        elif pct_change < -TREND_CHANGE_THRESHOLD:
            direction = "down"
        else:
            direction = "unchanged"

    return {
        "current": current,
        "previous": previous,
        "change_pct": round(pct_change, 1),
        "direction": direction,
    }


def topic_volume(topic: TrendTopic, key_counts: Counter) -> int:
    """Summed count of the pattern keys matching a topic."""
    return sum(count for key, count in key_counts.items() if topic.matches(key))


def analyze_topic_trends(
    current_counts: Counter,
    previous_counts: Counter,
    topics: tuple[TrendTopic, ...] = DEFAULT_TREND_TOPICS,
) -> list[dict]:
    """Compare topic volumes between the current and the previous window."""
    return [
        {
            "topic": topic.name,
            **calculate_change(
                topic_volume(topic, current_counts), topic_volume(topic, previous_counts)
            ),
        }
        for topic in topics
    ]


def generate_trend_insights(
    patterns: list[Pattern],
    current_counts: Counter,
    previous_counts: Counter,
    topics: tuple[TrendTopic, ...] = DEFAULT_TREND_TOPICS,
    now: datetime | None = None,
) -> list[Insight]:
    """Insights for topics whose volume moved between the two windows.

    Args:
        patterns: Current patterns, used for the related pattern ids
        current_counts: Pattern key counts of the current window
        previous_counts: Pattern key counts of the preceding window
        topics: Topics to track
        now: Detection timestamp

    Returns:
        One insight per topic that went up or down, in topic order
    """
    now = now or datetime.now()
    insights = []

    for topic, change in zip(topics, analyze_topic_trends(current_counts, previous_counts, topics)):
        if change["direction"] == "unchanged":
            continue

        verb = "increased" if change["direction"] == "up" else "decreased"
        description = (
            f"Inquiries about {topic.display_name} {verb} by {abs(change['change_pct']):.0f}% "
            f"({change['previous']} -> {change['current']} messages)"
        )
        related = [p.id for p in patterns if topic.matches(p.pattern_key)]
        insights.append(_insight("trend", description, topic.importance, related, now))

    return insights


def generate_insights(
    patterns: list[Pattern],
    clusters: list[Cluster],
    trend_insights: list[Insight] | None = None,
    now: datetime | None = None,
) -> list[Insight]:
    """Concatenate pattern, cluster and trend insights, most important first.

    The sort is stable, so equal importance keeps generation order.
    """
    now = now or datetime.now()
    insights = [
        *generate_pattern_insights(patterns, clusters, now),
        *generate_cluster_insights(clusters, now),
        *(trend_insights or []),
    ]
    insights.sort(key=lambda i: i.importance, reverse=True)

    logger.debug(f"Generated {len(insights)} insights")
    return insights
