"""Data summary and composite data-quality score."""

from conversation_insights.storage import Cluster, DataSummary, Insight, Pattern, Session

MAX_TOP_CLUSTERS = 5
MAX_RECENT_INSIGHTS = 5


def calculate_quality_breakdown(
    pattern_count: int,
    cluster_count: int,
    sessions: list[Session],
) -> dict[str, int]:
    """Five sub-scores of up to 20 points each.

    Args:
        pattern_count: Number of extracted patterns
        cluster_count: Number of clusters
        sessions: All sessions in the store

    Returns:
        Dict of sub-score name to points
    """
    session_count = len(sessions)
    resolution_rate = (
        sum(1 for s in sessions if s.issue_resolved) / session_count if session_count else 0
    )
    satisfaction_coverage = (
        sum(1 for s in sessions if s.user_satisfaction is not None) / session_count
        if session_count
        else 0
    )

    return {
        "session_count": min(20, session_count // 10),
        "pattern_diversity": min(20, pattern_count // 5),
        "cluster_quality": min(20, cluster_count * 2),
        "resolution": int(resolution_rate * 20),
        "satisfaction_coverage": int(satisfaction_coverage * 20),
    }


def calculate_data_quality_score(breakdown: dict[str, int]) -> int:
    """Sum of sub-scores clamped to 0..100."""
    return max(0, min(100, sum(breakdown.values())))


def build_data_summary(
    patterns: list[Pattern],
    clusters: list[Cluster],
    insights: list[Insight],
    sessions: list[Session],
    total_messages: int,
) -> DataSummary:
    """Aggregate one analysis run.

    Args:
        patterns: Extracted patterns
        clusters: Pattern clusters
        insights: Generated insights
        sessions: Every session in the store, not only the analyzed window
        total_messages: Message count over those sessions

    Returns:
        DataSummary with distribution and quality score
    """
    distribution: dict[str, int] = {}
    for cluster in clusters:
        distribution[cluster.name] = distribution.get(cluster.name, 0) + sum(
            p.frequency for p in cluster.patterns
        )

    breakdown = calculate_quality_breakdown(len(patterns), len(clusters), sessions)

    return DataSummary(
        total_sessions=len(sessions),
        total_messages=total_messages,
        unique_pattern_count=len(patterns),
        top_clusters=sorted(clusters, key=lambda c: len(c.patterns), reverse=True)[
            :MAX_TOP_CLUSTERS
        ],
        recent_insights=sorted(insights, key=lambda i: i.importance, reverse=True)[
            :MAX_RECENT_INSIGHTS
        ],
        pattern_distribution=distribution,
        data_quality_score=calculate_data_quality_score(breakdown),
        quality_breakdown=breakdown,
    )
