"""Stateless facade running the pattern -> cluster -> insight -> summary pipeline.

The processor reads everything it needs from an injected store on each call
and keeps no state between calls, so independent callers can share one
instance. Any store with ``get_snapshot(filters)``, ``get_sessions(filters)``
and ``get_message_count()`` works; SQLiteStorage is the bundled one.

A full ``run()`` takes a single snapshot of the store and derives every
time window from it in memory.
"""

import logging
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from conversation_insights.clusters import cluster_patterns
from conversation_insights.insights import generate_insights, generate_trend_insights
from conversation_insights.patterns import count_pattern_keys, extract_patterns, merge_similar_patterns
from conversation_insights.storage import (
    Cluster,
    DataSummary,
    Insight,
    Message,
    Pattern,
    PatternExtractionConfig,
    Session,
    SessionFilter,
    SQLiteStorage,
)
from conversation_insights.summary import build_data_summary
from conversation_insights.vocabulary import Vocabulary

logger = logging.getLogger("conversation-insights")

Snapshot = tuple[list[Session], list[Message]]
TimeRange = tuple[datetime, datetime]

# Current trend window when the extraction config has no time range
DEFAULT_TREND_DAYS = 7


class ConversationInsightsError(Exception):
    """Base class for pipeline failures."""


class PatternExtractionError(ConversationInsightsError):
    """Pattern extraction failed."""


class ClusteringError(ConversationInsightsError):
    """Pattern clustering failed."""


class InsightGenerationError(ConversationInsightsError):
    """Insight generation failed."""


class DataSummaryError(ConversationInsightsError):
    """Data summary generation failed."""


class AnalysisCancelled(ConversationInsightsError):
    """The caller cancelled the pipeline between stages."""


@dataclass
class AnalysisResult:
    """Output of one full pipeline run."""

    patterns: list[Pattern] = field(default_factory=list)
    clusters: list[Cluster] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)
    summary: DataSummary | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "status": "success",
            "patterns": [p.to_dict() for p in self.patterns],
            "clusters": [c.to_dict(include_patterns=False) for c in self.clusters],
            "insights": [i.to_dict() for i in self.insights],
            "summary": self.summary.to_dict() if self.summary else None,
            "timestamp": self.completed_at.isoformat() if self.completed_at else None,
        }



def in_date_range(session: Session, date_range: TimeRange) -> bool:
    """Same predicate as the store's date-range filter."""
    start, end = date_range
    if not start <= session.start_time <= end:
        return False
    return session.end_time is None or session.end_time <= end


def window_snapshot(snapshot: Snapshot, date_range: TimeRange | None) -> Snapshot:
    """Sessions of a snapshot inside the date range, with their messages."""
    if date_range is None:
        return snapshot
    sessions, messages = snapshot
    kept = [s for s in sessions if in_date_range(s, date_range)]
    kept_ids = {s.id for s in kept}
    return kept, [m for m in messages if m.session_id in kept_ids]


def trend_windows(time_range: TimeRange | None, now: datetime) -> tuple[TimeRange, TimeRange]:
    """Current window and the equally long window ending just before it."""
    if time_range is None:
        time_range = (now - timedelta(days=DEFAULT_TREND_DAYS), now)
    start, end = time_range
    return time_range, (start - (end - start), start - timedelta(microseconds=1))


class ConversationDataProcessor:
    """Pattern mining, clustering and insight generation over a session store."""

    def __init__(self, store: SQLiteStorage, vocabulary: Vocabulary | None = None):
        """Initialize with the session/message store and optional word lists."""
        self.store = store
        self.vocabulary = vocabulary or Vocabulary()

    @contextmanager
    def _stage(self, error_class: type[ConversationInsightsError], action: str):
        """Log and wrap any failure of the enclosed stage."""
        try:
            yield
        except Exception as e:
            logger.error("Failed to %s: %s", action, e)
            raise error_class(f"Failed to {action}: {e}") from e

    # Stage bodies over an in-memory snapshot

    def _extract(self, config: PatternExtractionConfig, snapshot: Snapshot) -> list[Pattern]:
        sessions, messages = snapshot
        patterns = extract_patterns(messages, sessions, config, self.vocabulary)
        merged = merge_similar_patterns(patterns, config.similarity_threshold)
        logger.info(
            f"Extracted {len(merged)} patterns ({len(patterns)} before merging) "
            f"from {len(sessions)} sessions"
        )
        return merged

    def _cluster(self, patterns: list[Pattern], snapshot: Snapshot) -> list[Cluster]:
        sessions, messages = snapshot
        clusters = cluster_patterns(patterns, messages, sessions)
        logger.info(f"Built {len(clusters)} clusters from {len(patterns)} patterns")
        return clusters

    def _trends(
        self,
        patterns: list[Pattern],
        snapshot: Snapshot,
        windows: tuple[TimeRange, TimeRange],
        now: datetime,
    ) -> list[Insight]:
        current, previous = windows
        _, current_messages = window_snapshot(snapshot, current)
        _, previous_messages = window_snapshot(snapshot, previous)
        return generate_trend_insights(
            patterns,
            count_pattern_keys(current_messages, self.vocabulary),
            count_pattern_keys(previous_messages, self.vocabulary),
            self.vocabulary.trend_topics,
            now,
        )

    def _insights(
        self,
        patterns: list[Pattern],
        clusters: list[Cluster],
        snapshot: Snapshot,
        windows: tuple[TimeRange, TimeRange],
        now: datetime,
    ) -> list[Insight]:
        trend_insights = self._trends(patterns, snapshot, windows, now)
        insights = generate_insights(patterns, clusters, trend_insights, now=now)
        logger.info(f"Generated {len(insights)} insights ({len(trend_insights)} trends)")
        return insights

    def _trend_snapshot(self, windows: tuple[TimeRange, TimeRange]) -> Snapshot:
        """One store read covering both trend windows."""
        current, previous = windows
        return self.store.get_snapshot(SessionFilter(date_range=(previous[0], current[1])))

    # Public stages, each reading the store once

    def extract_patterns(self, config: PatternExtractionConfig) -> list[Pattern]:
        """Extract and merge patterns from user messages of the configured window.

        Raises:
            PatternExtractionError: If the store or the extraction fails
        """
        filters = SessionFilter(date_range=config.time_range) if config.time_range else None
        with self._stage(PatternExtractionError, "extract conversation patterns"):
            return self._extract(config, self.store.get_snapshot(filters))

    def cluster_patterns(self, patterns: list[Pattern]) -> list[Cluster]:
        """Cluster patterns by intent, correlating against the whole store.

        Raises:
            ClusteringError: If the store or the clustering fails
        """
        with self._stage(ClusteringError, "cluster patterns"):
            return self._cluster(patterns, self.store.get_snapshot())

    def detect_trends(
        self,
        patterns: list[Pattern],
        time_range: TimeRange | None = None,
        now: datetime | None = None,
    ) -> list[Insight]:
        """Trend insights from the given window against the window just before it.

        Raises:
            InsightGenerationError: If the store or the comparison fails
        """
        now = now or datetime.now()
        windows = trend_windows(time_range, now)
        with self._stage(InsightGenerationError, "detect trends"):
            return self._trends(patterns, self._trend_snapshot(windows), windows, now)

    def generate_insights(
        self,
        patterns: list[Pattern],
        clusters: list[Cluster],
        config: PatternExtractionConfig | None = None,
    ) -> list[Insight]:
        """Ranked insights from patterns, clusters and trends.

        Args:
            patterns: Extracted patterns
            clusters: Clusters of those patterns
            config: Extraction config whose time range is the current trend window

        Raises:
            InsightGenerationError: If the store or the generation fails
        """
        now = datetime.now()
        windows = trend_windows(config.time_range if config else None, now)
        with self._stage(InsightGenerationError, "generate insights"):
            return self._insights(patterns, clusters, self._trend_snapshot(windows), windows, now)

    def generate_data_summary(
        self,
        patterns: list[Pattern],
        clusters: list[Cluster],
        insights: list[Insight],
    ) -> DataSummary:
        """Summary over the whole store.

        Raises:
            DataSummaryError: If the store or the aggregation fails
        """
        with self._stage(DataSummaryError, "generate data summary"):
            sessions = self.store.get_sessions()
            return build_data_summary(
                patterns, clusters, insights, sessions, self.store.get_message_count()
            )

    def run(
        self,
        config: PatternExtractionConfig,
        should_cancel: Callable[[], bool] | None = None,
    ) -> AnalysisResult:
        """Run all four stages in order over one snapshot of the store.

        A failing stage stops the run. should_cancel is polled between stages.

        Raises:
            AnalysisCancelled: If should_cancel returned True
            ConversationInsightsError: If any stage failed
        """

        def checkpoint(stage: str):
            if should_cancel is not None and should_cancel():
                logger.info(f"Analysis cancelled before {stage}")
                raise AnalysisCancelled(f"Analysis cancelled before {stage}")

        checkpoint("pattern extraction")
        with self._stage(PatternExtractionError, "extract conversation patterns"):
            snapshot = self.store.get_snapshot()
            patterns = self._extract(config, window_snapshot(snapshot, config.time_range))

        checkpoint("clustering")
        with self._stage(ClusteringError, "cluster patterns"):
            clusters = self._cluster(patterns, snapshot)

        checkpoint("insight generation")
        now = datetime.now()
        windows = trend_windows(config.time_range, now)
        with self._stage(InsightGenerationError, "generate insights"):
            insights = self._insights(patterns, clusters, snapshot, windows, now)

        checkpoint("data summary")
        sessions, messages = snapshot
        with self._stage(DataSummaryError, "generate data summary"):
            summary = build_data_summary(patterns, clusters, insights, sessions, len(messages))

        return AnalysisResult(
            patterns=patterns,
            clusters=clusters,
            insights=insights,
            summary=summary,
            completed_at=datetime.now(),
        )
