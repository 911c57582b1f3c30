"""MCP Conversation Insights Server.

Provides tools for mining chatbot conversation logs:
- get_status: Store statistics
- extract_patterns: Recurring user-message patterns
- get_clusters: Intent clusters with resolution/satisfaction stats
- get_insights: Ranked insights (patterns, clusters, trends)
- get_data_summary: Totals, distribution and data-quality score
- analyze_conversations: Full pipeline in one call
"""

import logging
import os
from datetime import datetime, timedelta

from fastmcp import FastMCP

from conversation_insights import __version__
from conversation_insights.processor import ConversationDataProcessor
from conversation_insights.storage import PatternExtractionConfig, SQLiteStorage
from conversation_insights.vocabulary import load_vocabulary

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("conversation-insights")
if os.environ.get("DEV_MODE"):
    logger.setLevel(logging.DEBUG)

# Initialize MCP server
mcp = FastMCP("conversation-insights")

# Storage is opened on first use so importing the module has no side effects
_storage: SQLiteStorage | None = None


def get_storage() -> SQLiteStorage:
    """Return the shared storage instance."""
    global _storage
    if _storage is None:
        _storage = SQLiteStorage()
    return _storage


def _processor() -> ConversationDataProcessor:
    return ConversationDataProcessor(get_storage(), load_vocabulary())


def _config(
    days: int | None,
    min_frequency: int,
    max_patterns: int,
    similarity_threshold: float,
    include_entities: bool = True,
    include_intents: bool = True,
    include_sentiment: bool = True,
) -> PatternExtractionConfig:
    time_range = None
    if days is not None:
        now = datetime.now()
        time_range = (now - timedelta(days=days), now)
    return PatternExtractionConfig(
        time_range=time_range,
        min_frequency=min_frequency,
        max_patterns=max_patterns,
        similarity_threshold=similarity_threshold,
        include_entities=include_entities,
        include_intents=include_intents,
        include_sentiment=include_sentiment,
    )


@mcp.tool()
def get_status() -> dict:
    """Get store statistics.

    Returns:
        Status info including session/message counts and DB size
    """
    return {
        "status": "ok",
        "version": __version__,
        **get_storage().get_db_stats(),
    }


@mcp.tool()
def extract_patterns(
    days: int | None = 7,
    min_frequency: int = 3,
    max_patterns: int = 50,
    similarity_threshold: float = 0.5,
    include_entities: bool = True,
    include_intents: bool = True,
    include_sentiment: bool = True,
) -> dict:
    """Extract recurring user-message patterns.

    Args:
        days: Days to analyze; None analyzes every session (default: 7)
        min_frequency: Minimum occurrences for a pattern (default: 3)
        max_patterns: Maximum patterns kept before merging (default: 50)
        similarity_threshold: Jaccard similarity for merging (default: 0.5)
        include_entities: Count entities per pattern (default: True)
        include_intents: Collect related intents per pattern (default: True)
        include_sentiment: Average sentiment per pattern (default: True)

    Returns:
        Patterns sorted by frequency
    """
    config = _config(
        days,
        min_frequency,
        max_patterns,
        similarity_threshold,
        include_entities,
        include_intents,
        include_sentiment,
    )
    patterns = _processor().extract_patterns(config)
    return {
        "days": days,
        "pattern_count": len(patterns),
        "patterns": [p.to_dict() for p in patterns],
    }


@mcp.tool()
def get_clusters(
    days: int | None = 7,
    min_frequency: int = 3,
    max_patterns: int = 50,
    similarity_threshold: float = 0.5,
) -> dict:
    """Cluster extracted patterns by intent.

    Args:
        days: Days to analyze; None analyzes every session (default: 7)
        min_frequency: Minimum occurrences for a pattern (default: 3)
        max_patterns: Maximum patterns kept before merging (default: 50)
        similarity_threshold: Jaccard similarity for merging (default: 0.5)

    Returns:
        Clusters with resolution rate, satisfaction and common issue types
    """
    processor = _processor()
    config = _config(days, min_frequency, max_patterns, similarity_threshold)
    clusters = processor.cluster_patterns(processor.extract_patterns(config))
    return {
        "days": days,
        "cluster_count": len(clusters),
        "clusters": [c.to_dict(include_patterns=False) for c in clusters],
    }


@mcp.tool()
def get_insights(
    days: int | None = 7,
    min_frequency: int = 3,
    max_patterns: int = 50,
    similarity_threshold: float = 0.5,
    limit: int = 20,
) -> dict:
    """Get ranked insights about the conversations.

    Args:
        days: Days to analyze; None analyzes every session (default: 7)
        min_frequency: Minimum occurrences for a pattern (default: 3)
        max_patterns: Maximum patterns kept before merging (default: 50)
        similarity_threshold: Jaccard similarity for merging (default: 0.5)
        limit: Maximum insights returned (default: 20)

    Returns:
        Insights sorted by importance, highest first
    """
    processor = _processor()
    config = _config(days, min_frequency, max_patterns, similarity_threshold)
    patterns = processor.extract_patterns(config)
    clusters = processor.cluster_patterns(patterns)
    insights = processor.generate_insights(patterns, clusters, config)
    return {
        "days": days,
        "insight_count": len(insights),
        "insights": [i.to_dict() for i in insights[:limit]],
    }


@mcp.tool()
def get_data_summary(days: int | None = 7) -> dict:
    """Get totals, pattern distribution and the data-quality score.

    Args:
        days: Days used for pattern extraction; totals always cover the whole store

    Returns:
        Data summary
    """
    result = _processor().run(_config(days, 3, 50, 0.5))
    return result.summary.to_dict()


@mcp.tool()
def analyze_conversations(
    days: int | None = 7,
    min_frequency: int = 3,
    max_patterns: int = 50,
    similarity_threshold: float = 0.5,
    include_entities: bool = True,
    include_intents: bool = True,
    include_sentiment: bool = True,
) -> dict:
    """Run the full pipeline: patterns, clusters, insights and summary.

    Args:
        days: Days to analyze; None analyzes every session (default: 7)
        min_frequency: Minimum occurrences for a pattern (default: 3)
        max_patterns: Maximum patterns kept before merging (default: 50)
        similarity_threshold: Jaccard similarity for merging (default: 0.5)
        include_entities: Count entities per pattern (default: True)
        include_intents: Collect related intents per pattern (default: True)
        include_sentiment: Average sentiment per pattern (default: True)

    Returns:
        All pipeline outputs, or an error status if a stage failed
    """
    try:
        config = _config(
            days,
            min_frequency,
            max_patterns,
            similarity_threshold,
            include_entities,
            include_intents,
            include_sentiment,
        )
        return _processor().run(config).to_dict()
    except Exception as e:
        logger.error("Conversation analysis failed: %s", e, exc_info=True)
        return {
            "status": "error",
            "error": str(e),
            "timestamp": datetime.now().isoformat(),
        }


def create_app():
    """Create the ASGI app for uvicorn."""
    # stateless_http=True allows resilience to server restarts
    return mcp.http_app(stateless_http=True)


def main():
    """Run the MCP server."""
    import uvicorn

    port = int(os.environ.get("PORT", 8082))
    host = os.environ.get("HOST", "127.0.0.1")

    print(f"Starting Conversation Insights on {host}:{port}")

    uvicorn.run(create_app(), host=host, port=port)


if __name__ == "__main__":
    main()
