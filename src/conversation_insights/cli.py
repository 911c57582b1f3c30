"""Command-line interface for conversation insights."""

import argparse
import json
from datetime import datetime, timedelta

from conversation_insights.ingest import ingest_snapshot
from conversation_insights.processor import ConversationDataProcessor
from conversation_insights.storage import PatternExtractionConfig, SQLiteStorage
from conversation_insights.vocabulary import load_vocabulary

# Formatter registry: list of (predicate, formatter) tuples
# Each predicate checks if this formatter can handle the data
# Order matters - first match wins
_FORMATTERS: list[tuple[callable, callable]] = []


def _register_formatter(predicate: callable):
    """Decorator to register a formatter with its predicate."""

    def decorator(formatter: callable):
        _FORMATTERS.append((predicate, formatter))
        return formatter

    return decorator


def _format_summary_lines(summary: dict) -> list[str]:
    lines = [
        f"Sessions: {summary['total_sessions']}",
        f"Messages: {summary['total_messages']}",
        f"Unique patterns: {summary['unique_pattern_count']}",
        f"Data quality score: {summary['data_quality_score']}/100",
    ]
    breakdown = summary.get("quality_breakdown", {})
    for name, points in breakdown.items():
        lines.append(f"  {name}: {points}/20")
    if summary.get("pattern_distribution"):
        lines.append("")
        lines.append("Pattern distribution:")
        for name, frequency in summary["pattern_distribution"].items():
            lines.append(f"  {name}: {frequency}")
    return lines


def _format_insight_line(insight: dict) -> str:
    return f"  [{insight['importance']:>2}] ({insight['type']}) {insight['description']}"


@_register_formatter(lambda d: "patterns" in d and "summary" in d)
def _format_analysis(data: dict) -> list[str]:
    lines = [f"Patterns: {len(data['patterns'])}", f"Clusters: {len(data['clusters'])}", ""]
    if data.get("summary"):
        lines.extend(_format_summary_lines(data["summary"]))
        lines.append("")
    lines.append("Top insights:")
    for insight in data.get("insights", [])[:10]:
        lines.append(_format_insight_line(insight))
    return lines


@_register_formatter(lambda d: "data_quality_score" in d)
def _format_summary(data: dict) -> list[str]:
    return _format_summary_lines(data)


@_register_formatter(lambda d: "insights" in d)
def _format_insights(data: dict) -> list[str]:
    lines = [f"Insights: {len(data['insights'])}", ""]
    for insight in data["insights"][:20]:
        lines.append(_format_insight_line(insight))
    return lines


@_register_formatter(lambda d: "clusters" in d)
def _format_clusters(data: dict) -> list[str]:
    lines = [f"Clusters: {len(data['clusters'])}", ""]
    for cluster in data["clusters"][:20]:
        satisfaction = cluster.get("average_satisfaction_score")
        satisfaction_str = f"{satisfaction:.1f}/5" if satisfaction is not None else "n/a"
        lines.append(
            f"  {cluster['name']}: {cluster['size']} patterns, "
            f"resolution {cluster['resolution_rate'] * 100:.1f}%, "
            f"satisfaction {satisfaction_str}"
        )
        lines.append(f"    central: \"{cluster['central_pattern']}\"")
    return lines


@_register_formatter(lambda d: "patterns" in d)
def _format_patterns(data: dict) -> list[str]:
    lines = [f"Patterns: {len(data['patterns'])}", ""]
    for pattern in data["patterns"][:20]:
        intents = ", ".join(pattern["related_intents"]) or "unknown"
        lines.append(f"  {pattern['pattern_key'] or '(empty)'}: {pattern['frequency']} ({intents})")
    return lines


@_register_formatter(lambda d: "sessions_added" in d)
def _format_import(data: dict) -> list[str]:
    return [
        f"File: {data['file']}",
        f"Sessions added: {data['sessions_added']}",
        f"Messages added: {data['messages_added']}",
        f"Errors: {data['errors']}",
    ]


@_register_formatter(lambda d: "session_count" in d and "message_count" in d)
def _format_status(data: dict) -> list[str]:
    lines = [
        f"Database: {data.get('db_path', 'unknown')}",
        f"Size: {data.get('db_size_bytes', 0) / 1024:.1f} KB",
        f"Sessions: {data['session_count']}",
        f"Messages: {data['message_count']}",
        f"User messages: {data.get('user_message_count', 0)}",
    ]
    if data.get("earliest_session"):
        lines.append(
            f"Date range: {data['earliest_session'][:10]} to {data['latest_session'][:10]}"
        )
    return lines


def format_output(data: dict, json_output: bool = False) -> str:
    """Format output for display."""
    if json_output:
        return json.dumps(data, indent=2, default=str, ensure_ascii=False)

    for predicate, formatter in _FORMATTERS:
        if predicate(data):
            return "\n".join(formatter(data))

    # Fallback: just dump as JSON
    return json.dumps(data, indent=2, default=str, ensure_ascii=False)


def build_config(args) -> PatternExtractionConfig:
    """Build an extraction config from parsed arguments."""
    time_range = None
    if not getattr(args, "all_time", False):
        now = datetime.now()
        time_range = (now - timedelta(days=args.days), now)

    return PatternExtractionConfig(
        time_range=time_range,
        min_frequency=args.min_frequency,
        max_patterns=args.max_patterns,
        similarity_threshold=args.threshold,
        include_entities=not args.no_entities,
        include_intents=not args.no_intents,
        include_sentiment=not args.no_sentiment,
    )


def _processor() -> ConversationDataProcessor:
    return ConversationDataProcessor(SQLiteStorage(), load_vocabulary())


def cmd_status(args):
    """Show database status."""
    storage = SQLiteStorage()
    print(format_output(storage.get_db_stats(), args.json))


def cmd_import(args):
    """Import a sessions/messages snapshot."""
    storage = SQLiteStorage()
    result = ingest_snapshot(storage, args.file)
    print(format_output(result, args.json))


def cmd_patterns(args):
    """Show extracted patterns."""
    processor = _processor()
    patterns = processor.extract_patterns(build_config(args))
    print(format_output({"patterns": [p.to_dict() for p in patterns]}, args.json))


def cmd_clusters(args):
    """Show pattern clusters."""
    processor = _processor()
    clusters = processor.cluster_patterns(processor.extract_patterns(build_config(args)))
    result = {"clusters": [c.to_dict(include_patterns=False) for c in clusters]}
    print(format_output(result, args.json))


def cmd_insights(args):
    """Show ranked insights."""
    processor = _processor()
    config = build_config(args)
    patterns = processor.extract_patterns(config)
    clusters = processor.cluster_patterns(patterns)
    insights = processor.generate_insights(patterns, clusters, config)
    print(format_output({"insights": [i.to_dict() for i in insights]}, args.json))


def cmd_summary(args):
    """Show the data summary."""
    result = _processor().run(build_config(args))
    print(format_output(result.summary.to_dict(), args.json))


def cmd_analyze(args):
    """Run the full pipeline."""
    result = _processor().run(build_config(args))
    print(format_output(result.to_dict(), args.json))


def _add_extraction_args(sub: argparse.ArgumentParser):
    sub.add_argument("--days", type=int, default=7, help="Days to analyze (default: 7)")
    sub.add_argument("--all-time", action="store_true", help="Analyze every session")
    sub.add_argument(
        "--min-frequency", type=int, default=3, help="Minimum pattern frequency (default: 3)"
    )
    sub.add_argument(
        "--max-patterns", type=int, default=50, help="Maximum patterns kept (default: 50)"
    )
    sub.add_argument(
        "--threshold", type=float, default=0.5, help="Similarity merge threshold (default: 0.5)"
    )
    sub.add_argument("--no-entities", action="store_true", help="Skip entity counting")
    sub.add_argument("--no-intents", action="store_true", help="Skip intent collection")
    sub.add_argument(
        "--no-sentiment", action="store_true", help="Skip sentiment averaging"
    )


def main():
    """CLI entry point."""
    epilog = """
Examples:
  conversation-insights import export.json     # Load a sessions/messages snapshot
  conversation-insights patterns --days 30     # Recurring user patterns
  conversation-insights insights --all-time    # Ranked insights over all data
  conversation-insights analyze --json         # Full pipeline as JSON

All commands support --json for machine-readable output.
Data location: ~/.conversation-insights/data.db (override with CONVERSATION_INSIGHTS_DB)
"""
    parser = argparse.ArgumentParser(
        description="Conversation Insights CLI - Mine chatbot conversations for patterns",
        prog="conversation-insights",
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # status
    sub = subparsers.add_parser("status", help="Show database status")
    sub.set_defaults(func=cmd_status)

    # import
    sub = subparsers.add_parser("import", help="Import a JSON snapshot")
    sub.add_argument("file", help="Snapshot file with 'sessions' and 'messages' arrays")
    sub.set_defaults(func=cmd_import)

    # patterns
    sub = subparsers.add_parser("patterns", help="Show recurring patterns")
    _add_extraction_args(sub)
    sub.set_defaults(func=cmd_patterns)

    # clusters
    sub = subparsers.add_parser("clusters", help="Show intent clusters")
    _add_extraction_args(sub)
    sub.set_defaults(func=cmd_clusters)

    # insights
    sub = subparsers.add_parser("insights", help="Show ranked insights")
    _add_extraction_args(sub)
    sub.set_defaults(func=cmd_insights)

    # summary
    sub = subparsers.add_parser("summary", help="Show data summary and quality score")
    _add_extraction_args(sub)
    sub.set_defaults(func=cmd_summary)

    # analyze
    sub = subparsers.add_parser("analyze", help="Run the full analysis pipeline")
    _add_extraction_args(sub)
    sub.set_defaults(func=cmd_analyze)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
