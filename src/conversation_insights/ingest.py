"""Snapshot ingestion: load exported sessions and messages into the store.

A snapshot is a JSON object with "sessions" and "messages" arrays. Keys may
be snake_case or the camelCase used by the chatbot's export
(``sessionId``, ``issueResolved``, ...).
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from conversation_insights.storage import Message, Session, SQLiteStorage

logger = logging.getLogger("conversation-insights")


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp; aware values become naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        timestamp = value
    else:
        timestamp = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    return timestamp


def _get(raw: dict, snake: str, camel: str, default=None):
    if snake in raw:
        return raw[snake]
    return raw.get(camel, default)


def parse_session(raw: dict) -> Session:
    """Build a Session from an exported record.

    Raises:
        KeyError: If id, issue type or start time is missing
    """
    start_time = parse_timestamp(_get(raw, "start_time", "startTime"))
    if start_time is None:
        raise KeyError("start_time")

    satisfaction = _get(raw, "user_satisfaction", "userSatisfaction")
    return Session(
        id=str(raw["id"]),
        issue_type=_get(raw, "issue_type", "issueType") or raw["issue_type"],
        start_time=start_time,
        end_time=parse_timestamp(_get(raw, "end_time", "endTime")),
        message_count=int(_get(raw, "message_count", "messageCount", 0)),
        duration=int(raw.get("duration", 0)),
        issue_resolved=bool(_get(raw, "issue_resolved", "issueResolved", False)),
        resolution_steps=int(_get(raw, "resolution_steps", "resolutionSteps", 0)),
        transferred_to_agent=bool(_get(raw, "transferred_to_agent", "transferredToAgent", False)),
        abandoned_by_user=bool(_get(raw, "abandoned_by_user", "abandonedByUser", False)),
        user_satisfaction=int(satisfaction) if satisfaction is not None else None,
        device_type=_get(raw, "device_type", "deviceType", "unknown"),
        user_id=_get(raw, "user_id", "userId"),
    )


def parse_message(raw: dict) -> Message:
    """Build a Message from an exported record.

    Raises:
        KeyError: If a required field is missing
    """
    timestamp = parse_timestamp(raw["timestamp"])
    sentiment = _get(raw, "sentiment_score", "sentimentScore")
    return Message(
        id=str(raw["id"]),
        session_id=str(_get(raw, "session_id", "sessionId") or raw["session_id"]),
        sender=raw["sender"],
        content=raw["content"],
        timestamp=timestamp,
        intent=raw.get("intent"),
        entities=raw.get("entities") or {},
        sentiment_score=float(sentiment) if sentiment is not None else None,
    )


def ingest_snapshot(storage: SQLiteStorage, file_path: Path | str) -> dict:
    """Load a snapshot file into storage.

    Malformed records are skipped and counted as errors.

    Args:
        storage: Storage instance
        file_path: Path to the snapshot JSON

    Returns:
        Stats dict with sessions/messages added and error count
    """
    file_path = Path(file_path)
    with open(file_path, encoding="utf-8") as f:
        data = json.load(f)

    sessions = []
    messages = []
    errors = 0

    for index, raw in enumerate(data.get("sessions", [])):
        try:
            sessions.append(parse_session(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping session #{index} in {file_path}: {e!r}")
            errors += 1

    for index, raw in enumerate(data.get("messages", [])):
        try:
            messages.append(parse_message(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping message #{index} in {file_path}: {e!r}")
            errors += 1

    sessions_added = storage.add_sessions_batch(sessions) if sessions else 0
    messages_added = storage.add_messages_batch(messages) if messages else 0

    logger.info(
        f"Ingested {sessions_added} sessions and {messages_added} messages from {file_path}"
    )
    return {
        "file": str(file_path),
        "sessions_found": len(data.get("sessions", [])),
        "sessions_added": sessions_added,
        "messages_added": messages_added,
        "errors": errors,
    }
