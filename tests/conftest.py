"""Pytest configuration and shared fixtures."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from conversation_insights.storage import Message, Pattern, Session, SQLiteStorage


def make_session(session_id: str, start_time: datetime, **kwargs) -> Session:
    """Session with sensible defaults for tests."""
    defaults = {
        "issue_type": "charging_not_starting",
        "message_count": 4,
        "duration": 120,
        "issue_resolved": True,
        "resolution_steps": 3,
        "transferred_to_agent": False,
        "user_satisfaction": None,
    }
    defaults.update(kwargs)
    return Session(id=session_id, start_time=start_time, **defaults)


def make_message(
    message_id: str,
    session_id: str,
    content: str,
    timestamp: datetime,
    sender: str = "user",
    **kwargs,
) -> Message:
    """User message with sensible defaults for tests."""
    return Message(
        id=message_id,
        session_id=session_id,
        sender=sender,
        content=content,
        timestamp=timestamp,
        **kwargs,
    )


def make_pattern(pattern_id: str, key: str, frequency: int, **kwargs) -> Pattern:
    """Pattern with sensible defaults for tests."""
    return Pattern(id=pattern_id, pattern_key=key, frequency=frequency, **kwargs)


@pytest.fixture
def storage():
    """Create a temporary storage instance for testing.

    This is the base fixture for all storage-dependent tests.
    Use this when you need an empty database.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        yield SQLiteStorage(db_path)


@pytest.fixture
def charger_storage(storage):
    """Storage with 12 sessions that each carry the same complaint.

    Contains:
    - 12 sessions (s1..s12) within the last day, 9 resolved
    - One user message per session: "충전 안돼요 배터리!" tagged charger_issue
    - One bot reply per session
    """
    now = datetime.now()
    sessions = []
    messages = []
    for i in range(1, 13):
        start = now - timedelta(hours=i)
        sessions.append(
            make_session(
                f"s{i}",
                start,
                end_time=start + timedelta(minutes=5),
                issue_resolved=i <= 9,
                user_satisfaction=4 if i <= 6 else None,
            )
        )
        messages.append(
            make_message(
                f"m{i}-user",
                f"s{i}",
                "충전 안돼요 배터리!",
                start + timedelta(seconds=10),
                intent="charger_issue",
                entities={"station_id": "A-1"},
                sentiment_score=-0.5,
            )
        )
        messages.append(
            make_message(
                f"m{i}-bot",
                f"s{i}",
                "Please check the cable.",
                start + timedelta(seconds=20),
                sender="bot",
            )
        )

    storage.add_sessions_batch(sessions)
    storage.add_messages_batch(messages)
    return storage


@pytest.fixture
def mixed_storage(storage):
    """Storage with several overlapping complaint types.

    Contains:
    - 8 sessions saying "station error app" (payment_issue intent)
    - 3 sessions saying "the station error app payment" (payment_issue intent)
    - 4 sessions saying "slow charging speed" (speed_issue intent)
    - 2 sessions saying "hello there" (no intent)
    - 3 older sessions (10 days ago) saying "slow charging speed"
    """
    now = datetime.now()
    sessions = []
    messages = []

    groups = [
        ("a", 8, "Station error, app!", "payment_issue", now - timedelta(hours=1)),
        ("b", 3, "The station error app payment", "payment_issue", now - timedelta(hours=2)),
        ("c", 4, "Slow charging speed", "speed_issue", now - timedelta(hours=3)),
        ("d", 2, "Hello there", None, now - timedelta(hours=4)),
        ("old", 3, "Slow charging speed", "speed_issue", now - timedelta(days=10)),
    ]
    for prefix, count, content, intent, base in groups:
        for i in range(count):
            session_id = f"{prefix}{i}"
            start = base - timedelta(minutes=i)
            sessions.append(
                make_session(
                    session_id,
                    start,
                    end_time=start + timedelta(minutes=3),
                    issue_type=f"{prefix}_issue",
                    message_count=2 + i,
                    issue_resolved=prefix != "c",
                    resolution_steps=1,
                    transferred_to_agent=prefix == "c",
                    user_satisfaction=2 if prefix == "c" else 5,
                )
            )
            messages.append(
                make_message(
                    f"{session_id}-m",
                    session_id,
                    content,
                    start + timedelta(seconds=5),
                    intent=intent,
                    sentiment_score=-0.6 if prefix == "c" else 0.2,
                )
            )

    storage.add_sessions_batch(sessions)
    storage.add_messages_batch(messages)
    return storage
