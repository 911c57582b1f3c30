"""Tests for the snapshot ingestion module."""

import json
from datetime import datetime

import pytest

from conversation_insights.ingest import (
    ingest_snapshot,
    parse_message,
    parse_session,
    parse_timestamp,
)


@pytest.fixture
def snapshot_file(tmp_path):
    """Write a small snapshot mixing camelCase and snake_case records."""
    data = {
        "sessions": [
            {
                "id": "s1",
                "issueType": "charging_not_starting",
                "startTime": "2025-01-01T12:00:00.000Z",
                "endTime": "2025-01-01T12:05:00.000Z",
                "messageCount": 2,
                "duration": 300,
                "issueResolved": True,
                "resolutionSteps": 2,
                "transferredToAgent": False,
                "abandonedByUser": False,
                "userSatisfaction": 5,
                "deviceType": "mobile",
                "userId": "u1",
            },
            {
                "id": "s2",
                "issue_type": "payment",
                "start_time": "2025-01-02T09:00:00",
            },
            {"id": "broken", "issueType": "payment"},
        ],
        "messages": [
            {
                "id": "m1",
                "sessionId": "s1",
                "sender": "user",
                "content": "충전이 안 돼요",
                "timestamp": "2025-01-01T12:00:10.000Z",
                "intent": "charger_issue",
                "entities": {"station_id": "A-1"},
                "sentimentScore": -0.4,
            },
            {
                "id": "m2",
                "session_id": "s1",
                "sender": "bot",
                "content": "Please reconnect the cable.",
                "timestamp": "2025-01-01T12:00:20",
            },
            {"id": "m3", "sessionId": "s1", "sender": "user"},
        ],
    }
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return path


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    def test_zulu_becomes_naive_utc(self):
        assert parse_timestamp("2025-01-01T12:00:00.000Z") == datetime(2025, 1, 1, 12, 0, 0)

    def test_offset_converted_to_utc(self):
        assert parse_timestamp("2025-01-01T21:00:00+09:00") == datetime(2025, 1, 1, 12, 0, 0)

    def test_naive_kept(self):
        assert parse_timestamp("2025-01-01T12:00:00") == datetime(2025, 1, 1, 12, 0, 0)

    def test_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestParseRecords:
    """Tests for record parsing."""

    def test_parse_camel_case_session(self):
        session = parse_session(
            {
                "id": "s1",
                "issueType": "payment",
                "startTime": "2025-01-01T12:00:00Z",
                "issueResolved": True,
                "userSatisfaction": "4",
                "deviceType": "tablet",
            }
        )
        assert session.issue_type == "payment"
        assert session.issue_resolved is True
        assert session.user_satisfaction == 4
        assert session.device_type == "tablet"
        assert session.end_time is None

    def test_session_defaults(self):
        session = parse_session(
            {"id": 7, "issue_type": "payment", "start_time": "2025-01-01T12:00:00"}
        )
        assert session.id == "7"
        assert session.message_count == 0
        assert session.user_satisfaction is None
        assert session.device_type == "unknown"

    def test_session_missing_start_time(self):
        with pytest.raises(KeyError):
            parse_session({"id": "s1", "issueType": "payment"})

    def test_session_missing_issue_type(self):
        with pytest.raises(KeyError):
            parse_session({"id": "s1", "startTime": "2025-01-01T12:00:00Z"})

    def test_parse_message(self):
        message = parse_message(
            {
                "id": "m1",
                "sessionId": "s1",
                "sender": "user",
                "content": "hi",
                "timestamp": "2025-01-01T12:00:00Z",
                "sentimentScore": "0.5",
            }
        )
        assert message.session_id == "s1"
        assert message.sentiment_score == 0.5
        assert message.entities == {}
        assert message.intent is None

    def test_message_missing_content(self):
        with pytest.raises(KeyError):
            parse_message({"id": "m1", "sessionId": "s1", "sender": "user", "timestamp": "2025-01-01"})


class TestIngestSnapshot:
    """Tests for loading a snapshot file into storage."""

    def test_ingest(self, storage, snapshot_file):
        result = ingest_snapshot(storage, snapshot_file)

        assert result["file"] == str(snapshot_file)
        assert result["sessions_found"] == 3
        assert result["sessions_added"] == 2
        assert result["messages_added"] == 2
        assert result["errors"] == 2

        session = storage.get_session("s1")
        assert session.start_time == datetime(2025, 1, 1, 12, 0, 0)
        assert session.user_id == "u1"
        assert session.user_satisfaction == 5

        messages = storage.get_messages_by_session_id("s1")
        assert [m.sender for m in messages] == ["user", "bot"]
        assert messages[0].content == "충전이 안 돼요"
        assert messages[0].entities == {"station_id": "A-1"}

    def test_reingest_does_not_duplicate_messages(self, storage, snapshot_file):
        ingest_snapshot(storage, snapshot_file)
        result = ingest_snapshot(storage, snapshot_file)
        assert result["messages_added"] == 0
        assert storage.get_message_count() == 2
        assert storage.get_session_count() == 2

    def test_empty_snapshot(self, storage, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("{}", encoding="utf-8")
        result = ingest_snapshot(storage, path)
        assert result["sessions_added"] == 0
        assert result["messages_added"] == 0
        assert result["errors"] == 0

    def test_missing_file(self, storage, tmp_path):
        with pytest.raises(FileNotFoundError):
            ingest_snapshot(storage, tmp_path / "nope.json")
