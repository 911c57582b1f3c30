"""Data model and SQLite storage backend for conversation insights."""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

logger = logging.getLogger("conversation-insights")

# Register datetime adapters/converters (required for Python 3.12+)


def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(data: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(data.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("TIMESTAMP", _convert_datetime)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Message:
    """A single chatbot conversation message."""

    id: str
    session_id: str
    sender: str  # 'user', 'bot', 'agent'
    content: str
    timestamp: datetime
    intent: str | None = None
    entities: dict = field(default_factory=dict)
    sentiment_score: float | None = None  # -1 .. 1


@dataclass
class Session:
    """Metadata and outcome of one conversation session."""

    id: str
    issue_type: str
    start_time: datetime
    end_time: datetime | None = None
    message_count: int = 0
    duration: int = 0  # seconds
    issue_resolved: bool = False
    resolution_steps: int = 0
    transferred_to_agent: bool = False
    abandoned_by_user: bool = False
    user_satisfaction: int | None = None  # 1-5
    device_type: str = "unknown"  # 'mobile', 'desktop', 'tablet', 'unknown'
    user_id: str | None = None


@dataclass
class SessionFilter:
    """Predicates accepted by SQLiteStorage.get_sessions()."""

    date_range: tuple[datetime, datetime] | None = None
    issue_types: list[str] | None = None
    resolution_status: str = "all"  # 'resolved', 'unresolved', 'all'
    device_types: list[str] | None = None
    satisfaction_range: tuple[int, int] | None = None
    transferred_to_agent: bool | None = None


@dataclass
class PatternExtractionConfig:
    """Settings for one pattern extraction run.

    Validated on construction so a bad config fails before any store access.
    """

    time_range: tuple[datetime, datetime] | None = None
    min_frequency: int = 3
    max_patterns: int = 50
    similarity_threshold: float = 0.5
    include_entities: bool = True
    include_intents: bool = True
    include_sentiment: bool = True

    def __post_init__(self):
        """Validate ranges on construction."""
        if self.min_frequency < 1:
            raise ValueError(f"min_frequency must be >= 1, got {self.min_frequency}")
        if self.max_patterns < 1:
            raise ValueError(f"max_patterns must be >= 1, got {self.max_patterns}")
        if not 0 <= self.similarity_threshold <= 1:
            raise ValueError(
                f"similarity_threshold must be within [0, 1], got {self.similarity_threshold}"
            )
        if self.time_range is not None:
            start, end = self.time_range
            if start > end:
                raise ValueError(f"time_range start {start} is after end {end}")


@dataclass
class Pattern:
    """A normalized, frequency-counted representative of similar user utterances."""

    id: str
    pattern_key: str  # e.g., "charging station error"
    frequency: int = 0
    examples: list[str] = field(default_factory=list)
    related_intents: list[str] = field(default_factory=list)
    user_types: list[str] = field(default_factory=list)
    common_entities: dict[str, int] = field(default_factory=dict)
    average_sentiment_score: float | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "pattern_key": self.pattern_key,
            "frequency": self.frequency,
            "examples": list(self.examples),
            "related_intents": list(self.related_intents),
            "user_types": list(self.user_types),
            "common_entities": dict(self.common_entities),
            "average_sentiment_score": self.average_sentiment_score,
        }


@dataclass
class Cluster:
    """A named grouping of patterns sharing a related intent."""

    id: str
    name: str
    size: int
    central_pattern: str
    patterns: list[Pattern] = field(default_factory=list)
    average_satisfaction_score: float | None = None
    common_issue_types: list[str] = field(default_factory=list)
    resolution_rate: float = 0.0

    def to_dict(self, include_patterns: bool = True) -> dict:
        result = {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "central_pattern": self.central_pattern,
            "average_satisfaction_score": self.average_satisfaction_score,
            "common_issue_types": list(self.common_issue_types),
            "resolution_rate": self.resolution_rate,
        }
        if include_patterns:
            result["patterns"] = [p.to_dict() for p in self.patterns]
        else:
            result["pattern_ids"] = [p.id for p in self.patterns]
        return result


INSIGHT_TYPES = ("pattern", "anomaly", "suggestion", "trend")
INSIGHT_STATUSES = ("new", "acknowledged", "implemented", "ignored")


@dataclass
class Insight:
    """A ranked, human-readable observation about the conversation data."""

    id: str
    type: str  # one of INSIGHT_TYPES
    description: str
    importance: int  # higher = more urgent
    related_pattern_ids: list[str] = field(default_factory=list)
    detected_at: datetime | None = None
    status: str = "new"  # only changed by external review

    def __post_init__(self):
        """Validate type and status on construction."""
        if self.type not in INSIGHT_TYPES:
            raise ValueError(f"Unknown insight type: '{self.type}'")
        if self.status not in INSIGHT_STATUSES:
            raise ValueError(f"Unknown insight status: '{self.status}'")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "importance": self.importance,
            "related_pattern_ids": list(self.related_pattern_ids),
            "detected_at": _iso(self.detected_at),
            "status": self.status,
        }


@dataclass
class DataSummary:
    """Totals, distribution and quality score for one analysis run."""

    total_sessions: int
    total_messages: int
    unique_pattern_count: int
    top_clusters: list[Cluster] = field(default_factory=list)
    recent_insights: list[Insight] = field(default_factory=list)
    pattern_distribution: dict[str, int] = field(default_factory=dict)
    data_quality_score: int = 0
    quality_breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "total_sessions": self.total_sessions,
            "total_messages": self.total_messages,
            "unique_pattern_count": self.unique_pattern_count,
            "top_clusters": [c.to_dict(include_patterns=False) for c in self.top_clusters],
            "recent_insights": [i.to_dict() for i in self.recent_insights],
            "pattern_distribution": dict(self.pattern_distribution),
            "data_quality_score": self.data_quality_score,
            "quality_breakdown": dict(self.quality_breakdown),
        }


# Default database path
DEFAULT_DB_PATH = Path.home() / ".conversation-insights" / "data.db"

# Schema version for migrations
SCHEMA_VERSION = 1

# Migration functions: dict of version -> (migration_name, migration_func)
# Each migration upgrades FROM version-1 TO version
MIGRATIONS: dict[int, tuple[str, callable]] = {}


def migration(version: int, name: str):
    """Decorator to register a schema migration."""

    def decorator(func: callable):
        MIGRATIONS[version] = (name, func)
        return func

    return decorator


class SQLiteStorage:
    """SQLite-backed session/message store."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize storage with optional custom DB path."""
        if db_path is None:
            db_path = os.environ.get("CONVERSATION_INSIGHTS_DB", str(DEFAULT_DB_PATH))

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    @contextmanager
    def _connect(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        """Get current schema version from database."""
        try:
            row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
            return row[0] if row else 0
        except sqlite3.OperationalError:
            # Table doesn't exist yet
            return 0

    def _run_migrations(self, conn: sqlite3.Connection, current_version: int):
        """Run all pending migrations."""
        for version in range(current_version + 1, SCHEMA_VERSION + 1):
            if version in MIGRATIONS:
                name, migration_func = MIGRATIONS[version]
                logger.info(f"Running migration {version}: {name}")
                migration_func(conn)
        conn.execute("DELETE FROM schema_version")
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))

    def _init_db(self):
        """Create tables if they don't exist."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id TEXT PRIMARY KEY,
                    issue_type TEXT NOT NULL,
                    start_time TIMESTAMP NOT NULL,
                    end_time TIMESTAMP,
                    message_count INTEGER DEFAULT 0,
                    duration INTEGER DEFAULT 0,
                    issue_resolved INTEGER DEFAULT 0,
                    resolution_steps INTEGER DEFAULT 0,
                    transferred_to_agent INTEGER DEFAULT 0,
                    abandoned_by_user INTEGER DEFAULT 0,
                    user_satisfaction INTEGER,
                    device_type TEXT DEFAULT 'unknown',
                    user_id TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_start ON sessions(start_time)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_issue ON sessions(issue_type)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_sessions_device ON sessions(device_type)")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    session_id TEXT NOT NULL,
                    sender TEXT NOT NULL,
                    content TEXT NOT NULL,
                    timestamp TIMESTAMP NOT NULL,
                    intent TEXT,
                    entities_json TEXT,
                    sentiment_score REAL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_timestamp ON messages(timestamp)")

            # Run any pending migrations
            current_version = self._get_schema_version(conn)
            if current_version < SCHEMA_VERSION:
                self._run_migrations(conn, current_version)

    # Session operations

    @staticmethod
    def _session_params(session: Session) -> tuple:
        return (
            session.id,
            session.issue_type,
            session.start_time,
            session.end_time,
            session.message_count,
            session.duration,
            1 if session.issue_resolved else 0,
            session.resolution_steps,
            1 if session.transferred_to_agent else 0,
            1 if session.abandoned_by_user else 0,
            session.user_satisfaction,
            session.device_type,
            session.user_id,
        )

    _UPSERT_SESSION_SQL = """
        INSERT OR REPLACE INTO sessions (
            id, issue_type, start_time, end_time, message_count, duration,
            issue_resolved, resolution_steps, transferred_to_agent, abandoned_by_user,
            user_satisfaction, device_type, user_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """

    def upsert_session(self, session: Session) -> None:
        """Add or update a session."""
        with self._connect() as conn:
            conn.execute(self._UPSERT_SESSION_SQL, self._session_params(session))

    def add_sessions_batch(self, sessions: list[Session]) -> int:
        """Add or update multiple sessions in a single transaction. Returns count written."""
        with self._connect() as conn:
            cursor = conn.executemany(
                self._UPSERT_SESSION_SQL, [self._session_params(s) for s in sessions]
            )
            return cursor.rowcount

    def get_session(self, session_id: str) -> Session | None:
        """Get a session by ID."""
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row:
                return self._row_to_session(row)
            return None

    @staticmethod
    def _session_conditions(filters: SessionFilter | None) -> tuple[str, list]:
        """Build the WHERE clause and parameters for a session filter."""
        conditions = []
        params: list = []

        if filters is not None:
            if filters.date_range:
                start, end = filters.date_range
                conditions.append("start_time >= ? AND start_time <= ?")
                params.extend([start, end])
                conditions.append("(end_time IS NULL OR end_time <= ?)")
                params.append(end)
            if filters.issue_types:
                placeholders = ", ".join("?" for _ in filters.issue_types)
                conditions.append(f"issue_type IN ({placeholders})")
                params.extend(filters.issue_types)
            if filters.resolution_status == "resolved":
                conditions.append("issue_resolved = 1")
            elif filters.resolution_status == "unresolved":
                conditions.append("issue_resolved = 0")
            if filters.device_types:
                placeholders = ", ".join("?" for _ in filters.device_types)
                conditions.append(f"device_type IN ({placeholders})")
                params.extend(filters.device_types)
            if filters.satisfaction_range:
                # Sessions without a rating are not excluded by a satisfaction range
                low, high = filters.satisfaction_range
                conditions.append(
                    "(user_satisfaction IS NULL OR user_satisfaction BETWEEN ? AND ?)"
                )
                params.extend([low, high])
            if filters.transferred_to_agent is not None:
                conditions.append("transferred_to_agent = ?")
                params.append(1 if filters.transferred_to_agent else 0)

        # Safe: where_clause is built from hardcoded condition strings, not user input
        where_clause = " AND ".join(conditions) if conditions else "1=1"
        return where_clause, params

    def get_sessions(self, filters: SessionFilter | None = None) -> list[Session]:
        """Get sessions matching the optional filter, ordered by start time."""
        where_clause, params = self._session_conditions(filters)

        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM sessions WHERE {where_clause} ORDER BY start_time, id",
                params,
            ).fetchall()
            return [self._row_to_session(row) for row in rows]

    def get_snapshot(
        self, filters: SessionFilter | None = None
    ) -> tuple[list[Session], list[Message]]:
        """Get matching sessions and all their messages in one read transaction.

        Args:
            filters: Optional session filter

        Returns:
            (sessions ordered by start time, their messages ordered by session
            start time then message time)
        """
        where_clause, params = self._session_conditions(filters)

        with self._connect() as conn:
            conn.execute("BEGIN")
            session_rows = conn.execute(
                f"SELECT * FROM sessions WHERE {where_clause} ORDER BY start_time, id",
                params,
            ).fetchall()
            # Filter columns exist only on sessions, so the clause is unambiguous
            message_rows = conn.execute(
                f"""
                SELECT m.* FROM messages m
                JOIN sessions ON sessions.id = m.session_id
                WHERE {where_clause}
                ORDER BY sessions.start_time, sessions.id, m.timestamp, m.id
                """,
                params,
            ).fetchall()

        return (
            [self._row_to_session(row) for row in session_rows],
            [self._row_to_message(row) for row in message_rows],
        )

    def get_session_count(self) -> int:
        """Get total number of sessions."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM sessions").fetchone()
            return row["count"]

    def _row_to_session(self, row: sqlite3.Row) -> Session:
        """Convert a database row to a Session object."""
        return Session(
            id=row["id"],
            issue_type=row["issue_type"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            message_count=row["message_count"],
            duration=row["duration"],
            issue_resolved=bool(row["issue_resolved"]),
            resolution_steps=row["resolution_steps"],
            transferred_to_agent=bool(row["transferred_to_agent"]),
            abandoned_by_user=bool(row["abandoned_by_user"]),
            user_satisfaction=row["user_satisfaction"],
            device_type=row["device_type"] or "unknown",
            user_id=row["user_id"],
        )

    # Message operations

    @staticmethod
    def _message_params(message: Message) -> tuple:
        return (
            message.id,
            message.session_id,
            message.sender,
            message.content,
            message.timestamp,
            message.intent,
            json.dumps(message.entities, ensure_ascii=False) if message.entities else None,
            message.sentiment_score,
        )

    _INSERT_MESSAGE_SQL = """
        INSERT OR IGNORE INTO messages (
            id, session_id, sender, content, timestamp, intent, entities_json, sentiment_score
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """

    def add_message(self, message: Message) -> None:
        """Add a single message. Duplicate IDs are ignored."""
        with self._connect() as conn:
            conn.execute(self._INSERT_MESSAGE_SQL, self._message_params(message))

    def add_messages_batch(self, messages: list[Message]) -> int:
        """Add multiple messages in a single transaction. Returns count added."""
        with self._connect() as conn:
            cursor = conn.executemany(
                self._INSERT_MESSAGE_SQL, [self._message_params(m) for m in messages]
            )
            return cursor.rowcount

    def get_messages_by_session_id(self, session_id: str) -> list[Message]:
        """Get all messages of a session in time order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY timestamp, id",
                (session_id,),
            ).fetchall()
            return [self._row_to_message(row) for row in rows]

    def get_message_count(self) -> int:
        """Get total number of messages."""
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) as count FROM messages").fetchone()
            return row["count"]

    def _row_to_message(self, row: sqlite3.Row) -> Message:
        """Convert a database row to a Message object."""
        return Message(
            id=row["id"],
            session_id=row["session_id"],
            sender=row["sender"],
            content=row["content"],
            timestamp=row["timestamp"],
            intent=row["intent"],
            entities=json.loads(row["entities_json"]) if row["entities_json"] else {},
            sentiment_score=row["sentiment_score"],
        )

    # Utility operations

    def get_db_stats(self) -> dict:
        """Get database statistics."""
        with self._connect() as conn:
            session_count = conn.execute("SELECT COUNT(*) FROM sessions").fetchone()[0]
            message_count = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            user_message_count = conn.execute(
                "SELECT COUNT(*) FROM messages WHERE sender = 'user'"
            ).fetchone()[0]

            date_range = conn.execute(
                "SELECT MIN(start_time) as min_ts, MAX(start_time) as max_ts FROM sessions"
            ).fetchone()

            db_size = self.db_path.stat().st_size if self.db_path.exists() else 0

            # Helper to convert datetime or string to ISO string
            def to_iso(val):
                if val is None:
                    return None
                return val if isinstance(val, str) else val.isoformat()

            return {
                "session_count": session_count,
                "message_count": message_count,
                "user_message_count": user_message_count,
                "earliest_session": to_iso(date_range["min_ts"]),
                "latest_session": to_iso(date_range["max_ts"]),
                "db_size_bytes": db_size,
                "db_path": str(self.db_path),
            }
