"""DuckDB-based chat history storage service.

This module provides the append-only message log behind the relay. Every
chat message is written here before it is broadcast, and newly joined
connections are replayed the most recent window from here.

Database Schema:
    chat_messages table:
        - id: Auto-incrementing primary key (sequence)
        - sender: Display name of the sender
        - body: Message text
        - timestamp: Server-assigned write time, seconds since epoch (DOUBLE)

Timestamps are strictly increasing: if the wall clock does not advance (or
goes backwards) between two appends, the store nudges the new timestamp just
past the previous one.

Thread Safety:
    The DuckDB connection is NOT thread-safe. All access goes through a
    single lock, so the async wrappers can safely run calls in worker threads.

Usage:
    store = HistoryStore(db_path="chat_history.duckdb")
    store.bootstrap_if_empty("System", "Welcome to the chat!")
    message = store.append("alice", "hi")
    window = to_ascending(store.fetch_recent(20))
"""
import asyncio
import contextvars
import logging
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

import duckdb

from chatrelay.errors import PersistenceError

from .schemas import StoredMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Smallest step used to keep timestamps strictly increasing
TIMESTAMP_EPSILON = 1e-6

DEFAULT_TIMEOUT_SECONDS = 5.0

# Set by _run when the caller gave up waiting; the worker thread sees it through
# the context copied by asyncio.to_thread.
_abandoned: contextvars.ContextVar[Optional[threading.Event]] = contextvars.ContextVar(
    "history_call_abandoned", default=None
)


class HistoryStore:
    """Append-only message log stored in DuckDB.

    The connection is opened lazily on first use, so a store that cannot
    reach its database file still constructs; every operation then fails
    with PersistenceError until the database becomes reachable.

    Attributes:
        db_path: Path to the DuckDB file, or ":memory:".
        timeout_seconds: Upper bound for each async store call.
    """

    def __init__(
        self,
        db_path: str = ":memory:",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self.db_path = db_path
        self.timeout_seconds = timeout_seconds
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.Lock()
        self._last_timestamp = 0.0
        self._closed = False

    # =========================================================================
    # Connection management
    # =========================================================================

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        """Get the DuckDB connection, creating it and the schema if needed.

        Must be called with the lock held.
        """
        if self._closed:
            raise PersistenceError("History store is closed")
        if self._connection is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            connection = duckdb.connect(self.db_path)
            self._initialize_db(connection)
            self._connection = connection
            logger.info("[History] Opened message log at %s", self.db_path)
        return self._connection

    def _initialize_db(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Create the chat_messages table and sequence if they don't exist."""
        conn.execute("CREATE SEQUENCE IF NOT EXISTS chat_messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS chat_messages (
                id BIGINT DEFAULT nextval('chat_messages_seq') PRIMARY KEY,
                sender VARCHAR NOT NULL,
                body VARCHAR NOT NULL,
                timestamp DOUBLE NOT NULL
            )
        """)
        row = conn.execute("SELECT MAX(timestamp) FROM chat_messages").fetchone()
        if row and row[0] is not None:
            self._last_timestamp = float(row[0])

    def _call(self, operation: str, func: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        """Run *func* against the connection, mapping DuckDB errors."""
        with self._lock:
            abandoned = _abandoned.get()
            if abandoned is not None and abandoned.is_set():
                raise PersistenceError(f"{operation} abandoned after timeout")
            try:
                return func(self._get_connection())
            except PersistenceError:
                raise
            except (duckdb.Error, OSError) as e:
                logger.error("[History] %s failed: %s", operation, e)
                raise PersistenceError(f"{operation} failed: {e}") from e

    def _next_timestamp(self) -> float:
        now = time.time()
        if now <= self._last_timestamp:
            now = self._last_timestamp + TIMESTAMP_EPSILON
        self._last_timestamp = now
        return now

    def close(self) -> None:
        """Close the database connection. Later calls raise PersistenceError."""
        with self._lock:
            self._closed = True
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    # =========================================================================
    # Store operations
    # =========================================================================

    def append(self, sender: str, body: str) -> StoredMessage:
        """Append a new immutable message with a store-assigned timestamp.

        Args:
            sender: Display name of the sender.
            body: Message text.

        Returns:
            The stored message, including its id and timestamp.

        Raises:
            PersistenceError: If the store is unreachable or rejects the write.
        """
        def _insert(conn: duckdb.DuckDBPyConnection) -> StoredMessage:
            timestamp = self._next_timestamp()
            row = conn.execute(
                """
                INSERT INTO chat_messages (sender, body, timestamp)
                VALUES (?, ?, ?)
                RETURNING id
                """,
                [sender, body, timestamp]
            ).fetchone()
            return StoredMessage(id=row[0], sender=sender, body=body, timestamp=timestamp)

        return self._call("append", _insert)

    def fetch_recent(self, limit: int) -> List[StoredMessage]:
        """Get up to *limit* most recent messages, newest first.

        Callers that deliver history to clients must reverse the result
        (see ``to_ascending``).

        Raises:
            PersistenceError: If the store is unreachable or the read fails.
        """
        if limit < 1:
            return []

        def _select(conn: duckdb.DuckDBPyConnection) -> List[StoredMessage]:
            rows = conn.execute(
                """
                SELECT id, sender, body, timestamp
                FROM chat_messages
                ORDER BY timestamp DESC, id DESC
                LIMIT ?
                """,
                [limit]
            ).fetchall()
            return [
                StoredMessage(id=row[0], sender=row[1], body=row[2], timestamp=row[3])
                for row in rows
            ]

        return self._call("fetch_recent", _select)

    def count(self) -> int:
        """Return the total number of stored messages."""
        return self._call(
            "count",
            lambda conn: conn.execute("SELECT COUNT(*) FROM chat_messages").fetchone()[0],
        )

    def bootstrap_if_empty(self, sender: str, body: str) -> bool:
        """Seed the log with a single welcome message if it holds no records.

        The check and the write are separate calls, so two cold starts racing
        each other may both seed. That duplicate is tolerated.

        Returns:
            True if a seed record was written, False if the store was non-empty.
        """
        if self.count() > 0:
            return False
        self.append(sender, body)
        logger.info("[History] Empty message log seeded with welcome message")
        return True

    # =========================================================================
    # Async wrappers (bounded by timeout_seconds)
    # =========================================================================

    async def _run(self, func: Callable[..., T], *args) -> T:
        """Run a blocking store call in a worker thread, bounded by the timeout.

        A call still queued on the lock when the timeout fires is skipped. One
        already executing cannot be interrupted and may still commit.
        """
        abandoned = threading.Event()
        token = _abandoned.set(abandoned)
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            abandoned.set()
            logger.error(
                "[History] %s timed out after %.1fs", func.__name__, self.timeout_seconds
            )
            raise PersistenceError(
                f"{func.__name__} timed out after {self.timeout_seconds}s"
            ) from e
        finally:
            _abandoned.reset(token)

    async def append_async(self, sender: str, body: str) -> StoredMessage:
        return await self._run(self.append, sender, body)

    async def fetch_recent_async(self, limit: int) -> List[StoredMessage]:
        return await self._run(self.fetch_recent, limit)

    async def bootstrap_if_empty_async(self, sender: str, body: str) -> bool:
        return await self._run(self.bootstrap_if_empty, sender, body)


def to_ascending(messages: List[StoredMessage]) -> List[StoredMessage]:
    """Reverse a newest-first window into delivery order (oldest first)."""
    return list(reversed(messages))
