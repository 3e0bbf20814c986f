"""SQLite connection and transaction handling for the durable queue."""
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Union

from notification_relay import settings
from notification_relay.errors import StorageFailure
from notification_relay.logging_conf import logger

SCHEMA = """
CREATE TABLE IF NOT EXISTS notification_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    package_name TEXT NOT NULL,
    app_name TEXT NOT NULL,
    title TEXT NOT NULL,
    text TEXT NOT NULL,
    posted_at INTEGER NOT NULL,
    notification_key TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    attempt_count INTEGER NOT NULL DEFAULT 0,
    next_retry_at INTEGER NOT NULL DEFAULT 0,
    last_error TEXT,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_notification_queue_key
    ON notification_queue (notification_key);
CREATE INDEX IF NOT EXISTS idx_notification_queue_due
    ON notification_queue (status, next_retry_at, created_at);
"""


class Database:
    """Owns one SQLite connection to the queue file.

    The connection is opened on first use and shared between the dispatch
    thread and readers; every statement runs under a re-entrant lock.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else settings.QUEUE_DB_PATH
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self.closed = False

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or open the database connection. Not reopened once closed."""
        if self.closed:
            raise StorageFailure(f"Queue database {self.path} is closed")
        if self._conn is None:
            self._conn = self._connect()
        return self._conn

    def _connect(self) -> sqlite3.Connection:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.path),
                timeout=10,
                isolation_level=None,
                check_same_thread=False,
            )
        except (sqlite3.Error, OSError) as e:
            raise StorageFailure(f"Cannot open queue database {self.path}: {e}") from e

        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            conn.close()
            raise StorageFailure(f"Queue database {self.path} is unusable: {e}") from e

        logger.debug(f"Opened queue database {self.path}")
        return conn

    def close(self):
        """Close database connection."""
        with self._lock:
            self.closed = True
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @contextmanager
    def cursor(self):
        """Cursor inside a write transaction with auto-commit/rollback."""
        with self._lock:
            conn = self.conn
            cur = conn.cursor()
            try:
                cur.execute("BEGIN IMMEDIATE")
                yield cur
                cur.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StorageFailure(f"Queue database error: {e}") from e
            except Exception:
                self._rollback(conn)
                raise
            finally:
                cur.close()

    @contextmanager
    def reader(self):
        """Cursor for read-only queries outside an explicit transaction."""
        with self._lock:
            cur = self.conn.cursor()
            try:
                yield cur
            except sqlite3.Error as e:
                raise StorageFailure(f"Queue database error: {e}") from e
            finally:
                cur.close()

    def _rollback(self, conn: sqlite3.Connection):
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed on {self.path}: {e}")
