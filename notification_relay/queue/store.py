"""Durable queue of notifications backed by SQLite."""
import threading
from typing import Callable, Iterable, List, Optional

from notification_relay.db import Database
from notification_relay.logging_conf import logger
from notification_relay.queue.models import QueueItem, QueueStats, QueueStatus, now_ms

StatsListener = Callable[[QueueStats], None]
RecentListener = Callable[[List[QueueItem]], None]


class Subscription:
    """Handle returned by the observe_* methods."""

    def __init__(self, store: "QueueStore", entry):
        self._store = store
        self._entry = entry
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._store._remove_listener(self._entry)
            self.active = False


class QueueStore:
    """Persists queue items and their lifecycle state.

    Every method raises StorageFailure when the database is unavailable.
    Mutations push fresh snapshots to registered observers after commit.
    """

    def __init__(self, db: Database):
        self.db = db
        self._listeners_lock = threading.Lock()
        self._stats_listeners: List[StatsListener] = []
        self._recent_listeners: List[tuple] = []

    def insert(self, item: QueueItem) -> Optional[int]:
        """Insert an item; returns its id, or None if the dedupe key already exists."""
        with self.db.cursor() as cur:
            cur.execute("""
                INSERT OR IGNORE INTO notification_queue (
                    package_name, app_name, title, text, posted_at,
                    notification_key, status, attempt_count, next_retry_at,
                    last_error, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                item.package_name, item.app_name, item.title, item.text,
                item.posted_at, item.notification_key, item.status.value,
                item.attempt_count, item.next_retry_at, item.last_error,
                item.created_at, item.updated_at,
            ))
            inserted = cur.rowcount == 1
            item_id = cur.lastrowid if inserted else None

        if not inserted:
            logger.debug(f"Queue item already present: {item.notification_key}")
            return None

        item.id = item_id
        logger.info(
            f"Queued {item.package_name}:{item.notification_key} as #{item_id}",
            extra={"package_name": item.package_name, "item_id": item_id},
        )
        self._notify()
        return item_id

    def fetch_due(self, limit: int, now: Optional[int] = None) -> List[QueueItem]:
        """PENDING items whose retry time has passed, oldest first."""
        now = now_ms() if now is None else now
        with self.db.reader() as cur:
            cur.execute("""
                SELECT * FROM notification_queue
                WHERE status = 'PENDING' AND next_retry_at <= ?
                ORDER BY created_at ASC, id ASC
                LIMIT ?
            """, (now, limit))
            return [QueueItem.from_row(row) for row in cur.fetchall()]

    def mark_sending(self, ids: Iterable[int]) -> List[int]:
        """Claim the given PENDING items in one transaction.

        Returns the ids actually claimed; rows no longer PENDING are skipped.
        """
        ids = list(ids)
        if not ids:
            return []

        placeholders = ", ".join("?" for _ in ids)
        with self.db.cursor() as cur:
            cur.execute(
                f"SELECT id FROM notification_queue WHERE id IN ({placeholders}) AND status = 'PENDING'",
                ids,
            )
            claimed = [row["id"] for row in cur.fetchall()]
            if claimed:
                claimed_placeholders = ", ".join("?" for _ in claimed)
                cur.execute(
                    f"UPDATE notification_queue SET status = 'SENDING', updated_at = ? "
                    f"WHERE id IN ({claimed_placeholders})",
                    [now_ms(), *claimed],
                )

        if len(claimed) < len(ids):
            logger.warning(f"Claimed {len(claimed)} of {len(ids)} items; others were no longer pending")
        if claimed:
            self._notify()
        return claimed

    def mark_sent(self, item_id: int) -> bool:
        """Mark a claimed item as delivered."""
        with self.db.cursor() as cur:
            cur.execute("""
                UPDATE notification_queue
                SET status = 'SENT', last_error = NULL, updated_at = ?
                WHERE id = ? AND status = 'SENDING'
            """, (now_ms(), item_id))
            updated = cur.rowcount == 1

        if not updated:
            logger.warning(f"mark_sent ignored for #{item_id}: not in SENDING")
        else:
            self._notify()
        return updated

    def mark_failure(
        self,
        item_id: int,
        attempt_count: int,
        status: QueueStatus,
        next_retry_at: int,
        error: str,
    ) -> bool:
        """Record a failed attempt, returning the item to PENDING or ending it in FAILED.

        attempt_count is stored as given, so a permanent failure ends at the
        current max_retries even if an earlier, higher limit left a larger count.
        """
        status = QueueStatus(status)
        if status not in (QueueStatus.PENDING, QueueStatus.FAILED):
            raise ValueError(f"mark_failure cannot move an item to {status.value}")

        with self.db.cursor() as cur:
            cur.execute("""
                UPDATE notification_queue
                SET status = ?,
                    attempt_count = ?,
                    next_retry_at = ?,
                    last_error = ?,
                    updated_at = ?
                WHERE id = ? AND status = 'SENDING'
            """, (status.value, attempt_count, next_retry_at, error, now_ms(), item_id))
            updated = cur.rowcount == 1

        if not updated:
            logger.warning(f"mark_failure ignored for #{item_id}: not in SENDING")
        else:
            self._notify()
        return updated

    def release_stale_sending(self, older_than_ms: int, now: Optional[int] = None) -> int:
        """Return SENDING items claimed longer than older_than_ms ago to PENDING."""
        now = now_ms() if now is None else now
        with self.db.cursor() as cur:
            cur.execute("""
                UPDATE notification_queue
                SET status = 'PENDING',
                    last_error = 'released stale claim',
                    updated_at = ?
                WHERE status = 'SENDING' AND updated_at < ?
            """, (now, now - older_than_ms))
            count = cur.rowcount

        if count > 0:
            logger.warning(f"Released {count} stale SENDING items")
            self._notify()
        return count

    def next_pending_due(self) -> Optional[int]:
        """Earliest next_retry_at among PENDING items, or None if there are none."""
        with self.db.reader() as cur:
            cur.execute("SELECT MIN(next_retry_at) AS due FROM notification_queue WHERE status = 'PENDING'")
            row = cur.fetchone()
        return row["due"] if row else None

    def get(self, item_id: int) -> Optional[QueueItem]:
        with self.db.reader() as cur:
            cur.execute("SELECT * FROM notification_queue WHERE id = ?", (item_id,))
            row = cur.fetchone()
        return QueueItem.from_row(row) if row else None

    def stats(self) -> QueueStats:
        with self.db.reader() as cur:
            cur.execute("""
                SELECT
                    COALESCE(SUM(CASE WHEN status = 'PENDING' THEN 1 ELSE 0 END), 0) AS pending,
                    COALESCE(SUM(CASE WHEN status = 'SENDING' THEN 1 ELSE 0 END), 0) AS sending,
                    COALESCE(SUM(CASE WHEN status = 'SENT' THEN 1 ELSE 0 END), 0) AS sent,
                    COALESCE(SUM(CASE WHEN status = 'FAILED' THEN 1 ELSE 0 END), 0) AS failed
                FROM notification_queue
            """)
            row = cur.fetchone()
        return QueueStats(
            pending=row["pending"],
            sending=row["sending"],
            sent=row["sent"],
            failed=row["failed"],
        )

    def recent(self, limit: int) -> List[QueueItem]:
        """Newest items first."""
        with self.db.reader() as cur:
            cur.execute(
                "SELECT * FROM notification_queue ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            )
            return [QueueItem.from_row(row) for row in cur.fetchall()]

    def delete_by_id(self, item_id: int) -> bool:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM notification_queue WHERE id = ?", (item_id,))
            deleted = cur.rowcount == 1
        if deleted:
            logger.info(f"Deleted queue item #{item_id}")
            self._notify()
        return deleted

    def clear_all(self) -> int:
        with self.db.cursor() as cur:
            cur.execute("DELETE FROM notification_queue")
            count = cur.rowcount
        logger.info(f"Cleared queue ({count} items)")
        self._notify()
        return count

    # Observers

    def observe_stats(self, listener: StatsListener) -> Subscription:
        """Push QueueStats to listener now and after every mutation."""
        with self._listeners_lock:
            self._stats_listeners.append(listener)
        self._deliver(listener, self.stats())
        return Subscription(self, ("stats", listener))

    def observe_recent(self, limit: int, listener: RecentListener) -> Subscription:
        """Push the newest `limit` items to listener now and after every mutation."""
        entry = (limit, listener)
        with self._listeners_lock:
            self._recent_listeners.append(entry)
        self._deliver(listener, self.recent(limit))
        return Subscription(self, ("recent", entry))

    def _remove_listener(self, entry):
        kind, value = entry
        with self._listeners_lock:
            listeners = self._stats_listeners if kind == "stats" else self._recent_listeners
            if value in listeners:
                listeners.remove(value)

    def _notify(self):
        with self._listeners_lock:
            stats_listeners = list(self._stats_listeners)
            recent_listeners = list(self._recent_listeners)

        if stats_listeners:
            snapshot = self.stats()
            for listener in stats_listeners:
                self._deliver(listener, snapshot)

        snapshots = {}
        for limit, listener in recent_listeners:
            if limit not in snapshots:
                snapshots[limit] = self.recent(limit)
            self._deliver(listener, list(snapshots[limit]))

    def _deliver(self, listener, snapshot):
        try:
            listener(snapshot)
        except Exception as e:
            logger.error(f"Queue observer {listener!r} failed: {e}", exc_info=True)
