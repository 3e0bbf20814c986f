"""Queue data models."""
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class QueueStatus(str, Enum):
    """Lifecycle of a queued notification.

    PENDING -> SENDING -> SENT | PENDING (retry) | FAILED
    """

    PENDING = "PENDING"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (QueueStatus.SENT, QueueStatus.FAILED)


@dataclass
class QueueItem:
    """A captured notification awaiting or having completed delivery."""

    package_name: str
    app_name: str
    title: str
    text: str
    posted_at: int
    notification_key: str  # Dedupe key, unique in the store
    status: QueueStatus = QueueStatus.PENDING
    attempt_count: int = 0
    next_retry_at: int = 0
    last_error: Optional[str] = None
    created_at: int = 0
    updated_at: int = 0
    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        package_name: str,
        app_name: str,
        title: str,
        text: str,
        posted_at: int,
        notification_key: str,
    ):
        """Factory for a fresh PENDING item, immediately eligible for dispatch."""
        now = now_ms()
        return cls(
            package_name=package_name,
            app_name=app_name,
            title=title,
            text=text,
            posted_at=posted_at,
            notification_key=notification_key,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )

    @classmethod
    def from_row(cls, row: sqlite3.Row):
        return cls(
            id=row["id"],
            package_name=row["package_name"],
            app_name=row["app_name"],
            title=row["title"],
            text=row["text"],
            posted_at=row["posted_at"],
            notification_key=row["notification_key"],
            status=QueueStatus(row["status"]),
            attempt_count=row["attempt_count"],
            next_retry_at=row["next_retry_at"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def to_dict(self):
        return {
            "id": self.id,
            "package_name": self.package_name,
            "app_name": self.app_name,
            "title": self.title,
            "text": self.text,
            "posted_at": self.posted_at,
            "notification_key": self.notification_key,
            "status": self.status.value,
            "attempt_count": self.attempt_count,
            "next_retry_at": self.next_retry_at,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class QueueStats:
    """Item count per status, computed on demand."""

    pending: int = 0
    sending: int = 0
    sent: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.sending + self.sent + self.failed

    def to_dict(self):
        return {
            "pending": self.pending,
            "sending": self.sending,
            "sent": self.sent,
            "failed": self.failed,
            "total": self.total,
        }
