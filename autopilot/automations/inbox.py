"""
Notification inbox for automation results.

Persists user-facing notifications and streams them to live subscribers.

Usage:
    inbox = NotificationInbox()
    await inbox.notify(user_id, "Automation ran", "Created: Launch recap", refs)

    async for notification in inbox.subscribe():
        handle(notification)
"""
import asyncio
import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import AsyncGenerator, Optional
from uuid import uuid4

from .models import parse_datetime, utc_now


class NotificationKind(str, Enum):
    """Kinds of notifications."""
    AUTOMATION = "automation"
    SYSTEM = "system"


@dataclass
class Notification:
    """A message for a user, with references to the objects it concerns."""
    user_id: str
    title: str
    message: str
    kind: NotificationKind = NotificationKind.AUTOMATION
    refs: dict = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4())[:8])
    created_at: datetime = field(default_factory=utc_now)
    read: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "kind": self.kind.value,
            "refs": self.refs,
            "created_at": self.created_at.isoformat(),
            "read": self.read,
        }


class NotificationInbox:
    """SQLite-backed notification sink with async subscriptions."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the inbox.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory.
        """
        self.db_path = db_path or ":memory:"
        self._subscribers: list[asyncio.Queue] = []
        self._db_lock = Lock()
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection, using persistent connection for in-memory."""
        if self._conn is not None:
            return self._conn
        return sqlite3.connect(self.db_path)

    def _init_db(self) -> None:
        """Initialize SQLite database schema."""
        conn = self._get_connection()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                refs TEXT NOT NULL,
                created_at TEXT NOT NULL,
                read BOOLEAN DEFAULT 0
            )
            """
        )
        conn.commit()
        if self._conn is None:
            conn.close()

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        refs: Optional[dict] = None,
        kind: NotificationKind = NotificationKind.AUTOMATION,
    ) -> Notification:
        """
        Store a notification and hand it to subscribers.

        Args:
            user_id: Recipient
            title: Short headline
            message: Body text
            refs: Ids of related objects (automation, run, artifact)
            kind: Notification kind

        Returns:
            The stored notification
        """
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            kind=kind,
            refs=refs or {},
        )
        self._store(notification)

        for subscriber_queue in self._subscribers:
            await subscriber_queue.put(notification)

        return notification

    def _store(self, notification: Notification) -> None:
        with self._db_lock:
            conn = self._get_connection()
            try:
                conn.execute(
                    """
                    INSERT INTO notifications
                    (id, user_id, kind, title, message, refs, created_at, read)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        notification.id,
                        notification.user_id,
                        notification.kind.value,
                        notification.title,
                        notification.message,
                        json.dumps(notification.refs),
                        notification.created_at.isoformat(),
                        notification.read,
                    ),
                )
                conn.commit()
            finally:
                if self._conn is None:
                    conn.close()

    def list_for_user(self, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        """Notifications of a user, newest first."""
        sql = "SELECT id, user_id, kind, title, message, refs, created_at, read FROM notifications WHERE user_id = ?"
        if unread_only:
            sql += " AND read = 0"
        sql += " ORDER BY created_at DESC LIMIT ?"

        with self._db_lock:
            conn = self._get_connection()
            try:
                rows = conn.execute(sql, (user_id, limit)).fetchall()
            finally:
                if self._conn is None:
                    conn.close()

        return [
            Notification(
                id=row[0],
                user_id=row[1],
                kind=NotificationKind(row[2]),
                title=row[3],
                message=row[4],
                refs=json.loads(row[5]),
                created_at=parse_datetime(row[6]),
                read=bool(row[7]),
            )
            for row in rows
        ]

    def mark_read(self, notification_id: str) -> bool:
        """Mark a notification as read. Returns False if it does not exist."""
        with self._db_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(
                    "UPDATE notifications SET read = 1 WHERE id = ?", (notification_id,)
                )
                conn.commit()
                return cursor.rowcount == 1
            finally:
                if self._conn is None:
                    conn.close()

    async def subscribe(self) -> AsyncGenerator[Notification, None]:
        """
        Subscribe to notifications.

        Yields:
            Notification objects as they are created
        """
        subscriber_queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(subscriber_queue)

        try:
            while True:
                yield await subscriber_queue.get()
        finally:
            self._subscribers.remove(subscriber_queue)
