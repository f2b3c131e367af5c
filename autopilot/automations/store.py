"""
SQLite persistence for automations and everything a run touches.

Holds automation definitions and their bookkeeping, destination columns,
produced artifacts, client context, publishing credentials, workspace
owners, the per-window idempotency keys and the per-automation leases.

Usage:
    store = AutomationStore("autopilot.db")
    store.save_automation(automation)
    if store.claim_firing_window(automation.id, "schedule:2024-05-01", run_id):
        ...
"""
import json
import logging
import sqlite3
import time
from datetime import datetime
from threading import Lock
from typing import Any, Optional
from uuid import uuid4

from .models import (
    ArtifactStatus,
    AutomationDefinition,
    FeedTrigger,
    ImageStyle,
    ProducedArtifact,
    parse_datetime,
    parse_trigger_config,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


class AutomationNotFoundError(LookupError):
    """Raised when an automation id does not exist."""


def _iso(value: Optional[datetime]) -> Optional[str]:
    return to_utc(value).isoformat() if value else None


class AutomationStore:
    """
    SQLite-backed store for automations and run side effects.

    Thread-safe through a lock around every statement, like the other
    SQLite components of the engine.
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database. If None, uses in-memory.
        """
        self.db_path = db_path or ":memory:"
        self._db_lock = Lock()
        # Keep persistent connection for in-memory databases
        self._conn: Optional[sqlite3.Connection] = None
        if self.db_path == ":memory:":
            self._conn = sqlite3.connect(":memory:", check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get database connection, using persistent connection for in-memory."""
        if self._conn is not None:
            return self._conn
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize SQLite database schema."""
        conn = self._get_connection()
        cursor = conn.cursor()

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS automations (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                client_id TEXT,
                name TEXT NOT NULL,
                is_active BOOLEAN NOT NULL,
                trigger_type TEXT NOT NULL,
                trigger_config TEXT NOT NULL,
                content_type TEXT NOT NULL,
                platform TEXT,
                target_column_id TEXT,
                prompt_template TEXT,
                auto_generate_content BOOLEAN,
                auto_generate_image BOOLEAN,
                auto_publish BOOLEAN,
                image_style TEXT,
                image_prompt_template TEXT,
                last_triggered_at TEXT,
                items_created INTEGER DEFAULT 0,
                created_by TEXT,
                created_at TEXT NOT NULL
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS columns (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL,
                is_default BOOLEAN DEFAULT 0,
                position INTEGER DEFAULT 0
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS artifacts (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                client_id TEXT,
                column_id TEXT,
                title TEXT NOT NULL,
                description TEXT,
                platform TEXT,
                content_type TEXT NOT NULL,
                status TEXT NOT NULL,
                media_urls TEXT NOT NULL,
                content TEXT,
                metadata TEXT NOT NULL,
                position INTEGER,
                created_by TEXT,
                created_at TEXT NOT NULL
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL,
                context_notes TEXT
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS social_credentials (
                client_id TEXT NOT NULL,
                platform TEXT NOT NULL,
                metadata TEXT NOT NULL,
                PRIMARY KEY (client_id, platform)
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL
            )
            """
        )

        # One row per fired window; the primary key is the idempotency key
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS trigger_firings (
                automation_id TEXT NOT NULL,
                firing_window TEXT NOT NULL,
                run_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (automation_id, firing_window)
            )
            """
        )

        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS automation_leases (
                automation_id TEXT PRIMARY KEY,
                holder TEXT NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )

        conn.commit()
        if self._conn is None:
            conn.close()

    def _execute(self, sql: str, params: tuple = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self._db_lock:
            conn = self._get_connection()
            try:
                cursor = conn.execute(sql, params)
                conn.commit()
                return cursor.rowcount
            finally:
                if self._conn is None:
                    conn.close()

    def _fetch(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        with self._db_lock:
            conn = self._get_connection()
            try:
                return conn.execute(sql, params).fetchall()
            finally:
                if self._conn is None:
                    conn.close()

    # --- Automations ---

    def save_automation(self, automation: AutomationDefinition) -> None:
        """Insert or replace an automation definition."""
        self._execute(
            """
            INSERT OR REPLACE INTO automations
            (id, workspace_id, client_id, name, is_active, trigger_type,
             trigger_config, content_type, platform, target_column_id,
             prompt_template, auto_generate_content, auto_generate_image,
             auto_publish, image_style, image_prompt_template,
             last_triggered_at, items_created, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                automation.id,
                automation.workspace_id,
                automation.client_id,
                automation.name,
                automation.is_active,
                automation.trigger_type.value,
                json.dumps(automation.trigger.to_dict()),
                automation.content_type,
                automation.platform,
                automation.target_column_id,
                automation.prompt_template,
                automation.auto_generate_content,
                automation.auto_generate_image,
                automation.auto_publish,
                automation.image_style.value,
                automation.image_prompt_template,
                _iso(automation.last_triggered_at),
                automation.items_created,
                automation.created_by,
                _iso(automation.created_at),
            ),
        )

    def _row_to_automation(self, row: sqlite3.Row) -> AutomationDefinition:
        return AutomationDefinition(
            id=row["id"],
            workspace_id=row["workspace_id"],
            client_id=row["client_id"],
            name=row["name"],
            is_active=bool(row["is_active"]),
            trigger=parse_trigger_config(row["trigger_type"], json.loads(row["trigger_config"])),
            content_type=row["content_type"],
            platform=row["platform"],
            target_column_id=row["target_column_id"],
            prompt_template=row["prompt_template"],
            auto_generate_content=bool(row["auto_generate_content"]),
            auto_generate_image=bool(row["auto_generate_image"]),
            auto_publish=bool(row["auto_publish"]),
            image_style=ImageStyle(row["image_style"] or ImageStyle.PHOTOGRAPHIC.value),
            image_prompt_template=row["image_prompt_template"],
            last_triggered_at=parse_datetime(row["last_triggered_at"]),
            items_created=row["items_created"] or 0,
            created_by=row["created_by"],
            created_at=parse_datetime(row["created_at"]),
        )

    def get_automation(self, automation_id: str) -> AutomationDefinition:
        """
        Load an automation.

        Raises:
            AutomationNotFoundError: If the id is unknown
            TriggerConfigError: If the stored trigger configuration is malformed
        """
        rows = self._fetch("SELECT * FROM automations WHERE id = ?", (automation_id,))
        if not rows:
            raise AutomationNotFoundError(f"Automation not found: {automation_id}")
        return self._row_to_automation(rows[0])

    def get_workspace_id(self, automation_id: str) -> str:
        """Workspace of an automation, read without parsing its configuration."""
        rows = self._fetch("SELECT workspace_id FROM automations WHERE id = ?", (automation_id,))
        if not rows:
            raise AutomationNotFoundError(f"Automation not found: {automation_id}")
        return rows[0]["workspace_id"]

    def list_automation_ids(self, active_only: bool = True) -> list[str]:
        """Ids of automations, oldest first."""
        sql = "SELECT id FROM automations"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY created_at"
        return [row["id"] for row in self._fetch(sql)]

    def list_automations(self, workspace_id: Optional[str] = None) -> list[AutomationDefinition]:
        sql = "SELECT * FROM automations"
        params: tuple = ()
        if workspace_id:
            sql += " WHERE workspace_id = ?"
            params = (workspace_id,)
        return [self._row_to_automation(row) for row in self._fetch(sql + " ORDER BY created_at", params)]

    def record_fire(
        self,
        automation_id: str,
        fired_at: datetime,
        trigger: Optional[FeedTrigger] = None,
    ) -> None:
        """Advance bookkeeping after a successful fire."""
        if trigger is not None:
            self._execute(
                """
                UPDATE automations
                SET last_triggered_at = ?, items_created = items_created + 1,
                    trigger_config = ?
                WHERE id = ?
                """,
                (_iso(fired_at), json.dumps(trigger.to_dict()), automation_id),
            )
        else:
            self._execute(
                """
                UPDATE automations
                SET last_triggered_at = ?, items_created = items_created + 1
                WHERE id = ?
                """,
                (_iso(fired_at), automation_id),
            )

    # --- Idempotency keys ---

    def claim_firing_window(self, automation_id: str, window: str, run_id: str) -> bool:
        """Claim a firing window. Returns False if it was already claimed."""
        inserted = self._execute(
            """
            INSERT OR IGNORE INTO trigger_firings
            (automation_id, firing_window, run_id, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (automation_id, window, run_id, _iso(utc_now())),
        )
        return inserted == 1

    def release_firing_window(self, automation_id: str, window: str) -> None:
        """Release a claim so a failed fire can be retried."""
        self._execute(
            "DELETE FROM trigger_firings WHERE automation_id = ? AND firing_window = ?",
            (automation_id, window),
        )

    # --- Leases ---

    def acquire_lease(
        self,
        automation_id: str,
        holder: str,
        ttl_seconds: float,
        now: Optional[float] = None,
    ) -> bool:
        """Take the processing lease of an automation unless another holder has a live one."""
        now = time.time() if now is None else now
        changed = self._execute(
            """
            INSERT INTO automation_leases (automation_id, holder, expires_at)
            VALUES (?, ?, ?)
            ON CONFLICT(automation_id) DO UPDATE
            SET holder = excluded.holder, expires_at = excluded.expires_at
            WHERE automation_leases.expires_at <= ?
               OR automation_leases.holder = excluded.holder
            """,
            (automation_id, holder, now + ttl_seconds, now),
        )
        return changed == 1

    def release_lease(self, automation_id: str, holder: str) -> None:
        self._execute(
            "DELETE FROM automation_leases WHERE automation_id = ? AND holder = ?",
            (automation_id, holder),
        )

    # --- Columns ---

    def add_column(
        self,
        workspace_id: str,
        name: str,
        is_default: bool = False,
        position: int = 0,
        column_id: Optional[str] = None,
    ) -> str:
        column_id = column_id or str(uuid4())
        self._execute(
            "INSERT INTO columns (id, workspace_id, name, is_default, position) VALUES (?, ?, ?, ?, ?)",
            (column_id, workspace_id, name, is_default, position),
        )
        return column_id

    def default_column_id(self, workspace_id: str) -> Optional[str]:
        rows = self._fetch(
            "SELECT id FROM columns WHERE workspace_id = ? AND is_default = 1 ORDER BY position LIMIT 1",
            (workspace_id,),
        )
        return rows[0]["id"] if rows else None

    def next_position(self, column_id: Optional[str]) -> int:
        """Position after the last artifact of a column."""
        if column_id is None:
            return 0
        rows = self._fetch(
            "SELECT COUNT(*) AS n FROM artifacts WHERE column_id = ?", (column_id,)
        )
        return rows[0]["n"] + 1

    # --- Artifacts ---

    def save_artifact(self, artifact: ProducedArtifact) -> None:
        """Insert or replace an artifact."""
        self._execute(
            """
            INSERT OR REPLACE INTO artifacts
            (id, workspace_id, client_id, column_id, title, description,
             platform, content_type, status, media_urls, content, metadata,
             position, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                artifact.id,
                artifact.workspace_id,
                artifact.client_id,
                artifact.column_id,
                artifact.title,
                artifact.description,
                artifact.platform,
                artifact.content_type,
                artifact.status.value,
                json.dumps(artifact.media_urls),
                artifact.content,
                json.dumps(artifact.metadata, default=str),
                artifact.position,
                artifact.created_by,
                _iso(artifact.created_at),
            ),
        )

    def _row_to_artifact(self, row: sqlite3.Row) -> ProducedArtifact:
        return ProducedArtifact(
            id=row["id"],
            workspace_id=row["workspace_id"],
            client_id=row["client_id"],
            column_id=row["column_id"],
            title=row["title"],
            description=row["description"] or "",
            platform=row["platform"],
            content_type=row["content_type"],
            status=ArtifactStatus(row["status"]),
            media_urls=json.loads(row["media_urls"]),
            content=row["content"],
            metadata=json.loads(row["metadata"]),
            position=row["position"] or 0,
            created_by=row["created_by"],
            created_at=parse_datetime(row["created_at"]),
        )

    def get_artifact(self, artifact_id: str) -> Optional[ProducedArtifact]:
        rows = self._fetch("SELECT * FROM artifacts WHERE id = ?", (artifact_id,))
        return self._row_to_artifact(rows[0]) if rows else None

    def list_artifacts(self, workspace_id: str) -> list[ProducedArtifact]:
        rows = self._fetch(
            "SELECT * FROM artifacts WHERE workspace_id = ? ORDER BY created_at",
            (workspace_id,),
        )
        return [self._row_to_artifact(row) for row in rows]

    def published_examples(self, client_id: str, content_type: str, limit: int = 3) -> list[str]:
        """Most recent published content of a client for a content type."""
        rows = self._fetch(
            """
            SELECT content FROM artifacts
            WHERE client_id = ? AND content_type = ? AND status = ?
              AND content IS NOT NULL AND content != ''
            ORDER BY created_at DESC LIMIT ?
            """,
            (client_id, content_type, ArtifactStatus.PUBLISHED.value, limit),
        )
        return [row["content"] for row in rows]

    # --- Clients, credentials, workspaces ---

    def save_client(
        self,
        client_id: str,
        workspace_id: str,
        name: str,
        context_notes: Optional[str] = None,
    ) -> None:
        self._execute(
            "INSERT OR REPLACE INTO clients (id, workspace_id, name, context_notes) VALUES (?, ?, ?, ?)",
            (client_id, workspace_id, name, context_notes),
        )

    def client_context(self, client_id: str) -> Optional[str]:
        rows = self._fetch("SELECT context_notes FROM clients WHERE id = ?", (client_id,))
        return rows[0]["context_notes"] if rows else None

    def save_credentials(self, client_id: str, platform: str, metadata: dict[str, Any]) -> None:
        self._execute(
            "INSERT OR REPLACE INTO social_credentials (client_id, platform, metadata) VALUES (?, ?, ?)",
            (client_id, platform, json.dumps(metadata)),
        )

    def credential_ref(self, client_id: Optional[str], platform: str) -> Optional[str]:
        """Publishing profile reference stored for a client and platform."""
        if not client_id:
            return None
        rows = self._fetch(
            "SELECT metadata FROM social_credentials WHERE client_id = ? AND platform = ?",
            (client_id, platform),
        )
        if not rows:
            return None
        metadata = json.loads(rows[0]["metadata"])
        return metadata.get("profile_id") or metadata.get("late_profile_id")

    def set_workspace_owner(self, workspace_id: str, owner_id: str) -> None:
        self._execute(
            "INSERT OR REPLACE INTO workspaces (id, owner_id) VALUES (?, ?)",
            (workspace_id, owner_id),
        )

    def workspace_owner(self, workspace_id: str) -> Optional[str]:
        rows = self._fetch("SELECT owner_id FROM workspaces WHERE id = ?", (workspace_id,))
        return rows[0]["owner_id"] if rows else None
