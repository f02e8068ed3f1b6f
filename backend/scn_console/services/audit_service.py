"""Audit trail for the SCN console.

Every event records who acted (session, role, vertical), which module it
touched and, for access checks, whether access was granted or denied.  Events
land in a SQLite store under ``AUDIT_STORAGE_PATH`` and are categorised for
retention:

* **MUTATION** -- session switches, approvals, allocations, messages
* **SAFEGUARDING** -- every attempt to open safeguarding data, granted or not
* **ACCESS_DENIED** -- refused views, actions and role switches elsewhere
* **READ_ACCESS** -- views of sensitive modules (donations, audit, users)
* **SYSTEM** -- startup, scheduler runs, upstream revocations

``fire_and_forget`` schedules the write on the default thread-pool so the
calling endpoint returns immediately.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

logger = logging.getLogger(__name__)

DB_FILENAME = "audit.db"


class AuditEventCategory(str, enum.Enum):
    MUTATION = "mutation"
    SAFEGUARDING = "safeguarding"
    ACCESS_DENIED = "access_denied"
    READ_ACCESS = "read_access"
    SYSTEM = "system"


class AccessOutcome(str, enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"


def _value(item: Any) -> Any:
    return item.value if isinstance(item, enum.Enum) else item


def classify_event(
    action: str,
    module: str | None = None,
    outcome: AccessOutcome | str | None = None,
) -> AuditEventCategory:
    """Retention category for an event.

    Safeguarding wins over everything but system events, so a denied
    safeguarding attempt is kept as long as a granted one.
    """
    if action.startswith(("system.", "access.revoked")):
        return AuditEventCategory.SYSTEM
    if _value(module) == "safeguarding":
        return AuditEventCategory.SAFEGUARDING
    if _value(outcome) == AccessOutcome.DENIED.value:
        return AuditEventCategory.ACCESS_DENIED
    if action.startswith("view."):
        return AuditEventCategory.READ_ACCESS
    return AuditEventCategory.MUTATION


@dataclasses.dataclass(frozen=True)
class AuditEvent:
    id: UUID
    timestamp: datetime
    category: AuditEventCategory
    action: str
    session_key: str | None
    role: str | None
    vertical: str | None
    module: str | None
    outcome: str | None
    resource_type: str | None
    resource_id: str | None
    details: dict | None
    ip_address: str | None

    @classmethod
    def create(
        cls,
        action: str,
        *,
        session_key: str | None = None,
        role: str | None = None,
        vertical: str | None = None,
        module: str | None = None,
        outcome: AccessOutcome | str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        ip_address: str | None = None,
        category: AuditEventCategory | None = None,
    ) -> "AuditEvent":
        module = _value(module)
        outcome = _value(outcome)
        return cls(
            id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            category=category or classify_event(action, module, outcome),
            action=action,
            session_key=session_key,
            role=_value(role),
            vertical=vertical,
            module=module,
            outcome=outcome,
            resource_type=resource_type,
            resource_id=resource_id,
            details=details,
            ip_address=ip_address,
        )

    def to_row(self) -> tuple:
        return (
            str(self.id),
            self.timestamp.isoformat(),
            self.category.value,
            self.action,
            self.session_key,
            self.role,
            self.vertical,
            self.module,
            self.outcome,
            self.resource_type,
            self.resource_id,
            json.dumps(self.details, default=str) if self.details else None,
            self.ip_address,
        )


_SCHEMA = """
    CREATE TABLE IF NOT EXISTS audit_events (
        id            TEXT PRIMARY KEY,
        timestamp     TEXT NOT NULL,
        category      TEXT NOT NULL,
        action        TEXT NOT NULL,
        session_key   TEXT,
        role          TEXT,
        vertical      TEXT,
        module        TEXT,
        outcome       TEXT,
        resource_type TEXT,
        resource_id   TEXT,
        details       TEXT,
        ip_address    TEXT
    )
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_ae_cat_ts ON audit_events(category, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_ae_module_ts ON audit_events(module, timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_ae_role_ts ON audit_events(role, timestamp)",
)


def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
    item = dict(row)
    item["details"] = json.loads(item["details"]) if item["details"] else None
    return item


class AuditTrailWriter:
    """Writes audit events to SQLite and answers queries over them."""

    def __init__(self, base_path: str) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.db_path = self.base_path / DB_FILENAME
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_SCHEMA)
            for statement in _INDEXES:
                conn.execute(statement)
            conn.commit()
        finally:
            conn.close()

    # ---- writes ----

    def write_sync(self, event: AuditEvent) -> None:
        conn = self._connect()
        try:
            conn.execute(
                "INSERT OR IGNORE INTO audit_events VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                event.to_row(),
            )
            conn.commit()
        finally:
            conn.close()

    async def write_async(self, event: AuditEvent) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.write_sync, event)

    def fire_and_forget(self, event: AuditEvent) -> None:
        """Schedule the write without awaiting.  Failures are logged only."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Scheduler thread or shutdown: no loop to hand the write to.
            try:
                self.write_sync(event)
            except sqlite3.Error:
                logger.exception("Audit write failed for event %s", event.id)
            return
        loop.create_task(self._safe_write(event))

    async def _safe_write(self, event: AuditEvent) -> None:
        try:
            await self.write_async(event)
        except sqlite3.Error:
            logger.exception("Audit write failed for event %s", event.id)

    # ---- queries ----

    def query(
        self,
        *,
        role: str | None = None,
        module: str | None = None,
        outcome: AccessOutcome | str | None = None,
        category: AuditEventCategory | str | None = None,
        session_key: str | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Events matching every given filter, newest first."""
        filters = {
            "role": _value(role),
            "module": _value(module),
            "outcome": _value(outcome),
            "category": _value(category),
            "session_key": session_key,
        }
        clauses = [f"{column} = ?" for column, value in filters.items() if value is not None]
        params: list[Any] = [value for value in filters.values() if value is not None]
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since.isoformat())

        sql = "SELECT * FROM audit_events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [_row_to_dict(row) for row in rows]

    def denial_summary(self, since: datetime | None = None) -> list[dict[str, Any]]:
        """Denied access attempts grouped by module and role, most frequent first."""
        sql = (
            "SELECT module, role, COUNT(*) AS denials, MAX(timestamp) AS last_denied "
            "FROM audit_events WHERE outcome = ?"
        )
        params: list[Any] = [AccessOutcome.DENIED.value]
        if since is not None:
            sql += " AND timestamp >= ?"
            params.append(since.isoformat())
        sql += " GROUP BY module, role ORDER BY denials DESC, module, role"

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [dict(row) for row in rows]
