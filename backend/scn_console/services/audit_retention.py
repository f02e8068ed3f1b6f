"""Retention purge for the console audit trail.

Mutations are never purged.  Safeguarding access is kept for seven years,
the period child-protection records are held for.  Other denials are kept a
year so repeated attempts on a module stay visible; routine reads and system
events go sooner.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

from scn_console.services.audit_service import DB_FILENAME, AuditEventCategory

logger = logging.getLogger(__name__)

# Days kept per category.  None = never purge.
RETENTION_DAYS: dict[AuditEventCategory, int | None] = {
    AuditEventCategory.MUTATION: None,
    AuditEventCategory.SAFEGUARDING: 7 * 365,
    AuditEventCategory.ACCESS_DENIED: 365,
    AuditEventCategory.READ_ACCESS: 90,
    AuditEventCategory.SYSTEM: 30,
}


def retention_cutoffs(now: datetime) -> dict[AuditEventCategory, datetime]:
    """Oldest timestamp still kept, per purgeable category."""
    return {
        category: now - timedelta(days=days)
        for category, days in RETENTION_DAYS.items()
        if days is not None
    }


def purge_audit_retention(
    audit_base_path: str,
    now: datetime | None = None,
) -> dict[str, int]:
    """Delete expired events; returns rows removed per category plus ``total``."""
    now = now or datetime.now(timezone.utc)
    cutoffs = retention_cutoffs(now)
    summary = {category.value: 0 for category in cutoffs}

    db_path = Path(audit_base_path) / DB_FILENAME
    if db_path.exists():
        conn = sqlite3.connect(str(db_path))
        try:
            for category, cutoff in cutoffs.items():
                cursor = conn.execute(
                    "DELETE FROM audit_events WHERE category = ? AND timestamp < ?",
                    (category.value, cutoff.isoformat()),
                )
                summary[category.value] = cursor.rowcount
            conn.commit()
        finally:
            conn.close()

    summary["total"] = sum(summary.values())
    if summary["total"]:
        logger.info("Purged %d expired audit events", summary["total"])
    return summary
