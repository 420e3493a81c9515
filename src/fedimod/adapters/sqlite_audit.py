"""SQLite audit adapter.

Implements the core AuditPort using a simple SQLite database, one row per
triggered rule.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List

from fedimod.core.outcomes import TriggerResult


class SQLiteAuditLog:
    """Thin SQLite wrapper that satisfies the AuditPort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the audit table if it does not exist."""

        with self._connect() as conn:
            # outcomes is an append-only log. It stays denormalized so a single
            # SELECT shows which report a restrict action cited.
            # Fields:
            # - domain / username: bot account that evaluated the event
            # - event_id / target_id: remote ids of the post or account and its owner
            # - position: order in which the rule triggered within the event
            # - report_status / report_id: aggregated report outcome, if the rule reports
            # - restrict_kind / restrict_status / cited_report_id / resolved: restrict outcome
            # - error: first failure message, if any
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS outcomes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TIMESTAMP NOT NULL,
                    domain TEXT NOT NULL,
                    username TEXT NOT NULL,
                    event_id TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    rule_name TEXT NOT NULL,
                    reason TEXT,
                    report_status TEXT,
                    report_id TEXT,
                    restrict_kind TEXT,
                    restrict_status TEXT,
                    cited_report_id TEXT,
                    resolved INTEGER,
                    error TEXT
                )
                """
            )

    def record(self, result: TriggerResult) -> None:
        """Persist every rule outcome of one trigger result."""

        created_at = datetime.now(timezone.utc).isoformat()
        rows = []
        for position, outcome in enumerate(result.outcomes):
            report = outcome.report
            restrict = outcome.restrict
            error = (report.error if report else None) or (restrict.error if restrict else None)
            rows.append(
                (
                    created_at,
                    result.domain,
                    result.username,
                    result.event_id,
                    result.target_id,
                    position,
                    outcome.rule.name,
                    outcome.reason,
                    report.status.value if report else None,
                    report.report_id if report else None,
                    restrict.kind.value if restrict else None,
                    restrict.status.value if restrict else None,
                    restrict.cited_report_id if restrict else None,
                    int(restrict.resolved) if restrict else None,
                    error,
                )
            )
        if not rows:
            return
        with self._connect() as conn:
            conn.executemany(
                """
                INSERT INTO outcomes (
                    created_at,
                    domain,
                    username,
                    event_id,
                    target_id,
                    position,
                    rule_name,
                    reason,
                    report_status,
                    report_id,
                    restrict_kind,
                    restrict_status,
                    cited_report_id,
                    resolved,
                    error
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                rows,
            )

    def recent(self, limit: int = 20) -> List[sqlite3.Row]:
        """Return the newest rows, newest first."""

        with self._connect() as conn:
            return conn.execute(
                "SELECT * FROM outcomes ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
