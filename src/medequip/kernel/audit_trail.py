"""
Audit Trail - immutable compliance log of privileged mutations

Every mutation writes its audit entry inside the same store transaction
as its events, so the mutation and its record commit or roll back
together. Entries can't be changed afterwards: the model is frozen, the
class exposes no update or delete, and SQLite triggers abort any UPDATE
or DELETE against the table.

Queries are scoped by organization. The unscoped readers (list_all,
list_for_resource) exist only for platform-admin call paths.

Fun fact: Vietnamese medical device regulations require maintenance
records to be kept for at least five years, longer than most of the
consumables they describe stay in service.
"""

import csv
import io
import json
import sqlite3
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from medequip.kernel.event_store import SQLiteEventStore, StoreTransaction
from medequip.kernel.ids import generate_id
from medequip.kernel.logging import get_logger
from medequip.kernel.metrics import audit_entries_recorded_total

logger = get_logger(__name__)


class AuditDraft(BaseModel):
    """What a command handler wants recorded about its mutation"""

    organization_id: str
    action: str = Field(..., description="Dotted action name, e.g. 'quote.accepted'")
    resource_type: str
    resource_id: str
    previous_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None


class AuditLogEntry(BaseModel):
    """A stored audit record (read-only)"""

    entry_id: str
    organization_id: str
    actor_id: str
    action: str
    resource_type: str
    resource_id: str
    previous_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    command_id: str | None = None
    created_at: datetime

    model_config = {"frozen": True}


class AuditTrail:
    """
    Append-only audit log stored next to the event log

    Schema:
    - audit_log table, indexed by (organization_id, created_at),
      resource_id and actor_id
    - Triggers rejecting UPDATE and DELETE
    """

    def __init__(self, event_store: SQLiteEventStore) -> None:
        self.event_store = event_store
        self._initialize_schema()

    def _initialize_schema(self) -> None:
        with self.event_store._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_log (
                    entry_id TEXT PRIMARY KEY,
                    organization_id TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    action TEXT NOT NULL,
                    resource_type TEXT NOT NULL,
                    resource_id TEXT NOT NULL,
                    previous_values_json TEXT,
                    new_values_json TEXT,
                    command_id TEXT,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_org "
                "ON audit_log(organization_id, created_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_resource ON audit_log(resource_id)"
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_log(actor_id)")
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS audit_log_no_update
                BEFORE UPDATE ON audit_log
                BEGIN
                    SELECT RAISE(ABORT, 'audit_log is append-only');
                END
            """)
            conn.execute("""
                CREATE TRIGGER IF NOT EXISTS audit_log_no_delete
                BEFORE DELETE ON audit_log
                BEGIN
                    SELECT RAISE(ABORT, 'audit_log is append-only');
                END
            """)
            conn.commit()

    # ========================================================================
    # Write path
    # ========================================================================

    def record(
        self,
        tx: StoreTransaction,
        *,
        organization_id: str,
        actor_id: str,
        action: str,
        resource_type: str,
        resource_id: str,
        created_at: datetime,
        previous_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        command_id: str | None = None,
    ) -> str:
        """
        Append one entry inside an open store transaction

        Returns:
            The new entry id
        """
        entry_id = generate_id()
        tx.conn.execute(
            """
            INSERT INTO audit_log (
                entry_id, organization_id, actor_id, action, resource_type,
                resource_id, previous_values_json, new_values_json, command_id, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry_id,
                organization_id,
                actor_id,
                action,
                resource_type,
                resource_id,
                json.dumps(previous_values) if previous_values is not None else None,
                json.dumps(new_values) if new_values is not None else None,
                command_id,
                created_at.isoformat(),
            ),
        )
        tx.on_commit.append(lambda: audit_entries_recorded_total.labels(action=action).inc())
        return entry_id

    def record_draft(
        self,
        tx: StoreTransaction,
        draft: AuditDraft,
        *,
        actor_id: str,
        created_at: datetime,
        command_id: str | None = None,
    ) -> str:
        """Record a handler's AuditDraft"""
        return self.record(
            tx,
            organization_id=draft.organization_id,
            actor_id=actor_id,
            action=draft.action,
            resource_type=draft.resource_type,
            resource_id=draft.resource_id,
            previous_values=draft.previous_values,
            new_values=draft.new_values,
            created_at=created_at,
            command_id=command_id,
        )

    # ========================================================================
    # Read path
    # ========================================================================

    def list_for_organization(
        self,
        organization_id: str,
        *,
        resource_type: str | None = None,
        resource_id: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Entries of one organization, newest first"""
        if not organization_id:
            raise ValueError("organization_id is required for scoped audit queries")
        return self._query(
            organization_id=organization_id,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            action=action,
            from_date=from_date,
            to_date=to_date,
            limit=limit,
        )

    def list_all(
        self,
        *,
        organization_id: str | None = None,
        resource_type: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Unscoped listing across every organization (platform admins only)"""
        return self._query(
            organization_id=organization_id,
            resource_type=resource_type,
            actor_id=actor_id,
            action=action,
            from_date=from_date,
            to_date=to_date,
            search=search,
            limit=limit,
        )

    def list_for_resource(self, resource_id: str) -> list[AuditLogEntry]:
        """History of one resource across organizations, oldest first"""
        return list(reversed(self._query(resource_id=resource_id)))

    def count(self) -> int:
        with self.event_store._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM audit_log").fetchone()[0]

    def _query(
        self,
        *,
        organization_id: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        search: str | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        conditions = []
        params: list[Any] = []

        for column, value in (
            ("organization_id", organization_id),
            ("resource_type", resource_type),
            ("resource_id", resource_id),
            ("actor_id", actor_id),
            ("action", action),
        ):
            if value is not None:
                conditions.append(f"{column} = ?")
                params.append(value)

        if from_date:
            conditions.append("created_at >= ?")
            params.append(from_date.isoformat())
        if to_date:
            conditions.append("created_at <= ?")
            params.append(to_date.isoformat())
        if search:
            # Case-insensitive substring over action, resource type and id
            conditions.append(
                "(LOWER(action) LIKE ? OR LOWER(resource_type) LIKE ? OR LOWER(resource_id) LIKE ?)"
            )
            params.extend([f"%{search.lower()}%"] * 3)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"""
            SELECT * FROM audit_log
            WHERE {where_clause}
            ORDER BY created_at DESC, rowid DESC
        """
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self.event_store._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: sqlite3.Row) -> AuditLogEntry:
        return AuditLogEntry(
            entry_id=row["entry_id"],
            organization_id=row["organization_id"],
            actor_id=row["actor_id"],
            action=row["action"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            previous_values=(
                json.loads(row["previous_values_json"])
                if row["previous_values_json"]
                else None
            ),
            new_values=json.loads(row["new_values_json"]) if row["new_values_json"] else None,
            command_id=row["command_id"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


CSV_HEADERS = [
    "Thời gian / Timestamp",
    "Người thực hiện / Actor",
    "Email người thực hiện / Actor Email",
    "Hành động / Action",
    "Loại tài nguyên / Resource Type",
    "ID tài nguyên / Resource ID",
    "Tổ chức / Organization",
]


def render_csv(
    entries: list[AuditLogEntry],
    users: dict[str, dict[str, Any]],
    organization_names: dict[str, str],
) -> str:
    """
    Audit entries as CSV with bilingual headers

    Args:
        entries: Entries in the order they should appear
        users: user_id -> user record (name, email); unknown actors render blank
        organization_names: organization_id -> display name

    Returns:
        CSV text, header row first
    """
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        actor = users.get(entry.actor_id) or {}
        writer.writerow(
            [
                entry.created_at.isoformat(),
                actor.get("name") or "",
                actor.get("email") or "",
                entry.action,
                entry.resource_type,
                entry.resource_id,
                organization_names.get(entry.organization_id, ""),
            ]
        )
    return output.getvalue()
