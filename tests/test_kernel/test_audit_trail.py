"""
Tests for the audit trail

Entries are written inside the same transaction as the events they
describe, are scoped by organization, and can never be changed.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from medequip.kernel.audit_trail import AuditDraft, AuditTrail
from medequip.kernel.event_store import SQLiteEventStore

T0 = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def audit_trail(event_store: SQLiteEventStore) -> AuditTrail:
    return AuditTrail(event_store)


def record(audit_trail: AuditTrail, org: str, action: str, at: datetime, **kwargs) -> str:
    with audit_trail.event_store.transaction() as tx:
        return audit_trail.record(
            tx,
            organization_id=org,
            actor_id=kwargs.pop("actor_id", "user-1"),
            action=action,
            resource_type=kwargs.pop("resource_type", "serviceRequest"),
            resource_id=kwargs.pop("resource_id", "sr-1"),
            created_at=at,
            **kwargs,
        )


def test_record_and_list_for_organization(audit_trail: AuditTrail) -> None:
    record(audit_trail, "org-h", "serviceRequest.created", T0, new_values={"status": "pending"})
    record(audit_trail, "org-h", "serviceRequest.cancelled", T0 + timedelta(hours=1))
    record(audit_trail, "org-other", "serviceRequest.created", T0)

    entries = audit_trail.list_for_organization("org-h")

    assert [e.action for e in entries] == ["serviceRequest.cancelled", "serviceRequest.created"]
    assert entries[1].new_values == {"status": "pending"}
    assert all(e.organization_id == "org-h" for e in entries)


def test_filters_and_limit(audit_trail: AuditTrail) -> None:
    for i in range(5):
        record(audit_trail, "org-h", "quote.submitted", T0 + timedelta(days=i), resource_type="quote")
    record(audit_trail, "org-h", "quote.accepted", T0 + timedelta(days=10), actor_id="owner")

    assert len(audit_trail.list_for_organization("org-h", action="quote.submitted")) == 5
    assert len(audit_trail.list_for_organization("org-h", actor_id="owner")) == 1
    assert len(audit_trail.list_for_organization("org-h", limit=2)) == 2

    window = audit_trail.list_for_organization(
        "org-h", from_date=T0 + timedelta(days=1), to_date=T0 + timedelta(days=3)
    )
    assert len(window) == 3


def test_scoped_query_requires_organization(audit_trail: AuditTrail) -> None:
    with pytest.raises(ValueError):
        audit_trail.list_for_organization("")


def test_record_draft_and_resource_history(audit_trail: AuditTrail) -> None:
    draft = AuditDraft(
        organization_id="org-h",
        action="dispute.created",
        resource_type="dispute",
        resource_id="d-1",
    )
    with audit_trail.event_store.transaction() as tx:
        audit_trail.record_draft(tx, draft, actor_id="user-1", created_at=T0, command_id="c-1")
    record(
        audit_trail,
        "org-h",
        "admin.dispute.arbitrated",
        T0 + timedelta(days=2),
        resource_type="dispute",
        resource_id="d-1",
    )

    history = audit_trail.list_for_resource("d-1")

    assert [e.action for e in history] == ["dispute.created", "admin.dispute.arbitrated"]
    assert history[0].command_id == "c-1"
    assert audit_trail.count() == 2


def test_rolled_back_transaction_leaves_no_entry(audit_trail: AuditTrail) -> None:
    with pytest.raises(RuntimeError):
        with audit_trail.event_store.transaction() as tx:
            audit_trail.record(
                tx,
                organization_id="org-h",
                actor_id="user-1",
                action="quote.accepted",
                resource_type="quote",
                resource_id="q-1",
                created_at=T0,
            )
            raise RuntimeError("handler blew up")

    assert audit_trail.count() == 0


def test_entries_are_immutable(audit_trail: AuditTrail) -> None:
    """Direct UPDATE and DELETE are rejected by triggers"""
    record(audit_trail, "org-h", "serviceRequest.created", T0)

    conn = sqlite3.connect(str(audit_trail.event_store.db_path))
    try:
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute("UPDATE audit_log SET action = 'tampered'")
        with pytest.raises(sqlite3.DatabaseError):
            conn.execute("DELETE FROM audit_log")
    finally:
        conn.close()

    assert audit_trail.list_for_organization("org-h")[0].action == "serviceRequest.created"
