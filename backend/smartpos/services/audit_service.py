# Overview: Append-only audit trail for order engine events.

from __future__ import annotations

import json
from datetime import datetime
from typing import Optional

from ..models import AuditEvent
"""
Audit trail invariants

- Append-only: no updates or deletes of existing events.
- Events are written inside the same DB transaction as the change they record,
  so a rolled-back order leaves no event behind.
- occurred_at is business time; created_at is system time (DB default).
"""


def append_audit_event(
    session,
    *,
    store_id: int,
    event_type: str,
    event_category: str,
    entity_type: str,
    entity_id: int,
    actor_employee_id: int | None = None,
    order_id: int | None = None,
    refund_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: dict | str | None = None,
) -> AuditEvent:
    if isinstance(payload, dict):
        payload = json.dumps(payload, sort_keys=True, separators=(",", ":"))

    ev = AuditEvent(
        store_id=store_id,
        event_type=event_type,
        event_category=event_category,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_employee_id=actor_employee_id,
        order_id=order_id,
        refund_id=refund_id,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    session.add(ev)
    return ev


def list_audit_events(
    session,
    *,
    store_id: int,
    order_id: int | None = None,
    event_type: str | None = None,
    limit: int = 200,
) -> list[AuditEvent]:
    query = session.query(AuditEvent).filter(AuditEvent.store_id == store_id)
    if order_id is not None:
        query = query.filter(AuditEvent.order_id == order_id)
    if event_type:
        query = query.filter(AuditEvent.event_type == event_type)
    return query.order_by(AuditEvent.id.asc()).limit(limit).all()
