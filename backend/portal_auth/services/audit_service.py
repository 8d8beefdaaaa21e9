# Overview: Append-only audit sink and audit log queries.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..models import AuditLogEntry, AuditAction


@dataclass
class AuditLogQuery:
    entity_type: str | None = None
    entity_id: int | None = None
    action: AuditAction | None = None
    performed_by_account_id: int | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    limit: int = 50
    offset: int = 0


def log(
    entity_type: str,
    entity_id: int | None,
    action: AuditAction,
    old_values: dict | None = None,
    new_values: dict | None = None,
    performed_by: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = False,
) -> AuditLogEntry:
    """
    Append one audit entry.

    By default the entry joins the caller's transaction so that the state
    change and its audit record commit (or roll back) together.
    """
    entry = AuditLogEntry(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        old_values=old_values,
        new_values=new_values,
        performed_by_account_id=performed_by,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return entry


def find_by_entity(entity_type: str, entity_id: int) -> list[AuditLogEntry]:
    return db.session.query(AuditLogEntry).filter_by(
        entity_type=entity_type,
        entity_id=entity_id,
    ).order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc()).all()


def find_all(query: AuditLogQuery) -> tuple[list[AuditLogEntry], int]:
    """Filtered, paginated audit listing. Returns (rows, total matching)."""
    q = db.session.query(AuditLogEntry)

    if query.entity_type:
        q = q.filter(AuditLogEntry.entity_type == query.entity_type)
    if query.entity_id is not None:
        q = q.filter(AuditLogEntry.entity_id == query.entity_id)
    if query.action:
        q = q.filter(AuditLogEntry.action == query.action)
    if query.performed_by_account_id is not None:
        q = q.filter(AuditLogEntry.performed_by_account_id == query.performed_by_account_id)
    if query.from_date and query.to_date:
        q = q.filter(AuditLogEntry.timestamp.between(query.from_date, query.to_date))

    total = q.count()
    rows = q.order_by(
        AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc()
    ).limit(query.limit).offset(query.offset).all()
    return rows, total


def get_user_activity(
    account_id: int,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = 50,
) -> list[AuditLogEntry]:
    rows, _ = find_all(AuditLogQuery(
        performed_by_account_id=account_id,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
    ))
    return rows
