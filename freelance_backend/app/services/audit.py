"""
Audit logging service for tracking report lifecycle events.

Audit rows are added to the caller's session and persisted by the caller's
commit, so an event is never recorded for a mutation that rolled back.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from freelance_backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    REPORT_CREATED = "REPORT_CREATED"
    REPORT_UPDATED = "REPORT_UPDATED"
    REPORT_DELETED = "REPORT_DELETED"
    REPORT_SUBMITTED = "REPORT_SUBMITTED"
    REPORT_LOCKED = "REPORT_LOCKED"

    ENTRY_CREATED = "ENTRY_CREATED"
    ENTRY_UPDATED = "ENTRY_UPDATED"
    ENTRY_DELETED = "ENTRY_DELETED"

    LEDGER_REVISION_RELINKED = "LEDGER_REVISION_RELINKED"


def record_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[int] = None,
    report_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Stage an audit event in the current transaction.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: ID of user performing the action (None for system actions)
        report_id: Report the action concerns
        metadata: Additional context as JSON

    Returns:
        Pending AuditLog instance
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        action=action,
        report_id=report_id,
        meta_data=metadata
    )

    db.add(audit_log)

    return audit_log


async def get_report_audit_trail(
    db: AsyncSession,
    report_id: int,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve the audit trail of a report, most recent first.

    Args:
        db: Database session
        report_id: Report to get history for
        action: Filter by action type
        limit: Maximum number of records to return
    """
    query = select(AuditLog).where(AuditLog.report_id == report_id).order_by(
        desc(AuditLog.timestamp), desc(AuditLog.id)
    )

    if action:
        query = query.where(AuditLog.action == action)

    query = query.limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
