"""
Audit Log Database Model.

Tracks report and entry mutations for compliance and support.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from freelance_backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for tracking report lifecycle events.

    Events logged:
    - REPORT_CREATED / REPORT_UPDATED / REPORT_DELETED
    - ENTRY_CREATED / ENTRY_UPDATED / ENTRY_DELETED
    - REPORT_SUBMITTED / REPORT_LOCKED
    - LEDGER_REVISION_RELINKED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action (None for system actions)
    actor_id = Column(Integer, index=True, nullable=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which report the action concerns
    report_id = Column(Integer, index=True, nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, report={self.report_id})>"
