"""
Ledger commit database models.

Immutable records tying a locked report to its revision in the git ledger.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.sql import func
from freelance_backend.app.db.session import Base
from freelance_backend.app.models.enums import OrphanReason


class LedgerCommit(Base):
    """
    Ledger Commit model.

    One row per successful lock transition. `sequence` increases strictly
    across the whole ledger, so the row with the highest sequence names the
    last revision the database knows about.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_commits"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    report_id = Column(Integer, nullable=False, index=True)
    sequence = Column(Integer, nullable=False, unique=True)

    # Ledger linkage
    payload_hash = Column(String(64), nullable=False)
    revision_id = Column(String(64), nullable=False, unique=True)

    # Timestamps (Immutable - no updated_at)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self):
        return f"<LedgerCommit(report_id={self.report_id}, sequence={self.sequence}, revision='{self.revision_id[:12]}')>"


class LedgerOrphan(Base):
    """
    Ledger Orphan model.

    Revision present in the git ledger but not referenced by any ledger
    commit row, as found by the reconciliation pass.
    NO updates or deletions allowed.
    """
    __tablename__ = "ledger_orphans"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    revision_id = Column(String(64), nullable=False, unique=True)
    report_id = Column(Integer, nullable=True, index=True)
    reason = Column(Enum(OrphanReason), nullable=False)

    detected_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<LedgerOrphan(revision='{self.revision_id[:12]}', reason='{self.reason.value}')>"
