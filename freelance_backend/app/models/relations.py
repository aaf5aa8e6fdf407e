"""
Relation table models.

Every cross-aggregate relationship (report <-> assignment, entry -> report,
entry -> assignment) is its own row with its own id and uniqueness
constraint. No aggregate carries a foreign key to another.
"""

from sqlalchemy import Column, Integer, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from freelance_backend.app.db.session import Base


class ReportAssignmentLink(Base):
    """
    Report <-> Assignment link.

    Created by the linking service the first time an entry of the report
    references the assignment. An assignment appears at most once per report.
    """
    __tablename__ = "report_assignment_links"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    report_id = Column(Integer, nullable=False, index=True)
    assignment_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint('report_id', 'assignment_id', name='uq_report_assignment_links_pair'),
    )

    def __repr__(self):
        return f"<ReportAssignmentLink(report_id={self.report_id}, assignment_id={self.assignment_id})>"


class EntryReportLink(Base):
    """Entry -> Report link. An entry belongs to exactly one report."""
    __tablename__ = "entry_report_links"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    entry_id = Column(Integer, nullable=False, unique=True)
    report_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<EntryReportLink(entry_id={self.entry_id}, report_id={self.report_id})>"


class EntryAssignmentLink(Base):
    """Entry -> Assignment link. An entry is attributed to exactly one assignment."""
    __tablename__ = "entry_assignment_links"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    entry_id = Column(Integer, nullable=False, unique=True)
    assignment_id = Column(Integer, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<EntryAssignmentLink(entry_id={self.entry_id}, assignment_id={self.assignment_id})>"
