"""
Report database model.

Monthly activity report (CRA) of one owner for one period.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Numeric, Index, BigInteger, text
from sqlalchemy.sql import func
from freelance_backend.app.db.session import Base
from freelance_backend.app.models.enums import ReportStatus


class Report(Base):
    """
    Report model.

    Follows a strict lifecycle: DRAFT -> SUBMITTED -> LOCKED.
    Only DRAFT reports accept changes; status and totals are written by the
    lifecycle and totals services. Relations to assignments and entries live
    in dedicated relation tables, never as foreign keys on this row.
    """
    __tablename__ = "reports"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Period
    month = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)

    # Ownership (identity resolved upstream)
    owner_id = Column(Integer, nullable=False, index=True)

    # Lifecycle
    status = Column(Enum(ReportStatus), default=ReportStatus.DRAFT, nullable=False, index=True)

    # Financials (server-side only)
    currency = Column(String(3), nullable=False, default="EUR")
    description = Column(String(2000), nullable=True)
    total_days = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(BigInteger, nullable=False, default=0)  # minor units

    # Timestamps
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    # One live report per (owner, month, year)
    __table_args__ = (
        Index('ix_reports_owner_period_live', 'owner_id', 'month', 'year', unique=True,
              postgresql_where=text('deleted_at IS NULL'),
              sqlite_where=text('deleted_at IS NULL')),
    )
    __mapper_args__ = {"eager_defaults": True}

    @property
    def is_draft(self) -> bool:
        return self.status == ReportStatus.DRAFT

    def __repr__(self):
        return f"<Report(id={self.id}, period={self.month}/{self.year}, status='{self.status.value}')>"
