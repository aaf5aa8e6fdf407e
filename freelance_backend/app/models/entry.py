"""
Entry database model.

A single dated unit of activity (quantity x unit price) inside a report.
"""

from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, Index, text
from sqlalchemy.sql import func
from freelance_backend.app.db.session import Base


def compute_line_total(quantity: Decimal, unit_price: int) -> int:
    """Return round(quantity x unit_price) in minor units, half-up, without binary floats."""
    return int((Decimal(quantity) * unit_price).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def build_slot_key(report_id: int, assignment_id: int, entry_date) -> str:
    """Uniqueness token for (report, assignment, date)."""
    return f"{report_id}:{assignment_id}:{entry_date.isoformat()}"


class Entry(Base):
    """
    Entry model.

    Linked to exactly one report and one assignment through the
    entry_report_links and entry_assignment_links relation tables.
    The live-slot index rejects a second non-deleted entry for the same
    (report, assignment, date), even when two writers race past the
    service-level duplicate check.
    """
    __tablename__ = "entries"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    date = Column(Date, nullable=False, index=True)
    quantity = Column(Numeric(10, 2), nullable=False)  # days
    unit_price = Column(Integer, nullable=False)  # minor units
    description = Column(String(500), nullable=True)

    # "<report_id>:<assignment_id>:<date>", derived, not a foreign key
    slot_key = Column(String(100), nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    __table_args__ = (
        Index('ix_entries_live_slot', 'slot_key', unique=True,
              postgresql_where=text('deleted_at IS NULL'),
              sqlite_where=text('deleted_at IS NULL')),
    )
    __mapper_args__ = {"eager_defaults": True}

    @property
    def line_total(self) -> int:
        return compute_line_total(self.quantity, self.unit_price)

    def __repr__(self):
        return f"<Entry(id={self.id}, date={self.date}, quantity={self.quantity}, unit_price={self.unit_price})>"
