"""
Entry Pydantic schemas.

Quantities travel as decimals; prices and totals as integer minor units.
"""

from pydantic import BaseModel, Field
from datetime import date as Date, datetime
from decimal import Decimal
from typing import Optional, List

from freelance_backend.app.domain.reports.store import EntryRow


class EntryCreate(BaseModel):
    """Schema for creating an entry."""
    assignment_id: int
    date: Date
    quantity: Decimal = Field(..., description="Days worked, two decimals at most")
    unit_price: int = Field(..., description="Daily rate in minor units")
    description: Optional[str] = None


class EntryUpdate(BaseModel):
    """Schema for updating an entry. Only fields sent are changed."""
    assignment_id: Optional[int] = None
    date: Optional[Date] = None
    quantity: Optional[Decimal] = None
    unit_price: Optional[int] = None
    description: Optional[str] = None


class EntryResponse(BaseModel):
    """Schema for entry response."""
    id: int
    report_id: int
    assignment_id: int
    date: Date
    quantity: Decimal
    unit_price: int
    line_total: int
    description: Optional[str]
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: EntryRow) -> "EntryResponse":
        entry = row.entry
        return cls(
            id=entry.id,
            report_id=row.report_id,
            assignment_id=row.assignment_id,
            date=entry.date,
            quantity=entry.quantity,
            unit_price=entry.unit_price,
            line_total=row.line_total,
            description=entry.description,
            created_at=entry.created_at,
            updated_at=entry.updated_at
        )


class EntryListResponse(BaseModel):
    """Schema for paginated entry list."""
    entries: List[EntryResponse]
    limit: int
    offset: int
