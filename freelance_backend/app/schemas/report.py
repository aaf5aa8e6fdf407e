"""
Report Pydantic schemas.

Defines request and response models for activity reports.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from freelance_backend.app.models.enums import ReportStatus


class ReportCreate(BaseModel):
    """Schema for creating a report."""
    month: int = Field(..., description="Month of the period (1-12)")
    year: int = Field(..., description="Year of the period")
    currency: Optional[str] = Field(None, description="ISO 4217 code, defaults to the configured currency")
    description: Optional[str] = None


class ReportUpdate(BaseModel):
    """Schema for updating a draft report. Status and totals are not writable."""
    currency: Optional[str] = None
    description: Optional[str] = None


class ReportResponse(BaseModel):
    """Schema for report response."""
    id: int
    owner_id: int
    month: int
    year: int
    status: ReportStatus
    currency: str
    description: Optional[str]
    total_days: Decimal
    total_amount: int
    submitted_at: Optional[datetime]
    locked_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ReportListResponse(BaseModel):
    """Schema for paginated report list."""
    reports: List[ReportResponse]
    limit: int
    offset: int


class ReportLockResponse(BaseModel):
    """Schema for the result of a lock transition."""
    report: ReportResponse
    revision_id: str
