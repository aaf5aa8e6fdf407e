"""
Including-deleted store access for operator tooling.

Only operator tooling (scripts/ and the ledger reconciliation pass) imports
this module. Request handlers go through
freelance_backend.app.domain.reports.store, which hides soft-deleted rows.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from freelance_backend.app.domain.reports.store import (
    EntryRow, Visibility, entry_query, report_query, to_rows
)
from freelance_backend.app.models.entry import Entry
from freelance_backend.app.models.relations import EntryReportLink, EntryAssignmentLink
from freelance_backend.app.models.report import Report


async def get_report_including_deleted(db: AsyncSession, report_id: int) -> Optional[Report]:
    result = await db.execute(
        report_query(Visibility.ALL_INCLUDING_DELETED).where(Report.id == report_id)
    )
    return result.scalar_one_or_none()


async def list_entries_including_deleted(db: AsyncSession, report_id: int) -> list[EntryRow]:
    """List every entry ever linked to a report, soft-deleted ones included."""
    result = await db.execute(
        entry_query(Visibility.ALL_INCLUDING_DELETED)
        .where(EntryReportLink.report_id == report_id)
        .order_by(Entry.date, EntryAssignmentLink.assignment_id, Entry.id)
    )
    return to_rows(result)
