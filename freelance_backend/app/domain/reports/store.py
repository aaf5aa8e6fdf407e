"""
Report and Entry store.

Query boundary for reports, entries and their relation rows. Every query is
built for a `Visibility`; the request-facing functions in this module always
use `Visibility.VISIBLE`, which hides soft-deleted rows. Reading deleted rows
is a separate capability (see offline_store) reserved for operator tooling.
"""

import enum
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from freelance_backend.app.core.exceptions import NotFoundError
from freelance_backend.app.models.assignment import Assignment
from freelance_backend.app.models.entry import Entry
from freelance_backend.app.models.enums import ReportStatus
from freelance_backend.app.models.relations import EntryReportLink, EntryAssignmentLink
from freelance_backend.app.models.report import Report


class Visibility(str, enum.Enum):
    """Soft-delete filter applied to a query."""
    VISIBLE = "visible"
    ALL_INCLUDING_DELETED = "all_including_deleted"


@dataclass
class EntryRow:
    """An entry together with the ids it is linked to."""
    entry: Entry
    report_id: int
    assignment_id: int

    @property
    def line_total(self) -> int:
        return self.entry.line_total


def report_query(visibility: Visibility):
    query = select(Report)
    if visibility == Visibility.VISIBLE:
        query = query.where(Report.deleted_at.is_(None))
    return query


def entry_query(visibility: Visibility):
    query = (
        select(Entry, EntryReportLink.report_id, EntryAssignmentLink.assignment_id)
        .join(EntryReportLink, EntryReportLink.entry_id == Entry.id)
        .join(EntryAssignmentLink, EntryAssignmentLink.entry_id == Entry.id)
    )
    if visibility == Visibility.VISIBLE:
        query = query.where(Entry.deleted_at.is_(None))
    return query


def to_rows(result) -> list[EntryRow]:
    return [EntryRow(entry=entry, report_id=report_id, assignment_id=assignment_id)
            for entry, report_id, assignment_id in result.all()]


async def get_report(db: AsyncSession, report_id: int, for_update: bool = False) -> Report:
    """
    Fetch a visible report.

    Args:
        db: Database session
        report_id: Report to fetch
        for_update: Take a row-level lock held until the transaction ends

    Raises:
        NotFoundError: If the report does not exist or was soft-deleted
    """
    query = report_query(Visibility.VISIBLE).where(Report.id == report_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await db.execute(query)
    report = result.scalar_one_or_none()

    if report is None:
        raise NotFoundError("Report", report_id)

    return report


async def find_report_for_period(db: AsyncSession, owner_id: int, month: int, year: int) -> Optional[Report]:
    result = await db.execute(
        report_query(Visibility.VISIBLE).where(
            Report.owner_id == owner_id,
            Report.month == month,
            Report.year == year
        )
    )
    return result.scalar_one_or_none()


async def list_reports(
    db: AsyncSession,
    report_ids: Optional[Sequence[int]] = None,
    status: Optional[ReportStatus] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    limit: int = 50,
    offset: int = 0
) -> list[Report]:
    """
    List visible reports, newest period first.

    Args:
        report_ids: Restrict to these ids (the caller's visibility set); None means no restriction
    """
    query = report_query(Visibility.VISIBLE)

    if report_ids is not None:
        query = query.where(Report.id.in_(list(report_ids)))
    if status:
        query = query.where(Report.status == status)
    if month:
        query = query.where(Report.month == month)
    if year:
        query = query.where(Report.year == year)

    query = query.order_by(Report.year.desc(), Report.month.desc(), Report.id.desc()).limit(limit).offset(offset)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_entry(db: AsyncSession, entry_id: int, refresh: bool = False) -> EntryRow:
    """
    Fetch a visible entry with its report and assignment ids.

    Args:
        refresh: Overwrite an already loaded instance with the current row

    Raises:
        NotFoundError: If the entry does not exist or was soft-deleted
    """
    query = entry_query(Visibility.VISIBLE).where(Entry.id == entry_id)
    if refresh:
        query = query.execution_options(populate_existing=True)

    result = await db.execute(query)
    rows = to_rows(result)

    if not rows:
        raise NotFoundError("Entry", entry_id)

    return rows[0]


async def list_entries(
    db: AsyncSession,
    report_id: int,
    limit: Optional[int] = None,
    offset: int = 0
) -> list[EntryRow]:
    """List the visible entries of a report, ordered by (date, assignment id)."""
    query = entry_query(Visibility.VISIBLE).where(EntryReportLink.report_id == report_id).order_by(
        Entry.date, EntryAssignmentLink.assignment_id, Entry.id
    )
    if limit is not None:
        query = query.limit(limit).offset(offset)

    result = await db.execute(query)
    return to_rows(result)


async def count_entries(db: AsyncSession, report_id: int) -> int:
    result = await db.execute(
        select(func.count(Entry.id))
        .join(EntryReportLink, EntryReportLink.entry_id == Entry.id)
        .where(EntryReportLink.report_id == report_id, Entry.deleted_at.is_(None))
    )
    return result.scalar_one()


async def find_live_entry(db: AsyncSession, slot_key: str) -> Optional[Entry]:
    result = await db.execute(
        select(Entry).where(Entry.slot_key == slot_key, Entry.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_assignment(db: AsyncSession, assignment_id: int, owner_id: Optional[int] = None) -> Assignment:
    """
    Fetch a visible assignment, restricted to owner_id when given.

    Raises:
        NotFoundError: If the assignment does not exist, was soft-deleted or
            belongs to another owner
    """
    query = select(Assignment).where(Assignment.id == assignment_id, Assignment.deleted_at.is_(None))
    if owner_id is not None:
        query = query.where(Assignment.owner_id == owner_id)

    result = await db.execute(query)
    assignment = result.scalar_one_or_none()

    if assignment is None:
        raise NotFoundError("Assignment", assignment_id)

    return assignment


async def assignment_names(db: AsyncSession, assignment_ids: Sequence[int]) -> dict[int, str]:
    if not assignment_ids:
        return {}
    result = await db.execute(
        select(Assignment.id, Assignment.name).where(Assignment.id.in_(list(set(assignment_ids))))
    )
    return {assignment_id: name for assignment_id, name in result.all()}
