"""
Concurrency Tests.

Validates that racing writers on the same report are serialized and that
uniqueness holds when both pass the application-level checks.
"""

import pytest
import asyncio
from datetime import date
from sqlalchemy import select, func

from freelance_backend.app.core.exceptions import ConflictError
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.entry_service import EntryService
from freelance_backend.app.domain.reports.linking_service import LinkingService
from freelance_backend.app.models.entry import Entry
from freelance_backend.app.models.relations import ReportAssignmentLink


async def _create(session_factory, report_id, assignment_id, entry_date, quantity="1"):
    async with session_factory() as session:
        return await EntryService.create_entry(session, report_id, assignment_id, entry_date, quantity, 50000)


@pytest.mark.asyncio
async def test_scenario_d_concurrent_duplicate_entries(session_factory, draft_report, assignment):
    """Two concurrent creates for the same slot: exactly one wins, the other conflicts."""
    report_id, assignment_id = draft_report.id, assignment.id

    results = await asyncio.gather(
        _create(session_factory, report_id, assignment_id, date(2026, 3, 9)),
        _create(session_factory, report_id, assignment_id, date(2026, 3, 9)),
        return_exceptions=True
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert conflicts[0].error_code == "duplicate_entry"

    async with session_factory() as session:
        result = await session.execute(
            select(func.count(Entry.id)).where(Entry.deleted_at.is_(None), Entry.date == date(2026, 3, 9))
        )
        assert result.scalar_one() == 1
        report = await store.get_report(session, report_id)
        assert report.total_amount == 50000


@pytest.mark.asyncio
async def test_concurrent_entries_on_distinct_slots_keep_totals(session_factory, draft_report, assignment):
    report_id, assignment_id = draft_report.id, assignment.id

    await asyncio.gather(*[
        _create(session_factory, report_id, assignment_id, date(2026, 3, day), "0.5")
        for day in range(1, 6)
    ])

    async with session_factory() as session:
        report = await store.get_report(session, report_id)
        rows = await store.list_entries(session, report_id)
        assert len(rows) == 5
        assert report.total_amount == sum(row.line_total for row in rows) == 125000
        assert str(report.total_days) == "2.50"

        result = await session.execute(select(func.count(ReportAssignmentLink.id)))
        assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_concurrent_linking_leaves_one_row(session_factory, draft_report, assignment):
    report_id, assignment_id = draft_report.id, assignment.id

    async def link():
        async with session_factory() as session:
            row = await LinkingService.ensure_link(session, report_id, assignment_id, 1)
            await session.commit()
            return row.id

    ids = await asyncio.gather(link(), link(), link())

    assert len(set(ids)) == 1
    async with session_factory() as session:
        result = await session.execute(select(func.count(ReportAssignmentLink.id)))
        assert result.scalar_one() == 1
