"""
Entry mutation tests.

Totals stay equal to the sums over live entries after every mutation, the
(report, assignment, date) slot is unique among live entries, and the
report <-> assignment link follows the live entries.
"""

import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy import select, func

from freelance_backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.entry_service import EntryService
from freelance_backend.app.domain.reports.linking_service import LinkingService
from freelance_backend.app.models.entry import compute_line_total, build_slot_key
from freelance_backend.app.models.assignment import Assignment
from freelance_backend.app.models.relations import ReportAssignmentLink


async def assert_totals_consistent(db, report_id):
    report = await store.get_report(db, report_id)
    rows = await store.list_entries(db, report_id)
    assert report.total_days == sum((row.entry.quantity for row in rows), Decimal("0"))
    assert report.total_amount == sum(row.line_total for row in rows)
    await db.commit()
    return report


def test_line_total_rounds_half_up():
    assert compute_line_total(Decimal("1.00"), 50000) == 50000
    assert compute_line_total(Decimal("0.50"), 50000) == 25000
    assert compute_line_total(Decimal("0.33"), 150) == 50  # 49.5 -> 50
    assert compute_line_total(Decimal("0.01"), 49) == 0  # 0.49 -> 0


def test_slot_key():
    assert build_slot_key(4, 9, date(2026, 3, 2)) == "4:9:2026-03-02"


@pytest.mark.asyncio
async def test_totals_follow_create_update_delete(db_session, draft_report, assignment):
    report_id = draft_report.id

    first = await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 2), "1.0", 50000)
    second = await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 3), "0.5", 50000)
    report = await assert_totals_consistent(db_session, report_id)
    assert report.total_days == Decimal("1.50")
    assert report.total_amount == 75000

    await EntryService.update_entry(db_session, first.entry.id, {"quantity": "0.75", "unit_price": 60000})
    report = await assert_totals_consistent(db_session, report_id)
    assert report.total_days == Decimal("1.25")
    assert report.total_amount == 45000 + 25000

    await EntryService.delete_entry(db_session, second.entry.id)
    report = await assert_totals_consistent(db_session, report_id)
    assert report.total_days == Decimal("0.75")
    assert report.total_amount == 45000


@pytest.mark.asyncio
async def test_duplicate_slot_is_conflict(db_session, report_with_entries, assignment):
    report_id = report_with_entries.id

    with pytest.raises(ConflictError) as exc_info:
        await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 2), "0.5", 50000)

    assert exc_info.value.error_code == "duplicate_entry"
    assert await store.count_entries(db_session, report_id) == 2
    await db_session.commit()


@pytest.mark.asyncio
async def test_slot_is_free_again_after_soft_delete(db_session, draft_report, assignment):
    report_id = draft_report.id
    row = await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 2), "1", 50000)
    await EntryService.delete_entry(db_session, row.entry.id)

    again = await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 2), "1", 50000)
    assert again.entry.id != row.entry.id


@pytest.mark.asyncio
async def test_update_into_taken_slot_is_conflict(db_session, report_with_entries):
    rows = await store.list_entries(db_session, report_with_entries.id)
    await db_session.commit()

    with pytest.raises(ConflictError):
        await EntryService.update_entry(db_session, rows[1].entry.id, {"date": date(2026, 3, 2)})


@pytest.mark.asyncio
@pytest.mark.parametrize("entry_date,quantity,unit_price,description", [
    (date(2026, 4, 1), "1", 50000, None),  # outside the report month
    (date(2026, 3, 2), "0", 50000, None),
    (date(2026, 3, 2), "-1", 50000, None),
    (date(2026, 3, 2), "0.333", 50000, None),
    (date(2026, 3, 2), "abc", 50000, None),
    (date(2026, 3, 2), "1", 0, None),
    (date(2026, 3, 2), "1", 500.5, None),
    (date(2026, 3, 2), "1", 50000, "x" * 501),
])
async def test_create_entry_validation(db_session, draft_report, assignment, entry_date, quantity, unit_price, description):
    report_id = draft_report.id

    with pytest.raises(ValidationError) as exc_info:
        await EntryService.create_entry(
            db_session, report_id, assignment.id, entry_date, quantity, unit_price, description
        )

    assert exc_info.value.status_code == 422
    assert await store.count_entries(db_session, report_id) == 0
    await db_session.commit()


@pytest.mark.asyncio
async def test_unknown_assignment_is_not_found(db_session, draft_report):
    with pytest.raises(NotFoundError):
        await EntryService.create_entry(db_session, draft_report.id, 9999, date(2026, 3, 2), "1", 50000)


@pytest.mark.asyncio
async def test_other_owners_assignment_is_not_found(db_session, report_with_entries):
    foreign = Assignment(name="Globex internal", owner_id=2)
    db_session.add(foreign)
    await db_session.commit()
    report_id, foreign_id = report_with_entries.id, foreign.id
    entry_id = (await store.list_entries(db_session, report_id))[0].entry.id
    await db_session.commit()

    with pytest.raises(NotFoundError):
        await EntryService.create_entry(db_session, report_id, foreign_id, date(2026, 3, 5), "1", 50000)
    with pytest.raises(NotFoundError):
        await EntryService.update_entry(db_session, entry_id, {"assignment_id": foreign_id})

    assert await store.count_entries(db_session, report_id) == 2
    assert foreign_id not in await LinkingService.list_assignment_ids(db_session, report_id)
    await db_session.commit()


@pytest.mark.asyncio
async def test_soft_deleted_entry_is_not_found(db_session, report_with_entries):
    rows = await store.list_entries(db_session, report_with_entries.id)
    entry_id = rows[0].entry.id
    await db_session.commit()

    await EntryService.delete_entry(db_session, entry_id)

    with pytest.raises(NotFoundError):
        await store.get_entry(db_session, entry_id)
    with pytest.raises(NotFoundError):
        await EntryService.delete_entry(db_session, entry_id)
    with pytest.raises(NotFoundError):
        await EntryService.update_entry(db_session, entry_id, {"quantity": "1"})


@pytest.mark.asyncio
async def test_first_entry_links_assignment_once(db_session, report_with_entries, assignment):
    result = await db_session.execute(
        select(func.count(ReportAssignmentLink.id)).where(ReportAssignmentLink.report_id == report_with_entries.id)
    )
    assert result.scalar_one() == 1
    assert await LinkingService.list_assignment_ids(db_session, report_with_entries.id) == [assignment.id]
    await db_session.commit()


@pytest.mark.asyncio
async def test_ensure_link_is_idempotent(db_session, draft_report, assignment):
    first = await LinkingService.ensure_link(db_session, draft_report.id, assignment.id, draft_report.owner_id)
    second = await LinkingService.ensure_link(db_session, draft_report.id, assignment.id, draft_report.owner_id)
    await db_session.commit()

    assert first.id == second.id
    result = await db_session.execute(select(func.count(ReportAssignmentLink.id)))
    assert result.scalar_one() == 1
    await db_session.commit()


@pytest.mark.asyncio
async def test_deleting_last_entry_unlinks_assignment(db_session, draft_report, assignment, other_assignment):
    report_id = draft_report.id
    kept = await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 2), "1", 50000)
    dropped = await EntryService.create_entry(db_session, report_id, other_assignment.id, date(2026, 3, 2), "1", 40000)
    assert await LinkingService.list_assignment_ids(db_session, report_id) == sorted([assignment.id, other_assignment.id])
    await db_session.commit()

    await EntryService.delete_entry(db_session, dropped.entry.id)

    assert await LinkingService.list_assignment_ids(db_session, report_id) == [assignment.id]
    assert kept.assignment_id == assignment.id
    await db_session.commit()


@pytest.mark.asyncio
async def test_moving_entry_to_other_assignment_relinks(db_session, draft_report, assignment, other_assignment):
    report_id = draft_report.id
    row = await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 2), "1", 50000)

    moved = await EntryService.update_entry(db_session, row.entry.id, {"assignment_id": other_assignment.id})

    assert moved.assignment_id == other_assignment.id
    assert moved.entry.slot_key == build_slot_key(report_id, other_assignment.id, date(2026, 3, 2))
    assert await LinkingService.list_assignment_ids(db_session, report_id) == [other_assignment.id]
    reread = await store.get_entry(db_session, row.entry.id)
    assert reread.assignment_id == other_assignment.id
    await db_session.commit()


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(db_session, report_with_entries):
    rows = await store.list_entries(db_session, report_with_entries.id)
    await db_session.commit()

    with pytest.raises(ValidationError):
        await EntryService.update_entry(db_session, rows[0].entry.id, {"line_total": 1})


@pytest.mark.asyncio
async def test_list_entries_ordered_by_date_then_assignment(db_session, draft_report, assignment, other_assignment):
    report_id = draft_report.id
    await EntryService.create_entry(db_session, report_id, other_assignment.id, date(2026, 3, 5), "1", 100)
    await EntryService.create_entry(db_session, report_id, other_assignment.id, date(2026, 3, 1), "1", 100)
    await EntryService.create_entry(db_session, report_id, assignment.id, date(2026, 3, 5), "1", 100)

    rows = await EntryService.list_entries(db_session, report_id)
    assert [(row.entry.date.day, row.assignment_id) for row in rows] == [
        (1, other_assignment.id),
        (5, assignment.id),
        (5, other_assignment.id),
    ]

    page = await EntryService.list_entries(db_session, report_id, limit=1, offset=1)
    assert len(page) == 1
    assert page[0].entry.date.day == 5
    await db_session.commit()
