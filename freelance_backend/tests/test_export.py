"""
Report export tests.
"""

import pytest

from freelance_backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from freelance_backend.app.domain.ledger.ledger_service import LedgerService
from freelance_backend.app.domain.reports.export_service import ExportService, format_minor_units
from freelance_backend.app.domain.reports.lifecycle import ReportLifecycle
from freelance_backend.app.domain.reports.report_service import ReportService


def _lines(result):
    text = result.data.decode("utf-8")
    assert text.startswith("﻿")
    return text.lstrip("﻿").splitlines()


@pytest.fixture
async def submitted_report(db_session, report_with_entries):
    return await ReportLifecycle.submit(db_session, report_with_entries.id)


@pytest.mark.asyncio
async def test_scenario_e_csv_export(db_session, submitted_report):
    result = await ExportService.export(db_session, submitted_report.id, "csv", include_entries=True)
    await db_session.commit()

    lines = _lines(result)
    assert lines == [
        "date,assignment_name,quantity,unit_price,line_total,description",
        "2026-03-02,Acme platform,1.00,500.00,500.00,Kickoff",
        "2026-03-03,Acme platform,0.50,500.00,250.00,Review",
        "TOTAL,,1.50,,750.00,",
    ]
    assert result.content_type == "text/csv"
    assert result.filename == "report_2026_03.csv"


@pytest.mark.asyncio
async def test_export_without_entries_keeps_total_row(db_session, submitted_report):
    result = await ExportService.export(db_session, submitted_report.id, "CSV", include_entries=False)
    await db_session.commit()

    assert _lines(result) == [
        "date,assignment_name,quantity,unit_price,line_total,description",
        "TOTAL,,1.50,,750.00,",
    ]


@pytest.mark.asyncio
async def test_export_locked_report(db_session, report_with_entries, fake_ledger):
    report_id = report_with_entries.id
    await ReportLifecycle.submit(db_session, report_id)
    await LedgerService.lock_report(db_session, fake_ledger, report_id)

    result = await ExportService.export(db_session, report_id)
    await db_session.commit()
    assert _lines(result)[-1] == "TOTAL,,1.50,,750.00,"


@pytest.mark.asyncio
async def test_export_draft_report_is_conflict(db_session, report_with_entries):
    report_id = report_with_entries.id

    with pytest.raises(ConflictError) as exc_info:
        await ExportService.export(db_session, report_id)
    await db_session.commit()

    assert exc_info.value.error_code == "invalid_lifecycle"
    assert exc_info.value.status_code == 409
    assert exc_info.value.details == {"report_id": report_id, "status": "draft"}


@pytest.mark.asyncio
@pytest.mark.parametrize("export_format", ["pdf", "xlsx", ""])
async def test_unsupported_format(db_session, report_with_entries, export_format):
    with pytest.raises(ValidationError) as exc_info:
        await ExportService.export(db_session, report_with_entries.id, export_format)

    assert exc_info.value.error_code == "unsupported_format"


@pytest.mark.asyncio
async def test_export_deleted_report_is_not_found(db_session, draft_report):
    report_id = draft_report.id
    await ReportService.delete_report(db_session, report_id)

    with pytest.raises(NotFoundError):
        await ExportService.export(db_session, report_id)
    await db_session.commit()


def test_format_minor_units():
    assert format_minor_units(75000) == "750.00"
    assert format_minor_units(5) == "0.05"
    assert format_minor_units(0) == "0.00"
