"""
Report export.

Renders a submitted or locked report as a CSV document: one row per
live entry ordered by (date, assignment id), then a TOTAL row. Amounts are in
major units with two decimals.
"""

import csv
import io
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from freelance_backend.app.core.exceptions import ConflictError, ValidationError
from freelance_backend.app.domain.reports import store
from freelance_backend.app.models.enums import ReportStatus

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv",)
UTF8_BOM = "\ufeff"
CSV_HEADER = ["date", "assignment_name", "quantity", "unit_price", "line_total", "description"]


@dataclass
class ExportResult:
    data: bytes
    filename: str
    content_type: str


def format_minor_units(amount: int) -> str:
    """50000 -> '500.00'"""
    return f"{(Decimal(amount) / 100).quantize(Decimal('0.01'))}"


def format_quantity(quantity) -> str:
    return f"{Decimal(quantity).quantize(Decimal('0.01'))}"


class ExportService:

    @staticmethod
    async def export(db: AsyncSession, report_id: int, export_format: str = "csv", include_entries: bool = True) -> ExportResult:
        """
        Export a report.

        Raises:
            ValidationError: Unsupported format (code unsupported_format)
            NotFoundError: Unknown or deleted report
            ConflictError: Report is still DRAFT (code invalid_lifecycle)
        """
        export_format = (export_format or "").lower()
        if export_format not in SUPPORTED_FORMATS:
            raise ValidationError(
                f"format must be one of: {', '.join(SUPPORTED_FORMATS)}",
                error_code="unsupported_format",
                details={"format": export_format}
            )

        report = await store.get_report(db, report_id)
        if report.status == ReportStatus.DRAFT:
            raise ConflictError(
                "report must be submitted or locked",
                error_code="invalid_lifecycle",
                details={"report_id": report.id, "status": report.status.value}
            )

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADER)

        if include_entries:
            rows = await store.list_entries(db, report.id)
            names = await store.assignment_names(db, [row.assignment_id for row in rows])
            for row in rows:
                writer.writerow([
                    row.entry.date.isoformat(),
                    names.get(row.assignment_id, ""),
                    format_quantity(row.entry.quantity),
                    format_minor_units(row.entry.unit_price),
                    format_minor_units(row.line_total),
                    row.entry.description or ""
                ])

        writer.writerow([
            "TOTAL",
            "",
            format_quantity(report.total_days),
            "",
            format_minor_units(report.total_amount),
            ""
        ])

        logger.info("Exported report %s as %s", report.id, export_format)
        return ExportResult(
            data=(UTF8_BOM + buffer.getvalue()).encode("utf-8"),
            filename=f"report_{report.year}_{report.month:02d}.csv",
            content_type="text/csv"
        )
