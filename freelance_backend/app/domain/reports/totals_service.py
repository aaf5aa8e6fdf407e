"""
Totals Recalculation Service.

Recomputes a report's aggregates from its live entries. Entry mutations call
it explicitly, inside their own transaction, right before committing.
"""

import logging
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from freelance_backend.app.domain.reports import store
from freelance_backend.app.models.report import Report

logger = logging.getLogger(__name__)


class TotalsService:

    @staticmethod
    async def recalculate(db: AsyncSession, report: Report) -> Report:
        """
        Recalculate total_days and total_amount of a report.

        total_days = sum(quantity), total_amount = sum(line_total), over the
        non-deleted entries of the report. Pending changes are flushed first so
        the sums see the mutation that triggered the call.

        Args:
            db: Database session (transaction managed by caller)
            report: Report to update, normally locked FOR UPDATE by the caller
        """
        await db.flush()

        rows = await store.list_entries(db, report.id)

        report.total_days = sum((Decimal(row.entry.quantity) for row in rows), Decimal("0")).quantize(Decimal("0.01"))
        report.total_amount = sum(row.line_total for row in rows)

        await db.flush()

        logger.info(
            "Recalculated totals for report %s: %s days, %s minor units",
            report.id, report.total_days, report.total_amount
        )
        return report
