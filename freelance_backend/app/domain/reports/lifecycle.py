"""
Report Lifecycle State Machine.

DRAFT -> SUBMITTED -> LOCKED. No skips, no reversals; LOCKED is terminal.
Every report and entry mutation asks this module whether the report is still
modifiable instead of re-implementing the status check at its call site.
The LOCKED transition itself is driven by the ledger service.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from freelance_backend.app.core.exceptions import (
    InvalidTransitionError, ReportNotModifiableError, ValidationError
)
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.totals_service import TotalsService
from freelance_backend.app.models.enums import ReportStatus
from freelance_backend.app.models.report import Report
from freelance_backend.app.services.audit import record_event, AuditAction

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ReportStatus.DRAFT: {ReportStatus.SUBMITTED},
    ReportStatus.SUBMITTED: {ReportStatus.LOCKED},
    ReportStatus.LOCKED: set(),
}


class ReportLifecycle:

    @staticmethod
    def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
        return ReportStatus(target) in ALLOWED_TRANSITIONS[ReportStatus(current)]

    @staticmethod
    def ensure_transition(report: Report, target: ReportStatus) -> None:
        """
        Raises:
            InvalidTransitionError: If target is not the next state of the report
        """
        if not ReportLifecycle.can_transition(report.status, target):
            raise InvalidTransitionError(report.status.value, ReportStatus(target).value)

    @staticmethod
    def ensure_modifiable(report: Report) -> None:
        """
        Guard every mutation of a report or of its entries.

        Raises:
            ReportNotModifiableError: If the report is not DRAFT
        """
        if report.status != ReportStatus.DRAFT:
            raise ReportNotModifiableError(report.id, report.status.value)

    @staticmethod
    async def submit(db: AsyncSession, report_id: int, actor_id: int = None) -> Report:
        """
        Submit a DRAFT report.

        Flow:
        1. Lock the report row
        2. Guard DRAFT -> SUBMITTED
        3. Require at least one live entry
        4. Recalculate totals, set status and submitted_at
        5. Commit

        Raises:
            NotFoundError: Unknown or deleted report
            InvalidTransitionError: Report is not DRAFT
            ValidationError: Report has no entries (status stays DRAFT)
        """
        try:
            report = await store.get_report(db, report_id, for_update=True)
            ReportLifecycle.ensure_transition(report, ReportStatus.SUBMITTED)

            if await store.count_entries(db, report.id) == 0:
                raise ValidationError(
                    "report has no entries",
                    error_code="no_entries",
                    details={"report_id": report.id}
                )

            await TotalsService.recalculate(db, report)
            report.status = ReportStatus.SUBMITTED
            report.submitted_at = datetime.now(timezone.utc)

            record_event(
                db,
                action=AuditAction.REPORT_SUBMITTED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"total_days": str(report.total_days), "total_amount": report.total_amount}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Report %s submitted", report.id)
        return report
