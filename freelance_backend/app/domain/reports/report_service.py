"""
Report Service (Domain Logic).

Create, update, soft-delete and read monthly activity reports. Status and
totals are never written here: the lifecycle and totals services own them.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from freelance_backend.app.core.config import settings
from freelance_backend.app.core.exceptions import ConflictError, NotFoundError, ValidationError
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.lifecycle import ReportLifecycle
from freelance_backend.app.models.enums import ReportStatus
from freelance_backend.app.models.report import Report
from freelance_backend.app.services.audit import record_event, AuditAction

logger = logging.getLogger(__name__)

MIN_YEAR = 2000
MAX_YEARS_AHEAD = 5
MAX_DESCRIPTION_LENGTH = 2000
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
UPDATABLE_FIELDS = {"currency", "description"}


def _validate_period(month: Any, year: Any) -> None:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12", details={"field": "month"})

    max_year = datetime.now(timezone.utc).year + MAX_YEARS_AHEAD
    if isinstance(year, bool) or not isinstance(year, int) or not MIN_YEAR <= year <= max_year:
        raise ValidationError(f"Year must be between {MIN_YEAR} and {max_year}", details={"field": "year"})


def _validate_currency(currency: Any) -> str:
    if not isinstance(currency, str) or not CURRENCY_PATTERN.match(currency):
        raise ValidationError(
            "Currency must be an ISO 4217 code (three upper-case letters)",
            details={"field": "currency"}
        )
    return currency


def _validate_description(description: Any) -> Optional[str]:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("Description must be a string", details={"field": "description"})
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
            details={"field": "description"}
        )
    return description


def _duplicate_report_error(owner_id: int, month: int, year: int) -> ConflictError:
    return ConflictError(
        "A report already exists for this period",
        error_code="duplicate_report",
        details={"owner_id": owner_id, "month": month, "year": year}
    )


class ReportService:

    @staticmethod
    async def create_report(
        db: AsyncSession,
        owner_id: int,
        month: int,
        year: int,
        currency: Optional[str] = None,
        description: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> Report:
        """
        Create a DRAFT report for (owner, month, year).

        Raises:
            ValidationError: Invalid period, currency or description
            ConflictError: A live report already exists for the period
        """
        _validate_period(month, year)
        currency = _validate_currency(currency or settings.default_currency)
        description = _validate_description(description)

        try:
            if await store.find_report_for_period(db, owner_id, month, year):
                raise _duplicate_report_error(owner_id, month, year)

            report = Report(
                owner_id=owner_id,
                month=month,
                year=year,
                status=ReportStatus.DRAFT,
                currency=currency,
                description=description,
                total_days=0,
                total_amount=0
            )
            db.add(report)
            try:
                await db.flush()
            except IntegrityError as exc:
                raise _duplicate_report_error(owner_id, month, year) from exc

            record_event(
                db,
                action=AuditAction.REPORT_CREATED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"month": month, "year": year}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Created report %s for owner %s (%02d/%s)", report.id, owner_id, month, year)
        return report

    @staticmethod
    async def update_report(
        db: AsyncSession,
        report_id: int,
        attrs: Dict[str, Any],
        actor_id: Optional[int] = None
    ) -> Report:
        """
        Update the editable fields of a DRAFT report.

        Args:
            attrs: Any of currency, description

        Raises:
            NotFoundError: Unknown or deleted report
            ReportNotModifiableError: Report is not DRAFT
            ValidationError: Unknown field or invalid value
        """
        unknown = set(attrs) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown report fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )

        try:
            report = await store.get_report(db, report_id, for_update=True)
            ReportLifecycle.ensure_modifiable(report)

            if "currency" in attrs:
                report.currency = _validate_currency(attrs["currency"])
            if "description" in attrs:
                report.description = _validate_description(attrs["description"])

            record_event(
                db,
                action=AuditAction.REPORT_UPDATED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"fields": sorted(attrs)}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Updated report %s", report.id)
        return report

    @staticmethod
    async def delete_report(db: AsyncSession, report_id: int, actor_id: Optional[int] = None) -> None:
        """
        Soft-delete a DRAFT report together with its live entries.

        Raises:
            NotFoundError: Unknown or already deleted report
            ReportNotModifiableError: Report is not DRAFT
        """
        try:
            report = await store.get_report(db, report_id, for_update=True)
            ReportLifecycle.ensure_modifiable(report)

            now = datetime.now(timezone.utc)
            rows = await store.list_entries(db, report.id)
            for row in rows:
                row.entry.deleted_at = now
            report.deleted_at = now

            record_event(
                db,
                action=AuditAction.REPORT_DELETED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"deleted_entries": len(rows)}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Deleted report %s and %s entries", report_id, len(rows))

    @staticmethod
    async def get_report(db: AsyncSession, report_id: int, visible_ids: Optional[Sequence[int]] = None) -> Report:
        """
        Fetch a visible report the caller may see.

        Raises:
            NotFoundError: Unknown, deleted, or outside visible_ids
        """
        if visible_ids is not None and report_id not in visible_ids:
            raise NotFoundError("Report", report_id)
        return await store.get_report(db, report_id)

    @staticmethod
    async def list_reports(
        db: AsyncSession,
        visible_ids: Optional[Sequence[int]],
        status: Optional[ReportStatus] = None,
        month: Optional[int] = None,
        year: Optional[int] = None,
        limit: int = 50,
        offset: int = 0
    ) -> list[Report]:
        return await store.list_reports(
            db,
            report_ids=visible_ids,
            status=status,
            month=month,
            year=year,
            limit=limit,
            offset=offset
        )
