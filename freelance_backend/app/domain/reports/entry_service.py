"""
Entry Service (Domain Logic).

Creates, updates and soft-deletes report entries. Each mutation runs in one
transaction holding the report row lock:

    lock report -> lifecycle guard -> validate -> link -> write entry
    -> recalculate totals -> audit -> commit

so no reader ever observes entries without matching totals.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from freelance_backend.app.core.exceptions import ConflictError, ValidationError
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.lifecycle import ReportLifecycle
from freelance_backend.app.domain.reports.linking_service import LinkingService
from freelance_backend.app.domain.reports.store import EntryRow
from freelance_backend.app.domain.reports.totals_service import TotalsService
from freelance_backend.app.models.entry import Entry, build_slot_key
from freelance_backend.app.models.relations import EntryReportLink, EntryAssignmentLink
from freelance_backend.app.models.report import Report
from freelance_backend.app.services.audit import record_event, AuditAction

logger = logging.getLogger(__name__)

MAX_QUANTITY = Decimal("99999999.99")
MAX_DESCRIPTION_LENGTH = 500
UPDATABLE_FIELDS = {"date", "quantity", "unit_price", "description", "assignment_id"}


def _duplicate_entry_error(assignment_id: int, entry_date: date) -> ConflictError:
    return ConflictError(
        "An entry already exists for this assignment and date",
        error_code="duplicate_entry",
        details={"assignment_id": assignment_id, "date": entry_date.isoformat()}
    )


def parse_quantity(value: Any) -> Decimal:
    """
    Parse a quantity of days into a two-decimal Decimal.

    Raises:
        ValidationError: If the value is not a positive number with at most two decimals
    """
    if value is None or isinstance(value, bool):
        raise ValidationError("Quantity is required", details={"field": "quantity"})
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("Quantity must be a number", details={"field": "quantity"})

    if not quantity.is_finite() or quantity <= 0:
        raise ValidationError("Quantity must be greater than 0", details={"field": "quantity"})
    if quantity > MAX_QUANTITY:
        raise ValidationError("Quantity is too large", details={"field": "quantity"})
    if quantity != quantity.quantize(Decimal("0.01")):
        raise ValidationError("Quantity accepts at most two decimals", details={"field": "quantity"})

    return quantity.quantize(Decimal("0.01"))


def parse_unit_price(value: Any) -> int:
    """
    Raises:
        ValidationError: If the value is not a positive integer amount of minor units
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("Unit price must be an integer amount of minor units", details={"field": "unit_price"})
    if value <= 0:
        raise ValidationError("Unit price must be greater than 0", details={"field": "unit_price"})
    return value


def parse_description(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("Description must be a string", details={"field": "description"})
    if len(value) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters",
            details={"field": "description"}
        )
    return value


def validate_entry_date(report: Report, value: Any) -> date:
    """
    Raises:
        ValidationError: If the value is not a date inside the report period
    """
    if isinstance(value, datetime) or not isinstance(value, date):
        raise ValidationError("Date must be a valid date", details={"field": "date"})
    if (value.year, value.month) != (report.year, report.month):
        raise ValidationError(
            f"Date must fall within the report period {report.month:02d}/{report.year}",
            details={"field": "date"}
        )
    return value


class EntryService:

    @staticmethod
    async def create_entry(
        db: AsyncSession,
        report_id: int,
        assignment_id: int,
        entry_date: date,
        quantity: Any,
        unit_price: Any,
        description: Optional[str] = None,
        actor_id: Optional[int] = None
    ) -> EntryRow:
        """
        Create an entry in a DRAFT report.

        Raises:
            NotFoundError: Unknown report or assignment
            ReportNotModifiableError: Report is not DRAFT
            ValidationError: Invalid date, quantity, unit price or description
            ConflictError: A live entry already exists for (report, assignment, date)
        """
        try:
            report = await store.get_report(db, report_id, for_update=True)
            ReportLifecycle.ensure_modifiable(report)

            entry_date = validate_entry_date(report, entry_date)
            quantity = parse_quantity(quantity)
            unit_price = parse_unit_price(unit_price)
            description = parse_description(description)

            await LinkingService.ensure_link(db, report.id, assignment_id, report.owner_id)

            slot_key = build_slot_key(report.id, assignment_id, entry_date)
            if await store.find_live_entry(db, slot_key):
                raise _duplicate_entry_error(assignment_id, entry_date)

            entry = Entry(
                date=entry_date,
                quantity=quantity,
                unit_price=unit_price,
                description=description,
                slot_key=slot_key
            )
            db.add(entry)
            try:
                await db.flush()  # Live-slot index catches racing duplicates
            except IntegrityError as exc:
                raise _duplicate_entry_error(assignment_id, entry_date) from exc

            db.add(EntryReportLink(entry_id=entry.id, report_id=report.id))
            db.add(EntryAssignmentLink(entry_id=entry.id, assignment_id=assignment_id))

            await TotalsService.recalculate(db, report)

            record_event(
                db,
                action=AuditAction.ENTRY_CREATED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"entry_id": entry.id, "assignment_id": assignment_id, "date": entry_date.isoformat()}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Created entry %s in report %s", entry.id, report.id)
        return EntryRow(entry=entry, report_id=report.id, assignment_id=assignment_id)

    @staticmethod
    async def update_entry(
        db: AsyncSession,
        entry_id: int,
        attrs: Dict[str, Any],
        actor_id: Optional[int] = None
    ) -> EntryRow:
        """
        Update an entry of a DRAFT report.

        Args:
            attrs: Any of date, quantity, unit_price, description, assignment_id

        Raises:
            NotFoundError: Unknown or deleted entry, unknown assignment
            ReportNotModifiableError: Report is not DRAFT
            ValidationError: Unknown field or invalid value
            ConflictError: The new (assignment, date) collides with another live entry
        """
        unknown = set(attrs) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown entry fields: {', '.join(sorted(unknown))}",
                details={"fields": sorted(unknown)}
            )

        try:
            located = await store.get_entry(db, entry_id)
            report = await store.get_report(db, located.report_id, for_update=True)
            ReportLifecycle.ensure_modifiable(report)

            # Re-read under the report lock
            row = await store.get_entry(db, entry_id, refresh=True)
            entry = row.entry
            previous_assignment_id = row.assignment_id

            assignment_id = attrs.get("assignment_id", row.assignment_id)
            entry_date = validate_entry_date(report, attrs["date"]) if "date" in attrs else entry.date
            if "quantity" in attrs:
                entry.quantity = parse_quantity(attrs["quantity"])
            if "unit_price" in attrs:
                entry.unit_price = parse_unit_price(attrs["unit_price"])
            if "description" in attrs:
                entry.description = parse_description(attrs["description"])

            if assignment_id != previous_assignment_id:
                await LinkingService.ensure_link(db, report.id, assignment_id, report.owner_id)
                result = await db.execute(
                    select(EntryAssignmentLink).where(EntryAssignmentLink.entry_id == entry.id)
                )
                result.scalar_one().assignment_id = assignment_id

            slot_key = build_slot_key(report.id, assignment_id, entry_date)
            if slot_key != entry.slot_key:
                clash = await store.find_live_entry(db, slot_key)
                if clash is not None and clash.id != entry.id:
                    raise _duplicate_entry_error(assignment_id, entry_date)
                entry.slot_key = slot_key
            entry.date = entry_date

            try:
                await db.flush()
            except IntegrityError as exc:
                raise _duplicate_entry_error(assignment_id, entry_date) from exc

            if assignment_id != previous_assignment_id:
                await LinkingService.unlink_if_unused(db, report.id, previous_assignment_id)

            await TotalsService.recalculate(db, report)

            record_event(
                db,
                action=AuditAction.ENTRY_UPDATED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"entry_id": entry.id, "fields": sorted(attrs)}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Updated entry %s in report %s", entry.id, report.id)
        return EntryRow(entry=entry, report_id=report.id, assignment_id=assignment_id)

    @staticmethod
    async def delete_entry(db: AsyncSession, entry_id: int, actor_id: Optional[int] = None) -> None:
        """
        Soft-delete an entry of a DRAFT report.

        The report <-> assignment link is removed when this was the last live
        entry of the assignment in the report.

        Raises:
            NotFoundError: Unknown or already deleted entry
            ReportNotModifiableError: Report is not DRAFT
        """
        try:
            located = await store.get_entry(db, entry_id)
            report = await store.get_report(db, located.report_id, for_update=True)
            ReportLifecycle.ensure_modifiable(report)

            row = await store.get_entry(db, entry_id, refresh=True)
            row.entry.deleted_at = datetime.now(timezone.utc)

            await LinkingService.unlink_if_unused(db, report.id, row.assignment_id)
            await TotalsService.recalculate(db, report)

            record_event(
                db,
                action=AuditAction.ENTRY_DELETED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"entry_id": entry_id}
            )

            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info("Deleted entry %s from report %s", entry_id, report.id)

    @staticmethod
    async def list_entries(db: AsyncSession, report_id: int, limit: int = 100, offset: int = 0) -> list[EntryRow]:
        """
        Raises:
            NotFoundError: Unknown or deleted report
        """
        await store.get_report(db, report_id)
        return await store.list_entries(db, report_id, limit=limit, offset=offset)
