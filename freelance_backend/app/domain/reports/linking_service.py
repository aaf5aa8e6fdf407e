"""
Report <-> Assignment Linking Service.

Links a report to an assignment the moment one of its entries references
the assignment. Linking is idempotent, including under concurrent creators.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from freelance_backend.app.domain.reports import store
from freelance_backend.app.models.entry import Entry
from freelance_backend.app.models.relations import ReportAssignmentLink, EntryReportLink, EntryAssignmentLink

logger = logging.getLogger(__name__)


class LinkingService:

    @staticmethod
    async def find_link(db: AsyncSession, report_id: int, assignment_id: int) -> Optional[ReportAssignmentLink]:
        result = await db.execute(
            select(ReportAssignmentLink).where(
                ReportAssignmentLink.report_id == report_id,
                ReportAssignmentLink.assignment_id == assignment_id
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def ensure_link(
        db: AsyncSession,
        report_id: int,
        assignment_id: int,
        owner_id: int
    ) -> ReportAssignmentLink:
        """
        Ensure the report is linked to the assignment.

        Flow:
        1. Validate the assignment is visible to the report owner
        2. Return the existing link if present
        3. Insert inside a SAVEPOINT; a unique violation from a concurrent
           creator rolls back the savepoint only and the winner's row is returned

        Args:
            db: Database session (transaction managed by caller)
            report_id: Report to link
            assignment_id: Assignment referenced by an entry
            owner_id: Owner of the report; the assignment must belong to them

        Returns:
            The single ReportAssignmentLink row for the pair

        Raises:
            NotFoundError: If the assignment does not exist, was soft-deleted or
                belongs to another owner
        """
        await store.get_assignment(db, assignment_id, owner_id)

        existing = await LinkingService.find_link(db, report_id, assignment_id)
        if existing:
            return existing

        link = ReportAssignmentLink(report_id=report_id, assignment_id=assignment_id)
        try:
            async with db.begin_nested():
                db.add(link)
        except IntegrityError:
            existing = await LinkingService.find_link(db, report_id, assignment_id)
            if existing is None:
                raise
            logger.info("Assignment %s already linked to report %s by a concurrent writer", assignment_id, report_id)
            return existing

        logger.info("Linked report %s to assignment %s", report_id, assignment_id)
        return link

    @staticmethod
    async def unlink_if_unused(db: AsyncSession, report_id: int, assignment_id: int) -> bool:
        """
        Remove the report <-> assignment link once no live entry references it.

        Returns:
            True if a link was removed, False otherwise
        """
        await db.flush()
        result = await db.execute(
            select(func.count(Entry.id))
            .join(EntryReportLink, EntryReportLink.entry_id == Entry.id)
            .join(EntryAssignmentLink, EntryAssignmentLink.entry_id == Entry.id)
            .where(
                EntryReportLink.report_id == report_id,
                EntryAssignmentLink.assignment_id == assignment_id,
                Entry.deleted_at.is_(None)
            )
        )
        if result.scalar_one() > 0:
            return False

        link = await LinkingService.find_link(db, report_id, assignment_id)
        if link is None:
            return False

        await db.delete(link)
        await db.flush()
        logger.info("Unlinked report %s from assignment %s (no live entries left)", report_id, assignment_id)
        return True

    @staticmethod
    async def list_assignment_ids(db: AsyncSession, report_id: int) -> list[int]:
        result = await db.execute(
            select(ReportAssignmentLink.assignment_id)
            .where(ReportAssignmentLink.report_id == report_id)
            .order_by(ReportAssignmentLink.assignment_id)
        )
        return list(result.scalars().all())
