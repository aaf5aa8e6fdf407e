"""
Report access control.

The caller's visibility set is the list of report ids they may see. The
default policy is ownership: a caller sees the reports they own. Reports
outside the set behave exactly like reports that do not exist.
"""

from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from freelance_backend.app.core.dependencies import CurrentUser, get_current_user
from freelance_backend.app.core.exceptions import NotFoundError
from freelance_backend.app.db.session import get_db
from freelance_backend.app.models.report import Report


class ReportAccess:
    """
    Visibility decision for one caller.

    Usage:
        @router.get("/reports/{report_id}")
        async def get_report(report_id: int, access: ReportAccess = Depends(get_report_access)):
            access.enforce(report_id)
            ...
    """

    def __init__(self, user: CurrentUser, visible_ids: set[int]):
        self.user = user
        self.visible_ids = visible_ids

    def can_see(self, report_id: int) -> bool:
        return report_id in self.visible_ids

    def enforce(self, report_id: Optional[int], resource_name: str = "Report", resource_id: Optional[int] = None):
        """
        Raises:
            NotFoundError: The report is outside the caller's visibility set
        """
        if report_id is None or not self.can_see(report_id):
            raise NotFoundError(resource_name, resource_id if resource_id is not None else report_id)


async def get_report_access(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
) -> ReportAccess:
    """FastAPI dependency resolving the caller's visible report ids."""
    result = await db.execute(
        select(Report.id).where(Report.owner_id == current_user.user_id, Report.deleted_at.is_(None))
    )
    return ReportAccess(current_user, set(result.scalars().all()))
