"""
Report API Endpoints.

CRUD on draft reports plus the submit and lock transitions, export and
ledger history. Reports outside the caller's visibility set answer 404.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_backend.app.core.dependencies import CurrentUser
from freelance_backend.app.core.guards import ReportAccess, get_report_access
from freelance_backend.app.core.rate_limit import rate_limit
from freelance_backend.app.db.session import get_db
from freelance_backend.app.domain.ledger.ledger_service import LedgerService, get_ledger_repository
from freelance_backend.app.domain.ledger.repository import GitLedgerRepository
from freelance_backend.app.domain.reports.export_service import ExportService
from freelance_backend.app.domain.reports.lifecycle import ReportLifecycle
from freelance_backend.app.domain.reports.report_service import ReportService
from freelance_backend.app.models.enums import ReportStatus
from freelance_backend.app.schemas.ledger import LedgerCommitResponse, LedgerHistoryResponse
from freelance_backend.app.schemas.report import (
    ReportCreate, ReportUpdate, ReportResponse, ReportListResponse, ReportLockResponse
)

router = APIRouter(prefix="/reports", tags=["Reports"])


@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportCreate,
    current_user: CurrentUser = Depends(rate_limit),
    db: AsyncSession = Depends(get_db)
):
    """Create a draft report for the caller and period."""
    return await ReportService.create_report(
        db,
        owner_id=current_user.user_id,
        month=payload.month,
        year=payload.year,
        currency=payload.currency,
        description=payload.description,
        actor_id=current_user.user_id
    )


@router.get("", response_model=ReportListResponse)
async def list_reports(
    status_filter: Optional[ReportStatus] = Query(None, alias="status"),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's visible reports, newest period first."""
    reports = await ReportService.list_reports(
        db,
        visible_ids=access.visible_ids,
        status=status_filter,
        month=month,
        year=year,
        limit=limit,
        offset=offset
    )
    return ReportListResponse(
        reports=[ReportResponse.model_validate(report) for report in reports],
        limit=limit,
        offset=offset
    )


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: int = Path(..., description="Report ID"),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    return await ReportService.get_report(db, report_id, visible_ids=access.visible_ids)


@router.patch("/{report_id}", response_model=ReportResponse)
async def update_report(
    payload: ReportUpdate,
    report_id: int = Path(..., description="Report ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    """Update currency or description of a draft report."""
    access.enforce(report_id)
    return await ReportService.update_report(
        db, report_id, payload.model_dump(exclude_unset=True), actor_id=current_user.user_id
    )


@router.delete("/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: int = Path(..., description="Report ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    """Soft-delete a draft report and its entries."""
    access.enforce(report_id)
    await ReportService.delete_report(db, report_id, actor_id=current_user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{report_id}/submit", response_model=ReportResponse)
async def submit_report(
    report_id: int = Path(..., description="Report ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    """Move a draft report with at least one entry to SUBMITTED."""
    access.enforce(report_id)
    return await ReportLifecycle.submit(db, report_id, actor_id=current_user.user_id)


@router.post("/{report_id}/lock", response_model=ReportLockResponse)
async def lock_report(
    report_id: int = Path(..., description="Report ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    repository: GitLedgerRepository = Depends(get_ledger_repository),
    db: AsyncSession = Depends(get_db)
):
    """
    Lock a submitted report and record it in the ledger.

    Answers 503 with Retry-After when the ledger is temporarily unavailable;
    the report then stays SUBMITTED and the call can be retried.
    """
    access.enforce(report_id)
    report, revision_id = await LedgerService.lock_report(
        db, repository, report_id, actor_id=current_user.user_id
    )
    return ReportLockResponse(report=ReportResponse.model_validate(report), revision_id=revision_id)


@router.get("/{report_id}/export")
async def export_report(
    report_id: int = Path(..., description="Report ID"),
    export_format: str = Query("csv", alias="format"),
    include_entries: bool = Query(True),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    """Export a submitted or locked report as CSV."""
    access.enforce(report_id)
    result = await ExportService.export(db, report_id, export_format, include_entries)
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'}
    )


@router.get("/{report_id}/ledger", response_model=LedgerHistoryResponse)
async def ledger_history(
    report_id: int = Path(..., description="Report ID"),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    access.enforce(report_id)
    commits = await LedgerService.ledger_history(db, report_id)
    return LedgerHistoryResponse(
        report_id=report_id,
        commits=[LedgerCommitResponse.model_validate(commit) for commit in commits]
    )
