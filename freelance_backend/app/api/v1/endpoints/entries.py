"""
Entry API Endpoints.

Entries of a report are only writable while the report is DRAFT; every write
answers with the entry as stored after totals were recalculated.
"""

from fastapi import APIRouter, Depends, Path, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from freelance_backend.app.core.dependencies import CurrentUser
from freelance_backend.app.core.guards import ReportAccess, get_report_access
from freelance_backend.app.core.rate_limit import rate_limit
from freelance_backend.app.db.session import get_db
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.entry_service import EntryService
from freelance_backend.app.schemas.entry import EntryCreate, EntryUpdate, EntryResponse, EntryListResponse

report_entries_router = APIRouter(prefix="/reports/{report_id}/entries", tags=["Entries"])
router = APIRouter(prefix="/entries", tags=["Entries"])


@report_entries_router.post("", response_model=EntryResponse, status_code=status.HTTP_201_CREATED)
async def create_entry(
    payload: EntryCreate,
    report_id: int = Path(..., description="Report ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    """Add an entry to a draft report. The assignment is linked to the report on first use."""
    access.enforce(report_id)
    row = await EntryService.create_entry(
        db,
        report_id=report_id,
        assignment_id=payload.assignment_id,
        entry_date=payload.date,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
        description=payload.description,
        actor_id=current_user.user_id
    )
    return EntryResponse.from_row(row)


@report_entries_router.get("", response_model=EntryListResponse)
async def list_entries(
    report_id: int = Path(..., description="Report ID"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    access.enforce(report_id)
    rows = await EntryService.list_entries(db, report_id, limit=limit, offset=offset)
    return EntryListResponse(entries=[EntryResponse.from_row(row) for row in rows], limit=limit, offset=offset)


@router.patch("/{entry_id}", response_model=EntryResponse)
async def update_entry(
    payload: EntryUpdate,
    entry_id: int = Path(..., description="Entry ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    located = await store.get_entry(db, entry_id)
    access.enforce(located.report_id, "Entry", entry_id)

    # Only description can be cleared; null elsewhere means "unchanged"
    attrs = {
        field: value for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field == "description"
    }
    row = await EntryService.update_entry(db, entry_id, attrs, actor_id=current_user.user_id)
    return EntryResponse.from_row(row)


@router.delete("/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(
    entry_id: int = Path(..., description="Entry ID"),
    current_user: CurrentUser = Depends(rate_limit),
    access: ReportAccess = Depends(get_report_access),
    db: AsyncSession = Depends(get_db)
):
    located = await store.get_entry(db, entry_id)
    access.enforce(located.report_id, "Entry", entry_id)
    await EntryService.delete_entry(db, entry_id, actor_id=current_user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
