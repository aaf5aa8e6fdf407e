"""
Assignment API Endpoints.

Minimal mission management: entries need an assignment to reference.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from freelance_backend.app.core.dependencies import CurrentUser, get_current_user
from freelance_backend.app.core.rate_limit import rate_limit
from freelance_backend.app.db.session import get_db
from freelance_backend.app.models.assignment import Assignment
from freelance_backend.app.schemas.assignment import AssignmentCreate, AssignmentResponse, AssignmentListResponse

router = APIRouter(prefix="/assignments", tags=["Assignments"])


@router.post("", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: AssignmentCreate,
    current_user: CurrentUser = Depends(rate_limit),
    db: AsyncSession = Depends(get_db)
):
    assignment = Assignment(name=payload.name, owner_id=current_user.user_id)
    try:
        db.add(assignment)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    await db.refresh(assignment)
    return assignment


@router.get("", response_model=AssignmentListResponse)
async def list_assignments(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the caller's live assignments."""
    result = await db.execute(
        select(Assignment)
        .where(Assignment.owner_id == current_user.user_id, Assignment.deleted_at.is_(None))
        .order_by(Assignment.id)
    )
    return AssignmentListResponse(
        assignments=[AssignmentResponse.model_validate(a) for a in result.scalars().all()]
    )
