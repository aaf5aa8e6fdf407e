"""
Assignment Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List


class AssignmentCreate(BaseModel):
    """Schema for creating an assignment."""
    name: str = Field(..., min_length=1, max_length=255, description="Assignment (mission) name")


class AssignmentResponse(BaseModel):
    id: int
    owner_id: int
    name: str
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentListResponse(BaseModel):
    assignments: List[AssignmentResponse]
