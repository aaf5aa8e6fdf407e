"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from freelance_backend.app.api.v1.endpoints import assignments, entries, reports

router = APIRouter()

# Reports and lifecycle transitions
router.include_router(reports.router)

# Entries
router.include_router(entries.report_entries_router)
router.include_router(entries.router)

# Assignments (entries reference one)
router.include_router(assignments.router)
