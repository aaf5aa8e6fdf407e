"""
Ledger Pydantic schemas.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import List


class LedgerCommitResponse(BaseModel):
    """One immutable ledger record of a lock transition."""
    report_id: int
    sequence: int
    payload_hash: str
    revision_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class LedgerHistoryResponse(BaseModel):
    report_id: int
    commits: List[LedgerCommitResponse]
