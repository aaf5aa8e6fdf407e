"""
Report and ledger enumerations.

Defines the activity-report lifecycle states and ledger reconciliation reasons.
"""

import enum


class ReportStatus(str, enum.Enum):
    """
    Activity report lifecycle.

    States:
        DRAFT: Editable; entries can be created, updated and deleted (initial)
        SUBMITTED: Frozen for review, waiting to be locked
        LOCKED: Terminal; sealed by a ledger commit
    """
    DRAFT = "draft"
    SUBMITTED = "submitted"
    LOCKED = "locked"


class OrphanReason(str, enum.Enum):
    """Why a ledger revision is not referenced by any ledger commit row."""
    UNLINKED = "unlinked"  # Committed to the ledger, DB transaction never completed
    SUPERSEDED = "superseded"  # Report already sealed by another revision
    PAYLOAD_MISMATCH = "payload_mismatch"  # Stored payload does not match its recorded hash
