"""
Ledger orphan reconciliation.

Offline pass (see scripts/reconcile_ledger.py) that walks every ledger revision
not referenced by a LedgerCommit or LedgerOrphan row and classifies it:

- payload_mismatch: the stored payload does not hash to its Payload-Sha256 trailer
- superseded: the report is LOCKED and already references another revision
- unlinked: the report never got locked with it (or is gone) and the revision
  is older than the grace period

Revisions younger than the grace period are left pending: they may belong to
a lock still in flight. The pass only inserts orphan rows; git history is
never touched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from freelance_backend.app.core.config import settings
from freelance_backend.app.core.exceptions import LedgerCommandError
from freelance_backend.app.domain.ledger.ledger_service import known_revisions, last_commit
from freelance_backend.app.domain.ledger.payload import payload_hash
from freelance_backend.app.domain.ledger.repository import GitLedgerRepository, LedgerRevision
from freelance_backend.app.domain.reports.offline_store import get_report_including_deleted
from freelance_backend.app.models.enums import ReportStatus, OrphanReason
from freelance_backend.app.models.ledger_commit import LedgerCommit, LedgerOrphan

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    examined: int = 0
    pending: list[str] = field(default_factory=list)
    orphans: dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {"examined": self.examined, "pending": self.pending, "orphans": self.orphans}


async def _stored_hash(repository: GitLedgerRepository, revision: LedgerRevision) -> Optional[str]:
    try:
        return payload_hash(await repository.read_payload(revision.revision_id, revision.report_id))
    except LedgerCommandError:
        return None


async def _classify(
    db: AsyncSession,
    repository: GitLedgerRepository,
    revision: LedgerRevision,
    cutoff: datetime
) -> Optional[OrphanReason]:
    if await _stored_hash(repository, revision) != revision.payload_sha256:
        return OrphanReason.PAYLOAD_MISMATCH

    report = await get_report_including_deleted(db, revision.report_id)
    if report is not None and report.status == ReportStatus.LOCKED:
        result = await db.execute(select(LedgerCommit.id).where(LedgerCommit.report_id == report.id).limit(1))
        if result.scalar_one_or_none() is not None:
            return OrphanReason.SUPERSEDED

    if datetime.fromisoformat(revision.committed_at) <= cutoff:
        return OrphanReason.UNLINKED

    return None


async def reconcile(
    db: AsyncSession,
    repository: GitLedgerRepository,
    now: Optional[datetime] = None,
    grace_seconds: Optional[int] = None
) -> ReconciliationReport:
    """
    Record every unreferenced ledger revision that is safe to classify as an orphan.

    Raises:
        LedgerIntegrityError: The last recorded revision is no longer in the ledger history
    """
    now = now or datetime.now(timezone.utc)
    grace = settings.ledger_orphan_grace_seconds if grace_seconds is None else grace_seconds
    cutoff = now - timedelta(seconds=grace)
    report = ReconciliationReport()

    try:
        previous = await last_commit(db)
        await repository.verify_no_rewrite(previous.revision_id if previous else None)

        revisions = await repository.revisions_since(None)
        known = await known_revisions(db, [revision.revision_id for revision in revisions])

        for revision in revisions:
            if revision.revision_id in known:
                continue
            report.examined += 1

            reason = await _classify(db, repository, revision, cutoff)
            if reason is None:
                report.pending.append(revision.revision_id)
                continue

            db.add(LedgerOrphan(revision_id=revision.revision_id, report_id=revision.report_id, reason=reason))
            report.orphans[revision.revision_id] = reason.value
            logger.warning(
                "Ledger revision %s (report %s) recorded as %s orphan",
                revision.revision_id, revision.report_id, reason.value
            )

        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Ledger reconciliation: %s examined, %s orphaned, %s pending",
        report.examined, len(report.orphans), len(report.pending)
    )
    return report
