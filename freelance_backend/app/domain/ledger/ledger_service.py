"""
Ledger Service (Orchestrator).

Drives the SUBMITTED -> LOCKED transition across two stores: the database
transaction and the git ledger. The ledger commit happens while the report row
is locked and before the database commit, so a report is never LOCKED without
a ledger revision. A ledger revision left without a database row (the database
commit failed afterwards) is picked up again by the next lock attempt or, past
the grace period, recorded as an orphan by the reconciliation pass.
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError

from freelance_backend.app.core.exceptions import LedgerIntegrityError, RetryableError
from freelance_backend.app.domain.ledger.payload import (
    build_payload, format_timestamp, parse_timestamp, payload_hash
)
from freelance_backend.app.domain.ledger.repository import (
    GitLedgerRepository, LedgerRevision, build_commit_message
)
from freelance_backend.app.domain.reports import store
from freelance_backend.app.domain.reports.lifecycle import ReportLifecycle
from freelance_backend.app.domain.reports.linking_service import LinkingService
from freelance_backend.app.domain.reports.totals_service import TotalsService
from freelance_backend.app.models.enums import ReportStatus, OrphanReason
from freelance_backend.app.models.ledger_commit import LedgerCommit, LedgerOrphan
from freelance_backend.app.models.report import Report
from freelance_backend.app.services.audit import record_event, AuditAction

logger = logging.getLogger(__name__)


@lru_cache
def get_ledger_repository() -> GitLedgerRepository:
    """Process-wide ledger repository (FastAPI dependency)."""
    return GitLedgerRepository()


async def last_commit(db: AsyncSession) -> Optional[LedgerCommit]:
    result = await db.execute(select(LedgerCommit).order_by(LedgerCommit.sequence.desc()).limit(1))
    return result.scalar_one_or_none()


async def next_sequence(db: AsyncSession) -> int:
    result = await db.execute(select(func.max(LedgerCommit.sequence)))
    return (result.scalar_one() or 0) + 1


async def known_revisions(db: AsyncSession, revision_ids: Sequence[str]) -> set[str]:
    """Revisions already referenced by a commit row or an orphan row."""
    if not revision_ids:
        return set()
    ids = list(revision_ids)
    committed = await db.execute(select(LedgerCommit.revision_id).where(LedgerCommit.revision_id.in_(ids)))
    orphaned = await db.execute(select(LedgerOrphan.revision_id).where(LedgerOrphan.revision_id.in_(ids)))
    return set(committed.scalars().all()) | set(orphaned.scalars().all())


class LedgerService:

    @staticmethod
    async def _match_dangling_revision(
        repository: GitLedgerRepository,
        revision: LedgerRevision,
        report: Report,
        rows,
        assignment_ids: Sequence[int]
    ) -> Optional[datetime]:
        """
        Check whether a dangling revision holds exactly the payload this report would produce.

        Returns:
            The revision's locked_at when it matches, None otherwise
        """
        if not revision.locked_at or not revision.payload_sha256:
            return None
        try:
            locked_at = parse_timestamp(revision.locked_at)
        except ValueError:
            return None

        rebuilt = payload_hash(build_payload(report, rows, assignment_ids, locked_at))
        if rebuilt != revision.payload_sha256:
            return None

        stored = payload_hash(await repository.read_payload(revision.revision_id, report.id))
        if stored != revision.payload_sha256:
            return None

        return locked_at

    @staticmethod
    async def lock_report(
        db: AsyncSession,
        repository: GitLedgerRepository,
        report_id: int,
        actor_id: Optional[int] = None
    ) -> tuple[Report, str]:
        """
        Lock a SUBMITTED report and record it in the ledger.

        Flow:
        1. Lock the report row FOR UPDATE
        2. Guard SUBMITTED -> LOCKED
        3. Verify the ledger history against the last recorded revision
        4. Relink a dangling revision of this report if its payload matches,
           otherwise build the payload and commit a new revision
        5. Set status, locked_at, totals; add the LedgerCommit row and audit event
        6. Commit the database transaction

        Returns:
            (report, revision_id)

        Raises:
            NotFoundError: Unknown or deleted report
            InvalidTransitionError: Report is not SUBMITTED
            LedgerIntegrityError: Ledger history was rewritten (fatal, not retried)
            RetryableError: Ledger or database failure; report stays SUBMITTED
        """
        try:
            report = await store.get_report(db, report_id, for_update=True)
            ReportLifecycle.ensure_transition(report, ReportStatus.LOCKED)

            await TotalsService.recalculate(db, report)
            rows = await store.list_entries(db, report.id)
            assignment_ids = await LinkingService.list_assignment_ids(db, report.id)

            previous = await last_commit(db)
            await repository.verify_no_rewrite(previous.revision_id if previous else None)

            # Unreferenced revisions of this report anywhere in history; other
            # reports may have locked after a failed attempt of this one
            candidates = [
                revision for revision in await repository.revisions_since(None)
                if revision.report_id == report.id
            ]
            known = await known_revisions(db, [revision.revision_id for revision in candidates])

            revision_id = None
            locked_at = None
            for revision in candidates:
                if revision.revision_id in known:
                    continue

                matched_at = await LedgerService._match_dangling_revision(
                    repository, revision, report, rows, assignment_ids
                )
                if matched_at is None:
                    db.add(LedgerOrphan(
                        revision_id=revision.revision_id,
                        report_id=report.id,
                        reason=OrphanReason.PAYLOAD_MISMATCH
                    ))
                    logger.warning(
                        "Dangling ledger revision %s for report %s does not match its payload",
                        revision.revision_id, report.id
                    )
                    continue

                revision_id = revision.revision_id
                locked_at = matched_at
                record_event(
                    db,
                    action=AuditAction.LEDGER_REVISION_RELINKED,
                    actor_id=actor_id,
                    report_id=report.id,
                    metadata={"revision_id": revision_id}
                )
                logger.info("Relinking dangling ledger revision %s to report %s", revision_id, report.id)
                break

            if revision_id is None:
                locked_at = datetime.now(timezone.utc).replace(microsecond=0)
                payload = build_payload(report, rows, assignment_ids, locked_at)
                digest = payload_hash(payload)
                message = build_commit_message(
                    report.id, digest, format_timestamp(locked_at),
                    subject=f"Lock report {report.id} ({report.month:02d}/{report.year})"
                )
                revision_id = await repository.commit(payload, message, report.id)
            else:
                digest = payload_hash(build_payload(report, rows, assignment_ids, locked_at))

            report.status = ReportStatus.LOCKED
            report.locked_at = locked_at

            db.add(LedgerCommit(
                report_id=report.id,
                sequence=await next_sequence(db),
                payload_hash=digest,
                revision_id=revision_id
            ))

            record_event(
                db,
                action=AuditAction.REPORT_LOCKED,
                actor_id=actor_id,
                report_id=report.id,
                metadata={"revision_id": revision_id, "payload_hash": digest}
            )

            await db.commit()
        except LedgerIntegrityError as exc:
            await db.rollback()
            logger.critical("Ledger integrity failure while locking report %s: %s", report_id, exc.message)
            raise
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning("Database failure while locking report %s: %s", report_id, exc)
            raise RetryableError(
                "Report could not be locked, retry later",
                details={"report_id": report_id}
            ) from exc
        except Exception:
            await db.rollback()
            raise

        logger.info("Report %s locked at ledger revision %s", report.id, revision_id)
        return report, revision_id

    @staticmethod
    async def ledger_history(db: AsyncSession, report_id: int) -> list[LedgerCommit]:
        """
        Ledger commits of a visible report, oldest first.

        Raises:
            NotFoundError: Unknown or deleted report
        """
        await store.get_report(db, report_id)
        result = await db.execute(
            select(LedgerCommit).where(LedgerCommit.report_id == report_id).order_by(LedgerCommit.sequence)
        )
        return list(result.scalars().all())
