"""
Ledger orphan reconciliation.

Records every ledger revision that no ledger commit row references and that
is older than the grace period. Safe to run repeatedly (cron, after an
incident). Exits 2 when the ledger history was rewritten.

Usage:
    python -m scripts.reconcile_ledger [--grace-seconds 900]
"""

import argparse
import asyncio
import json
import logging
import sys

from freelance_backend.app.core.config import settings
from freelance_backend.app.core.exceptions import LedgerIntegrityError
from freelance_backend.app.core.observability import setup_logging
from freelance_backend.app.db.session import AsyncSessionLocal, engine
from freelance_backend.app.domain.ledger.reconciliation import reconcile
from freelance_backend.app.domain.ledger.repository import GitLedgerRepository

logger = logging.getLogger("freelance_backend.reconcile")


async def main(grace_seconds=None) -> int:
    setup_logging(settings.log_level)
    repository = GitLedgerRepository()

    try:
        async with AsyncSessionLocal() as db:
            report = await reconcile(db, repository, grace_seconds=grace_seconds)
    except LedgerIntegrityError as exc:
        logger.critical("Reconciliation aborted: %s %s", exc.message, exc.details)
        return 2
    finally:
        await engine.dispose()

    print(json.dumps(report.as_dict(), indent=2))
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Record orphaned ledger revisions")
    parser.add_argument("--grace-seconds", type=int, default=None,
                        help=f"Minimum revision age (default {settings.ledger_orphan_grace_seconds})")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.grace_seconds)))
