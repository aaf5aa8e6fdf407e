"""
Ledger Payload Builder.

Canonical serialization of a report's final state. Identical inputs always
produce identical bytes, so a payload hash can be recomputed later and compared
with the one recorded in the ledger.
"""

import hashlib
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Sequence

from freelance_backend.app.domain.reports.store import EntryRow
from freelance_backend.app.models.report import Report

PAYLOAD_VERSION = 1


def format_timestamp(value: datetime) -> str:
    """ISO-8601 UTC with a trailing Z, second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)


def _decimal_2(value) -> str:
    return f"{Decimal(value).quantize(Decimal('0.01'))}"


def build_payload(
    report: Report,
    entries: Iterable[EntryRow],
    assignment_ids: Sequence[int],
    locked_at: datetime
) -> bytes:
    """
    Build the canonical ledger payload of a report.

    Entries are ordered by (date, assignment id) regardless of input order.
    Keys are sorted, separators are compact, quantities are two-decimal
    strings and money stays in integer minor units.
    """
    ordered = sorted(entries, key=lambda row: (row.entry.date, row.assignment_id, row.entry.id))

    document = {
        "version": PAYLOAD_VERSION,
        "report_id": report.id,
        "period": {"month": report.month, "year": report.year},
        "currency": report.currency,
        "assignment_ids": sorted(assignment_ids),
        "entries": [
            {
                "date": row.entry.date.isoformat(),
                "assignment_id": row.assignment_id,
                "quantity": _decimal_2(row.entry.quantity),
                "unit_price": row.entry.unit_price,
                "line_total": row.line_total,
                "description": row.entry.description,
            }
            for row in ordered
        ],
        "totals": {
            "total_days": _decimal_2(report.total_days),
            "total_amount": int(report.total_amount),
        },
        "locked_at": format_timestamp(locked_at),
    }

    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def payload_hash(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()
