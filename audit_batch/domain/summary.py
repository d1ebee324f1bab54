"""
Pure summary computation over the completed output (FINALIZING phase).

Contract:
    ``summarize()`` folds the emitted records into an ``AuditSummary``.
    Totals come from the job counters; the breakdowns come from the rows,
    so rows duplicated by an overlapping invocation show up in the
    breakdowns but never in ``total_items``.

Architecture: audit_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from datetime import datetime

from audit_batch.domain.types import (
    AuditJobState,
    AuditSummary,
    OutputRecord,
    PermissionFetchStatus,
)

_ANYONE = "anyone"


def _principal_domain(record: OutputRecord) -> str:
    if record.permission_domain:
        return record.permission_domain.lower()
    if "@" in record.permission_email:
        return record.permission_email.rsplit("@", 1)[1].lower()
    return ""


def is_external(record: OutputRecord, internal_domains: frozenset[str]) -> bool:
    """True when the grant reaches a principal outside the internal domains.

    With no internal domains configured nothing is considered external.
    """
    if not internal_domains or not record.permission_type:
        return False
    if record.permission_type == _ANYONE:
        return False
    domain = _principal_domain(record)
    return bool(domain) and domain not in internal_domains


def summarize(
    state: AuditJobState,
    records: Iterable[OutputRecord],
    completed_at: datetime,
    internal_domains: Iterable[str] = (),
) -> AuditSummary:
    """Build the aggregate report for a finished job."""
    internal = frozenset(d.lower() for d in internal_domains)
    by_type: Counter[str] = Counter()
    by_role: Counter[str] = Counter()
    anyone: set[str] = set()
    external: set[str] = set()
    failed: set[str] = set()

    for record in records:
        if record.permission_fetch_status == PermissionFetchStatus.FAILED:
            failed.add(record.file_id)
            continue
        if not record.permission_type:
            continue
        by_type[record.permission_type] += 1
        by_role[record.permission_role] += 1
        if record.permission_type == _ANYONE:
            anyone.add(record.file_id)
        elif is_external(record, internal):
            external.add(record.file_id)

    return AuditSummary(
        job_id=state.job_id,
        completed_at=completed_at,
        total_items=state.items_processed,
        total_records=state.records_emitted,
        duration_seconds=(completed_at - state.started_at).total_seconds(),
        rows_by_permission_type=dict(sorted(by_type.items())),
        rows_by_role=dict(sorted(by_role.items())),
        items_shared_with_anyone=len(anyone),
        items_shared_externally=len(external),
        items_with_failed_permission_fetch=len(failed),
    )
