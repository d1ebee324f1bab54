"""
Result sinks -- append-only writers for output records and the summary.

Contract:
    ``SqlResultSink`` stores rows in ``audit_rows`` (ordered by
    ``row_number``) and summaries in ``audit_summaries``.
    ``CsvResultSink`` appends rows to a CSV file (header = ``ALL_COLUMNS``)
    and writes the summary as a JSON document next to it.

Architecture: audit_batch/services.  Imports from audit_batch.domain,
    audit_batch.models, and kernel db/logging.

Invariants enforced:
    DA-5 -- append-only: ``append_rows()`` never rewrites, reorders or
            deduplicates earlier rows; ``prepare()`` is the only reset.
"""

from __future__ import annotations

import csv
import json
from collections.abc import Iterator, Sequence
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from audit_kernel.db.engine import session_scope
from audit_kernel.logging_config import get_logger

from audit_batch.domain.rows import ALL_COLUMNS, record_to_row
from audit_batch.domain.types import (
    AuditSummary,
    OutputRecord,
    PermissionFetchStatus,
)
from audit_batch.models.audit import AuditRowModel, AuditSummaryModel

logger = get_logger("batch.sink")

_READ_CHUNK = 1000


class SqlResultSink:
    """Result sink over the ``audit_rows`` / ``audit_summaries`` tables."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def prepare(self) -> None:
        with session_scope(self._session_factory) as session:
            result = session.execute(delete(AuditRowModel))
            cleared = result.rowcount or 0
        logger.info("sink_prepared", extra={"sink": "sql", "rows_cleared": cleared})

    def append_rows(self, records: Sequence[OutputRecord]) -> None:
        if not records:
            return
        with session_scope(self._session_factory) as session:
            last = session.execute(
                select(func.max(AuditRowModel.row_number))
            ).scalar_one_or_none()
            next_number = (last or 0) + 1
            session.add_all(
                AuditRowModel.from_dto(record, next_number + offset)
                for offset, record in enumerate(records)
            )

    def iter_records(self) -> Iterator[OutputRecord]:
        """Yield rows in append order, reading in keyset-paged chunks."""
        after = 0
        while True:
            with session_scope(self._session_factory) as session:
                models = session.execute(
                    select(AuditRowModel)
                    .where(AuditRowModel.row_number > after)
                    .order_by(AuditRowModel.row_number)
                    .limit(_READ_CHUNK)
                ).scalars().all()
                chunk = [(m.row_number, m.to_dto()) for m in models]
            if not chunk:
                return
            for _, record in chunk:
                yield record
            after = chunk[-1][0]

    def row_count(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(func.count()).select_from(AuditRowModel)
            ).scalar_one()

    def write_summary(self, summary: AuditSummary) -> None:
        with session_scope(self._session_factory) as session:
            existing = session.execute(
                select(AuditSummaryModel).where(
                    AuditSummaryModel.job_id == summary.job_id,
                )
            ).scalar_one_or_none()
            if existing is not None:
                session.delete(existing)
                session.flush()
            session.add(AuditSummaryModel.from_dto(summary))

    def latest_summary(self) -> AuditSummary | None:
        with session_scope(self._session_factory) as session:
            model = session.execute(
                select(AuditSummaryModel)
                .order_by(AuditSummaryModel.completed_at.desc())
                .limit(1)
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None


# =============================================================================
# CSV sink
# =============================================================================


def _parse_timestamp(value: str) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _row_to_record(row: dict[str, str]) -> OutputRecord:
    return OutputRecord(
        file_name=row["File Name"],
        file_id=row["File ID"],
        owner=row["Owner"],
        type=row["Type"],
        mime_type=row["MIME Type"],
        created_time=_parse_timestamp(row["Created Date"]),
        modified_time=_parse_timestamp(row["Modified Date"]),
        size=int(row["Size (bytes)"]) if row["Size (bytes)"] else None,
        url=row["URL"],
        permissions_count=int(row["Permissions Count"]),
        permission_type=row["Permission Type"],
        permission_role=row["Permission Role"],
        permission_email=row["Permission Email"],
        permission_domain=row["Permission Domain"],
        permission_display_name=row["Permission Display Name"],
        permission_fetch_status=PermissionFetchStatus(
            row.get("Permission Fetch Status") or PermissionFetchStatus.OK.value
        ),
    )


class CsvResultSink:
    """Append-only CSV file plus a JSON summary document.

    Non-goals:
        - No locking; one writer at a time is assumed.
    """

    def __init__(self, csv_path: str | Path, summary_path: str | Path | None = None):
        self._csv_path = Path(csv_path)
        self._summary_path = (
            Path(summary_path)
            if summary_path is not None
            else self._csv_path.with_suffix(".summary.json")
        )

    @property
    def csv_path(self) -> Path:
        return self._csv_path

    @property
    def summary_path(self) -> Path:
        return self._summary_path

    def prepare(self) -> None:
        self._csv_path.parent.mkdir(parents=True, exist_ok=True)
        with self._csv_path.open("w", encoding="utf-8", newline="") as f:
            csv.writer(f).writerow(ALL_COLUMNS)
        if self._summary_path.exists():
            self._summary_path.unlink()
        logger.info("sink_prepared", extra={"sink": "csv", "path": str(self._csv_path)})

    def append_rows(self, records: Sequence[OutputRecord]) -> None:
        if not records:
            return
        if not self._csv_path.exists():
            self.prepare()
        with self._csv_path.open("a", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            for record in records:
                writer.writerow(record_to_row(record))

    def iter_records(self) -> Iterator[OutputRecord]:
        if not self._csv_path.exists():
            return
        with self._csv_path.open("r", encoding="utf-8", newline="") as f:
            for row in csv.DictReader(f):
                yield _row_to_record(row)

    def write_summary(self, summary: AuditSummary) -> None:
        payload = asdict(summary)
        payload["job_id"] = str(summary.job_id)
        payload["completed_at"] = summary.completed_at.isoformat()
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)
        self._summary_path.write_text(
            json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8",
        )
