"""
ORM models for audit engine persistence.

Contract:
    CheckpointEntryModel  -- key/value checkpoint store (job state, token counter).
    ContinuationModel     -- pending one-shot and recurring handler registrations.
    AuditStatusModel      -- the single observable status row per context.
    AuditRowModel         -- append-only output rows (SQL result sink).
    AuditSummaryModel     -- aggregate report written at FINALIZING.
    Each DTO-backed model has ``to_dto()`` / ``from_dto()`` round-trip methods.

Architecture: audit_batch/models. Imports from audit_kernel.db.base only
    (plus audit_batch.domain for DTO conversion).

Invariants enforced:
    DA-1 -- ``CheckpointEntryModel.key`` is UNIQUE; values are whole records.
    DA-5 -- ``AuditRowModel`` rows are only ever inserted; ``row_number``
            preserves append order.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from audit_kernel.db.base import TimestampedBase, UUIDString

from audit_batch.domain.types import (
    AuditSummary,
    ContinuationHandle,
    JobStatus,
    OutputRecord,
    PermissionFetchStatus,
    StatusReport,
)


class CheckpointEntryModel(TimestampedBase):
    """One durable key/value entry."""

    __tablename__ = "checkpoint_entries"

    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class ContinuationModel(TimestampedBase):
    """Pending registration on the continuation scheduler."""

    __tablename__ = "continuations"

    __table_args__ = (
        Index("ix_continuations_handler", "handler"),
        Index("ix_continuations_fire_at", "fire_at"),
    )

    handler: Mapped[str] = mapped_column(String(200), nullable=False)
    fire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cron_expression: Mapped[str | None] = mapped_column(String(100), nullable=True)
    fire_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def to_dto(self) -> ContinuationHandle:
        return ContinuationHandle(
            handle_id=self.id,
            handler=self.handler,
            fire_at=self.fire_at,
            cron_expression=self.cron_expression,
        )


class AuditStatusModel(TimestampedBase):
    """Observable status, one row per context."""

    __tablename__ = "audit_status"

    context: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    items_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reported_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def to_dto(self) -> StatusReport:
        return StatusReport(
            status=JobStatus(self.status),
            message=self.message,
            items_processed=self.items_processed,
            items_total=self.items_total,
            updated_at=self.reported_at,
        )


class AuditRowModel(TimestampedBase):
    """One output row (SQL result sink)."""

    __tablename__ = "audit_rows"

    __table_args__ = (
        Index("ix_audit_rows_row_number", "row_number"),
        Index("ix_audit_rows_file_id", "file_id"),
        Index("ix_audit_rows_permission_type", "permission_type"),
    )

    row_number: Mapped[int] = mapped_column(Integer, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_id: Mapped[str] = mapped_column(String(200), nullable=False)
    owner: Mapped[str] = mapped_column(String(320), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(200), nullable=False)
    created_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    modified_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    size: Mapped[int | None] = mapped_column(nullable=True)
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    permissions_count: Mapped[int] = mapped_column(Integer, nullable=False)
    permission_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    permission_role: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    permission_email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    permission_domain: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    permission_display_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    permission_fetch_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PermissionFetchStatus.OK.value,
    )

    def to_dto(self) -> OutputRecord:
        return OutputRecord(
            file_name=self.file_name,
            file_id=self.file_id,
            owner=self.owner,
            type=self.type,
            mime_type=self.mime_type,
            created_time=self.created_time,
            modified_time=self.modified_time,
            size=self.size,
            url=self.url,
            permissions_count=self.permissions_count,
            permission_type=self.permission_type,
            permission_role=self.permission_role,
            permission_email=self.permission_email,
            permission_domain=self.permission_domain,
            permission_display_name=self.permission_display_name,
            permission_fetch_status=PermissionFetchStatus(self.permission_fetch_status),
        )

    @classmethod
    def from_dto(cls, dto: OutputRecord, row_number: int) -> AuditRowModel:
        return cls(
            row_number=row_number,
            file_name=dto.file_name,
            file_id=dto.file_id,
            owner=dto.owner,
            type=dto.type,
            mime_type=dto.mime_type,
            created_time=dto.created_time,
            modified_time=dto.modified_time,
            size=dto.size,
            url=dto.url,
            permissions_count=dto.permissions_count,
            permission_type=dto.permission_type,
            permission_role=dto.permission_role,
            permission_email=dto.permission_email,
            permission_domain=dto.permission_domain,
            permission_display_name=dto.permission_display_name,
            permission_fetch_status=dto.permission_fetch_status.value,
        )


class AuditSummaryModel(TimestampedBase):
    """Aggregate report of a finished job."""

    __tablename__ = "audit_summaries"

    job_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    total_items: Mapped[int] = mapped_column(Integer, nullable=False)
    total_records: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    rows_by_permission_type: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    rows_by_role: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    items_shared_with_anyone: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_shared_externally: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_with_failed_permission_fetch: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
    )

    def to_dto(self) -> AuditSummary:
        return AuditSummary(
            job_id=self.job_id,
            completed_at=self.completed_at,
            total_items=self.total_items,
            total_records=self.total_records,
            duration_seconds=self.duration_seconds,
            rows_by_permission_type=self.rows_by_permission_type or {},
            rows_by_role=self.rows_by_role or {},
            items_shared_with_anyone=self.items_shared_with_anyone,
            items_shared_externally=self.items_shared_externally,
            items_with_failed_permission_fetch=self.items_with_failed_permission_fetch,
        )

    @classmethod
    def from_dto(cls, dto: AuditSummary) -> AuditSummaryModel:
        return cls(
            job_id=dto.job_id,
            completed_at=dto.completed_at,
            total_items=dto.total_items,
            total_records=dto.total_records,
            duration_seconds=dto.duration_seconds,
            rows_by_permission_type=dto.rows_by_permission_type or None,
            rows_by_role=dto.rows_by_role or None,
            items_shared_with_anyone=dto.items_shared_with_anyone,
            items_shared_externally=dto.items_shared_externally,
            items_with_failed_permission_fetch=dto.items_with_failed_permission_fetch,
        )
