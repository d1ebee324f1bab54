"""
audit_batch.domain.types -- Pure frozen dataclasses for the audit engine.

ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  ``AuditJobState`` is mutated only by building a new
instance (``dataclasses.replace``) inside the job controller.

Invariants enforced:
    - DA-1 (single job): AuditJobState carries job_token; at most one
      state record exists and it is always read and written whole.
    - DA-4 (denormalization): OutputRecord is one (item, permission) pair,
      or one item with empty permission fields.
    - DA-7 (tagged outcomes): external calls return PageOutcome /
      PermissionOutcome instead of raising for expected failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID


# =============================================================================
# Phase / status enums
# =============================================================================


class JobPhase(str, Enum):
    """Phase of the job controller state machine."""

    SETUP = "setup"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES: frozenset[JobPhase] = frozenset({
    JobPhase.DONE,
    JobPhase.ERROR,
    JobPhase.CANCELLED,
})

# Only these phases may be persisted; terminal phases delete the record.
RESUMABLE_PHASES: frozenset[JobPhase] = frozenset({
    JobPhase.SETUP,
    JobPhase.PROCESSING,
    JobPhase.FINALIZING,
})


class JobStatus(str, Enum):
    """Externally reported status (what an observer sees)."""

    RUNNING = "RUNNING"
    DONE = "DONE"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"
    STALLED = "STALLED"  # Continuation could not be registered


class FetchKind(str, Enum):
    """Tag on every data source outcome."""

    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"


class PermissionFetchStatus(str, Enum):
    """Distinguishes 'no permissions' from 'permission fetch failed'."""

    OK = "ok"
    FAILED = "failed"


class InvocationOutcome(str, Enum):
    """How one controller invocation ended."""

    CHECKPOINTED = "checkpointed"  # Budget hit, continuation registered
    COMPLETED = "completed"  # Reached DONE
    FAILED = "failed"  # Reached ERROR
    SUPERSEDED = "superseded"  # Job cancelled / restarted underneath us
    STALLED = "stalled"  # State kept, continuation registration failed
    NO_JOB = "no_job"  # Fired with no persisted state


# =============================================================================
# Job state
# =============================================================================


@dataclass(frozen=True)
class AuditJobState:
    """The single unit of durable progress.

    ``job_token`` is allocated from a monotonically increasing counter at
    ``start``; every persist compares it against the stored record so an
    invocation that was cancelled or restarted underneath cannot write.

    ``page_cursor`` is opaque and passed back to the data source verbatim.
    None means "start of listing" while ``pages_fetched == 0``.
    """

    job_id: UUID
    job_token: int
    phase: JobPhase
    started_at: datetime
    page_cursor: str | None = None
    items_processed: int = 0
    records_emitted: int = 0
    pages_fetched: int = 0
    permission_fetch_failures: int = 0


# =============================================================================
# Data source DTOs
# =============================================================================


@dataclass(frozen=True)
class PermissionEntry:
    """One grant on an item."""

    permission_id: str
    type: str  # user, group, domain, anyone
    role: str  # owner, organizer, fileOrganizer, writer, commenter, reader
    email_address: str = ""
    domain: str = ""
    display_name: str = ""


@dataclass(frozen=True)
class DriveItem:
    """One file or folder of the audited collection."""

    item_id: str
    name: str
    mime_type: str
    owner_email: str = "Unknown"
    created_time: datetime | None = None
    modified_time: datetime | None = None
    size: int | None = None
    web_view_link: str = ""


@dataclass(frozen=True)
class ItemPage:
    """One page of the listing.  ``next_cursor`` None means exhausted."""

    items: tuple[DriveItem, ...] = ()
    next_cursor: str | None = None


@dataclass(frozen=True)
class PageOutcome:
    """Tagged result of ``DataSourceClient.list_page``."""

    kind: FetchKind
    page: ItemPage = field(default_factory=ItemPage)
    error: str | None = None

    @classmethod
    def of(cls, page: ItemPage) -> PageOutcome:
        kind = FetchKind.SUCCESS if page.items else FetchKind.EMPTY
        return cls(kind=kind, page=page)

    @classmethod
    def failed(cls, error: str) -> PageOutcome:
        return cls(kind=FetchKind.ERROR, error=error)


@dataclass(frozen=True)
class PermissionOutcome:
    """Tagged result of ``DataSourceClient.list_permissions``."""

    kind: FetchKind
    permissions: tuple[PermissionEntry, ...] = ()
    error: str | None = None

    @classmethod
    def of(cls, permissions: tuple[PermissionEntry, ...]) -> PermissionOutcome:
        kind = FetchKind.SUCCESS if permissions else FetchKind.EMPTY
        return cls(kind=kind, permissions=permissions)

    @classmethod
    def failed(cls, error: str) -> PermissionOutcome:
        return cls(kind=FetchKind.ERROR, error=error)


# =============================================================================
# Output DTOs
# =============================================================================


@dataclass(frozen=True)
class OutputRecord:
    """Flattened Item x PermissionEntry row.  Immutable once written."""

    file_name: str
    file_id: str
    owner: str
    type: str
    mime_type: str
    created_time: datetime | None
    modified_time: datetime | None
    size: int | None
    url: str
    permissions_count: int
    permission_type: str = ""
    permission_role: str = ""
    permission_email: str = ""
    permission_domain: str = ""
    permission_display_name: str = ""
    permission_fetch_status: PermissionFetchStatus = PermissionFetchStatus.OK


@dataclass(frozen=True)
class AuditSummary:
    """Aggregate report computed during FINALIZING."""

    job_id: UUID
    completed_at: datetime
    total_items: int
    total_records: int
    duration_seconds: float
    rows_by_permission_type: dict[str, int] = field(default_factory=dict)
    rows_by_role: dict[str, int] = field(default_factory=dict)
    items_shared_with_anyone: int = 0
    items_shared_externally: int = 0
    items_with_failed_permission_fetch: int = 0


# =============================================================================
# Status / scheduling DTOs
# =============================================================================


@dataclass(frozen=True)
class StatusReport:
    """What an observer sees at any moment."""

    status: JobStatus
    message: str
    items_processed: int = 0
    items_total: int = 0
    updated_at: datetime | None = None

    @property
    def progress_percent(self) -> int | None:
        if self.items_total <= 0:
            return None
        return round(self.items_processed / self.items_total * 100)


@dataclass(frozen=True)
class ContinuationHandle:
    """A pending registration on the continuation scheduler."""

    handle_id: UUID
    handler: str
    fire_at: datetime
    cron_expression: str | None = None

    @property
    def is_recurring(self) -> bool:
        return self.cron_expression is not None


# =============================================================================
# Controller results
# =============================================================================


@dataclass(frozen=True)
class InvocationResult:
    """Immutable result of one controller invocation."""

    outcome: InvocationOutcome
    job_id: UUID | None = None
    phase: JobPhase | None = None
    items_processed: int = 0
    records_emitted: int = 0
    pages_this_invocation: int = 0
    duration_ms: int = 0
    error_message: str | None = None
    continuation: ContinuationHandle | None = None


@dataclass(frozen=True)
class CancelResult:
    """Result of the cancel operation.  ``cancelled`` False means no-op."""

    cancelled: bool
    job_id: UUID | None = None
    continuations_cancelled: int = 0


@dataclass(frozen=True)
class JobStatusView:
    """Answer to the ``status`` command."""

    report: StatusReport | None
    job: AuditJobState | None = None

    @property
    def has_active_job(self) -> bool:
        return self.job is not None
