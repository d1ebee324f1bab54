"""
audit_batch.domain -- Pure types and functions for the audit engine.

ZERO I/O.  All types are frozen dataclasses.
"""

from audit_batch.domain.types import (
    AuditJobState,
    AuditSummary,
    CancelResult,
    ContinuationHandle,
    DriveItem,
    FetchKind,
    InvocationOutcome,
    InvocationResult,
    ItemPage,
    JobPhase,
    JobStatus,
    JobStatusView,
    OutputRecord,
    PageOutcome,
    PermissionEntry,
    PermissionFetchStatus,
    PermissionOutcome,
    StatusReport,
)

__all__ = [
    "AuditJobState",
    "AuditSummary",
    "CancelResult",
    "ContinuationHandle",
    "DriveItem",
    "FetchKind",
    "InvocationOutcome",
    "InvocationResult",
    "ItemPage",
    "JobPhase",
    "JobStatus",
    "JobStatusView",
    "OutputRecord",
    "PageOutcome",
    "PermissionEntry",
    "PermissionFetchStatus",
    "PermissionOutcome",
    "StatusReport",
]
