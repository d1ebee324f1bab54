"""
audit_batch.models -- ORM models for audit engine persistence.

Architecture: audit_batch/models. Imports from audit_kernel.db.base only.
"""

from audit_batch.models.audit import (
    AuditRowModel,
    AuditStatusModel,
    AuditSummaryModel,
    CheckpointEntryModel,
    ContinuationModel,
)

__all__ = [
    "AuditRowModel",
    "AuditStatusModel",
    "AuditSummaryModel",
    "CheckpointEntryModel",
    "ContinuationModel",
]
