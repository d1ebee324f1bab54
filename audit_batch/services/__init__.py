"""
audit_batch.services -- Stateful collaborators and the job controller.

Architecture: audit_batch/services.  Imports from audit_batch.domain,
audit_batch.models, audit_batch.ports and kernel infrastructure.
"""

from audit_batch.services.checkpoint_store import JobStateRepository, SqlCheckpointStore
from audit_batch.services.controller import AuditJobController, ControllerSettings
from audit_batch.services.drive_client import DriveClient
from audit_batch.services.result_sink import CsvResultSink, SqlResultSink
from audit_batch.services.scheduler import ContinuationRunner, SqlContinuationScheduler
from audit_batch.services.status import BestEffortStatusReporter, SqlStatusReporter

__all__ = [
    "AuditJobController",
    "BestEffortStatusReporter",
    "ContinuationRunner",
    "ControllerSettings",
    "CsvResultSink",
    "DriveClient",
    "JobStateRepository",
    "SqlCheckpointStore",
    "SqlContinuationScheduler",
    "SqlResultSink",
    "SqlStatusReporter",
]
