"""
Status reporting -- the externally observable job status.

Contract:
    ``SqlStatusReporter`` keeps one ``audit_status`` row per context and
    overwrites it on every report.  ``BestEffortStatusReporter`` wraps any
    ``StatusReporter`` so that a reporting failure is logged and swallowed.

Architecture: audit_batch/services.
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from audit_kernel.db.engine import session_scope
from audit_kernel.domain.clock import Clock, SystemClock
from audit_kernel.logging_config import get_logger

from audit_batch.domain.types import JobStatus, StatusReport
from audit_batch.models.audit import AuditStatusModel
from audit_batch.ports import StatusReporter

logger = get_logger("batch.status")

DEFAULT_CONTEXT = "drive_audit"


class SqlStatusReporter:
    """Status reporter backed by a single row in ``audit_status``."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        context: str = DEFAULT_CONTEXT,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._context = context

    def report(
        self,
        status: JobStatus,
        message: str,
        items_processed: int = 0,
        items_total: int = 0,
    ) -> None:
        with session_scope(self._session_factory) as session:
            model = session.execute(
                select(AuditStatusModel).where(
                    AuditStatusModel.context == self._context,
                )
            ).scalar_one_or_none()
            if model is None:
                model = AuditStatusModel(context=self._context)
                session.add(model)
            model.status = status.value
            model.message = message
            model.items_processed = items_processed
            model.items_total = items_total
            model.reported_at = self._clock.now()

    def current(self) -> StatusReport | None:
        with session_scope(self._session_factory) as session:
            model = session.execute(
                select(AuditStatusModel).where(
                    AuditStatusModel.context == self._context,
                )
            ).scalar_one_or_none()
            return model.to_dto() if model is not None else None


class BestEffortStatusReporter:
    """Never lets a reporting failure abort the job."""

    def __init__(self, inner: StatusReporter):
        self._inner = inner

    @property
    def inner(self) -> StatusReporter:
        return self._inner

    def report(
        self,
        status: JobStatus,
        message: str,
        items_processed: int = 0,
        items_total: int = 0,
    ) -> None:
        try:
            self._inner.report(status, message, items_processed, items_total)
        except Exception:
            logger.warning(
                "status_report_failed",
                exc_info=True,
                extra={"status": status.value, "status_message": message},
            )

    def current(self) -> StatusReport | None:
        try:
            return self._inner.current()
        except Exception:
            logger.warning("status_read_failed", exc_info=True)
            return None
