"""
Continuation scheduling -- SQL-backed registrations and the polling runner.

Contract:
    ``SqlContinuationScheduler`` implements ``ContinuationScheduler``:
    one-shot registrations (``schedule_after``) and recurring ones
    (``schedule_cron``), cancelled per handler name.
    ``ContinuationRunner`` polls due registrations on a configurable
    interval and invokes the handler registered under each name.

Architecture: audit_batch/services.  Uses audit_batch.domain.schedule for
    pure cron evaluation and audit_batch.ports.HandlerRegistry for dispatch.

Invariants enforced:
    DA-6 -- at-least-once delivery: a one-shot registration is removed only
            after its handler returns, so a crash mid-handler re-fires it.
    DA-8 -- ``cancel_all(handler)`` never touches other handlers'
            registrations (continuation vs recurring kickoff).
    DA-10 -- graceful shutdown: the runner finishes the current handler
            before honouring stop().
"""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from audit_kernel.db.engine import session_scope
from audit_kernel.domain.clock import Clock, SystemClock
from audit_kernel.exceptions import HandlerNotRegisteredError, SchedulingFailureError
from audit_kernel.logging_config import LogContext, get_logger

from audit_batch.domain.schedule import next_cron_match
from audit_batch.domain.types import ContinuationHandle
from audit_batch.models.audit import ContinuationModel
from audit_batch.ports import HandlerRegistry

logger = get_logger("batch.scheduler")


class SqlContinuationScheduler:
    """Continuation scheduler persisted in the ``continuations`` table.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
        - Does NOT invoke anything itself -- that is the runner's job.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def schedule_after(self, delay_seconds: float, handler: str) -> ContinuationHandle:
        """Register a one-shot firing of ``handler`` after ``delay_seconds``.

        Raises:
            SchedulingFailureError: If the registration cannot be stored.
        """
        fire_at = self._clock.now() + timedelta(seconds=delay_seconds)
        return self._insert(handler, fire_at, cron_expression=None)

    def schedule_cron(self, cron_expression: str, handler: str) -> ContinuationHandle:
        """Register a recurring firing of ``handler``.

        Raises:
            InvalidCronExpressionError: If the expression is malformed.
            SchedulingFailureError: If the registration cannot be stored.
        """
        fire_at = next_cron_match(cron_expression, self._clock.now())
        return self._insert(handler, fire_at, cron_expression=cron_expression)

    def cancel_all(self, handler: str) -> int:
        """Remove every pending registration for ``handler``.

        Raises:
            SchedulingFailureError: If the registrations cannot be removed.
        """
        try:
            with session_scope(self._session_factory) as session:
                result = session.execute(
                    delete(ContinuationModel).where(ContinuationModel.handler == handler)
                )
                removed = result.rowcount or 0
        except SQLAlchemyError as exc:
            raise SchedulingFailureError(handler, str(exc)) from exc
        if removed:
            logger.info(
                "continuations_cancelled",
                extra={"handler": handler, "removed": removed},
            )
        return removed

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def pending(self, handler: str | None = None) -> tuple[ContinuationHandle, ...]:
        with session_scope(self._session_factory) as session:
            stmt = select(ContinuationModel).order_by(ContinuationModel.fire_at)
            if handler is not None:
                stmt = stmt.where(ContinuationModel.handler == handler)
            return tuple(m.to_dto() for m in session.execute(stmt).scalars().all())

    def due(self) -> tuple[ContinuationHandle, ...]:
        """Registrations whose fire time has passed, oldest first."""
        now = self._clock.now()
        with session_scope(self._session_factory) as session:
            models = session.execute(
                select(ContinuationModel)
                .where(ContinuationModel.fire_at <= now)
                .order_by(ContinuationModel.fire_at)
            ).scalars().all()
            return tuple(m.to_dto() for m in models)

    # -------------------------------------------------------------------------
    # Completion (called by the runner after the handler returns)
    # -------------------------------------------------------------------------

    def complete(self, handle: ContinuationHandle) -> None:
        """Retire a one-shot registration or advance a recurring one.

        A registration already removed by ``cancel_all`` (the handler
        usually re-registers itself) is a no-op.
        """
        with session_scope(self._session_factory) as session:
            model = session.get(ContinuationModel, handle.handle_id)
            if model is None:
                return
            if model.cron_expression is None:
                session.delete(model)
                return
            model.fire_count += 1
            model.fire_at = next_cron_match(model.cron_expression, self._clock.now())

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _insert(
        self, handler: str, fire_at, cron_expression: str | None,
    ) -> ContinuationHandle:
        try:
            with session_scope(self._session_factory) as session:
                model = ContinuationModel(
                    handler=handler,
                    fire_at=fire_at,
                    cron_expression=cron_expression,
                    fire_count=0,
                )
                session.add(model)
                session.flush()
                handle = model.to_dto()
        except SQLAlchemyError as exc:
            raise SchedulingFailureError(handler, str(exc)) from exc

        logger.info(
            "continuation_scheduled",
            extra={
                "handler": handler,
                "handle_id": str(handle.handle_id),
                "fire_at": fire_at,
                "cron_expression": cron_expression,
            },
        )
        return handle


class ContinuationRunner:
    """In-process polling loop firing due continuation registrations.

    Contract:
        - ``tick()`` fires every due registration once, in fire-time order.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - Does NOT run handlers in parallel -- one at a time, in this thread.
    """

    def __init__(
        self,
        scheduler: SqlContinuationScheduler,
        registry: HandlerRegistry,
        tick_interval_seconds: float = 30,
    ):
        self._scheduler = scheduler
        self._registry = registry
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Fire due registrations (public for testing).

        Returns the number of registrations whose handler was invoked.
        """
        try:
            due = self._scheduler.due()
        except SQLAlchemyError:
            logger.exception("runner_tick_failed")
            return 0

        fired = 0
        for handle in due:
            if self._stop_event.is_set():
                break
            if self._fire(handle):
                fired += 1
        return fired

    def start(self) -> None:
        """Start the runner in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="continuation-runner",
            daemon=True,
        )
        self._thread.start()
        logger.info("runner_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current handler to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("runner_stopped")

    def run_forever(self) -> None:
        """Run the polling loop in the calling thread until stop()."""
        self._stop_event.clear()
        self._run_loop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("runner_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)

    def _fire(self, handle: ContinuationHandle) -> bool:
        try:
            handler = self._registry.get(handle.handler)
        except HandlerNotRegisteredError:
            logger.exception(
                "continuation_handler_missing",
                extra={"handler": handle.handler, "handle_id": str(handle.handle_id)},
            )
            self._complete(handle)
            return False

        with LogContext.bind(handler=handle.handler):
            logger.info(
                "continuation_fired",
                extra={
                    "handle_id": str(handle.handle_id),
                    "recurring": handle.is_recurring,
                },
            )
            try:
                handler()
            except Exception:
                logger.exception(
                    "continuation_handler_failed",
                    extra={"handle_id": str(handle.handle_id)},
                )
            self._complete(handle)
        return True

    def _complete(self, handle: ContinuationHandle) -> None:
        """Retire ``handle``; on failure it stays registered and fires again."""
        try:
            self._scheduler.complete(handle)
        except Exception:
            logger.exception(
                "continuation_complete_failed",
                extra={"handle_id": str(handle.handle_id)},
            )
