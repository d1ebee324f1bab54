"""
AuditJobController -- the resumable, checkpointed audit state machine.

Contract:
    ``start()``               -- discard any job, create a fresh one, run it.
    ``run_invocation()``      -- continuation handler: resume the stored job.
    ``status()``              -- current status report + stored job, if any.
    ``cancel()``              -- stop the stored job; no-op if there is none.
    ``schedule_recurring()``  -- weekly kickoff of ``start``.
    ``unschedule_recurring()``-- remove the weekly kickoff only.

    Phases: SETUP -> PROCESSING -> FINALIZING -> DONE, with ERROR reachable
    from every non-terminal phase and CANCELLED reachable only via cancel().

Architecture: audit_batch/services.  The only component with business
    logic; every collaborator is injected through audit_batch.ports.

Invariants enforced:
    DA-1 -- the job state record is persisted whole after every page.
    DA-3 -- token fence: before every sink write, persist and terminal
            transition the stored token is compared with ours; a mismatch
            ends the invocation as SUPERSEDED without further writes.
    DA-4 -- rows per item == max(1, permission count) (audit_batch.domain.rows).
    DA-6 -- at most one pending continuation for PROCESS_HANDLER.
    DA-8 -- continuation and recurring registrations are cancelled separately.
    DA-11 -- budget is checked once per page, before the page is fetched.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from uuid import uuid4

from audit_kernel.domain.clock import Clock, SystemClock
from audit_kernel.exceptions import (
    CheckpointCorruptionError,
    PermissionFetchError,
    SchedulingFailureError,
    StaleJobTokenError,
    TransientFetchError,
)
from audit_kernel.logging_config import LogContext, get_logger

from audit_batch.domain.budget import TimeBudget
from audit_batch.domain.rows import expand_item
from audit_batch.domain.schedule import weekly_cron_expression
from audit_batch.domain.summary import summarize
from audit_batch.domain.types import (
    AuditJobState,
    CancelResult,
    ContinuationHandle,
    FetchKind,
    InvocationOutcome,
    InvocationResult,
    JobPhase,
    JobStatus,
    JobStatusView,
    OutputRecord,
)
from audit_batch.ports import (
    PROCESS_HANDLER,
    START_HANDLER,
    ContinuationScheduler,
    DataSourceClient,
    ResultSink,
    StatusReporter,
)
from audit_batch.services.checkpoint_store import JobStateRepository

logger = get_logger("batch.controller")


@dataclass(frozen=True)
class ControllerSettings:
    """Tunables of one controller (mapped from ``RuntimeConfig``)."""

    ceiling_seconds: float = 270.0
    page_size: int = 100
    progress_cadence: int = 50
    max_items_per_invocation: int | None = None
    continuation_delay_seconds: float = 60.0
    continuation_retry_attempts: int = 3
    internal_domains: tuple[str, ...] = ()


class _Invocation:
    """Per-invocation bookkeeping (mutable, never persisted)."""

    def __init__(self, budget: TimeBudget):
        self.budget = budget
        self.started = time.monotonic()
        self.pages = 0
        self.items = 0

    def duration_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


class AuditJobController:
    """Drives one audit job through its phases, one invocation at a time.

    Non-goals:
        - Does NOT retry a failed page -- a page failure ends the job.
        - Does NOT deduplicate rows written twice by overlapping invocations.
        - Does NOT run anything in the background -- the runner fires it.
    """

    def __init__(
        self,
        repository: JobStateRepository,
        scheduler: ContinuationScheduler,
        data_source: DataSourceClient,
        sink: ResultSink,
        status_reporter: StatusReporter,
        clock: Clock | None = None,
        settings: ControllerSettings | None = None,
    ):
        self._repository = repository
        self._scheduler = scheduler
        self._data_source = data_source
        self._sink = sink
        self._status = status_reporter
        self._clock = clock or SystemClock()
        self._settings = settings or ControllerSettings()

    @property
    def settings(self) -> ControllerSettings:
        return self._settings

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def start(self) -> InvocationResult:
        """Reset and run a fresh audit job.

        Any job in flight is discarded: its token is superseded, its state
        deleted and its pending continuation cancelled.
        """
        invocation = self._begin_invocation()
        with LogContext.bind(handler=START_HANDLER, invocation_id=uuid4()):
            token = self._repository.allocate_token()
            try:
                previous = self._repository.load()
            except CheckpointCorruptionError:
                logger.warning("audit_corrupt_state_discarded")
                previous = None
            if previous is not None:
                logger.info(
                    "audit_job_discarded",
                    extra={
                        "previous_job_id": str(previous.job_id),
                        "previous_phase": previous.phase.value,
                        "previous_items_processed": previous.items_processed,
                    },
                )
            self._repository.clear()
            self._scheduler.cancel_all(PROCESS_HANDLER)

            self._status.report(
                JobStatus.RUNNING,
                "Audit started. It continues automatically until every item is processed.",
            )
            state = AuditJobState(
                job_id=uuid4(),
                job_token=token,
                phase=JobPhase.SETUP,
                started_at=self._clock.now(),
            )
            self._repository.save(state)

            with LogContext.bind(job_id=state.job_id, job_token=token):
                logger.info("audit_job_started")
            return self._run(state, invocation)

    def run_invocation(self) -> InvocationResult:
        """Resume the stored job (the continuation handler)."""
        invocation = self._begin_invocation()
        with LogContext.bind(handler=PROCESS_HANDLER, invocation_id=uuid4()):
            try:
                state = self._repository.load()
            except CheckpointCorruptionError as exc:
                return self._fail_corrupt(exc, invocation)

            if state is None:
                logger.info("audit_invocation_no_job")
                return InvocationResult(
                    outcome=InvocationOutcome.NO_JOB,
                    duration_ms=invocation.duration_ms(),
                )
            return self._run(state, invocation)

    def cancel(self) -> CancelResult:
        """Cancel the stored job.  Rows already emitted are kept."""
        corrupt = False
        try:
            state = self._repository.load()
        except CheckpointCorruptionError:
            state = None
            corrupt = True

        if state is None and not corrupt:
            logger.info("audit_cancel_noop")
            return CancelResult(cancelled=False)

        self._repository.allocate_token()
        self._repository.clear()
        removed = self._scheduler.cancel_all(PROCESS_HANDLER)
        items = state.items_processed if state is not None else 0
        self._status.report(
            JobStatus.CANCELLED,
            "Audit was cancelled. Start a new audit at any time.",
            items,
        )
        logger.info(
            "audit_job_cancelled",
            extra={
                "cancelled_job_id": str(state.job_id) if state is not None else None,
                "items_processed": items,
                "continuations_cancelled": removed,
            },
        )
        return CancelResult(
            cancelled=True,
            job_id=state.job_id if state is not None else None,
            continuations_cancelled=removed,
        )

    def status(self) -> JobStatusView:
        try:
            job = self._repository.load()
        except CheckpointCorruptionError:
            logger.warning("audit_status_state_unreadable", exc_info=True)
            job = None
        return JobStatusView(report=self._status.current(), job=job)

    def schedule_recurring(self, day_of_week: str | int, hour: int) -> ContinuationHandle:
        """Replace the weekly kickoff with one on ``day_of_week`` at ``hour``.

        Raises:
            ValueError: If the day or hour is out of range.
            SchedulingFailureError: If the registration cannot be stored.
        """
        expression = weekly_cron_expression(day_of_week, hour)
        self._scheduler.cancel_all(START_HANDLER)
        handle = self._scheduler.schedule_cron(expression, START_HANDLER)
        logger.info(
            "audit_recurring_scheduled",
            extra={"cron_expression": expression, "next_fire_at": handle.fire_at},
        )
        return handle

    def unschedule_recurring(self) -> int:
        """Remove the weekly kickoff.  A running audit is left untouched."""
        removed = self._scheduler.cancel_all(START_HANDLER)
        logger.info("audit_recurring_unscheduled", extra={"removed": removed})
        return removed

    # -------------------------------------------------------------------------
    # Phase machine
    # -------------------------------------------------------------------------

    def _begin_invocation(self) -> _Invocation:
        budget = TimeBudget(self._clock, self._settings.ceiling_seconds)
        budget.start()
        return _Invocation(budget)

    def _run(self, state: AuditJobState, invocation: _Invocation) -> InvocationResult:
        with LogContext.bind(job_id=state.job_id, job_token=state.job_token):
            try:
                if state.phase == JobPhase.SETUP:
                    state = self._setup(state)

                if state.phase == JobPhase.PROCESSING:
                    state, stopped_early = self._process(state, invocation)
                    if stopped_early:
                        return self._checkpoint(state, invocation)

                return self._finalize(state, invocation)
            except StaleJobTokenError as exc:
                logger.info(
                    "audit_invocation_superseded",
                    extra={
                        "expected_token": exc.expected_token,
                        "found_token": exc.found_token,
                    },
                )
                return self._result(
                    InvocationOutcome.SUPERSEDED, state, invocation,
                    error_message=str(exc),
                )
            except Exception as exc:
                return self._fail(state, exc, invocation)

    def _setup(self, state: AuditJobState) -> AuditJobState:
        self._repository.assert_owner(state)
        self._sink.prepare()
        state = replace(state, phase=JobPhase.PROCESSING)
        self._repository.save_fenced(state)
        logger.info("audit_setup_complete")
        return state

    def _process(
        self, state: AuditJobState, invocation: _Invocation,
    ) -> tuple[AuditJobState, bool]:
        """Process pages until the listing ends (False) or we must stop (True)."""
        settings = self._settings
        while True:
            if invocation.budget.exceeded():
                logger.info(
                    "audit_budget_exceeded",
                    extra={
                        "elapsed_seconds": invocation.budget.elapsed_seconds(),
                        "ceiling_seconds": invocation.budget.ceiling_seconds,
                    },
                )
                return state, True
            cap = settings.max_items_per_invocation
            if cap is not None and invocation.items >= cap:
                logger.info("audit_item_cap_reached", extra={"cap": cap})
                return state, True

            outcome = self._data_source.list_page(state.page_cursor, settings.page_size)
            if outcome.kind == FetchKind.ERROR:
                raise TransientFetchError(state.page_cursor, outcome.error or "unknown error")

            page = outcome.page
            records: list[OutputRecord] = []
            failures = 0
            for item in page.items:
                permissions = self._data_source.list_permissions(item.item_id)
                if permissions.kind == FetchKind.ERROR:
                    failures += 1
                    error = PermissionFetchError(
                        item.item_id, permissions.error or "unknown error",
                    )
                    logger.warning(
                        "audit_permission_fetch_failed",
                        extra={"item_id": item.item_id, "error_code": error.code,
                               "reason": error.reason},
                    )
                records.extend(expand_item(item, permissions))

            if records:
                self._repository.assert_owner(state)
                self._sink.append_rows(records)

            previous_items = state.items_processed
            next_cursor = page.next_cursor
            state = replace(
                state,
                phase=JobPhase.PROCESSING if next_cursor else JobPhase.FINALIZING,
                page_cursor=next_cursor,
                items_processed=previous_items + len(page.items),
                records_emitted=state.records_emitted + len(records),
                pages_fetched=state.pages_fetched + 1,
                permission_fetch_failures=state.permission_fetch_failures + failures,
            )
            self._repository.save_fenced(state)
            invocation.pages += 1
            invocation.items += len(page.items)

            logger.info(
                "audit_page_processed",
                extra={
                    "page_number": state.pages_fetched,
                    "page_items": len(page.items),
                    "page_records": len(records),
                    "items_processed": state.items_processed,
                    "has_next": next_cursor is not None,
                },
            )
            self._report_progress(previous_items, state.items_processed)

            if state.phase == JobPhase.FINALIZING:
                return state, False

    def _report_progress(self, before: int, after: int) -> None:
        cadence = self._settings.progress_cadence
        if cadence <= 0 or before // cadence == after // cadence:
            return
        self._status.report(
            JobStatus.RUNNING,
            f"Processing files... {after} files processed",
            after,
        )

    def _checkpoint(
        self, state: AuditJobState, invocation: _Invocation,
    ) -> InvocationResult:
        self._repository.save_fenced(state)
        delay = self._settings.continuation_delay_seconds
        try:
            handle = self._schedule_continuation()
        except SchedulingFailureError as exc:
            logger.error(
                "audit_continuation_unschedulable",
                exc_info=exc,
                extra={"items_processed": state.items_processed},
            )
            self._status.report(
                JobStatus.STALLED,
                "Audit paused: the next batch could not be scheduled. "
                "Run 'resume' to continue from the last checkpoint.",
                state.items_processed,
            )
            return self._result(
                InvocationOutcome.STALLED, state, invocation, error_message=str(exc),
            )

        self._status.report(
            JobStatus.RUNNING,
            f"Audit in progress: {state.items_processed} files processed. "
            f"Continuing automatically in {delay:g} seconds.",
            state.items_processed,
        )
        logger.info(
            "audit_checkpointed",
            extra={
                "items_processed": state.items_processed,
                "pages_this_invocation": invocation.pages,
                "elapsed_seconds": invocation.budget.elapsed_seconds(),
                "continuation_fire_at": handle.fire_at,
            },
        )
        return self._result(
            InvocationOutcome.CHECKPOINTED, state, invocation, continuation=handle,
        )

    def _schedule_continuation(self) -> ContinuationHandle:
        """Replace the pending continuation, retrying registration failures.

        Raises:
            SchedulingFailureError: If every attempt failed.
        """
        attempts = max(1, self._settings.continuation_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                self._scheduler.cancel_all(PROCESS_HANDLER)
                return self._scheduler.schedule_after(
                    self._settings.continuation_delay_seconds, PROCESS_HANDLER,
                )
            except SchedulingFailureError:
                if attempt == attempts:
                    raise
                logger.warning(
                    "continuation_schedule_retry",
                    exc_info=True,
                    extra={"attempt": attempt, "max_attempts": attempts},
                )
        raise AssertionError("unreachable")

    def _finalize(
        self, state: AuditJobState, invocation: _Invocation,
    ) -> InvocationResult:
        self._repository.assert_owner(state)
        completed_at = self._clock.now()
        summary = summarize(
            state,
            self._sink.iter_records(),
            completed_at,
            self._settings.internal_domains,
        )
        self._sink.write_summary(summary)

        self._repository.assert_owner(state)
        self._repository.clear()
        self._scheduler.cancel_all(PROCESS_HANDLER)
        self._status.report(
            JobStatus.DONE,
            f"Audit completed successfully! Files audited: {state.items_processed}, "
            f"Permission entries: {state.records_emitted}, "
            f"Duration: {round(summary.duration_seconds)} seconds",
            state.items_processed,
            state.items_processed,
        )
        logger.info(
            "audit_job_completed",
            extra={
                "items_processed": state.items_processed,
                "records_emitted": state.records_emitted,
                "pages_fetched": state.pages_fetched,
                "permission_fetch_failures": state.permission_fetch_failures,
                "duration_seconds": summary.duration_seconds,
            },
        )
        return self._result(
            InvocationOutcome.COMPLETED, replace(state, phase=JobPhase.DONE), invocation,
        )

    # -------------------------------------------------------------------------
    # Error transitions
    # -------------------------------------------------------------------------

    def _fail(
        self, state: AuditJobState, exc: Exception, invocation: _Invocation,
    ) -> InvocationResult:
        if not self._repository.clear_if_owner(state):
            logger.warning(
                "audit_failure_after_supersede",
                exc_info=exc,
                extra={"phase": state.phase.value},
            )
            return self._result(
                InvocationOutcome.SUPERSEDED, state, invocation, error_message=str(exc),
            )

        self._scheduler.cancel_all(PROCESS_HANDLER)
        self._status.report(
            JobStatus.ERROR,
            f"An error occurred during the audit: {exc}",
            state.items_processed,
        )
        logger.error(
            "audit_job_failed",
            exc_info=exc,
            extra={"phase": state.phase.value, "items_processed": state.items_processed},
        )
        return self._result(
            InvocationOutcome.FAILED, replace(state, phase=JobPhase.ERROR), invocation,
            error_message=str(exc),
        )

    def _fail_corrupt(
        self, exc: CheckpointCorruptionError, invocation: _Invocation,
    ) -> InvocationResult:
        self._repository.clear()
        self._scheduler.cancel_all(PROCESS_HANDLER)
        self._status.report(
            JobStatus.ERROR,
            f"An error occurred during the audit: {exc}. Start a new audit.",
        )
        logger.error("audit_job_failed", exc_info=exc, extra={"phase": "unknown"})
        return InvocationResult(
            outcome=InvocationOutcome.FAILED,
            phase=JobPhase.ERROR,
            duration_ms=invocation.duration_ms(),
            error_message=str(exc),
        )

    def _result(
        self,
        outcome: InvocationOutcome,
        state: AuditJobState,
        invocation: _Invocation,
        error_message: str | None = None,
        continuation: ContinuationHandle | None = None,
    ) -> InvocationResult:
        return InvocationResult(
            outcome=outcome,
            job_id=state.job_id,
            phase=state.phase,
            items_processed=state.items_processed,
            records_emitted=state.records_emitted,
            pages_this_invocation=invocation.pages,
            duration_ms=invocation.duration_ms(),
            error_message=error_message,
            continuation=continuation,
        )
