"""
Tests for audit_batch.services.controller -- the audit job state machine.

Covers the four reference scenarios (full run, checkpoint mid-listing and
resume, permission fetch failure, cancellation), idempotent resume, budget
respect, terminal cleanup, the job-token fence, the at-least-once overlap
caveat, checkpoint corruption, scheduling failure and the independence of
continuation and recurring registrations.

Uses in-memory SQLite with real ORM models and a fake Drive listing.
"""

from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

import audit_batch.services.scheduler as scheduler_module

from audit_batch.domain.checkpoint import STATE_KEY
from audit_batch.domain.rows import expand_item
from audit_batch.domain.types import (
    AuditJobState,
    InvocationOutcome,
    JobPhase,
    JobStatus,
    PermissionFetchStatus,
    PermissionOutcome,
)
from audit_batch.ports import PROCESS_HANDLER, START_HANDLER
from audit_batch.services.controller import AuditJobController, ControllerSettings

from tests.batch.fakes import (
    FailingScheduler,
    FakeDriveClient,
    RecordingStatusReporter,
    make_item,
    make_permission,
)


def _run_to_completion(controller, first, max_invocations: int = 100):
    """Keep resuming until the job leaves PROCESSING."""
    results = [first]
    while results[-1].outcome == InvocationOutcome.CHECKPOINTED:
        assert len(results) < max_invocations, "job never completed"
        results.append(controller.run_invocation())
    return results


def _assert_terminal_cleanup(repository, scheduler):
    assert repository.load() is None
    assert scheduler.pending(PROCESS_HANDLER) == ()


# =============================================================================
# Reference scenarios
# =============================================================================


class TestScenarioFullRun:
    """1,200 items, page size 100, no budget pressure."""

    def test_twelve_pages_in_one_invocation(
        self, make_controller, repository, scheduler, sink, status_reporter,
    ):
        drive = FakeDriveClient.with_items(1200, page_size=100)
        controller = make_controller(drive, page_size=100)

        result = controller.start()

        assert result.outcome == InvocationOutcome.COMPLETED
        assert result.phase == JobPhase.DONE
        assert len(drive.list_page_calls) == 12
        assert drive.list_page_calls[0] is None
        assert drive.list_page_calls[1:] == [f"page-{i}" for i in range(1, 12)]
        assert result.items_processed == 1200
        assert result.records_emitted == 1200
        assert result.pages_this_invocation == 12
        _assert_terminal_cleanup(repository, scheduler)

    def test_done_status_and_summary(self, make_controller, sink, status_reporter):
        drive = FakeDriveClient.with_items(1200, page_size=100)
        make_controller(drive).start()

        report = status_reporter.current()
        assert report.status == JobStatus.DONE
        assert report.items_processed == 1200
        assert report.items_total == 1200
        assert report.progress_percent == 100
        assert "Files audited: 1200" in report.message

        summary = sink.latest_summary()
        assert summary.total_items == 1200
        assert summary.total_records == 1200
        assert summary.rows_by_permission_type == {"user": 1200}
        assert sink.row_count() == 1200


class TestScenarioCheckpointAndResume:
    """Budget ceiling reached mid-page-7 of 12."""

    def _controller(self, make_controller, clock):
        # 100 items x 0.5s = 50s per page; after 6 pages elapsed is 300s,
        # so page 7 starts under the 320s ceiling and ends at 350s.
        drive = FakeDriveClient.with_items(
            1200, page_size=100, clock=clock, seconds_per_item=0.5,
        )
        return drive, make_controller(drive, ceiling_seconds=320)

    def test_checkpoint_points_at_page_eight(
        self, make_controller, clock, repository, scheduler, status_reporter,
    ):
        drive, controller = self._controller(make_controller, clock)

        result = controller.start()

        assert result.outcome == InvocationOutcome.CHECKPOINTED
        assert result.items_processed == 700
        assert result.pages_this_invocation == 7
        assert len(drive.list_page_calls) == 7

        state = repository.load()
        assert state.phase == JobPhase.PROCESSING
        assert state.page_cursor == "page-7"
        assert state.items_processed == 700
        assert state.pages_fetched == 7

        pending = scheduler.pending(PROCESS_HANDLER)
        assert len(pending) == 1
        assert result.continuation.handle_id == pending[0].handle_id

        report = status_reporter.current()
        assert report.status == JobStatus.RUNNING
        assert report.items_processed == 700

    def test_second_invocation_resumes_at_page_eight(
        self, make_controller, clock, repository, scheduler, sink,
    ):
        drive, controller = self._controller(make_controller, clock)
        controller.start()

        result = controller.run_invocation()

        assert result.outcome == InvocationOutcome.COMPLETED
        assert result.items_processed == 1200
        assert drive.list_page_calls[7] == "page-7"
        assert len(drive.list_page_calls) == 12
        assert sink.row_count() == 1200
        _assert_terminal_cleanup(repository, scheduler)


class TestScenarioPermissionFailure:
    """Permissions [2, fail, 1] -> 4 rows, job still completes."""

    def test_failed_item_yields_one_marked_row(
        self, make_controller, repository, scheduler, sink,
    ):
        items = [make_item(0), make_item(1), make_item(2)]
        drive = FakeDriveClient(
            [items],
            permissions={
                items[0].item_id: (make_permission(0), make_permission(1, role="writer")),
                items[2].item_id: (make_permission(2, type="anyone"),),
            },
            failing_items={items[1].item_id},
        )
        controller = make_controller(drive)

        result = controller.start()

        assert result.outcome == InvocationOutcome.COMPLETED
        rows = list(sink.iter_records())
        assert len(rows) == 4
        assert [r.file_id for r in rows] == [
            items[0].item_id, items[0].item_id, items[1].item_id, items[2].item_id,
        ]
        failed = rows[2]
        assert failed.permission_fetch_status == PermissionFetchStatus.FAILED
        assert failed.permissions_count == 0
        assert failed.permission_type == ""
        assert all(
            r.permission_fetch_status == PermissionFetchStatus.OK
            for r in (rows[0], rows[1], rows[3])
        )

        summary = sink.latest_summary()
        assert summary.items_with_failed_permission_fetch == 1
        assert summary.items_shared_with_anyone == 1
        _assert_terminal_cleanup(repository, scheduler)

    def test_failure_is_logged_with_code(self, make_controller, captured_logs):
        items = [make_item(0)]
        drive = FakeDriveClient([items], failing_items={items[0].item_id})
        make_controller(drive).start()

        logs = captured_logs()
        failure = next(r for r in logs if r["message"] == "audit_permission_fetch_failed")
        assert failure["error_code"] == "PERMISSION_FETCH_ERROR"
        assert failure["item_id"] == items[0].item_id
        assert failure["level"] == "WARNING"


class TestScenarioCancel:
    """cancel() with and without a stored job."""

    def test_cancel_checkpointed_job(
        self, make_controller, clock, repository, scheduler, status_reporter,
    ):
        drive = FakeDriveClient.with_items(
            1200, page_size=100, clock=clock, seconds_per_item=0.5,
        )
        controller = make_controller(drive, ceiling_seconds=320)
        started = controller.start()
        assert started.outcome == InvocationOutcome.CHECKPOINTED

        result = controller.cancel()

        assert result.cancelled is True
        assert result.job_id == started.job_id
        assert result.continuations_cancelled == 1
        _assert_terminal_cleanup(repository, scheduler)
        report = status_reporter.current()
        assert report.status == JobStatus.CANCELLED
        assert report.items_processed == 700

    def test_second_cancel_is_a_noop(
        self, make_controller, clock, status_reporter, captured_logs,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.start()
        controller.cancel()

        result = controller.cancel()

        assert result.cancelled is False
        assert result.job_id is None
        assert status_reporter.current().status == JobStatus.CANCELLED
        assert any(r["message"] == "audit_cancel_noop" for r in captured_logs())

    def test_cancel_keeps_rows_already_emitted(
        self, make_controller, clock, sink,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.start()

        controller.cancel()

        assert sink.row_count() == 100

    def test_resume_after_cancel_finds_no_job(self, make_controller, clock):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.start()
        controller.cancel()

        assert controller.run_invocation().outcome == InvocationOutcome.NO_JOB


# =============================================================================
# Testable properties
# =============================================================================


class TestIdempotentResume:
    """Many short invocations produce the same output as one long one."""

    def test_one_page_per_invocation_matches_single_pass(
        self, make_controller, clock, repository, sink,
    ):
        # 10 items x 1s = 10s per page against a 5s ceiling: one page each.
        drive = FakeDriveClient.with_items(
            55, page_size=10, clock=clock, seconds_per_item=1,
            default_permission_count=2,
        )
        controller = make_controller(drive, ceiling_seconds=5, page_size=10)

        results = _run_to_completion(controller, controller.start())

        assert [r.outcome for r in results[:-1]] == [InvocationOutcome.CHECKPOINTED] * 5
        assert results[-1].outcome == InvocationOutcome.COMPLETED
        assert all(r.pages_this_invocation == 1 for r in results)
        assert results[-1].items_processed == 55
        assert results[-1].records_emitted == 110

        expected = [
            record
            for page in drive.pages
            for item in page
            for record in expand_item(
                item,
                PermissionOutcome.of(tuple(make_permission(i) for i in range(2))),
            )
        ]
        assert list(sink.iter_records()) == expected
        assert repository.load() is None


class TestBudgetRespect:
    """An unbounded listing is cut off within one page of the ceiling."""

    def test_stops_within_one_page_of_ceiling(self, make_controller, clock, repository):
        # 1,000 pages of 10 items, 10s per page, ceiling 95s.
        drive = FakeDriveClient.with_items(
            10_000, page_size=10, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=95, page_size=10)
        started = clock.now()

        result = controller.start()

        elapsed = (clock.now() - started).total_seconds()
        assert result.outcome == InvocationOutcome.CHECKPOINTED
        assert result.pages_this_invocation == 10
        assert elapsed > 95
        assert elapsed <= 95 + 10
        assert repository.load().page_cursor == "page-10"

    def test_item_cap_stops_invocation(self, make_controller, repository):
        drive = FakeDriveClient.with_items(1200, page_size=100)
        controller = make_controller(drive, max_items_per_invocation=250)

        result = controller.start()

        assert result.outcome == InvocationOutcome.CHECKPOINTED
        assert result.pages_this_invocation == 3
        assert repository.load().items_processed == 300

    def test_finalizing_is_not_interrupted_by_budget(
        self, make_controller, clock, sink,
    ):
        # The last page overruns the ceiling; finalization still completes.
        drive = FakeDriveClient.with_items(
            20, page_size=10, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=15, page_size=10)

        result = controller.start()

        assert result.outcome == InvocationOutcome.COMPLETED
        assert sink.latest_summary().total_items == 20


class TestTerminalCleanup:
    """DONE, ERROR and CANCELLED all leave no state and no continuation."""

    def test_done(self, make_controller, repository, scheduler):
        make_controller(FakeDriveClient.with_items(10, page_size=5)).start()
        _assert_terminal_cleanup(repository, scheduler)

    def test_error_after_checkpoint(
        self, make_controller, clock, repository, scheduler, status_reporter, sink,
    ):
        drive = FakeDriveClient.with_items(
            400, page_size=100, clock=clock, seconds_per_item=1,
            failing_pages={2},
        )
        controller = make_controller(drive, ceiling_seconds=150)
        assert controller.start().outcome == InvocationOutcome.CHECKPOINTED
        assert len(scheduler.pending(PROCESS_HANDLER)) == 1

        result = controller.run_invocation()

        assert result.outcome == InvocationOutcome.FAILED
        assert result.phase == JobPhase.ERROR
        assert "HTTP 500 at page 2" in result.error_message
        _assert_terminal_cleanup(repository, scheduler)
        report = status_reporter.current()
        assert report.status == JobStatus.ERROR
        assert "HTTP 500 at page 2" in report.message
        assert sink.row_count() == 200

    def test_cancelled(self, make_controller, clock, repository, scheduler):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.start()
        controller.cancel()
        _assert_terminal_cleanup(repository, scheduler)


# =============================================================================
# Edge cases of the listing
# =============================================================================


class TestListingEdgeCases:

    def test_empty_drive_completes(self, make_controller, sink, status_reporter):
        drive = FakeDriveClient([[]])

        result = make_controller(drive).start()

        assert result.outcome == InvocationOutcome.COMPLETED
        assert result.items_processed == 0
        assert drive.list_page_calls == [None]
        assert sink.row_count() == 0
        assert sink.latest_summary().total_items == 0
        assert status_reporter.current().status == JobStatus.DONE

    def test_empty_page_with_cursor_advances(self, make_controller, sink):
        drive = FakeDriveClient([[make_item(0)], [], [make_item(2)]])

        result = make_controller(drive).start()

        assert result.outcome == InvocationOutcome.COMPLETED
        assert drive.list_page_calls == [None, "page-1", "page-2"]
        assert result.items_processed == 2
        assert [r.file_id for r in sink.iter_records()] == ["file-00000", "file-00002"]

    def test_item_without_permissions_yields_one_row(self, make_controller, sink):
        drive = FakeDriveClient([[make_item(0)]], default_permission_count=0)

        make_controller(drive).start()

        rows = list(sink.iter_records())
        assert len(rows) == 1
        assert rows[0].permissions_count == 0
        assert rows[0].permission_fetch_status == PermissionFetchStatus.OK

    def test_first_page_failure_is_fatal(
        self, make_controller, repository, scheduler, status_reporter,
    ):
        drive = FakeDriveClient.with_items(100, failing_pages={0})

        result = make_controller(drive).start()

        assert result.outcome == InvocationOutcome.FAILED
        assert len(drive.list_page_calls) == 1
        assert status_reporter.current().status == JobStatus.ERROR
        _assert_terminal_cleanup(repository, scheduler)

    def test_no_job_invocation(self, make_controller, captured_logs):
        result = make_controller(FakeDriveClient([[]])).run_invocation()

        assert result.outcome == InvocationOutcome.NO_JOB
        assert result.job_id is None
        assert any(r["message"] == "audit_invocation_no_job" for r in captured_logs())


# =============================================================================
# Status reporting
# =============================================================================


class TestStatusReporting:

    def _controller(self, repository, scheduler, sink, clock, drive, reporter, **settings):
        return AuditJobController(
            repository=repository,
            scheduler=scheduler,
            data_source=drive,
            sink=sink,
            status_reporter=reporter,
            clock=clock,
            settings=ControllerSettings(**settings),
        )

    def test_progress_reported_at_cadence(self, repository, scheduler, sink, clock):
        reporter = RecordingStatusReporter()
        drive = FakeDriveClient.with_items(120, page_size=30)
        controller = self._controller(
            repository, scheduler, sink, clock, drive, reporter, progress_cadence=50,
        )

        controller.start()

        assert [(r.status, r.items_processed) for r in reporter.reports] == [
            (JobStatus.RUNNING, 0),
            (JobStatus.RUNNING, 60),
            (JobStatus.RUNNING, 120),
            (JobStatus.DONE, 120),
        ]
        assert reporter.reports[0].message.startswith("Audit started")

    def test_status_view_mid_flight(self, make_controller, clock):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.start()

        view = controller.status()

        assert view.has_active_job
        assert view.job.items_processed == 100
        assert view.report.status == JobStatus.RUNNING
        assert "Continuing automatically in 60 seconds" in view.report.message

    def test_status_before_any_audit(self, make_controller):
        view = make_controller(FakeDriveClient([[]])).status()
        assert view.report is None
        assert not view.has_active_job


# =============================================================================
# Job-token fence
# =============================================================================


class TestTokenFence:

    def test_cancel_during_invocation_supersedes_it(
        self, make_controller, repository, scheduler, sink, status_reporter,
    ):
        items = [make_item(i) for i in range(3)]
        drive = FakeDriveClient([items, [make_item(3)]])
        controller = make_controller(drive)
        drive.before_permissions[items[0].item_id] = controller.cancel

        result = controller.start()

        assert result.outcome == InvocationOutcome.SUPERSEDED
        assert sink.row_count() == 0
        assert status_reporter.current().status == JobStatus.CANCELLED
        _assert_terminal_cleanup(repository, scheduler)
        assert drive.list_page_calls == [None]

    def test_restart_during_invocation_leaves_new_job_alone(
        self, make_controller, sink, status_reporter, captured_logs,
    ):
        items = [make_item(i) for i in range(3)]
        drive = FakeDriveClient([items])
        controller = make_controller(drive)
        nested = []
        drive.before_permissions[items[1].item_id] = (
            lambda: nested.append(controller.start())
        )

        result = controller.start()

        assert nested[0].outcome == InvocationOutcome.COMPLETED
        assert result.outcome == InvocationOutcome.SUPERSEDED
        assert result.job_id != nested[0].job_id
        assert sink.row_count() == 3
        assert sink.latest_summary().job_id == nested[0].job_id
        assert status_reporter.current().status == JobStatus.DONE
        assert any(
            r["message"] == "audit_invocation_superseded" for r in captured_logs()
        )

    def test_tokens_increase_across_jobs(self, make_controller, repository, clock):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.start()
        first = repository.load().job_token
        controller.cancel()
        controller.start()
        second = repository.load().job_token

        assert second > first + 1  # cancel consumed one token too


class TestOverlappingInvocations:
    """At-least-once delivery: two invocations of the same job may overlap.

    Both hold the same token, so the fence does not separate them; the
    page they share is written twice while the counters stay correct.
    """

    def test_overlap_duplicates_one_page(self, make_controller, clock, repository, sink):
        drive = FakeDriveClient.with_items(
            50, page_size=10, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=5, page_size=10)
        assert controller.start().outcome == InvocationOutcome.CHECKPOINTED

        overlapping = []
        drive.before_page["page-1"] = lambda: overlapping.append(controller.run_invocation())
        first = controller.run_invocation()
        results = _run_to_completion(controller, first)

        assert overlapping[0].outcome == InvocationOutcome.CHECKPOINTED
        assert results[-1].outcome == InvocationOutcome.COMPLETED
        assert results[-1].items_processed == 50

        file_ids = [r.file_id for r in sink.iter_records()]
        assert len(file_ids) == 60
        page_one = [item.item_id for item in drive.pages[1]]
        assert all(file_ids.count(item_id) == 2 for item_id in page_one)
        assert sink.latest_summary().total_items == 50
        assert repository.load() is None


# =============================================================================
# Checkpoint corruption
# =============================================================================


class TestCheckpointCorruption:

    def test_corrupt_state_forces_error(
        self, make_controller, checkpoint_store, repository, scheduler, status_reporter,
    ):
        scheduler.schedule_after(60, PROCESS_HANDLER)
        checkpoint_store.set(STATE_KEY, "{not json")

        result = make_controller(FakeDriveClient([[]])).run_invocation()

        assert result.outcome == InvocationOutcome.FAILED
        assert result.phase == JobPhase.ERROR
        assert "corrupt" in result.error_message
        _assert_terminal_cleanup(repository, scheduler)
        assert status_reporter.current().status == JobStatus.ERROR

    def test_start_recovers_from_corrupt_state(
        self, make_controller, checkpoint_store,
    ):
        checkpoint_store.set(STATE_KEY, '{"version": 99}')

        result = make_controller(FakeDriveClient.with_items(5)).start()

        assert result.outcome == InvocationOutcome.COMPLETED

    def test_cancel_clears_corrupt_state(self, make_controller, checkpoint_store, repository):
        checkpoint_store.set(STATE_KEY, "garbage")

        result = make_controller(FakeDriveClient([[]])).cancel()

        assert result.cancelled is True
        assert checkpoint_store.get(STATE_KEY) is None


# =============================================================================
# Scheduling failure
# =============================================================================


class TestSchedulingFailure:

    def test_exhausted_retries_stall_the_job(
        self, make_controller, clock, scheduler, repository, status_reporter, captured_logs,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        failing = FailingScheduler(scheduler, failures=3)
        controller = make_controller(
            drive, scheduler_override=failing,
            ceiling_seconds=50, continuation_retry_attempts=3,
        )

        result = controller.start()

        assert result.outcome == InvocationOutcome.STALLED
        assert failing.attempts == 3
        state = repository.load()
        assert state is not None
        assert state.page_cursor == "page-1"
        assert scheduler.pending(PROCESS_HANDLER) == ()
        report = status_reporter.current()
        assert report.status == JobStatus.STALLED
        assert "resume" in report.message

        logs = captured_logs()
        stalled = next(r for r in logs if r["message"] == "audit_continuation_unschedulable")
        assert stalled["level"] == "ERROR"
        assert stalled["exc_code"] == "SCHEDULING_FAILURE"

    def test_manual_resume_after_stall(self, make_controller, clock, scheduler):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        failing = FailingScheduler(scheduler, failures=3)
        stalled = make_controller(
            drive, scheduler_override=failing, ceiling_seconds=50,
        )
        stalled.start()

        healthy = make_controller(drive, ceiling_seconds=500)
        result = healthy.run_invocation()

        assert result.outcome == InvocationOutcome.COMPLETED
        assert result.items_processed == 300

    def test_transient_failure_is_retried(self, make_controller, clock, scheduler):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        failing = FailingScheduler(scheduler, failures=2)
        controller = make_controller(
            drive, scheduler_override=failing,
            ceiling_seconds=50, continuation_retry_attempts=3,
        )

        result = controller.start()

        assert result.outcome == InvocationOutcome.CHECKPOINTED
        assert failing.attempts == 3
        assert len(scheduler.pending(PROCESS_HANDLER)) == 1

    @pytest.fixture
    def locked_cancel(self, monkeypatch):
        """Make the continuations DELETE fail on the given call numbers."""
        real_delete = scheduler_module.delete
        calls = []

        def _install(fail_on):
            def _delete(*args):
                calls.append(args)
                if len(calls) in fail_on:
                    raise OperationalError(
                        "DELETE FROM continuations", {}, Exception("database is locked"),
                    )
                return real_delete(*args)

            monkeypatch.setattr(scheduler_module, "delete", _delete)
            return calls

        return _install

    def test_cancel_failure_while_rescheduling_is_retried(
        self, make_controller, clock, scheduler, repository, locked_cancel,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50, continuation_retry_attempts=3)
        # Call 1 is start's cleanup, call 2 the first checkpoint
        locked_cancel({2})

        result = controller.start()

        assert result.outcome == InvocationOutcome.CHECKPOINTED
        assert repository.load().page_cursor == "page-1"
        assert len(scheduler.pending(PROCESS_HANDLER)) == 1

    def test_persistent_cancel_failure_stalls_and_keeps_state(
        self, make_controller, clock, repository, status_reporter, locked_cancel,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50, continuation_retry_attempts=3)
        locked_cancel({2, 3, 4})

        result = controller.start()

        assert result.outcome == InvocationOutcome.STALLED
        state = repository.load()
        assert state is not None
        assert state.items_processed == 100
        assert status_reporter.current().status == JobStatus.STALLED


# =============================================================================
# Recurring kickoff vs continuation
# =============================================================================


class TestRecurringSchedule:

    def test_schedule_weekly_monday(self, make_controller, scheduler):
        controller = make_controller(FakeDriveClient([[]]))

        handle = controller.schedule_recurring("MONDAY", 6)

        # T0 is Monday 2024-01-01 12:00, so the next Monday 06:00 is a week on.
        assert handle.fire_at == datetime(2024, 1, 8, 6, 0)
        assert handle.cron_expression == "0 6 * * 1"
        assert scheduler.pending(START_HANDLER) == (handle,)

    def test_reschedule_replaces_previous(self, make_controller, scheduler):
        controller = make_controller(FakeDriveClient([[]]))
        controller.schedule_recurring("MONDAY", 6)

        handle = controller.schedule_recurring("FRIDAY", 18)

        assert scheduler.pending(START_HANDLER) == (handle,)
        assert handle.fire_at == datetime(2024, 1, 5, 18, 0)

    def test_invalid_day_rejected(self, make_controller):
        with pytest.raises(ValueError, match="Unknown day of week"):
            make_controller(FakeDriveClient([[]])).schedule_recurring("FUNDAY", 6)

    def test_cancel_keeps_recurring_registration(
        self, make_controller, clock, scheduler,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.schedule_recurring("MONDAY", 6)
        controller.start()

        controller.cancel()

        assert len(scheduler.pending(START_HANDLER)) == 1
        assert scheduler.pending(PROCESS_HANDLER) == ()

    def test_unschedule_keeps_running_audit(
        self, make_controller, clock, scheduler, repository,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        controller.schedule_recurring("MONDAY", 6)
        controller.start()

        removed = controller.unschedule_recurring()

        assert removed == 1
        assert scheduler.pending(START_HANDLER) == ()
        assert len(scheduler.pending(PROCESS_HANDLER)) == 1
        assert repository.load() is not None


# =============================================================================
# start() discards an in-flight job
# =============================================================================


class TestStartDiscardsJob:

    def test_fresh_start_replaces_checkpointed_job(
        self, make_controller, clock, repository, scheduler, sink, captured_logs,
    ):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        first = controller.start()
        assert first.outcome == InvocationOutcome.CHECKPOINTED

        second = controller.start()

        assert second.job_id != first.job_id
        state = repository.load()
        assert state.job_id == second.job_id
        assert state.items_processed == 100
        assert len(scheduler.pending(PROCESS_HANDLER)) == 1
        # The sink was reset for the new job.
        assert sink.row_count() == 100

        discarded = next(r for r in captured_logs() if r["message"] == "audit_job_discarded")
        assert discarded["previous_job_id"] == str(first.job_id)

    def test_start_logs_job_context(self, make_controller, captured_logs):
        result = make_controller(FakeDriveClient.with_items(5)).start()

        started = next(r for r in captured_logs() if r["message"] == "audit_job_started")
        assert started["job_id"] == str(result.job_id)
        assert started["handler"] == START_HANDLER
        assert "invocation_id" in started

    def test_persisted_state_is_whole(self, make_controller, clock, repository):
        drive = FakeDriveClient.with_items(
            300, page_size=100, clock=clock, seconds_per_item=1,
        )
        controller = make_controller(drive, ceiling_seconds=50)
        result = controller.start()

        state = repository.load()
        assert isinstance(state, AuditJobState)
        assert state.job_id == result.job_id
        assert state.records_emitted == 100
        assert state.pages_fetched == 1
        assert state.started_at == datetime(2024, 1, 1, 12, 0, 0)
