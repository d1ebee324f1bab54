"""CLI utilities: result and status formatting."""

from audit_batch.domain.types import (
    CancelResult,
    ContinuationHandle,
    InvocationResult,
    JobStatusView,
)


def fmt_result(result: InvocationResult) -> list[str]:
    """Describe one controller invocation."""
    lines = [f"Outcome: {result.outcome.value}"]
    if result.job_id is not None:
        lines.append(f"Job: {result.job_id} ({result.phase.value if result.phase else '-'})")
    lines.append(
        f"Items processed: {result.items_processed}, "
        f"rows emitted: {result.records_emitted}, "
        f"pages this run: {result.pages_this_invocation}"
    )
    if result.continuation is not None:
        lines.append(f"Continues at: {result.continuation.fire_at.isoformat()}")
    if result.error_message:
        lines.append(f"Error: {result.error_message}")
    return lines


def fmt_status(view: JobStatusView) -> list[str]:
    """Describe the current status and stored job."""
    report = view.report
    if report is None:
        lines = ["Status: no audit has run yet"]
    else:
        lines = [f"Status: {report.status.value}", f"Message: {report.message}"]
        progress = report.progress_percent
        if progress is not None:
            lines.append(
                f"Progress: {report.items_processed}/{report.items_total} ({progress}%)"
            )
        else:
            lines.append(f"Items processed: {report.items_processed}")
        if report.updated_at is not None:
            lines.append(f"Updated: {report.updated_at.isoformat()}")

    job = view.job
    if job is not None:
        lines.append(
            f"Active job: {job.job_id} phase={job.phase.value} "
            f"pages={job.pages_fetched} items={job.items_processed}"
        )
    return lines


def fmt_cancel(result: CancelResult) -> list[str]:
    if not result.cancelled:
        return ["No audit is running; nothing to cancel."]
    return [
        f"Cancelled audit {result.job_id}.",
        f"Pending continuations removed: {result.continuations_cancelled}",
    ]


def fmt_handle(handle: ContinuationHandle) -> str:
    return f"{handle.handler} at {handle.fire_at.isoformat()}" + (
        f" (cron '{handle.cron_expression}')" if handle.cron_expression else ""
    )
