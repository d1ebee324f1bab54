"""
Collaborator protocols consumed by the job controller, and HandlerRegistry.

Contract:
    ``CheckpointStore``, ``ContinuationScheduler``, ``DataSourceClient``,
    ``ResultSink`` and ``StatusReporter`` are the only seams the controller
    talks through.  ``HandlerRegistry`` maps handler names (what the
    scheduler persists) to callables (what the runner invokes).

Architecture:
    audit_batch (top-level).  Imports only from audit_batch.domain and
    audit_kernel.exceptions.

Invariants enforced:
    DA-9 -- one callable per handler name.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Any, Callable, Protocol, runtime_checkable

from audit_kernel.exceptions import HandlerNotRegisteredError

from audit_batch.domain.types import (
    AuditSummary,
    ContinuationHandle,
    JobStatus,
    OutputRecord,
    PageOutcome,
    PermissionOutcome,
    StatusReport,
)

# Handler names persisted by the continuation scheduler.
PROCESS_HANDLER = "drive_audit.process_batch"
START_HANDLER = "drive_audit.start"


@runtime_checkable
class CheckpointStore(Protocol):
    """Durable key/value persistence surviving process restarts."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


@runtime_checkable
class ContinuationScheduler(Protocol):
    """Registers future invocations of named handlers.

    Contract:
        - ``schedule_after()`` registers a one-shot firing after ``delay``.
        - ``schedule_cron()`` registers a recurring firing.
        - ``cancel_all()`` removes every pending registration for one
          handler and returns how many were removed; other handlers are
          untouched.

    Raises:
        SchedulingFailureError: If a registration cannot be created.
    """

    def schedule_after(
        self, delay_seconds: float, handler: str,
    ) -> ContinuationHandle: ...

    def schedule_cron(
        self, cron_expression: str, handler: str,
    ) -> ContinuationHandle: ...

    def cancel_all(self, handler: str) -> int: ...

    def pending(self, handler: str | None = None) -> tuple[ContinuationHandle, ...]: ...


@runtime_checkable
class DataSourceClient(Protocol):
    """Paginated read access to items and their permissions.

    Both calls return tagged outcomes; expected failures are
    ``FetchKind.ERROR`` outcomes, not exceptions.
    """

    def list_page(self, cursor: str | None, page_size: int) -> PageOutcome: ...

    def list_permissions(self, item_id: str) -> PermissionOutcome: ...


@runtime_checkable
class ResultSink(Protocol):
    """Append-only, order-preserving writer for output records.

    Contract:
        - ``prepare()`` clears / creates the destination for a fresh job.
        - ``append_rows()`` never rewrites earlier rows and never dedups.
        - ``iter_records()`` yields rows in append order.
    """

    def prepare(self) -> None: ...

    def append_rows(self, records: Sequence[OutputRecord]) -> None: ...

    def iter_records(self) -> Iterator[OutputRecord]: ...

    def write_summary(self, summary: AuditSummary) -> None: ...


@runtime_checkable
class StatusReporter(Protocol):
    """Publishes phase, message and counters for external observers."""

    def report(
        self,
        status: JobStatus,
        message: str,
        items_processed: int = 0,
        items_total: int = 0,
    ) -> None: ...

    def current(self) -> StatusReport | None: ...


# =============================================================================
# HandlerRegistry
# =============================================================================


class HandlerRegistry:
    """Registry mapping handler names to zero-argument callables.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` retrieves by name; raises HandlerNotRegisteredError.
        - ``list_handlers()`` returns all registered names, sorted.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Callable[[], Any]] = {}

    def register(self, name: str, handler: Callable[[], Any]) -> None:
        """Register a handler.

        Raises:
            ValueError: If a handler with the same name is already registered.
        """
        if name in self._handlers:
            raise ValueError(f"Handler '{name}' is already registered")
        self._handlers[name] = handler

    def get(self, name: str) -> Callable[[], Any]:
        try:
            return self._handlers[name]
        except KeyError:
            raise HandlerNotRegisteredError(name, self.list_handlers()) from None

    def list_handlers(self) -> tuple[str, ...]:
        return tuple(sorted(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers
