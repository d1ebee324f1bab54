"""
AuditOrchestrator -- DI container for the Drive audit engine.

Contract:
    Wires the checkpoint store, continuation scheduler, result sink, status
    reporter and data source into one ``AuditJobController``, and registers
    the controller's entry points in a ``HandlerRegistry`` so the
    ``ContinuationRunner`` can fire them by name.  Single place where all
    audit dependencies are composed.

Architecture: audit_batch (top-level).  This is the canonical entry point
    for configuring and running audits (the CLI only talks to it).

Invariants enforced:
    DA-9  -- one callable per handler name (HandlerRegistry).
    Clock injection -- every collaborator receives the same Clock.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from sqlalchemy.orm import Session

from audit_kernel.domain.clock import Clock, SystemClock
from audit_kernel.logging_config import get_logger

from audit_batch.ports import (
    PROCESS_HANDLER,
    START_HANDLER,
    DataSourceClient,
    HandlerRegistry,
    ResultSink,
    StatusReporter,
)
from audit_batch.services.checkpoint_store import JobStateRepository, SqlCheckpointStore
from audit_batch.services.controller import AuditJobController, ControllerSettings
from audit_batch.services.drive_client import DriveClient
from audit_batch.services.result_sink import CsvResultSink, SqlResultSink
from audit_batch.services.scheduler import ContinuationRunner, SqlContinuationScheduler
from audit_batch.services.status import BestEffortStatusReporter, SqlStatusReporter

if TYPE_CHECKING:
    from audit_config.schema import DriveAuditConfig, OutputConfig

logger = get_logger("batch.orchestrator")


def settings_from_config(config: DriveAuditConfig) -> ControllerSettings:
    """Map the runtime/output configuration onto controller settings."""
    runtime = config.runtime
    return ControllerSettings(
        ceiling_seconds=runtime.effective_ceiling_seconds,
        page_size=runtime.page_size,
        progress_cadence=runtime.progress_cadence,
        max_items_per_invocation=runtime.max_items_per_invocation,
        continuation_delay_seconds=runtime.continuation_delay_seconds,
        continuation_retry_attempts=runtime.continuation_retry_attempts,
        internal_domains=config.output.internal_domains,
    )


def sink_from_config(
    output: OutputConfig, session_factory: Callable[[], Session],
) -> ResultSink:
    if output.kind == "csv":
        return CsvResultSink(output.csv_path, output.summary_path)
    return SqlResultSink(session_factory)


def _default_handler_registry(controller: AuditJobController) -> HandlerRegistry:
    """Create a HandlerRegistry with the controller's two entry points."""
    registry = HandlerRegistry()
    registry.register(PROCESS_HANDLER, controller.run_invocation)
    registry.register(START_HANDLER, controller.start)
    return registry


class AuditOrchestrator:
    """DI container for the audit engine.

    Contract:
        - ``from_config()`` factory creates a fully wired orchestrator.
        - ``controller`` exposes start / resume / status / cancel / schedule.
        - ``create_runner()`` returns a ContinuationRunner for background use.

    Non-goals:
        - Does NOT start the runner automatically -- caller decides.
        - Does NOT create tables -- caller initializes the engine.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        data_source: DataSourceClient,
        clock: Clock | None = None,
        settings: ControllerSettings | None = None,
        sink: ResultSink | None = None,
        status_reporter: StatusReporter | None = None,
        tick_interval_seconds: float = 30,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._data_source = data_source
        self._repository = JobStateRepository(SqlCheckpointStore(session_factory))
        self._scheduler = SqlContinuationScheduler(session_factory, self._clock)
        self._sink = sink or SqlResultSink(session_factory)
        self._status = BestEffortStatusReporter(
            status_reporter or SqlStatusReporter(session_factory, self._clock)
        )
        self._tick_interval = tick_interval_seconds
        self._controller = AuditJobController(
            repository=self._repository,
            scheduler=self._scheduler,
            data_source=data_source,
            sink=self._sink,
            status_reporter=self._status,
            clock=self._clock,
            settings=settings,
        )
        self._registry = _default_handler_registry(self._controller)

    # -------------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: DriveAuditConfig,
        session_factory: Callable[[], Session],
        access_token: str | None = None,
        data_source: DataSourceClient | None = None,
        clock: Clock | None = None,
    ) -> AuditOrchestrator:
        """Create a fully wired AuditOrchestrator from configuration.

        Args:
            config: Validated configuration from ``get_active_config()``.
            session_factory: Callable returning new sessions.
            access_token: Bearer token for the Drive API.  Ignored when
                ``data_source`` is given.
            data_source: Optional pre-built client (tests inject fakes).
            clock: Optional clock for deterministic testing.
        """
        source = data_source or DriveClient.from_config(config.data_source, access_token)
        orchestrator = cls(
            session_factory=session_factory,
            data_source=source,
            clock=clock,
            settings=settings_from_config(config),
            sink=sink_from_config(config.output, session_factory),
            tick_interval_seconds=config.schedule.tick_interval_seconds,
        )
        logger.info(
            "orchestrator_configured",
            extra={
                "output_kind": config.output.kind,
                "config_checksum": config.checksum,
                "handlers": list(orchestrator.handler_registry.list_handlers()),
            },
        )
        return orchestrator

    # -------------------------------------------------------------------------
    # Runner
    # -------------------------------------------------------------------------

    def create_runner(
        self, tick_interval_seconds: float | None = None,
    ) -> ContinuationRunner:
        """Create a ContinuationRunner firing this orchestrator's handlers."""
        return ContinuationRunner(
            scheduler=self._scheduler,
            registry=self._registry,
            tick_interval_seconds=(
                tick_interval_seconds
                if tick_interval_seconds is not None
                else self._tick_interval
            ),
        )

    def close(self) -> None:
        """Release the data source's HTTP connections, if it holds any."""
        close = getattr(self._data_source, "close", None)
        if close is not None:
            close()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def controller(self) -> AuditJobController:
        return self._controller

    @property
    def scheduler(self) -> SqlContinuationScheduler:
        return self._scheduler

    @property
    def repository(self) -> JobStateRepository:
        return self._repository

    @property
    def sink(self) -> ResultSink:
        return self._sink

    @property
    def status_reporter(self) -> StatusReporter:
        return self._status

    @property
    def handler_registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def clock(self) -> Clock:
        return self._clock
