"""
DriveAuditConfig schema.

Typed, frozen view of the YAML configuration.  The loader parses YAML
into these types; ``audit_config.get_active_config()`` is the only
runtime entrypoint that produces them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from audit_batch.domain.budget import ceiling_from_host_limit

# ---------------------------------------------------------------------------
# Runtime (budget, paging, continuation)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeConfig:
    """Per-invocation limits of the job controller."""

    host_limit_seconds: float = 360.0
    ceiling_fraction: float = 0.75
    ceiling_seconds: float | None = None  # Overrides host_limit * fraction
    page_size: int = 100
    progress_cadence: int = 50
    max_items_per_invocation: int | None = None
    continuation_delay_seconds: float = 60.0
    continuation_retry_attempts: int = 3

    @property
    def effective_ceiling_seconds(self) -> float:
        if self.ceiling_seconds is not None:
            return self.ceiling_seconds
        return ceiling_from_host_limit(self.host_limit_seconds, self.ceiling_fraction)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DataSourceConfig:
    """Drive API endpoint and credentials lookup."""

    base_url: str = "https://www.googleapis.com"
    access_token_env: str = "DRIVE_AUDIT_ACCESS_TOKEN"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class StorageConfig:
    """SQLAlchemy database holding checkpoint, continuations and status."""

    database_url: str = "sqlite:///drive_audit.db"


@dataclass(frozen=True)
class OutputConfig:
    """Where output rows and the summary go."""

    kind: str = "sql"  # sql | csv
    csv_path: str = "drive_audit.csv"
    summary_path: str | None = None
    internal_domains: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScheduleConfig:
    """Weekly kickoff and runner polling."""

    day_of_week: str = "MONDAY"
    hour: int = 6
    tick_interval_seconds: float = 30.0


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DriveAuditConfig:
    """Complete, validated configuration."""

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    checksum: str = ""
    source_path: str | None = None
