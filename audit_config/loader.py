"""
Configuration Loader (``audit_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses each section into the typed
``audit_config.schema`` dataclasses.  Runtime callers go through
``audit_config.get_active_config()``; the parse functions are public for
tests.

Invariants enforced
-------------------
* Unknown top-level sections and unknown keys raise ``ValueError``; a typo
  never silently falls back to a default.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity in the ``AUDIT_CONFIG_TRACE`` log line.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from audit_batch.domain.schedule import DAYS_OF_WEEK

from audit_config.schema import (
    DataSourceConfig,
    DriveAuditConfig,
    OutputConfig,
    RuntimeConfig,
    ScheduleConfig,
    StorageConfig,
)

OUTPUT_KINDS = frozenset({"sql", "csv"})

_SECTIONS = frozenset({"runtime", "data_source", "storage", "output", "schedule"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _section(data: dict[str, Any], name: str, allowed: frozenset[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name}: must be a mapping")
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"{name}: unknown keys {sorted(unknown)}")
    return section


def _number(section: str, key: str, value: Any, cast: type = float) -> Any:
    if isinstance(value, bool):
        raise ValueError(f"{section}.{key} must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f"{section}.{key} must be a number, got {value!r}") from None


def _positive(section: str, key: str, value: Any, cast: type = float) -> Any:
    number = _number(section, key, value, cast)
    if number <= 0:
        raise ValueError(f"{section}.{key} must be positive, got {value!r}")
    return number


def parse_runtime(data: dict[str, Any]) -> RuntimeConfig:
    """Parse and validate the ``runtime`` section."""
    s = _section(data, "runtime", frozenset(RuntimeConfig.__dataclass_fields__))
    defaults = RuntimeConfig()

    fraction = _number(
        "runtime", "ceiling_fraction", s.get("ceiling_fraction", defaults.ceiling_fraction),
    )
    if not 0 < fraction <= 1:
        raise ValueError(f"runtime.ceiling_fraction must be in (0, 1], got {fraction}")

    ceiling = s.get("ceiling_seconds")
    if ceiling is not None:
        ceiling = _positive("runtime", "ceiling_seconds", ceiling)

    cap = s.get("max_items_per_invocation")
    if cap is not None:
        cap = _positive("runtime", "max_items_per_invocation", cap, int)

    retries = _number(
        "runtime", "continuation_retry_attempts",
        s.get("continuation_retry_attempts", defaults.continuation_retry_attempts), int,
    )
    if retries < 1:
        raise ValueError(f"runtime.continuation_retry_attempts must be >= 1, got {retries}")

    delay = _number(
        "runtime", "continuation_delay_seconds",
        s.get("continuation_delay_seconds", defaults.continuation_delay_seconds),
    )
    if delay < 0:
        raise ValueError(f"runtime.continuation_delay_seconds must be >= 0, got {delay}")

    return RuntimeConfig(
        host_limit_seconds=_positive(
            "runtime", "host_limit_seconds",
            s.get("host_limit_seconds", defaults.host_limit_seconds),
        ),
        ceiling_fraction=fraction,
        ceiling_seconds=ceiling,
        page_size=_positive("runtime", "page_size", s.get("page_size", defaults.page_size), int),
        progress_cadence=_positive(
            "runtime", "progress_cadence",
            s.get("progress_cadence", defaults.progress_cadence), int,
        ),
        max_items_per_invocation=cap,
        continuation_delay_seconds=delay,
        continuation_retry_attempts=retries,
    )


def parse_data_source(data: dict[str, Any]) -> DataSourceConfig:
    s = _section(data, "data_source", frozenset(DataSourceConfig.__dataclass_fields__))
    defaults = DataSourceConfig()
    return DataSourceConfig(
        base_url=str(s.get("base_url", defaults.base_url)).rstrip("/"),
        access_token_env=str(s.get("access_token_env", defaults.access_token_env)),
        timeout_seconds=_positive(
            "data_source", "timeout_seconds",
            s.get("timeout_seconds", defaults.timeout_seconds),
        ),
    )


def parse_storage(data: dict[str, Any]) -> StorageConfig:
    s = _section(data, "storage", frozenset(StorageConfig.__dataclass_fields__))
    return StorageConfig(
        database_url=str(s.get("database_url", StorageConfig().database_url)),
    )


def parse_output(data: dict[str, Any]) -> OutputConfig:
    """Parse and validate the ``output`` section."""
    s = _section(data, "output", frozenset(OutputConfig.__dataclass_fields__))
    defaults = OutputConfig()
    kind = str(s.get("kind", defaults.kind)).lower()
    if kind not in OUTPUT_KINDS:
        raise ValueError(f"output.kind must be one of {sorted(OUTPUT_KINDS)}, got {kind!r}")
    summary_path = s.get("summary_path")
    return OutputConfig(
        kind=kind,
        csv_path=str(s.get("csv_path", defaults.csv_path)),
        summary_path=str(summary_path) if summary_path is not None else None,
        internal_domains=tuple(
            str(d).lower() for d in s.get("internal_domains") or ()
        ),
    )


def parse_schedule(data: dict[str, Any]) -> ScheduleConfig:
    """Parse and validate the ``schedule`` section."""
    s = _section(data, "schedule", frozenset(ScheduleConfig.__dataclass_fields__))
    defaults = ScheduleConfig()
    day = str(s.get("day_of_week", defaults.day_of_week)).upper()
    if day not in DAYS_OF_WEEK:
        raise ValueError(
            f"schedule.day_of_week must be one of {list(DAYS_OF_WEEK)}, got {day!r}"
        )
    hour = _number("schedule", "hour", s.get("hour", defaults.hour), int)
    if not 0 <= hour <= 23:
        raise ValueError(f"schedule.hour must be in 0..23, got {hour}")
    return ScheduleConfig(
        day_of_week=day,
        hour=hour,
        tick_interval_seconds=_positive(
            "schedule", "tick_interval_seconds",
            s.get("tick_interval_seconds", defaults.tick_interval_seconds),
        ),
    )


def parse_config(data: dict[str, Any], source_path: str | None = None) -> DriveAuditConfig:
    """
    Parse a full configuration document.

    Raises:
        ValueError: on unknown sections or invalid values.
    """
    unknown = set(data) - _SECTIONS
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")
    return DriveAuditConfig(
        runtime=parse_runtime(data),
        data_source=parse_data_source(data),
        storage=parse_storage(data),
        output=parse_output(data),
        schedule=parse_schedule(data),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
