"""
audit_config -- single public entrypoint for Drive audit configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads the YAML file.
    The access token itself is not configuration: only the name of the
    environment variable holding it is.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Validation before use: every value is range-checked by the loader.
    - Deterministic identity: the same YAML always yields the same checksum.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` -- the file is not valid YAML.
    - ``ValueError`` -- unknown sections/keys or out-of-range values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``AUDIT_CONFIG_TRACE`` log entry with the source path and checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from audit_config.loader import load_yaml_file, parse_config
from audit_config.schema import (
    DataSourceConfig,
    DriveAuditConfig,
    OutputConfig,
    RuntimeConfig,
    ScheduleConfig,
    StorageConfig,
)

_logger = logging.getLogger("audit_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "DataSourceConfig",
    "DriveAuditConfig",
    "OutputConfig",
    "RuntimeConfig",
    "ScheduleConfig",
    "StorageConfig",
    "get_active_config",
]


def get_active_config(path: Path | str | None = None) -> DriveAuditConfig:
    """The ONLY public configuration entrypoint.

    Args:
        path: YAML file to load.  Defaults to the packaged ``defaults.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    data = load_yaml_file(config_path)
    config = parse_config(data, source_path=str(config_path))

    _logger.info(
        "AUDIT_CONFIG_TRACE",
        extra={
            "trace_type": "AUDIT_CONFIG_TRACE",
            "config_path": str(config_path),
            "checksum": config.checksum,
            "ceiling_seconds": config.runtime.effective_ceiling_seconds,
            "page_size": config.runtime.page_size,
            "output_kind": config.output.kind,
        },
    )
    return config
