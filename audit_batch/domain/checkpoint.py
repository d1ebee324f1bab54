"""
Checkpoint codec -- versioned JSON form of ``AuditJobState``.

Contract:
    ``encode_state()`` / ``decode_state()`` are pure.  Decoding is strict:
    anything that is not a complete, known-version record raises
    ``CheckpointCorruptionError`` so the controller can force ERROR rather
    than resume from a guess.

Architecture: audit_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from audit_kernel.exceptions import CheckpointCorruptionError

from audit_batch.domain.types import RESUMABLE_PHASES, AuditJobState, JobPhase

STATE_KEY = "AUDIT_STATE"
TOKEN_KEY = "AUDIT_JOB_TOKEN"
CHECKPOINT_VERSION = 1

_INT_FIELDS = (
    "job_token",
    "items_processed",
    "records_emitted",
    "pages_fetched",
    "permission_fetch_failures",
)


def encode_state(state: AuditJobState) -> str:
    """Serialize the full state record (never partial fields)."""
    payload = {
        "version": CHECKPOINT_VERSION,
        "job_id": str(state.job_id),
        "job_token": state.job_token,
        "phase": state.phase.value,
        "page_cursor": state.page_cursor,
        "items_processed": state.items_processed,
        "records_emitted": state.records_emitted,
        "pages_fetched": state.pages_fetched,
        "permission_fetch_failures": state.permission_fetch_failures,
        "started_at": state.started_at.isoformat(),
    }
    return json.dumps(payload, sort_keys=True)


def decode_state(raw: str, key: str = STATE_KEY) -> AuditJobState:
    """Parse a stored state record.

    Raises:
        CheckpointCorruptionError: On malformed JSON, unknown version,
            missing or mistyped fields, or a non-resumable phase.
    """
    try:
        payload: Any = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise CheckpointCorruptionError(key, f"invalid JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise CheckpointCorruptionError(key, "record is not an object")

    version = payload.get("version")
    if version != CHECKPOINT_VERSION:
        raise CheckpointCorruptionError(key, f"unsupported version {version!r}")

    try:
        phase = JobPhase(payload["phase"])
        job_id = UUID(payload["job_id"])
        started_at = datetime.fromisoformat(payload["started_at"])
        ints = {name: payload[name] for name in _INT_FIELDS}
        cursor = payload["page_cursor"]
    except KeyError as exc:
        raise CheckpointCorruptionError(key, f"missing field {exc.args[0]!r}") from exc
    except (TypeError, ValueError) as exc:
        raise CheckpointCorruptionError(key, str(exc)) from exc

    for name, value in ints.items():
        if not isinstance(value, int) or isinstance(value, bool) or value < 0:
            raise CheckpointCorruptionError(key, f"field {name!r} is not a count: {value!r}")
    if cursor is not None and not isinstance(cursor, str):
        raise CheckpointCorruptionError(key, f"page_cursor is not a string: {cursor!r}")
    if phase not in RESUMABLE_PHASES:
        raise CheckpointCorruptionError(key, f"terminal phase persisted: {phase.value}")

    return AuditJobState(
        job_id=job_id,
        phase=phase,
        started_at=started_at,
        page_cursor=cursor,
        **ints,
    )
