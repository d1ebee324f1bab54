"""
Checkpoint persistence -- SQL key/value store and the job state repository.

Contract:
    ``SqlCheckpointStore`` implements ``CheckpointStore`` over the
    ``checkpoint_entries`` table; each call is its own committed transaction.
    ``JobStateRepository`` layers the single ``AuditJobState`` record and
    the monotonically increasing job token counter on top of any
    ``CheckpointStore``.

Architecture: audit_batch/services.  Imports from audit_batch.domain,
    audit_batch.models, and kernel db/logging.

Invariants enforced:
    DA-1 -- the state record is always written whole (one JSON value).
    DA-2 -- job tokens never repeat: the counter survives state deletion.
    DA-3 -- ``save_fenced()`` refuses to write when the stored record is
            gone or belongs to another token (cancel / restart race).
"""

from __future__ import annotations

from typing import Callable

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from audit_kernel.db.engine import session_scope
from audit_kernel.exceptions import CheckpointCorruptionError, StaleJobTokenError
from audit_kernel.logging_config import get_logger

from audit_batch.domain.checkpoint import (
    STATE_KEY,
    TOKEN_KEY,
    decode_state,
    encode_state,
)
from audit_batch.domain.types import AuditJobState
from audit_batch.models.audit import CheckpointEntryModel
from audit_batch.ports import CheckpointStore

logger = get_logger("batch.checkpoint")


class SqlCheckpointStore:
    """Durable key/value store backed by ``checkpoint_entries``."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(CheckpointEntryModel.value).where(
                    CheckpointEntryModel.key == key,
                )
            ).scalar_one_or_none()

    def set(self, key: str, value: str) -> None:
        with session_scope(self._session_factory) as session:
            model = session.execute(
                select(CheckpointEntryModel).where(CheckpointEntryModel.key == key)
            ).scalar_one_or_none()
            if model is None:
                session.add(CheckpointEntryModel(key=key, value=value))
            else:
                model.value = value

    def delete(self, key: str) -> None:
        with session_scope(self._session_factory) as session:
            session.execute(
                delete(CheckpointEntryModel).where(CheckpointEntryModel.key == key)
            )


class JobStateRepository:
    """Typed access to the single job state record and the token counter.

    Contract:
        - ``load()`` returns None when no job exists.
        - ``save()`` writes unconditionally (used only when creating a job).
        - ``save_fenced()`` writes only if the stored record carries the
          same ``job_token``.
        - ``allocate_token()`` bumps the counter; used by start and cancel.

    Non-goals:
        - NOT atomic compare-and-set.  Read-check-write is last-write-wins
          inside the tiny window between the read and the write.
    """

    def __init__(self, store: CheckpointStore):
        self._store = store

    @property
    def store(self) -> CheckpointStore:
        return self._store

    def load(self) -> AuditJobState | None:
        """Load the persisted job.

        Raises:
            CheckpointCorruptionError: If the stored record is unreadable.
        """
        raw = self._store.get(STATE_KEY)
        if raw is None:
            return None
        return decode_state(raw, key=STATE_KEY)

    def save(self, state: AuditJobState) -> None:
        self._store.set(STATE_KEY, encode_state(state))

    def save_fenced(self, state: AuditJobState) -> None:
        """Persist ``state`` only if this job still owns the record.

        Raises:
            StaleJobTokenError: If the record was deleted or replaced.
            CheckpointCorruptionError: If the stored record is unreadable.
        """
        self.assert_owner(state)
        self._store.set(STATE_KEY, encode_state(state))

    def assert_owner(self, state: AuditJobState) -> None:
        """Raise StaleJobTokenError unless the stored record is ``state``'s job."""
        current = self.load()
        if current is None or current.job_token != state.job_token:
            raise StaleJobTokenError(
                job_id=str(state.job_id),
                expected_token=state.job_token,
                found_token=current.job_token if current is not None else None,
            )

    def clear(self) -> None:
        self._store.delete(STATE_KEY)

    def clear_if_owner(self, state: AuditJobState) -> bool:
        """Delete the record only when it still belongs to ``state``'s job.

        A corrupt record is deleted too: nobody can resume from it.
        """
        try:
            current = self.load()
        except CheckpointCorruptionError:
            self.clear()
            return True
        if current is None or current.job_token != state.job_token:
            return False
        self.clear()
        return True

    def current_token(self) -> int:
        raw = self._store.get(TOKEN_KEY)
        if raw is None:
            return 0
        try:
            return int(raw)
        except ValueError as exc:
            raise CheckpointCorruptionError(TOKEN_KEY, f"not an integer: {raw!r}") from exc

    def allocate_token(self) -> int:
        """Return a token greater than every token issued before.

        A corrupt counter is reset past the stored job's token so the
        fence keeps working.
        """
        try:
            current = self.current_token()
        except CheckpointCorruptionError:
            logger.warning("job_token_counter_corrupt_reset")
            current = 0
            try:
                stored = self.load()
            except CheckpointCorruptionError:
                stored = None
            if stored is not None:
                current = stored.job_token
        token = current + 1
        self._store.set(TOKEN_KEY, str(token))
        return token
