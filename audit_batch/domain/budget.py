"""
TimeBudget -- wall-clock budget for one controller invocation.

Contract:
    ``TimeBudget.start()`` pins the invocation start; ``exceeded()`` is True
    once elapsed time is strictly greater than the ceiling.  The controller
    checks it once per page, never mid-page, so an invocation can overrun
    the ceiling by at most one page's processing time.  Choose the ceiling
    fraction with that overrun in mind.

Architecture: audit_batch/domain.  Clock-injected, no other I/O.
"""

from __future__ import annotations

from datetime import datetime

from audit_kernel.domain.clock import Clock


def ceiling_from_host_limit(host_limit_seconds: float, fraction: float) -> float:
    """Ceiling leaving a safety margin below the host's hard limit.

    Raises:
        ValueError: If fraction is outside (0, 1] or the limit is not positive.
    """
    if host_limit_seconds <= 0:
        raise ValueError(f"host_limit_seconds must be positive: {host_limit_seconds}")
    if not 0 < fraction <= 1:
        raise ValueError(f"fraction must be in (0, 1]: {fraction}")
    return host_limit_seconds * fraction


class TimeBudget:
    """Measures elapsed wall-clock time against a configured ceiling."""

    def __init__(self, clock: Clock, ceiling_seconds: float):
        if ceiling_seconds <= 0:
            raise ValueError(f"ceiling_seconds must be positive: {ceiling_seconds}")
        self._clock = clock
        self._ceiling = ceiling_seconds
        self._started_at: datetime | None = None

    def start(self) -> None:
        self._started_at = self._clock.now()

    @property
    def ceiling_seconds(self) -> float:
        return self._ceiling

    @property
    def started_at(self) -> datetime | None:
        return self._started_at

    def elapsed_seconds(self) -> float:
        if self._started_at is None:
            return 0.0
        return (self._clock.now() - self._started_at).total_seconds()

    def exceeded(self) -> bool:
        return self.elapsed_seconds() > self._ceiling

    def remaining_seconds(self) -> float:
        return max(0.0, self._ceiling - self.elapsed_seconds())
