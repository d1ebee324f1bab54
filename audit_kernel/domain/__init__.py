"""audit_kernel.domain -- Pure kernel abstractions (clock)."""

from audit_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = ["Clock", "DeterministicClock", "SystemClock"]
