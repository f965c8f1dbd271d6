"""
Failure Gate
============

Consecutive-failure counter that decides when capture must stop.

States:
    NORMAL:  consecutive_failures <= threshold
    TRIPPED: consecutive_failures >  threshold

Transitions:
    record_success()  -> counter reset to 0 (any state -> NORMAL)
    record_failure()  -> counter + 1, caller checks is_tripped()

Design Rules:
    - The counter is only read or written while holding the lock
    - The lock is never held during decode or network work
    - The gate does not own shutdown; it is a decision input only
"""

import logging
import threading


logger = logging.getLogger(__name__)


DEFAULT_FAILURE_THRESHOLD = 1000


class FailureGate:
    """
    Thread-safe consecutive failure counter.

    Attributes:
        threshold: Highest failure count that is still tolerated

    Example:
        gate = FailureGate(threshold=1000)

        count = gate.record_failure()
        if gate.is_tripped(count):
            await source.stop()
    """

    def __init__(self, threshold: int = DEFAULT_FAILURE_THRESHOLD) -> None:
        if threshold < 0:
            raise ValueError("threshold must be >= 0")

        self._threshold = threshold
        self._count = 0
        self._lock = threading.Lock()

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def consecutive_failures(self) -> int:
        """Current number of consecutive failures."""
        with self._lock:
            return self._count

    def record_success(self) -> None:
        """Reset the counter after a successfully converted frame."""
        with self._lock:
            self._count = 0

    def record_failure(self) -> int:
        """
        Count one failed frame.

        Returns:
            The new consecutive failure count.
        """
        with self._lock:
            self._count += 1
            return self._count

    def is_tripped(self, count: int) -> bool:
        """Whether `count` consecutive failures warrant stopping capture."""
        return count > self._threshold

    def __repr__(self) -> str:
        return (
            f"FailureGate(threshold={self._threshold}, "
            f"consecutive_failures={self.consecutive_failures})"
        )
