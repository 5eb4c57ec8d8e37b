"""
Clock Sources
=============

Wall and monotonic time sources in milliseconds. The session timer samples
both independently to detect manipulation of either one.
"""

from __future__ import annotations

import time


class Clock:
    """Interface for a dual time source."""

    def wall_ms(self) -> float:
        """Wall-clock time in milliseconds since the epoch."""
        raise NotImplementedError

    def monotonic_ms(self) -> float:
        """Monotonic high-resolution time in milliseconds (arbitrary origin)."""
        raise NotImplementedError


class SystemClock(Clock):
    """Real clocks from the host process."""

    def wall_ms(self) -> float:
        return time.time() * 1000.0

    def monotonic_ms(self) -> float:
        return time.perf_counter() * 1000.0


class ManualClock(Clock):
    """
    Deterministic clock driven by the caller.

    advance() moves both clocks together. shift_wall() moves only the wall
    clock, which is how a tampered or rolled-back system clock looks.
    """

    def __init__(self, wall_start: float = 1_700_000_000_000.0, monotonic_start: float = 0.0):
        self._wall = float(wall_start)
        self._monotonic = float(monotonic_start)

    def wall_ms(self) -> float:
        return self._wall

    def monotonic_ms(self) -> float:
        return self._monotonic

    def advance(self, ms: float) -> None:
        """Advance both clocks by ms (must be non-negative)."""
        if ms < 0:
            raise ValueError(f"Cannot advance clock by negative amount: {ms}")
        self._wall += ms
        self._monotonic += ms

    def shift_wall(self, ms: float) -> None:
        """Move only the wall clock by ms (may be negative)."""
        self._wall += ms

    def set(self, wall_ms: float) -> None:
        """Jump both clocks so the wall clock reads wall_ms."""
        delta = wall_ms - self._wall
        if delta < 0:
            raise ValueError(f"Cannot move clock backwards to {wall_ms}")
        self.advance(delta)
