"""
Entropy Source
==============

Uniform random values for identifiers and gameplay randomness. Sources are
explicit objects injected per system so tests can supply deterministic
sequences; the OS-backed source is the only object safely shared between
sessions.
"""

from __future__ import annotations

import logging
import random
import secrets
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, TypeVar

import numpy as np

from reflex_guard.anticheat_core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"
MAX_AUDIT_LOG_SIZE = 1000


@dataclass(frozen=True)
class RandomnessAuditEntry:
    """Record of one randomness operation."""
    timestamp: float
    operation: str
    source: str
    value: Optional[float]
    context: str


class EntropySource:
    """
    Base entropy source.

    Subclasses supply `_next_float()` in [0, 1); everything else derives from it.
    Every public operation is appended to a bounded audit log.
    """

    source_name = "base"

    def __init__(self, clock: Optional[Clock] = None):
        """
        Initialize entropy source.

        Args:
            clock: Time source for audit timestamps. Uses system clock if None.
        """
        self._clock = clock if clock is not None else SystemClock()
        self._audit_log: List[RandomnessAuditEntry] = []

    def _next_float(self) -> float:
        raise NotImplementedError

    def _next_bytes(self, length: int) -> bytes:
        return bytes(int(self._next_float() * 256) for _ in range(length))

    def _log(self, operation: str, value: Optional[float], context: str) -> None:
        self._audit_log.append(RandomnessAuditEntry(
            timestamp=self._clock.wall_ms(),
            operation=operation,
            source=self.source_name,
            value=value,
            context=context
        ))
        if len(self._audit_log) > MAX_AUDIT_LOG_SIZE:
            self._audit_log = self._audit_log[-(MAX_AUDIT_LOG_SIZE // 2):]

    def random(self, context: str = "general") -> float:
        """Uniform float in [0, 1)."""
        value = self._next_float()
        self._log("random", value, context)
        return value

    def randint(self, low: int, high: int, context: str = "integer") -> int:
        """Uniform integer in [low, high], inclusive."""
        if high < low:
            raise ValueError(f"Empty integer range: [{low}, {high}]")
        span = high - low + 1
        result = low + min(int(self._next_float() * span), span - 1)
        self._log("randint", result, f"{context}:{low}-{high}")
        return result

    def random_bool(self, probability: float = 0.5, context: str = "boolean") -> bool:
        """True with the given probability."""
        result = self._next_float() < probability
        self._log("random_bool", 1 if result else 0, f"{context}:p={probability}")
        return result

    def choice(self, items: Sequence[T], context: str = "choice") -> T:
        """Uniform choice from a non-empty sequence."""
        if len(items) == 0:
            raise ValueError("Cannot choose from empty sequence")
        return items[self.randint(0, len(items) - 1, f"{context}:array[{len(items)}]")]

    def weighted_choice(
        self,
        items: Sequence[T],
        weights: Sequence[float],
        context: str = "weighted"
    ) -> T:
        """
        Choose one item with probability proportional to its weight.

        Raises:
            ValueError: If lengths differ or the total weight is not positive.
        """
        if len(items) != len(weights):
            raise ValueError("Items and weights must have the same length")
        total = sum(weights)
        if total <= 0:
            raise ValueError("Total weight must be positive")

        r = self._next_float() * total
        cumulative = 0.0
        for i, weight in enumerate(weights):
            cumulative += weight
            if r < cumulative:
                self._log("weighted_choice", i, f"{context}:selected[{i}]")
                return items[i]
        self._log("weighted_choice", len(items) - 1, f"{context}:fallback")
        return items[-1]

    def generate_id(self, prefix: str = "", length: int = 16) -> str:
        """Random identifier over [0-9a-zA-Z] with an optional prefix."""
        span = len(ID_ALPHABET)
        chars = [
            ID_ALPHABET[min(int(self._next_float() * span), span - 1)]
            for _ in range(length)
        ]
        result = prefix + "".join(chars)
        self._log("generate_id", len(result), f"prefix:{prefix}")
        return result

    def generate_bytes(self, length: int) -> bytes:
        """Random bytes."""
        data = self._next_bytes(length)
        self._log("generate_bytes", length, "bytes")
        return data

    def shuffle(self, items: Sequence[T], context: str = "shuffle") -> List[T]:
        """Fisher-Yates shuffle into a new list."""
        shuffled = list(items)
        for i in range(len(shuffled) - 1, 0, -1):
            j = min(int(self._next_float() * (i + 1)), i)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        self._log("shuffle", len(shuffled), context)
        return shuffled

    def get_audit_log(self) -> List[RandomnessAuditEntry]:
        return list(self._audit_log)

    def clear_audit_log(self) -> None:
        self._audit_log = []

    def get_metrics(self) -> Dict[str, Any]:
        """Randomness usage metrics from the audit log."""
        total = len(self._audit_log)
        by_source: Dict[str, int] = {}
        for entry in self._audit_log:
            by_source[entry.source] = by_source.get(entry.source, 0) + 1
        crypto_ops = by_source.get("crypto", 0)
        return {
            "total_operations": total,
            "operations_by_source": by_source,
            "quality_score": (crypto_ops / total) * 100 if total > 0 else 0.0,
            "recent_sources": [e.source for e in self._audit_log[-100:]],
        }

    def validate_quality(self, sample_size: int = 1000) -> Dict[str, Any]:
        """
        Sample the source and check it looks uniform on [0, 1).

        Checks mean (~0.5), variance (~1/12) and a 10-bin histogram.

        Args:
            sample_size: Number of samples to draw.

        Returns:
            Dict with is_valid, issues and statistics.
        """
        samples = np.array([self.random("validation") for _ in range(sample_size)])
        mean = float(samples.mean())
        variance = float(samples.var())
        bins, _ = np.histogram(samples, bins=10, range=(0.0, 1.0))

        issues = []
        if abs(mean - 0.5) > 0.05:
            issues.append(f"Mean deviation too high: {mean:.4f} (expected ~0.5)")

        expected_variance = 1.0 / 12.0
        if abs(variance - expected_variance) > 0.02:
            issues.append(f"Variance deviation: {variance:.4f} (expected ~{expected_variance:.4f})")

        expected_bin = sample_size / 10
        max_deviation = float(np.max(np.abs(bins - expected_bin)))
        if max_deviation > expected_bin * 0.2:
            issues.append(f"Distribution not uniform, max deviation: {max_deviation:.0f}")

        if issues:
            logger.warning("Entropy quality check failed (%s): %s", self.source_name, issues)

        return {
            "is_valid": len(issues) == 0,
            "issues": issues,
            "statistics": {
                "mean": mean,
                "variance": variance,
                "distribution": bins.tolist(),
            },
        }


class CryptoEntropySource(EntropySource):
    """
    OS CSPRNG-backed source.

    Draws from a pre-filled entropy pool, 4 bytes per float, refilling when
    the pool runs low.
    """

    source_name = "crypto"

    def __init__(self, pool_size: int = 1024, clock: Optional[Clock] = None):
        super().__init__(clock)
        if pool_size < 8:
            raise ValueError(f"Entropy pool must hold at least 8 bytes, got {pool_size}")
        self._pool_size = pool_size
        self._pool = b""
        self._pool_index = 0
        self._refill_pool()

    def _refill_pool(self) -> None:
        self._pool = secrets.token_bytes(self._pool_size)
        self._pool_index = 0

    def _next_float(self) -> float:
        if self._pool_index > self._pool_size - 4:
            self._refill_pool()
        chunk = self._pool[self._pool_index:self._pool_index + 4]
        self._pool_index += 4
        return int.from_bytes(chunk, "big") / 4294967296.0

    def _next_bytes(self, length: int) -> bytes:
        return secrets.token_bytes(length)


class SeededEntropySource(EntropySource):
    """Reproducible source for simulations and replays."""

    source_name = "seeded"

    def __init__(self, seed: Optional[int] = None, clock: Optional[Clock] = None):
        """
        Args:
            seed: Random seed for reproducibility. Random if None.
            clock: Time source for audit timestamps.
        """
        super().__init__(clock)
        self._seed = seed
        self._rng = random.Random(seed)

    def _next_float(self) -> float:
        return self._rng.random()

    def _next_bytes(self, length: int) -> bytes:
        return bytes(self._rng.getrandbits(8) for _ in range(length))

    def reset(self, seed: Optional[int] = None) -> None:
        """Restart the sequence, optionally with a new seed."""
        if seed is not None:
            self._seed = seed
        self._rng = random.Random(self._seed)


class ScriptedEntropySource(EntropySource):
    """Cycles through a fixed sequence of floats; for tests."""

    source_name = "scripted"

    def __init__(self, values: Sequence[float], clock: Optional[Clock] = None):
        super().__init__(clock)
        if len(values) == 0:
            raise ValueError("ScriptedEntropySource needs at least one value")
        for v in values:
            if not 0.0 <= v < 1.0:
                raise ValueError(f"Scripted values must lie in [0, 1), got {v}")
        self._values = list(values)
        self._index = 0

    def _next_float(self) -> float:
        value = self._values[self._index % len(self._values)]
        self._index += 1
        return value
