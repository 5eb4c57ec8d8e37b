"""
Secure Session Timer
====================

Session time base derived from two independently sampled clocks, a bounded
checkpoint log, and session-duration / checkpoint-progression validation.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import numpy as np

from reflex_guard.anticheat_core.clock import Clock, SystemClock
from reflex_guard.anticheat_core.config_loader import GameConfig, get_config
from reflex_guard.anticheat_core.entropy import EntropySource, CryptoEntropySource
from reflex_guard.anticheat_core.risk import Issue
from reflex_guard.anticheat_core.ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

CHECKPOINT_EVENT_TYPES = ("light_change", "tap", "power_up", "round_complete")


@dataclass(frozen=True)
class TimingCheckpoint:
    """Timestamped marker of a discrete game event."""
    sequence: int        # Per-session counter, survives buffer wrap-around
    timestamp: float     # Wall clock at the event
    game_time: float     # Dual-clock time since session start
    round: int
    score: int
    event_type: str


@dataclass
class SessionValidation:
    """Result of validating a session's timing."""
    is_valid: bool
    issues: List[Issue]
    suspicious_activity_count: int
    actual_duration: float
    expected_min_duration: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [str(i) for i in self.issues],
            "suspicious_activity_count": self.suspicious_activity_count,
            "actual_duration": self.actual_duration,
            "expected_min_duration": self.expected_min_duration,
        }


class SecureSessionTimer:
    """
    Dual-clock session timer.

    Current time is `session_start + (monotonic_now - monotonic_at_start)`.
    A wall clock drifting away from it, taps arriving impossibly fast, and
    time running backwards all raise the suspicion counter. None of these
    are fatal; they are reported by validate_session().
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        clock: Optional[Clock] = None,
        entropy: Optional[EntropySource] = None,
        log_suspicious_activity: bool = True
    ):
        """
        Initialize session timer.

        Args:
            config: Anti-cheat configuration. Uses default if None.
            clock: Dual time source. Uses system clocks if None.
            entropy: Source for session ids. Uses OS entropy if None.
            log_suspicious_activity: If False, suspicious events are counted but not logged.
        """
        if config is None:
            config = get_config()

        self._config = config
        self._timing = config.timing
        self._risk = config.risk
        self._clock = clock if clock is not None else SystemClock()
        self._entropy = entropy if entropy is not None else CryptoEntropySource()
        self.log_suspicious_activity = log_suspicious_activity

        self._checkpoints: RingBuffer[TimingCheckpoint] = RingBuffer(self._timing.checkpoint_capacity)
        self._event_counts: Counter = Counter()
        self.reset()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def start_time(self) -> float:
        """Wall-clock time at session start."""
        return self._start_time

    @property
    def suspicious_activity_count(self) -> int:
        return self._suspicious_activity_count

    def _generate_session_id(self) -> str:
        timestamp = np.base_repr(int(self._clock.wall_ms()), 36).lower()
        return self._entropy.generate_id(f"{timestamp}-", 11)

    def reset(self, session_id: Optional[str] = None) -> None:
        """Discard all state and start a fresh time base."""
        self._session_id = session_id if session_id is not None else self._generate_session_id()
        self._start_time = self._clock.wall_ms()
        self._monotonic_start = self._clock.monotonic_ms()
        self._checkpoints.clear()
        self._event_counts = Counter()
        self._sequence = 0
        self._last_checkpoint_time: Optional[float] = None
        self._last_tap_time: Optional[float] = None
        self._suspicious_activity_count = 0

    def start_session(self, session_id: Optional[str] = None) -> None:
        """Start a new game session."""
        self.reset(session_id)

    def _flag(self, message: str, **details: Any) -> None:
        self._suspicious_activity_count += 1
        if not self.log_suspicious_activity:
            return
        logger.warning(
            "%s (session=%s, suspicious_count=%d, details=%s)",
            message, self._session_id, self._suspicious_activity_count, details
        )

    def get_current_time(self) -> float:
        """
        Current session time from the monotonic clock, anchored at the wall-clock start.

        A divergence from the wall clock beyond tolerance counts as suspicious.
        """
        wall_now = self._clock.wall_ms()
        game_time = self._start_time + (self._clock.monotonic_ms() - self._monotonic_start)

        difference = abs(wall_now - game_time)
        if difference > self._timing.clock_divergence_tolerance:
            self._flag(
                "Timing discrepancy detected",
                wall_now=wall_now, game_time=game_time, difference=difference
            )

        return game_time

    def add_checkpoint(self, event_type: str, round: int, score: int) -> TimingCheckpoint:
        """
        Append a checkpoint and check it against the previous ones.

        Raises:
            ValueError: If event_type is not a known checkpoint type.
        """
        if event_type not in CHECKPOINT_EVENT_TYPES:
            raise ValueError(
                f"Unknown checkpoint event type '{event_type}', "
                f"expected one of {CHECKPOINT_EVENT_TYPES}"
            )

        now = self.get_current_time()
        checkpoint = TimingCheckpoint(
            sequence=self._sequence,
            timestamp=self._clock.wall_ms(),
            game_time=now - self._start_time,
            round=round,
            score=score,
            event_type=event_type
        )
        self._sequence += 1
        self._checkpoints.append(checkpoint)
        self._event_counts[event_type] += 1

        self._validate_checkpoint(checkpoint)
        return checkpoint

    def _validate_checkpoint(self, checkpoint: TimingCheckpoint) -> None:
        """Flag impossibly fast taps and time running backwards."""
        if checkpoint.event_type == "tap" and self._last_tap_time is not None:
            tap_delta = checkpoint.timestamp - self._last_tap_time
            if 0 <= tap_delta < self._timing.min_tap_interval:
                self._flag("Suspiciously fast input detected", time_delta=tap_delta)

        if self._last_checkpoint_time is not None:
            time_delta = checkpoint.timestamp - self._last_checkpoint_time
            if time_delta < 0:
                self._flag(
                    "Negative time delta detected - possible time manipulation",
                    time_delta=time_delta
                )

        self._last_checkpoint_time = checkpoint.timestamp
        if checkpoint.event_type == "tap":
            self._last_tap_time = checkpoint.timestamp

    def calculate_expected_duration(self, rounds: int, base_interval: Optional[float] = None) -> float:
        """Minimum plausible duration: each round at half the base interval."""
        if base_interval is None:
            base_interval = self._timing.base_interval
        return rounds * base_interval * self._timing.min_duration_factor

    def calculate_max_possible_score(self, time_delta: float) -> int:
        """
        Maximum score gain possible within time_delta.

        Assumes a round every min_interval, full streak bonus and maximum multiplier.
        """
        scoring = self._config.scoring
        max_rounds = math.ceil(time_delta / self._timing.min_interval)
        max_total = (
            max_rounds
            * scoring.points_per_round
            * (1 + scoring.max_streak_bonus_fraction)
            * scoring.max_score_multiplier
        )
        return math.ceil(max_total)

    def validate_session(self, final_round: int, final_score: int) -> SessionValidation:
        """
        Validate the session's timing so far. Never raises.

        Args:
            final_round: Round reached.
            final_score: Score reached.

        Returns:
            SessionValidation with all timing issues found.
        """
        actual_duration = self.get_current_time() - self._start_time
        expected_min_duration = self.calculate_expected_duration(final_round)
        issues: List[Issue] = []

        if actual_duration < expected_min_duration:
            issues.append(self._risk.issue(
                "timing_session_too_short",
                f"Game completed too quickly: {actual_duration:.0f}ms vs expected "
                f"minimum {expected_min_duration:.0f}ms"
            ))

        if self._suspicious_activity_count > self._timing.high_suspicion_count:
            issues.append(self._risk.issue(
                "timing_high_suspicion",
                f"High suspicious activity count: {self._suspicious_activity_count}"
            ))

        issues.extend(self._validate_checkpoint_progression())

        return SessionValidation(
            is_valid=(
                len(issues) == 0
                and self._suspicious_activity_count < self._timing.suspicion_limit
            ),
            issues=issues,
            suspicious_activity_count=self._suspicious_activity_count,
            actual_duration=actual_duration,
            expected_min_duration=expected_min_duration
        )

    def _validate_checkpoint_progression(self) -> List[Issue]:
        """Walk consecutive checkpoint pairs looking for impossible transitions."""
        issues: List[Issue] = []
        checkpoints = self._checkpoints.to_list()

        for prev, curr in zip(checkpoints, checkpoints[1:]):
            if curr.score < prev.score and curr.event_type != "power_up":
                issues.append(self._risk.issue(
                    "timing_score_regression",
                    f"Score regression detected at checkpoint {curr.sequence}: "
                    f"{prev.score} -> {curr.score}",
                    key=curr.sequence
                ))

            if curr.round < prev.round:
                issues.append(self._risk.issue(
                    "timing_round_regression",
                    f"Round regression detected at checkpoint {curr.sequence}: "
                    f"{prev.round} -> {curr.round}",
                    key=curr.sequence
                ))

            score_delta = curr.score - prev.score
            time_delta = curr.game_time - prev.game_time
            max_possible = self.calculate_max_possible_score(time_delta)
            if score_delta > max_possible:
                issues.append(self._risk.issue(
                    "timing_impossible_jump",
                    f"Impossible score increase at checkpoint {curr.sequence}: "
                    f"{score_delta} points in {time_delta:.0f}ms (max possible: {max_possible})",
                    key=curr.sequence
                ))

        return issues

    def get_checkpoints(self) -> List[TimingCheckpoint]:
        """Retained checkpoints, oldest first."""
        return self._checkpoints.to_list()

    def get_event_count(self, event_type: str) -> int:
        """Lifetime count of checkpoints of a type, including evicted ones."""
        return self._event_counts[event_type]

    def is_suspicious(self) -> bool:
        return self._suspicious_activity_count > 2

    def get_session_data(self) -> Dict[str, Any]:
        checkpoints = self.get_checkpoints()
        highest_round = max([c.round for c in checkpoints] + [1])
        return {
            "session_id": self._session_id,
            "start_time": self._start_time,
            "checkpoints": [asdict(c) for c in checkpoints],
            "expected_min_duration": self.calculate_expected_duration(highest_round),
        }

    def get_timing_stats(self) -> Dict[str, Any]:
        """Mean and variance of the intervals between tap checkpoints."""
        taps = [c.game_time for c in self._checkpoints if c.event_type == "tap"]
        if len(taps) < 2:
            average, variance = 0.0, 0.0
        else:
            intervals = np.diff(np.array(taps, dtype=np.float64))
            average, variance = float(intervals.mean()), float(intervals.var())

        return {
            "average_reaction_time": average,
            "reaction_time_variance": variance,
            "suspicious_activity_count": self._suspicious_activity_count,
            "total_checkpoints": len(self._checkpoints),
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "session_id": self._session_id,
            "start_time": self._start_time,
            "checkpoints": [asdict(c) for c in self._checkpoints],
            "event_counts": dict(self._event_counts),
            "suspicious_activity_count": self._suspicious_activity_count,
        }
