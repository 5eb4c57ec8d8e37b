"""
Pattern Detector
================

Rolling-window statistics over reaction times and tap timestamps that flag
bot-like consistency, superhuman timing and speed hacks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from reflex_guard.anticheat_core.config_loader import GameConfig, get_config
from reflex_guard.anticheat_core.ring_buffer import RingBuffer


@dataclass
class PatternAnalysis:
    """Combined result of all pattern checks."""
    is_bot: bool = False
    is_perfect_timing: bool = False
    is_speed_hacking: bool = False
    risk_score: int = 0
    details: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_bot": self.is_bot,
            "is_perfect_timing": self.is_perfect_timing,
            "is_speed_hacking": self.is_speed_hacking,
            "risk_score": self.risk_score,
            "details": list(self.details),
        }


class PatternDetector:
    """Holds the rolling windows and runs independent, additive checks over them."""

    def __init__(self, config: Optional[GameConfig] = None):
        if config is None:
            config = get_config()

        self._patterns = config.patterns
        self._risk = config.risk
        self._reaction_times: RingBuffer[float] = RingBuffer(self._patterns.reaction_window)
        self._score_points: RingBuffer[int] = RingBuffer(self._patterns.score_window)
        self._tap_timestamps: RingBuffer[float] = RingBuffer(self._patterns.tap_window)

    def add_reaction_time(self, reaction_time: float) -> None:
        self._reaction_times.append(float(reaction_time))

    def add_score_point(self, score: int) -> None:
        self._score_points.append(int(score))

    def add_tap_timestamp(self, timestamp: float) -> None:
        self._tap_timestamps.append(float(timestamp))

    def detect_suspicious_patterns(self) -> PatternAnalysis:
        """
        Run bot, perfect-timing and speed-hack checks.

        Returns:
            PatternAnalysis whose risk_score is the sum of every check that fired.
        """
        analysis = PatternAnalysis()
        reactions = np.array(self._reaction_times.to_list(), dtype=np.float64)

        bot_reason = self._detect_bot(reactions)
        if bot_reason:
            analysis.is_bot = True
            analysis.risk_score += self._risk.weight("pattern_bot")
            analysis.details.append(f"Bot-like behavior: {bot_reason}")

        perfect_reason = self._detect_perfect_timing(reactions)
        if perfect_reason:
            analysis.is_perfect_timing = True
            analysis.risk_score += self._risk.weight("pattern_perfect_timing")
            analysis.details.append(f"Perfect timing: {perfect_reason}")

        speed_reason = self._detect_speed_hack()
        if speed_reason:
            analysis.is_speed_hacking = True
            analysis.risk_score += self._risk.weight("pattern_speed_hack")
            analysis.details.append(f"Speed hacking: {speed_reason}")

        return analysis

    def _detect_bot(self, reactions: np.ndarray) -> Optional[str]:
        if len(reactions) < self._patterns.bot_min_samples:
            return None

        std_dev = float(np.std(reactions))
        if std_dev < self._patterns.bot_min_std_dev:
            return f"Reaction times too consistent (std dev: {std_dev:.2f}ms)"

        unique_ratio = len(np.unique(reactions)) / len(reactions)
        if unique_ratio < self._patterns.bot_min_unique_ratio:
            return f"Too many identical reaction times ({unique_ratio * 100:.1f}% unique)"

        return None

    def _detect_perfect_timing(self, reactions: np.ndarray) -> Optional[str]:
        if len(reactions) < self._patterns.perfect_min_samples:
            return None

        fast_share = float(np.mean(reactions < self._patterns.perfect_fast_reaction))
        if fast_share > self._patterns.perfect_fast_share:
            return (
                f"Too many superhuman reactions ({fast_share * 100:.1f}% under "
                f"{self._patterns.perfect_fast_reaction:.0f}ms)"
            )

        mean = float(np.mean(reactions))
        if (mean < self._patterns.perfect_mean_reaction
                and len(reactions) > self._patterns.perfect_mean_min_samples):
            return f"Average reaction time too fast: {mean:.1f}ms"

        return None

    def _detect_speed_hack(self) -> Optional[str]:
        if len(self._tap_timestamps) < self._patterns.speed_hack_min_samples:
            return None

        intervals = np.diff(np.array(self._tap_timestamps.to_list(), dtype=np.float64))
        too_fast = intervals[intervals < self._patterns.speed_hack_min_interval]
        if len(too_fast) > 0:
            return f"Taps too rapid: {float(too_fast[0]):.0f}ms between taps"

        return None

    def average_reaction_time(self) -> float:
        """Mean of the reaction-time window, 0 when empty."""
        if not self._reaction_times:
            return 0.0
        return float(np.mean(self._reaction_times.to_list()))

    def reset(self) -> None:
        self._reaction_times.clear()
        self._score_points.clear()
        self._tap_timestamps.clear()

    def export_state(self) -> Dict[str, Any]:
        return {
            "reaction_times": self._reaction_times.to_list(),
            "score_points": self._score_points.to_list(),
            "tap_timestamps": self._tap_timestamps.to_list(),
            "analysis": self.detect_suspicious_patterns().to_dict(),
        }
