"""
Score Validator
===============

Bounded-growth model for score deltas and final-score plausibility.

Per update the score may grow by at most:

    base        = rounds * points_per_round
    streak      = min(streak // 2, floor(base * max_streak_bonus_fraction))   if streak >= threshold
    power_ups   = min(multi + high_streak + rarity_additives, max_power_up_bonus * rounds)
    max         = floor((base + streak + power_ups) * clamp(multiplier, 1, max_multiplier))
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from reflex_guard.anticheat_core.clock import Clock, SystemClock
from reflex_guard.anticheat_core.config_loader import GameConfig, get_config
from reflex_guard.anticheat_core.events import GameUpdate
from reflex_guard.anticheat_core.powerups import ActivePowerUp
from reflex_guard.anticheat_core.risk import Issue
from reflex_guard.anticheat_core.ring_buffer import RingBuffer
from reflex_guard.anticheat_core.session_timer import TimingCheckpoint

SCORING_EVENT_TYPES = ("tap", "round_complete")


@dataclass(frozen=True)
class GameStateSnapshot:
    """Point-in-time capture of score, round, streak and power-up state."""
    timestamp: float
    round: int
    score: int
    streak: int
    lives_remaining: int = 3
    active_power_ups: Tuple[ActivePowerUp, ...] = ()
    game_speed_multiplier: float = 1.0
    score_multiplier: float = 1.0

    @classmethod
    def from_update(cls, update: GameUpdate, timestamp: float) -> "GameStateSnapshot":
        return cls(
            timestamp=timestamp,
            round=update.round,
            score=update.score,
            streak=update.streak,
            lives_remaining=update.lives_remaining,
            active_power_ups=tuple(update.active_power_ups),
            game_speed_multiplier=update.game_speed_multiplier,
            score_multiplier=update.score_multiplier
        )


@dataclass
class ScoreValidationResult:
    """Outcome of a score check."""
    is_valid: bool
    issues: List[Issue]
    risk_score: int
    max_possible_score: int
    actual_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [str(i) for i in self.issues],
            "risk_score": self.risk_score,
            "max_possible_score": self.max_possible_score,
            "actual_score": self.actual_score,
        }


class ScoreValidator:
    """
    Validates score growth against the theoretical maximum.

    Snapshots are held in a ring buffer; the newest is the baseline for
    validate_game_state().
    """

    def __init__(self, config: Optional[GameConfig] = None, clock: Optional[Clock] = None):
        """
        Initialize score validator.

        Args:
            config: Anti-cheat configuration. Uses default if None.
            clock: Time source used when no timestamp is given. Uses system clock if None.
        """
        if config is None:
            config = get_config()

        self._config = config
        self._scoring = config.scoring
        self._risk = config.risk
        self._clock = clock if clock is not None else SystemClock()
        self._snapshots: RingBuffer[GameStateSnapshot] = RingBuffer(self._scoring.snapshot_capacity)

    def reset(self) -> None:
        self._snapshots.clear()

    def start_session(self) -> None:
        self.reset()

    @property
    def snapshot_count(self) -> int:
        return len(self._snapshots)

    def latest_snapshot(self) -> Optional[GameStateSnapshot]:
        return self._snapshots.latest()

    def add_snapshot(self, snapshot: GameStateSnapshot) -> None:
        self._snapshots.append(snapshot)

    def add_update_snapshot(self, update: GameUpdate, timestamp: Optional[float] = None) -> GameStateSnapshot:
        """Record a snapshot built from a host update."""
        if timestamp is None:
            timestamp = self._clock.wall_ms()
        snapshot = GameStateSnapshot.from_update(update, timestamp)
        self._snapshots.append(snapshot)
        return snapshot

    def calculate_max_score_increase(
        self,
        rounds: int,
        streak: int,
        active_power_ups: Sequence[ActivePowerUp] = (),
        score_multiplier: float = 1.0
    ) -> int:
        """
        Largest score gain possible over the given number of rounds.

        Non-decreasing in rounds and in streak. Bounded by
        points_per_round * rounds * (1 + streak fraction + power-up fraction) * max multiplier.

        Args:
            rounds: Rounds advanced. Zero or negative gives 0.
            streak: Current streak.
            active_power_ups: Power-ups active during the rounds.
            score_multiplier: Claimed multiplier; clamped to [1, max].

        Returns:
            Maximum score increase.
        """
        if rounds <= 0:
            return 0

        scoring = self._scoring
        base_points = rounds * scoring.points_per_round

        streak_bonus = 0
        if streak >= scoring.bonus_points_threshold:
            streak_bonus = min(
                streak // 2,
                math.floor(base_points * scoring.max_streak_bonus_fraction)
            )

        power_up_bonus = 0
        if active_power_ups:
            if len(active_power_ups) >= 2:
                power_up_bonus += math.floor(base_points * scoring.multi_power_up_bonus)
            if streak >= scoring.high_streak_threshold:
                power_up_bonus += math.floor(base_points * scoring.high_streak_power_up_bonus)
            for power_up in active_power_ups:
                power_up_bonus += scoring.rarity_bonus_per_round.get(power_up.rarity, 0) * rounds
            power_up_bonus = min(power_up_bonus, scoring.max_power_up_bonus * rounds)

        multiplier = min(max(score_multiplier, 1.0), scoring.max_score_multiplier)
        return math.floor((base_points + streak_bonus + power_up_bonus) * multiplier)

    def validate_score_increase(
        self,
        previous: GameStateSnapshot,
        current: GameStateSnapshot,
        time_delta: float
    ) -> ScoreValidationResult:
        """
        Check the change between two snapshots.

        Args:
            previous: Earlier snapshot.
            current: Later snapshot.
            time_delta: Milliseconds between them.

        Returns:
            ScoreValidationResult; valid only with no issues and risk below the increment limit.
        """
        issues: List[Issue] = []
        score_delta = current.score - previous.score
        round_delta = current.round - previous.round

        max_increase = self.calculate_max_score_increase(
            round_delta,
            current.streak,
            current.active_power_ups,
            current.score_multiplier
        )

        if score_delta > max_increase:
            issues.append(self._risk.issue(
                "score_exceeds_max",
                f"Score increase exceeds maximum possible: {score_delta} > {max_increase}"
            ))

        if round_delta < 0:
            issues.append(self._risk.issue(
                "round_regression",
                f"Round regression detected: {previous.round} -> {current.round}"
            ))

        if round_delta > 1:
            issues.append(self._risk.issue(
                "rounds_skipped",
                f"Multiple rounds skipped: {round_delta} rounds in single update"
            ))

        streak_delta = current.streak - previous.streak
        if streak_delta > round_delta:
            issues.append(self._risk.issue(
                "streak_outpaced_rounds",
                f"Streak increased more than rounds: streak +{streak_delta}, rounds +{round_delta}"
            ))

        if time_delta < self._scoring.min_round_time and round_delta > 0:
            issues.append(self._risk.issue(
                "round_too_fast", f"Round completed too quickly: {time_delta:.0f}ms"
            ))

        issues.extend(self._validate_power_up_usage(current))

        risk_score = self._risk.score_issues(issues)
        return ScoreValidationResult(
            is_valid=len(issues) == 0 and risk_score < self._scoring.increment_risk_limit,
            issues=issues,
            risk_score=risk_score,
            max_possible_score=previous.score + max_increase,
            actual_score=current.score
        )

    def _validate_power_up_usage(self, current: GameStateSnapshot) -> List[Issue]:
        """Multiplier and speed bounds, plus the client-reported power-up windows."""
        issues: List[Issue] = []
        scoring = self._scoring

        if not 1 <= current.score_multiplier <= scoring.max_score_multiplier:
            issues.append(self._risk.issue(
                "score_multiplier_out_of_range",
                f"Score multiplier out of range: {current.score_multiplier} "
                f"(valid 1-{scoring.max_score_multiplier})"
            ))

        if not scoring.min_game_speed <= current.game_speed_multiplier <= scoring.max_game_speed:
            issues.append(self._risk.issue(
                "game_speed_out_of_range",
                f"Game speed multiplier out of valid range: {current.game_speed_multiplier}"
            ))

        for power_up in current.active_power_ups:
            if self._config.find_power_up(power_up.power_up_type) is None:
                issues.append(self._risk.issue(
                    "powerup_unknown_reported",
                    f"Unknown power-up reported active: {power_up.power_up_type}"
                ))
                continue

            window = power_up.end_time - power_up.start_time
            if window > power_up.duration * scoring.power_up_duration_tolerance:
                issues.append(self._risk.issue(
                    "powerup_duration_extended",
                    f"Power-up duration extended beyond normal: {window:.0f}ms vs "
                    f"expected {power_up.duration:.0f}ms"
                ))

            if current.timestamp > power_up.end_time + scoring.expired_power_up_grace:
                issues.append(self._risk.issue(
                    "powerup_expired_still_active",
                    f"Expired power-up still active: {power_up.power_up_type}"
                ))

        return issues

    def validate_game_state(self, update: GameUpdate, timestamp: Optional[float] = None) -> ScoreValidationResult:
        """
        Validate an update against the newest stored snapshot. Does not store it.

        With no stored snapshot there is nothing to compare and the update is valid.
        """
        if timestamp is None:
            timestamp = self._clock.wall_ms()

        previous = self._snapshots.latest()
        if previous is None:
            return ScoreValidationResult(
                is_valid=True,
                issues=[],
                risk_score=0,
                max_possible_score=update.score,
                actual_score=update.score
            )

        current = GameStateSnapshot.from_update(update, timestamp)
        return self.validate_score_increase(previous, current, timestamp - previous.timestamp)

    def calculate_theoretical_max_score(self, rounds: int) -> int:
        """Highest score reachable in the given rounds assuming every bonus at its cap."""
        scoring = self._scoring
        base_score = rounds * scoring.points_per_round
        max_streak_bonus = math.floor(base_score * scoring.max_streak_bonus_fraction)
        max_power_up_bonus = rounds * scoring.max_power_up_bonus
        return math.floor(
            (base_score + max_streak_bonus + max_power_up_bonus) * scoring.max_score_multiplier
        )

    def validate_final_score(
        self,
        final_score: int,
        final_round: int,
        duration: float,
        checkpoints: Sequence[TimingCheckpoint],
        tap_count: Optional[int] = None
    ) -> ScoreValidationResult:
        """
        Validate the final score of a session.

        Args:
            final_score: Score reported at the end.
            final_round: Round reached.
            duration: Session duration in ms.
            checkpoints: Timer checkpoints, oldest first.
            tap_count: Lifetime tap count. Counted from checkpoints if None.

        Returns:
            ScoreValidationResult; valid only with no issues and risk below the final limit.
        """
        issues: List[Issue] = []
        theoretical_max = self.calculate_theoretical_max_score(final_round)

        if final_score > theoretical_max:
            issues.append(self._risk.issue(
                "final_score_exceeds_max",
                f"Final score exceeds theoretical maximum: {final_score} > {theoretical_max} "
                f"after {duration:.0f}ms"
            ))

        issues.extend(self._validate_score_progression(checkpoints))

        if tap_count is None:
            tap_count = sum(1 for c in checkpoints if c.event_type == "tap")
        accuracy = min(tap_count / final_round, 1.0) if final_round > 0 else 0.0
        if (accuracy > self._scoring.suspicious_accuracy
                and final_round > self._scoring.suspicious_accuracy_min_rounds):
            issues.append(self._risk.issue(
                "suspicious_accuracy",
                f"Suspiciously high accuracy: {accuracy * 100:.1f}% over {final_round} rounds"
            ))

        risk_score = self._risk.score_issues(issues)
        return ScoreValidationResult(
            is_valid=len(issues) == 0 and risk_score < self._scoring.final_risk_limit,
            issues=issues,
            risk_score=risk_score,
            max_possible_score=theoretical_max,
            actual_score=final_score
        )

    def _validate_score_progression(self, checkpoints: Sequence[TimingCheckpoint]) -> List[Issue]:
        issues: List[Issue] = []
        scoring_points = [c for c in checkpoints if c.event_type in SCORING_EVENT_TYPES]

        for prev, curr in zip(scoring_points, scoring_points[1:]):
            score_delta = curr.score - prev.score
            time_delta = curr.game_time - prev.game_time
            # Streak can be at most the round number
            max_increase = self.calculate_max_score_increase(
                curr.round - prev.round, curr.round, (), self._scoring.max_score_multiplier
            )

            if score_delta > max_increase:
                issues.append(self._risk.issue(
                    "final_progression_jump",
                    f"Impossible score jump at checkpoint {curr.sequence}: "
                    f"+{score_delta} (max possible: {max_increase})",
                    key=curr.sequence
                ))

            if score_delta < 0:
                issues.append(self._risk.issue(
                    "final_progression_decrease",
                    f"Score decreased at checkpoint {curr.sequence}: {prev.score} -> {curr.score}",
                    key=curr.sequence
                ))

            if time_delta < self._scoring.min_scoring_interval and score_delta > 0:
                issues.append(self._risk.issue(
                    "final_progression_too_rapid",
                    f"Score increased too rapidly at checkpoint {curr.sequence}: "
                    f"+{score_delta} in {time_delta:.0f}ms",
                    key=curr.sequence
                ))

        return issues

    def get_validation_stats(self) -> Dict[str, Any]:
        """Re-validate consecutive stored snapshots and summarise."""
        snapshots = self._snapshots.to_list()
        total_risk = 0
        total_issues = 0
        high_risk_markers: List[str] = []

        for prev, curr in zip(snapshots, snapshots[1:]):
            result = self.validate_score_increase(prev, curr, curr.timestamp - prev.timestamp)
            total_risk += result.risk_score
            total_issues += len(result.issues)
            if result.risk_score > 10:
                high_risk_markers.append(
                    f"Round {curr.round}: {', '.join(str(i) for i in result.issues)}"
                )

        validations = max(len(snapshots) - 1, 0)
        return {
            "total_validations": validations,
            "average_risk_score": total_risk / validations if validations else 0.0,
            "total_issues": total_issues,
            "high_risk_events": high_risk_markers,
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "snapshots": [
                {
                    "timestamp": s.timestamp,
                    "round": s.round,
                    "score": s.score,
                    "streak": s.streak,
                    "lives_remaining": s.lives_remaining,
                    "active_power_ups": [p.power_up_type for p in s.active_power_ups],
                    "game_speed_multiplier": s.game_speed_multiplier,
                    "score_multiplier": s.score_multiplier,
                }
                for s in self._snapshots
            ],
            "stats": self.get_validation_stats(),
        }
