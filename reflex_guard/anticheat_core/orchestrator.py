"""
Anti-Cheat Orchestrator
=======================

Owns one of each validator per session, fans host events out to them,
folds their findings into SecurityViolations and a running risk total, and
issues the final AntiCheatReport.

Usage:
    system = create_standard_system()
    system.start_game_session("player-1")
    result = system.validate_game_update(update, previous_update)
    if result.should_terminate:
        ...
    report = system.end_game_session(final_update)
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Hashable, List, Mapping, Optional, Set, Tuple, Union

from reflex_guard.anticheat_core.clock import Clock, SystemClock
from reflex_guard.anticheat_core.config_loader import GameConfig, PresetConfig, get_config
from reflex_guard.anticheat_core.entropy import EntropySource, CryptoEntropySource
from reflex_guard.anticheat_core.events import (
    GameActionInput,
    GameUpdate,
    PowerUpActivationInput,
    TapInput,
    describe_input,
    parse_player_input,
)
from reflex_guard.anticheat_core.pattern_detector import PatternDetector
from reflex_guard.anticheat_core.powerups import ActivationResult, PowerUpManager
from reflex_guard.anticheat_core.risk import aggregate_risk, severity_for_risk
from reflex_guard.anticheat_core.score_validator import GameStateSnapshot, ScoreValidator
from reflex_guard.anticheat_core.session_timer import SecureSessionTimer
from reflex_guard.anticheat_core.violations import SecurityViolation

logger = logging.getLogger(__name__)

RECOMMENDED_ACTIONS = ("allow", "warn", "flag", "ban")

UpdateLike = Union[GameUpdate, Mapping[str, Any]]


@dataclass(frozen=True)
class AntiCheatConfig:
    """Which checks run, and the two risk thresholds."""
    enable_realtime_validation: bool = True
    enable_pattern_detection: bool = True
    enable_timing_validation: bool = True
    enable_score_validation: bool = True
    enable_power_up_validation: bool = True
    risk_threshold: int = 50
    ban_threshold: int = 100
    log_suspicious_activity: bool = True

    def __post_init__(self) -> None:
        if self.risk_threshold <= 0:
            raise ValueError(f"risk_threshold must be positive, got {self.risk_threshold}")
        if self.ban_threshold < self.risk_threshold:
            raise ValueError(
                f"ban_threshold ({self.ban_threshold}) must not be below "
                f"risk_threshold ({self.risk_threshold})"
            )

    @classmethod
    def from_preset(cls, preset: PresetConfig) -> "AntiCheatConfig":
        return cls(**asdict(preset))

    @classmethod
    def preset(cls, name: str, game_config: Optional[GameConfig] = None) -> "AntiCheatConfig":
        """
        Build from a named preset in the YAML config.

        Raises:
            ValueError: If the preset does not exist.
        """
        if game_config is None:
            game_config = get_config()
        return cls.from_preset(game_config.get_preset(name))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class GameStats:
    """Summary statistics attached to a report."""
    final_score: int
    final_round: int
    game_duration: float
    average_reaction_time: float
    power_ups_used: int
    suspicious_patterns: Tuple[str, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "finalScore": self.final_score,
            "finalRound": self.final_round,
            "gameDuration": self.game_duration,
            "averageReactionTime": self.average_reaction_time,
            "powerUpsUsed": self.power_ups_used,
            "suspiciousPatterns": list(self.suspicious_patterns),
        }


@dataclass(frozen=True)
class AntiCheatReport:
    """Terminal artifact of a session."""
    session_id: str
    player_id: Optional[str]
    game_start_time: float
    game_end_time: float
    total_violations: int
    high_risk_violations: int
    final_risk_score: int
    recommended_action: str
    violations: Tuple[SecurityViolation, ...]
    game_stats: GameStats

    def __post_init__(self) -> None:
        if self.recommended_action not in RECOMMENDED_ACTIONS:
            raise ValueError(f"Unknown recommended action: '{self.recommended_action}'")

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dict in the host's field naming."""
        return {
            "sessionId": self.session_id,
            "playerId": self.player_id,
            "gameStartTime": self.game_start_time,
            "gameEndTime": self.game_end_time,
            "totalViolations": self.total_violations,
            "highRiskViolations": self.high_risk_violations,
            "finalRiskScore": self.final_risk_score,
            "recommendedAction": self.recommended_action,
            "violations": [v.to_dict() for v in self.violations],
            "gameStats": self.game_stats.to_dict(),
        }


@dataclass
class GameUpdateResult:
    """Outcome of one validate_game_update() call."""
    is_valid: bool
    violations: List[SecurityViolation]
    risk_score: int
    should_terminate: bool


@dataclass
class InputValidationResult:
    """Outcome of one validate_player_input() call."""
    is_valid: bool
    violation: Optional[SecurityViolation] = None


class AntiCheatSystem:
    """
    Per-session anti-cheat orchestrator.

    Each instance exclusively owns its timer, score validator, pattern
    detector and power-up manager. Run one instance per concurrent session;
    only the entropy source may be shared between instances.
    """

    def __init__(
        self,
        config: Optional[AntiCheatConfig] = None,
        game_config: Optional[GameConfig] = None,
        clock: Optional[Clock] = None,
        entropy: Optional[EntropySource] = None
    ):
        """
        Initialize anti-cheat system.

        Args:
            config: Check toggles and thresholds. Uses the 'default' preset if None.
            game_config: Anti-cheat rules configuration. Uses default if None.
            clock: Time source shared by all components. Uses system clock if None.
            entropy: Source for ids. Uses OS entropy if None.
        """
        if game_config is None:
            game_config = get_config()
        if config is None:
            config = AntiCheatConfig.preset("default", game_config)

        self._config = config
        self._game_config = game_config
        self._risk = game_config.risk
        self._clock = clock if clock is not None else SystemClock()
        self._entropy = entropy if entropy is not None else CryptoEntropySource(clock=self._clock)

        self._timer = SecureSessionTimer(
            game_config, self._clock, self._entropy, config.log_suspicious_activity
        )
        self._score_validator = ScoreValidator(game_config, self._clock)
        self._pattern_detector = PatternDetector(game_config)
        self._power_up_manager = PowerUpManager(game_config, self._clock, self._entropy)

        self._session_id = self._generate_session_id()
        self._game_start_time = self._clock.wall_ms()
        self._player_id: Optional[str] = None
        self._is_active = False
        self._violations: List[SecurityViolation] = []
        self._total_risk_score = 0
        self._reported_timing_issues: Set[Hashable] = set()
        self._reported_suspicion_count = 0
        self._last_update_at: Optional[float] = None
        self._report: Optional[AntiCheatReport] = None

    @property
    def config(self) -> AntiCheatConfig:
        return self._config

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def is_active(self) -> bool:
        return self._is_active

    @property
    def total_risk_score(self) -> int:
        return self._total_risk_score

    def get_violations(self) -> List[SecurityViolation]:
        return list(self._violations)

    def _generate_session_id(self) -> str:
        return self._entropy.generate_id(f"ac_{int(self._clock.wall_ms())}_", 9)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def start_game_session(self, player_id: Optional[str] = None) -> str:
        """
        Discard all prior state and begin a new session.

        Returns:
            The new session id.
        """
        self._session_id = self._generate_session_id()
        self._game_start_time = self._clock.wall_ms()
        self._player_id = player_id
        self._is_active = True
        self._violations = []
        self._total_risk_score = 0
        self._reported_timing_issues = set()
        self._reported_suspicion_count = 0
        self._last_update_at = None
        self._report = None

        self._score_validator.start_session()
        self._pattern_detector.reset()
        self._power_up_manager.start_session()
        self._timer.log_suspicious_activity = self._config.log_suspicious_activity
        self._timer.start_session()

        if self._config.log_suspicious_activity:
            logger.info("Anti-cheat session started: %s (player=%s)", self._session_id, player_id)

        return self._session_id

    def start_session(self) -> str:
        """Start a new anonymous session."""
        return self.start_game_session(None)

    def _coerce_update(self, data: UpdateLike) -> GameUpdate:
        return GameUpdate.from_dict(data, self._game_config)

    def _violation(
        self,
        type: str,
        severity: str,
        description: str,
        evidence: Any,
        timestamp: float,
        game_round: int,
        risk_score: int
    ) -> SecurityViolation:
        return SecurityViolation(
            type=type,
            severity=severity,
            description=description,
            evidence=evidence,
            timestamp=timestamp,
            game_round=game_round,
            risk_score=risk_score
        )

    def _record(self, violations: List[SecurityViolation]) -> None:
        self._violations.extend(violations)
        self._total_risk_score = aggregate_risk(violations, self._total_risk_score)

    # ------------------------------------------------------------------
    # Per-round updates
    # ------------------------------------------------------------------

    def validate_game_update(
        self,
        current: UpdateLike,
        previous: Optional[UpdateLike] = None
    ) -> GameUpdateResult:
        """
        Run every enabled check against a per-round update.

        Args:
            current: The update just reported by the host.
            previous: The prior update. Score validation runs only when given.

        Returns:
            GameUpdateResult for this update. Inactive sessions always get an
            empty, valid result.

        Raises:
            ValueError: If an update cannot be parsed.
        """
        if not self._is_active:
            return GameUpdateResult(is_valid=True, violations=[], risk_score=0, should_terminate=False)

        current = self._coerce_update(current)
        previous = self._coerce_update(previous) if previous is not None else None
        now = self._clock.wall_ms()

        self._timer.add_checkpoint("round_complete", current.round, current.score)

        violations: List[SecurityViolation] = []
        if self._config.enable_realtime_validation:
            if self._config.enable_timing_validation:
                violations.extend(self._validate_timing(current, now))
            if self._config.enable_score_validation and previous is not None:
                violations.extend(self._validate_score_progression(current, previous, now))
            if self._config.enable_power_up_validation:
                violations.extend(self._validate_power_ups(current, now))
            if self._config.enable_pattern_detection:
                violations.extend(self._detect_suspicious_patterns(current, now))

        self._last_update_at = now
        self._record(violations)
        should_terminate = self._total_risk_score >= self._config.ban_threshold

        if should_terminate and self._config.log_suspicious_activity:
            logger.error(
                "Game terminated due to high risk score: %d (session=%s, new violations=%d)",
                self._total_risk_score, self._session_id, len(violations)
            )

        return GameUpdateResult(
            is_valid=len(violations) == 0,
            violations=violations,
            risk_score=aggregate_risk(violations),
            should_terminate=should_terminate
        )

    def _validate_timing(self, current: GameUpdate, now: float) -> List[SecurityViolation]:
        """Session timing check; issues and suspicion events already reported are not counted again."""
        validation = self._timer.validate_session(current.round, current.score)
        if validation.is_valid:
            return []

        new_issues = [
            i for i in validation.issues if i.identity not in self._reported_timing_issues
        ]
        new_events = max(validation.suspicious_activity_count - self._reported_suspicion_count, 0)
        risk_score = (
            self._risk.score_issues(new_issues)
            + new_events * self._risk.weight("timing_suspicion_event")
        )
        if risk_score <= 0:
            return []

        self._reported_timing_issues.update(i.identity for i in new_issues)
        self._reported_suspicion_count = validation.suspicious_activity_count

        reasons = [str(i) for i in new_issues] or [
            f"{new_events} new suspicious timing event(s)"
        ]
        return [self._violation(
            "timing", "high",
            f"Timing validation failed: {', '.join(reasons)}",
            validation.to_dict(), now, current.round, risk_score
        )]

    def _validate_score_progression(
        self,
        current: GameUpdate,
        previous: GameUpdate,
        now: float
    ) -> List[SecurityViolation]:
        previous_at = self._last_update_at if self._last_update_at is not None else self._timer.start_time
        previous_snapshot = GameStateSnapshot.from_update(previous, previous_at)
        current_snapshot = self._score_validator.add_update_snapshot(current, now)
        self._pattern_detector.add_score_point(current.score)

        result = self._score_validator.validate_score_increase(
            previous_snapshot, current_snapshot, now - previous_at
        )
        if result.is_valid or result.risk_score <= 0:
            return []

        return [self._violation(
            "score", "high",
            f"Score validation failed: {', '.join(str(i) for i in result.issues)}",
            result.to_dict(), now, current.round, result.risk_score
        )]

    def _validate_power_ups(self, current: GameUpdate, now: float) -> List[SecurityViolation]:
        result = self._power_up_manager.update_and_validate(now)
        if result.risk_score <= 0:
            return []

        return [self._violation(
            "powerup", severity_for_risk(result.risk_score, 10),
            f"Power-up validation issues: {', '.join(str(i) for i in result.validation_issues)}",
            result.to_dict(), now, current.round, result.risk_score
        )]

    def _detect_suspicious_patterns(self, current: GameUpdate, now: float) -> List[SecurityViolation]:
        analysis = self._pattern_detector.detect_suspicious_patterns()
        if analysis.risk_score <= 0:
            return []

        return [self._violation(
            "pattern", severity_for_risk(analysis.risk_score, 15, 8),
            f"Suspicious patterns detected: {', '.join(analysis.details)}",
            analysis.to_dict(), now, current.round, analysis.risk_score
        )]

    # ------------------------------------------------------------------
    # Player inputs
    # ------------------------------------------------------------------

    def validate_player_input(
        self,
        kind: str,
        data: Any,
        state: UpdateLike
    ) -> InputValidationResult:
        """
        Validate one discrete player input.

        Args:
            kind: 'tap', 'powerup_activation' or 'game_action'.
            data: Raw input mapping or a parsed input.
            state: Current game state, for round and score.

        Returns:
            InputValidationResult. A violation, if any, is also added to the
            session log and running total.

        Raises:
            ValueError: If the input or state cannot be parsed.
        """
        player_input = parse_player_input(kind, data)
        state = self._coerce_update(state)
        if not self._is_active:
            return InputValidationResult(is_valid=True)

        now = self._clock.wall_ms()
        if isinstance(player_input, TapInput):
            result = self._validate_tap_input(player_input, state, now)
        elif isinstance(player_input, PowerUpActivationInput):
            result = self._validate_power_up_input(player_input, state, now)
        else:
            result = self._validate_game_action(player_input, state, now)

        if result.violation is not None:
            self._record([result.violation])
            if self._config.log_suspicious_activity:
                logger.warning(
                    "Rejected %s: %s (session=%s)",
                    describe_input(player_input), result.violation.description, self._session_id
                )

        return result

    def _clock_skew_violation(
        self,
        client_timestamp: float,
        evidence: Any,
        state: GameUpdate,
        now: float,
        label: str
    ) -> Optional[SecurityViolation]:
        skew = abs(now - client_timestamp)
        if skew <= self._game_config.inputs.clock_skew_tolerance:
            return None
        return self._violation(
            "timing", "medium",
            f"{label} timestamp too far from current time: {skew:.0f}ms",
            evidence, now, state.round, self._risk.weight("input_clock_skew")
        )

    def _validate_tap_input(self, tap: TapInput, state: GameUpdate, now: float) -> InputValidationResult:
        if tap.reaction_time < self._game_config.inputs.min_reaction_time:
            return InputValidationResult(is_valid=False, violation=self._violation(
                "input", "high",
                f"Impossibly fast reaction time: {tap.reaction_time:.0f}ms",
                asdict(tap), now, state.round, self._risk.weight("input_impossible_reaction")
            ))

        skew = self._clock_skew_violation(
            tap.timestamp, {"tap": asdict(tap), "server_time": now}, state, now, "Tap"
        )
        if skew is not None:
            return InputValidationResult(is_valid=False, violation=skew)

        self._pattern_detector.add_reaction_time(tap.reaction_time)
        self._pattern_detector.add_tap_timestamp(tap.timestamp)
        self._timer.add_checkpoint("tap", state.round, state.score)
        return InputValidationResult(is_valid=True)

    def _validate_power_up_input(
        self,
        request: PowerUpActivationInput,
        state: GameUpdate,
        now: float
    ) -> InputValidationResult:
        validation = self._power_up_manager.validate_power_up_activation(
            request.power_up_type, request.timestamp, state.round
        )
        if validation.is_valid or validation.risk_score <= 0:
            return InputValidationResult(is_valid=True)

        return InputValidationResult(is_valid=False, violation=self._violation(
            "powerup", severity_for_risk(validation.risk_score, 15),
            f"Power-up validation failed: {', '.join(str(i) for i in validation.issues)}",
            {"request": asdict(request), "validation": validation.to_dict()},
            now, state.round, validation.risk_score
        ))

    def _validate_game_action(self, action: GameActionInput, state: GameUpdate, now: float) -> InputValidationResult:
        skew = self._clock_skew_violation(
            action.timestamp, {"action": asdict(action), "server_time": now}, state, now, "Action"
        )
        if skew is not None:
            return InputValidationResult(is_valid=False, violation=skew)
        return InputValidationResult(is_valid=True)

    def activate_power_up(
        self,
        power_up_type: str,
        client_timestamp: float,
        state: UpdateLike
    ) -> ActivationResult:
        """
        Activate a power-up through the manager, replacing whatever is active.

        Returns:
            ActivationResult. Callers must check success before using
            active_power_up. A failed activation is recorded as a violation.
        """
        state = self._coerce_update(state)
        if not self._is_active:
            return ActivationResult(success=False, error="No active anti-cheat session")

        result = self._power_up_manager.activate_power_up(power_up_type, client_timestamp, state.round)
        if result.success:
            self._timer.add_checkpoint("power_up", state.round, state.score)
            return result

        validation = result.validation
        if validation is not None and validation.risk_score > 0:
            self._record([self._violation(
                "powerup", severity_for_risk(validation.risk_score, 15),
                result.error or "Power-up activation failed",
                validation.to_dict(), self._clock.wall_ms(), state.round, validation.risk_score
            )])
        return result

    # ------------------------------------------------------------------
    # Session end
    # ------------------------------------------------------------------

    def _recommend_action(self, high_risk_violations: int) -> str:
        if self._total_risk_score >= self._config.ban_threshold:
            return "ban"
        if self._total_risk_score >= self._config.risk_threshold:
            return "flag"
        if high_risk_violations > 0:
            return "warn"
        return "allow"

    def end_game_session(self, final_state: UpdateLike, player_id: Optional[str] = None) -> AntiCheatReport:
        """
        Run final-score validation and produce the session report.

        Args:
            final_state: Final game state.
            player_id: Overrides the player id given at session start.

        Returns:
            Immutable AntiCheatReport. Once a session has ended, later calls
            return the same report until a new session starts.
        """
        final_state = self._coerce_update(final_state)
        if self._report is not None:
            return self._report

        now = self._clock.wall_ms()
        self._is_active = False
        duration = now - self._game_start_time

        final_validation = self._score_validator.validate_final_score(
            final_state.score,
            final_state.round,
            duration,
            self._timer.get_checkpoints(),
            tap_count=self._timer.get_event_count("tap")
        )
        if not final_validation.is_valid and final_validation.risk_score > 0:
            self._record([self._violation(
                "score", "critical",
                f"Final score validation failed: {', '.join(str(i) for i in final_validation.issues)}",
                final_validation.to_dict(), now, final_state.round, final_validation.risk_score
            )])

        high_risk_violations = sum(1 for v in self._violations if v.is_high_risk)
        recommended_action = self._recommend_action(high_risk_violations)

        report = AntiCheatReport(
            session_id=self._session_id,
            player_id=player_id if player_id is not None else self._player_id,
            game_start_time=self._game_start_time,
            game_end_time=now,
            total_violations=len(self._violations),
            high_risk_violations=high_risk_violations,
            final_risk_score=self._total_risk_score,
            recommended_action=recommended_action,
            violations=tuple(self._violations),
            game_stats=GameStats(
                final_score=final_state.score,
                final_round=final_state.round,
                game_duration=duration,
                average_reaction_time=self._pattern_detector.average_reaction_time(),
                power_ups_used=self._power_up_manager.total_power_ups_used,
                suspicious_patterns=tuple(self._pattern_detector.detect_suspicious_patterns().details)
            )
        )

        self._report = report
        if self._config.log_suspicious_activity:
            logger.info(
                "Anti-cheat session ended: %s (action=%s, risk=%d, violations=%d)",
                self._session_id, recommended_action, self._total_risk_score, len(self._violations)
            )

        return report

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_current_stats(self) -> Dict[str, Any]:
        return {
            "session_id": self._session_id,
            "game_start_time": self._game_start_time,
            "current_risk_score": self._total_risk_score,
            "violation_count": len(self._violations),
            "is_game_active": self._is_active,
        }

    def update_config(self, **changes: Any) -> AntiCheatConfig:
        """
        Replace individual config fields.

        Raises:
            ValueError: On an unknown field or inconsistent thresholds.
        """
        known = {f.name for f in dataclasses.fields(AntiCheatConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")
        self._config = dataclasses.replace(self._config, **changes)
        self._timer.log_suspicious_activity = self._config.log_suspicious_activity
        return self._config

    def export_session_data(self) -> Dict[str, Any]:
        """Full dump for offline audit."""
        return {
            "session_id": self._session_id,
            "config": self._config.to_dict(),
            "violations": [v.to_dict() for v in self._violations],
            "game_timer": self._timer.export_state(),
            "score_validator": self._score_validator.get_validation_stats(),
            "power_up_manager": self._power_up_manager.export_state(),
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "session_id": self._session_id,
            "game_start_time": self._game_start_time,
            "is_game_active": self._is_active,
            "total_risk_score": self._total_risk_score,
            "violations": [v.to_dict() for v in self._violations],
            "game_timer": self._timer.export_state(),
            "score_validator": self._score_validator.export_state(),
            "pattern_detector": self._pattern_detector.export_state(),
            "power_up_manager": self._power_up_manager.export_state(),
        }


def create_system(
    preset: str = "default",
    game_config: Optional[GameConfig] = None,
    clock: Optional[Clock] = None,
    entropy: Optional[EntropySource] = None
) -> AntiCheatSystem:
    """Build a system from a named preset."""
    if game_config is None:
        game_config = get_config()
    return AntiCheatSystem(
        config=AntiCheatConfig.preset(preset, game_config),
        game_config=game_config,
        clock=clock,
        entropy=entropy
    )


def create_standard_system(**kwargs: Any) -> AntiCheatSystem:
    return create_system("standard", **kwargs)


def create_strict_system(**kwargs: Any) -> AntiCheatSystem:
    return create_system("strict", **kwargs)


def create_lenient_system(**kwargs: Any) -> AntiCheatSystem:
    """Pattern detection and logging off; higher thresholds."""
    return create_system("lenient", **kwargs)
