"""
Power-Up Manager
================

Single-active-power-up state machine with cooldowns, rate limits and
effect-plausibility checks, plus an entropy-driven spawner.

Instance lifecycle:
    spawned -> activated -> active (start <= now <= end) -> expired or cancelled (removed)

A new activation always sends the current instance straight to removed.
Activations preempt; they never queue.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

from reflex_guard.anticheat_core.clock import Clock, SystemClock
from reflex_guard.anticheat_core.config_loader import GameConfig, PowerUpDefinition, get_config
from reflex_guard.anticheat_core.entropy import EntropySource, CryptoEntropySource
from reflex_guard.anticheat_core.risk import Issue

logger = logging.getLogger(__name__)

RARE_OR_ABOVE = ("rare", "epic", "legendary")
EPIC_OR_ABOVE = ("epic", "legendary")


@dataclass(frozen=True)
class ActivePowerUp:
    """A power-up instance with its effect window."""
    power_up_type: str
    rarity: str
    duration: float               # Nominal duration from the catalog
    start_time: float
    end_time: float
    multiplier: Optional[float] = None
    instance_id: str = ""
    is_active: bool = True

    @classmethod
    def from_definition(
        cls,
        definition: PowerUpDefinition,
        start_time: float,
        end_time: float,
        instance_id: str = ""
    ) -> "ActivePowerUp":
        return cls(
            power_up_type=definition.type,
            rarity=definition.rarity,
            duration=definition.duration,
            start_time=start_time,
            end_time=end_time,
            multiplier=definition.multiplier,
            instance_id=instance_id
        )

    @property
    def is_instant(self) -> bool:
        return self.duration <= 0

    def covers(self, now: float) -> bool:
        """True while now lies inside the effect window."""
        return self.start_time <= now <= self.end_time


@dataclass(frozen=True)
class PowerUpSpawnRecord:
    """History entry for one activation."""
    power_up_type: str
    spawn_time: float
    activation_time: Optional[float]
    duration: float
    was_activated: bool
    client_timestamp: float
    server_validation_time: float


@dataclass
class PowerUpValidationResult:
    """Result of a power-up check."""
    is_valid: bool
    issues: List[Issue]
    risk_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [str(i) for i in self.issues],
            "risk_score": self.risk_score,
        }


@dataclass
class ActivationResult:
    """Outcome of an activation request. Check success before trusting active_power_up."""
    success: bool
    active_power_up: Optional[ActivePowerUp] = None
    error: Optional[str] = None
    validation: Optional[PowerUpValidationResult] = None


@dataclass
class PowerUpUpdateResult:
    """Result of re-validating the active set."""
    active_power_ups: List[ActivePowerUp]
    validation_issues: List[Issue]
    risk_score: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_power_ups": [asdict(p) for p in self.active_power_ups],
            "validation_issues": [str(i) for i in self.validation_issues],
            "risk_score": self.risk_score,
        }


class PowerUpManager:
    """
    Enforces the single-active-power-up model.

    Owns the active set, per-type cooldown timestamps, the spawn history
    (purged after one hour) and a suspicious-activity log (capped).
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        clock: Optional[Clock] = None,
        entropy: Optional[EntropySource] = None
    ):
        """
        Initialize power-up manager.

        Args:
            config: Anti-cheat configuration. Uses default if None.
            clock: Time source for server time. Uses system clock if None.
            entropy: Source for instance ids. Uses OS entropy if None.
        """
        if config is None:
            config = get_config()

        self._config = config
        self._rules = config.power_up_rules
        self._risk = config.risk
        self._clock = clock if clock is not None else SystemClock()
        self._entropy = entropy if entropy is not None else CryptoEntropySource()
        self.reset()

    def reset(self) -> None:
        """Discard all power-up state."""
        self._active: List[ActivePowerUp] = []
        self._spawn_history: List[PowerUpSpawnRecord] = []
        self._cooldowns: Dict[str, Optional[float]] = {t: None for t in self._config.power_up_types}
        self._last_validation_time: float = self._clock.wall_ms()
        self._total_used: int = 0
        self._suspicious_activity: List[str] = []

    def start_session(self) -> None:
        self.reset()

    @property
    def total_power_ups_used(self) -> int:
        return self._total_used

    def get_active_power_ups(self, now: float) -> List[ActivePowerUp]:
        """Instances whose effect window covers now."""
        return [p for p in self._active if p.covers(now)]

    def _usage_in_last_minute(self, now: float) -> int:
        return sum(1 for r in self._spawn_history if now - r.spawn_time < 60000)

    def validate_power_up_activation(
        self,
        power_up_type: str,
        client_timestamp: float,
        game_round: int
    ) -> PowerUpValidationResult:
        """
        Check whether an activation request is plausible.

        Args:
            power_up_type: Requested power-up type.
            client_timestamp: Time the client claims the request was made.
            game_round: Current round.

        Returns:
            PowerUpValidationResult; valid only with no issues and low risk.
        """
        issues: List[Issue] = []
        now = self._clock.wall_ms()

        skew = abs(now - client_timestamp)
        if skew > self._rules.clock_skew_tolerance:
            issues.append(self._risk.issue(
                "powerup_clock_skew",
                f"Power-up activation timestamp too far from server time: {skew:.0f}ms"
            ))

        definition = self._config.find_power_up(power_up_type)
        if definition is None:
            issues.append(self._risk.issue(
                "powerup_unknown_type", f"Invalid power-up type: {power_up_type}"
            ))
            return PowerUpValidationResult(False, issues, self._risk.score_issues(issues))

        last_used = self._cooldowns.get(power_up_type)
        if last_used is not None and now - last_used < definition.cooldown:
            remaining = definition.cooldown - (now - last_used)
            issues.append(self._risk.issue(
                "powerup_cooldown",
                f"Power-up {power_up_type} still on cooldown: {remaining:.0f}ms remaining"
            ))

        # Instant effects apply on activation and hold no slot
        occupying = [p for p in self.get_active_power_ups(now) if not p.is_instant]
        if len(occupying) >= self._rules.max_concurrent:
            issues.append(self._risk.issue(
                "powerup_concurrent",
                f"Too many concurrent power-ups: {len(occupying)}/{self._rules.max_concurrent}"
            ))

        recent_usage = self._usage_in_last_minute(now)
        if recent_usage >= self._rules.max_per_minute:
            issues.append(self._risk.issue(
                "powerup_rate_limit",
                f"Power-up usage rate exceeded: {recent_usage}/{self._rules.max_per_minute} per minute"
            ))

        issues.extend(self._detect_suspicious_patterns(definition, now, game_round))

        risk_score = self._risk.score_issues(issues)
        return PowerUpValidationResult(
            is_valid=len(issues) == 0 and risk_score < self._rules.validation_risk_limit,
            issues=issues,
            risk_score=risk_score
        )

    def _detect_suspicious_patterns(
        self,
        definition: PowerUpDefinition,
        now: float,
        game_round: int
    ) -> List[Issue]:
        issues: List[Issue] = []

        recent_same_type = sum(
            1 for r in self._spawn_history
            if r.power_up_type == definition.type
            and now - r.spawn_time < self._rules.rapid_reuse_window
        )
        if recent_same_type > self._rules.rapid_reuse_limit:
            issues.append(self._risk.issue(
                "powerup_rapid_reuse",
                f"Too many {definition.type} activations in short time: {recent_same_type}"
            ))

        if game_round < self._rules.early_rare_round and definition.rarity in EPIC_OR_ABOVE:
            issues.append(self._risk.issue(
                "powerup_early_rare",
                f"Rare power-up too early in game: {definition.type} at round {game_round}"
            ))

        window = self._spawn_history[-self._rules.rare_history_window:]
        rare_count = 0
        for record in window:
            recorded = self._config.find_power_up(record.power_up_type)
            if recorded is not None and recorded.rarity in RARE_OR_ABOVE:
                rare_count += 1
        if rare_count > self._rules.rare_history_limit:
            issues.append(self._risk.issue(
                "powerup_rare_streak",
                f"Suspiciously high rate of rare power-ups: "
                f"{rare_count}/{self._rules.rare_history_window}"
            ))

        return issues

    def activate_power_up(
        self,
        power_up_type: str,
        client_timestamp: float,
        game_round: int
    ) -> ActivationResult:
        """
        Validate and activate a power-up, replacing whatever is active.

        Returns:
            ActivationResult. On failure success is False and error carries the
            first issue; no state other than the suspicious log changes.
        """
        validation = self.validate_power_up_activation(power_up_type, client_timestamp, game_round)

        if not validation.is_valid:
            self._suspicious_activity.append(
                f"Failed activation: {power_up_type} - {', '.join(str(i) for i in validation.issues)}"
            )
            self._trim_suspicious_log()
            return ActivationResult(
                success=False,
                error=f"Power-up activation failed: {validation.issues[0]}",
                validation=validation
            )

        now = self._clock.wall_ms()
        definition = self._config.get_power_up(power_up_type)
        duration = min(definition.duration, self._rules.max_duration)
        active = ActivePowerUp.from_definition(
            definition,
            start_time=now,
            end_time=now + duration,
            instance_id=self._generate_instance_id(power_up_type, now)
        )

        if self._active:
            logger.debug(
                "Cancelling %s in favour of %s",
                [p.power_up_type for p in self._active], power_up_type
            )
        self._active = [active]
        self._cooldowns[power_up_type] = now
        self._total_used += 1

        self._spawn_history.append(PowerUpSpawnRecord(
            power_up_type=power_up_type,
            spawn_time=now,
            activation_time=now,
            duration=duration,
            was_activated=True,
            client_timestamp=client_timestamp,
            server_validation_time=now
        ))
        self._cleanup_old_records(now)

        return ActivationResult(success=True, active_power_up=active, validation=validation)

    def _generate_instance_id(self, power_up_type: str, timestamp: float) -> str:
        return f"{power_up_type}-{int(timestamp)}-{self._entropy.generate_bytes(8).hex()}"

    def validate_power_up_duration(self, active: ActivePowerUp, now: float) -> PowerUpValidationResult:
        """
        Check an instance's elapsed time and effect values for tampering.

        Args:
            active: Instance to check.
            now: Current server time.
        """
        issues: List[Issue] = []

        actual_duration = now - active.start_time
        max_allowed = min(active.duration * self._rules.duration_tolerance, self._rules.max_duration)
        if actual_duration > max_allowed:
            issues.append(self._risk.issue(
                "powerup_duration_exceeded",
                f"Power-up duration exceeded: {actual_duration:.0f}ms > {max_allowed:.0f}ms"
            ))

        if now > active.end_time + self._rules.expiry_grace:
            issues.append(self._risk.issue(
                "powerup_overstayed",
                f"Power-up should have expired: current={now:.0f}, end={active.end_time:.0f}"
            ))

        issues.extend(self._validate_effects(active, now))

        risk_score = self._risk.score_issues(issues)
        return PowerUpValidationResult(
            is_valid=len(issues) == 0 and risk_score < self._rules.duration_risk_limit,
            issues=issues,
            risk_score=risk_score
        )

    def _validate_effects(self, active: ActivePowerUp, now: float) -> List[Issue]:
        """Per-type plausibility of the effect."""
        issues: List[Issue] = []
        elapsed = now - active.start_time

        if active.power_up_type == "scoreMultiplier":
            multiplier = active.multiplier if active.multiplier is not None else 1
            if not self._rules.min_multiplier <= multiplier <= self._rules.max_multiplier:
                issues.append(self._risk.issue(
                    "powerup_invalid_multiplier", f"Invalid score multiplier: {multiplier}"
                ))

        elif active.power_up_type == "slowMotion":
            if elapsed > self._rules.slow_motion_limit:
                issues.append(self._risk.issue(
                    "powerup_slow_motion_too_long",
                    f"Slow motion duration too long: {elapsed:.0f}ms"
                ))

        elif active.power_up_type == "freezeTime":
            if elapsed > self._rules.freeze_time_limit:
                issues.append(self._risk.issue(
                    "powerup_freeze_too_long",
                    f"Freeze time duration too long: {elapsed:.0f}ms"
                ))

        elif active.power_up_type in ("shield", "extraLife"):
            if elapsed > self._rules.instant_effect_limit:
                issues.append(self._risk.issue(
                    "powerup_instant_persisting",
                    f"Instant effect persisting too long: {active.power_up_type}"
                ))

        return issues

    def update_and_validate(self, now: float) -> PowerUpUpdateResult:
        """
        Expire finished instances, re-validate the rest and purge old records.

        Calling twice with the same now and no activation in between yields
        the same active set.

        Instances already past end_time leave without re-validation, so the
        overstay and instant-effect checks of validate_power_up_duration only
        fire for instances the caller passes in directly.
        """
        issues: List[Issue] = []
        risk_score = 0
        validated: List[ActivePowerUp] = []

        for active in self._active:
            if now > active.end_time:
                continue

            validation = self.validate_power_up_duration(active, now)
            if validation.is_valid:
                validated.append(active)
            else:
                issues.extend(validation.issues)
                risk_score += validation.risk_score
                self._suspicious_activity.append(
                    f"Invalid power-up: {active.power_up_type} - "
                    f"{', '.join(str(i) for i in validation.issues)}"
                )

        self._active = validated
        self._last_validation_time = now
        self._cleanup_old_records(now)

        return PowerUpUpdateResult(
            active_power_ups=list(validated),
            validation_issues=issues,
            risk_score=risk_score
        )

    def _trim_suspicious_log(self) -> None:
        capacity = self._rules.suspicious_log_capacity
        if len(self._suspicious_activity) > capacity:
            self._suspicious_activity = self._suspicious_activity[-capacity:]

    def _cleanup_old_records(self, now: float) -> None:
        """Purge spawn history past retention, trim the suspicious log, drop expired instances."""
        self._spawn_history = [
            r for r in self._spawn_history
            if now - r.spawn_time < self._rules.history_retention
        ]
        self._trim_suspicious_log()
        self._active = [p for p in self._active if now <= p.end_time]

    def get_security_stats(self) -> Dict[str, Any]:
        recent_records = self._spawn_history[-20:]
        average_risk = (
            len(self._suspicious_activity) / len(recent_records) if recent_records else 0.0
        )
        return {
            "total_power_ups_used": self._total_used,
            "suspicious_activities": len(self._suspicious_activity),
            "average_risk_score": average_risk,
            "recent_violations": self._suspicious_activity[-10:],
        }

    def get_power_up_state(self, now: Optional[float] = None) -> Dict[str, Any]:
        if now is None:
            now = self._clock.wall_ms()
        return {
            "active": [asdict(p) for p in self.get_active_power_ups(now)],
            "cooldowns": [
                {"type": t, "last_used": last_used} for t, last_used in self._cooldowns.items()
            ],
            "usage_count": self._total_used,
        }

    def export_state(self) -> Dict[str, Any]:
        return {
            "active_power_ups": [asdict(p) for p in self._active],
            "spawn_history": [asdict(r) for r in self._spawn_history],
            "cooldowns": dict(self._cooldowns),
            "last_validation_time": self._last_validation_time,
            "total_power_ups_used": self._total_used,
            "suspicious_activity": list(self._suspicious_activity),
        }


class PowerUpSpawner:
    """
    Decides when a power-up spawns and which type, from injected entropy.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        entropy: Optional[EntropySource] = None
    ):
        if config is None:
            config = get_config()

        self._config = config
        self._spawn = config.spawning
        self._entropy = entropy if entropy is not None else CryptoEntropySource()
        self._history: List[Dict[str, Any]] = []

    def should_spawn_power_up(self, now: float, game_round: int, streak: int) -> Dict[str, Any]:
        """
        Roll for a spawn, honouring the minimum interval and per-minute cap.

        Returns:
            Dict with should_spawn and, when refused by a limit, a reason.
        """
        if self._history and now - self._history[-1]["timestamp"] < self._spawn.min_spawn_interval:
            return {"should_spawn": False, "reason": "Too soon since last spawn"}

        recent = sum(1 for s in self._history if now - s["timestamp"] < 60000)
        if recent >= self._spawn.max_spawns_per_minute:
            return {"should_spawn": False, "reason": "Spawn rate limit exceeded"}

        chance = (
            self._spawn.base_chance
            + min(streak * self._spawn.streak_bonus_per_point, self._spawn.max_streak_bonus)
            + min(game_round * self._spawn.round_bonus_per_round, self._spawn.max_round_bonus)
        )
        return {"should_spawn": self._entropy.random("powerup-spawn") < chance}

    def select_power_up_type(
        self,
        game_round: int,
        streak: int,
        recent_types: Sequence[str]
    ) -> Optional[str]:
        """
        Weighted pick of a power-up type, skipping the most recent ones.

        Returns:
            A power-up type, or None when every type was used recently.
        """
        excluded = set(list(recent_types)[-self._spawn.recent_type_exclusion:])
        candidates = [d for d in self._config.power_ups if d.type not in excluded]
        if not candidates:
            return None

        weights = []
        for definition in candidates:
            weight = self._spawn.rarity_weights.get(definition.rarity, 1.0)
            if game_round > self._spawn.late_game_round and definition.rarity != "common":
                weight *= self._spawn.late_game_boost
            if streak < self._spawn.struggling_streak and definition.type in self._spawn.struggling_types:
                weight *= self._spawn.struggling_boost
            weights.append(weight)

        return self._entropy.weighted_choice(
            [d.type for d in candidates], weights, "powerup-type"
        )

    def random_power_up(self) -> Optional[PowerUpDefinition]:
        """
        Pick a power-up by rarity spawn rates; None when the roll lands past all rates.
        """
        roll = self._entropy.random("powerup-rarity-selection")
        cumulative = 0.0
        for rarity in ("common", "rare", "epic", "legendary"):
            cumulative += self._spawn.rarity_rates.get(rarity, 0.0)
            if roll <= cumulative:
                of_rarity = [d for d in self._config.power_ups if d.rarity == rarity]
                if of_rarity:
                    return self._entropy.choice(of_rarity, f"powerup-type-{rarity}")
        return None

    def record_spawn(self, power_up_type: str, timestamp: float) -> None:
        self._history.append({"timestamp": timestamp, "type": power_up_type})
        if len(self._history) > self._spawn.history_capacity:
            self._history = self._history[-self._spawn.history_capacity:]

    def reset(self) -> None:
        self._history = []
