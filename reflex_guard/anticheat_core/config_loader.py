"""
Configuration Loader
====================

Loads and validates anticheat_config.yaml, providing typed access to all parameters.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from reflex_guard.anticheat_core.risk import RiskPolicy

RARITIES = ("common", "rare", "epic", "legendary")


@dataclass(frozen=True)
class ScoringConfig:
    """Bounded-growth model parameters."""
    points_per_round: int
    bonus_points_threshold: int      # Streak needed before streak bonus applies
    max_streak_bonus_percent: int    # Streak bonus cap, percent of base points
    max_score_multiplier: float
    max_power_up_bonus: int          # Power-up bonus cap per round
    high_streak_threshold: int
    multi_power_up_bonus: float
    high_streak_power_up_bonus: float
    rarity_bonus_per_round: Dict[str, int]
    min_round_time: float
    min_game_speed: float
    max_game_speed: float
    power_up_duration_tolerance: float
    expired_power_up_grace: float
    increment_risk_limit: int
    final_risk_limit: int
    snapshot_capacity: int
    suspicious_accuracy: float
    suspicious_accuracy_min_rounds: int
    min_scoring_interval: float

    @property
    def max_streak_bonus_fraction(self) -> float:
        return self.max_streak_bonus_percent / 100.0

    @property
    def max_power_up_bonus_fraction(self) -> float:
        """Power-up bonus cap relative to base points."""
        return self.max_power_up_bonus / self.points_per_round


@dataclass(frozen=True)
class TimingConfig:
    """Session timer parameters."""
    base_interval: float
    min_duration_factor: float
    min_interval: float
    clock_divergence_tolerance: float
    min_tap_interval: float
    suspicion_limit: int
    high_suspicion_count: int
    checkpoint_capacity: int


@dataclass(frozen=True)
class InputConfig:
    """Player input plausibility limits."""
    min_reaction_time: float
    clock_skew_tolerance: float


@dataclass(frozen=True)
class PatternConfig:
    """Rolling-window pattern detection thresholds."""
    reaction_window: int
    score_window: int
    tap_window: int
    bot_min_samples: int
    bot_min_std_dev: float
    bot_min_unique_ratio: float
    perfect_min_samples: int
    perfect_fast_reaction: float
    perfect_fast_share: float
    perfect_mean_reaction: float
    perfect_mean_min_samples: int
    speed_hack_min_samples: int
    speed_hack_min_interval: float


@dataclass(frozen=True)
class PowerUpRulesConfig:
    """Power-up manager limits."""
    max_duration: float
    max_concurrent: int
    max_per_minute: int
    clock_skew_tolerance: float
    rapid_reuse_window: float
    rapid_reuse_limit: int
    early_rare_round: int
    rare_history_window: int
    rare_history_limit: int
    duration_tolerance: float
    expiry_grace: float
    min_multiplier: float
    max_multiplier: float
    slow_motion_limit: float
    freeze_time_limit: float
    instant_effect_limit: float
    history_retention: float
    suspicious_log_capacity: int
    validation_risk_limit: int
    duration_risk_limit: int


@dataclass(frozen=True)
class PowerUpDefinition:
    """Configuration for a single power-up type."""
    type: str
    name: str
    rarity: str
    duration: float     # 0 for instant effects
    cooldown: float
    multiplier: Optional[float] = None

    @property
    def is_instant(self) -> bool:
        return self.duration <= 0


@dataclass(frozen=True)
class SpawnConfig:
    """Power-up spawner parameters."""
    min_spawn_interval: float
    max_spawns_per_minute: int
    base_chance: float
    streak_bonus_per_point: float
    max_streak_bonus: float
    round_bonus_per_round: float
    max_round_bonus: float
    recent_type_exclusion: int
    history_capacity: int
    late_game_round: int
    late_game_boost: float
    struggling_streak: int
    struggling_boost: float
    struggling_types: Tuple[str, ...]
    rarity_weights: Dict[str, float]
    rarity_rates: Dict[str, float]


@dataclass(frozen=True)
class PresetConfig:
    """Toggleable checks and thresholds for one anti-cheat preset."""
    enable_realtime_validation: bool
    enable_pattern_detection: bool
    enable_timing_validation: bool
    enable_score_validation: bool
    enable_power_up_validation: bool
    risk_threshold: int
    ban_threshold: int
    log_suspicious_activity: bool


@dataclass(frozen=True)
class GameConfig:
    """
    Complete anti-cheat configuration loaded from YAML.

    All values are immutable to prevent accidental modification during a session.
    """
    scoring: ScoringConfig
    timing: TimingConfig
    inputs: InputConfig
    patterns: PatternConfig
    power_up_rules: PowerUpRulesConfig
    power_ups: Tuple[PowerUpDefinition, ...]
    spawning: SpawnConfig
    presets: Dict[str, PresetConfig]
    risk: RiskPolicy

    @property
    def power_up_types(self) -> Tuple[str, ...]:
        """All configured power-up type names, in catalog order."""
        return tuple(p.type for p in self.power_ups)

    def find_power_up(self, power_up_type: str) -> Optional[PowerUpDefinition]:
        """Get a power-up definition by type, or None if unknown."""
        for definition in self.power_ups:
            if definition.type == power_up_type:
                return definition
        return None

    def get_power_up(self, power_up_type: str) -> PowerUpDefinition:
        """Get a power-up definition by type."""
        definition = self.find_power_up(power_up_type)
        if definition is None:
            raise ValueError(f"Invalid power-up type: {power_up_type}")
        return definition

    def get_preset(self, name: str) -> PresetConfig:
        """Get a named preset."""
        if name not in self.presets:
            raise ValueError(
                f"Unknown preset '{name}', expected one of {sorted(self.presets)}"
            )
        return self.presets[name]


def _build(cls, data: dict):
    """Build a flat dataclass, coercing each field to its annotated scalar type."""
    casts = {"int": int, "float": float, "bool": bool, "str": str}
    kwargs = {}
    for f in fields(cls):
        if f.name not in data:
            raise ValueError(f"Missing '{f.name}' in {cls.__name__} section")
        cast = casts.get(f.type)
        kwargs[f.name] = cast(data[f.name]) if cast else data[f.name]
    return cls(**kwargs)


def _parse_power_up(data: dict) -> PowerUpDefinition:
    """Parse a single power-up definition from YAML."""
    multiplier = data.get("multiplier")
    return PowerUpDefinition(
        type=str(data["type"]),
        name=str(data.get("name", data["type"])),
        rarity=str(data["rarity"]),
        duration=float(data["duration"]),
        cooldown=float(data["cooldown"]),
        multiplier=float(multiplier) if multiplier is not None else None
    )


def _parse_presets(data: dict) -> Dict[str, PresetConfig]:
    """Parse presets; every named preset inherits unspecified fields from 'default'."""
    if "default" not in data:
        raise ValueError("presets section must define a 'default' preset")
    base = data["default"]
    presets = {}
    for name, overrides in data.items():
        merged = dict(base)
        merged.update(overrides or {})
        presets[name] = _build(PresetConfig, merged)
    return presets


def _validate_config(config: GameConfig) -> None:
    """Validate configuration consistency."""
    if config.scoring.points_per_round <= 0:
        raise ValueError("scoring.points_per_round must be positive")

    if config.scoring.max_score_multiplier < 1:
        raise ValueError("scoring.max_score_multiplier must be at least 1")

    for rarity in config.scoring.rarity_bonus_per_round:
        if rarity not in RARITIES:
            raise ValueError(f"Unknown rarity in rarity_bonus_per_round: '{rarity}'")

    seen = set()
    for definition in config.power_ups:
        if definition.type in seen:
            raise ValueError(f"Duplicate power-up type: {definition.type}")
        seen.add(definition.type)
        if definition.rarity not in RARITIES:
            raise ValueError(
                f"Power-up {definition.type} has unknown rarity '{definition.rarity}'"
            )
        if definition.duration < 0 or definition.cooldown < 0:
            raise ValueError(f"Power-up {definition.type} has negative timing values")

    for power_up_type in config.spawning.struggling_types:
        if power_up_type not in seen:
            raise ValueError(f"spawning.struggling_types names unknown type '{power_up_type}'")

    for name, preset in config.presets.items():
        if preset.ban_threshold < preset.risk_threshold:
            raise ValueError(
                f"Preset '{name}': ban_threshold ({preset.ban_threshold}) must not be "
                f"below risk_threshold ({preset.risk_threshold})"
            )

    for capacity in (
        config.scoring.snapshot_capacity,
        config.timing.checkpoint_capacity,
        config.patterns.reaction_window,
        config.patterns.score_window,
        config.patterns.tap_window,
    ):
        if capacity <= 0:
            raise ValueError("Buffer capacities must be positive")


def load_config(config_path: Optional[str] = None) -> GameConfig:
    """
    Load and validate anti-cheat configuration from YAML.

    Args:
        config_path: Path to anticheat_config.yaml. If None, uses default location.

    Returns:
        Validated GameConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValueError: If config validation fails.
    """
    if config_path is None:
        config_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)),
            "anticheat_config.yaml"
        )

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        raw = yaml.safe_load(f)

    scoring_data = dict(raw["scoring"])
    scoring_data["rarity_bonus_per_round"] = {
        str(k): int(v) for k, v in scoring_data.get("rarity_bonus_per_round", {}).items()
    }
    scoring = _build(ScoringConfig, scoring_data)

    spawn_data = dict(raw["spawning"])
    spawn_data["struggling_types"] = tuple(str(t) for t in spawn_data.get("struggling_types", ()))
    spawn_data["rarity_weights"] = {
        str(k): float(v) for k, v in spawn_data["rarity_weights"].items()
    }
    spawn_data["rarity_rates"] = {
        str(k): float(v) for k, v in spawn_data["rarity_rates"].items()
    }

    config = GameConfig(
        scoring=scoring,
        timing=_build(TimingConfig, raw["timing"]),
        inputs=_build(InputConfig, raw["inputs"]),
        patterns=_build(PatternConfig, raw["patterns"]),
        power_up_rules=_build(PowerUpRulesConfig, raw["power_up_rules"]),
        power_ups=tuple(_parse_power_up(p) for p in raw["power_ups"]),
        spawning=_build(SpawnConfig, spawn_data),
        presets=_parse_presets(raw["presets"]),
        risk=RiskPolicy.from_mapping(raw["risk_weights"])
    )

    _validate_config(config)
    return config


# Module-level singleton for convenience
_cached_config: Optional[GameConfig] = None


def get_config() -> GameConfig:
    """Get the cached configuration, loading if necessary."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reload_config(config_path: Optional[str] = None) -> GameConfig:
    """Reload the configuration (useful for testing)."""
    global _cached_config
    _cached_config = load_config(config_path)
    return _cached_config
