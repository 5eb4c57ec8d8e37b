"""
Inbound Events
==============

Typed inbound data from the host game loop. Raw dicts are parsed once here,
at the boundary; validators only ever see these types.

Player inputs form a closed union:
    TapInput | PowerUpActivationInput | GameActionInput

Keys are accepted in snake_case or the host's camelCase.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple, Union

from reflex_guard.anticheat_core.config_loader import GameConfig
from reflex_guard.anticheat_core.powerups import ActivePowerUp

INPUT_KINDS = ("tap", "powerup_activation", "game_action")

_MISSING = object()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _lookup(data: Mapping[str, Any], name: str, default: Any = _MISSING) -> Any:
    """Fetch a field by snake_case or camelCase name."""
    if name in data:
        return data[name]
    camel = _camel(name)
    if camel in data:
        return data[camel]
    if default is _MISSING:
        raise ValueError(f"Missing required field '{name}'")
    return default


def _number(data: Mapping[str, Any], name: str, default: Any = _MISSING) -> float:
    value = _lookup(data, name, default)
    # bool is an int subclass but never a valid measurement
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Field '{name}' must be numeric, got {value!r}")
    if not math.isfinite(value):
        raise ValueError(f"Field '{name}' must be finite, got {value!r}")
    return float(value)


def _integer(data: Mapping[str, Any], name: str, default: Any = _MISSING) -> int:
    value = _number(data, name, default)
    if value != int(value):
        raise ValueError(f"Field '{name}' must be an integer, got {value!r}")
    return int(value)


@dataclass(frozen=True)
class TapInput:
    """A tap on the light, with the player's measured reaction time."""
    timestamp: float
    reaction_time: float
    kind: str = field(default="tap", init=False)


@dataclass(frozen=True)
class PowerUpActivationInput:
    """Player request to activate a power-up."""
    timestamp: float
    power_up_type: str
    kind: str = field(default="powerup_activation", init=False)


@dataclass(frozen=True)
class GameActionInput:
    """Any other timestamped game action."""
    timestamp: float
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)
    kind: str = field(default="game_action", init=False)


PlayerInput = Union[TapInput, PowerUpActivationInput, GameActionInput]


def parse_player_input(kind: str, data: Union[Mapping[str, Any], PlayerInput]) -> PlayerInput:
    """
    Parse a raw player input into its typed form.

    Args:
        kind: One of 'tap', 'powerup_activation', 'game_action'.
        data: Raw mapping, or an already parsed input of the same kind.

    Returns:
        TapInput, PowerUpActivationInput or GameActionInput.

    Raises:
        ValueError: On unknown kind, kind mismatch, or missing/non-numeric fields.
    """
    if kind not in INPUT_KINDS:
        raise ValueError(f"Unknown input kind '{kind}', expected one of {INPUT_KINDS}")

    if isinstance(data, (TapInput, PowerUpActivationInput, GameActionInput)):
        if data.kind != kind:
            raise ValueError(f"Input of kind '{data.kind}' passed as '{kind}'")
        return data

    if not isinstance(data, Mapping):
        raise ValueError(f"Input data must be a mapping, got {type(data).__name__}")

    timestamp = _number(data, "timestamp")

    if kind == "tap":
        return TapInput(timestamp=timestamp, reaction_time=_number(data, "reaction_time"))

    if kind == "powerup_activation":
        power_up_type = _lookup(data, "power_up_type", None)
        if power_up_type is None:
            power_up_type = _lookup(data, "type")
        return PowerUpActivationInput(timestamp=timestamp, power_up_type=str(power_up_type))

    payload = _lookup(data, "payload", {})
    if not isinstance(payload, Mapping):
        raise ValueError("Field 'payload' must be a mapping")
    return GameActionInput(
        timestamp=timestamp,
        action=str(_lookup(data, "action", "unknown")),
        payload=dict(payload)
    )


def parse_power_up_report(data: Mapping[str, Any], catalog: GameConfig) -> ActivePowerUp:
    """
    Parse a client-reported active power-up.

    Rarity and nominal duration come from the catalog, never from the client.
    Unknown types are kept (as common, nominal duration = reported window) so
    the score validator can flag them.
    """
    if isinstance(data, ActivePowerUp):
        return data

    power_up_type = str(_lookup(data, "type", None) or _lookup(data, "power_up_type"))
    start_time = _number(data, "start_time")
    end_time = _number(data, "end_time")
    multiplier = _lookup(data, "multiplier", None)
    if multiplier is not None:
        multiplier = _number(data, "multiplier")

    definition = catalog.find_power_up(power_up_type)
    if definition is None:
        return ActivePowerUp(
            power_up_type=power_up_type,
            rarity="common",
            duration=end_time - start_time,
            start_time=start_time,
            end_time=end_time,
            multiplier=multiplier,
            instance_id=str(_lookup(data, "instance_id", ""))
        )

    return ActivePowerUp(
        power_up_type=definition.type,
        rarity=definition.rarity,
        duration=definition.duration,
        start_time=start_time,
        end_time=end_time,
        multiplier=multiplier if multiplier is not None else definition.multiplier,
        instance_id=str(_lookup(data, "instance_id", ""))
    )


@dataclass(frozen=True)
class GameUpdate:
    """Per-round game state reported by the host."""
    round: int
    score: int
    streak: int = 0
    lives_remaining: int = 3
    active_power_ups: Tuple[ActivePowerUp, ...] = ()
    game_speed_multiplier: float = 1.0
    score_multiplier: float = 1.0

    @classmethod
    def from_dict(cls, data: Union[Mapping[str, Any], "GameUpdate"], catalog: GameConfig) -> "GameUpdate":
        """
        Parse a per-round update dict.

        Raises:
            ValueError: If round or score is missing, or any field is non-numeric.
        """
        if isinstance(data, GameUpdate):
            return data
        if not isinstance(data, Mapping):
            raise ValueError(f"Game update must be a mapping, got {type(data).__name__}")

        reports = _lookup(data, "active_power_ups", ())
        if not isinstance(reports, (list, tuple)):
            raise ValueError("Field 'active_power_ups' must be a list")

        return cls(
            round=_integer(data, "round"),
            score=_integer(data, "score"),
            streak=_integer(data, "streak", 0),
            lives_remaining=_integer(data, "lives_remaining", 3),
            active_power_ups=tuple(parse_power_up_report(r, catalog) for r in reports),
            game_speed_multiplier=_number(data, "game_speed_multiplier", 1.0),
            score_multiplier=_number(data, "score_multiplier", 1.0)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round": self.round,
            "score": self.score,
            "streak": self.streak,
            "lives_remaining": self.lives_remaining,
            "active_power_ups": [p.power_up_type for p in self.active_power_ups],
            "game_speed_multiplier": self.game_speed_multiplier,
            "score_multiplier": self.score_multiplier,
        }


def describe_input(player_input: PlayerInput) -> str:
    """Short label for logs."""
    if isinstance(player_input, TapInput):
        return f"tap({player_input.reaction_time:.0f}ms)"
    if isinstance(player_input, PowerUpActivationInput):
        return f"activate({player_input.power_up_type})"
    return f"action({player_input.action})"
