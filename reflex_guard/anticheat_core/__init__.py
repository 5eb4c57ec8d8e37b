"""
Anti-Cheat Core - validators and the session orchestrator.

Main exports:
- AntiCheatSystem: Per-session orchestrator producing AntiCheatReports
- create_system / create_standard_system / create_strict_system / create_lenient_system
- SecureSessionTimer, ScoreValidator, PatternDetector, PowerUpManager: individual validators
- EntropySource implementations and Clock sources for dependency injection
- GameConfig: Configuration loaded from anticheat_config.yaml
"""

from reflex_guard.anticheat_core.config_loader import GameConfig, load_config, get_config
from reflex_guard.anticheat_core.clock import Clock, SystemClock, ManualClock
from reflex_guard.anticheat_core.entropy import (
    EntropySource,
    CryptoEntropySource,
    SeededEntropySource,
    ScriptedEntropySource,
)
from reflex_guard.anticheat_core.events import (
    GameUpdate,
    TapInput,
    PowerUpActivationInput,
    GameActionInput,
    parse_player_input,
)
from reflex_guard.anticheat_core.violations import SecurityViolation
from reflex_guard.anticheat_core.session_timer import SecureSessionTimer, TimingCheckpoint
from reflex_guard.anticheat_core.score_validator import ScoreValidator, GameStateSnapshot
from reflex_guard.anticheat_core.pattern_detector import PatternDetector, PatternAnalysis
from reflex_guard.anticheat_core.powerups import (
    ActivePowerUp,
    ActivationResult,
    PowerUpManager,
    PowerUpSpawner,
)
from reflex_guard.anticheat_core.orchestrator import (
    AntiCheatConfig,
    AntiCheatReport,
    AntiCheatSystem,
    create_system,
    create_standard_system,
    create_strict_system,
    create_lenient_system,
)

__all__ = [
    "GameConfig",
    "load_config",
    "get_config",
    "Clock",
    "SystemClock",
    "ManualClock",
    "EntropySource",
    "CryptoEntropySource",
    "SeededEntropySource",
    "ScriptedEntropySource",
    "GameUpdate",
    "TapInput",
    "PowerUpActivationInput",
    "GameActionInput",
    "parse_player_input",
    "SecurityViolation",
    "SecureSessionTimer",
    "TimingCheckpoint",
    "ScoreValidator",
    "GameStateSnapshot",
    "PatternDetector",
    "PatternAnalysis",
    "ActivePowerUp",
    "ActivationResult",
    "PowerUpManager",
    "PowerUpSpawner",
    "AntiCheatConfig",
    "AntiCheatReport",
    "AntiCheatSystem",
    "create_system",
    "create_standard_system",
    "create_strict_system",
    "create_lenient_system",
]
