"""
Security Violations
===================

Immutable records of detected anomalies, collected by the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

VIOLATION_TYPES = ("timing", "score", "powerup", "pattern", "input")
SEVERITIES = ("low", "medium", "high", "critical")


@dataclass(frozen=True)
class SecurityViolation:
    """One detected anomaly with type, severity and risk contribution."""
    type: str
    severity: str
    description: str
    evidence: Any
    timestamp: float
    game_round: int
    risk_score: int

    def __post_init__(self) -> None:
        if self.type not in VIOLATION_TYPES:
            raise ValueError(f"Unknown violation type: '{self.type}'")
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: '{self.severity}'")
        if self.risk_score <= 0:
            raise ValueError(f"Violation risk score must be positive, got {self.risk_score}")

    @property
    def is_high_risk(self) -> bool:
        """True for high and critical severities."""
        return SEVERITIES.index(self.severity) >= SEVERITIES.index("high")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "evidence": self.evidence,
            "timestamp": self.timestamp,
            "gameRound": self.game_round,
            "riskScore": self.risk_score,
        }
