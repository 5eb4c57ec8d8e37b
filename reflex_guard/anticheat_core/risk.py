"""
Risk Policy
===========

Single home for risk scoring. Validators report coded issues; the weight of
each code comes from one table, and violations are folded into a running
total by one reducer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import reduce
from typing import TYPE_CHECKING, Any, Dict, Hashable, Iterable, Mapping, Optional

if TYPE_CHECKING:
    from reflex_guard.anticheat_core.violations import SecurityViolation


@dataclass(frozen=True)
class Issue:
    """A single coded anomaly found by a validator."""
    code: str
    message: str
    key: Optional[Hashable] = None   # Identity for de-duplication across repeated checks

    @property
    def identity(self) -> Hashable:
        return (self.code, self.key)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class RiskPolicy:
    """
    Weight table mapping issue codes to risk contributions.

    Weights are the legacy per-code values (10, 12, 15, ...).
    """
    weights: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RiskPolicy":
        weights = {}
        for code, value in data.items():
            weight = int(value)
            if weight <= 0:
                raise ValueError(f"Risk weight for '{code}' must be positive, got {value}")
            weights[str(code)] = weight
        return cls(weights=weights)

    def weight(self, code: str) -> int:
        """Risk contribution of an issue code."""
        if code not in self.weights:
            raise KeyError(f"No risk weight configured for issue code '{code}'")
        return self.weights[code]

    def issue(self, code: str, message: str, key: Optional[Hashable] = None) -> Issue:
        """Create an issue, checking that its code is scored."""
        self.weight(code)
        return Issue(code=code, message=message, key=key)

    def score_issues(self, issues: Iterable[Issue]) -> int:
        """Total risk of a collection of issues."""
        return sum(self.weight(issue.code) for issue in issues)


def score(violation: "SecurityViolation") -> int:
    """Risk contribution of a single violation."""
    return violation.risk_score


def aggregate_risk(violations: Iterable["SecurityViolation"], initial: int = 0) -> int:
    """Fold violations into a running risk total."""
    return reduce(lambda total, v: total + score(v), violations, initial)


def severity_for_risk(risk: float, high_above: float, medium_above: Optional[float] = None) -> str:
    """
    Band a risk value into a severity.

    Args:
        risk: Risk contribution being classified.
        high_above: Risk strictly above this is 'high'.
        medium_above: Risk strictly above this is 'medium'; below is 'low'.
            If None, everything not high is 'medium'.
    """
    if risk > high_above:
        return "high"
    if medium_above is None or risk > medium_above:
        return "medium"
    return "low"
