"""
Tests for the risk policy and security violations.
"""

import dataclasses

import pytest

from reflex_guard.anticheat_core.config_loader import load_config
from reflex_guard.anticheat_core.risk import (
    Issue,
    RiskPolicy,
    aggregate_risk,
    score,
    severity_for_risk,
)
from reflex_guard.anticheat_core.violations import SecurityViolation


@pytest.fixture
def config():
    return load_config()


def make_violation(risk_score=10, severity="medium", type="score"):
    return SecurityViolation(
        type=type,
        severity=severity,
        description="test",
        evidence={},
        timestamp=0.0,
        game_round=1,
        risk_score=risk_score
    )


class TestRiskPolicy:
    """Test weight table lookups."""

    def test_unknown_code_raises(self, config):
        """Unweighted codes are programming errors."""
        with pytest.raises(KeyError):
            config.risk.weight("not_a_code")
        with pytest.raises(KeyError):
            config.risk.issue("not_a_code", "message")

    def test_score_issues(self, config):
        """Issue risk should be the sum of code weights."""
        issues = [
            config.risk.issue("score_exceeds_max", "a"),
            config.risk.issue("round_regression", "b"),
        ]
        assert config.risk.score_issues(issues) == 25
        assert config.risk.score_issues([]) == 0

    def test_issue_identity(self):
        """Identity combines code and key; str is the message."""
        issue = Issue("timing_round_regression", "went backwards", key=4)
        assert issue.identity == ("timing_round_regression", 4)
        assert str(issue) == "went backwards"

    def test_from_mapping_rejects_non_positive(self):
        """Weights must be positive."""
        with pytest.raises(ValueError):
            RiskPolicy.from_mapping({"a": -1})


class TestAggregation:
    """Test violation scoring and the reducer."""

    def test_score_is_violation_risk(self):
        """score() reads the violation's risk contribution."""
        assert score(make_violation(12)) == 12

    def test_aggregate_risk(self):
        """The reducer folds violations into a running total."""
        violations = [make_violation(10), make_violation(15), make_violation(2)]
        assert aggregate_risk(violations) == 27
        assert aggregate_risk(violations, initial=5) == 32
        assert aggregate_risk([], initial=5) == 5

    def test_severity_bands(self):
        """Risk should band into high, medium and low."""
        assert severity_for_risk(16, 15, 8) == "high"
        assert severity_for_risk(12, 15, 8) == "medium"
        assert severity_for_risk(8, 15, 8) == "low"
        assert severity_for_risk(10, 10) == "medium"
        assert severity_for_risk(11, 10) == "high"


class TestSecurityViolation:
    """Test violation invariants."""

    def test_rejects_unknown_type(self):
        """Only the five violation types are allowed."""
        with pytest.raises(ValueError):
            make_violation(type="network")

    def test_rejects_unknown_severity(self):
        """Only the four severities are allowed."""
        with pytest.raises(ValueError):
            make_violation(severity="extreme")

    def test_rejects_non_positive_risk(self):
        """Violations must carry positive risk."""
        with pytest.raises(ValueError):
            make_violation(risk_score=0)

    def test_immutable(self):
        """Violations cannot be changed after creation."""
        violation = make_violation()
        with pytest.raises(dataclasses.FrozenInstanceError):
            violation.risk_score = 100

    def test_high_risk(self):
        """High and critical count as high risk."""
        assert make_violation(severity="high").is_high_risk
        assert make_violation(severity="critical").is_high_risk
        assert not make_violation(severity="medium").is_high_risk

    def test_to_dict(self):
        """Dict form uses the host's field names."""
        data = make_violation(7).to_dict()
        assert data["riskScore"] == 7
        assert data["gameRound"] == 1
        assert data["type"] == "score"
