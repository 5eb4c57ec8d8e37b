"""
Tests for the score validator's bounded-growth model.
"""

import pytest

from reflex_guard.anticheat_core.clock import ManualClock
from reflex_guard.anticheat_core.config_loader import load_config
from reflex_guard.anticheat_core.events import GameUpdate
from reflex_guard.anticheat_core.powerups import ActivePowerUp
from reflex_guard.anticheat_core.score_validator import GameStateSnapshot, ScoreValidator
from reflex_guard.anticheat_core.session_timer import TimingCheckpoint


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def validator(config):
    return ScoreValidator(config, ManualClock())


def power_up(config, power_up_type, start=0.0, end=None):
    definition = config.get_power_up(power_up_type)
    if end is None:
        end = start + definition.duration
    return ActivePowerUp.from_definition(definition, start, end)


def snapshot(round, score, streak=0, timestamp=0.0, **kwargs):
    return GameStateSnapshot(timestamp=timestamp, round=round, score=score, streak=streak, **kwargs)


def codes(result):
    return [i.code for i in result.issues]


class TestMaxScoreIncrease:
    """Test the per-update score bound."""

    def test_no_rounds_no_points(self, validator):
        """Zero or negative rounds allow nothing."""
        assert validator.calculate_max_score_increase(0, 10) == 0
        assert validator.calculate_max_score_increase(-2, 10) == 0

    def test_base_points(self, validator):
        """One round with no bonuses is worth points_per_round."""
        assert validator.calculate_max_score_increase(1, 0) == 10
        assert validator.calculate_max_score_increase(3, 0) == 30

    def test_streak_bonus(self, validator):
        """Streak bonus applies from the threshold and is capped by base points."""
        assert validator.calculate_max_score_increase(1, 4) == 10
        assert validator.calculate_max_score_increase(1, 6) == 13
        assert validator.calculate_max_score_increase(1, 40) == 15

    def test_multiplier_clamped(self, validator):
        """Multiplier is clamped to [1, 4]."""
        assert validator.calculate_max_score_increase(1, 0, (), 10) == 40
        assert validator.calculate_max_score_increase(1, 0, (), 0.5) == 10
        assert validator.calculate_max_score_increase(1, 0, (), 2) == 20

    def test_power_up_bonus(self, validator, config):
        """Concurrent power-ups and rarities add to the bound."""
        active = [power_up(config, "scoreMultiplier"), power_up(config, "slowMotion")]
        # base 10 + multi 5 + epic 5 + rare 2
        assert validator.calculate_max_score_increase(1, 0, active) == 22

    def test_power_up_bonus_cap(self, validator, config):
        """Power-up bonus is capped per round."""
        active = [power_up(config, "extraLife"), power_up(config, "scoreMultiplier")]
        # base 10 + streak 5 + min(5 + 3 + 10 + 5, 20)
        assert validator.calculate_max_score_increase(1, 20, active) == 35

    def test_monotonic_in_rounds(self, validator, config):
        """The bound never decreases as rounds increase."""
        active = [power_up(config, "freezeTime")]
        for streak in (0, 5, 16, 50):
            values = [
                validator.calculate_max_score_increase(r, streak, active, 2)
                for r in range(0, 30)
            ]
            assert values == sorted(values)

    def test_monotonic_in_streak(self, validator, config):
        """The bound never decreases as streak increases."""
        active = [power_up(config, "slowMotion")]
        for rounds in (1, 2, 7):
            values = [
                validator.calculate_max_score_increase(rounds, s, active, 3)
                for s in range(0, 60)
            ]
            assert values == sorted(values)

    def test_upper_bound(self, validator, config):
        """The bound never exceeds the fully boosted per-round maximum."""
        scoring = config.scoring
        every_power_up = [power_up(config, t) for t in config.power_up_types]
        for rounds in range(1, 20):
            ceiling = (
                scoring.points_per_round * rounds
                * (1 + scoring.max_streak_bonus_fraction + scoring.max_power_up_bonus_fraction)
                * scoring.max_score_multiplier
            )
            for streak in (0, 10, 100, 1000):
                value = validator.calculate_max_score_increase(rounds, streak, every_power_up, 99)
                assert value <= ceiling


class TestScoreIncrease:
    """Test validation of snapshot deltas."""

    def test_scenario_plausible_round(self, validator):
        """One round worth ten points is valid."""
        result = validator.validate_score_increase(
            snapshot(1, 0, 0), snapshot(2, 10, 1), 900
        )
        assert result.is_valid
        assert result.issues == []
        assert result.max_possible_score == 10
        assert result.actual_score == 10

    def test_scenario_score_too_high(self, validator):
        """Five hundred points in one round is invalid."""
        result = validator.validate_score_increase(
            snapshot(1, 0, 0), snapshot(2, 500, 1), 900
        )
        assert not result.is_valid
        assert any("exceeds maximum possible" in str(i) for i in result.issues)
        assert result.risk_score >= 10

    def test_round_regression(self, validator):
        """Round going backwards costs at least 15."""
        result = validator.validate_score_increase(
            snapshot(5, 50, 3), snapshot(4, 50, 3), 1000
        )
        assert "round_regression" in codes(result)
        assert result.risk_score >= 15

    def test_rounds_skipped(self, validator):
        """More than one round per update is flagged."""
        result = validator.validate_score_increase(snapshot(1, 0), snapshot(3, 20), 2000)
        assert "rounds_skipped" in codes(result)

    def test_streak_outpaced(self, validator):
        """Streak cannot grow faster than rounds."""
        result = validator.validate_score_increase(snapshot(1, 0, 0), snapshot(2, 10, 3), 1000)
        assert "streak_outpaced_rounds" in codes(result)

    def test_round_too_fast(self, validator):
        """A round under 100ms is flagged."""
        result = validator.validate_score_increase(snapshot(1, 0), snapshot(2, 10), 50)
        assert "round_too_fast" in codes(result)

    def test_multiplier_and_speed_bounds(self, validator):
        """Out-of-range multipliers and game speeds are flagged."""
        result = validator.validate_score_increase(
            snapshot(1, 0),
            snapshot(2, 10, score_multiplier=5.0, game_speed_multiplier=3.0),
            1000
        )
        assert "score_multiplier_out_of_range" in codes(result)
        assert "game_speed_out_of_range" in codes(result)

    def test_reported_power_up_extended(self, validator, config):
        """A reported window far beyond nominal duration is flagged."""
        stretched = power_up(config, "slowMotion", start=0.0, end=20000.0)
        result = validator.validate_score_increase(
            snapshot(1, 0, timestamp=0.0),
            snapshot(2, 10, timestamp=1000.0, active_power_ups=(stretched,)),
            1000
        )
        assert "powerup_duration_extended" in codes(result)

    def test_reported_power_up_expired(self, validator, config):
        """A reported power-up long past its end is flagged."""
        old = power_up(config, "freezeTime", start=0.0)
        result = validator.validate_score_increase(
            snapshot(1, 0, timestamp=9000.0),
            snapshot(2, 10, timestamp=10000.0, active_power_ups=(old,)),
            1000
        )
        assert "powerup_expired_still_active" in codes(result)

    def test_reported_unknown_power_up(self, validator):
        """A reported power-up missing from the catalog is flagged."""
        fake = ActivePowerUp("teleport", "common", 1000, 0.0, 1000.0)
        result = validator.validate_score_increase(
            snapshot(1, 0, timestamp=0.0),
            snapshot(2, 10, timestamp=500.0, active_power_ups=(fake,)),
            500
        )
        assert "powerup_unknown_reported" in codes(result)


class TestGameState:
    """Test validation against stored snapshots."""

    def test_first_state_is_valid(self, validator):
        """With nothing stored, any state is valid."""
        result = validator.validate_game_state(GameUpdate(round=5, score=5000), 1000.0)
        assert result.is_valid

    def test_compares_with_latest(self, validator):
        """The newest stored snapshot is the baseline."""
        validator.add_update_snapshot(GameUpdate(round=1, score=10, streak=1), 1000.0)
        good = validator.validate_game_state(GameUpdate(round=2, score=20, streak=2), 2000.0)
        bad = validator.validate_game_state(GameUpdate(round=2, score=900, streak=2), 2000.0)
        assert good.is_valid
        assert not bad.is_valid

    def test_snapshot_capacity(self, validator):
        """Snapshots are kept in a bounded buffer."""
        for i in range(150):
            validator.add_snapshot(snapshot(i, i * 10, timestamp=i * 1000.0))
        assert validator.snapshot_count == 100
        assert validator.latest_snapshot().round == 149

    def test_validation_stats(self, validator):
        """Stats re-walk consecutive stored snapshots."""
        validator.add_snapshot(snapshot(1, 0, timestamp=0.0))
        validator.add_snapshot(snapshot(2, 10, timestamp=1000.0))
        validator.add_snapshot(snapshot(3, 900, timestamp=2000.0))
        stats = validator.get_validation_stats()
        assert stats["total_validations"] == 2
        assert stats["total_issues"] == 1
        assert stats["average_risk_score"] == pytest.approx(5.0)


def checkpoint(sequence, game_time, round, score, event_type="round_complete"):
    return TimingCheckpoint(
        sequence=sequence,
        timestamp=1_700_000_000_000.0 + game_time,
        game_time=game_time,
        round=round,
        score=score,
        event_type=event_type
    )


class TestFinalScore:
    """Test end-of-session validation."""

    def test_theoretical_max(self, validator):
        """Maximum assumes every bonus at its cap."""
        # (100 + 50 + 200) x 4
        assert validator.calculate_theoretical_max_score(10) == 1400

    def test_plausible_final_score(self, validator):
        """A steady game passes."""
        checkpoints = [checkpoint(i, i * 1000.0, i + 1, (i + 1) * 10) for i in range(10)]
        result = validator.validate_final_score(100, 10, 10000, checkpoints)
        assert result.is_valid
        assert result.max_possible_score == 1400

    def test_final_score_over_max(self, validator):
        """Scores above the theoretical maximum cost 20."""
        result = validator.validate_final_score(2000, 10, 10000, [])
        assert not result.is_valid
        assert codes(result) == ["final_score_exceeds_max"]
        assert result.risk_score == 20

    def test_progression_decrease(self, validator):
        """A score drop between scoring checkpoints is flagged."""
        checkpoints = [checkpoint(0, 0.0, 1, 50), checkpoint(1, 1000.0, 2, 30)]
        result = validator.validate_final_score(30, 2, 2000, checkpoints)
        assert "final_progression_decrease" in codes(result)

    def test_progression_too_rapid(self, validator):
        """Scoring under 200ms apart is flagged."""
        checkpoints = [checkpoint(0, 0.0, 1, 10), checkpoint(1, 100.0, 2, 20)]
        result = validator.validate_final_score(20, 2, 2000, checkpoints)
        assert "final_progression_too_rapid" in codes(result)

    def test_progression_ignores_power_up_checkpoints(self, validator):
        """Only tap and round_complete checkpoints are compared."""
        checkpoints = [
            checkpoint(0, 0.0, 1, 10),
            checkpoint(1, 50.0, 1, 0, event_type="power_up"),
            checkpoint(2, 1000.0, 2, 20),
        ]
        result = validator.validate_final_score(20, 2, 2000, checkpoints)
        assert result.is_valid

    def test_suspicious_accuracy(self, validator):
        """Perfect accuracy over many rounds is low-risk suspicious."""
        result = validator.validate_final_score(600, 60, 60000, [], tap_count=60)
        assert codes(result) == ["suspicious_accuracy"]
        assert result.risk_score == 5
        assert not result.is_valid

    def test_accuracy_needs_many_rounds(self, validator):
        """Short games are never flagged for accuracy."""
        result = validator.validate_final_score(400, 40, 40000, [], tap_count=40)
        assert result.is_valid
