"""
Tests for the secure session timer.
"""

import re

import pytest

from reflex_guard.anticheat_core.clock import ManualClock
from reflex_guard.anticheat_core.config_loader import load_config
from reflex_guard.anticheat_core.entropy import SeededEntropySource
from reflex_guard.anticheat_core.session_timer import SecureSessionTimer


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def timer(config, clock):
    timer = SecureSessionTimer(config, clock, SeededEntropySource(11, clock=clock))
    timer.start_session()
    return timer


def issue_codes(validation):
    return [i.code for i in validation.issues]


class TestSessionClock:
    """Test the dual-clock time base."""

    def test_session_id_format(self, timer):
        """Session ids are a base36 timestamp and a random suffix."""
        assert re.fullmatch(r"[0-9a-z]+-[0-9a-zA-Z]{11}", timer.session_id)

    def test_explicit_session_id(self, timer):
        """A given session id is used as is."""
        timer.start_session("fixed-id")
        assert timer.session_id == "fixed-id"

    def test_current_time_follows_monotonic(self, timer, clock):
        """Current time advances with the monotonic clock."""
        clock.advance(500)
        assert timer.get_current_time() == timer.start_time + 500
        assert timer.suspicious_activity_count == 0

    def test_wall_clock_divergence(self, timer, clock):
        """A wall clock jump beyond tolerance is suspicious."""
        clock.advance(100)
        clock.shift_wall(2000)
        timer.get_current_time()
        assert timer.suspicious_activity_count == 1

    def test_small_divergence_tolerated(self, timer, clock):
        """Drift within tolerance is not suspicious."""
        clock.shift_wall(900)
        timer.get_current_time()
        assert timer.suspicious_activity_count == 0


class TestCheckpoints:
    """Test checkpoint logging and per-checkpoint checks."""

    def test_unknown_event_type(self, timer):
        """Unknown event types are rejected."""
        with pytest.raises(ValueError):
            timer.add_checkpoint("jump", 1, 0)

    def test_fast_taps_are_suspicious(self, timer, clock):
        """Two taps under 50ms apart are flagged."""
        timer.add_checkpoint("tap", 1, 0)
        clock.advance(30)
        timer.add_checkpoint("tap", 1, 0)
        assert timer.suspicious_activity_count == 1

    def test_spaced_taps_are_fine(self, timer, clock):
        """Taps at human speed are not flagged."""
        timer.add_checkpoint("tap", 1, 0)
        clock.advance(300)
        timer.add_checkpoint("tap", 1, 0)
        assert timer.suspicious_activity_count == 0

    def test_clock_rollback(self, timer, clock):
        """A checkpoint earlier than the previous one is flagged."""
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 1, 10)
        clock.shift_wall(-500)
        timer.add_checkpoint("round_complete", 2, 20)
        assert timer.suspicious_activity_count == 1

    def test_checkpoint_log_is_bounded(self, timer, clock):
        """Only the newest checkpoints are kept; lifetime counts survive."""
        for i in range(150):
            clock.advance(100)
            timer.add_checkpoint("light_change", 1, 0)
        checkpoints = timer.get_checkpoints()
        assert len(checkpoints) == 100
        assert checkpoints[0].sequence == 50
        assert timer.get_event_count("light_change") == 150

    def test_timing_stats(self, timer, clock):
        """Tap interval statistics cover tap checkpoints only."""
        timer.add_checkpoint("tap", 1, 0)
        clock.advance(100)
        timer.add_checkpoint("tap", 1, 0)
        clock.advance(100)
        timer.add_checkpoint("light_change", 1, 0)
        clock.advance(100)
        timer.add_checkpoint("tap", 1, 0)
        stats = timer.get_timing_stats()
        assert stats["average_reaction_time"] == pytest.approx(150.0)
        assert stats["reaction_time_variance"] == pytest.approx(2500.0)
        assert stats["total_checkpoints"] == 4


class TestSessionValidation:
    """Test session-level timing validation."""

    def test_expected_duration(self, timer):
        """Expected minimum is rounds x base interval x 0.5."""
        assert timer.calculate_expected_duration(100) == 40000
        assert timer.calculate_expected_duration(10, base_interval=1000) == 5000

    def test_max_possible_score(self, timer):
        """Each started interval allows one maximal round."""
        assert timer.calculate_max_possible_score(800) == 60
        assert timer.calculate_max_possible_score(801) == 120

    def test_completed_too_quickly(self, timer, clock):
        """100 rounds in five seconds is invalid."""
        clock.advance(5000)
        validation = timer.validate_session(100, 1000)
        assert not validation.is_valid
        assert any("completed too quickly" in str(i) for i in validation.issues)
        assert validation.expected_min_duration == 40000

    def test_plausible_session_is_valid(self, timer, clock):
        """Steady rounds at a human pace are valid."""
        for round in range(1, 6):
            clock.advance(1000)
            timer.add_checkpoint("round_complete", round, round * 10)
        validation = timer.validate_session(5, 50)
        assert validation.is_valid
        assert validation.issues == []

    def test_score_regression(self, timer, clock):
        """Score going down outside a power-up checkpoint is flagged."""
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 1, 50)
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 2, 30)
        validation = timer.validate_session(2, 30)
        assert "timing_score_regression" in issue_codes(validation)
        regression = [i for i in validation.issues if i.code == "timing_score_regression"][0]
        assert regression.key == 1

    def test_power_up_score_drop_allowed(self, timer, clock):
        """A score drop on a power-up checkpoint is not a regression."""
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 1, 50)
        clock.advance(1000)
        timer.add_checkpoint("power_up", 1, 40)
        assert "timing_score_regression" not in issue_codes(timer.validate_session(1, 40))

    def test_round_regression(self, timer, clock):
        """Round going down is flagged."""
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 3, 30)
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 2, 30)
        assert "timing_round_regression" in issue_codes(timer.validate_session(3, 30))

    def test_impossible_jump(self, timer, clock):
        """A score jump beyond the time-based maximum is flagged."""
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 1, 0)
        clock.advance(100)
        timer.add_checkpoint("round_complete", 2, 1000)
        assert "timing_impossible_jump" in issue_codes(timer.validate_session(2, 1000))

    def test_suspicion_limit_invalidates(self, timer, clock):
        """Three suspicious events invalidate the session without issues."""
        clock.advance(10000)
        for _ in range(4):
            timer.add_checkpoint("tap", 1, 0)
            clock.advance(10)
        validation = timer.validate_session(1, 0)
        assert validation.suspicious_activity_count == 3
        assert not validation.is_valid
        assert timer.is_suspicious()

    def test_high_suspicion_issue(self, timer, clock):
        """More than five suspicious events add an issue."""
        clock.advance(10000)
        for _ in range(7):
            timer.add_checkpoint("tap", 1, 0)
            clock.advance(10)
        assert "timing_high_suspicion" in issue_codes(timer.validate_session(1, 0))

    def test_reset_clears_state(self, timer, clock):
        """Starting a new session discards checkpoints and suspicion."""
        timer.add_checkpoint("tap", 1, 0)
        clock.advance(10)
        timer.add_checkpoint("tap", 1, 0)
        timer.start_session()
        assert timer.get_checkpoints() == []
        assert timer.suspicious_activity_count == 0
        assert timer.get_event_count("tap") == 0


class TestSessionData:
    """Test session data and logging control."""

    def test_session_data(self, timer, clock):
        """Session data lists checkpoints and the expected minimum for the highest round."""
        clock.advance(1000)
        timer.add_checkpoint("round_complete", 3, 30)
        data = timer.get_session_data()
        assert data["session_id"] == timer.session_id
        assert len(data["checkpoints"]) == 1
        assert data["checkpoints"][0]["round"] == 3
        assert data["expected_min_duration"] == 1200

    def test_empty_session_data(self, timer):
        """With no checkpoints the expected minimum covers one round."""
        assert timer.get_session_data()["expected_min_duration"] == 400

    def test_logging_can_be_disabled(self, config, clock, caplog):
        """Suspicious events are still counted when logging is off."""
        timer = SecureSessionTimer(
            config, clock, SeededEntropySource(11, clock=clock), log_suspicious_activity=False
        )
        with caplog.at_level("WARNING", logger="reflex_guard.anticheat_core.session_timer"):
            timer.add_checkpoint("tap", 1, 0)
            clock.advance(10)
            timer.add_checkpoint("tap", 1, 0)
        assert timer.suspicious_activity_count == 1
        assert caplog.records == []

    def test_logging_enabled_by_default(self, timer, clock, caplog):
        """Suspicious events are logged as warnings by default."""
        with caplog.at_level("WARNING", logger="reflex_guard.anticheat_core.session_timer"):
            timer.add_checkpoint("tap", 1, 0)
            clock.advance(10)
            timer.add_checkpoint("tap", 1, 0)
        assert "Suspiciously fast input" in caplog.text
