"""
Tests for configuration loading.
"""

import os

import pytest
import yaml

import reflex_guard
from reflex_guard.anticheat_core.config_loader import get_config, load_config, reload_config


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(reflex_guard.__file__), "anticheat_config.yaml")


@pytest.fixture
def config():
    return load_config()


@pytest.fixture
def raw_config():
    with open(DEFAULT_CONFIG_PATH, "r") as f:
        return yaml.safe_load(f)


def write_config(tmp_path, data):
    path = tmp_path / "anticheat_config.yaml"
    with open(path, "w") as f:
        yaml.safe_dump(data, f)
    return str(path)


class TestLoadConfig:
    """Test loading the bundled configuration."""

    def test_scoring_values(self, config):
        """Scoring parameters should match the bounded-growth model."""
        assert config.scoring.points_per_round == 10
        assert config.scoring.bonus_points_threshold == 5
        assert config.scoring.max_score_multiplier == 4
        assert config.scoring.max_streak_bonus_fraction == pytest.approx(0.5)
        assert config.scoring.max_power_up_bonus_fraction == pytest.approx(2.0)

    def test_power_up_catalog(self, config):
        """All five power-ups should be present with catalog rarities."""
        assert config.power_up_types == (
            "slowMotion", "shield", "scoreMultiplier", "extraLife", "freezeTime"
        )
        assert config.get_power_up("scoreMultiplier").rarity == "epic"
        assert config.get_power_up("scoreMultiplier").multiplier == 2
        assert config.get_power_up("shield").is_instant
        assert not config.get_power_up("slowMotion").is_instant

    def test_unknown_power_up(self, config):
        """Unknown power-ups are None from find and an error from get."""
        assert config.find_power_up("teleport") is None
        with pytest.raises(ValueError):
            config.get_power_up("teleport")

    def test_presets(self, config):
        """Presets should carry their thresholds and inherit from default."""
        assert config.get_preset("default").risk_threshold == 50
        assert config.get_preset("standard").ban_threshold == 80
        assert config.get_preset("strict").risk_threshold == 25
        lenient = config.get_preset("lenient")
        assert not lenient.enable_pattern_detection
        assert not lenient.log_suspicious_activity
        assert lenient.enable_timing_validation

    def test_unknown_preset(self, config):
        """Asking for a missing preset should raise."""
        with pytest.raises(ValueError):
            config.get_preset("paranoid")

    def test_risk_weights(self, config):
        """Legacy risk weights should be loaded into the policy."""
        assert config.risk.weight("round_regression") == 15
        assert config.risk.weight("pattern_speed_hack") == 20
        assert config.risk.weight("suspicious_accuracy") == 5

    def test_input_limits(self, config):
        """Input plausibility limits should be loaded."""
        assert config.inputs.min_reaction_time == 50
        assert config.inputs.clock_skew_tolerance == 5000


class TestConfigValidation:
    """Test rejection of malformed configuration."""

    def test_missing_file(self, tmp_path):
        """A missing file should raise FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))

    def test_non_positive_points(self, tmp_path, raw_config):
        """Zero points per round is rejected."""
        raw_config["scoring"]["points_per_round"] = 0
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, raw_config))

    def test_missing_field(self, tmp_path, raw_config):
        """A missing section field is rejected."""
        del raw_config["timing"]["base_interval"]
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, raw_config))

    def test_unknown_rarity(self, tmp_path, raw_config):
        """Power-ups must use a known rarity."""
        raw_config["power_ups"][0]["rarity"] = "mythic"
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, raw_config))

    def test_ban_below_risk_threshold(self, tmp_path, raw_config):
        """A preset whose ban threshold is below its risk threshold is rejected."""
        raw_config["presets"]["strict"]["ban_threshold"] = 10
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, raw_config))

    def test_non_positive_risk_weight(self, tmp_path, raw_config):
        """Risk weights must be positive."""
        raw_config["risk_weights"]["round_regression"] = 0
        with pytest.raises(ValueError):
            load_config(write_config(tmp_path, raw_config))


class TestConfigCache:
    """Test module-level config cache."""

    def test_get_config_is_cached(self):
        """Repeated calls should return the same instance."""
        assert get_config() is get_config()

    def test_reload_config_replaces_cache(self):
        """Reloading should install a fresh instance."""
        before = get_config()
        after = reload_config()
        assert after is not before
        assert get_config() is after
