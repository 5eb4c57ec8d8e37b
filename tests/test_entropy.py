"""
Tests for entropy sources.
"""

import re

import pytest

from reflex_guard.anticheat_core.clock import ManualClock
from reflex_guard.anticheat_core.entropy import (
    CryptoEntropySource,
    ScriptedEntropySource,
    SeededEntropySource,
)


class TestSeededEntropy:
    """Test reproducible entropy."""

    def test_deterministic_with_seed(self):
        """Same seed should produce the same sequence."""
        a = SeededEntropySource(42)
        b = SeededEntropySource(42)
        assert [a.random() for _ in range(20)] == [b.random() for _ in range(20)]

    def test_different_seeds_differ(self):
        """Different seeds should produce different sequences."""
        a = SeededEntropySource(42)
        b = SeededEntropySource(123)
        assert [a.random() for _ in range(20)] != [b.random() for _ in range(20)]

    def test_reset_restarts_sequence(self):
        """Reset should replay the sequence from the start."""
        source = SeededEntropySource(7)
        first = [source.randint(0, 100) for _ in range(10)]
        source.reset()
        assert [source.randint(0, 100) for _ in range(10)] == first

    def test_randint_inclusive_range(self):
        """randint should stay within both bounds."""
        source = SeededEntropySource(1)
        values = {source.randint(3, 5) for _ in range(200)}
        assert values == {3, 4, 5}

    def test_randint_empty_range(self):
        """An inverted range is an error."""
        with pytest.raises(ValueError):
            SeededEntropySource(1).randint(5, 3)

    def test_shuffle_is_permutation(self):
        """Shuffle returns a new list with the same items."""
        source = SeededEntropySource(3)
        items = list(range(20))
        shuffled = source.shuffle(items)
        assert sorted(shuffled) == items
        assert items == list(range(20))

    def test_quality_of_seeded_source(self):
        """A good PRNG should pass the uniformity checks."""
        result = SeededEntropySource(42).validate_quality(sample_size=5000)
        assert result["is_valid"], result["issues"]
        assert len(result["statistics"]["distribution"]) == 10


class TestScriptedEntropy:
    """Test deterministic scripted values."""

    def test_cycles_values(self):
        """Values are returned in order and then repeat."""
        source = ScriptedEntropySource([0.1, 0.2])
        assert [source.random() for _ in range(4)] == [0.1, 0.2, 0.1, 0.2]

    def test_rejects_out_of_range(self):
        """Values must lie in [0, 1)."""
        with pytest.raises(ValueError):
            ScriptedEntropySource([1.0])
        with pytest.raises(ValueError):
            ScriptedEntropySource([])

    def test_weighted_choice(self):
        """Weighted choice should follow cumulative weights."""
        assert ScriptedEntropySource([0.1]).weighted_choice(["a", "b"], [1, 3]) == "a"
        assert ScriptedEntropySource([0.5]).weighted_choice(["a", "b"], [1, 3]) == "b"

    def test_weighted_choice_errors(self):
        """Mismatched lengths and non-positive totals are errors."""
        source = ScriptedEntropySource([0.5])
        with pytest.raises(ValueError):
            source.weighted_choice(["a"], [1, 2])
        with pytest.raises(ValueError):
            source.weighted_choice(["a", "b"], [0, 0])

    def test_choice_empty(self):
        """Choosing from nothing is an error."""
        with pytest.raises(ValueError):
            ScriptedEntropySource([0.5]).choice([])

    def test_random_bool(self):
        """random_bool compares against the probability."""
        assert ScriptedEntropySource([0.2]).random_bool(0.5)
        assert not ScriptedEntropySource([0.8]).random_bool(0.5)


class TestIdentifiers:
    """Test id and byte generation."""

    def test_generate_id_format(self):
        """Ids use the alphanumeric alphabet after the prefix."""
        identifier = SeededEntropySource(5).generate_id("ac_", 9)
        assert re.fullmatch(r"ac_[0-9a-zA-Z]{9}", identifier)

    def test_generate_bytes_length(self):
        """Byte generation returns the requested length."""
        assert len(CryptoEntropySource().generate_bytes(8)) == 8
        assert len(SeededEntropySource(1).generate_bytes(16)) == 16

    def test_crypto_values_in_range(self):
        """Crypto floats lie in [0, 1), across pool refills."""
        source = CryptoEntropySource(pool_size=16)
        for _ in range(100):
            assert 0.0 <= source.random() < 1.0

    def test_crypto_pool_too_small(self):
        """The pool must hold at least two floats."""
        with pytest.raises(ValueError):
            CryptoEntropySource(pool_size=4)


class TestAuditLog:
    """Test the randomness audit trail."""

    def test_operations_are_logged(self):
        """Each public operation appends an audit entry."""
        clock = ManualClock(wall_start=5000.0)
        source = SeededEntropySource(1, clock=clock)
        source.random("spawn")
        source.randint(1, 6, "die")
        log = source.get_audit_log()
        assert [e.operation for e in log] == ["random", "randint"]
        assert log[0].context == "spawn"
        assert log[0].timestamp == 5000.0
        assert log[0].source == "seeded"

    def test_log_is_trimmed(self):
        """The log is cut back to its newest half when it overflows."""
        source = SeededEntropySource(1)
        for _ in range(1001):
            source.random()
        assert len(source.get_audit_log()) == 500

    def test_metrics_quality_score(self):
        """Quality score is the share of crypto operations."""
        crypto = CryptoEntropySource()
        crypto.random()
        assert crypto.get_metrics()["quality_score"] == 100.0

        seeded = SeededEntropySource(1)
        seeded.random()
        metrics = seeded.get_metrics()
        assert metrics["quality_score"] == 0.0
        assert metrics["operations_by_source"] == {"seeded": 1}

    def test_clear(self):
        """Clearing empties the log."""
        source = SeededEntropySource(1)
        source.random()
        source.clear_audit_log()
        assert source.get_audit_log() == []
