"""Tests for the open-drain line model."""

import pytest

from max17055.lines import HIGH, LOW, RELEASED, BusLines, Driving, contended, resolve


class TestDrives:
    """Test drive values and level resolution."""

    def test_driving_only_accepts_bits(self):
        with pytest.raises(ValueError):
            Driving(2)

    def test_driving_equality(self):
        assert Driving(0) == LOW
        assert Driving(1) == HIGH
        assert LOW != HIGH
        assert LOW != RELEASED

    def test_released_lines_read_high(self):
        assert resolve([RELEASED, RELEASED]) == 1
        assert resolve([]) == 1

    def test_any_low_wins(self):
        assert resolve([RELEASED, LOW]) == 0
        assert resolve([HIGH, LOW]) == 0

    def test_contention_needs_both_levels(self):
        assert contended([HIGH, LOW])
        assert not contended([LOW, LOW])
        assert not contended([RELEASED, LOW])


class TestBusLines:
    """Test shared lines with several owners."""

    def test_idle_lines_are_high(self):
        lines = BusLines()
        lines.attach('master')
        snapshot = lines.snapshot()
        assert (snapshot.scl, snapshot.sda) == (1, 1)

    def test_own_drive_is_separate_from_observed_level(self):
        lines = BusLines()
        lines.attach('master')
        lines.attach('target')
        lines.drive_sda('target', LOW)

        assert lines.sda_drive('master') is RELEASED
        assert lines.sda == 0

    def test_contention_is_counted(self):
        lines = BusLines()
        lines.attach('a')
        lines.attach('b')
        lines.drive_sda('a', HIGH)
        lines.drive_sda('b', LOW)

        lines.snapshot()
        assert lines.contention_count == 1
