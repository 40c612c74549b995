"""Tests for closed-model load patterns."""

from __future__ import annotations

import pytest

from loadgate._internal.errors import ConfigError
from loadgate.patterns import ConstantPattern, LoadPattern, Stage, StagesPattern

# =========================================================================
# ConstantPattern
# =========================================================================


class TestConstantPattern:
    """Tests for ConstantPattern."""

    def test_yields_constant_value(self) -> None:
        """Every tick should yield the same user count."""
        pattern = ConstantPattern(users=50)
        ticks = list(pattern.iter_concurrency(duration_seconds=5.0))
        for _, users in ticks:
            assert users == 50

    def test_tick_count(self) -> None:
        """Number of ticks matches expected count for duration and interval."""
        pattern = ConstantPattern(users=10)
        ticks = list(pattern.iter_concurrency(duration_seconds=5.0, tick_interval=1.0))
        # t=0, 1, 2, 3, 4, 5 -> 6 ticks
        assert len(ticks) == 6

    def test_elapsed_times(self) -> None:
        pattern = ConstantPattern(users=10)
        ticks = list(pattern.iter_concurrency(duration_seconds=3.0, tick_interval=1.0))
        assert [t for t, _ in ticks] == pytest.approx([0.0, 1.0, 2.0, 3.0])

    def test_no_tick_past_duration(self) -> None:
        """A tick interval that does not divide the duration stops short of it."""
        pattern = ConstantPattern(users=1)
        ticks = list(pattern.iter_concurrency(duration_seconds=1.0, tick_interval=0.3))
        assert all(t <= 1.0 for t, _ in ticks)
        assert [t for t, _ in ticks] == pytest.approx([0.0, 0.3, 0.6, 0.9])

    def test_no_float_drift_on_long_runs(self) -> None:
        pattern = ConstantPattern(users=1)
        ticks = list(pattern.iter_concurrency(duration_seconds=100.0, tick_interval=0.1))
        assert len(ticks) == 1001
        assert ticks[-1][0] == pytest.approx(100.0)

    def test_zero_users_rejected(self) -> None:
        with pytest.raises(ConfigError, match="users"):
            ConstantPattern(users=0)

    def test_invalid_duration_rejected(self) -> None:
        pattern = ConstantPattern(users=1)
        with pytest.raises(ConfigError, match="duration_seconds"):
            list(pattern.iter_concurrency(duration_seconds=0.0))

    def test_invalid_tick_rejected(self) -> None:
        pattern = ConstantPattern(users=1)
        with pytest.raises(ConfigError, match="tick_interval"):
            list(pattern.iter_concurrency(duration_seconds=1.0, tick_interval=-1.0))

    def test_describe(self) -> None:
        pattern = ConstantPattern(users=3)
        assert "3" in pattern.describe()

    def test_is_load_pattern(self) -> None:
        assert isinstance(ConstantPattern(users=1), LoadPattern)


# =========================================================================
# StagesPattern
# =========================================================================


@pytest.fixture
def ramp_hold_down() -> StagesPattern:
    return StagesPattern(
        [
            Stage(vus=10, duration=10.0),
            Stage(vus=10, duration=10.0),
            Stage(vus=0, duration=5.0),
        ]
    )


class TestStagesPattern:
    """Tests for StagesPattern."""

    def test_ramps_from_zero(self, ramp_hold_down: StagesPattern) -> None:
        assert ramp_hold_down.users_at(0.0) == 0
        assert ramp_hold_down.users_at(5.0) == 5
        assert ramp_hold_down.users_at(9.9) == 10

    def test_holds(self, ramp_hold_down: StagesPattern) -> None:
        for t in (10.0, 12.5, 15.0, 19.9):
            assert ramp_hold_down.users_at(t) == 10

    def test_ramps_down_from_previous_target(self, ramp_hold_down: StagesPattern) -> None:
        assert ramp_hold_down.users_at(20.0) == 10
        assert ramp_hold_down.users_at(22.5) == 5
        assert ramp_hold_down.users_at(25.0) == 0

    def test_past_end_uses_last_target(self, ramp_hold_down: StagesPattern) -> None:
        assert ramp_hold_down.users_at(100.0) == 0

    def test_boundary_tick_belongs_to_new_stage(self, ramp_hold_down: StagesPattern) -> None:
        assert ramp_hold_down.stage_index_at(0.0) == 0
        assert ramp_hold_down.stage_index_at(9.999) == 0
        assert ramp_hold_down.stage_index_at(10.0) == 1
        assert ramp_hold_down.stage_index_at(20.0) == 2
        assert ramp_hold_down.stage_index_at(25.0) == 2

    def test_counts_stay_between_adjacent_targets(self) -> None:
        pattern = StagesPattern(
            [
                Stage(vus=7, duration=3.0),
                Stage(vus=2, duration=3.0),
                Stage(vus=9, duration=3.0),
            ]
        )
        targets = [s.vus for s in pattern.stages]
        for elapsed, users in pattern.iter_concurrency(9.0, tick_interval=0.1):
            index = pattern.stage_index_at(elapsed)
            previous = targets[index - 1] if index > 0 else 0
            assert min(previous, targets[index]) <= users <= max(previous, targets[index])

    def test_describe_lists_stages(self, ramp_hold_down: StagesPattern) -> None:
        text = ramp_hold_down.describe()
        assert "10 VUs/10s" in text
        assert "25s total" in text

    def test_empty_rejected(self) -> None:
        with pytest.raises(ConfigError, match="at least one"):
            StagesPattern([])

    def test_all_zero_targets_rejected(self) -> None:
        with pytest.raises(ConfigError, match=">= 1"):
            StagesPattern([Stage(vus=0, duration=5.0)])

    def test_negative_vus_rejected(self) -> None:
        with pytest.raises(ConfigError, match=r"stages\[1\]\.vus"):
            StagesPattern([Stage(vus=5, duration=1.0), Stage(vus=-1, duration=1.0)])

    def test_zero_duration_rejected(self) -> None:
        with pytest.raises(ConfigError, match=r"stages\[0\]\.duration"):
            StagesPattern([Stage(vus=5, duration=0.0)])
