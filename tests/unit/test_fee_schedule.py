"""Tests for FeeSchedule decay."""

import pytest

from src.qm_amm.domain.fee_schedule import FeeSchedule
from src.qm_common.errors import FeeOutOfRangeError


@pytest.fixture
def schedule() -> FeeSchedule:
    return FeeSchedule(initial_fee_bps=1000, duration_ms=1000)


class TestConstruction:
    def test_initial_fee_above_max_rejected(self) -> None:
        with pytest.raises(FeeOutOfRangeError):
            FeeSchedule(initial_fee_bps=9901, duration_ms=1000)

    def test_duration_above_one_day_rejected(self) -> None:
        with pytest.raises(FeeOutOfRangeError):
            FeeSchedule(initial_fee_bps=100, duration_ms=86_400_001)

    def test_bounds_accepted(self) -> None:
        FeeSchedule(initial_fee_bps=9900, duration_ms=86_400_000)

    def test_final_fee_out_of_range(self, schedule: FeeSchedule) -> None:
        with pytest.raises(FeeOutOfRangeError):
            schedule.get_current_fee(10_001, 0, 0)


class TestDecay:
    def test_before_start_returns_initial(self, schedule: FeeSchedule) -> None:
        assert schedule.get_current_fee(30, start_time_ms=100, now_ms=50) == 1000
        assert schedule.get_current_fee(30, start_time_ms=100, now_ms=100) == 1000

    def test_after_duration_returns_final(self, schedule: FeeSchedule) -> None:
        assert schedule.get_current_fee(30, start_time_ms=0, now_ms=1000) == 30
        assert schedule.get_current_fee(30, start_time_ms=0, now_ms=5000) == 30

    def test_linear_midpoint(self, schedule: FeeSchedule) -> None:
        # 1000 - floor(970 * 500 / 1000)
        assert schedule.get_current_fee(30, start_time_ms=0, now_ms=500) == 515

    def test_monotonically_non_increasing(self, schedule: FeeSchedule) -> None:
        fees = [schedule.get_current_fee(30, 0, t) for t in range(0, 1200, 7)]
        assert all(a >= b for a, b in zip(fees, fees[1:]))
        assert fees[0] == 1000
        assert fees[-1] == 30

    def test_no_decay_when_initial_not_above_final(self) -> None:
        flat = FeeSchedule(initial_fee_bps=20, duration_ms=1000)
        assert flat.get_current_fee(30, 0, 0) == 30
        assert flat.get_current_fee(30, 0, 500) == 30

    def test_zero_duration_jumps_to_final(self) -> None:
        instant = FeeSchedule(initial_fee_bps=500, duration_ms=0)
        assert instant.get_current_fee(30, 0, 0) == 500
        assert instant.get_current_fee(30, 0, 1) == 30
