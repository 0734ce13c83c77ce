"""Tests for qm_common: id generator, clocks, atomic blocks, linear values."""

import logging

import pytest

from src.qm_common.atomic import atomic
from src.qm_common.clock import ManualClock, SystemClock, utc_now
from src.qm_common.errors import ProgressStateError
from src.qm_common.id_generator import SnowflakeIdGenerator, generate_id
from src.qm_common.linear import LinearValue
from src.qm_escrow.domain.coins import Coin


class TestSnowflakeIdGenerator:
    def test_unique_ids(self) -> None:
        gen = SnowflakeIdGenerator(machine_id=1)
        assert len({gen.next_int() for _ in range(5000)}) == 5000

    def test_monotonically_increasing(self) -> None:
        gen = SnowflakeIdGenerator(machine_id=1)
        prev = gen.next_int()
        for _ in range(100):
            current = gen.next_int()
            assert current > prev
            prev = current

    def test_invalid_machine_id(self) -> None:
        with pytest.raises(ValueError):
            SnowflakeIdGenerator(machine_id=1024)

    def test_prefixed(self) -> None:
        assert generate_id("mkt").startswith("mkt_")


class TestClocks:
    def test_manual_clock(self) -> None:
        clock = ManualClock(start_ms=5)
        assert clock.now_ms() == 5
        assert clock.advance(10) == 15
        with pytest.raises(ValueError):
            clock.advance(-1)

    def test_system_clock_never_goes_back(self) -> None:
        clock = SystemClock()
        readings = [clock.now_ms() for _ in range(50)]
        assert readings == sorted(readings)

    def test_utc_now_is_aware(self) -> None:
        assert utc_now().tzinfo is not None


class TestAtomic:
    def test_restores_on_error(self) -> None:
        a, b = Coin("X", 10), Coin("Y", 20)
        with pytest.raises(RuntimeError):
            with atomic(a, b):
                a.take_all()
                b.value = 99
                raise RuntimeError("boom")
        assert (a.value, b.value) == (10, 20)

    def test_keeps_changes_on_success(self) -> None:
        a = Coin("X", 10)
        with atomic(a, None, a):
            a.take_all()
        assert a.value == 0

    def test_nested_inner_failure(self) -> None:
        a = Coin("X", 10)
        with atomic(a):
            a.value = 5
            with pytest.raises(RuntimeError):
                with atomic(a):
                    a.value = 1
                    raise RuntimeError("inner")
            assert a.value == 5


class _Ticket(LinearValue):
    label: str

    def punch(self) -> None:
        self._consume()


class TestLinearValue:
    def test_issue_and_consume(self) -> None:
        ticket = _Ticket._issue(label="a")
        assert ticket.label == "a"
        assert not ticket.consumed
        ticket.punch()
        assert ticket.consumed
        with pytest.raises(ProgressStateError):
            ticket.punch()

    def test_dropped_value_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        ticket = _Ticket._issue(label="lost")
        with caplog.at_level(logging.WARNING, logger="src.qm_common.linear"):
            ticket.__del__()
        assert "_Ticket dropped without being finished" in caplog.text
        ticket.punch()
