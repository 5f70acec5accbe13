"""Tests for the bit-level bus master against simulated targets."""

import pytest

from max17055.bus_master import BusMaster, BusState
from max17055.lines import BusLines
from max17055.simulator import SimulatedTarget
from max17055.transfer import (BusError, BusEvent, BusEventKind, TransferOutcome,
                               TransferRequest)


K = BusEventKind


class TestIdle:
    """Test the idle guard and request acceptance."""

    def test_not_ready_until_guard_elapsed(self, bench):
        bench.run(7)
        assert not bench.master.ready
        bench.tick()
        assert bench.master.ready

    def test_idle_master_releases_lines(self, bench):
        bench.run(20)
        snapshot = bench.lines.snapshot()
        assert (snapshot.scl, snapshot.sda) == (1, 1)

    def test_submit_ignored_before_ready(self, bench):
        assert not bench.master.submit(TransferRequest.read(0x50, 1))
        assert bench.master.state is BusState.IDLE
        assert bench.master.request is None

    def test_submit_ignored_while_busy(self, memory_bench):
        first = TransferRequest.write(0x50, 0x00, b'\x11')
        second = TransferRequest.write(0x50, 0x01, b'\x22')

        memory_bench.wait_ready()
        assert memory_bench.master.submit(first)
        memory_bench.run(10)
        assert memory_bench.master.busy
        assert not memory_bench.master.submit(second)

        memory_bench.wait_ready(max_ticks=1000)
        assert memory_bench.master.request is None
        assert memory_bench.target.memory == {0x00: 0x11}
        assert memory_bench.kinds().count(K.START) == 1

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            BusMaster(BusLines(), idle_guard_periods=1)
        with pytest.raises(ValueError):
            BusMaster(BusLines(), timeout_ticks=0)


class TestWrite:
    """Test write transactions."""

    def test_write_events(self, memory_bench):
        request = TransferRequest.write(0x50, 0x10, b'\x01\x02\x03')
        result = memory_bench.transfer(request)

        assert result.ok
        assert result.read_bytes == b''
        assert memory_bench.events == [
            BusEvent(K.START),
            BusEvent(K.ADDRESS, 0xA0, True),
            BusEvent(K.REGISTER, 0x10, True),
            BusEvent(K.WRITE, 0x01, True),
            BusEvent(K.WRITE, 0x02, True),
            BusEvent(K.WRITE, 0x03, True),
            BusEvent(K.STOP),
        ]
        assert memory_bench.target.memory == {0x10: 0x01, 0x11: 0x02, 0x12: 0x03}

    def test_one_write_event_per_byte(self, memory_bench):
        data = bytes(range(0x40, 0x48))
        memory_bench.transfer(TransferRequest.write(0x50, 0x00, data))

        writes = [event for event in memory_bench.events if event.kind is K.WRITE]
        assert [event.byte for event in writes] == list(data)
        assert all(event.acked for event in writes)

    def test_done_pulses_for_one_tick(self, memory_bench):
        memory_bench.transfer(TransferRequest.write(0x50, 0x00, b'\xAA'))
        memory_bench.tick()

        assert not memory_bench.master.done
        assert len(memory_bench.done_ticks) == 1
        assert memory_bench.error_ticks == []

    def test_not_ready_right_after_done(self, memory_bench):
        memory_bench.transfer(TransferRequest.write(0x50, 0x00, b'\xAA'))
        assert not memory_bench.master.ready
        assert not memory_bench.master.submit(TransferRequest.read(0x50, 1))

    def test_sixteen_bit_register(self, make_bench):
        bench = make_bench()
        target = bench.add(SimulatedTarget(bench.lines, address=0x50, register_width=16))

        bench.transfer(TransferRequest.write(0x50, 0x0102, b'\x7E', register_width=16))

        registers = [event.byte for event in bench.events if event.kind is K.REGISTER]
        assert registers == [0x01, 0x02]
        assert target.memory == {0x0102: 0x7E}


class TestRead:
    """Test write-read and plain read transactions."""

    def test_write_read_events(self, memory_bench):
        memory_bench.target.memory.update({0x20: 0xAA, 0x21: 0x55, 0x22: 0x0F})
        result = memory_bench.transfer(TransferRequest.write_read(0x50, 0x20, 3))

        assert result.ok
        assert result.read_bytes == b'\xAA\x55\x0F'
        assert memory_bench.events == [
            BusEvent(K.START),
            BusEvent(K.ADDRESS, 0xA0, True),
            BusEvent(K.REGISTER, 0x20, True),
            BusEvent(K.REPEATED_START),
            BusEvent(K.ADDRESS, 0xA1, True),
            BusEvent(K.READ, 0xAA, True),
            BusEvent(K.READ, 0x55, True),
            BusEvent(K.READ, 0x0F, False),
            BusEvent(K.STOP),
        ]

    def test_only_last_read_byte_is_nacked(self, memory_bench):
        memory_bench.target.memory.update({i: i for i in range(16)})
        memory_bench.transfer(TransferRequest.write_read(0x50, 0x00, 16))

        reads = [event for event in memory_bench.events if event.kind is K.READ]
        assert len(reads) == 16
        assert [event.acked for event in reads] == [True] * 15 + [False]

    def test_plain_read_continues_at_pointer(self, memory_bench):
        memory_bench.target.memory.update({0x00: 0x11, 0x01: 0x22})
        result = memory_bench.transfer(TransferRequest.read(0x50, 2))

        assert result.read_bytes == b'\x11\x22'
        assert memory_bench.kinds() == [K.START, K.ADDRESS, K.READ, K.READ, K.STOP]
        assert memory_bench.events[1].byte == 0xA1

    def test_write_then_read_back(self, memory_bench):
        data = b'\xDE\xAD\xBE\xEF'
        memory_bench.transfer(TransferRequest.write(0x50, 0x30, data))
        result = memory_bench.transfer(TransferRequest.write_read(0x50, 0x30, len(data)))
        memory_bench.wait_ready()

        assert result.read_bytes == data
        assert memory_bench.target.start_count == 3
        assert memory_bench.target.stop_count == 2

    def test_sixteen_bit_register_read_back(self, make_bench):
        bench = make_bench()
        bench.add(SimulatedTarget(bench.lines, address=0x50, register_width=16,
                                  memory={0x1234: 0x5A}))

        result = bench.transfer(TransferRequest.write_read(0x50, 0x1234, 1, register_width=16))
        assert result.read_bytes == b'\x5A'

    def test_data_only_changes_while_clock_low(self, memory_bench):
        memory_bench.target.memory.update({0x00: 0xA5, 0x01: 0x3C})
        memory_bench.transfer(TransferRequest.write_read(0x50, 0x00, 2))
        memory_bench.wait_ready()

        snapshots = memory_bench.snapshots
        edges = sum(1 for prev, cur in zip(snapshots, snapshots[1:])
                    if prev.scl and cur.scl and prev.sda != cur.sda)
        framing = [kind for kind in memory_bench.kinds()
                   if kind in (K.START, K.REPEATED_START, K.STOP)]
        assert edges == len(framing) == 3
        assert memory_bench.lines.contention_count == 0


class TestErrors:
    """Test NACK, timeout and clock stretching."""

    def test_address_nack(self, memory_bench):
        result = memory_bench.transfer(TransferRequest.write(0x51, 0x00, b'\x01'))

        assert result.outcome is TransferOutcome.NACKED
        assert result.error is BusError.NACK
        assert memory_bench.master.error is BusError.NACK

        memory_bench.wait_ready()
        assert memory_bench.events == [
            BusEvent(K.START),
            BusEvent(K.ADDRESS, 0xA2, False),
            BusEvent(K.ERROR, error=BusError.NACK),
            BusEvent(K.STOP),
        ]
        assert memory_bench.done_ticks == []
        assert len(memory_bench.error_ticks) == 1
        assert memory_bench.target.memory == {}

    def test_data_nack(self, memory_bench):
        memory_bench.target.nack_data = True
        result = memory_bench.transfer(TransferRequest.write(0x50, 0x00, b'\x01\x02'))

        assert result.outcome is TransferOutcome.NACKED
        assert memory_bench.kinds() == [K.START, K.ADDRESS, K.REGISTER, K.WRITE, K.ERROR]
        assert memory_bench.events[3].acked is False
        assert memory_bench.target.memory == {}

    def test_master_recovers_after_nack(self, memory_bench):
        memory_bench.transfer(TransferRequest.write(0x51, 0x00, b'\x01'))
        result = memory_bench.transfer(TransferRequest.write(0x50, 0x00, b'\x01'))

        assert result.ok
        assert memory_bench.target.memory == {0x00: 0x01}

    def test_clock_stretching(self, make_bench):
        plain = make_bench()
        plain.add(SimulatedTarget(plain.lines, address=0x50))
        plain.transfer(TransferRequest.write(0x50, 0x00, b'\x12\x34'))

        stretched = make_bench()
        target = stretched.add(SimulatedTarget(stretched.lines, address=0x50))
        target.stretch_ticks = 12
        result = stretched.transfer(TransferRequest.write(0x50, 0x00, b'\x12\x34'))

        assert result.ok
        assert target.memory == {0x00: 0x12, 0x01: 0x34}
        assert stretched.done_ticks[0] > plain.done_ticks[0]

    def test_timeout(self, make_bench):
        bench = make_bench(timeout_ticks=200)
        target = bench.add(SimulatedTarget(bench.lines, address=0x50))
        target.stretch_ticks = 10_000

        result = bench.transfer(TransferRequest.write(0x50, 0x00, b'\x01'))

        assert result.outcome is TransferOutcome.TIMED_OUT
        assert bench.master.error is BusError.TIMEOUT
        assert BusEvent(K.ERROR, error=BusError.TIMEOUT) in bench.events
        assert bench.done_ticks == []

    def test_no_deadline_by_default(self, make_bench):
        bench = make_bench()
        target = bench.add(SimulatedTarget(bench.lines, address=0x50))
        target.stretch_ticks = 2_000

        result = bench.transfer(TransferRequest.write(0x50, 0x00, b'\x01'))
        assert result.ok
