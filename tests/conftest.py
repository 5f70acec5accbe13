"""Shared fixtures: a bit-level master and simulated targets on one set of lines."""

import pytest

from max17055.bus_master import BusMaster
from max17055.lines import BusLines
from max17055.simulator import SimulatedFuelGauge, SimulatedTarget
from max17055.timebase import Timebase


class Bench:
    """Master and targets ticked together, recording everything the master does."""

    def __init__(self, timeout_ticks=None, divider=4):
        self.lines = BusLines()
        self.master = BusMaster(self.lines, Timebase(100_000 * divider, 100_000),
                                timeout_ticks=timeout_ticks)
        self.events = []
        self.master.event_callback = self.events.append
        self.targets = []
        self.snapshots = []
        self.done_ticks = []
        self.error_ticks = []
        self.sequencer = None
        self.ticks = 0

    def add(self, target):
        self.targets.append(target)
        return target

    def tick(self):
        observed = self.lines.snapshot()
        self.snapshots.append(observed)
        self.master.tick(observed)
        for target in self.targets:
            target.tick(observed)
        if self.sequencer is not None:
            self.sequencer.tick()
        if self.master.done:
            self.done_ticks.append(self.ticks)
        if self.master.error is not None:
            self.error_ticks.append(self.ticks)
        self.ticks += 1

    def run(self, ticks):
        for _ in range(ticks):
            self.tick()

    def wait_ready(self, max_ticks=200):
        for _ in range(max_ticks):
            if self.master.ready:
                return
            self.tick()
        raise AssertionError(f"Master not ready after {max_ticks} ticks")

    def transfer(self, request, max_ticks=20_000):
        """Submit a request and tick until the done or error pulse."""
        self.wait_ready()
        assert self.master.submit(request)
        for _ in range(max_ticks):
            self.tick()
            if self.master.done or self.master.error is not None:
                return self.master.last_result
        raise AssertionError(f"{request} did not finish in {max_ticks} ticks")

    def kinds(self):
        return [event.kind for event in self.events]


@pytest.fixture
def make_bench():
    return Bench


@pytest.fixture
def bench():
    return Bench()


@pytest.fixture
def memory_bench():
    bench = Bench()
    bench.target = bench.add(SimulatedTarget(bench.lines, address=0x50))
    return bench


@pytest.fixture
def gauge_bench():
    bench = Bench()
    bench.target = bench.add(SimulatedFuelGauge(bench.lines))
    return bench
