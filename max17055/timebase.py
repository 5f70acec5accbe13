"""Bus clock timebase derived from the scheduler tick."""

from enum import Enum


class ClockPoint(str, Enum):
    """Pulse events inside one bus clock period."""
    DRIVE = 'drive'    # early in the low half, data may change
    SAMPLE = 'sample'  # middle of the high half, data is settled


class Timebase:
    """Free-running phase counter producing the bus clock waveform.

    One period spans ``divider`` ticks: the clock is low for the first half
    and high for the second. ``tick()`` reports the clock level for the
    current phase and, at most once per half, a DRIVE or SAMPLE point.
    """

    MIN_DIVIDER = 4

    def __init__(self, system_clock_hz=400_000, bus_clock_hz=100_000):
        """Initialize the timebase.

        Args:
            system_clock_hz (int): Scheduler tick rate in Hz
            bus_clock_hz (int): Target bus clock in Hz

        Raises:
            ValueError: If the tick rate is not at least 4x the bus clock
        """
        if bus_clock_hz <= 0:
            raise ValueError(f"Bus clock must be positive, got {bus_clock_hz}Hz")

        divider = system_clock_hz // bus_clock_hz
        if divider < self.MIN_DIVIDER:
            raise ValueError(f"System clock {system_clock_hz}Hz is too slow for a "
                             f"{bus_clock_hz}Hz bus (need at least {self.MIN_DIVIDER} ticks per period)")

        self.system_clock_hz = system_clock_hz
        self.bus_clock_hz = bus_clock_hz
        self.divider = divider
        self.drive_phase = divider // 4
        self.sample_phase = divider // 2 + divider // 4
        self.phase = 0

    def ticks_for(self, seconds):
        """Number of scheduler ticks covering ``seconds``."""
        return max(1, int(round(seconds * self.system_clock_hz)))

    def tick(self):
        """Advance one scheduler tick.

        Returns:
            tuple: (clock_high, ClockPoint or None) for the phase just evaluated
        """
        phase = self.phase
        self.phase = (phase + 1) % self.divider

        clock_high = phase >= self.divider // 2
        if phase == self.drive_phase:
            return clock_high, ClockPoint.DRIVE
        if phase == self.sample_phase:
            return clock_high, ClockPoint.SAMPLE
        return clock_high, None

    def resume_after_sample(self):
        """Continue a stretched period as if its sample point had just passed."""
        self.phase = (self.sample_phase + 1) % self.divider

    def reset(self, busy=False):
        """Return to phase zero unless a transaction is in flight.

        Returns:
            bool: True if the phase was reset
        """
        if busy:
            return False
        self.phase = 0
        return True
