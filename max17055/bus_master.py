"""
Bit-level I2C bus master.

The master is a finite-state machine advanced once per scheduler tick. Every
byte occupies eight clock periods, MSB first, followed by an acknowledge
period. Inside a period the data line is set at the DRIVE point (clock low)
and read at the SAMPLE point (clock high). Start and stop framing hold the
clock high while the data line moves.

A driver talks to the master through ``ready``, ``submit()`` and the
per-tick ``done``/``error`` pulses.
"""

import logging
from enum import Enum

from max17055.lines import LOW, RELEASED
from max17055.timebase import ClockPoint, Timebase
from max17055.transfer import (BusError, BusEvent, BusEventKind, TransferKind,
                               TransferOutcome, TransferResult, wire_address)


logger = logging.getLogger('max17055.bus_master')


class BusState(str, Enum):
    IDLE = 'idle'
    READY = 'ready'
    START = 'start'
    ADDRESS = 'address'
    REGISTER_ADDRESS = 'register address'
    WRITE_DATA = 'write data'
    READ_DATA = 'read data'
    STOP = 'stop'


class BitCell(str, Enum):
    """Which period of a byte phase the master is in."""
    DATA = 'data'  # one of the eight data bits, see bit_index
    ACK = 'ack'


class FramingStep(str, Enum):
    """Sub-steps of start and stop framing."""
    SETUP = 'setup'  # clocked period putting SDA where the edge starts from
    EDGE = 'edge'    # clock held high while SDA falls (start) or rises (stop)


class BusMaster:
    """Tick-driven master for one set of bus lines."""

    NAME = 'master'

    def __init__(self, lines, timebase=None, idle_guard_periods=2, timeout_ticks=None):
        """Initialize the bus master.

        Args:
            lines (BusLines): Shared SCL/SDA lines the master attaches to
            timebase (Timebase): Bus clock source, defaults to a 100kHz bus on a 400kHz tick
            idle_guard_periods (int): Clock periods spent idle before accepting a request (>= 2)
            timeout_ticks (int): Per-transaction deadline in ticks, None disables it

        Raises:
            ValueError: If the guard interval or deadline is invalid
        """
        if idle_guard_periods < 2:
            raise ValueError(f"Idle guard must be at least 2 clock periods, got {idle_guard_periods}")
        if timeout_ticks is not None and timeout_ticks <= 0:
            raise ValueError(f"Timeout must be a positive number of ticks, got {timeout_ticks}")

        self.lines = lines
        self.timebase = timebase or Timebase()
        self.idle_guard_periods = idle_guard_periods
        self.timeout_ticks = timeout_ticks
        lines.attach(self.NAME)

        self.state = BusState.IDLE
        self.request = None
        self.last_result = None
        self.event_callback = None

        # one-tick output pulses
        self.done = False
        self.error = None

        self._idle_periods = 0
        self._elapsed = 0
        self._stretched = False
        self._step = FramingStep.SETUP
        self._cell = BitCell.DATA
        self.bit_index = 7
        self._byte = 0
        self._queue = b''
        self._read_phase = False
        self._repeated = False
        self._received = bytearray()
        self._outcome = None
        self._failure = None

    @property
    def ready(self):
        return self.state is BusState.READY

    @property
    def busy(self):
        return self.state not in (BusState.IDLE, BusState.READY)

    def submit(self, request):
        """Offer a request to the master.

        Only a READY master accepts; anything else is ignored.

        Returns:
            bool: True if the request was accepted
        """
        if not self.ready:
            logger.debug(f"Rejected {request}: master is {self.state.value}")
            return False

        self.timebase.reset(busy=False)
        self.request = request
        self._elapsed = 0
        self._stretched = False
        self._queue = b''
        self._received = bytearray()
        self._outcome = None
        self._failure = None
        self._read_phase = request.kind is TransferKind.READ
        self._enter_start(repeated=False)
        logger.debug(f"Accepted {request}")
        return True

    def tick(self, observed):
        """Advance one scheduler tick.

        Args:
            observed (LineSnapshot): Line levels at the end of the previous tick
        """
        self.done = False
        self.error = None
        clock_high, point = self.timebase.tick()

        if not self.busy:
            self._drive(RELEASED, RELEASED)
            if self.state is BusState.IDLE and point is ClockPoint.SAMPLE:
                self._idle_periods += 1
                if self._idle_periods >= self.idle_guard_periods:
                    self.state = BusState.READY
            return

        self._elapsed += 1
        if (self.timeout_ticks is not None and self._elapsed > self.timeout_ticks
                and self.state is not BusState.STOP):
            logger.warning(f"Deadline of {self.timeout_ticks} ticks expired during {self.state.value}")
            self._fail(BusError.TIMEOUT)
            self._drive_scl(RELEASED if clock_high else LOW)
            return

        if self._stretched:
            # wait for the target to let go of SCL
            self._drive_scl(RELEASED)
            if observed.scl:
                self._stretched = False
                self._sample(observed)
                self.timebase.resume_after_sample()
            return

        holding_high = self.state in (BusState.START, BusState.STOP) and self._step is FramingStep.EDGE
        self._drive_scl(RELEASED if holding_high or clock_high else LOW)

        if point is ClockPoint.DRIVE:
            self._setup()
        elif point is ClockPoint.SAMPLE:
            stretchable = not holding_high and self.state is not BusState.STOP
            if stretchable and not observed.scl:
                logger.debug('Target is stretching the clock')
                self._stretched = True
                return
            self._sample(observed)

    ###########################
    # Line helpers            #
    ###########################

    def _drive(self, scl, sda):
        self.lines.drive_scl(self.NAME, scl)
        self.lines.drive_sda(self.NAME, sda)

    def _drive_scl(self, drive):
        self.lines.drive_scl(self.NAME, drive)

    def _drive_sda(self, drive):
        self.lines.drive_sda(self.NAME, drive)

    def _emit(self, kind, byte=None, acked=None, error=None):
        if self.event_callback is not None:
            self.event_callback(BusEvent(kind, byte, acked, error))

    ###########################
    # Phase transitions       #
    ###########################

    def _enter_start(self, repeated):
        self.state = BusState.START
        # a fresh start begins from idle lines, a repeated start first releases SDA
        self._step = FramingStep.SETUP if repeated else FramingStep.EDGE
        self._repeated = repeated

    def _enter_byte(self, state, byte):
        self.state = state
        self._cell = BitCell.DATA
        self.bit_index = 7
        self._byte = byte

    def _enter_stop(self):
        self.state = BusState.STOP
        self._step = FramingStep.SETUP

    def _load_queue(self, state, data):
        self._queue = data[1:]
        self._enter_byte(state, data[0])

    def _fail(self, error):
        self._failure = error
        self._outcome = TransferOutcome.NACKED if error is BusError.NACK else TransferOutcome.TIMED_OUT
        self.error = error
        self.last_result = TransferResult(self.request, self._outcome, error=error)
        self._emit(BusEventKind.ERROR, error=error)
        self._stretched = False
        self._enter_stop()

    def _finish(self):
        self._emit(BusEventKind.STOP)
        if self._failure is None:
            self._outcome = TransferOutcome.COMPLETED
            self.last_result = TransferResult(self.request, self._outcome, bytes(self._received))
            self.done = True
            logger.debug(f"Completed {self.request}: {self.last_result}")
        self.state = BusState.IDLE
        self._idle_periods = 0
        self.request = None

    ###########################
    # DRIVE point             #
    ###########################

    def _setup(self):
        state = self.state
        if state is BusState.START:
            if self._step is FramingStep.SETUP:
                self._drive_sda(RELEASED)
            else:
                self._drive_sda(LOW)
                self._emit(BusEventKind.REPEATED_START if self._repeated else BusEventKind.START)
        elif state is BusState.STOP:
            if self._step is FramingStep.SETUP:
                self._drive_sda(LOW)
            else:
                self._drive_sda(RELEASED)
                self._finish()
        elif state is BusState.READ_DATA:
            if self._cell is BitCell.DATA:
                self._drive_sda(RELEASED)
            else:
                last = len(self._received) == self.request.read_length
                self._drive_sda(RELEASED if last else LOW)
        else:
            if self._cell is BitCell.DATA:
                bit = (self._byte >> self.bit_index) & 1
                self._drive_sda(RELEASED if bit else LOW)
            else:
                self._drive_sda(RELEASED)

    ###########################
    # SAMPLE point            #
    ###########################

    def _sample(self, observed):
        state = self.state
        if state is BusState.START:
            if self._step is FramingStep.SETUP:
                self._step = FramingStep.EDGE
            else:
                address = wire_address(self.request.device_address, self._read_phase)
                self._enter_byte(BusState.ADDRESS, address)
        elif state is BusState.STOP:
            if self._step is FramingStep.SETUP:
                self._step = FramingStep.EDGE
        elif state is BusState.READ_DATA:
            self._sample_read(observed)
        else:
            self._sample_write(observed)

    def _sample_write(self, observed):
        if self._cell is BitCell.DATA:
            self.bit_index -= 1
            if self.bit_index < 0:
                self._cell = BitCell.ACK
            return

        acked = observed.sda == 0
        kind = {
            BusState.ADDRESS: BusEventKind.ADDRESS,
            BusState.REGISTER_ADDRESS: BusEventKind.REGISTER,
            BusState.WRITE_DATA: BusEventKind.WRITE,
        }[self.state]
        self._emit(kind, self._byte, acked)

        if not acked:
            logger.warning(f"NACK on {self.state.value} byte 0x{self._byte:02X} for {self.request}")
            self._fail(BusError.NACK)
            return

        request = self.request
        if self.state is BusState.ADDRESS:
            if self._read_phase:
                self._received = bytearray()
                self._enter_byte(BusState.READ_DATA, 0)
            else:
                self._load_queue(BusState.REGISTER_ADDRESS, request.register_bytes())
        elif self._queue:
            self._load_queue(self.state, self._queue)
        elif self.state is BusState.REGISTER_ADDRESS:
            if request.kind is TransferKind.WRITE_READ:
                self._read_phase = True
                self._enter_start(repeated=True)
            else:
                self._load_queue(BusState.WRITE_DATA, request.write_bytes)
        else:
            self._enter_stop()

    def _sample_read(self, observed):
        if self._cell is BitCell.DATA:
            self._byte = (self._byte << 1) | observed.sda
            self.bit_index -= 1
            if self.bit_index < 0:
                self._received.append(self._byte & 0xFF)
                self._cell = BitCell.ACK
            return

        last = len(self._received) == self.request.read_length
        self._emit(BusEventKind.READ, self._received[-1], not last)
        if last:
            self._enter_stop()
        else:
            self._enter_byte(BusState.READ_DATA, 0)
