"""
Bus master backed by a Linux I2C adapter.

Presents the same tick contract as ``BusMaster`` (``ready``, ``submit()``,
``done``/``error`` pulses, ``last_result``) but hands each transaction to the
kernel through smbus2's combined read/write ioctl, so the sequencer runs
unchanged on real hardware. Requires the smbus2 library.
"""

import logging
import threading
from enum import Enum

import smbus2

from max17055.transfer import (BusError, BusEvent, BusEventKind, TransferKind,
                               TransferOutcome, TransferResult, wire_address)


logger = logging.getLogger('max17055.smbus')


class SMBusState(str, Enum):
    IDLE = 'idle'
    READY = 'ready'
    BUSY = 'busy'


class SMBusMaster:
    """Executes ``TransferRequest`` objects with ``SMBus.i2c_rdwr``."""

    def __init__(self, i2c_bus=1, idle_guard_ticks=2, bus=None):
        """Initialize the master.

        Args:
            i2c_bus (int): I2C bus number, defaults to 1
            idle_guard_ticks (int): Ticks spent idle between transactions (>= 2)
            bus (smbus2.SMBus): Already opened bus, overrides i2c_bus

        Raises:
            ValueError: If the idle guard is too short
        """
        if idle_guard_ticks < 2:
            raise ValueError(f"Idle guard must be at least 2 ticks, got {idle_guard_ticks}")

        self.i2c_bus = i2c_bus
        self.bus = bus if bus is not None else smbus2.SMBus(i2c_bus)
        self.idle_guard_ticks = idle_guard_ticks
        self.state = SMBusState.IDLE
        self.request = None
        self.last_result = None
        self.event_callback = None

        self.done = False
        self.error = None

        self._idle_ticks = 0
        self._i2c_lock = threading.Lock()

    @property
    def ready(self):
        return self.state is SMBusState.READY

    @property
    def busy(self):
        return self.state is SMBusState.BUSY

    def submit(self, request):
        if not self.ready:
            logger.debug(f"Rejected {request}: master is {self.state.value}")
            return False
        self.request = request
        self.state = SMBusState.BUSY
        return True

    def tick(self, observed=None):
        """Advance one tick; a submitted request runs on the tick after it was accepted."""
        self.done = False
        self.error = None

        if self.state is SMBusState.IDLE:
            self._idle_ticks += 1
            if self._idle_ticks >= self.idle_guard_ticks:
                self.state = SMBusState.READY
            return
        if self.state is SMBusState.READY:
            return

        request = self.request
        try:
            read_bytes = self.transfer(request)
        except OSError as e:
            logger.warning(f"I2C transfer failed for {request}: {e}")
            self.last_result = TransferResult(request, TransferOutcome.NACKED, error=BusError.NACK)
            self.error = BusError.NACK
            self._emit(BusEventKind.ERROR, error=BusError.NACK)
        else:
            self.last_result = TransferResult(request, TransferOutcome.COMPLETED, read_bytes)
            self.done = True
            logger.debug(f"Completed {request}: {self.last_result}")
        self._emit(BusEventKind.STOP)
        self.request = None
        self.state = SMBusState.IDLE
        self._idle_ticks = 0

    def transfer(self, request):
        """Run one request on the adapter.

        Returns:
            bytes: Data read, empty for writes

        Raises:
            OSError: If the adapter reports a failure (typically a NACK)
        """
        messages = self.messages(request)
        self._emit(BusEventKind.START)
        with self._i2c_lock:
            self.bus.i2c_rdwr(*messages)

        address = request.device_address
        if request.kind is not TransferKind.READ:
            self._emit(BusEventKind.ADDRESS, wire_address(address, False), True)
        for byte in request.register_bytes():
            self._emit(BusEventKind.REGISTER, byte, True)
        for byte in request.write_bytes:
            self._emit(BusEventKind.WRITE, byte, True)
        if not request.is_read:
            return b''

        if request.kind is TransferKind.WRITE_READ:
            self._emit(BusEventKind.REPEATED_START)
        self._emit(BusEventKind.ADDRESS, wire_address(address, True), True)

        data = bytes(messages[-1])
        for index, byte in enumerate(data):
            self._emit(BusEventKind.READ, byte, index < len(data) - 1)
        return data

    @staticmethod
    def messages(request):
        """smbus2 messages for a request: a write, a write then read, or a read."""
        address = request.device_address
        if request.kind is TransferKind.READ:
            return [smbus2.i2c_msg.read(address, request.read_length)]

        head = list(request.register_bytes())
        if request.kind is TransferKind.WRITE:
            return [smbus2.i2c_msg.write(address, head + list(request.write_bytes))]
        return [smbus2.i2c_msg.write(address, head),
                smbus2.i2c_msg.read(address, request.read_length)]

    def _emit(self, kind, byte=None, acked=None, error=None):
        if self.event_callback is not None:
            self.event_callback(BusEvent(kind, byte, acked, error))

    def close(self):
        """Close the I2C bus connection."""
        if self.bus:
            self.bus.close()
            logger.info('I2C bus closed')
