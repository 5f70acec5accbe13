"""
Simulated bus targets.

``SimulatedTarget`` is a byte-addressed I2C target (think small EEPROM) that
watches the shared lines the same way a real chip does: it detects start and
stop conditions, samples SDA on rising SCL, and changes SDA after falling SCL.
``SimulatedFuelGauge`` layers the MAX17055 register behaviour on top of it.
"""

import logging
from enum import Enum

from max17055.lines import LOW, RELEASED, LineSnapshot
from max17055.registers import (DEFAULT_I2C_ADDRESS, FSTAT_DNR, MODELCFG_REFRESH,
                                STATUS_POR, Regs)


logger = logging.getLogger('max17055.simulator')


class TargetState(str, Enum):
    IDLE = 'idle'          # waiting for a start condition
    ADDRESS = 'address'
    REGISTER = 'register'
    WRITE = 'write'
    READ_PENDING = 'read pending'  # addressed for reading, data starts after the ACK
    READ = 'read'
    IGNORE = 'ignore'      # not addressed or NACKed, wait for the next framing


class SimulatedTarget:
    """Protocol-level target with a flat byte memory and auto-increment."""

    NAME = 'target'

    def __init__(self, lines, address=DEFAULT_I2C_ADDRESS, register_width=8, memory=None, name=None):
        if register_width not in (8, 16):
            raise ValueError(f"Register address width must be 8 or 16, got {register_width}")

        self.name = name or self.NAME
        self.lines = lines
        self.address = address
        self.register_width = register_width
        self.memory = dict(memory or {})
        lines.attach(self.name)

        # error injection
        self.nack_address = False
        self.nack_data = False
        self.stretch_ticks = 0

        self.state = TargetState.IDLE
        self.pointer = 0
        self.start_count = 0
        self.stop_count = 0
        self._prev = LineSnapshot()
        self._bits = 0
        self._byte = 0
        self._ack = False
        self._register_bytes = 0
        self._stretch_left = 0

    def tick(self, observed):
        """React to the line levels seen at the end of the previous tick."""
        prev, self._prev = self._prev, observed

        if self._stretch_left:
            self._stretch_left -= 1
            if not self._stretch_left:
                self.lines.drive_scl(self.name, RELEASED)

        if prev.scl and observed.scl:
            if prev.sda and not observed.sda:
                self._on_start()
            elif not prev.sda and observed.sda:
                self._on_stop()
            return

        if self.state in (TargetState.IDLE, TargetState.IGNORE):
            return
        if observed.scl and not prev.scl:
            self._rising(observed.sda)
        elif prev.scl and not observed.scl:
            self._falling()

    ###########################
    # Framing                 #
    ###########################

    def _on_start(self):
        self.start_count += 1
        self.state = TargetState.ADDRESS
        self._bits = 0
        self._byte = 0
        self.lines.drive_sda(self.name, RELEASED)

    def _on_stop(self):
        self.stop_count += 1
        self.state = TargetState.IDLE
        self.lines.drive_sda(self.name, RELEASED)
        self.stopped()

    ###########################
    # Clock edges             #
    ###########################

    def _rising(self, sda):
        if self.state is TargetState.READ:
            if self._bits < 8:
                self._bits += 1
            elif sda:
                # master NACK, it is done reading
                self.state = TargetState.IGNORE
            else:
                self._byte = self.next_read_byte()
                self._bits = 0
            return

        if self._bits < 8:
            self._byte = ((self._byte << 1) | sda) & 0xFF
            self._bits += 1
            if self._bits == 8:
                self._ack = self._receive(self._byte)
        else:
            self._bits = 9

    def _falling(self):
        if self.state is TargetState.READ:
            if self._bits < 8:
                bit = (self._byte >> (7 - self._bits)) & 1
                self.lines.drive_sda(self.name, RELEASED if bit else LOW)
            else:
                self.lines.drive_sda(self.name, RELEASED)
            return

        if self._bits == 8:
            self.lines.drive_sda(self.name, LOW if self._ack else RELEASED)
            if self.stretch_ticks:
                self._stretch_left = self.stretch_ticks
                self.lines.drive_scl(self.name, LOW)
        elif self._bits == 9:
            self.lines.drive_sda(self.name, RELEASED)
            self._bits = 0
            self._byte = 0
            if not self._ack:
                self.state = TargetState.IGNORE
            elif self.state is TargetState.READ_PENDING:
                self.state = TargetState.READ
                self._byte = self.next_read_byte()
                bit = (self._byte >> 7) & 1
                self.lines.drive_sda(self.name, RELEASED if bit else LOW)

    def _receive(self, byte):
        """Handle a complete received byte; returns whether to ACK it."""
        if self.state is TargetState.ADDRESS:
            if (byte >> 1) != self.address or self.nack_address:
                return False
            if byte & 1:
                self.state = TargetState.READ_PENDING
                self.begin_read()
            else:
                self.state = TargetState.REGISTER
                self._register_bytes = 0
                self.pointer = 0
            return True

        if self.state is TargetState.REGISTER:
            self.pointer = ((self.pointer << 8) | byte) & ((1 << self.register_width) - 1)
            self._register_bytes += 1
            if self._register_bytes == self.register_width // 8:
                self.state = TargetState.WRITE
                self.select(self.pointer)
            return True

        if self.nack_data:
            return False
        self.write_byte(byte)
        return True

    ###########################
    # Memory hooks            #
    ###########################

    def select(self, register):
        """Register pointer was set by a write-direction address phase."""

    def begin_read(self):
        """Addressed in read mode, reading starts at the current pointer."""

    def next_read_byte(self):
        value = self.memory.get(self.pointer, 0xFF)
        self.pointer = (self.pointer + 1) & ((1 << self.register_width) - 1)
        return value

    def write_byte(self, byte):
        self.memory[self.pointer] = byte
        self.pointer = (self.pointer + 1) & ((1 << self.register_width) - 1)

    def stopped(self):
        """Stop condition seen."""


class SimulatedFuelGauge(SimulatedTarget):
    """MAX17055 register file behind a simulated target.

    Registers are 16-bit words sent low byte first; consecutive bytes walk
    to the next register. A few registers behave like the chip does during
    bring-up:

    * Status.POR stays set after a write when ``por_sticky`` is True.
    * FStat.DNR stays set for ``dnr_polls`` reads.
    * Writing ModelCfg with the refresh bit set keeps it set for
      ``refresh_polls`` reads.
    """

    NAME = 'max17055'

    def __init__(self, lines, address=DEFAULT_I2C_ADDRESS, registers=None, por=True,
                 dnr_polls=1, refresh_polls=1, por_sticky=False):
        super().__init__(lines, address=address, register_width=8, name=self.NAME)
        self.registers = {
            Regs.STATUS: STATUS_POR if por else 0x0000,
            Regs.FSTAT: FSTAT_DNR,
            Regs.HIBCFG: 0x870C,
            Regs.CONFIG: 0x2210,
            Regs.DESIGN_CAP: 0x0BB8,
            Regs.MODEL_CFG: 0x0000,
            Regs.SOFT_WAKEUP: 0x0000,
            Regs.REP_CAP: 0x0BB8,
            Regs.REP_SOC: 0x3200,
            Regs.FULL_CAP_REP: 0x1770,
            Regs.AGE: 0x6400,
            Regs.TEMP: 0x1980,
        }
        self.registers.update(registers or {})
        self.dnr_polls = dnr_polls
        self.refresh_polls = refresh_polls
        self.por_sticky = por_sticky
        self.write_log = []
        self.read_log = []
        self._half = 0
        self._low = 0
        self._dnr_left = dnr_polls
        self._refresh_left = 0

    def select(self, register):
        self._half = 0

    def begin_read(self):
        self._half = 0

    def next_read_byte(self):
        register = self.pointer
        if self._half == 0:
            self.read_log.append(register)
            self._count_poll(register)
            value = self.registers.get(register, 0x0000)
            self._half = 1
            return value & 0xFF

        value = self.registers.get(register, 0x0000)
        self._half = 0
        self.pointer = (register + 1) & 0xFF
        return (value >> 8) & 0xFF

    def write_byte(self, byte):
        if self._half == 0:
            self._low = byte
            self._half = 1
            return
        value = self._low | (byte << 8)
        self._half = 0
        self._store(self.pointer, value)
        self.pointer = (self.pointer + 1) & 0xFF

    def _count_poll(self, register):
        if register == Regs.FSTAT and self.registers[Regs.FSTAT] & FSTAT_DNR:
            if self._dnr_left <= 0:
                self.registers[Regs.FSTAT] &= ~FSTAT_DNR & 0xFFFF
            self._dnr_left -= 1
        elif register == Regs.MODEL_CFG and self.registers[Regs.MODEL_CFG] & MODELCFG_REFRESH:
            if self._refresh_left <= 0:
                self.registers[Regs.MODEL_CFG] &= ~MODELCFG_REFRESH & 0xFFFF
            self._refresh_left -= 1

    def _store(self, register, value):
        self.write_log.append((register, value))
        logger.debug(f"Write 0x{register:02X} = 0x{value:04X}")

        if register == Regs.STATUS and self.por_sticky:
            value |= STATUS_POR
        elif register == Regs.MODEL_CFG and value & MODELCFG_REFRESH:
            self._refresh_left = self.refresh_polls
        self.registers[register] = value

    def power_on_reset(self):
        """Put the chip back into its just-powered state."""
        self.registers[Regs.STATUS] |= STATUS_POR
        self.registers[Regs.FSTAT] |= FSTAT_DNR
        self._dnr_left = self.dnr_polls
