"""
MAX17055 bring-up and measurement script.

The sequencer issues one bus transaction per step and only moves on when the
master reports completion. After a power-on reset it runs the EZ
configuration procedure (wait for data ready, wake, load DesignCap, refresh
the model, clear POR); afterwards, and whenever POR is already clear, it
polls FullCapRep, RepSOC, RepCap, Age and Temp and publishes them together.
"""

import logging
from enum import Enum

from max17055.registers import (CONFIG_CAP_UPDATE, DEFAULT_I2C_ADDRESS, FSTAT_DNR,
                                MODELCFG_LOAD, MODELCFG_REFRESH, SOFT_WAKEUP_CLEAR,
                                SOFT_WAKEUP_WAKE, STATUS_POR, Regs, design_cap_bytes,
                                word_bytes)
from max17055.telemetry import FuelGaugeTelemetry
from max17055.transfer import BusError, TransferRequest


logger = logging.getLogger('max17055.sequencer')


class SequencerState(str, Enum):
    IDLE = 'idle'
    READ_STATUS = 'read Status'
    POLL_FSTAT = 'poll FStat'
    READ_HIBCFG = 'read HibCfg'
    WAKE = 'write SoftWakeup'
    CLEAR_WAKE = 'clear SoftWakeup'
    READ_CONFIG = 'read Config'
    WRITE_DESIGN_CAP = 'write DesignCap'
    WRITE_CONFIG = 'write Config'
    WRITE_MODEL_CFG = 'write ModelCfg'
    POLL_MODEL_CFG = 'poll ModelCfg'
    RESTORE_HIBCFG = 'restore HibCfg'
    CLEAR_POR = 'clear Status.POR'
    SETTLE = 'settle'
    VERIFY_STATUS = 'verify Status'
    READ_FULL_CAP_REP = 'read FullCapRep'
    READ_REP_SOC = 'read RepSOC'
    READ_REP_CAP = 'read RepCap'
    READ_AGE = 'read Age'
    READ_TEMP = 'read Temp'


class FuelGaugeFault(str, Enum):
    """Reasons a pass was abandoned."""
    BUS_NACK = 'bus NACK'
    BUS_TIMEOUT = 'bus timeout'
    DATA_NOT_READY_STALL = 'FStat.DNR never cleared'
    CONFIG_REFRESH_STALL = 'ModelCfg refresh never completed'
    POWER_ON_RESET_LOOP = 'Status.POR never cleared'


BRING_UP_STATES = (
    SequencerState.POLL_FSTAT,
    SequencerState.READ_HIBCFG,
    SequencerState.WAKE,
    SequencerState.CLEAR_WAKE,
    SequencerState.READ_CONFIG,
    SequencerState.WRITE_DESIGN_CAP,
    SequencerState.WRITE_CONFIG,
    SequencerState.WRITE_MODEL_CFG,
    SequencerState.POLL_MODEL_CFG,
    SequencerState.RESTORE_HIBCFG,
    SequencerState.CLEAR_POR,
    SequencerState.SETTLE,
    SequencerState.VERIFY_STATUS,
)

# measurement pass: state, register, telemetry field
MEASUREMENTS = (
    (SequencerState.READ_FULL_CAP_REP, Regs.FULL_CAP_REP, 'full_capacity'),
    (SequencerState.READ_REP_SOC, Regs.REP_SOC, 'state_of_charge'),
    (SequencerState.READ_REP_CAP, Regs.REP_CAP, 'remaining_capacity'),
    (SequencerState.READ_AGE, Regs.AGE, 'age'),
    (SequencerState.READ_TEMP, Regs.TEMP, 'temperature'),
)


class SequencerConfig:
    """Inputs of the sequencer.

    Args:
        nominal_capacity (int): Battery capacity in DesignCap units before doubling (1-0xFFFF)
        continuous_mode (bool): Repeat the measurement pass until stopped
        device_address (int): 7-bit address of the fuel gauge
        settle_ticks (int): Ticks to wait after clearing POR before re-reading Status
        max_poll_attempts (int): Give up a FStat/ModelCfg poll after this many reads, None polls forever
        max_por_retries (int): Give up after this many bring-up retries, None retries forever

    Raises:
        ValueError: If any parameter is out of range
    """

    def __init__(self, nominal_capacity, continuous_mode=False, device_address=DEFAULT_I2C_ADDRESS,
                 settle_ticks=400, max_poll_attempts=None, max_por_retries=None):
        if not 1 <= nominal_capacity <= 0xFFFF:
            raise ValueError(f"Nominal capacity must be 1..0xFFFF, got {nominal_capacity}")
        if not 0 <= device_address <= 0x7F:
            raise ValueError(f"Device address must be 7-bit, got 0x{device_address:X}")
        if settle_ticks < 1:
            raise ValueError(f"Settle delay must be at least one tick, got {settle_ticks}")
        if max_poll_attempts is not None and max_poll_attempts < 1:
            raise ValueError(f"Poll limit must be positive, got {max_poll_attempts}")
        if max_por_retries is not None and max_por_retries < 0:
            raise ValueError(f"POR retry limit cannot be negative, got {max_por_retries}")

        self.nominal_capacity = nominal_capacity
        self.continuous_mode = bool(continuous_mode)
        self.device_address = device_address
        self.settle_ticks = settle_ticks
        self.max_poll_attempts = max_poll_attempts
        self.max_por_retries = max_por_retries


class FuelGaugeSequencer:
    """Scripted MAX17055 driver running on top of a tick-driven bus master.

    Outputs per tick: ``done`` (a measurement pass was published) and
    ``error`` (a ``FuelGaugeFault`` ended the pass). ``telemetry`` always
    holds the last complete pass.
    """

    def __init__(self, master, config):
        self.master = master
        self.config = config

        self.state = SequencerState.IDLE
        self.telemetry = FuelGaugeTelemetry()
        self.last_error = None
        self.passes = 0

        # one-tick output pulses
        self.done = False
        self.error = None

        self._start = False
        self._pending = False
        self._held = {}
        self._status = 0
        self._hibcfg = 0
        self._config = 0
        self._polls = 0
        self._por_retries = 0
        self._settle_left = 0

    @property
    def idle(self):
        return self.state is SequencerState.IDLE

    def start(self):
        """Raise the start-measurement pulse for the next tick."""
        self._start = True

    def tick(self):
        self.done = False
        self.error = None
        start, self._start = self._start, False

        if self.state is SequencerState.IDLE:
            if not start:
                return
            logger.info('Measurement started')
            self._held = {}
            self._por_retries = 0
            self._goto(SequencerState.READ_STATUS)

        if self.state is SequencerState.SETTLE:
            self._settle_left -= 1
            if self._settle_left <= 0:
                self._goto(SequencerState.VERIFY_STATUS)
            return

        if self._pending:
            if self.master.error is not None:
                self._pending = False
                fault = (FuelGaugeFault.BUS_TIMEOUT if self.master.error is BusError.TIMEOUT
                         else FuelGaugeFault.BUS_NACK)
                self._fault(fault)
                return
            if not self.master.done:
                return
            self._pending = False
            self._complete(self.master.last_result)
            if self.state in (SequencerState.IDLE, SequencerState.SETTLE):
                return

        if self.master.ready:
            self._pending = self.master.submit(self._request())

    ###########################
    # Script                  #
    ###########################

    def _read(self, register):
        return TransferRequest.write_read(self.config.device_address, register, 2)

    def _write(self, register, value):
        return TransferRequest.write(self.config.device_address, register, word_bytes(value))

    def _request(self):
        state = self.state
        S = SequencerState
        if state in (S.READ_STATUS, S.VERIFY_STATUS):
            return self._read(Regs.STATUS)
        if state is S.POLL_FSTAT:
            return self._read(Regs.FSTAT)
        if state is S.READ_HIBCFG:
            return self._read(Regs.HIBCFG)
        if state is S.WAKE:
            return self._write(Regs.SOFT_WAKEUP, SOFT_WAKEUP_WAKE)
        if state is S.CLEAR_WAKE:
            return self._write(Regs.SOFT_WAKEUP, SOFT_WAKEUP_CLEAR)
        if state is S.READ_CONFIG:
            return self._read(Regs.CONFIG)
        if state is S.WRITE_DESIGN_CAP:
            return TransferRequest.write(self.config.device_address, Regs.DESIGN_CAP,
                                         design_cap_bytes(self.config.nominal_capacity))
        if state is S.WRITE_CONFIG:
            return self._write(Regs.CONFIG, self._config | CONFIG_CAP_UPDATE)
        if state is S.WRITE_MODEL_CFG:
            return self._write(Regs.MODEL_CFG, MODELCFG_LOAD)
        if state is S.POLL_MODEL_CFG:
            return self._read(Regs.MODEL_CFG)
        if state is S.RESTORE_HIBCFG:
            return self._write(Regs.HIBCFG, self._hibcfg)
        if state is S.CLEAR_POR:
            return self._write(Regs.STATUS, self._status & ~STATUS_POR & 0xFFFF)
        for measure_state, register, _ in MEASUREMENTS:
            if state is measure_state:
                return self._read(register)
        raise RuntimeError(f"No transaction for sequencer state {state.value}")

    def _complete(self, result):
        state = self.state
        S = SequencerState
        value = result.word() if result.request.is_read else None
        logger.debug(f"{state.value} done" + (f": 0x{value:04X}" if value is not None else ''))

        if state is S.READ_STATUS:
            self._status = value
            if value & STATUS_POR:
                logger.info('Power-on reset detected, configuring fuel gauge')
                self._goto(S.POLL_FSTAT)
            else:
                self._goto(S.READ_FULL_CAP_REP)
        elif state is S.POLL_FSTAT:
            if value & FSTAT_DNR:
                self._poll_again(FuelGaugeFault.DATA_NOT_READY_STALL)
            else:
                self._goto(S.READ_HIBCFG)
        elif state is S.READ_HIBCFG:
            self._hibcfg = value
            self._goto(S.WAKE)
        elif state is S.WAKE:
            self._goto(S.CLEAR_WAKE)
        elif state is S.CLEAR_WAKE:
            self._goto(S.READ_CONFIG)
        elif state is S.READ_CONFIG:
            self._config = value
            self._goto(S.WRITE_DESIGN_CAP)
        elif state is S.WRITE_DESIGN_CAP:
            self._goto(S.WRITE_CONFIG)
        elif state is S.WRITE_CONFIG:
            self._goto(S.WRITE_MODEL_CFG)
        elif state is S.WRITE_MODEL_CFG:
            self._goto(S.POLL_MODEL_CFG)
        elif state is S.POLL_MODEL_CFG:
            if value & MODELCFG_REFRESH:
                self._poll_again(FuelGaugeFault.CONFIG_REFRESH_STALL)
            else:
                self._goto(S.RESTORE_HIBCFG)
        elif state is S.RESTORE_HIBCFG:
            self._goto(S.CLEAR_POR)
        elif state is S.CLEAR_POR:
            self._settle_left = self.config.settle_ticks
            self._goto(S.SETTLE)
        elif state is S.VERIFY_STATUS:
            if value & STATUS_POR:
                self._por_retries += 1
                limit = self.config.max_por_retries
                if limit is not None and self._por_retries > limit:
                    self._fault(FuelGaugeFault.POWER_ON_RESET_LOOP)
                    return
                logger.warning(f"Status.POR still set, repeating configuration (retry {self._por_retries})")
                self._goto(S.POLL_FSTAT)
            else:
                logger.info('Fuel gauge configured')
                self._goto(S.READ_FULL_CAP_REP)
        else:
            self._measured(state, value)

    def _measured(self, state, value):
        names = [m[0] for m in MEASUREMENTS]
        index = names.index(state)
        self._held[MEASUREMENTS[index][2]] = value
        if index + 1 < len(MEASUREMENTS):
            self._goto(names[index + 1])
            return

        self.telemetry = FuelGaugeTelemetry(**self._held)
        self._held = {}
        self.passes += 1
        self.done = True
        logger.info(f"Measurement: {self.telemetry}")
        if self.config.continuous_mode:
            self._goto(SequencerState.READ_FULL_CAP_REP)
        else:
            self._goto(SequencerState.IDLE)

    def _poll_again(self, fault):
        self._polls += 1
        limit = self.config.max_poll_attempts
        if limit is not None and self._polls >= limit:
            self._fault(fault)

    def _goto(self, state):
        self._polls = 0
        self.state = state

    def _fault(self, fault):
        logger.error(f"Fuel gauge fault during {self.state.value}: {fault.value}")
        self.last_error = fault
        self.error = fault
        self._held = {}
        self._goto(SequencerState.IDLE)
