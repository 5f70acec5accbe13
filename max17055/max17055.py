# Datasheet: https://www.analog.com/media/en/technical-documentation/data-sheets/MAX17055.pdf

import time
import atexit
import threading
import logging
from logging.handlers import RotatingFileHandler

from max17055.bus_master import BusMaster
from max17055.lines import BusLines
from max17055.registers import DEFAULT_I2C_ADDRESS
from max17055.sequencer import (BRING_UP_STATES, FuelGaugeSequencer, SequencerConfig,
                                SequencerState)
from max17055.simulator import SimulatedFuelGauge
from max17055.smbus_master import SMBusMaster
from max17055.timebase import Timebase


# configure logging
logger = logging.getLogger('max17055')
logger.setLevel(logging.DEBUG)

# max size: 1MB, keep 3 backups
file_handler = RotatingFileHandler('max17055.log', maxBytes=1_000_000, backupCount=3, delay=True)
file_handler.setLevel(logging.DEBUG)
file_format = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
file_handler.setFormatter(file_format)
logger.addHandler(file_handler)

console_handler = logging.StreamHandler()
console_handler.setLevel(logging.WARNING)
console_handler.setFormatter(file_format)
logger.addHandler(console_handler)


class FuelGaugeError(IOError):
    """A measurement pass did not complete."""

    def __init__(self, message, fault=None):
        super().__init__(message)
        self.fault = fault


class MAX17055:
    """Driver for the MAX17055 fuel gauge.

    Wires a bus master, the bring-up/measurement sequencer and (for the
    bit-level master) the shared bus lines and any attached targets onto one
    tick source. Use ``MAX17055.from_smbus()`` on hardware or
    ``MAX17055.simulated()`` against the built-in chip model.
    """

    DEFAULT_I2C_ADDRESS = DEFAULT_I2C_ADDRESS

    def __init__(self,
                 master,
                 nominal_capacity,
                 continuous_mode=False,
                 i2c_address=DEFAULT_I2C_ADDRESS,
                 settle_ticks=400,
                 max_poll_attempts=None,
                 max_por_retries=None,
                 lines=None,
                 targets=(),
                 tick_period=None,
                 update_interval=5.0):
        """Initialize the driver.

        Args:
            master: Bus master (``BusMaster`` or ``SMBusMaster``)
            nominal_capacity (int): DesignCap value before doubling (1-0xFFFF)
            continuous_mode (bool): Keep measuring after the first pass
            i2c_address (int): 7-bit I2C address of the fuel gauge
            settle_ticks (int): Ticks to wait after clearing Status.POR
            max_poll_attempts (int): Poll limit for FStat/ModelCfg, None for no limit
            max_por_retries (int): Bring-up retry limit, None for no limit
            lines (BusLines): Shared lines for a bit-level master
            targets (iterable): Simulated targets attached to ``lines``
            tick_period (float): Seconds to sleep per tick, None runs ticks back to back
            update_interval (float): Seconds between passes when auto updating

        Raises:
            ValueError: If parameters are invalid
        """
        if update_interval <= 0:
            raise ValueError(f"Update interval must be positive, got {update_interval}s")
        if tick_period is not None and tick_period < 0:
            raise ValueError(f"Tick period cannot be negative, got {tick_period}s")

        self.config = SequencerConfig(nominal_capacity,
                                      continuous_mode=continuous_mode,
                                      device_address=i2c_address,
                                      settle_ticks=settle_ticks,
                                      max_poll_attempts=max_poll_attempts,
                                      max_por_retries=max_por_retries)
        self.master = master
        self.lines = lines
        self.targets = list(targets)
        self.sequencer = FuelGaugeSequencer(master, self.config)
        self.tick_period = tick_period
        self.update_interval = update_interval
        self.ticks = 0

        # Callback functions
        self.measurement_callback = None
        self.fault_callback = None

        self._auto_update = False
        self._update_thread = None
        self._stop_event = threading.Event()
        self._tick_lock = threading.Lock()

        # Register cleanup at exit
        atexit.register(self.close)

        logger.info(f"MAX17055 driver ready at address 0x{i2c_address:02X} "
                    f"(nominal capacity 0x{nominal_capacity:04X})")

    @classmethod
    def from_smbus(cls, nominal_capacity, i2c_bus=1, tick_period=0.0005, settle_delay=0.001, **kwargs):
        """Driver on a Linux I2C adapter.

        Args:
            nominal_capacity (int): DesignCap value before doubling
            i2c_bus (int): I2C bus number, defaults to 1
            tick_period (float): Seconds per tick
            settle_delay (float): Seconds to wait after clearing Status.POR
        """
        if tick_period <= 0:
            raise ValueError(f"Tick period must be positive on hardware, got {tick_period}s")
        master = SMBusMaster(i2c_bus)
        settle_ticks = max(1, int(round(settle_delay / tick_period)))
        return cls(master, nominal_capacity, settle_ticks=settle_ticks, tick_period=tick_period, **kwargs)

    @classmethod
    def simulated(cls, nominal_capacity, system_clock_hz=400_000, bus_clock_hz=100_000,
                  settle_delay=0.001, timeout_ticks=None, idle_guard_periods=2,
                  target_options=None, **kwargs):
        """Driver on a bit-level master talking to ``SimulatedFuelGauge``.

        The simulated chip is available as ``driver.fuel_gauge``.

        Args:
            nominal_capacity (int): DesignCap value before doubling
            system_clock_hz (int): Scheduler tick rate
            bus_clock_hz (int): Bus clock rate
            settle_delay (float): Seconds to wait after clearing Status.POR
            timeout_ticks (int): Per-transaction deadline, None disables it
            idle_guard_periods (int): Idle clock periods between transactions
            target_options (dict): Keyword arguments for ``SimulatedFuelGauge``
        """
        lines = BusLines()
        timebase = Timebase(system_clock_hz, bus_clock_hz)
        master = BusMaster(lines, timebase, idle_guard_periods=idle_guard_periods,
                           timeout_ticks=timeout_ticks)
        options = dict(target_options or {})
        options.setdefault('address', kwargs.get('i2c_address', DEFAULT_I2C_ADDRESS))
        fuel_gauge = SimulatedFuelGauge(lines, **options)
        driver = cls(master, nominal_capacity, settle_ticks=timebase.ticks_for(settle_delay),
                     lines=lines, targets=[fuel_gauge], **kwargs)
        driver.fuel_gauge = fuel_gauge
        return driver

    def close(self):
        """Stop background updates and release the bus."""
        if self._auto_update:
            self.stop_auto_updates()

        close = getattr(self.master, 'close', None)
        if close is not None:
            try:
                close()
            except OSError as e:
                logger.error(f"Error closing I2C bus: {e}")
        atexit.unregister(self.close)

    #######################
    # Scheduler           #
    #######################

    def tick(self):
        """Advance every component by one tick.

        Returns:
            tuple: (done, error) pulses of the sequencer for this tick
        """
        with self._tick_lock:
            observed = self.lines.snapshot() if self.lines is not None else None
            self.master.tick(observed)
            for target in self.targets:
                target.tick(observed)
            self.sequencer.tick()
            self.ticks += 1
            return self.sequencer.done, self.sequencer.error

    def start_measurement(self):
        """Raise the start pulse; ignored unless the sequencer is idle."""
        if not self.sequencer.idle:
            logger.debug(f"Start ignored, sequencer is in {self.sequencer.state.value}")
            return
        self.sequencer.start()

    def run_until_done(self, max_ticks=5_000_000):
        """Tick until a measurement pass is published or faults.

        Returns:
            bool: True if a pass was published, False on a fault

        Raises:
            FuelGaugeError: If nothing happened within ``max_ticks``
        """
        for _ in range(max_ticks):
            done, error = self.tick()
            if done:
                return True
            if error is not None:
                return False
            if self.tick_period:
                time.sleep(self.tick_period)
        raise FuelGaugeError(f"No measurement after {max_ticks} ticks "
                             f"(sequencer stuck in {self.sequencer.state.value})")

    def measure(self, max_ticks=5_000_000):
        """Run one measurement pass and return its telemetry.

        Raises:
            FuelGaugeError: If the pass faults or does not finish in time
        """
        self.start_measurement()
        if not self.run_until_done(max_ticks):
            fault = self.sequencer.last_error
            raise FuelGaugeError(f"Measurement failed: {fault.value}", fault)
        return self.telemetry

    #######################
    # Status              #
    #######################

    @property
    def telemetry(self):
        return self.sequencer.telemetry

    @property
    def last_error(self):
        return self.sequencer.last_error

    @property
    def state(self):
        return self.sequencer.state

    def is_configuring(self):
        """True while the power-on-reset bring-up is running."""
        return self.sequencer.state in BRING_UP_STATES

    def is_measuring(self):
        return self.sequencer.state not in BRING_UP_STATES + (SequencerState.IDLE,)

    #######################
    # Automatic updates   #
    #######################

    def start_auto_updates(self):
        """Start measuring in a background thread."""
        if self._auto_update:
            return

        self._auto_update = True
        self._stop_event.clear()
        self._update_thread = threading.Thread(target=self._update_loop, daemon=True)
        self._update_thread.start()
        logger.info(f"Started automatic updates (interval: {self.update_interval}s)")

    def stop_auto_updates(self):
        """Stop automatic updates."""
        if not self._auto_update:
            return

        self._auto_update = False
        self._stop_event.set()
        if self._update_thread and self._update_thread.is_alive():
            self._update_thread.join(timeout=1.0)
        logger.info('Stopped automatic updates')

    def _update_loop(self):
        """Background thread: start a pass every update_interval and tick it to completion."""
        while not self._stop_event.is_set():
            if self.sequencer.idle:
                self.start_measurement()

            while not self._stop_event.is_set():
                done, error = self.tick()
                if done and self.measurement_callback:
                    self.measurement_callback(self.telemetry)
                if error is not None and self.fault_callback:
                    self.fault_callback(error)
                if self.sequencer.idle:
                    break
                if self.tick_period:
                    time.sleep(self.tick_period)

            # Wait for the next update interval or until stop is requested
            self._stop_event.wait(self.update_interval)
