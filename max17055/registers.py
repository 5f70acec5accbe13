# Datasheet: https://www.analog.com/media/en/technical-documentation/data-sheets/MAX17055.pdf

DEFAULT_I2C_ADDRESS = 0x36     # 0x6C in 8-bit (write) form


class Regs:
    """MAX17055 register definitions."""
    STATUS = 0x00        # alert and power-on-reset flags
    REP_CAP = 0x05       # reported remaining capacity
    REP_SOC = 0x06       # reported state of charge
    AGE = 0x07           # FullCapRep / DesignCap
    TEMP = 0x08          # temperature
    FULL_CAP_REP = 0x10  # reported full capacity
    DESIGN_CAP = 0x18    # nominal battery capacity
    CONFIG = 0x1D        # configuration
    FSTAT = 0x3D         # fuel gauge status
    SOFT_WAKEUP = 0x60   # command register, exits hibernate
    HIBCFG = 0xBA        # hibernate configuration
    MODEL_CFG = 0xDB     # EZ model configuration


# bit masks
STATUS_POR = 0x0002        # power-on reset, configuration must be restored
FSTAT_DNR = 0x0001         # data not ready
MODELCFG_REFRESH = 0x8000  # model load pending
CONFIG_CAP_UPDATE = 0x0400  # set with a new DesignCap so the model picks it up

# command values
SOFT_WAKEUP_WAKE = 0x0090
SOFT_WAKEUP_CLEAR = 0x0000
MODELCFG_LOAD = MODELCFG_REFRESH  # EZ model, ModelID 0, refresh


def word_bytes(value):
    """16-bit register value as sent on the wire (low byte first)."""
    return bytes((value & 0xFF, (value >> 8) & 0xFF))


def design_cap_bytes(nominal_capacity):
    """DesignCap payload for a nominal capacity.

    Register units are half the real capacity unit, so the capacity is
    doubled: low byte is (capacity << 1) truncated to 8 bits, high byte is
    capacity >> 7.
    """
    return bytes(((nominal_capacity << 1) & 0xFF, (nominal_capacity >> 7) & 0xFF))
