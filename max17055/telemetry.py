"""Battery readings published by the sequencer."""


def twos_comp(value, bits=16):
    """Signed value of a ``bits`` wide two's complement register."""
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value


class FuelGaugeTelemetry:
    """One complete measurement pass, in raw register units.

    Scaling assumes the reference 10mOhm sense resistor: capacities are
    0.5mAh per LSB, percentages 1/256% per LSB, temperature 1/256 degC per LSB.
    """

    FIELDS = ('full_capacity', 'remaining_capacity', 'state_of_charge', 'age', 'temperature')

    def __init__(self, full_capacity=0, remaining_capacity=0, state_of_charge=0, age=0, temperature=0):
        self.full_capacity = full_capacity
        self.remaining_capacity = remaining_capacity
        self.state_of_charge = state_of_charge
        self.age = age
        self.temperature = temperature

    @property
    def full_capacity_mah(self):
        return self.full_capacity / 2

    @property
    def remaining_capacity_mah(self):
        return self.remaining_capacity / 2

    @property
    def state_of_charge_percent(self):
        return self.state_of_charge / 256

    @property
    def age_percent(self):
        return self.age / 256

    @property
    def temperature_c(self):
        return twos_comp(self.temperature) / 256

    def raw(self):
        return {field: getattr(self, field) for field in self.FIELDS}

    def scaled(self):
        """
        Readings in real units.

        Returns:
            dict: full/remaining capacity in mAh, state of charge and age in %,
                  temperature in degC
        """
        return {
            'full_capacity_mah': self.full_capacity_mah,
            'remaining_capacity_mah': self.remaining_capacity_mah,
            'state_of_charge_percent': self.state_of_charge_percent,
            'age_percent': self.age_percent,
            'temperature_c': self.temperature_c,
        }

    def __eq__(self, other):
        if not isinstance(other, FuelGaugeTelemetry):
            return NotImplemented
        return self.raw() == other.raw()

    def __repr__(self):
        return (f"FuelGaugeTelemetry(full={self.full_capacity_mah:.1f}mAh, "
                f"remaining={self.remaining_capacity_mah:.1f}mAh, "
                f"soc={self.state_of_charge_percent:.2f}%, age={self.age_percent:.2f}%, "
                f"temp={self.temperature_c:.2f}C)")
