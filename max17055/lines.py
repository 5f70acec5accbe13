"""
Open-drain line model for the two-wire bus.

Every party on the bus owns its own drive for each line. A drive is either
``Driving(bit)`` or ``RELEASED``; the level anybody observes is resolved
separately from all drives (wired-AND with a pull-up).
"""


class Driving:
    """A party actively drives the line to ``bit``."""

    __slots__ = ('bit',)

    def __init__(self, bit):
        if bit not in (0, 1):
            raise ValueError(f"Line can only be driven to 0 or 1, got {bit}")
        self.bit = bit

    def __eq__(self, other):
        return isinstance(other, Driving) and other.bit == self.bit

    def __hash__(self):
        return hash(('driving', self.bit))

    def __repr__(self):
        return f"Driving({self.bit})"


class _Released:
    __slots__ = ()

    def __repr__(self):
        return 'RELEASED'


RELEASED = _Released()
LOW = Driving(0)
HIGH = Driving(1)


def resolve(drives):
    """Resolve a set of drives to the observed line level.

    Args:
        drives (iterable): ``Driving`` values or ``RELEASED``

    Returns:
        int: 0 if anybody pulls low, otherwise 1 (pull-up or driven high)
    """
    for drive in drives:
        if drive == LOW:
            return 0
    return 1


def contended(drives):
    """True when one party drives high while another drives low."""
    drives = list(drives)
    return LOW in drives and HIGH in drives


class LineSnapshot:
    """Observed line levels at the end of one tick."""

    __slots__ = ('scl', 'sda')

    def __init__(self, scl=1, sda=1):
        self.scl = scl
        self.sda = sda

    def __eq__(self, other):
        return isinstance(other, LineSnapshot) and (self.scl, self.sda) == (other.scl, other.sda)

    def __repr__(self):
        return f"LineSnapshot(scl={self.scl}, sda={self.sda})"


class BusLines:
    """SCL and SDA shared by a master and any number of targets.

    Each party registers under a name and sets its drive for the tick.
    Drives only become visible through ``snapshot()``, which the scheduler
    takes once per tick before any component runs.
    """

    def __init__(self):
        self._scl = {}
        self._sda = {}
        self.contention_count = 0

    def attach(self, owner):
        self._scl[owner] = RELEASED
        self._sda[owner] = RELEASED

    def drive_scl(self, owner, drive):
        self._scl[owner] = drive

    def drive_sda(self, owner, drive):
        self._sda[owner] = drive

    def scl_drive(self, owner):
        return self._scl[owner]

    def sda_drive(self, owner):
        return self._sda[owner]

    @property
    def scl(self):
        return resolve(self._scl.values())

    @property
    def sda(self):
        return resolve(self._sda.values())

    def snapshot(self):
        if contended(self._sda.values()) or contended(self._scl.values()):
            self.contention_count += 1
        return LineSnapshot(self.scl, self.sda)
