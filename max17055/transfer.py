"""Request/response contract between a device driver and a bus master."""

from enum import Enum


class TransferKind(str, Enum):
    """Shape of one bus transaction."""
    WRITE = 'write'            # address(W), register, data bytes
    WRITE_READ = 'write-read'  # address(W), register, repeated start, address(R), data bytes
    READ = 'read'              # address(R), data bytes


class TransferOutcome(str, Enum):
    COMPLETED = 'completed'
    NACKED = 'nacked'
    TIMED_OUT = 'timed out'


class BusError(str, Enum):
    """Errors a bus master reports as a one-tick pulse."""
    NACK = 'target did not acknowledge'
    TIMEOUT = 'transaction deadline expired'


class BusEventKind(str, Enum):
    START = 'start'
    REPEATED_START = 'repeated start'
    ADDRESS = 'address'
    REGISTER = 'register'
    WRITE = 'write'
    READ = 'read'
    STOP = 'stop'
    ERROR = 'error'


def wire_address(address, read):
    """7-bit device address shifted up with the R/W flag in bit 0."""
    return ((address << 1) & 0xFE) | (1 if read else 0)


class BusEvent:
    """Something the master put on, or took off, the wire."""

    __slots__ = ('kind', 'byte', 'acked', 'error')

    def __init__(self, kind, byte=None, acked=None, error=None):
        self.kind = kind
        self.byte = byte
        self.acked = acked
        self.error = error

    def __eq__(self, other):
        if not isinstance(other, BusEvent):
            return NotImplemented
        return (self.kind, self.byte, self.acked, self.error) == \
            (other.kind, other.byte, other.acked, other.error)

    def __repr__(self):
        if self.byte is None:
            return f"BusEvent({self.kind.value})"
        ack = 'ACK' if self.acked else 'NACK'
        return f"BusEvent({self.kind.value} 0x{self.byte:02X} {ack})"


class TransferRequest:
    """One transaction for the bus master.

    ``write_count`` and ``read_count`` hold the number of bytes minus one
    (0..255), the way the counts are carried in the request registers; use
    ``write()``, ``write_read()`` or ``read()`` to build requests from real
    byte counts.
    """

    def __init__(self, kind, device_address, register_address=0, register_width=8,
                 write_count=0, write_bytes=b'', read_count=0):
        """Initialize a transfer request.

        Args:
            kind (TransferKind): Transaction shape
            device_address (int): 7-bit target address
            register_address (int): Register address (8 or 16 bits wide)
            register_width (int): Register address width in bits (8 or 16)
            write_count (int): Data bytes to write minus one (WRITE only)
            write_bytes (bytes): Data bytes, sent in order (WRITE only)
            read_count (int): Data bytes to read minus one (WRITE_READ and READ only)

        Raises:
            ValueError: If any field is out of range or inconsistent with ``kind``
        """
        kind = TransferKind(kind)
        if not 0 <= device_address <= 0x7F:
            raise ValueError(f"Device address must be 7-bit, got 0x{device_address:X}")
        if register_width not in (8, 16):
            raise ValueError(f"Register address width must be 8 or 16, got {register_width}")
        if not 0 <= register_address < (1 << register_width):
            raise ValueError(f"Register address 0x{register_address:X} does not fit in {register_width} bits")
        if not 0 <= write_count <= 0xFF:
            raise ValueError(f"Write count must be 0..255, got {write_count}")
        if not 0 <= read_count <= 0xFF:
            raise ValueError(f"Read count must be 0..255, got {read_count}")

        write_bytes = bytes(write_bytes)
        if kind is TransferKind.WRITE and len(write_bytes) != write_count + 1:
            raise ValueError(f"Write count {write_count} needs {write_count + 1} bytes, got {len(write_bytes)}")
        if kind is not TransferKind.WRITE and write_bytes:
            raise ValueError(f"{kind.value} transfers carry no write data")

        self.kind = kind
        self.device_address = device_address
        self.register_address = register_address
        self.register_width = register_width
        self.write_count = write_count
        self.write_bytes = write_bytes
        self.read_count = read_count

    @classmethod
    def write(cls, device_address, register_address, data, register_width=8):
        data = bytes(data)
        if not 1 <= len(data) <= 256:
            raise ValueError(f"Write length must be 1..256 bytes, got {len(data)}")
        return cls(TransferKind.WRITE, device_address, register_address, register_width,
                   write_count=len(data) - 1, write_bytes=data)

    @classmethod
    def write_read(cls, device_address, register_address, length, register_width=8):
        if not 1 <= length <= 256:
            raise ValueError(f"Read length must be 1..256 bytes, got {length}")
        return cls(TransferKind.WRITE_READ, device_address, register_address, register_width,
                   read_count=length - 1)

    @classmethod
    def read(cls, device_address, length):
        if not 1 <= length <= 256:
            raise ValueError(f"Read length must be 1..256 bytes, got {length}")
        return cls(TransferKind.READ, device_address, read_count=length - 1)

    @property
    def is_read(self):
        return self.kind is not TransferKind.WRITE

    @property
    def write_length(self):
        return self.write_count + 1 if self.kind is TransferKind.WRITE else 0

    @property
    def read_length(self):
        return self.read_count + 1 if self.is_read else 0

    def register_bytes(self):
        """Register address bytes as sent on the wire, MSB first."""
        if self.kind is TransferKind.READ:
            return b''
        return self.register_address.to_bytes(self.register_width // 8, 'big')

    def __repr__(self):
        text = f"{self.kind.value} @0x{self.device_address:02X}"
        if self.kind is not TransferKind.READ:
            text += f" reg 0x{self.register_address:0{self.register_width // 4}X}"
        if self.kind is TransferKind.WRITE:
            text += f" data {self.write_bytes.hex()}"
        else:
            text += f" len {self.read_length}"
        return f"TransferRequest({text})"


class TransferResult:
    """What came of exactly one accepted request."""

    def __init__(self, request, outcome, read_bytes=b'', error=None):
        self.request = request
        self.outcome = TransferOutcome(outcome)
        self.read_bytes = bytes(read_bytes)
        self.error = error

    @property
    def ok(self):
        return self.outcome is TransferOutcome.COMPLETED

    def word(self):
        """First two read bytes as a little-endian 16-bit value."""
        if len(self.read_bytes) < 2:
            raise ValueError(f"Need 2 read bytes for a word, got {len(self.read_bytes)}")
        return int.from_bytes(self.read_bytes[:2], 'little')

    def __repr__(self):
        return f"TransferResult({self.outcome.value}, {self.read_bytes.hex() or '-'})"
