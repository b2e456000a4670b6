# dlc/wire.py
"""
Little-endian field readers/writers for the binary transport formats.
"""

import struct

from dlc.errors import DecodeError

UINT48_MAX = 2**48 - 1


def u8(value: int) -> bytes:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{value} does not fit in 8 bits")
    return struct.pack("<B", value)


def u16(value: int) -> bytes:
    if not 0 <= value <= 0xFFFF:
        raise ValueError(f"{value} does not fit in 16 bits")
    return struct.pack("<H", value)


def u48(value: int) -> bytes:
    if not 0 <= value <= UINT48_MAX:
        raise ValueError(f"{value} does not fit in 48 bits")
    return value.to_bytes(6, "little")


def var8(data: bytes) -> bytes:
    """u8 length prefix followed by the bytes."""
    if len(data) > 0xFF:
        raise ValueError(f"field of {len(data)} bytes exceeds u8 length prefix")
    return u8(len(data)) + data


class Reader:
    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.offset = 0

    def take(self, n: int) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise DecodeError(
                f"truncated: need {n} bytes at offset {self.offset}, have {len(self.data) - self.offset}"
            )
        chunk = self.data[self.offset:end]
        self.offset = end
        return chunk

    def u8(self) -> int:
        return self.take(1)[0]

    def u16(self) -> int:
        return struct.unpack("<H", self.take(2))[0]

    def u48(self) -> int:
        return int.from_bytes(self.take(6), "little")

    def var8(self) -> bytes:
        return self.take(self.u8())

    def rest(self) -> bytes:
        chunk = self.data[self.offset:]
        self.offset = len(self.data)
        return chunk

    def done(self) -> bool:
        return self.offset == len(self.data)
