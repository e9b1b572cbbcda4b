"""
Modbus CRC-16, as used to terminate RTU frames.

The checksum table is the one pymodbus' RTU framer uses. pymodbus returns
the checksum byte-swapped (ready to be appended big-endian); the
functions here work with the plain CRC value instead.
"""

from __future__ import annotations

from pymodbus.framer import FramerRTU

__all__ = ["crc16", "crc_bytes", "check_crc"]


def crc16(data: bytes) -> int:
    """Return the Modbus CRC-16 of @data."""
    swapped = FramerRTU.compute_CRC(bytes(data))
    return ((swapped << 8) & 0xFF00) | ((swapped >> 8) & 0x00FF)


def crc_bytes(data: bytes) -> bytes:
    """Return the two-byte RTU trailer for @data (little-endian CRC)."""
    return crc16(data).to_bytes(2, "little")


def check_crc(frame: bytes) -> bool:
    """Check that @frame ends with the correct CRC of its other bytes."""
    if len(frame) < 3:
        return False
    return crc_bytes(frame[:-2]) == bytes(frame[-2:])
