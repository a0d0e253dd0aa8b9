"""CRC-16 as used by ISO/IEC 14443 type A (CRC_A)."""

from __future__ import annotations

_INITIAL = 0x6363
_POLY = 0x8408


def _update(crc: int, byte: int) -> int:
    value = (crc ^ byte) & 0xFF
    tcrc = 0
    for _ in range(8):
        if (tcrc ^ value) & 1:
            tcrc = ((tcrc >> 1) ^ _POLY) & 0xFFFF
        else:
            tcrc >>= 1
        value >>= 1
    return ((crc >> 8) ^ tcrc) & 0xFFFF


def crc16(data: bytes) -> bytes:
    """Return the two CRC bytes of ``data``, least significant byte first."""
    crc = _INITIAL
    for byte in data:
        crc = _update(crc, byte)
    return crc.to_bytes(2, "little")