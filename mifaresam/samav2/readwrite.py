"""SAM_CombinedReadMFP and SAM_CombinedWriteMFP commands for MIFARE Plus."""

from __future__ import annotations

from enum import IntEnum

from ..errors import check_status
from ..tools.protection import CommandHeader

_CLA = 0x80
_INS_COMBINED_READ_MFP = 0x33
_INS_COMBINED_WRITE_MFP = 0x34
_MORE_FRAMES = 0xAF


class MFPDataType(IntEnum):
    """What the data of a combined MIFARE Plus command contains (P1)."""

    COMMAND = 0x00
    RESPONSE = 0x01
    COMMAND_RESPONSE = 0x02


def _frame(ins: int, p1: int, p2: int, data: bytes) -> bytes:
    data = bytes(data)
    header = CommandHeader(_CLA, ins, p1 & 0xFF, p2, le=True)
    return header.prefix() + bytes((len(data) & 0xFF,)) + data + b"\x00"


def apdu_combined_read_mfp(data_type: MFPDataType, is_last_frame: bool, data: bytes) -> bytes:
    """Build SAM_CombinedReadMFP; non-final frames carry P2 = AF."""
    p2 = 0x00 if is_last_frame else _MORE_FRAMES
    return _frame(_INS_COMBINED_READ_MFP, int(data_type), p2, data)


def apdu_combined_write_mfp(data_type: MFPDataType, data: bytes | None) -> bytes:
    """Build SAM_CombinedWriteMFP; missing data is rejected."""
    if data is None:
        raise ValueError("bad frame: no data")
    return _frame(_INS_COMBINED_WRITE_MFP, int(data_type), 0x00, data)


class ReadWriteMixin:
    """MIFARE Plus combined read/write for a SAM object providing ``apdu(bytes) -> bytes``."""

    def _send_checked(self, apdu: bytes) -> bytes:
        response = bytes(self.apdu(apdu))  # type: ignore[attr-defined]
        check_status(response)
        return response

    def combined_read_mfp(self, data_type: MFPDataType, is_last_frame: bool, data: bytes) -> bytes:
        """Prepare or verify a MIFARE Plus read; returns the full response."""
        return self._send_checked(apdu_combined_read_mfp(data_type, is_last_frame, data))

    def combined_write_mfp(self, data_type: MFPDataType, data: bytes | None) -> bytes:
        """Prepare or verify a MIFARE Plus write; returns the full response."""
        return self._send_checked(apdu_combined_write_mfp(data_type, data))