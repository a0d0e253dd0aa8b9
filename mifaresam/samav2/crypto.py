"""SAM data ciphering commands: (offline) encipher, decipher, MAC and IV loading."""

from __future__ import annotations

from enum import IntEnum
from typing import Callable, List

from ..errors import SamError, check_status
from ..tools.protection import CommandHeader

_CLA = 0x80
_INS_ENCIPHER_DATA = 0xED
_INS_DECIPHER_DATA = 0xDD
_INS_ENCIPHER_OFFLINE_DATA = 0x0E
_INS_DECIPHER_OFFLINE_DATA = 0x0D
_INS_GENERATE_MAC = 0x7C
_INS_LOAD_INIT_VECTOR = 0x71

_MORE_FRAMES = 0xAF
_AES_FRAGMENT = 0xF0
_DES_FRAGMENT = 0xF8


class CryptoAlgorithm(IntEnum):
    """Block cipher family used by the ciphering commands."""

    AES = 0
    DES = 1


def _p1(last: bool) -> int:
    return 0x00 if last else _MORE_FRAMES


def _lc(length: int) -> bytes:
    return bytes((length & 0xFF,))


def apdu_encipher_data(last: bool, offset: int, data: bytes) -> bytes:
    """Build one frame of SAM_Encipher_Data; non-final frames carry P1 = AF."""
    data = bytes(data)
    header = CommandHeader(_CLA, _INS_ENCIPHER_DATA, _p1(last), offset & 0xFF)
    return header.prefix() + _lc(len(data)) + data + b"\x00"


def apdu_decipher_data(last: bool, mifare: int, cipher: bytes) -> bytes:
    """Build one frame of SAM_Decipher_Data.

    The length field counts three extra bytes on the final frame or when
    ``mifare`` is not positive.
    """
    cipher = bytes(cipher)
    p1 = _p1(last)
    length = len(cipher)
    if p1 == 0x00 or mifare <= 0:
        length += 3
    header = CommandHeader(_CLA, _INS_DECIPHER_DATA, p1, 0x00)
    return header.prefix() + _lc(length) + cipher + b"\x00"


def apdu_encipher_offline_data(last: bool, data: bytes) -> bytes:
    """Build one frame of SAM_EncipherOffline_Data."""
    data = bytes(data)
    header = CommandHeader(_CLA, _INS_ENCIPHER_OFFLINE_DATA, _p1(last), 0x00)
    return header.prefix() + _lc(len(data)) + data + b"\x00"


def apdu_generate_mac(last: bool, data: bytes) -> bytes:
    """Build one frame of SAM_GenerateMAC; only the final frame carries Le."""
    data = bytes(data)
    header = CommandHeader(_CLA, _INS_GENERATE_MAC, _p1(last), 0x10)
    apdu = header.prefix() + _lc(len(data)) + data
    if last:
        apdu += b"\x00"
    return apdu


def apdu_decipher_offline_data(last: bool, data: bytes) -> bytes:
    """Build one frame of SAM_DecipherOffline_Data."""
    data = bytes(data)
    header = CommandHeader(_CLA, _INS_DECIPHER_OFFLINE_DATA, _p1(last), 0x00)
    return header.prefix() + _lc(len(data)) + data + b"\x00"


def apdu_load_init_vector(alg: CryptoAlgorithm, data: bytes) -> bytes:
    """Build SAM_LoadInitVector: a 16-byte IV for AES, 8 bytes otherwise.

    Longer input is truncated; shorter input is extended by as many zero
    bytes as the remainder of its length modulo the IV size.
    """
    data = bytes(data)
    size = 16 if alg == CryptoAlgorithm.AES else 8
    header = CommandHeader(_CLA, _INS_LOAD_INIT_VECTOR, 0x00, 0x00)
    if len(data) < size:
        body = data + bytes(len(data) % size)
    else:
        body = data[:size]
    return header.prefix() + bytes((size,)) + body


def _is_supported(alg: int) -> bool:
    return alg in (CryptoAlgorithm.AES, CryptoAlgorithm.DES)


def _validate(alg: CryptoAlgorithm, data: bytes, aes_block: int) -> None:
    if alg == CryptoAlgorithm.DES and len(data) % 8:
        raise ValueError(f"data len is invalid, len = {len(data)}")
    if alg == CryptoAlgorithm.AES and len(data) % aes_block:
        raise ValueError(f"data len is invalid, len = {len(data)}")
    if not _is_supported(alg):
        raise ValueError("algorithm is not valid")


def _fragments(alg: CryptoAlgorithm, data: bytes) -> List[bytes]:
    size = _AES_FRAGMENT if alg == CryptoAlgorithm.AES else _DES_FRAGMENT
    chunks = []
    while len(data) > size:
        chunks.append(data[:size])
        data = data[size:]
    chunks.append(data)
    return chunks


class CryptoMixin:
    """Ciphering commands for a SAM object that provides ``apdu(bytes) -> bytes``."""

    def _chained(
        self, build: Callable[[bool, bytes], bytes], alg: CryptoAlgorithm, data: bytes
    ) -> bytes:
        chunks = _fragments(alg, bytes(data))
        result = b""
        for index, chunk in enumerate(chunks):
            last = index == len(chunks) - 1
            response = bytes(self.apdu(build(last, chunk)))  # type: ignore[attr-defined]
            result += check_status(response)
        return result

    def encipher_data(self, alg: CryptoAlgorithm, data: bytes) -> bytes:
        """Encrypt data with the key of the current PICC authentication."""
        data = bytes(data)
        _validate(alg, data, aes_block=8)
        return self._chained(lambda last, chunk: apdu_encipher_data(last, 0x00, chunk), alg, data)

    def encipher_offline_data(self, alg: CryptoAlgorithm, data: bytes) -> bytes:
        """Encrypt data with the active OfflineCrypto key."""
        data = bytes(data)
        _validate(alg, data, aes_block=16)
        return self._chained(apdu_encipher_offline_data, alg, data)

    def generate_mac(self, alg: CryptoAlgorithm, data: bytes) -> bytes:
        """Compute a MAC over data with the current session or offline key."""
        return self._chained(apdu_generate_mac, alg, bytes(data))

    def decipher_data(self, alg: CryptoAlgorithm, data: bytes) -> bytes:
        """SAM_Decipher_Data is not offered by this device interface."""
        raise SamError("SAM_Decipher_Data is not supported")

    def decipher_offline_data(self, alg: CryptoAlgorithm, data: bytes) -> bytes:
        """Decrypt data with the active OfflineCrypto key."""
        data = bytes(data)
        _validate(alg, data, aes_block=16)
        if len(data) < 8:
            raise ValueError("data len is invalid")
        return self._chained(apdu_decipher_offline_data, alg, data)

    def load_init_vector(self, alg: CryptoAlgorithm, data: bytes) -> bytes:
        """Load the IV used by subsequent ciphering commands; returns the raw response."""
        if not _is_supported(alg):
            raise ValueError("algorithm not supported")
        return bytes(self.apdu(apdu_load_init_vector(alg, data)))  # type: ignore[attr-defined]