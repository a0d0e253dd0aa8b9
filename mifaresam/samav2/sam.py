"""The SAM AV2 device: host authentication, MIFARE Plus authentication and key dumps."""

from __future__ import annotations

import logging
import secrets
from typing import Callable, Iterator, Optional, Protocol, Tuple

from Crypto.Cipher import AES, DES
from Crypto.Hash import CMAC

from ..errors import ResponseError, check_more_frames, check_status
from .crypto import CryptoMixin
from .keymanagement import KeyManagementMixin
from .pki import PKIMixin
from .readwrite import ReadWriteMixin

logger = logging.getLogger(__name__)

_CLA = 0x80
_INS_AUTH_HOST = 0xA4
_INS_LOCK_UNLOCK = 0x10
_INS_AUTH_MFP = 0xA3

_AES_BLOCK = 16
_RND_LENGTH = 12
_MAX_HOST_MODE = 3
_HOST_MODE_MAC = 1
_HOST_MODE_FULL = 2
_SWITCH_TO_AV2 = 0x03


class _CardLike(Protocol):
    def apdu(self, apdu: bytes) -> bytes: ...

    def atr(self) -> bytes: ...

    def disconnect(self) -> None: ...


class Reader(Protocol):
    """A reader that can connect to the card or SAM inserted in it."""

    def connect_card(self) -> _CardLike: ...

    def connect_sam_card(self) -> _CardLike: ...


def _xor(left: bytes, right: bytes) -> bytes:
    return bytes(a ^ b for a, b in zip(left, right))


def _rotate(data: bytes, count: int) -> bytes:
    return data[count:] + data[:count]


def _fit(data: bytes, length: int) -> bytes:
    return data[:length].ljust(length, b"\x00")


def _aes_cbc_encrypt(key: bytes, data: bytes) -> bytes:
    return AES.new(bytes(key), AES.MODE_CBC, iv=bytes(_AES_BLOCK)).encrypt(bytes(data))


def _aes_cbc_decrypt(key: bytes, data: bytes) -> bytes:
    return AES.new(bytes(key), AES.MODE_CBC, iv=bytes(_AES_BLOCK)).decrypt(bytes(data))


class _Tdea:
    """DES or TDEA (EDE) in CBC mode with a zero IV, for any key pattern."""

    block_size = 8

    def __init__(self, key: bytes) -> None:
        key = bytes(key)
        if len(key) == 8:
            parts = (key, key, key)
        elif len(key) == 16:
            parts = (key[:8], key[8:], key[:8])
        elif len(key) == 24:
            parts = (key[:8], key[8:16], key[16:])
        else:
            raise ValueError(f"invalid DES key length: {len(key)}")
        self._stages = [DES.new(part, DES.MODE_ECB) for part in parts]

    def _blocks(self, data: bytes) -> Iterator[bytes]:
        if len(data) % self.block_size:
            raise ResponseError(f"data is not a multiple of the block size: {len(data)}", data)
        for start in range(0, len(data), self.block_size):
            yield data[start:start + self.block_size]

    def _encrypt_block(self, block: bytes) -> bytes:
        first, second, third = self._stages
        return third.encrypt(second.decrypt(first.encrypt(block)))

    def _decrypt_block(self, block: bytes) -> bytes:
        first, second, third = self._stages
        return first.decrypt(second.encrypt(third.decrypt(block)))

    def cbc_encrypt(self, data: bytes) -> bytes:
        previous = bytes(self.block_size)
        out = []
        for block in self._blocks(bytes(data)):
            previous = self._encrypt_block(_xor(block, previous))
            out.append(previous)
        return b"".join(out)

    def cbc_decrypt(self, data: bytes) -> bytes:
        previous = bytes(self.block_size)
        out = []
        for block in self._blocks(bytes(data)):
            out.append(_xor(self._decrypt_block(block), previous))
            previous = block
        return b"".join(out)


def apdu_get_version() -> bytes:
    """Build SAM_GetVersion."""
    return bytes((_CLA, 0x60, 0x00, 0x00, 0x00))


def apdu_lock_unlock(key_no: int, key_ver: int, unlock_key_no: int, unlock_key_ver: int, p1: int) -> bytes:
    """Build the first frame of SAM_LockUnlock.

    Modes other than ``03`` and ``40`` also carry the unlock key number and version.
    """
    body = bytes((key_no & 0xFF, key_ver & 0xFF)) + bytes(3)
    if p1 not in (0x03, 0x40):
        body += bytes((unlock_key_no & 0xFF, unlock_key_ver & 0xFF))
    return bytes((_CLA, _INS_LOCK_UNLOCK, p1 & 0xFF, 0x00, len(body))) + body + b"\x00"


def _second_frame(ins: int, mac: bytes, rnd: bytes) -> bytes:
    return bytes((_CLA, ins, 0x00, 0x00, 0x14)) + bytes(mac) + bytes(rnd) + b"\x00"


def apdu_lock_unlock_part2(cmac: bytes, rnd: bytes) -> bytes:
    """Build the second frame of SAM_LockUnlock: truncated CMAC and host random."""
    return _second_frame(_INS_LOCK_UNLOCK, cmac, rnd)


def apdu_non_x_auth_mfp_first(
    first: bool, sl: int, key_no: int, key_ver: int, data: bytes, div_data: Optional[bytes]
) -> bytes:
    """Build the first part of SAM_AuthenticateMFP in non-X mode."""
    p1 = 0x01 if div_data is not None else 0x00
    if not first:
        p1 += 0x02
    if sl == 2:
        p1 += 0x04
    elif sl == 3:
        p1 += 0x0C
    elif sl != 0:
        p1 += 0x80
    div = bytes(div_data) if div_data is not None else b""
    header = bytes((_CLA, _INS_AUTH_MFP, p1 & 0xFF, 0x00, (18 + len(div)) & 0xFF))
    return header + bytes((key_no & 0xFF, key_ver & 0xFF)) + bytes(data) + div + b"\x00"


def apdu_non_x_auth_mfp_second(data: bytes) -> bytes:
    """Build the second part of SAM_AuthenticateMFP in non-X mode."""
    data = bytes(data)
    return bytes((_CLA, _INS_AUTH_MFP, 0x00, 0x00, len(data) & 0xFF)) + data + b"\x00"


def apdu_dump_session_key() -> bytes:
    """Build SAM_DumpSessionKey (key of the current DESFire or MIFARE Plus session)."""
    return bytes((_CLA, 0xD5, 0x00, 0x00, 0x00))


def apdu_dump_secret_key(key_no: int, key_ver: int, div_input: Optional[bytes]) -> bytes:
    """Build SAM_DumpSecretKey, diversified when ``div_input`` is non-empty."""
    div = bytes(div_input or b"")
    p1 = 0x02 if div else 0x00
    header = bytes((_CLA, 0xD6, p1, 0x00, (2 + len(div)) & 0xFF))
    return header + bytes((key_no & 0xFF, key_ver & 0xFF)) + div + b"\x00"


def apdu_kill_auth_picc() -> bytes:
    """Build SAM_KillAuthentication for the PICC authentication."""
    return bytes((_CLA, 0xCA, 0x01, 0x00))


class SamAv2(KeyManagementMixin, PKIMixin, CryptoMixin, ReadWriteMixin):
    """A MIFARE SAM AV2 reached through a connected card.

    ``random_bytes`` supplies the host random numbers of the authentications.
    """

    def __init__(
        self,
        card: _CardLike,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self.card = card
        self._random = random_bytes
        self.uuid: Optional[bytes] = None
        self.kex = b""
        self.kx = b""
        self.ke = b""
        self.km = b""
        self.host_mode = 0
        self.cmd_ctr = 0

    def __enter__(self) -> "SamAv2":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    def apdu(self, apdu: bytes) -> bytes:
        """Exchange one APDU with the SAM."""
        return bytes(self.card.apdu(bytes(apdu)))

    def atr(self) -> bytes:
        """Return the SAM's answer to reset."""
        return bytes(self.card.atr())

    def disconnect(self) -> None:
        """Disconnect from the SAM."""
        self.card.disconnect()

    def get_version(self) -> bytes:
        """Return the raw SAM_GetVersion response."""
        return self.apdu(apdu_get_version())

    def uid(self) -> bytes:
        """Return the seven-byte SAM UID from the version data."""
        if self.uuid is not None:
            return self.uuid
        version = self.get_version()
        if len(version) > 20:
            return version[14:21]
        raise ResponseError(f"bad formed response, [{version.hex(' ').upper()}]", version)

    def auth_host_av1(self, key: bytes, key_no: int, key_ver: int, auth_mode: int) -> bytes:
        """Authenticate the host in AV1 mode with a DES or TDEA key (8, 16 or 24 bytes)."""
        cipher = _Tdea(key)
        first = bytes((_CLA, _INS_AUTH_HOST, auth_mode & 0xFF, 0x00, 0x02, key_no & 0xFF, key_ver & 0xFF, 0x00))
        rnd_b = cipher.cbc_decrypt(check_more_frames(self.apdu(first)))
        rnd_a = bytes(self._random(len(rnd_b)))
        answer = cipher.cbc_encrypt(rnd_a + _rotate(rnd_b, 1))
        second = bytes((_CLA, _INS_AUTH_HOST, 0x00, 0x00, len(answer) & 0xFF)) + answer + b"\x00"
        response = self.apdu(second)
        logger.debug("auth AV1 response: [%s]", response.hex(" ").upper())
        check_status(response)
        self.kex = rnd_a[:4] + rnd_b[:4]
        self.cmd_ctr = 1
        return response

    def _av2_handshake(self, ins: int, key: bytes, first: bytes, mode: int) -> Tuple[bytes, bytes, bytes]:
        """Run the three-pass AES authentication; returns (rndA, rndB, final response)."""
        rnd2 = _fit(check_more_frames(self.apdu(first)), _RND_LENGTH)
        mac = CMAC.new(bytes(key), msg=rnd2 + bytes((mode & 0xFF,)) + bytes(3), ciphermod=AES).digest()[1::2]
        rnd1 = bytes(self._random(_RND_LENGTH))
        response = self.apdu(_second_frame(ins, mac, rnd1))
        check_more_frames(response)
        rnd_bc = _fit(response[8:-2], _AES_BLOCK)

        div_key = rnd1[7:12] + rnd2[7:12] + _xor(rnd1[:5], rnd2[:5]) + b"\x91"
        self.kex = _aes_cbc_encrypt(key, div_key)

        rnd_b = _aes_cbc_decrypt(self.kex, rnd_bc)
        rnd_a = bytes(self._random(len(rnd_b)))
        answer = _aes_cbc_encrypt(self.kex, rnd_a + _rotate(rnd_b, 2))
        final = self.apdu(bytes((_CLA, ins, 0x00, 0x00, 0x20)) + answer + b"\x00")
        check_status(final)
        return rnd_a, rnd_b, final

    def lock_unlock(
        self, key: bytes, key_no: int, key_ver: int, unlock_key_no: int, unlock_key_ver: int, p1: int
    ) -> bytes:
        """Run SAM_LockUnlock in mode ``p1`` with an AES key."""
        AES.new(bytes(key), AES.MODE_ECB)  # reject invalid keys before talking to the SAM
        first = apdu_lock_unlock(key_no, key_ver, unlock_key_no, unlock_key_ver, p1)
        _, _, response = self._av2_handshake(_INS_LOCK_UNLOCK, key, first, _SWITCH_TO_AV2)
        return response

    def switch_to_av2(self, key: bytes, key_no: int, key_ver: int) -> bytes:
        """Switch an AV1 SAM to AV2 mode."""
        return self.lock_unlock(key, key_no, key_ver, 0, 0, _SWITCH_TO_AV2)

    def auth_host_av2(self, key: bytes, key_no: int, key_ver: int, host_mode: int) -> bytes:
        """Authenticate the host in AV2 mode (host mode 0 plain, 1 MAC, 2 full).

        Derives the session MAC key for modes above 0 and the session
        encryption key for modes above 1, and resets the command counter.
        """
        key = bytes(key)
        AES.new(key, AES.MODE_ECB)
        if host_mode > _MAX_HOST_MODE:
            raise ValueError(f"hostMode incorrect: {host_mode}")
        self.host_mode = host_mode
        self.kx = key
        first = bytes(
            (_CLA, _INS_AUTH_HOST, 0x00, 0x00, 0x03, key_no & 0xFF, key_ver & 0xFF, host_mode & 0xFF, 0x00)
        )
        rnd_a, rnd_b, response = self._av2_handshake(_INS_AUTH_HOST, key, first, host_mode)

        if host_mode >= _HOST_MODE_MAC:
            sv2 = rnd_a[7:12] + rnd_b[7:12] + _xor(rnd_a[0:5], rnd_b[0:5]) + b"\x82"
            self.km = _aes_cbc_encrypt(key, sv2)
        if host_mode >= _HOST_MODE_FULL:
            sv1 = rnd_a[11:16] + rnd_b[11:16] + _xor(rnd_a[4:9], rnd_b[4:9]) + b"\x81"
            self.ke = _aes_cbc_encrypt(key, sv1)

        self.cmd_ctr = 0
        return response

    def non_x_auth_mfp_first(
        self, first: bool, sl: int, key_no: int, key_ver: int, data: bytes, div_data: Optional[bytes]
    ) -> bytes:
        """Send the first part of a MIFARE Plus authentication; returns the raw response."""
        return self.apdu(apdu_non_x_auth_mfp_first(first, sl, key_no, key_ver, data, div_data))

    def non_x_auth_mfp_second(self, data: bytes) -> bytes:
        """Send the second part of a MIFARE Plus authentication; returns the raw response."""
        return self.apdu(apdu_non_x_auth_mfp_second(data))

    def dump_session_key(self) -> bytes:
        """Dump the session key of the current PICC authentication (full response)."""
        response = self.apdu(apdu_dump_session_key())
        check_status(response)
        return response

    def dump_secret_key(self, key_no: int, key_ver: int, div_input: Optional[bytes]) -> bytes:
        """Dump a PICC or OfflineCrypto key (full response)."""
        response = self.apdu(apdu_dump_secret_key(key_no, key_ver, div_input))
        check_status(response)
        return response


def connect_sam(reader: Reader) -> SamAv2:
    """Connect to the SAM in ``reader``."""
    return SamAv2(reader.connect_sam_card())