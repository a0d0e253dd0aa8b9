"""Secure-messaging helpers for SAM host protection and offline key change."""

from __future__ import annotations

from dataclasses import dataclass

from Crypto.Cipher import AES
from Crypto.Hash import CMAC


@dataclass(frozen=True)
class CommandHeader:
    """ISO 7816 command header: class, instruction, parameters and Le flag."""

    cla: int
    ins: int
    p1: int = 0
    p2: int = 0
    le: bool = False

    def prefix(self) -> bytes:
        """Return the four header bytes CLA INS P1 P2."""
        return bytes(v & 0xFF for v in (self.cla, self.ins, self.p1, self.p2))


def _check_key(key: bytes) -> None:
    if len(key) % 8 != 0:
        raise ValueError("key len is wrong")


def _pad(data: bytes, block: int) -> bytes:
    remainder = len(data) % block
    if remainder:
        return data + b"\x80" + bytes(block - remainder - 1)
    return data


def _cbc_encrypt(key: bytes, iv: bytes, data: bytes) -> bytes:
    return AES.new(bytes(key), AES.MODE_CBC, iv=bytes(iv)).encrypt(bytes(data))


def _cmac(key: bytes, data: bytes, mac_len: int) -> bytes:
    return CMAC.new(bytes(key), msg=bytes(data), ciphermod=AES, mac_len=mac_len).digest()


def encrypt_full_protection(cmd_ctr: int, data: bytes, ke: bytes) -> bytes:
    """Encrypt command data for full protection mode under session key ``ke``."""
    _check_key(ke)
    counter = (cmd_ctr & 0xFFFFFFFF).to_bytes(4, "big")
    iv = _cbc_encrypt(ke, bytes(16), counter * 3 + b"\x01" * 4)
    return _cbc_encrypt(ke, iv, _pad(bytes(data), len(ke)))


def mac_full_protection(header: CommandHeader, cmd_ctr: int, data: bytes | None, key: bytes) -> bytes:
    """Compute the truncated CMAC for a command in MAC or full protection mode."""
    _check_key(key)
    prefix = header.prefix()
    message = (
        prefix[:2]
        + (cmd_ctr & 0xFFFFFFFF).to_bytes(4, "big")
        + prefix[2:]
    )
    if data is None:
        message += b"\x08"
    else:
        message += bytes(((0x08 + len(data)) & 0xFF,)) + bytes(data)
    return _cmac(key, message, len(key))[1::2]


def _offline_session_key(kc: bytes, change_ctr: int, constant: int) -> bytes:
    _check_key(kc)
    seed = (change_ctr & 0xFFFF).to_bytes(2, "big") + bytes((constant,)) * 14
    return _cbc_encrypt(kc, bytes(len(kc)), seed)


def offline_change_key_encrypt(data: bytes, kc: bytes, sam_uid: bytes | None, change_ctr: int) -> bytes:
    """Encrypt a key entry for an offline change, appending the SAM UID if given."""
    kce = _offline_session_key(kc, change_ctr, 0x71)
    payload = bytes(data) + (bytes(sam_uid) if sam_uid is not None else b"")
    return _cbc_encrypt(kce, bytes(len(kc)), _pad(payload, len(kc)))


def offline_change_key_mac(data: bytes, kc: bytes, change_ctr: int) -> bytes:
    """Compute the truncated CMAC of an offline change-key command."""
    kcm = _offline_session_key(kc, change_ctr, 0x72)
    return _cmac(kcm, data, len(kc))[1::2]