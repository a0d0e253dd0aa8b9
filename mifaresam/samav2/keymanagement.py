"""SAM_ChangeKeyEntry, SAM_GetKeyEntry and SAM_ActivateOfflineKey commands."""

from __future__ import annotations

import logging

from Crypto.Cipher import DES

from ..errors import check_status
from ..tools.crc16 import crc16
from ..tools.protection import (
    CommandHeader,
    encrypt_full_protection,
    mac_full_protection,
    offline_change_key_encrypt,
    offline_change_key_mac,
)
from .entrykey import EntryKey

logger = logging.getLogger(__name__)

_CLA = 0x80
_INS_CHANGE_KEY_ENTRY = 0xC1
_INS_ACTIVATE_OFFLINE_KEY = 0x01
_INS_GET_KEY_ENTRY = 0x64

_HOST_MODE_PLAIN = 0
_HOST_MODE_MAC = 1
_HOST_MODE_FULL = 2


def _change_key_header(key_no: int, pro_mas: int) -> CommandHeader:
    return CommandHeader(_CLA, _INS_CHANGE_KEY_ENTRY, key_no & 0xFF, pro_mas & 0xFF)


def _lc(length: int) -> bytes:
    return bytes((length & 0xFF,))


def apdu_change_key_entry_av1(key_no: int, pro_mas: int, entry: EntryKey, kex: bytes) -> bytes:
    """Build an AV1-mode SAM_ChangeKeyEntry: entry plus CRC16, DES-CBC encrypted under ``kex``."""
    header = _change_key_header(key_no, pro_mas)
    body = entry.to_bytes()[:-1]  # AV1 entries carry no ExtSET byte
    payload = body + crc16(body) + bytes(2)
    logger.debug("change key entry AV1 payload: %s, len: %d", payload.hex().upper(), len(payload))
    if len(payload) % DES.block_size:
        raise ValueError(f"payload length {len(payload)} is not a multiple of the DES block size")
    encrypted = DES.new(bytes(kex), DES.MODE_CBC, iv=bytes(DES.block_size)).encrypt(payload)
    return header.prefix() + _lc(len(encrypted)) + encrypted


def apdu_change_key_entry_offline(
    key_no: int,
    pro_mas: int,
    change_ctr: int,
    entry: EntryKey,
    kc: bytes,
    sam_uid: bytes | None,
) -> bytes:
    """Build an offline SAM_ChangeKeyEntry protected by the OfflineChange key ``kc``."""
    header = _change_key_header(key_no, pro_mas)
    counter = (change_ctr & 0xFFFF).to_bytes(2, "big")
    payload = entry.to_bytes()
    encrypted = offline_change_key_encrypt(payload, kc, sam_uid, change_ctr)
    logger.debug("payload   : %s", payload.hex().upper())
    logger.debug("encPayload: %s", encrypted.hex().upper())
    apdu = header.prefix() + _lc(len(encrypted) + len(counter) + 8) + counter + encrypted
    return apdu + offline_change_key_mac(apdu, kc, change_ctr)


def _apdu_change_key_entry(
    host_mode: int,
    key_no: int,
    pro_mas: int,
    cmd_ctr: int,
    entry: EntryKey,
    ke: bytes | None,
    km: bytes | None,
) -> bytes:
    header = _change_key_header(key_no, pro_mas)
    payload = entry.to_bytes()
    if host_mode == _HOST_MODE_PLAIN:
        return header.prefix() + _lc(len(payload)) + payload
    if host_mode == _HOST_MODE_MAC:
        mac = mac_full_protection(header, cmd_ctr, payload, bytes(km or b""))
        logger.debug("MACt: %s", mac.hex().upper())
        return header.prefix() + _lc(len(payload) + len(mac)) + payload + mac
    if host_mode == _HOST_MODE_FULL:
        encrypted = encrypt_full_protection(cmd_ctr, payload, bytes(ke or b""))
        logger.debug("encD: %s", encrypted.hex().upper())
        mac = mac_full_protection(header, cmd_ctr, encrypted, bytes(km or b""))
        logger.debug("MACt: %s", mac.hex().upper())
        return header.prefix() + _lc(len(encrypted) + len(mac)) + encrypted + mac
    raise ValueError("hostMode incorrect")


def apdu_change_key_entry_plain(key_no: int, pro_mas: int, entry: EntryKey) -> bytes:
    """Build SAM_ChangeKeyEntry for a plain host session."""
    return _apdu_change_key_entry(_HOST_MODE_PLAIN, key_no, pro_mas, 0, entry, None, None)


def apdu_change_key_entry_mac(key_no: int, pro_mas: int, cmd_ctr: int, entry: EntryKey, km: bytes) -> bytes:
    """Build SAM_ChangeKeyEntry for a MAC-protected host session."""
    return _apdu_change_key_entry(_HOST_MODE_MAC, key_no, pro_mas, cmd_ctr, entry, None, km)


def apdu_change_key_entry_full(
    key_no: int, pro_mas: int, cmd_ctr: int, entry: EntryKey, ke: bytes, km: bytes
) -> bytes:
    """Build SAM_ChangeKeyEntry for a fully protected (encrypted and MACed) host session."""
    return _apdu_change_key_entry(_HOST_MODE_FULL, key_no, pro_mas, cmd_ctr, entry, ke, km)


def apdu_activate_offline_key(key_no: int, key_ver: int, div_input: bytes | None) -> bytes:
    """Build SAM_ActivateOfflineKey, diversified when ``div_input`` is given."""
    p1 = 0x01 if div_input is not None else 0x00
    header = CommandHeader(_CLA, _INS_ACTIVATE_OFFLINE_KEY, p1, 0x00)
    div = bytes(div_input) if div_input is not None else b""
    return header.prefix() + _lc(len(div) + 2) + bytes((key_no & 0xFF, key_ver & 0xFF)) + div


def apdu_get_key_entry(key_no: int) -> bytes:
    """Build SAM_GetKeyEntry for key entry ``key_no``."""
    header = CommandHeader(_CLA, _INS_GET_KEY_ENTRY, key_no & 0xFF, 0x00, le=True)
    return header.prefix() + b"\x00"


class KeyManagementMixin:
    """Key-entry commands for a SAM object that provides ``apdu(bytes) -> bytes``.

    The host session state (``host_mode``, ``cmd_ctr``, ``kex``, ``ke``, ``km``)
    is set by host authentication.
    """

    host_mode: int = 0
    cmd_ctr: int = 0
    kex: bytes = b""
    ke: bytes = b""
    km: bytes = b""

    def _send_checked(self, apdu: bytes) -> bytes:
        response = bytes(self.apdu(apdu))  # type: ignore[attr-defined]
        check_status(response)
        return response

    def change_key_entry_av1(self, key_no: int, pro_mas: int, entry: EntryKey) -> bytes:
        """Change a key entry in an AV1 host session."""
        return self._send_checked(apdu_change_key_entry_av1(key_no, pro_mas, entry, self.kex))

    def change_key_entry(self, key_no: int, pro_mas: int, entry: EntryKey) -> bytes:
        """Change a key entry using the current host protection mode."""
        apdu = _apdu_change_key_entry(
            self.host_mode, key_no, pro_mas, self.cmd_ctr, entry, self.ke, self.km
        )
        self.cmd_ctr += 1
        logger.debug("apdu: %s", apdu.hex().upper())
        return self._send_checked(apdu)

    def change_key_entry_offline(
        self,
        key_no: int,
        pro_mas: int,
        change_ctr: int,
        entry: EntryKey,
        kc: bytes,
        sam_uid: bytes | None,
    ) -> bytes:
        """Change a key entry with an offline-prepared, OfflineChange-protected command."""
        apdu = apdu_change_key_entry_offline(key_no, pro_mas, change_ctr, entry, kc, sam_uid)
        logger.debug("apdu: %s", apdu.hex().upper())
        return self._send_checked(apdu)

    def activate_offline_key(self, key_no: int, key_ver: int, div_input: bytes | None) -> bytes:
        """Activate an OfflineCrypto or OfflineChange key."""
        return self._send_checked(apdu_activate_offline_key(key_no, key_ver, div_input))

    def get_key_entry(self, key_no: int) -> bytes:
        """Read the metadata of a key entry; returns the full response."""
        return self._send_checked(apdu_get_key_entry(key_no))