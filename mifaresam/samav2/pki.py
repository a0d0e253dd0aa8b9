"""SAM PKI commands: RSA key generation, import, export and key-entry update."""

from __future__ import annotations

from dataclasses import replace
from enum import IntEnum
from typing import List

from ..errors import check_status
from ..tools.protection import CommandHeader

_CLA = 0x80
_INS_GENERATE_KEY_PAIR = 0x15
_INS_EXPORT_PUBLIC_KEY = 0x18
_INS_IMPORT_KEY = 0x19
_INS_UPDATE_KEY_ENTRIES = 0x1D

_CHUNK_SIZE = 255
_DEFAULT_E_LENGTH = 4


class HashingAlgorithm(IntEnum):
    """Hash algorithm selector of SAM_PKI_UpdateKeyEntries."""

    SHA1 = 0
    SHA224 = 1
    RFU = 2
    SHA256 = 3


_HASHING_P1 = {
    HashingAlgorithm.SHA1: 0x00,
    HashingAlgorithm.SHA224: 0x01,
    HashingAlgorithm.SHA256: 0x03,
}


def _u16(value: int) -> bytes:
    return (value & 0xFFFF).to_bytes(2, "big")


def _chain(header: CommandHeader, data: bytes, reset_p1: bool) -> List[bytes]:
    """Split ``data`` into 255-byte frames; every frame but the last has P2 = AF."""
    chunks = [data[start:start + _CHUNK_SIZE] for start in range(0, len(data), _CHUNK_SIZE)]
    apdus = []
    for index, chunk in enumerate(chunks):
        p1 = header.p1 if index == 0 or not reset_p1 else 0x00
        p2 = 0x00 if index == len(chunks) - 1 else 0xAF
        frame = replace(header, p1=p1, p2=p2)
        apdus.append(frame.prefix() + bytes((len(chunk),)) + chunk)
    return apdus


def apdu_pki_generate_key_pair(
    pki_e: bytes,
    pki_set: bytes,
    key_no: int,
    key_no_cek: int,
    key_v_cek: int,
    ref_no_kuc: int,
    n_len: int,
) -> List[bytes]:
    """Build the frames of SAM_PKI_GenerateKeyPair; a given exponent sets P1 = 01."""
    pki_e = bytes(pki_e or b"")
    header = CommandHeader(_CLA, _INS_GENERATE_KEY_PAIR, 0x01 if pki_e else 0x00, 0x00)
    data = (
        bytes((key_no & 0xFF,))
        + bytes(pki_set)
        + bytes((key_no_cek & 0xFF, key_v_cek & 0xFF, ref_no_kuc & 0xFF))
        + _u16(n_len)
        + _u16(len(pki_e) if pki_e else _DEFAULT_E_LENGTH)
        + pki_e
    )
    return _chain(header, data, reset_p1=False)


def apdu_pki_export_public_key(key_no: int) -> bytes:
    """Build SAM_PKI_ExportPublicKey for RSA key entry ``key_no``."""
    header = CommandHeader(_CLA, _INS_EXPORT_PUBLIC_KEY, key_no & 0xFF, 0x00, le=True)
    return header.prefix() + b"\x00"


def apdu_pki_update_key_entries(
    hashing: HashingAlgorithm,
    key_entries_no: int,
    key_no_enc: int,
    key_no_sign: int,
    enc_key_frame: bytes,
    signature: bytes,
) -> List[bytes]:
    """Build the frames of SAM_PKI_UpdateKeyEntries."""
    p1 = (_HASHING_P1.get(HashingAlgorithm(hashing), 0x00) | (key_entries_no << 2)) & 0xFF
    header = CommandHeader(_CLA, _INS_UPDATE_KEY_ENTRIES, p1, 0x00)
    data = (
        bytes((key_no_enc & 0xFF, key_no_sign & 0xFF))
        + bytes(enc_key_frame)
        + bytes(signature)
    )
    return _chain(header, data, reset_p1=True)


def apdu_pki_import_key(
    key_no: int,
    key_no_cek: int,
    key_v_cek: int,
    ref_no_kuc: int,
    pki_set: bytes,
    e: bytes,
    n: bytes,
    p: bytes,
    q: bytes,
    dp: bytes,
    dq: bytes,
    ipq: bytes,
) -> List[bytes]:
    """Build the frames of SAM_PKI_ImportKey; with no key material only the settings are updated."""
    parts = [bytes(part or b"") for part in (n, e, p, q, dp, dq, ipq)]
    settings_only = not any(parts)
    header = CommandHeader(_CLA, _INS_IMPORT_KEY, 0x01 if settings_only else 0x00, 0x00)
    lengths = b"".join(_u16(len(part)) for part in parts[:4] if part)
    data = (
        bytes((key_no & 0xFF,))
        + bytes(pki_set)
        + bytes((key_no_cek & 0xFF, key_v_cek & 0xFF, ref_no_kuc & 0xFF))
        + lengths
        + b"".join(parts)
    )
    return _chain(header, data, reset_p1=True)


class PKIMixin:
    """PKI commands for a SAM object that provides ``apdu(bytes) -> bytes``."""

    def _send(self, apdu: bytes) -> bytes:
        return bytes(self.apdu(apdu))  # type: ignore[attr-defined]

    def pki_generate_key_pair(
        self,
        pki_e: bytes,
        pki_set: bytes,
        key_no: int,
        key_no_cek: int,
        key_v_cek: int,
        ref_no_kuc: int,
        n_len: int,
    ) -> bytes:
        """Generate an RSA key pair; only the final frame's status is checked."""
        response = b""
        for apdu in apdu_pki_generate_key_pair(
            pki_e, pki_set, key_no, key_no_cek, key_v_cek, ref_no_kuc, n_len
        ):
            response = self._send(apdu)
        check_status(response)
        return response

    def pki_export_public_key(self, key_no: int) -> bytes:
        """Export the public part of an RSA key, following chained responses."""
        apdu = apdu_pki_export_public_key(key_no)
        response = self._send(apdu)
        collected = check_status(response)
        while response[-1] == 0xAF:
            response = self._send(apdu)
            collected += check_status(response)
        return collected

    def _send_all_checked(self, apdus: List[bytes]) -> bytes:
        response = b""
        for apdu in apdus:
            response = self._send(apdu)
            check_status(response)
        return response

    def pki_update_key_entries(
        self,
        hashing: HashingAlgorithm,
        key_entries_no: int,
        key_no_enc: int,
        key_no_sign: int,
        enc_key_frame: bytes,
        signature: bytes,
    ) -> bytes:
        """Update symmetric key entries from an RSA-protected key frame."""
        return self._send_all_checked(
            apdu_pki_update_key_entries(
                hashing, key_entries_no, key_no_enc, key_no_sign, enc_key_frame, signature
            )
        )

    def pki_import_key(
        self,
        key_no: int,
        key_no_cek: int,
        key_v_cek: int,
        ref_no_kuc: int,
        pki_set: bytes,
        e: bytes,
        n: bytes,
        p: bytes,
        q: bytes,
        dp: bytes,
        dq: bytes,
        ipq: bytes,
    ) -> bytes:
        """Import an RSA key (or only its settings) into a PKI key entry."""
        return self._send_all_checked(
            apdu_pki_import_key(
                key_no, key_no_cek, key_v_cek, ref_no_kuc, pki_set, e, n, p, q, dp, dq, ipq
            )
        )