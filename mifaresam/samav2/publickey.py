"""Parsing of RSA public keys exported by the SAM."""

from __future__ import annotations

from dataclasses import dataclass

_PREFIX_LENGTH = 2 + 1 + 1 + 1 + 2 + 2


@dataclass
class PKIPublicKey:
    """An RSA public key entry as returned by SAM_PKI_ExportPublicKey."""

    pki_set: bytes
    key_no_cek: int
    key_v_cek: int
    ref_no_kuc: int
    n_len: int
    e_len: int
    n: int
    e: int


def parse_public_key(data: bytes) -> PKIPublicKey:
    """Parse an exported public key: header, modulus and exponent."""
    data = bytes(data)
    if len(data) < _PREFIX_LENGTH:
        raise ValueError(f"len data is invalid, len: {len(data)}")
    n_len = int.from_bytes(data[5:7], "big")
    e_len = int.from_bytes(data[7:9], "big")
    if len(data) < _PREFIX_LENGTH + n_len + e_len:
        raise ValueError(f"len data is invalid, len: {len(data)}")
    n_end = _PREFIX_LENGTH + n_len
    exponent = int.from_bytes(data[n_end:n_end + e_len], "big")
    return PKIPublicKey(
        pki_set=bytes(2) + data[0:2],
        key_no_cek=data[2],
        key_v_cek=data[3],
        ref_no_kuc=data[4],
        n_len=n_len,
        e_len=e_len,
        n=int.from_bytes(data[_PREFIX_LENGTH:n_end], "big"),
        e=exponent & 0xFFFFFFFFFFFFFFFF,
    )