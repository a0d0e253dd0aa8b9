"""Key types, key classes and the SET / ExtSET configuration bit fields."""

from __future__ import annotations

from enum import IntEnum, IntFlag
from typing import Iterable, Tuple


class KeyType(IntEnum):
    """Key type encoded in bits 3-5 of a key entry's SET."""

    TDEA_DESFIRE_4 = 0
    TDEA_ISO_10116 = 1
    MIFARE = 2
    TRIPLE_TDEA_ISO_10116 = 3
    AES_128 = 4
    AES_192 = 5
    TDEA_ISO_10116_CRC32_MAC8 = 6


class KeyClass(IntFlag):
    """Key class of a key entry; classes may be combined with ``|``."""

    HOST_KEY = 0
    PICC_KEY = 1
    OFFLINE_CHANGE_KEY = 2
    OFFLINE_CRYPTO_KEY = 4


_KEY_CLASS_NAMES = {
    "HOST_KEY": KeyClass.HOST_KEY,
    "PICC_KEY": KeyClass.PICC_KEY,
    "OfflineChange_KEY": KeyClass.OFFLINE_CHANGE_KEY,
    "OfflineCrypto_KEY": KeyClass.OFFLINE_CRYPTO_KEY,
}


def key_class_by_name(name: str) -> KeyClass:
    """Look up a key class by its configuration name."""
    try:
        return _KEY_CLASS_NAMES[name]
    except KeyError:
        raise ValueError(f"unknown key class: {name!r}") from None


def _pack(fields: Iterable[Tuple[int, int]]) -> int:
    """Shift each value in, most significant field first."""
    result = 0
    for width, value in fields:
        result = (result << width) | int(value)
    return result


def set_configuration(
    allow_dump_session_key: bool = False,
    keep_iv: bool = False,
    key_type: KeyType = KeyType.TDEA_DESFIRE_4,
    auth_key: bool = False,
    disable_key_entry: bool = False,
    lock_key: bool = False,
    disable_writing_key_picc: bool = False,
    disable_decryption: bool = False,
    disable_encryption: bool = False,
    disable_verify_mac: bool = False,
    disable_gen_mac: bool = False,
) -> bytes:
    """Build the two SET bytes (little endian) of a symmetric key entry."""
    value = _pack(
        [
            (1, disable_gen_mac),
            (1, disable_verify_mac),
            (1, disable_encryption),
            (1, disable_decryption),
            (1, disable_writing_key_picc),
            (1, lock_key),
            (1, disable_key_entry),
            (1, auth_key),
            (2, 0),
            (3, key_type),
            (1, keep_iv),
            (1, 0),
            (1, allow_dump_session_key),
        ]
    )
    return (value & 0xFFFF).to_bytes(2, "little")


def set_configuration_pki(
    priv_key_include: bool = False,
    allow_priv_key_export: bool = False,
    disable_key_entry: bool = False,
    disable_encryption_handling: bool = False,
    disable_signature_handling: bool = False,
    enable_pki_update_key_entry: bool = False,
    priv_key_representation: int = 0,
) -> bytes:
    """Build the two SET bytes (little endian) of a PKI key entry."""
    value = _pack(
        [
            (9, 0),
            (1, priv_key_representation),
            (1, enable_pki_update_key_entry),
            (1, disable_signature_handling),
            (1, disable_encryption_handling),
            (1, disable_key_entry),
            (1, allow_priv_key_export),
            (1, priv_key_include),
        ]
    )
    return (value & 0xFFFF).to_bytes(2, "little")


def ext_set_configuration(
    key_class: KeyClass = KeyClass.HOST_KEY,
    allow_dump_secret_key: bool = False,
    restrict_to_diversified_use: bool = False,
) -> int:
    """Build the ExtSET byte of a key entry."""
    value = _pack(
        [
            (3, 0),
            (1, restrict_to_diversified_use),
            (1, allow_dump_secret_key),
            (3, key_class),
        ]
    )
    return value & 0xFF