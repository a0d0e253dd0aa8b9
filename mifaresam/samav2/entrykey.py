"""Key entry records as stored in and read from the SAM."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag

from .settings import KeyType

_ENTRY_LENGTH = 61
_ENTRY_DATA_LENGTH = 12


class ProMasEntryKey(IntFlag):
    """Programming mask (P2) of SAM_ChangeKeyEntry: which fields to update."""

    NONE = 0x00
    UPDATE_KEY_VERSIONS_SENT_SEPARATELY = 0x01
    UPDATE_SET = 0x02
    UPDATE_REF_KUC = 0x04
    UPDATE_KEY_NO_CEK_KEY_V_CEK = 0x08
    UPDATE_DF_AID_DF_KEY = 0x10
    UPDATE_KEY_VC = 0x20
    UPDATE_KEY_VB = 0x40
    UPDATE_KEY_VA = 0x80
    ALL = 0xFF


@dataclass
class EntryKey:
    """A full key entry, including the key values."""

    key_va: bytes = b""
    key_vb: bytes = b""
    key_vc: bytes = b""
    va: int = 0
    vb: int = 0
    vc: int = 0
    df_aid: bytes = b""
    df_key_no: int = 0
    key_no_cek: int = 0
    key_v_cek: int = 0
    ref_no_kuc: int = 0
    set_bytes: bytes = b""
    ext_set: int = 0

    @classmethod
    def from_bytes(cls, data: bytes, key_type: KeyType) -> "EntryKey":
        """Parse a 61-byte key entry; DES-family entries carry two 24-byte keys."""
        data = bytes(data)
        if len(data) < _ENTRY_LENGTH:
            raise ValueError(f"key entry too short: {len(data)} bytes")
        if key_type == KeyType.AES_128:
            key_va, key_vb, key_vc = data[0:16], data[16:32], data[32:48]
            vc = data[59]
        else:
            key_va, key_vb, key_vc = data[0:24], data[24:48], b""
            vc = 0
        return cls(
            key_va=key_va,
            key_vb=key_vb,
            key_vc=key_vc,
            va=data[57],
            vb=data[58],
            vc=vc,
            df_aid=data[48:51],
            df_key_no=data[51],
            key_no_cek=data[52],
            key_v_cek=data[53],
            ref_no_kuc=data[54],
            set_bytes=data[55:57],
            ext_set=data[60],
        )

    def to_bytes(self) -> bytes:
        """Serialise the entry in SAM_ChangeKeyEntry order."""
        return b"".join(
            [
                self.key_va,
                self.key_vb,
                self.key_vc,
                self.df_aid,
                bytes((self.df_key_no, self.key_no_cek, self.key_v_cek, self.ref_no_kuc)),
                self.set_bytes,
                bytes((self.va, self.vb, self.vc, self.ext_set)),
            ]
        )


@dataclass
class EntryKeyData:
    """The key entry metadata returned by SAM_GetKeyEntry (no key values)."""

    va: int = 0
    vb: int = 0
    vc: int = 0
    df_aid: bytes = b""
    df_key_no: int = 0
    key_no_cek: int = 0
    key_v_cek: int = 0
    ref_no_kuc: int = 0
    set_bytes: bytes = b""

    @classmethod
    def from_bytes(cls, data: bytes, key_type: KeyType) -> "EntryKeyData":
        """Parse the 12-byte key entry metadata."""
        data = bytes(data)
        if len(data) < _ENTRY_DATA_LENGTH:
            raise ValueError(f"key entry data too short: {len(data)} bytes")
        vc = data[2] if key_type == KeyType.AES_128 else 0
        return cls(
            va=data[0],
            vb=data[1],
            vc=vc,
            df_aid=data[3:6],
            df_key_no=data[6],
            key_no_cek=data[7],
            key_v_cek=data[8],
            ref_no_kuc=data[9],
            set_bytes=data[10:12],
        )