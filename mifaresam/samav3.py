"""The SAM AV3 device, which keeps the AV2 command set."""

from __future__ import annotations

from .samav2.sam import Reader, SamAv2


class SamAv3(SamAv2):
    """A MIFARE SAM AV3; host authentication uses the AV2 protocol."""

    def auth_host(self, key: bytes, key_no: int, key_ver: int, host_mode: int) -> bytes:
        """Authenticate the host (host mode 0 plain, 1 MAC, 2 full)."""
        return self.auth_host_av2(key, key_no, key_ver, host_mode)


def connect_sam_av3(reader: Reader) -> SamAv3:
    """Connect to the AV3 SAM in ``reader``."""
    return SamAv3(reader.connect_sam_card())