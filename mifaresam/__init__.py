"""Host-side APDU builders and protocols for MIFARE SAM AV2/AV3 modules."""

__version__ = "0.1.0"