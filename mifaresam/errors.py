"""Exceptions and status-word checks for SAM responses."""

from __future__ import annotations

SW_SUCCESS = 0x9000
SW_MORE_FRAMES = 0x90AF
_ACCEPTED = frozenset({SW_SUCCESS, SW_MORE_FRAMES})


class SamError(Exception):
    """Base class for errors raised while talking to a SAM or card."""


class ResponseError(SamError):
    """A response carried an unexpected status word or was malformed."""

    def __init__(self, message: str, response: bytes = b"") -> None:
        super().__init__(message)
        self.response = bytes(response)

    @property
    def sw(self) -> int | None:
        """The trailing two-byte status word, if the response has one."""
        if len(self.response) < 2:
            return None
        return int.from_bytes(self.response[-2:], "big")


def check_status(response: bytes) -> bytes:
    """Validate an ISO 7816 response and return its data without the status word.

    Both ``90 00`` and ``90 AF`` (more frames follow) count as success.
    """
    response = bytes(response)
    if len(response) < 2:
        raise ResponseError(f"response too short: [{response.hex(' ').upper()}]", response)
    sw = int.from_bytes(response[-2:], "big")
    if sw not in _ACCEPTED:
        raise ResponseError(f"status word {sw:04X} signals an error", response)
    return response[:-2]


def check_more_frames(response: bytes) -> bytes:
    """Require a response that announces further frames (last byte ``AF``).

    Returns the response data without the status word.
    """
    response = bytes(response)
    if not response or response[-1] != 0xAF:
        raise ResponseError(f"bad formed response: [{response.hex(' ').upper()}]", response)
    return response[:-2]