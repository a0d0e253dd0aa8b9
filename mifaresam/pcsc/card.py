"""A smart card reached through a PC/SC-style connection."""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import Callable, Protocol, TypeVar

from ..errors import ResponseError, SamError

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_LEAVE_CARD = 0x00
_RESET_CARD = 0x01
_UNPOWER_CARD = 0x02
_EJECT_CARD = 0x03

_GET_UID = bytes((0xFF, 0xCA, 0x00, 0x00, 0x00))
_GET_ATS = bytes((0xFF, 0xCA, 0x01, 0x00, 0x00))
_SESSION_START = bytes((0xFF, 0xC2, 0x00, 0x00, 0x04, 0x81, 0x00, 0x84, 0x00))
_SESSION_START_ONLY = bytes((0xFF, 0xC2, 0x00, 0x00, 0x02, 0x81, 0x00))
_RF_OFF = bytes((0xFF, 0xC2, 0x00, 0x00, 0x02, 0x83, 0x00))
_RF_ON = bytes((0xFF, 0xC2, 0x00, 0x00, 0x02, 0x84, 0x00))
_SESSION_END = bytes((0xFF, 0xC2, 0x00, 0x00, 0x02, 0x82, 0x00, 0x00))
_SWITCH_14443_4 = bytes((0xFF, 0xC2, 0x00, 0x02, 0x04, 0x8F, 0x02, 0x00, 0x04))
_SWITCH_14443_3 = bytes((0xFF, 0xC2, 0x00, 0x02, 0x04, 0x8F, 0x02, 0x00, 0x03))


class _Transport(Protocol):
    def transmit(self, data: bytes) -> bytes: ...

    def control(self, code: int, data: bytes) -> bytes: ...

    def atr(self) -> bytes: ...

    def disconnect(self, disposition: int) -> None: ...


class CardState(Enum):
    """How the card is currently connected."""

    CONNECTED = auto()
    CONNECTED_DIRECT = auto()
    DISCONNECTED = auto()


def _hex(data: bytes) -> str:
    return data.hex(" ").upper()


class Card:
    """A connected card: APDU exchange, reader control and PC/SC part 3 sessions."""

    def __init__(self, transport: _Transport, state: CardState = CardState.CONNECTED) -> None:
        self.transport = transport
        self.state = state

    def __enter__(self) -> "Card":
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self.state is not CardState.DISCONNECTED:
            self.disconnect()

    @staticmethod
    def _call(func: Callable[..., _T], *args: object) -> _T:
        try:
            return func(*args)
        except SamError:
            raise
        except Exception as exc:
            raise SamError(f"communication error: {exc}") from exc

    def _require(self, state: CardState) -> None:
        if self.state is not state:
            raise SamError("not connected to the card")

    def _transmit(self, apdu: bytes) -> bytes:
        return bytes(self._call(self.transport.transmit, bytes(apdu)))

    def apdu(self, apdu: bytes) -> bytes:
        """Send an APDU to a card connected in shared/exclusive mode."""
        self._require(CardState.CONNECTED)
        apdu = bytes(apdu)
        logger.debug("APDU: [%s], len: %d", _hex(apdu), len(apdu))
        response = self._transmit(apdu)
        logger.debug("Response: [%s], len: %d", _hex(response), len(response))
        return response

    def control(self, ioctl: int, apdu: bytes) -> bytes:
        """Send a control command to a reader connected in direct mode."""
        self._require(CardState.CONNECTED_DIRECT)
        return bytes(self._call(self.transport.control, ioctl, bytes(apdu)))

    def atr(self) -> bytes:
        """Return the card's answer to reset."""
        self._require(CardState.CONNECTED)
        return bytes(self._call(self.transport.atr))

    def uid(self) -> bytes:
        """Return the card UID (GET DATA 00) without the status word."""
        response = self.apdu(_GET_UID)
        if len(response) < 2:
            raise ResponseError(f"response too short: [{_hex(response)}]", response)
        return response[:-2]

    def ats(self) -> bytes:
        """Return the raw GET DATA 01 (ATS) response, status word included."""
        return self.apdu(_GET_ATS)

    def _disconnect(self, disposition: int) -> None:
        self.state = CardState.DISCONNECTED
        self._call(self.transport.disconnect, disposition)

    def disconnect(self) -> None:
        """Disconnect, leaving the card as it is."""
        self._disconnect(_LEAVE_CARD)

    def disconnect_reset(self) -> None:
        """Disconnect and reset the card."""
        self._disconnect(_RESET_CARD)

    def disconnect_unpower(self) -> None:
        """Disconnect and power the card down."""
        self._disconnect(_UNPOWER_CARD)

    def disconnect_eject(self) -> None:
        """Disconnect and eject the card."""
        self._disconnect(_EJECT_CARD)

    def transparent_session_start(self) -> bytes:
        """Start a transparent session and switch the RF field on."""
        return self._transmit(_SESSION_START)

    def transparent_session_start_only(self) -> bytes:
        """Start a transparent session without touching the RF field."""
        return self._transmit(_SESSION_START_ONLY)

    def transparent_session_reset_rf(self) -> bytes:
        """Switch the RF field off and on again; returns the second response."""
        self._transmit(_RF_OFF)
        return self._transmit(_RF_ON)

    def transparent_session_end(self) -> bytes:
        """End the transparent session."""
        return self._transmit(_SESSION_END)

    def switch_iso14443_4(self) -> bytes:
        """Switch the protocol to ISO/IEC 14443-4."""
        return self._transmit(_SWITCH_14443_4)

    def switch_iso14443_3(self) -> bytes:
        """Switch the protocol to ISO/IEC 14443-3."""
        return self._transmit(_SWITCH_14443_3)