"""Dispatch of APDU commands to a pool of SAM workers connected by queues.

Each SAM is served by :func:`reader_channel`, which reads commands from an
inbound queue and answers on an outbound queue. A ``None`` put on a queue
marks it as closed. :func:`send_cmd` hands a command to whichever worker has
room, and :func:`recv_resp` collects the first answer from any worker.
"""

from __future__ import annotations

import logging
import queue
import random
import time
from typing import Iterator, Optional, Protocol, Sequence, Tuple

from ..errors import SamError, check_status
from ..samav2.sam import apdu_kill_auth_picc

logger = logging.getLogger(__name__)

_SEND_TIMEOUT = 0.020
_RECV_TIMEOUT = 0.120
_RESPONSE_TIMEOUT = 0.010
_AUTH_MFP_TIMEOUT = 5.0
_POLL_INTERVAL = 0.001

_INS_AUTH_MFP = 0xA3
_HEADER_LENGTH = 5


class _Sam(Protocol):
    def apdu(self, apdu: bytes) -> bytes: ...

    def dump_session_key(self) -> bytes: ...

    def disconnect(self) -> None: ...


class _ChannelClosed(SamError):
    """A worker queue delivered the close marker."""

    def __init__(self, index: int) -> None:
        super().__init__(f"channel {index} is closed")
        self.index = index


def _shuffled(count: int) -> list:
    order = list(range(count))
    random.shuffle(order)
    return order


def send_cmd(data: bytes, channels: Sequence["queue.Queue[Optional[bytes]]"]) -> int:
    """Put ``data`` on one channel that has room; return its index.

    Raises :class:`TimeoutError` when no channel accepts it within 20 ms.
    """
    deadline = time.monotonic() + _SEND_TIMEOUT
    while True:
        for index in _shuffled(len(channels)):
            try:
                channels[index].put_nowait(data)
            except queue.Full:
                continue
            return index
        if time.monotonic() >= deadline:
            logger.info("send_cmd timeout")
            raise TimeoutError("timeout")
        time.sleep(_POLL_INTERVAL)


def recv_resp(channels: Sequence["queue.Queue[Optional[bytes]]"]) -> Tuple[bytes, int]:
    """Take the first response available on any channel within 120 ms.

    Returns the response and the index of its channel. Raises
    :class:`TimeoutError` when nothing arrives, and :class:`SamError`
    (carrying ``index``) when a channel has been closed.
    """
    deadline = time.monotonic() + _RECV_TIMEOUT
    while True:
        for index in _shuffled(len(channels)):
            try:
                item = channels[index].get_nowait()
            except queue.Empty:
                continue
            if item is None:
                raise _ChannelClosed(index)
            return bytes(item), index
        if time.monotonic() >= deadline:
            logger.info("recv_resp timeout")
            raise TimeoutError("timeout")
        time.sleep(_POLL_INTERVAL)


def _frames(data: bytes) -> Iterator[bytes]:
    """Split concatenated command APDUs into the frames sent one by one."""
    while True:
        if len(data) > _HEADER_LENGTH and data[4] + _HEADER_LENGTH + 1 < len(data):
            end = data[4] + _HEADER_LENGTH
            if data[end + 1] == 0x00:
                yield data + b"\x00"
                return
            yield data[:end]
            data = data[end:]
        else:
            yield data
            return


def _deliver(outbound: "queue.Queue[Optional[bytes]]", item: bytes, timeout: float) -> bool:
    try:
        outbound.put(item, timeout=timeout)
    except queue.Full:
        return False
    return True


def _await_reply(outbound: "queue.Queue[Optional[bytes]]", own: bytes, timeout: float) -> Optional[bytes]:
    """Wait for the peer to take ``own`` and answer on the same queue."""
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise queue.Empty
        item = outbound.get(timeout=remaining)
        if item is own:
            # Not taken by the peer yet: put it back and keep waiting.
            try:
                outbound.put(item, timeout=max(remaining, _POLL_INTERVAL))
            except queue.Full:
                raise queue.Empty from None
            time.sleep(_POLL_INTERVAL)
            continue
        return item


def _close(channel: "queue.Queue[Optional[bytes]]") -> None:
    while True:
        try:
            channel.put_nowait(None)
            return
        except queue.Full:
            try:
                channel.get_nowait()
            except queue.Empty:
                pass


def _exchange(sam: _Sam, data: bytes) -> Tuple[bytes, bytes]:
    """Send every frame of ``data``; return the last frame sent and its response."""
    frame, response = b"", b""
    for frame in _frames(data):
        response = bytes(sam.apdu(frame))
        try:
            check_status(response)
        except SamError:
            break
    return frame, response


def reader_channel(
    sam: _Sam,
    inbound: "queue.Queue[Optional[bytes]]",
    outbound: "queue.Queue[Optional[bytes]]",
) -> None:
    """Serve one SAM until ``inbound`` is closed or the SAM fails.

    On exit the outbound queue is closed and the SAM disconnected. A MIFARE
    Plus authentication command is completed in place: the peer's second part
    is read back from ``outbound`` and answered with the dumped session key.
    """
    try:
        while True:
            data = inbound.get()
            if data is None:
                logger.info("inbound channel closed")
                return
            try:
                frame, response = _exchange(sam, bytes(data))
            except SamError as exc:
                logger.warning("SAM error: %s", exc)
                return

            auth_mfp = len(frame) > 1 and frame[1] == _INS_AUTH_MFP
            timeout = _AUTH_MFP_TIMEOUT if auth_mfp else _RESPONSE_TIMEOUT
            if not _deliver(outbound, response, timeout) or not auth_mfp:
                continue

            try:
                second = _await_reply(outbound, response, timeout)
            except queue.Empty:
                try:
                    sam.apdu(apdu_kill_auth_picc())
                except SamError as exc:
                    logger.warning("SAM error: %s", exc)
                continue
            if second is None:
                logger.info("outbound channel closed")
                return
            try:
                answer = bytes(sam.apdu(bytes(second)))
            except SamError as exc:
                logger.warning("SAM error: %s", exc)
                return
            try:
                check_status(answer)
            except SamError as exc:
                logger.info("%s", exc)
                continue
            try:
                session_key = bytes(sam.dump_session_key())
            except SamError as exc:
                logger.warning("SAM error: %s", exc)
                return
            _deliver(outbound, session_key, timeout)
    finally:
        _close(outbound)
        logger.info("reader channel finished")
        try:
            sam.disconnect()
        except SamError as exc:
            logger.warning("disconnect failed: %s", exc)