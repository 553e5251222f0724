"""Incremental byte-at-a-time parser for Ping protocol frames."""

import logging
from collections.abc import Callable
from enum import IntEnum

from .protocol import DEFAULT_BUFFER_LENGTH, FRAME_MAGIC, FRAME_OVERHEAD, PingMessage

logger = logging.getLogger(__name__)


class ParseState(IntEnum):
    NEW_MESSAGE = 0  # Just got a complete checksum-verified message
    WAIT_START = 1  # Waiting for the first magic byte 'B'
    WAIT_HEADER = 2  # Waiting for the second magic byte 'R'
    WAIT_LENGTH_L = 3
    WAIT_LENGTH_H = 4
    WAIT_MSG_ID_L = 5
    WAIT_MSG_ID_H = 6
    WAIT_SRC_ID = 7
    WAIT_DST_ID = 8
    WAIT_PAYLOAD = 9  # Waiting for the last byte of the payload
    WAIT_CHECKSUM_L = 10
    WAIT_CHECKSUM_H = 11
    ERROR = 12  # Frame was complete but the checksum didn't check out


# Fixed-width id fields following the length
_ID_FIELD_NEXT = {
    ParseState.WAIT_MSG_ID_L: ParseState.WAIT_MSG_ID_H,
    ParseState.WAIT_MSG_ID_H: ParseState.WAIT_SRC_ID,
    ParseState.WAIT_SRC_ID: ParseState.WAIT_DST_ID,
    ParseState.WAIT_DST_ID: ParseState.WAIT_PAYLOAD,
}

_REPORT_STATES = (ParseState.NEW_MESSAGE, ParseState.ERROR)


class ByteStreamParser:
    """Stateful parser that digests one byte at a time.

    Every call to ``parse_byte`` returns the state the parser is in after the
    byte, or ``NEW_MESSAGE`` / ``ERROR`` on the final checksum byte of a frame.
    Malformed magic bytes and oversized length fields resynchronize silently;
    only checksum mismatches are counted as errors.

    Not thread-safe: serialize calls on a single instance.
    """

    def __init__(self, buffer_length: int = DEFAULT_BUFFER_LENGTH) -> None:
        self._rx_message = PingMessage(buffer_length)
        self._parsed = 0
        self._errors = 0
        self._rx_count = 0
        self._payload_length = 0
        self._remaining = 0
        self._complete = False
        self._state = ParseState.WAIT_START
        self._handlers: dict[ParseState, Callable[[int], ParseState]] = {
            ParseState.WAIT_START: self._wait_start,
            ParseState.WAIT_HEADER: self._wait_header,
            ParseState.WAIT_LENGTH_L: self._wait_length_l,
            ParseState.WAIT_LENGTH_H: self._wait_length_h,
            ParseState.WAIT_MSG_ID_L: self._wait_id_field,
            ParseState.WAIT_MSG_ID_H: self._wait_id_field,
            ParseState.WAIT_SRC_ID: self._wait_id_field,
            ParseState.WAIT_DST_ID: self._wait_id_field,
            ParseState.WAIT_PAYLOAD: self._wait_payload,
            ParseState.WAIT_CHECKSUM_L: self._wait_checksum_l,
            ParseState.WAIT_CHECKSUM_H: self._wait_checksum_h,
        }

    @property
    def parsed(self) -> int:
        """Number of frames successfully parsed."""
        return self._parsed

    @property
    def errors(self) -> int:
        """Number of frames rejected by the checksum."""
        return self._errors

    @property
    def state(self) -> ParseState:
        return self._state

    @property
    def rx_message(self) -> PingMessage:
        """Receive buffer. Only valid right after a NEW_MESSAGE result."""
        return self._rx_message

    @property
    def max_payload_length(self) -> int:
        return self._rx_message.capacity - FRAME_OVERHEAD

    def reset(self) -> None:
        """Abort any partial frame and wait for the next start byte."""
        self._state = ParseState.WAIT_START
        self._complete = False

    def frame(self) -> bytes:
        """Return a copy of the last verified frame, or b"" if none is held."""
        if not self._complete:
            return b""
        return self._rx_message.frame()

    def parse_byte(self, b: int) -> ParseState:
        """Parse a single byte and return the resulting state."""
        result = self._handlers[self._state](b)
        self._state = ParseState.WAIT_START if result in _REPORT_STATES else result
        return result

    def feed(self, data: bytes) -> list[bytes]:
        """Feed a chunk of bytes, return a copy of each verified frame."""
        frames = []
        for b in data:
            if self.parse_byte(b) == ParseState.NEW_MESSAGE:
                frames.append(self._rx_message.frame())
        return frames

    def _store(self, b: int) -> None:
        self._rx_message.msg_data[self._rx_count] = b
        self._rx_count += 1

    def _wait_start(self, b: int) -> ParseState:
        self._rx_count = 0
        if b != FRAME_MAGIC[0]:
            return ParseState.WAIT_START
        # The previous frame is overwritten from here on
        self._complete = False
        self._store(b)
        return ParseState.WAIT_HEADER

    def _wait_header(self, b: int) -> ParseState:
        if b != FRAME_MAGIC[1]:
            return ParseState.WAIT_START
        self._store(b)
        return ParseState.WAIT_LENGTH_L

    def _wait_length_l(self, b: int) -> ParseState:
        self._store(b)
        self._payload_length = b
        return ParseState.WAIT_LENGTH_H

    def _wait_length_h(self, b: int) -> ParseState:
        self._store(b)
        self._payload_length |= b << 8
        if self._payload_length > self.max_payload_length:
            return ParseState.WAIT_START
        self._remaining = self._payload_length
        return ParseState.WAIT_MSG_ID_L

    def _wait_id_field(self, b: int) -> ParseState:
        self._store(b)
        next_state = _ID_FIELD_NEXT[self._state]
        if next_state == ParseState.WAIT_PAYLOAD and self._payload_length == 0:
            return ParseState.WAIT_CHECKSUM_L
        return next_state

    def _wait_payload(self, b: int) -> ParseState:
        self._store(b)
        self._remaining -= 1
        if self._remaining == 0:
            return ParseState.WAIT_CHECKSUM_L
        return ParseState.WAIT_PAYLOAD

    def _wait_checksum_l(self, b: int) -> ParseState:
        self._store(b)
        return ParseState.WAIT_CHECKSUM_H

    def _wait_checksum_h(self, b: int) -> ParseState:
        self._store(b)
        if self._rx_message.verify_checksum():
            self._parsed += 1
            self._complete = True
            return ParseState.NEW_MESSAGE

        self._errors += 1
        logger.debug(
            "Checksum mismatch on message id %d: received 0x%04x, calculated 0x%04x",
            self._rx_message.message_id,
            self._rx_message.checksum,
            self._rx_message.calculate_checksum(),
        )
        return ParseState.ERROR
