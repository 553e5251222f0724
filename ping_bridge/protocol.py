"""Ping device protocol framing and checksum.

Frame format (all integers little-endian):
    ['B']['R'][len_low][len_high][id_low][id_high][src_id][dst_id][payload...][checksum_low][checksum_high]

- Magic: "BR" (2 bytes)
- Length: 2 bytes - length of payload only
- Message id: 2 bytes
- Source / destination device ids: 1 byte each
- Payload: Raw message body, schema depends on the message id
- Checksum: 16-bit sum of every byte from the magic through the payload
"""

FRAME_MAGIC = b"BR"
HEADER_SIZE = 8  # magic (2) + length (2) + message id (2) + src (1) + dst (1)
CHECKSUM_SIZE = 2
FRAME_OVERHEAD = HEADER_SIZE + CHECKSUM_SIZE
DEFAULT_BUFFER_LENGTH = 512
MAX_PAYLOAD_LENGTH = 0xFFFF


def checksum(data: bytes) -> int:
    """Calculate the 16-bit additive checksum over data."""
    return sum(data) & 0xFFFF


def encode_frame(
    message_id: int,
    payload: bytes = b"",
    src_device_id: int = 0,
    dst_device_id: int = 0,
) -> bytes:
    """Encode a payload into a framed message."""
    if len(payload) > MAX_PAYLOAD_LENGTH:
        raise ValueError(f"payload too long: {len(payload)} bytes")
    if not 0 <= message_id <= 0xFFFF:
        raise ValueError(f"message id out of range: {message_id}")
    for name, value in (("src_device_id", src_device_id), ("dst_device_id", dst_device_id)):
        if not 0 <= value <= 0xFF:
            raise ValueError(f"{name} out of range: {value}")

    body = (
        FRAME_MAGIC
        + len(payload).to_bytes(2, "little")
        + message_id.to_bytes(2, "little")
        + bytes([src_device_id, dst_device_id])
        + payload
    )
    return body + checksum(body).to_bytes(2, "little")


class PingMessage:
    """Fixed-capacity receive buffer holding a single frame.

    The buffer never grows: writing past ``capacity`` raises ``IndexError``.
    Field accessors decode whatever is currently stored, so they are only
    meaningful once a complete frame has been written.
    """

    def __init__(self, capacity: int = DEFAULT_BUFFER_LENGTH) -> None:
        if capacity < FRAME_OVERHEAD:
            raise ValueError(
                f"capacity must be at least {FRAME_OVERHEAD} bytes, got {capacity}"
            )
        self.msg_data = bytearray(capacity)

    @property
    def capacity(self) -> int:
        return len(self.msg_data)

    @property
    def payload_length(self) -> int:
        return int.from_bytes(self.msg_data[2:4], "little")

    @property
    def message_id(self) -> int:
        return int.from_bytes(self.msg_data[4:6], "little")

    @property
    def src_device_id(self) -> int:
        return self.msg_data[6]

    @property
    def dst_device_id(self) -> int:
        return self.msg_data[7]

    @property
    def frame_length(self) -> int:
        return self.payload_length + FRAME_OVERHEAD

    @property
    def payload(self) -> bytes:
        return bytes(self.msg_data[HEADER_SIZE : HEADER_SIZE + self.payload_length])

    @property
    def checksum(self) -> int:
        """Checksum as received (stored after the payload)."""
        offset = HEADER_SIZE + self.payload_length
        return int.from_bytes(self.msg_data[offset : offset + CHECKSUM_SIZE], "little")

    def calculate_checksum(self) -> int:
        """Checksum computed over the stored header and payload."""
        return checksum(self.msg_data[: HEADER_SIZE + self.payload_length])

    def verify_checksum(self) -> bool:
        if self.frame_length > self.capacity:
            return False
        return self.checksum == self.calculate_checksum()

    def frame(self) -> bytes:
        """Return a copy of the stored frame, header through checksum."""
        return bytes(self.msg_data[: min(self.frame_length, self.capacity)])
