"""Serial port handler for the Ping device bridge."""

import logging
import threading
import time

import serial

from .config import SerialConfig
from .parser import ByteStreamParser
from .protocol import DEFAULT_BUFFER_LENGTH

logger = logging.getLogger(__name__)

# Reconnection settings
RECONNECT_DELAY_MIN = 1  # seconds
RECONNECT_DELAY_MAX = 60  # seconds


class SerialHandler:
    """Handles serial communication with a Ping protocol device."""

    def __init__(
        self,
        config: SerialConfig,
        buffer_length: int = DEFAULT_BUFFER_LENGTH,
    ) -> None:
        self._config = config
        self._port: serial.Serial | None = None
        self._parser = ByteStreamParser(buffer_length)
        self._write_lock = threading.Lock()
        self._reconnect_delay = RECONNECT_DELAY_MIN

    @property
    def connected(self) -> bool:
        """Return True if serial port is open."""
        return self._port is not None and self._port.is_open

    @property
    def stats(self) -> tuple[int, int]:
        """Return (parsed, errors) frame counts since start."""
        return self._parser.parsed, self._parser.errors

    def open(self) -> None:
        """Open the serial port."""
        self._port = serial.Serial(
            port=self._config.port,
            baudrate=self._config.baud,
            timeout=0.1,  # 100ms read timeout for polling
        )
        self._reconnect_delay = RECONNECT_DELAY_MIN  # Reset backoff on success
        logger.info(
            "Opened serial port %s at %d baud",
            self._config.port,
            self._config.baud,
        )

    def close(self) -> None:
        """Close the serial port, even one that failed mid-read."""
        port, self._port = self._port, None
        if port is None or not port.is_open:
            return
        try:
            port.close()
        except serial.SerialException as e:
            logger.warning("Error closing serial port: %s", e)
        else:
            logger.info("Closed serial port")

    def try_open(self) -> bool:
        """
        Open the serial port without waiting.

        Returns True on success. On failure the backoff used by
        try_reconnect() is doubled.
        """
        try:
            self.open()
            return True
        except serial.SerialException as e:
            logger.warning("Failed to open serial port %s: %s", self._config.port, e)
            # Exponential backoff
            self._reconnect_delay = min(
                self._reconnect_delay * 2,
                RECONNECT_DELAY_MAX,
            )
            return False

    def try_reconnect(self) -> bool:
        """
        Attempt to reconnect to the serial port.

        Returns True if reconnection successful, False otherwise.
        Uses exponential backoff between attempts.
        """
        self.close()
        self._parser.reset()  # Drop any partial frame, keep counters

        logger.info(
            "Attempting serial reconnection in %d seconds...",
            self._reconnect_delay,
        )
        time.sleep(self._reconnect_delay)
        return self.try_open()

    def read_frames(self) -> list[bytes]:
        """
        Read and parse any available bytes.

        Returns list of verified frames, or empty list if no data.
        Raises SerialDisconnected if the port is no longer available.
        """
        if not self.connected:
            return []

        try:
            data = self._port.read(self._port.in_waiting or 1)
        except serial.SerialException as e:
            logger.error("Serial read error: %s", e)
            self.close()
            raise SerialDisconnected() from e

        errors_before = self._parser.errors
        frames = self._parser.feed(data)
        for frame in frames:
            logger.debug(
                "Received message %d from device %d: %d bytes",
                int.from_bytes(frame[4:6], "little"),
                frame[6],
                len(frame),
            )

        dropped = self._parser.errors - errors_before
        if dropped:
            logger.warning(
                "Dropped %d frame(s) with bad checksum (%d errors so far)",
                dropped,
                self._parser.errors,
            )
        return frames

    def write_frame(self, frame: bytes) -> None:
        """Write an encoded frame to the serial port (thread-safe)."""
        if not self.connected:
            logger.warning("Cannot write: serial port not open")
            return

        try:
            with self._write_lock:
                self._port.write(frame)
            logger.debug("Sent frame to serial: %d bytes", len(frame))
        except serial.SerialException as e:
            logger.error("Serial write error: %s", e)
            # Don't raise here - let the main loop detect via read_frames


class SerialDisconnected(Exception):
    """Raised when serial port becomes unavailable."""

    pass
