"""Main entry point for the Ping device MQTT bridge."""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path

from .config import Config, load_config
from .mqtt_handler import MqttHandler
from .serial_handler import SerialDisconnected, SerialHandler

logger = logging.getLogger(__name__)

STATS_INTERVAL = 300  # seconds between parser statistics log lines


def main() -> None:
    """Entry point for ping-bridge command."""
    parser = argparse.ArgumentParser(
        description="MQTT bridge for the Ping device serial protocol"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.error("Configuration file not found: %s", args.config)
        sys.exit(1)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    Bridge(config).run()


class Bridge:
    """Moves verified frames from the serial device to MQTT and commands back."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._serial = SerialHandler(config.serial, config.parser.buffer_length)
        self._mqtt = MqttHandler(
            config=config.mqtt,
            device=config.device,
            on_frame=self._serial.write_frame,
        )
        self._shutdown_requested = False
        self._last_stats = (0, 0)
        self._last_stats_time = time.monotonic()

    def request_shutdown(self, signum=None, frame=None) -> None:
        logger.info("Shutdown requested")
        self._shutdown_requested = True

    def log_stats(self, reason: str) -> None:
        """Log parser totals and the change since the previous report."""
        parsed, errors = self._serial.stats
        last_parsed, last_errors = self._last_stats
        logger.info(
            "Parser stats (%s): %d frames parsed (+%d), %d checksum errors (+%d)",
            reason,
            parsed,
            parsed - last_parsed,
            errors,
            errors - last_errors,
        )
        self._last_stats = (parsed, errors)
        self._last_stats_time = time.monotonic()

    def poll(self) -> None:
        """Run one iteration of the main loop."""
        if not self._serial.connected:
            if self._serial.try_reconnect():
                logger.info("Serial reconnected")
            return

        try:
            for frame in self._serial.read_frames():
                self._mqtt.publish_frame(frame)
        except SerialDisconnected:
            logger.warning("Serial connection lost, will attempt reconnection")
            self.log_stats("link lost")
            return

        if time.monotonic() - self._last_stats_time >= STATS_INTERVAL:
            self.log_stats("periodic")

    def run(self) -> None:
        """Run until SIGINT or SIGTERM."""
        signal.signal(signal.SIGINT, self.request_shutdown)
        signal.signal(signal.SIGTERM, self.request_shutdown)

        # A failed first open is retried with backoff by poll()
        self._serial.try_open()
        self._mqtt.connect()

        logger.info(
            "Bridge running: device='%s', publishing to '%s/%s/rx/<message_id>'",
            self._config.device.id,
            self._config.mqtt.root_topic,
            self._config.device.id,
        )

        try:
            while not self._shutdown_requested:
                self.poll()
        finally:
            self._mqtt.disconnect()
            self._serial.close()
            self.log_stats("stopped")
            logger.info("Bridge stopped")


if __name__ == "__main__":
    main()
