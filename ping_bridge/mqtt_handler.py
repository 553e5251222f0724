"""MQTT handler for the Ping device bridge."""

import base64
import binascii
import logging
from collections.abc import Callable

import paho.mqtt.client as mqtt

from .config import DeviceConfig, MqttConfig
from .protocol import HEADER_SIZE, encode_frame

logger = logging.getLogger(__name__)

# Reconnection settings
RECONNECT_DELAY_MIN = 1  # seconds
RECONNECT_DELAY_MAX = 120  # seconds


class MqttHandler:
    """Publishes device frames to MQTT and forwards commands back."""

    def __init__(
        self,
        config: MqttConfig,
        device: DeviceConfig,
        on_frame: Callable[[bytes], None],
    ) -> None:
        self._config = config
        self._device = device
        self._on_frame = on_frame
        self._connected = False

        client_id = f"ping-bridge-{device.id}"
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect
        self._client.on_message = self._handle_message

        # Enable automatic reconnection with exponential backoff
        self._client.reconnect_delay_set(RECONNECT_DELAY_MIN, RECONNECT_DELAY_MAX)

        if config.username:
            self._client.username_pw_set(config.username, config.password)

    @property
    def connected(self) -> bool:
        """Return True if currently connected to broker."""
        return self._connected

    @property
    def _base_topic(self) -> str:
        return f"{self._config.root_topic}/{self._device.id}"

    @property
    def _subscribe_pattern(self) -> str:
        """Topic pattern for commands to send to the device."""
        return f"{self._base_topic}/tx/+"

    def rx_topic(self, message_id: int) -> str:
        """Topic for publishing frames received from the device."""
        return f"{self._base_topic}/rx/{message_id}"

    def connect(self) -> None:
        """Connect to MQTT broker and start network loop."""
        logger.info(
            "Connecting to MQTT broker %s:%d",
            self._config.broker,
            self._config.port,
        )
        self._client.connect(self._config.broker, self._config.port)
        self._client.loop_start()

    def disconnect(self) -> None:
        """Stop network loop and disconnect from broker."""
        self._client.loop_stop()
        self._client.disconnect()
        logger.info("Disconnected from MQTT broker")

    def publish_frame(self, frame: bytes) -> None:
        """Publish a verified frame received from serial to MQTT."""
        if not self._connected:
            logger.debug("Cannot publish: not connected to MQTT broker")
            return

        if len(frame) < HEADER_SIZE:
            logger.warning("Refusing to publish truncated frame: %d bytes", len(frame))
            return

        message_id = int.from_bytes(frame[4:6], "little")
        topic = self.rx_topic(message_id)
        encoded = base64.b64encode(frame).decode("ascii")
        self._client.publish(topic, encoded)
        logger.debug("Published frame to %s: %d bytes", topic, len(frame))

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: mqtt.ConnectFlags,
        reason_code: mqtt.ReasonCode,
        properties: mqtt.Properties | None,
    ) -> None:
        if reason_code == 0:
            self._connected = True
            logger.info("Connected to MQTT broker")
            # Resubscribe on every connect (handles reconnection)
            client.subscribe(self._subscribe_pattern)
            logger.info("Subscribed to %s", self._subscribe_pattern)
        else:
            self._connected = False
            logger.error("MQTT connection failed: %s", reason_code)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: object,
        disconnect_flags: mqtt.DisconnectFlags,
        reason_code: mqtt.ReasonCode,
        properties: mqtt.Properties | None,
    ) -> None:
        self._connected = False
        if reason_code == 0:
            logger.info("Disconnected from MQTT broker (clean)")
        else:
            logger.warning(
                "Disconnected from MQTT broker: %s (will reconnect)",
                reason_code,
            )

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: object,
        msg: mqtt.MQTTMessage,
    ) -> None:
        # Extract message id from topic: {root}/{device_id}/tx/{message_id}
        parts = msg.topic.split("/")
        if len(parts) < 2 or parts[-2] != "tx":
            return

        try:
            message_id = int(parts[-1])
        except ValueError:
            logger.warning("Ignoring command with invalid message id: %s", msg.topic)
            return

        try:
            payload = base64.b64decode(msg.payload, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Failed to decode base64 payload from %s", msg.topic)
            return

        try:
            frame = encode_frame(
                message_id,
                payload,
                src_device_id=self._device.src_id,
                dst_device_id=self._device.dst_id,
            )
        except ValueError as e:
            logger.warning("Cannot encode command from %s: %s", msg.topic, e)
            return

        logger.debug(
            "Received command %d for device %d: %d bytes",
            message_id,
            self._device.dst_id,
            len(payload),
        )
        self._on_frame(frame)
