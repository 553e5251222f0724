"""Configuration loading and validation."""

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .protocol import DEFAULT_BUFFER_LENGTH, FRAME_OVERHEAD, MAX_PAYLOAD_LENGTH


@dataclass
class MqttConfig:
    broker: str
    port: int = 1883
    username: str | None = None
    password: str | None = None
    root_topic: str = "ping"


@dataclass
class DeviceConfig:
    id: str
    src_id: int = 0  # our id on the wire
    dst_id: int = 0  # target device id for outgoing frames


@dataclass
class SerialConfig:
    port: str
    baud: int = 115200


@dataclass
class ParserConfig:
    buffer_length: int = DEFAULT_BUFFER_LENGTH


@dataclass
class Config:
    mqtt: MqttConfig
    device: DeviceConfig
    serial: SerialConfig
    parser: ParserConfig = field(default_factory=ParserConfig)


def _int_in_range(value, low: int, high: int) -> bool:
    # YAML booleans load as bool, a subclass of int
    return isinstance(value, int) and not isinstance(value, bool) and low <= value <= high


def _validate_device_ids(device_raw: dict, errors: list[str]) -> None:
    for key in ("src_id", "dst_id"):
        if not _int_in_range(device_raw.get(key, 0), 0, 0xFF):
            errors.append(f"device.{key} must be an integer between 0 and 255")


def _validate_parser(parser_raw: dict, errors: list[str]) -> None:
    value = parser_raw.get("buffer_length", DEFAULT_BUFFER_LENGTH)
    upper = MAX_PAYLOAD_LENGTH + FRAME_OVERHEAD
    if not _int_in_range(value, FRAME_OVERHEAD, upper):
        errors.append(
            f"parser.buffer_length must be an integer between {FRAME_OVERHEAD} and {upper}"
        )


def load_config(path: Path) -> Config:
    """Load and validate configuration from YAML file."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    errors = []

    # Validate required sections
    if "mqtt" not in raw:
        errors.append("missing 'mqtt' section")
    elif "broker" not in raw["mqtt"]:
        errors.append("mqtt.broker is required")

    if "device" not in raw:
        errors.append("missing 'device' section")
    elif "id" not in raw["device"]:
        errors.append("device.id is required")
    else:
        _validate_device_ids(raw["device"], errors)

    if "serial" not in raw:
        errors.append("missing 'serial' section")
    elif "port" not in raw["serial"]:
        errors.append("serial.port is required")

    parser_raw = raw.get("parser") or {}
    _validate_parser(parser_raw, errors)

    if errors:
        raise ValueError(f"configuration validation failed: {'; '.join(errors)}")

    mqtt_raw = raw["mqtt"]
    mqtt = MqttConfig(
        broker=mqtt_raw["broker"],
        port=mqtt_raw.get("port", 1883),
        username=mqtt_raw.get("username"),
        password=mqtt_raw.get("password"),
        root_topic=mqtt_raw.get("root_topic", "ping"),
    )

    device_raw = raw["device"]
    device = DeviceConfig(
        id=str(device_raw["id"]),
        src_id=device_raw.get("src_id", 0),
        dst_id=device_raw.get("dst_id", 0),
    )

    serial_raw = raw["serial"]
    serial = SerialConfig(
        port=serial_raw["port"],
        baud=serial_raw.get("baud", 115200),
    )

    parser = ParserConfig(
        buffer_length=parser_raw.get("buffer_length", DEFAULT_BUFFER_LENGTH),
    )

    return Config(mqtt=mqtt, device=device, serial=serial, parser=parser)
