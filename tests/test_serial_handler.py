import pytest
import serial

from ping_bridge import serial_handler
from ping_bridge.config import SerialConfig
from ping_bridge.protocol import encode_frame
from ping_bridge.serial_handler import SerialDisconnected, SerialHandler


class FakeSerial:
    instances = []

    def __init__(self, port, baudrate, timeout):
        self.port = port
        self.baudrate = baudrate
        self.is_open = True
        self.rx = bytearray()
        self.written = []
        self.fail_reads = False
        FakeSerial.instances.append(self)

    @property
    def in_waiting(self):
        return len(self.rx)

    def read(self, n):
        if self.fail_reads:
            raise serial.SerialException("device unplugged")
        data = bytes(self.rx[:n])
        del self.rx[:n]
        return data

    def write(self, data):
        self.written.append(bytes(data))
        return len(data)

    def close(self):
        self.is_open = False


@pytest.fixture
def handler(monkeypatch):
    FakeSerial.instances = []
    monkeypatch.setattr(serial_handler.serial, "Serial", FakeSerial)
    monkeypatch.setattr(serial_handler.time, "sleep", lambda seconds: None)
    h = SerialHandler(SerialConfig(port="/dev/null", baud=57600), buffer_length=64)
    h.open()
    return h


def test_open_uses_config(handler):
    port = FakeSerial.instances[-1]
    assert handler.connected
    assert port.port == "/dev/null"
    assert port.baudrate == 57600


def test_read_frames_across_reads(handler):
    port = FakeSerial.instances[-1]
    f1 = encode_frame(1, b"abc")
    f2 = encode_frame(2, b"")

    port.rx.extend(b"\x00" + f1[:6])
    assert handler.read_frames() == []

    port.rx.extend(f1[6:] + f2)
    assert handler.read_frames() == [f1, f2]
    assert handler.stats == (2, 0)


def test_bad_checksum_counted(handler, caplog):
    port = FakeSerial.instances[-1]
    bad = bytearray(encode_frame(1, b"abc"))
    bad[-1] ^= 0x01
    port.rx.extend(bad)

    assert handler.read_frames() == []
    assert handler.stats == (0, 1)
    assert "bad checksum" in caplog.text


def test_several_bad_frames_in_one_read(handler, caplog):
    port = FakeSerial.instances[-1]
    good = encode_frame(4, b"ok")
    bad = bytearray(encode_frame(1, b"abc"))
    bad[-2] ^= 0x80
    port.rx.extend(bytes(bad) + good + bytes(bad))

    assert handler.read_frames() == [good]
    assert handler.stats == (1, 2)
    assert "Dropped 2 frame(s) with bad checksum" in caplog.text


def test_read_error_raises_disconnected(handler):
    port = FakeSerial.instances[-1]
    port.fail_reads = True

    with pytest.raises(SerialDisconnected):
        handler.read_frames()
    assert not handler.connected
    assert not port.is_open
    assert handler.read_frames() == []


def test_reconnect_after_read_error_leaves_one_port_open(handler):
    old_port = FakeSerial.instances[-1]
    old_port.fail_reads = True
    with pytest.raises(SerialDisconnected):
        handler.read_frames()

    assert handler.try_reconnect()

    assert not old_port.is_open
    assert [p for p in FakeSerial.instances if p.is_open] == [FakeSerial.instances[-1]]


def test_close_error_is_logged_not_raised(handler, caplog):
    port = FakeSerial.instances[-1]

    def broken_close():
        raise serial.SerialException("I/O error")

    port.close = broken_close
    handler.close()

    assert not handler.connected
    assert "Error closing serial port" in caplog.text


def test_reconnect_drops_partial_frame_keeps_counters(handler):
    port = FakeSerial.instances[-1]
    frame = encode_frame(3, b"xyz")
    port.rx.extend(frame + frame[:5])
    handler.read_frames()

    assert handler.try_reconnect()
    new_port = FakeSerial.instances[-1]
    assert new_port is not port

    new_port.rx.extend(frame)
    assert handler.read_frames() == [frame]
    assert handler.stats == (2, 0)


def test_reconnect_failure_backs_off(handler, monkeypatch):
    def refuse(**kwargs):
        raise serial.SerialException("no such port")

    monkeypatch.setattr(serial_handler.serial, "Serial", refuse)

    assert not handler.try_reconnect()
    assert not handler.try_reconnect()
    assert handler._reconnect_delay == 4


def test_write_frame(handler):
    frame = encode_frame(5, b"cmd")
    handler.write_frame(frame)
    assert FakeSerial.instances[-1].written == [frame]


def test_write_when_closed_is_ignored(handler):
    port = FakeSerial.instances[-1]
    handler.close()
    handler.write_frame(encode_frame(5))
    assert port.written == []


def test_try_open_failure_backs_off_without_sleeping(monkeypatch):
    def refuse(**kwargs):
        raise serial.SerialException("no such port")

    def no_sleep(seconds):
        raise AssertionError("try_open must not sleep")

    monkeypatch.setattr(serial_handler.serial, "Serial", refuse)
    monkeypatch.setattr(serial_handler.time, "sleep", no_sleep)
    h = SerialHandler(SerialConfig(port="/dev/missing"))

    assert not h.try_open()
    assert not h.connected
    assert h._reconnect_delay == 2
