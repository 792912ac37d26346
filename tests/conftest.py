"""Shared fixtures: an in-memory serial port behind a real SerialTransport."""

from typing import List, Optional

import pytest

from bouffalo_flasher.protocol.transport import SerialTransport


class FakeSerial:
    """
    Stand-in for serial.Serial.

    Every write() is recorded; the next scripted reply (if any) is then
    queued for reading, so replies only appear after the request went out.
    """

    def __init__(self, replies: Optional[List[bytes]] = None, baudrate: int = 500_000):
        self.replies = list(replies or [])
        self.writes: List[bytes] = []
        self.rx = bytearray()
        self.is_open = True
        self.baudrate = baudrate
        self.timeout = 2.0
        self.write_timeout = 2.0
        self.timeout_history: List[float] = []
        self.rts = False
        self.dtr = False

    def __setattr__(self, name, value):
        if name == "timeout" and "timeout_history" in self.__dict__:
            self.timeout_history.append(value)
        super().__setattr__(name, value)

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        if self.replies:
            self.rx.extend(self.replies.pop(0))
        return len(data)

    def read(self, size: int = 1) -> bytes:
        out = bytes(self.rx[:size])
        del self.rx[:size]
        return out

    def reset_input_buffer(self) -> None:
        self.rx.clear()

    def reset_output_buffer(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


def make_transport(replies=None, baudrate: int = 500_000) -> SerialTransport:
    transport = SerialTransport("/dev/fake", baudrate=baudrate, timeout=2.0)
    transport.ser = FakeSerial(replies, baudrate=baudrate)
    return transport


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_transport():
    return make_transport


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def serial_port(monkeypatch):
    """
    Replace serial.Serial with a FakeSerial scripted with `replies`.

    Usage: fake = serial_port([b"OK", ...]); the same FakeSerial is handed
    to every SerialTransport opened afterwards.
    """
    import serial

    def install(replies=None) -> FakeSerial:
        fake = FakeSerial(replies)

        def _open(*args, **kwargs):
            fake.baudrate = kwargs.get("baudrate", fake.baudrate)
            fake.is_open = True
            return fake

        monkeypatch.setattr(serial, "Serial", _open)
        return fake

    return install
