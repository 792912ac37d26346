"""
BL60x Serial Transport Layer

Handles low-level serial communication with the BL60x boot ROM and the
eflash loader.

This module provides:
- Serial port initialization and configuration (8N1, no flow control)
- Exact-length reads and checked writes
- Scoped timeout overrides for long flash operations
- The RTS/DTR pulse sequence that drops the chip into UART boot
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator, List, Optional

import serial
import serial.tools.list_ports

from bouffalo_flasher.errors import TransportError

logger = logging.getLogger(__name__)

# Boot ROM UART settings
ROM_BAUD_RATE = 500_000
DEFAULT_TIMEOUT = 2.0


class SerialTransport:
    """
    Serial byte stream to one BL60x device.

    Example:
        transport = SerialTransport(port="/dev/ttyUSB0")
        transport.open()
        transport.reset_into_bootloader()
        session = handshake(transport, Stage.ROM)
        ...
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = ROM_BAUD_RATE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 500000, the boot ROM rate)
            timeout: Read/write timeout in seconds (default 2.0)
        """
        self.port = port
        self._baudrate = baudrate
        self._timeout = timeout
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open serial port and configure it for the boot ROM.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self._baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self._timeout,
                write_timeout=self._timeout,
                rtscts=False,
                dsrdtr=False,
                xonxoff=False,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self._baudrate} bps (timeout={self._timeout}s)"
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def _require_open(self) -> serial.Serial:
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
        return self.ser

    @property
    def baudrate(self) -> int:
        return self._baudrate

    @baudrate.setter
    def baudrate(self, value: int) -> None:
        ser = self._require_open()
        try:
            ser.baudrate = value
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Cannot set baud rate to {value}: {e}")
        self._baudrate = value
        logger.debug(f"Baud rate set to {value}")

    @property
    def timeout(self) -> float:
        return self._timeout

    @timeout.setter
    def timeout(self, value: float) -> None:
        ser = self._require_open()
        try:
            ser.timeout = value
            ser.write_timeout = value
        except (serial.SerialException, ValueError) as e:
            raise TransportError(f"Cannot set timeout to {value}s: {e}")
        self._timeout = value

    @contextmanager
    def timeout_scope(self, seconds: float) -> Iterator[None]:
        """
        Temporarily widen the read/write timeout.

        The previous timeout is restored on every exit path, including
        exceptions raised inside the block.
        """
        previous = self._timeout
        self.timeout = seconds
        try:
            yield
        finally:
            self.timeout = previous

    def write(self, data: bytes) -> None:
        """
        Send raw bytes to the device.

        Raises:
            TransportError: If write fails or is incomplete
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")
        if written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")
        logger.debug(f">>> {bytes(data[:64]).hex().upper()}{'...' if len(data) > 64 else ''}")

    def read(self, length: int) -> bytes:
        """
        Receive exactly `length` bytes.

        Raises:
            TransportError: On serial failure or if the timeout expires first
        """
        ser = self._require_open()
        if length <= 0:
            return b""
        out = bytearray()
        try:
            while len(out) < length:
                chunk = ser.read(length - len(out))
                if not chunk:
                    raise TransportError(
                        f"Timeout reading {length} bytes (got {len(out)}: {bytes(out).hex().upper()})"
                    )
                out.extend(chunk)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        logger.debug(f"<<< {bytes(out[:64]).hex().upper()}{'...' if length > 64 else ''}")
        return bytes(out)

    def drain_input(self) -> bytes:
        """
        Clear any pending data in the receive buffer (with short timeout).

        Returns:
            Bytes that were drained (for logging)
        """
        ser = self._require_open()
        old_timeout = ser.timeout
        try:
            ser.timeout = 0.1
            junk = ser.read(10000)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}")
        finally:
            ser.timeout = old_timeout
        if junk:
            logger.debug(f"Drained {len(junk)} bytes of junk from buffer")
        return junk

    def reset_into_bootloader(self) -> None:
        """
        Pulse RTS/DTR so that boards wired like the vendor dev kits reset
        into the UART boot ROM.

        Sequence: handshake preamble (RTS then DTR), then two RTS reset
        pulses.
        """
        ser = self._require_open()
        try:
            ser.rts = True
            time.sleep(0.2)
            ser.rts = False
            time.sleep(0.05)
            ser.rts = True
            ser.dtr = True
            time.sleep(0.1)
            ser.dtr = False
            time.sleep(0.1)

            ser.rts = False
            time.sleep(0.2)
            for _ in range(2):
                ser.rts = True
                time.sleep(0.005)
                ser.rts = False
                time.sleep(0.1)
                ser.rts = True
                time.sleep(0.005)
                ser.rts = False
                time.sleep(0.005)
        except serial.SerialException as e:
            raise TransportError(f"Cannot toggle RTS/DTR on {self.port}: {e}")
        logger.debug("Reset pulse sequence sent")


def list_ports() -> List:
    """Return available serial ports."""
    return list(serial.tools.list_ports.comports())


def open_serial(port: str, baudrate: int = ROM_BAUD_RATE, timeout: float = DEFAULT_TIMEOUT) -> SerialTransport:
    """
    Open a transport connection.

    Returns:
        SerialTransport instance (already open)
    """
    transport = SerialTransport(port, baudrate, timeout)
    transport.open()
    return transport
