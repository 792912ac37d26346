"""
BL60x ISP command vocabulary.

Two framings exist, selected by which firmware stage is running:

    Rom (masked boot ROM):
        [ cmd_id | 0x00 | len_lo | len_hi | payload ... ]

    EFlashLoader (flashing agent loaded into RAM):
        [ cmd_id | checksum | len_lo | len_hi | payload ... ]
        checksum = sum(frame[2:]) & 0xFF   (length field + payload)

Every reply starts with a 2-byte marker:

    b"OK"                         success
    b"OK" | len_u16_le | data     success, for commands that return data
    b"FL" | code_u16_le           failure, see device_errors.py

The vocabulary is closed: each stage has a fixed set of command
dataclasses, each knowing its id, stage, reply shape and encoding.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Protocol

from bouffalo_flasher.errors import DeviceError, UnexpectedReplyError, ValidationError
from bouffalo_flasher.firmware_image import (
    BOOT_HEADER_LEN,
    Segment,
    VirtAddr,
    segment_header_bytes,
)
from bouffalo_flasher.utils.checksum import checksum8

# Reply markers
REPLY_OK = b"OK"
REPLY_FAIL = b"FL"

# Transfer limits
ROM_SEGMENT_CHUNK_SIZE = 4092
EFLASH_CHUNK_SIZE = 8192
MAX_FRAME_PAYLOAD = 0xFFFF

BOOT_INFO_LEN = 20
SHA256_LEN = 32


class Stage(Enum):
    """Which firmware is answering on the UART."""

    ROM = "rom"
    EFLASH_LOADER = "eflash_loader"


class Reply(Enum):
    """Shape of a successful reply."""

    STATUS = "status"  # b"OK" only
    DATA = "data"  # b"OK" + length-prefixed payload


class Reader(Protocol):
    def read(self, length: int) -> bytes: ...


def _read_exact(reader: Reader, n: int) -> bytes:
    data = reader.read(n)
    if len(data) != n:
        raise UnexpectedReplyError(data, f"Short reply: expected {n} bytes, got {len(data)}")
    return data


def encode_rom_frame(command_id: int, payload: bytes = b"") -> bytes:
    """Build a boot ROM frame (no checksum)."""
    if len(payload) > MAX_FRAME_PAYLOAD:
        raise ValidationError(f"Payload too large for uint16 length: {len(payload)}")
    return bytes([command_id, 0x00]) + struct.pack("<H", len(payload)) + payload


def encode_eflash_frame(command_id: int, payload: bytes = b"") -> bytes:
    """Build an eflash loader frame with its 8-bit sum checksum."""
    if len(payload) > MAX_FRAME_PAYLOAD:
        raise ValidationError(f"Payload too large for uint16 length: {len(payload)}")
    body = struct.pack("<H", len(payload)) + payload
    return bytes([command_id, checksum8(body)]) + body


def read_status(reader: Reader) -> None:
    """
    Read a 2-byte status marker.

    Raises:
        DeviceError: On b"FL" + code
        UnexpectedReplyError: On anything other than OK/FL
    """
    marker = _read_exact(reader, 2)
    if marker == REPLY_OK:
        return
    if marker == REPLY_FAIL:
        code = struct.unpack("<H", _read_exact(reader, 2))[0]
        raise DeviceError(code)
    raise UnexpectedReplyError(marker)


def read_data(reader: Reader) -> bytes:
    """Read a status marker followed by a length-prefixed payload."""
    read_status(reader)
    length = struct.unpack("<H", _read_exact(reader, 2))[0]
    return _read_exact(reader, length)


@dataclass(frozen=True)
class BootInfo:
    """Boot ROM version and OTP flags returned by GetBootInfo."""

    version: int
    otp_info: bytes

    @classmethod
    def from_payload(cls, payload: bytes) -> "BootInfo":
        if len(payload) != BOOT_INFO_LEN:
            raise UnexpectedReplyError(
                payload,
                f"Boot info must be {BOOT_INFO_LEN} bytes, got {len(payload)}",
            )
        version = struct.unpack("<I", payload[:4])[0]
        return cls(version=version, otp_info=bytes(payload[4:20]))

    @classmethod
    def decode(cls, reader: Reader) -> "BootInfo":
        return cls.from_payload(read_data(reader))


class _Command:
    COMMAND_ID: ClassVar[int]
    STAGE: ClassVar[Stage]
    REPLY: ClassVar[Reply] = Reply.STATUS

    def payload(self) -> bytes:
        return b""

    def encode(self) -> bytes:
        if self.STAGE is Stage.ROM:
            return encode_rom_frame(self.COMMAND_ID, self.payload())
        return encode_eflash_frame(self.COMMAND_ID, self.payload())


# --- Boot ROM commands ---


@dataclass(frozen=True)
class GetBootInfo(_Command):
    COMMAND_ID: ClassVar[int] = 0x10
    STAGE: ClassVar[Stage] = Stage.ROM
    REPLY: ClassVar[Reply] = Reply.DATA


@dataclass(frozen=True)
class LoadBootHeader(_Command):
    COMMAND_ID: ClassVar[int] = 0x11
    STAGE: ClassVar[Stage] = Stage.ROM

    boot_header: bytes

    def __post_init__(self) -> None:
        if len(self.boot_header) != BOOT_HEADER_LEN:
            raise ValidationError(
                f"Boot header must be {BOOT_HEADER_LEN} bytes, got {len(self.boot_header)}"
            )

    def payload(self) -> bytes:
        return self.boot_header


@dataclass(frozen=True)
class LoadSegmentHeader(_Command):
    """The ROM echoes the 16-byte header back as a data reply."""

    COMMAND_ID: ClassVar[int] = 0x17
    STAGE: ClassVar[Stage] = Stage.ROM
    REPLY: ClassVar[Reply] = Reply.DATA

    dest_addr: VirtAddr
    size: int
    reserved: int = 0

    @classmethod
    def for_segment(cls, segment: Segment) -> "LoadSegmentHeader":
        return cls(dest_addr=segment.dest_addr, size=segment.size, reserved=segment.reserved)

    def payload(self) -> bytes:
        return segment_header_bytes(int(self.dest_addr), self.size, self.reserved)


@dataclass(frozen=True)
class LoadSegment(_Command):
    """One chunk of segment data; the engine sends at most ROM_SEGMENT_CHUNK_SIZE."""

    COMMAND_ID: ClassVar[int] = 0x18
    STAGE: ClassVar[Stage] = Stage.ROM

    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) > MAX_FRAME_PAYLOAD:
            raise ValidationError(
                f"Segment chunk too large: {len(self.data)} bytes (must be < 65536)"
            )

    def payload(self) -> bytes:
        return self.data


@dataclass(frozen=True)
class CheckImage(_Command):
    COMMAND_ID: ClassVar[int] = 0x19
    STAGE: ClassVar[Stage] = Stage.ROM


@dataclass(frozen=True)
class RunImage(_Command):
    COMMAND_ID: ClassVar[int] = 0x1A
    STAGE: ClassVar[Stage] = Stage.ROM


# --- Eflash loader commands ---


@dataclass(frozen=True)
class EraseFlash(_Command):
    """Erase [start, end] inclusive; the device snaps to 4 KiB sectors."""

    COMMAND_ID: ClassVar[int] = 0x30
    STAGE: ClassVar[Stage] = Stage.EFLASH_LOADER

    start: int
    end: int

    def payload(self) -> bytes:
        return struct.pack("<II", self.start, self.end)


@dataclass(frozen=True)
class WriteFlash(_Command):
    COMMAND_ID: ClassVar[int] = 0x31
    STAGE: ClassVar[Stage] = Stage.EFLASH_LOADER

    addr: int
    data: bytes

    def __post_init__(self) -> None:
        if len(self.data) > EFLASH_CHUNK_SIZE:
            raise ValidationError(
                f"Flash write chunk too large: {len(self.data)} bytes (max {EFLASH_CHUNK_SIZE})"
            )

    def payload(self) -> bytes:
        return struct.pack("<I", self.addr) + self.data


@dataclass(frozen=True)
class ReadFlash(_Command):
    COMMAND_ID: ClassVar[int] = 0x32
    STAGE: ClassVar[Stage] = Stage.EFLASH_LOADER
    REPLY: ClassVar[Reply] = Reply.DATA

    addr: int
    length: int

    def __post_init__(self) -> None:
        if not 0 < self.length <= EFLASH_CHUNK_SIZE:
            raise ValidationError(
                f"Flash read length must be 1..{EFLASH_CHUNK_SIZE}, got {self.length}"
            )

    def payload(self) -> bytes:
        return struct.pack("<II", self.addr, self.length)


@dataclass(frozen=True)
class FlashSha256(_Command):
    COMMAND_ID: ClassVar[int] = 0x3D
    STAGE: ClassVar[Stage] = Stage.EFLASH_LOADER
    REPLY: ClassVar[Reply] = Reply.DATA

    addr: int
    length: int

    def payload(self) -> bytes:
        return struct.pack("<II", self.addr, self.length)


ROM_COMMANDS = (GetBootInfo, LoadBootHeader, LoadSegmentHeader, LoadSegment, CheckImage, RunImage)
EFLASH_COMMANDS = (EraseFlash, WriteFlash, ReadFlash, FlashSha256)
