"""
Firmware image records for BL60x boot headers.

The boot ROM validates a fixed-layout 176-byte boot header before it runs
anything. The header embeds two smaller records, each framed by a 4-byte
ASCII magic and followed by a CRC32 of its body:

    FlashConfig   "FCFG" | 84-byte body | crc32
    ClockConfig   "PCFG" |  8-byte body | crc32

    BootHeader    "BFNP"/"BFAP" | revision | FlashConfig | ClockConfig |
                  boot_config | image_segment_info | entry_point |
                  image_start | hash[32] | reserved[8] | crc32

All multi-byte integers are little-endian. Records are parsed and written
field by field through `struct`, so `parse(write(x)) == x` holds for every
record whose stored checksum matches its body.

Parsing reads the stored CRC32 but never verifies it (existing loader
blobs ship with stale or zeroed checksums); use `crc_valid()` when a
check is wanted. Writing always recomputes it.
"""

from __future__ import annotations

import hashlib
import io
import logging
import struct
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import BinaryIO, List, Optional, Tuple

from bouffalo_flasher.errors import (
    FormatError,
    InvalidMagicError,
    MissingFlashConfigError,
    TruncatedInputError,
    ValidationError,
)
from bouffalo_flasher.utils.checksum import crc32

logger = logging.getLogger(__name__)

FLASH_CONFIG_MAGIC = b"FCFG"
CLOCK_CONFIG_MAGIC = b"PCFG"
FLASH_CONFIG_BODY_LEN = 84
CLOCK_CONFIG_BODY_LEN = 8
BOOT_HEADER_LEN = 176
SEGMENT_HEADER_LEN = 16

# Entry point used when the builder is not given one (start of TCM/ITCM).
DEFAULT_ENTRY_POINT = 0x2100_0000

_U32 = struct.Struct("<I")


def _read_exact(reader: BinaryIO, n: int, what: str) -> bytes:
    data = reader.read(n)
    if data is None or len(data) != n:
        got = 0 if data is None else len(data)
        raise TruncatedInputError(f"{what}: expected {n} bytes, got {got}")
    return bytes(data)


def _read_u32(reader: BinaryIO, what: str) -> int:
    return _U32.unpack(_read_exact(reader, 4, what))[0]


@dataclass(frozen=True)
class VirtAddr:
    """
    A 32-bit address on the target.

    No arithmetic; convert with `int(addr)` and `VirtAddr(n)`.
    """

    value: int

    def __post_init__(self) -> None:
        if not isinstance(self.value, int) or isinstance(self.value, bool):
            raise ValidationError(f"VirtAddr needs an int, got {type(self.value).__name__}")
        if not 0 <= self.value <= 0xFFFFFFFF:
            raise ValidationError(f"VirtAddr out of 32-bit range: {self.value:#x}")

    def __int__(self) -> int:
        return self.value

    def __str__(self) -> str:
        return f"0x{self.value:08X}"


class Cpu(Enum):
    """Which core a boot header targets, encoded by its magic."""

    CPU0 = b"BFNP"
    CPU1 = b"BFAP"

    @property
    def magic(self) -> bytes:
        return self.value

    @classmethod
    def from_magic(cls, magic: bytes) -> "Cpu":
        for cpu in cls:
            if cpu.value == magic:
                return cpu
        raise InvalidMagicError(magic)


def _u8():
    return field(default=0, metadata={"fmt": "B"})


def _u16():
    return field(default=0, metadata={"fmt": "H"})


def _buf4():
    return field(default=bytes(4), metadata={"fmt": "4s"})


def _body_struct(cls) -> Tuple[struct.Struct, Tuple[str, ...]]:
    layout = [f for f in fields(cls) if "fmt" in f.metadata]
    fmt = "<" + "".join(f.metadata["fmt"] for f in layout)
    return struct.Struct(fmt), tuple(f.name for f in layout)


@dataclass(frozen=True)
class FlashConfig:
    """
    SPI NOR flash parameters (command set, dummy clocks, register bits, timing).

    Opaque configuration: the flasher never interprets these values, it only
    guarantees every byte survives decode/encode. Field order is the wire
    order.
    """

    io_mode: int = _u8()
    continuous_read_support: int = _u8()
    clock_delay: int = _u8()
    clock_invert: int = _u8()
    reset_enable_cmd: int = _u8()
    reset_cmd: int = _u8()
    reset_continuous_read_cmd: int = _u8()
    reset_continuous_read_cmd_size: int = _u8()
    jedec_id_cmd: int = _u8()
    jedec_id_cmd_dummy_clock: int = _u8()
    qpi_jedec_id_cmd: int = _u8()
    qpi_jedec_id_cmd_dummy_clock: int = _u8()
    sector_size: int = _u8()  # in KiB
    manufacturer_id: int = _u8()
    page_size: int = _u16()
    chip_erase_cmd: int = _u8()
    sector_erase_cmd: int = _u8()
    block_erase_32k_cmd: int = _u8()
    block_erase_64k_cmd: int = _u8()
    write_enable_cmd: int = _u8()
    page_program_cmd: int = _u8()
    qio_page_program_cmd: int = _u8()
    qio_page_program_address_mode: int = _u8()
    fast_read_cmd: int = _u8()
    fast_read_cmd_dummy_clock: int = _u8()
    qpi_fast_read_cmd: int = _u8()
    qpi_fast_read_cmd_dummy_clock: int = _u8()
    fast_read_dual_output_cmd: int = _u8()
    fast_read_dual_output_cmd_dummy_clock: int = _u8()
    fast_read_dual_io_cmd: int = _u8()
    fast_read_dual_io_cmd_dummy_clock: int = _u8()
    fast_read_quad_output_cmd: int = _u8()
    fast_read_quad_output_cmd_dummy_clock: int = _u8()
    fast_read_quad_io_cmd: int = _u8()
    fast_read_quad_io_cmd_dummy_clock: int = _u8()
    qpi_fast_read_quad_io_cmd: int = _u8()
    qpi_fast_read_quad_io_cmd_dummy_clock: int = _u8()
    qpi_program_cmd: int = _u8()
    volatile_register_write_enable_cmd: int = _u8()
    write_enable_reg_index: int = _u8()
    quad_mode_enable_reg_index: int = _u8()
    busy_status_reg_index: int = _u8()
    write_enable_bit_pos: int = _u8()
    quad_enable_bit_pos: int = _u8()
    busy_status_bit_pos: int = _u8()
    write_enable_reg_write_len: int = _u8()
    write_enable_reg_read_len: int = _u8()
    quad_enable_reg_write_len: int = _u8()
    quad_enable_reg_read_len: int = _u8()
    release_power_down_cmd: int = _u8()
    busy_status_reg_read_len: int = _u8()
    read_reg_cmd_buffer: bytes = _buf4()
    write_reg_cmd_buffer: bytes = _buf4()
    enter_qpi_cmd: int = _u8()
    exit_qpi_cmd: int = _u8()
    continuous_read_mode_cfg: int = _u8()
    continuous_read_mode_exit_cfg: int = _u8()
    enable_burst_wrap_cmd: int = _u8()
    enable_burst_wrap_cmd_dummy_clock: int = _u8()
    burst_wrap_data_mode: int = _u8()
    burst_wrap_data: int = _u8()
    disable_burst_wrap_cmd: int = _u8()
    disable_burst_wrap_cmd_dummy_clock: int = _u8()
    disable_burst_wrap_data_mode: int = _u8()
    disable_burst_wrap_data: int = _u8()
    sector_erase_time_4k: int = _u16()  # ms
    sector_erase_time_32k: int = _u16()
    sector_erase_time_64k: int = _u16()
    page_program_time: int = _u16()
    chip_erase_time: int = _u16()
    power_down_delay: int = _u8()
    quad_enable_data: int = _u8()
    crc32: int = 0

    @classmethod
    def parse(cls, reader: BinaryIO) -> "FlashConfig":
        magic = _read_exact(reader, 4, "flash config magic")
        if magic != FLASH_CONFIG_MAGIC:
            raise InvalidMagicError(magic, FLASH_CONFIG_MAGIC)
        body = _read_exact(reader, FLASH_CONFIG_BODY_LEN, "flash config body")
        values = _FLASH_CONFIG_BODY.unpack(body)
        checksum = _read_u32(reader, "flash config crc32")
        return cls(**dict(zip(_FLASH_CONFIG_NAMES, values)), crc32=checksum)

    @classmethod
    def from_bytes(cls, blob: bytes) -> "FlashConfig":
        return cls.parse(io.BytesIO(blob))

    def body_bytes(self) -> bytes:
        return _FLASH_CONFIG_BODY.pack(*(getattr(self, name) for name in _FLASH_CONFIG_NAMES))

    def to_bytes(self) -> bytes:
        body = self.body_bytes()
        return FLASH_CONFIG_MAGIC + body + _U32.pack(crc32(body))

    def write(self, writer: BinaryIO) -> None:
        writer.write(self.to_bytes())

    def crc_valid(self) -> bool:
        return crc32(self.body_bytes()) == self.crc32


_FLASH_CONFIG_BODY, _FLASH_CONFIG_NAMES = _body_struct(FlashConfig)


@dataclass(frozen=True)
class ClockConfig:
    """PLL and bus clock selection applied by the boot ROM."""

    xtal_type: int = _u8()
    pll_clock: int = _u8()
    hclk_divider: int = _u8()
    bclk_divider: int = _u8()
    flash_clock_type: int = _u8()
    flash_clock_divider: int = _u8()
    reserved: bytes = field(default=bytes(2), metadata={"fmt": "2s"})
    crc32: int = 0

    @classmethod
    def parse(cls, reader: BinaryIO) -> "ClockConfig":
        magic = _read_exact(reader, 4, "clock config magic")
        if magic != CLOCK_CONFIG_MAGIC:
            raise InvalidMagicError(magic, CLOCK_CONFIG_MAGIC)
        body = _read_exact(reader, CLOCK_CONFIG_BODY_LEN, "clock config body")
        values = _CLOCK_CONFIG_BODY.unpack(body)
        checksum = _read_u32(reader, "clock config crc32")
        return cls(**dict(zip(_CLOCK_CONFIG_NAMES, values)), crc32=checksum)

    @classmethod
    def from_bytes(cls, blob: bytes) -> "ClockConfig":
        return cls.parse(io.BytesIO(blob))

    def body_bytes(self) -> bytes:
        return _CLOCK_CONFIG_BODY.pack(*(getattr(self, name) for name in _CLOCK_CONFIG_NAMES))

    def to_bytes(self) -> bytes:
        body = self.body_bytes()
        return CLOCK_CONFIG_MAGIC + body + _U32.pack(crc32(body))

    def write(self, writer: BinaryIO) -> None:
        writer.write(self.to_bytes())

    def crc_valid(self) -> bool:
        return crc32(self.body_bytes()) == self.crc32


_CLOCK_CONFIG_BODY, _CLOCK_CONFIG_NAMES = _body_struct(ClockConfig)

_BOOT_HEADER_TAIL = struct.Struct("<IIII")


@dataclass(frozen=True)
class BootHeader:
    """
    The 176-byte boot header ("Firmware") the boot ROM validates.

    Build new headers with `BootHeader.builder()`; existing ones come from
    `BootHeader.parse()`.
    """

    flash_config: FlashConfig
    clock_config: ClockConfig = field(default_factory=ClockConfig)
    cpu: Cpu = Cpu.CPU0
    revision: int = 1
    boot_config: int = 0
    image_segment_info: int = 0
    entry_point: int = DEFAULT_ENTRY_POINT
    image_start: int = 0
    hash: bytes = bytes(32)
    reserved: bytes = bytes(8)
    crc32: int = 0

    @staticmethod
    def builder() -> "BootHeaderBuilder":
        return BootHeaderBuilder()

    @classmethod
    def parse(cls, reader: BinaryIO) -> "BootHeader":
        cpu = Cpu.from_magic(_read_exact(reader, 4, "boot header magic"))
        revision = _read_u32(reader, "boot header revision")
        flash_config = FlashConfig.parse(reader)
        clock_config = ClockConfig.parse(reader)
        boot_config, image_segment_info, entry_point, image_start = _BOOT_HEADER_TAIL.unpack(
            _read_exact(reader, _BOOT_HEADER_TAIL.size, "boot header fields")
        )
        image_hash = _read_exact(reader, 32, "boot header hash")
        reserved = _read_exact(reader, 8, "boot header reserved")
        checksum = _read_u32(reader, "boot header crc32")
        return cls(
            cpu=cpu,
            revision=revision,
            flash_config=flash_config,
            clock_config=clock_config,
            boot_config=boot_config,
            image_segment_info=image_segment_info,
            entry_point=entry_point,
            image_start=image_start,
            hash=image_hash,
            reserved=reserved,
            crc32=checksum,
        )

    @classmethod
    def from_bytes(cls, blob: bytes) -> "BootHeader":
        return cls.parse(io.BytesIO(blob))

    def _unchecked_bytes(self) -> bytes:
        if len(self.hash) != 32:
            raise ValidationError(f"hash must be 32 bytes, got {len(self.hash)}")
        if len(self.reserved) != 8:
            raise ValidationError(f"reserved must be 8 bytes, got {len(self.reserved)}")
        return (
            self.cpu.magic
            + _U32.pack(self.revision)
            + self.flash_config.to_bytes()
            + self.clock_config.to_bytes()
            + _BOOT_HEADER_TAIL.pack(
                self.boot_config,
                self.image_segment_info,
                self.entry_point,
                self.image_start,
            )
            + self.hash
            + self.reserved
        )

    def to_bytes(self) -> bytes:
        buf = self._unchecked_bytes()
        return buf + _U32.pack(crc32(buf))

    def write(self, writer: BinaryIO) -> None:
        writer.write(self.to_bytes())

    def crc_valid(self) -> bool:
        return crc32(self._unchecked_bytes()) == self.crc32

    def with_image_hash(self, image: bytes) -> "BootHeader":
        """Return a copy whose hash field is the SHA-256 of `image`."""
        return replace(self, hash=hashlib.sha256(image).digest())


class BootHeaderBuilder:
    """
    Builds a fresh CPU0 boot header.

    Example:
        header = BootHeader.builder().flash_config(fc).entry_point(0x23000000).build()
    """

    def __init__(self) -> None:
        self._entry_point: Optional[int] = None
        self._flash_config: Optional[FlashConfig] = None

    def entry_point(self, entry_point: int) -> "BootHeaderBuilder":
        self._entry_point = entry_point
        return self

    def flash_config(self, flash_config: FlashConfig) -> "BootHeaderBuilder":
        self._flash_config = flash_config
        return self

    def build(self) -> BootHeader:
        if self._flash_config is None:
            raise MissingFlashConfigError()
        entry_point = DEFAULT_ENTRY_POINT if self._entry_point is None else self._entry_point
        return BootHeader(
            cpu=Cpu.CPU0,
            revision=1,
            flash_config=self._flash_config,
            clock_config=ClockConfig(),
            boot_config=0,
            image_segment_info=0,
            entry_point=entry_point,
            image_start=0,
            hash=bytes(32),
            crc32=0,
        )


_SEGMENT_HEADER = struct.Struct("<III")


def segment_header_bytes(dest_addr: int, size: int, reserved: int = 0) -> bytes:
    """16-byte segment header: dest_addr, size, reserved, crc32 of those 12 bytes."""
    head = _SEGMENT_HEADER.pack(int(dest_addr), size, reserved)
    return head + _U32.pack(crc32(head))


@dataclass(frozen=True)
class Segment:
    """One contiguous block to be loaded into device RAM."""

    dest_addr: VirtAddr
    data: bytes
    reserved: int = 0

    def __post_init__(self) -> None:
        if len(self.data) > 0xFFFFFFFF:
            raise ValidationError(f"Segment too large: {len(self.data)} bytes")
        if not 0 <= self.reserved <= 0xFFFFFFFF:
            raise ValidationError(f"reserved must fit in uint32, got {self.reserved:#x}")

    @property
    def size(self) -> int:
        return len(self.data)

    def header_bytes(self) -> bytes:
        return segment_header_bytes(int(self.dest_addr), self.size, self.reserved)


@dataclass(frozen=True)
class EFlashLoaderImage:
    """
    A RAM-bootable image as shipped for the eflash loader:
    boot header followed by (segment header, segment data) pairs.
    """

    boot_header: BootHeader
    segments: Tuple[Segment, ...]

    @classmethod
    def parse(cls, blob: bytes) -> "EFlashLoaderImage":
        if len(blob) < BOOT_HEADER_LEN:
            raise TruncatedInputError(
                f"loader image: expected at least {BOOT_HEADER_LEN} bytes, got {len(blob)}"
            )
        boot_header = BootHeader.from_bytes(blob[:BOOT_HEADER_LEN])

        segments: List[Segment] = []
        offset = BOOT_HEADER_LEN
        while len(blob) - offset >= SEGMENT_HEADER_LEN:
            head = blob[offset:offset + SEGMENT_HEADER_LEN]
            if head == b"\xFF" * SEGMENT_HEADER_LEN:
                # erased padding after the last segment
                break
            dest_addr, size, reserved, _crc = struct.unpack("<IIII", head)
            start = offset + SEGMENT_HEADER_LEN
            data = blob[start:start + size]
            if len(data) != size:
                raise TruncatedInputError(
                    f"segment at {dest_addr:#010x}: expected {size} bytes, got {len(data)}"
                )
            segments.append(Segment(VirtAddr(dest_addr), data, reserved))
            offset = start + size

        if not segments:
            raise FormatError("loader image contains no segments")
        if offset != len(blob):
            logger.debug("Ignoring %d trailing bytes after last segment", len(blob) - offset)
        return cls(boot_header=boot_header, segments=tuple(segments))
