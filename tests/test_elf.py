"""Tests for the ELF32 segment reader."""

import struct

import pytest

from bouffalo_flasher.elf import EM_RISCV, PT_LOAD, read_elf_segments
from bouffalo_flasher.errors import FormatError, TruncatedInputError
from bouffalo_flasher.firmware_image import VirtAddr


def _elf(program_headers, payload: bytes, entry: int = 0x23000000, machine: int = EM_RISCV) -> bytes:
    """Build a minimal ELF32 LE file: header, program headers, then payload."""
    phoff = 52
    ident = b"\x7fELF" + bytes([1, 1, 1]) + bytes(9)
    header = ident + struct.pack(
        "<HHIIIIIHHHHHH",
        2, machine, 1, entry, phoff, 0, 0, 52, 32, len(program_headers), 0, 0, 0,
    )
    table = b"".join(struct.pack("<IIIIIIII", *ph) for ph in program_headers)
    return header + table + payload


def test_loadable_segments_in_file_order():
    """PT_LOAD segments come back in file order at their physical address."""
    data_offset = 52 + 3 * 32
    text = b"\x13\x00\x00\x00" * 4
    rodata = b"hello"
    blob = _elf(
        [
            (PT_LOAD, data_offset, 0x23000000, 0x23000000, len(text), len(text), 5, 4),
            # .bss: no file bytes, skipped
            (PT_LOAD, 0, 0x42020000, 0x42020000, 0, 0x100, 6, 4),
            (PT_LOAD, data_offset + len(text), 0x42010000, 0x23000100, len(rodata), len(rodata), 4, 4),
        ],
        text + rodata,
    )

    image = read_elf_segments(blob)

    assert image.entry == 0x23000000
    assert [s.dest_addr for s in image.segments] == [VirtAddr(0x23000000), VirtAddr(0x23000100)]
    assert [s.data for s in image.segments] == [text, rodata]
    assert image.total_size == len(text) + len(rodata)


def test_non_load_headers_ignored():
    """Non-loadable program headers are skipped."""
    blob = _elf([(4, 0, 0, 0, 0, 0, 0, 0)], b"")
    assert read_elf_segments(blob).segments == ()


def test_not_elf():
    """Files without the ELF magic are rejected."""
    with pytest.raises(FormatError):
        read_elf_segments(b"\x00" * 64)


def test_elf64_rejected():
    """Only 32-bit ELF is accepted."""
    blob = bytearray(_elf([], b""))
    blob[4] = 2
    with pytest.raises(FormatError):
        read_elf_segments(bytes(blob))


def test_segment_past_end_of_file():
    """A segment running past the file end is truncated input."""
    blob = _elf([(PT_LOAD, 84, 0, 0x22010000, 1000, 1000, 5, 4)], b"\x00" * 10)
    with pytest.raises(TruncatedInputError):
        read_elf_segments(blob)


def test_short_file():
    """Files shorter than the ELF header are truncated input."""
    with pytest.raises(TruncatedInputError):
        read_elf_segments(b"\x7fELF")
