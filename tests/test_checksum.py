"""Tests for CRC32 and the eflash frame checksum."""

import zlib

import pytest

from bouffalo_flasher.utils.checksum import checksum8, crc32


def test_crc32_reference_vector_123456789():
    """CRC32 of "123456789" is the standard check value."""
    assert crc32(b"123456789") == 0xCBF43926


def test_crc32_empty_input_is_zero():
    """Empty input hashes to zero."""
    assert crc32(b"") == 0


def test_crc32_agrees_with_zlib_on_arbitrary_data():
    """CRC32 matches zlib on arbitrary data."""
    data = bytes(range(256)) * 3
    assert crc32(data) == zlib.crc32(data)


def test_crc32_sub_range():
    """Offset and count select a sub-range."""
    data = b"xx123456789yy"
    assert crc32(data, offset=2, count=9) == 0xCBF43926
    assert crc32(data, offset=2) == zlib.crc32(data[2:])


def test_crc32_rejects_out_of_range():
    """Ranges past the buffer end are rejected."""
    with pytest.raises(ValueError):
        crc32(b"abc", offset=2, count=5)


def test_checksum8_wraps_modulo_256():
    """The additive checksum wraps at 256."""
    assert checksum8(b"\xff\x02") == 0x01
    assert checksum8(b"") == 0
