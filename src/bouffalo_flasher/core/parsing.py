"""
Centralized parsing helpers for addresses and sizes.

The CLI must import these helpers rather than re-implement them.
"""

from typing import Optional

from bouffalo_flasher.errors import AlignmentError
from bouffalo_flasher.protocol.isp import ERASE_UNIT

_SIZE_SUFFIXES = {"k": 1024, "m": 1024 * 1024}


def parse_int(value: Optional[str]) -> Optional[int]:
    """
    Parse an address or size from a string.

    Accepts:
        - Decimal: "4096"
        - Hex with 0x prefix: "0x1000" or "0X1000"
        - Hex with h suffix: "1000h" or "1000H"
        - None or empty for "not given"

    Returns:
        Parsed integer, or None if value is None or empty.

    Raises:
        ValueError: If value cannot be parsed or is negative.
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            result = int(value, 16)
        elif value.lower().endswith("h"):
            result = int(value[:-1], 16)
        else:
            result = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid number '{value}'. Use decimal (4096), hex (0x1000), or suffix (1000h)."
        )
    if result < 0:
        raise ValueError(f"Negative value not allowed: '{value}'")
    return result


def parse_address(value: str) -> int:
    """Parse a flash address; must fit in 32 bits."""
    addr = parse_int(value)
    if addr is None:
        raise ValueError("Address is required")
    if addr > 0xFFFFFFFF:
        raise ValueError(f"Address 0x{addr:X} does not fit in 32 bits")
    return addr


def parse_size(value: str) -> int:
    """
    Parse a byte count; also accepts K/M suffixes ("64K", "2M").

    Raises:
        ValueError: If value is invalid, zero or larger than 32 bits.
    """
    text = (value or "").strip()
    multiplier = 1
    if text and text[-1].lower() in _SIZE_SUFFIXES and not text.lower().startswith("0x"):
        multiplier = _SIZE_SUFFIXES[text[-1].lower()]
        text = text[:-1]

    size = parse_int(text)
    if size is None:
        raise ValueError("Size is required")
    size *= multiplier
    if size == 0:
        raise ValueError("Size must be greater than zero")
    if size > 0xFFFFFFFF:
        raise ValueError(f"Size {size} does not fit in 32 bits")
    return size


def require_erase_aligned(addr: int, size: Optional[int] = None) -> None:
    """
    Check that an erase range lines up with the flash sector size.

    The engine never rounds erase ranges, so callers check up front.

    Raises:
        AlignmentError: If addr (or size, when given) is not a multiple
            of ERASE_UNIT.
    """
    if addr % ERASE_UNIT:
        raise AlignmentError(
            f"Address 0x{addr:X} is not aligned to {ERASE_UNIT} bytes"
        )
    if size is not None and size % ERASE_UNIT:
        raise AlignmentError(
            f"Size {size} is not a multiple of {ERASE_UNIT} bytes"
        )
