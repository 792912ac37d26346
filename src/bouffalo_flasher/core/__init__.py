"""
Core module for Bouffalo Flasher.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Address and size parsing (parsing.py)
- Result objects (results.py)
- Boot info / flash read / write / erase workflows (actions.py)

The CLI should call into this module rather than implementing its own
logic.
"""

from .safety import SafetyContext, require_write_permission, WritePermissionError
from .parsing import parse_int, parse_address, parse_size, require_erase_aligned
from .results import OperationResult
from .actions import (
    load_eflash_loader,
    read_boot_info,
    erase_flash,
    write_flash,
    read_flash,
    inspect_image,
)

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    # Parsing
    "parse_int",
    "parse_address",
    "parse_size",
    "require_erase_aligned",
    # Results
    "OperationResult",
    # Actions
    "load_eflash_loader",
    "read_boot_info",
    "erase_flash",
    "write_flash",
    "read_flash",
    "inspect_image",
]
