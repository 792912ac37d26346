"""
Utility modules for Bouffalo Flasher.

Pure helpers shared by the image codec and the protocol engine.
"""

from .checksum import crc32, checksum8

__all__ = [
    "crc32",
    "checksum8",
]
