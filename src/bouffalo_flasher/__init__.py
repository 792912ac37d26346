"""
Bouffalo Flasher - ISP flasher for Bouffalo Lab BL60x RISC-V chips

Boot ROM handshake, eflash loader bootstrap, and flash read/write/erase
over UART.
"""

__version__ = "0.1.0"

from bouffalo_flasher.protocol import SerialTransport, IspEngine, handshake, Stage
from bouffalo_flasher.firmware_image import BootHeader, FlashConfig, ClockConfig, Segment

__all__ = [
    "SerialTransport",
    "IspEngine",
    "handshake",
    "Stage",
    "BootHeader",
    "FlashConfig",
    "ClockConfig",
    "Segment",
    "__version__",
]
