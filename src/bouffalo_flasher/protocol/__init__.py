"""ISP protocol layer - serial transport, command framing, sessions."""

from .transport import SerialTransport, list_ports, open_serial, ROM_BAUD_RATE
from .device_errors import DeviceErrorCode, lookup as lookup_device_error
from .commands import (
    Stage,
    BootInfo,
    GetBootInfo,
    LoadBootHeader,
    LoadSegmentHeader,
    LoadSegment,
    CheckImage,
    RunImage,
    EraseFlash,
    WriteFlash,
    ReadFlash,
    FlashSha256,
)
from .session import BootloaderSession, SessionState, SESSION_TIMEOUT
from .isp import IspEngine, handshake, sync_byte_count, ERASE_UNIT, FLASH_TIMEOUT

__all__ = [
    # Transport
    "SerialTransport",
    "list_ports",
    "open_serial",
    "ROM_BAUD_RATE",
    # Device status codes
    "DeviceErrorCode",
    "lookup_device_error",
    # Commands
    "Stage",
    "BootInfo",
    "GetBootInfo",
    "LoadBootHeader",
    "LoadSegmentHeader",
    "LoadSegment",
    "CheckImage",
    "RunImage",
    "EraseFlash",
    "WriteFlash",
    "ReadFlash",
    "FlashSha256",
    # Session / engine
    "BootloaderSession",
    "SessionState",
    "SESSION_TIMEOUT",
    "IspEngine",
    "handshake",
    "sync_byte_count",
    "ERASE_UNIT",
    "FLASH_TIMEOUT",
]
