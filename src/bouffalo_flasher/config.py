"""
Connection settings shared by the CLI and the core workflows.
"""

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

# Boot ROM UART defaults
DEFAULT_PORT = "/dev/ttyUSB0"
DEFAULT_BAUD_RATE = 500_000

# The eflash loader accepts a much faster link once it is running
DEFAULT_PROGRAM_BAUD_RATE = 2_000_000

DEFAULT_TIMEOUT = 2.0
DEFAULT_FLASH_TIMEOUT = 60.0

# Environment overrides
ENV_SERIAL_PORT = "SERIAL_PORT"
ENV_BAUD_RATE = "BAUD_RATE"
ENV_EFLASH_LOADER = "BL_EFLASH_LOADER"


@dataclass(frozen=True)
class SerialConfig:
    """
    How to reach one device.

    Attributes:
        port: Serial device path ("/dev/ttyUSB0", "COM3")
        baud_rate: Boot ROM baud rate
        program_baud_rate: Baud rate used once the eflash loader runs
        timeout: Default read/write timeout in seconds
        flash_timeout: Timeout while erasing/programming/reading flash
        reset: Pulse RTS/DTR to enter UART boot before the handshake
        loader_path: eflash loader image (boot header + segments)
    """
    port: str = DEFAULT_PORT
    baud_rate: int = DEFAULT_BAUD_RATE
    program_baud_rate: int = DEFAULT_PROGRAM_BAUD_RATE
    timeout: float = DEFAULT_TIMEOUT
    flash_timeout: float = DEFAULT_FLASH_TIMEOUT
    reset: bool = True
    loader_path: Optional[Path] = None

    def __post_init__(self) -> None:
        if not self.port:
            raise ValueError("Serial port must not be empty")
        for name in ("baud_rate", "program_baud_rate"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.timeout <= 0 or self.flash_timeout <= 0:
            raise ValueError("Timeouts must be positive")

    def with_overrides(self, **changes) -> "SerialConfig":
        """Copy with the given fields replaced (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def config_from_env(environ=None) -> SerialConfig:
    """Build a SerialConfig from SERIAL_PORT / BAUD_RATE / BL_EFLASH_LOADER."""
    env = os.environ if environ is None else environ
    loader = env.get(ENV_EFLASH_LOADER)
    baud = env.get(ENV_BAUD_RATE)
    return SerialConfig(
        port=env.get(ENV_SERIAL_PORT) or DEFAULT_PORT,
        baud_rate=int(baud) if baud else DEFAULT_BAUD_RATE,
        loader_path=Path(loader) if loader else None,
    )
