"""
Exception hierarchy for Bouffalo Flasher.

All exceptions inherit from FlasherError so callers can catch every
flasher failure with a single except clause:

FlasherError
├── TransportError            serial open/configure/read/write/timeout
├── ProtocolError
│   ├── HandshakeFailedError  device did not answer the sync burst with OK
│   ├── UnexpectedReplyError  reply marker was neither OK nor FL
│   ├── StageMismatchError    command belongs to the other firmware stage
│   └── SessionExpiredError   bootloader reset after inactivity
├── DeviceError               device answered FL + status code
├── FormatError
│   ├── InvalidMagicError     record magic mismatch
│   └── TruncatedInputError   record ended early
└── ValidationError
    ├── MissingFlashConfigError
    └── AlignmentError

Nothing in the library retries; every error propagates to the caller.
"""

from typing import Optional


class FlasherError(Exception):
    """Base exception for all flasher errors."""


class TransportError(FlasherError):
    """Serial link could not be opened, configured, read or written."""


class ProtocolError(FlasherError):
    """The ISP exchange did not follow the protocol."""


class HandshakeFailedError(ProtocolError):
    """The device did not respond to the UART sync burst with OK."""

    def __init__(self, reply: bytes):
        self.reply = bytes(reply)
        super().__init__(f"Handshake failed - expected b'OK', got {self.reply!r}")


class UnexpectedReplyError(ProtocolError):
    """A reply started with something other than OK/FL, or had a bad length."""

    def __init__(self, reply: bytes, message: Optional[str] = None):
        self.reply = bytes(reply)
        if message is None:
            message = f"Unexpected reply from device: {self.reply.hex().upper() or 'empty'}"
        super().__init__(message)


class StageMismatchError(ProtocolError):
    """A command was sent to a session running the other firmware stage."""


class SessionExpiredError(ProtocolError):
    """
    The bootloader reset itself after 2000ms of inactivity.

    The device state is gone; the only recovery is reopening the port and
    repeating the handshake. `transport` carries the serial link back to
    the caller the first time the expiry is detected, and is None on any
    later attempt against the same session.
    """

    def __init__(self, transport=None, idle: Optional[float] = None):
        self.transport = transport
        self.idle = idle
        if idle is not None:
            message = f"The bootloader has reset after {idle * 1000:.0f}ms of inactivity"
        else:
            message = "The bootloader session has expired"
        super().__init__(message)


class DeviceError(FlasherError):
    """The device answered FL followed by a 16-bit status code."""

    def __init__(self, code: int):
        from bouffalo_flasher.protocol.device_errors import describe, lookup

        self.code = code
        self.error = lookup(code)
        super().__init__(f"Device error 0x{code:04X} ({self.error.name}): {describe(code)}")


class FormatError(FlasherError):
    """An image record could not be parsed."""


class InvalidMagicError(FormatError):
    """A record started with the wrong 4-byte magic."""

    def __init__(self, magic: bytes, expected: Optional[bytes] = None):
        self.magic = bytes(magic)
        self.expected = expected
        if expected is not None:
            message = f"The magic header value is invalid: {self.magic!r} (expected {expected!r})"
        else:
            message = f"The magic header value is invalid: {self.magic!r}"
        super().__init__(message)


class TruncatedInputError(FormatError):
    """The input ended before a record was complete."""


class ValidationError(FlasherError):
    """A caller-supplied value violates a precondition."""


class MissingFlashConfigError(ValidationError):
    """BootHeaderBuilder.build() was called without a flash config."""

    def __init__(self):
        super().__init__("Missing flash_config value in BootHeaderBuilder")


class AlignmentError(ValidationError):
    """An erase range does not start on the minimum erase unit."""
