"""
Write gating for destructive flash operations.

Erasing or programming the SPI flash destroys what was there, so both
only run once writes are enabled and the region has been confirmed,
either by token (scripts) or at a prompt (terminals).
"""

from dataclasses import dataclass
from typing import Optional, Callable

from bouffalo_flasher.errors import FlasherError
from bouffalo_flasher.core.results import format_region

# Token expected from --confirm or typed at the prompt
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(FlasherError):
    """
    A flash erase/write was refused before anything was sent.

    Attributes:
        reason: Message suitable for the user
        details: operation, region and bytes_length of the refused request
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    How the caller asked for a destructive operation.

    Attributes:
        write_enabled: --write was given
        confirmation_token: value of --confirm, if any
        interactive: a prompt can be shown
        simulate: dry run, the device is never touched
        prompt_confirmation: returns what the user typed
        show_details: renders the region about to be modified
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    simulate: bool = False
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None


def _token_matches(value: str) -> bool:
    return value.strip().upper() == CONFIRMATION_TOKEN


def require_write_permission(
    ctx: SafetyContext,
    operation: str,
    addr: int,
    length: int,
) -> None:
    """
    Return if `operation` on [addr, addr + length) may proceed.

    A simulated run always passes. Otherwise --write is mandatory, and
    then either a matching --confirm token or, on a terminal, the token
    typed after the region has been shown.

    Raises:
        WritePermissionError: If any of the above is missing or wrong
    """
    if ctx.simulate:
        return

    details = {
        "operation": operation,
        "region": format_region(addr, length),
        "bytes_length": length,
    }

    def deny(reason: str) -> WritePermissionError:
        return WritePermissionError(reason, details=details)

    if not ctx.write_enabled:
        raise deny(f"{operation} changes flash contents; pass --write to allow it.")

    if ctx.confirmation_token is not None:
        if not _token_matches(ctx.confirmation_token):
            raise deny(f"--confirm must be '{CONFIRMATION_TOKEN}'.")
        return

    if not ctx.interactive or ctx.prompt_confirmation is None:
        raise deny(f"No terminal to confirm on; pass --confirm {CONFIRMATION_TOKEN}.")

    if ctx.show_details:
        ctx.show_details(details)

    if not _token_matches(ctx.prompt_confirmation(f"Type {CONFIRMATION_TOKEN} to continue")):
        raise deny(f"{operation} aborted.")
