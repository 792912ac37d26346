"""Tests for flash write gating."""

import pytest

from bouffalo_flasher.core.safety import (
    CONFIRMATION_TOKEN,
    SafetyContext,
    WritePermissionError,
    require_write_permission,
)


def test_simulate_always_allowed():
    """Simulation needs no flags."""
    require_write_permission(SafetyContext(simulate=True), "write_flash", 0, 4096)


def test_write_flag_required():
    """--write is mandatory for real writes."""
    with pytest.raises(WritePermissionError) as exc_info:
        require_write_permission(SafetyContext(confirmation_token="WRITE"), "erase_flash", 0x1000, 4096)
    assert "--write" in exc_info.value.reason
    assert exc_info.value.details["region"] == "0x001000-0x002000"


def test_token_accepted_case_insensitive():
    """The token is trimmed and case-insensitive."""
    ctx = SafetyContext(write_enabled=True, confirmation_token=" write ", interactive=False)
    require_write_permission(ctx, "write_flash", 0, 16)


def test_wrong_token_rejected():
    """Any other token is refused."""
    ctx = SafetyContext(write_enabled=True, confirmation_token="yes", interactive=False)
    with pytest.raises(WritePermissionError):
        require_write_permission(ctx, "write_flash", 0, 16)


def test_non_interactive_without_token_rejected():
    """Without a terminal a token is required."""
    ctx = SafetyContext(write_enabled=True, interactive=False, prompt_confirmation=lambda _: "WRITE")
    with pytest.raises(WritePermissionError):
        require_write_permission(ctx, "write_flash", 0, 16)


def test_interactive_prompt():
    """The prompt shows the region and accepts the token."""
    shown = []
    ctx = SafetyContext(
        write_enabled=True,
        interactive=True,
        prompt_confirmation=lambda _: CONFIRMATION_TOKEN,
        show_details=shown.append,
    )
    require_write_permission(ctx, "erase_flash", 0, 8192)
    assert shown[0]["bytes_length"] == 8192
    assert shown[0]["operation"] == "erase_flash"


def test_interactive_prompt_declined():
    """A wrong answer at the prompt aborts."""
    ctx = SafetyContext(write_enabled=True, interactive=True, prompt_confirmation=lambda _: "no")
    with pytest.raises(WritePermissionError):
        require_write_permission(ctx, "erase_flash", 0, 8192)
