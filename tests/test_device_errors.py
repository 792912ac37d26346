"""Tests for the device status code table."""

import pytest

from bouffalo_flasher.errors import DeviceError
from bouffalo_flasher.protocol.device_errors import DESCRIPTIONS, DeviceErrorCode, describe, lookup


@pytest.mark.parametrize(
    "code, expected",
    [
        (0x0001, DeviceErrorCode.FLASH_INIT_ERROR),
        (0x0007, DeviceErrorCode.FLASH_BOOT_PARAM_ERROR),
        (0x0103, DeviceErrorCode.CMD_CRC_ERROR),
        (0x0204, DeviceErrorCode.IMG_BOOTHEADER_CRC_ERROR),
        (0x021B, DeviceErrorCode.IMG_ALL_INVALID_ERROR),
        (0x0303, DeviceErrorCode.IF_PASSWORD_ERROR),
        (0xFFFC, DeviceErrorCode.PLL_ERROR),
        (0xFFFF, DeviceErrorCode.FAIL),
    ],
)
def test_lookup_known_codes(code, expected):
    """Known codes map to their variant."""
    assert lookup(code) is expected


@pytest.mark.parametrize("code", [0x9999, 0x0008, 0x0100, 0x021C, 0xFFFB])
def test_unknown_codes_fall_back_to_no_error(code):
    """Unknown codes fall back to NO_ERROR."""
    assert lookup(code) is DeviceErrorCode.NO_ERROR


def test_image_validation_range_has_no_gaps():
    """Image validation codes form one contiguous block."""
    for code in range(0x0207, 0x021C):
        assert lookup(code) is not DeviceErrorCode.NO_ERROR


def test_every_code_has_a_description():
    """Every variant has a description."""
    assert set(DESCRIPTIONS) == set(DeviceErrorCode)
    assert describe(0x0003) == "Flash erase failed"


def test_device_error_carries_code_and_variant():
    """DeviceError keeps the raw code and the decoded variant."""
    err = DeviceError(0x0204)
    assert err.code == 0x0204
    assert err.error is DeviceErrorCode.IMG_BOOTHEADER_CRC_ERROR
    assert "0x0204" in str(err)
    assert "IMG_BOOTHEADER_CRC_ERROR" in str(err)
