"""
BL60x boot ROM / eflash loader status codes.

A failed command is answered with b"FL" followed by a little-endian u16
status code from the vendor's sparse table below. Lookup never fails:
codes missing from the table map to NO_ERROR, which doubles as the
"unrecognized" bucket.
"""

from enum import IntEnum
from typing import Dict


class DeviceErrorCode(IntEnum):
    """Named device status codes, grouped by subsystem."""

    NO_ERROR = 0x0000

    # Flash I/O
    FLASH_INIT_ERROR = 0x0001
    FLASH_PARAM_ERROR = 0x0002
    FLASH_ERASE_ERROR = 0x0003
    FLASH_WRITE_PARAM_ERROR = 0x0004
    FLASH_WRITE_ADDR_ERROR = 0x0005
    FLASH_WRITE_ERROR = 0x0006
    FLASH_BOOT_PARAM_ERROR = 0x0007

    # Command framing
    CMD_ID_ERROR = 0x0101
    CMD_LEN_ERROR = 0x0102
    CMD_CRC_ERROR = 0x0103
    CMD_SEQ_ERROR = 0x0104

    # Boot header validation
    IMG_BOOTHEADER_LEN_ERROR = 0x0201
    IMG_BOOTHEADER_NOT_LOAD_ERROR = 0x0202
    IMG_BOOTHEADER_MAGIC_ERROR = 0x0203
    IMG_BOOTHEADER_CRC_ERROR = 0x0204
    IMG_BOOTHEADER_ENCRYPT_NOTFIT = 0x0205
    IMG_BOOTHEADER_SIGN_NOTFIT = 0x0206

    # Image / segment validation
    IMG_SEGMENT_CNT_ERROR = 0x0207
    IMG_AES_IV_LEN_ERROR = 0x0208
    IMG_AES_IV_CRC_ERROR = 0x0209
    IMG_PK_LEN_ERROR = 0x020A
    IMG_PK_CRC_ERROR = 0x020B
    IMG_PK_HASH_ERROR = 0x020C
    IMG_SIGNATURE_LEN_ERROR = 0x020D
    IMG_SIGNATURE_CRC_ERROR = 0x020E
    IMG_SECTIONHEADER_LEN_ERROR = 0x020F
    IMG_SECTIONHEADER_CRC_ERROR = 0x0210
    IMG_SECTIONHEADER_DST_ERROR = 0x0211
    IMG_SECTIONDATA_LEN_ERROR = 0x0212
    IMG_SECTIONDATA_DEC_ERROR = 0x0213
    IMG_SECTIONDATA_TLEN_ERROR = 0x0214
    IMG_SECTIONDATA_CRC_ERROR = 0x0215
    IMG_HALFBAKED_ERROR = 0x0216
    IMG_HASH_ERROR = 0x0217
    IMG_SIGN_PARSE_ERROR = 0x0218
    IMG_SIGN_ERROR = 0x0219
    IMG_DEC_ERROR = 0x021A
    IMG_ALL_INVALID_ERROR = 0x021B

    # Interface rate / password
    IF_RATE_LEN_ERROR = 0x0301
    IF_RATE_PARA_ERROR = 0x0302
    IF_PASSWORD_ERROR = 0x0303
    IF_PASSWORD_CLOSE = 0x0304

    # Terminal conditions
    PLL_ERROR = 0xFFFC
    INVASION_ERROR = 0xFFFD
    POLLING = 0xFFFE
    FAIL = 0xFFFF


_BY_CODE: Dict[int, DeviceErrorCode] = {int(member): member for member in DeviceErrorCode}

DESCRIPTIONS: Dict[DeviceErrorCode, str] = {
    DeviceErrorCode.NO_ERROR: "No error / unrecognized status code",
    DeviceErrorCode.FLASH_INIT_ERROR: "Could not initialize the flash",
    DeviceErrorCode.FLASH_PARAM_ERROR: "Flash parameter issue",
    DeviceErrorCode.FLASH_ERASE_ERROR: "Flash erase failed",
    DeviceErrorCode.FLASH_WRITE_PARAM_ERROR: "Flash write parameter issue",
    DeviceErrorCode.FLASH_WRITE_ADDR_ERROR: "Flash write address issue",
    DeviceErrorCode.FLASH_WRITE_ERROR: "Flash write failed",
    DeviceErrorCode.FLASH_BOOT_PARAM_ERROR: "Flash boot parameter issue",
    DeviceErrorCode.CMD_ID_ERROR: "Unknown command id",
    DeviceErrorCode.CMD_LEN_ERROR: "Bad command or parameter length",
    DeviceErrorCode.CMD_CRC_ERROR: "Command checksum mismatch",
    DeviceErrorCode.CMD_SEQ_ERROR: "Command sent out of sequence",
    DeviceErrorCode.IMG_BOOTHEADER_LEN_ERROR: "Boot header length mismatch",
    DeviceErrorCode.IMG_BOOTHEADER_NOT_LOAD_ERROR: "Boot header has not been loaded",
    DeviceErrorCode.IMG_BOOTHEADER_MAGIC_ERROR: "Boot header magic is incorrect",
    DeviceErrorCode.IMG_BOOTHEADER_CRC_ERROR: "Boot header crc32 does not match",
    DeviceErrorCode.IMG_BOOTHEADER_ENCRYPT_NOTFIT: "Encryption efuse set but boot header has no encryption type",
    DeviceErrorCode.IMG_BOOTHEADER_SIGN_NOTFIT: "Signature efuse set but boot header has no signature type",
    DeviceErrorCode.IMG_SEGMENT_CNT_ERROR: "Segment count error",
    DeviceErrorCode.IMG_AES_IV_LEN_ERROR: "AES IV length error",
    DeviceErrorCode.IMG_AES_IV_CRC_ERROR: "AES IV crc error",
    DeviceErrorCode.IMG_PK_LEN_ERROR: "Public key length error",
    DeviceErrorCode.IMG_PK_CRC_ERROR: "Public key crc error",
    DeviceErrorCode.IMG_PK_HASH_ERROR: "Public key hash error",
    DeviceErrorCode.IMG_SIGNATURE_LEN_ERROR: "Signature length error",
    DeviceErrorCode.IMG_SIGNATURE_CRC_ERROR: "Signature crc error",
    DeviceErrorCode.IMG_SECTIONHEADER_LEN_ERROR: "Segment header length error",
    DeviceErrorCode.IMG_SECTIONHEADER_CRC_ERROR: "Segment header crc error",
    DeviceErrorCode.IMG_SECTIONHEADER_DST_ERROR: "Segment destination address error",
    DeviceErrorCode.IMG_SECTIONDATA_LEN_ERROR: "Segment data length error",
    DeviceErrorCode.IMG_SECTIONDATA_DEC_ERROR: "Segment data decrypt error",
    DeviceErrorCode.IMG_SECTIONDATA_TLEN_ERROR: "Segment data total length error",
    DeviceErrorCode.IMG_SECTIONDATA_CRC_ERROR: "Segment data crc error",
    DeviceErrorCode.IMG_HALFBAKED_ERROR: "Image is half-baked",
    DeviceErrorCode.IMG_HASH_ERROR: "Image hash mismatch",
    DeviceErrorCode.IMG_SIGN_PARSE_ERROR: "Image signature parse error",
    DeviceErrorCode.IMG_SIGN_ERROR: "Image signature invalid",
    DeviceErrorCode.IMG_DEC_ERROR: "Image decrypt error",
    DeviceErrorCode.IMG_ALL_INVALID_ERROR: "No valid image found",
    DeviceErrorCode.IF_RATE_LEN_ERROR: "Interface rate length error",
    DeviceErrorCode.IF_RATE_PARA_ERROR: "Interface rate parameter error",
    DeviceErrorCode.IF_PASSWORD_ERROR: "Interface password error",
    DeviceErrorCode.IF_PASSWORD_CLOSE: "Interface password closed",
    DeviceErrorCode.PLL_ERROR: "PLL error",
    DeviceErrorCode.INVASION_ERROR: "Invasion detected",
    DeviceErrorCode.POLLING: "Device still polling",
    DeviceErrorCode.FAIL: "Generic failure",
}


def lookup(code: int) -> DeviceErrorCode:
    """Map a raw status code to its named variant (NO_ERROR if unknown)."""
    return _BY_CODE.get(code, DeviceErrorCode.NO_ERROR)


def describe(code: int) -> str:
    return DESCRIPTIONS[lookup(code)]
