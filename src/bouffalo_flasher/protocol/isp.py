"""
BL60x ISP engine.

Drives the boot ROM and the eflash loader over a BootloaderSession.

Protocol flow (strictly half-duplex, one command in flight):
1. handshake(): burst of 0x55 sync bytes, device answers "OK"
2. ROM stage: boot header, then each segment as header + <=4092-byte
   chunks, then CheckImage / RunImage
3. EFlashLoader stage (after RunImage of the loader, new handshake at
   the programming baud rate): erase, write in <=8192-byte chunks,
   read back, SHA-256 over a flash range

Every chunk is acknowledged before the next one is sent; the device has
a small fixed receive buffer. Nothing here retries.
"""

import hashlib
import logging
from typing import Callable, Iterable, Optional, Sequence

from bouffalo_flasher.errors import (
    AlignmentError,
    HandshakeFailedError,
    TransportError,
    UnexpectedReplyError,
    ValidationError,
)
from bouffalo_flasher.firmware_image import BootHeader, Segment
from bouffalo_flasher.protocol.commands import (
    EFLASH_CHUNK_SIZE,
    REPLY_OK,
    ROM_SEGMENT_CHUNK_SIZE,
    SHA256_LEN,
    BootInfo,
    CheckImage,
    EraseFlash,
    FlashSha256,
    GetBootInfo,
    LoadBootHeader,
    LoadSegment,
    LoadSegmentHeader,
    ReadFlash,
    RunImage,
    Stage,
    WriteFlash,
)
from bouffalo_flasher.protocol.session import BootloaderSession
from bouffalo_flasher.protocol.transport import SerialTransport

logger = logging.getLogger(__name__)

SYNC_BYTE = 0x55

# Minimum erase granularity of the SPI flash
ERASE_UNIT = 4096

# Read/write timeout used while erasing, programming or reading flash
FLASH_TIMEOUT = 60.0

ProgressCallback = Callable[[int, int], None]


def sync_byte_count(baud_rate: int) -> int:
    """Number of 0x55 bytes in the handshake burst (150 at 500000 baud)."""
    return baud_rate * 3 // 10 // 1000


def handshake(transport: SerialTransport, stage: Stage) -> BootloaderSession:
    """
    Put the device into UART command mode and open a session.

    Args:
        transport: Open transport, already at the stage's baud rate
        stage: Which firmware is expected to answer

    Returns:
        BootloaderSession owning the transport

    Raises:
        HandshakeFailedError: Device answered anything but "OK" (or nothing)
    """
    count = sync_byte_count(transport.baudrate)
    transport.drain_input()
    logger.debug(f"Sending {count} sync bytes at {transport.baudrate} bps")
    transport.write(bytes([SYNC_BYTE]) * count)

    try:
        reply = transport.read(2)
    except TransportError as e:
        raise HandshakeFailedError(b"") from e
    if reply != REPLY_OK:
        raise HandshakeFailedError(reply)

    logger.info(f"Handshake OK ({stage.value} @ {transport.baudrate} bps)")
    return BootloaderSession(transport, stage)


def _chunks(data: bytes, size: int) -> Iterable[bytes]:
    for offset in range(0, len(data), size):
        yield data[offset:offset + size]


class IspEngine:
    """
    Command sequencing on top of a session.

    Example:
        session = handshake(transport, Stage.EFLASH_LOADER)
        engine = IspEngine(session)
        engine.write_flash(0x10000, firmware)
    """

    def __init__(self, session: BootloaderSession, flash_timeout: float = FLASH_TIMEOUT):
        self.session = session
        self.flash_timeout = flash_timeout

    @property
    def stage(self) -> Stage:
        return self.session.stage

    # --- Boot ROM --------------------------------------------------------

    def get_boot_info(self) -> BootInfo:
        info = BootInfo.from_payload(self.session.send(GetBootInfo()))
        logger.info(f"Boot ROM version {info.version}, OTP {info.otp_info.hex()}")
        return info

    def load_boot_header(self, header: BootHeader) -> None:
        self.session.send(LoadBootHeader(header.to_bytes()))
        logger.debug(f"Boot header loaded (entry {header.entry_point:#010x})")

    def load_segment(
        self,
        segment: Segment,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Load one segment: header, then data chunks, each acknowledged.

        Args:
            segment: Destination address and bytes
            progress_cb: Optional callback(bytes_sent, total_bytes)
        """
        echo = self.session.send(LoadSegmentHeader.for_segment(segment))
        logger.debug(f"Segment header echo: {echo.hex().upper()}")

        sent = 0
        for chunk in _chunks(segment.data, ROM_SEGMENT_CHUNK_SIZE):
            self.session.send(LoadSegment(chunk))
            sent += len(chunk)
            if progress_cb:
                progress_cb(sent, segment.size)
        logger.debug(f"Loaded {segment.size} bytes to {segment.dest_addr}")

    def load_segments(
        self,
        segments: Sequence[Segment],
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        total = sum(segment.size for segment in segments)
        done = 0
        for index, segment in enumerate(segments, 1):
            logger.info(
                f"Loading segment {index}/{len(segments)}: "
                f"{segment.size} bytes -> {segment.dest_addr}"
            )

            def _segment_progress(sent: int, _size: int, base: int = done) -> None:
                if progress_cb:
                    progress_cb(base + sent, total)

            self.load_segment(segment, _segment_progress)
            done += segment.size

    def check_image(self) -> None:
        self.session.send(CheckImage())

    def run_image(self) -> None:
        self.session.send(RunImage())
        logger.info("Image started")

    def load_image(
        self,
        header: BootHeader,
        segments: Sequence[Segment],
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        """Load a RAM image (boot header + segments), check it and run it."""
        self.load_boot_header(header)
        self.load_segments(segments, progress_cb)
        self.check_image()
        self.run_image()

    # --- EFlash loader ---------------------------------------------------

    def erase_flash(self, addr: int, length: int) -> None:
        """
        Erase `length` bytes starting at `addr`.

        The range is sent as-is (end = addr + length - 1); the device snaps
        it to whole sectors.

        Raises:
            AlignmentError: addr is not a multiple of ERASE_UNIT
        """
        if addr % ERASE_UNIT:
            raise AlignmentError(
                f"Erase start {addr:#x} is not aligned to {ERASE_UNIT} bytes"
            )
        if length <= 0:
            raise ValidationError(f"Erase length must be positive, got {length}")

        end = addr + length - 1
        logger.info(f"Erasing {length} bytes @ {addr:#x}")
        with self.session.timeout_scope(self.flash_timeout):
            self.session.send(EraseFlash(addr, end))

    def write_flash(
        self,
        addr: int,
        data: bytes,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Erase the target range, then program `data` in chunks.

        Args:
            addr: Flash offset (ERASE_UNIT aligned)
            data: Bytes to program
            progress_cb: Optional callback(bytes_written, total_bytes)
        """
        total = len(data)
        self.erase_flash(addr, total)

        logger.info(f"Programming {total} bytes @ {addr:#x}")
        written = 0
        with self.session.timeout_scope(self.flash_timeout):
            for chunk in _chunks(data, EFLASH_CHUNK_SIZE):
                self.session.send(WriteFlash(addr + written, chunk))
                written += len(chunk)
                if progress_cb:
                    progress_cb(written, total)
        logger.debug(f"Programmed {written} bytes")

    def read_flash_exact(
        self,
        addr: int,
        buffer: bytearray,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Fill `buffer` from flash starting at `addr`.

        Returns:
            SHA-256 digest of the bytes read, computed on the host
        """
        total = len(buffer)
        view = memoryview(buffer)
        hasher = hashlib.sha256()
        offset = 0

        with self.session.timeout_scope(self.flash_timeout):
            while offset < total:
                length = min(EFLASH_CHUNK_SIZE, total - offset)
                data = self.session.send(ReadFlash(addr + offset, length))
                if len(data) != length:
                    raise UnexpectedReplyError(
                        data,
                        f"ReadFlash @ {addr + offset:#x}: asked for {length} bytes, got {len(data)}",
                    )
                view[offset:offset + length] = data
                hasher.update(data)
                offset += length
                if progress_cb:
                    progress_cb(offset, total)

        logger.debug(f"Read {total} bytes @ {addr:#x}")
        return hasher.digest()

    def flash_sha256(self, addr: int, length: int) -> bytes:
        """Ask the device to hash a flash range."""
        with self.session.timeout_scope(self.flash_timeout):
            digest = self.session.send(FlashSha256(addr, length))
        if len(digest) != SHA256_LEN:
            raise UnexpectedReplyError(
                digest, f"SHA-256 reply must be {SHA256_LEN} bytes, got {len(digest)}"
            )
        return digest

    def verify_flash(self, addr: int, length: int, expected: bytes) -> bool:
        """Compare the device-side digest of a range with `expected`."""
        digest = self.flash_sha256(addr, length)
        if digest != expected:
            logger.warning(
                f"SHA-256 mismatch @ {addr:#x}: host {expected.hex()} device {digest.hex()}"
            )
            return False
        return True
