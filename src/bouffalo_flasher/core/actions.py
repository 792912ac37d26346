"""
Core workflow actions for Bouffalo Flasher.

Each action opens its own connection, runs one operation end to end and
returns an OperationResult. Flash-modifying actions go through the
safety context for gating.

Getting to the flash takes two hops:
    open port -> (reset) -> ROM handshake -> load eflash loader image
    -> switch to the programming baud rate -> eflash loader handshake
"""

import hashlib
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from bouffalo_flasher.config import SerialConfig
from bouffalo_flasher.errors import FlasherError, ValidationError
from bouffalo_flasher.firmware_image import BOOT_HEADER_LEN, BootHeader, EFlashLoaderImage
from bouffalo_flasher.protocol.commands import Stage
from bouffalo_flasher.protocol.isp import IspEngine, handshake
from bouffalo_flasher.protocol.transport import SerialTransport, open_serial
from .parsing import require_erase_aligned
from .results import OperationResult, format_region
from .safety import SafetyContext, WritePermissionError, require_write_permission

logger = logging.getLogger(__name__)

# Give the loader time to start before the baud switch
LOADER_START_DELAY = 0.2

ProgressCallback = Callable[[int, int], None]


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "bouffalo_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


@contextmanager
def _open_transport(config: SerialConfig) -> Iterator[SerialTransport]:
    transport = open_serial(config.port, baudrate=config.baud_rate, timeout=config.timeout)
    try:
        if config.reset:
            transport.reset_into_bootloader()
        yield transport
    finally:
        transport.close()


def load_eflash_loader(
    transport: SerialTransport,
    config: SerialConfig,
    progress_cb: Optional[ProgressCallback] = None,
) -> IspEngine:
    """
    Boot the eflash loader from RAM and return an engine talking to it.

    Raises:
        ValidationError: No loader image configured
        FlasherError: Any handshake/load failure
    """
    if config.loader_path is None:
        raise ValidationError(
            "No eflash loader image configured. Use --loader or set BL_EFLASH_LOADER."
        )
    image = EFlashLoaderImage.parse(Path(config.loader_path).read_bytes())
    logger.info(f"Loading eflash loader ({len(image.segments)} segment(s))")

    rom = IspEngine(handshake(transport, Stage.ROM), flash_timeout=config.flash_timeout)
    rom.load_image(image.boot_header, image.segments, progress_cb)
    transport = rom.session.release()

    time.sleep(LOADER_START_DELAY)
    transport.baudrate = config.program_baud_rate
    session = handshake(transport, Stage.EFLASH_LOADER)
    return IspEngine(session, flash_timeout=config.flash_timeout)


def read_boot_info(config: SerialConfig) -> OperationResult:
    """
    Handshake with the boot ROM and read its version and OTP flags.

    Returns:
        OperationResult with metadata["version"], metadata["otp_info"] (hex)
    """
    with _capture_logs() as logs:
        try:
            with _open_transport(config) as transport:
                engine = IspEngine(handshake(transport, Stage.ROM))
                info = engine.get_boot_info()

            result = OperationResult.success(operation="boot_info")
            result.metadata["version"] = info.version
            result.metadata["otp_info"] = info.otp_info.hex()
            result.logs = logs
            return result

        except FlasherError as e:
            logger.error(f"boot_info failed: {e}")
            result = OperationResult.failure(operation="boot_info", error=str(e))
            result.logs = logs
            return result


def erase_flash(
    config: SerialConfig,
    addr: int,
    size: int,
    safety_ctx: SafetyContext,
) -> OperationResult:
    """
    Erase a sector-aligned flash range.

    Raises:
        WritePermissionError: If the safety context denies the erase
    """
    region = format_region(addr, size)
    with _capture_logs() as logs:
        try:
            require_erase_aligned(addr, size)
        except ValidationError as e:
            return OperationResult.failure(operation="erase_flash", error=str(e), region=region)

        require_write_permission(safety_ctx, "erase_flash", addr, size)

        if safety_ctx.simulate:
            result = OperationResult.success(operation="erase_flash", region=region, bytes_len=size)
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - nothing erased")
            result.logs = logs
            return result

        try:
            with _open_transport(config) as transport:
                engine = load_eflash_loader(transport, config)
                engine.erase_flash(addr, size)

            result = OperationResult.success(operation="erase_flash", region=region, bytes_len=size)
            result.logs = logs
            return result

        except WritePermissionError:
            raise
        except (FlasherError, OSError) as e:
            logger.error(f"erase_flash failed: {e}")
            result = OperationResult.failure(operation="erase_flash", error=str(e), region=region)
            result.logs = logs
            return result


def write_flash(
    config: SerialConfig,
    addr: int,
    data: bytes,
    safety_ctx: SafetyContext,
    verify: bool = True,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Program `data` at `addr` and check the device-side SHA-256.

    Args:
        config: Connection settings
        addr: Flash offset, sector aligned
        data: Bytes to program
        safety_ctx: Safety context for gating
        verify: Compare host and device SHA-256 after programming
        progress_cb: Optional progress callback(bytes_written, total)

    Returns:
        OperationResult with hashes["host_sha256"] and, when verified,
        hashes["device_sha256"]

    Raises:
        WritePermissionError: If the safety context denies the write
    """
    region = format_region(addr, len(data))
    if not data:
        return OperationResult.failure(operation="write_flash", error="Nothing to write (empty input)")

    with _capture_logs() as logs:
        try:
            require_erase_aligned(addr)
        except ValidationError as e:
            return OperationResult.failure(operation="write_flash", error=str(e), region=region)

        require_write_permission(safety_ctx, "write_flash", addr, len(data))

        host_digest = hashlib.sha256(data).digest()

        if safety_ctx.simulate:
            result = OperationResult.success(operation="write_flash", region=region, bytes_len=len(data))
            result.hashes["host_sha256"] = host_digest.hex()
            result.metadata["simulated"] = True
            result.add_warning("Simulation mode - no actual write performed")
            result.logs = logs
            return result

        try:
            with _open_transport(config) as transport:
                engine = load_eflash_loader(transport, config)
                engine.write_flash(addr, data, progress_cb)
                device_digest = engine.flash_sha256(addr, len(data)) if verify else None

            result = OperationResult.success(operation="write_flash", region=region, bytes_len=len(data))
            result.compare_digests(
                host_digest, device_digest, "Verification failed: device SHA-256 does not match the input"
            )
            result.logs = logs
            return result

        except WritePermissionError:
            raise
        except (FlasherError, OSError) as e:
            logger.error(f"write_flash failed: {e}")
            result = OperationResult.failure(operation="write_flash", error=str(e), region=region)
            result.logs = logs
            return result


def read_flash(
    config: SerialConfig,
    addr: int,
    size: int,
    output_path: Optional[Union[str, Path]] = None,
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Read a flash range and cross-check it against the device's own hash.

    Returns:
        OperationResult with metadata["data"] (bytes), hashes["host_sha256"],
        hashes["device_sha256"] and metadata["output_path"] when saved
    """
    region = format_region(addr, size)
    with _capture_logs() as logs:
        try:
            buffer = bytearray(size)
            with _open_transport(config) as transport:
                engine = load_eflash_loader(transport, config)
                host_digest = engine.read_flash_exact(addr, buffer, progress_cb)
                device_digest = engine.flash_sha256(addr, size)

            result = OperationResult.success(operation="read_flash", region=region, bytes_len=size)
            result.metadata["data"] = bytes(buffer)
            matched = result.compare_digests(
                host_digest, device_digest, "Read-back mismatch: host and device SHA-256 differ"
            )
            if matched and output_path is not None:
                Path(output_path).write_bytes(buffer)
                result.metadata["output_path"] = str(output_path)
            result.logs = logs
            return result

        except (FlasherError, OSError) as e:
            logger.error(f"read_flash failed: {e}")
            result = OperationResult.failure(operation="read_flash", error=str(e), region=region)
            result.logs = logs
            return result


def inspect_image(path: Union[str, Path]) -> OperationResult:
    """
    Parse a boot header (or a full loader image) from a file, offline.

    Returns:
        OperationResult with metadata describing the header, its CRCs and
        any segments that follow it
    """
    try:
        blob = Path(path).read_bytes()
    except OSError as e:
        return OperationResult.failure(operation="inspect_image", error=str(e))

    try:
        header = BootHeader.from_bytes(blob[:BOOT_HEADER_LEN])
    except FlasherError as e:
        return OperationResult.failure(operation="inspect_image", error=str(e), bytes_len=len(blob))

    result = OperationResult.success(operation="inspect_image", bytes_len=len(blob))
    result.metadata.update({
        "cpu": header.cpu.name,
        "magic": header.cpu.magic.decode("ascii"),
        "revision": header.revision,
        "entry_point": f"0x{header.entry_point:08X}",
        "image_start": f"0x{header.image_start:08X}",
        "boot_config": f"0x{header.boot_config:08X}",
        "image_segment_info": header.image_segment_info,
        "crc32": f"0x{header.crc32:08X}",
        "header_crc_ok": header.crc_valid(),
        "flash_config_crc_ok": header.flash_config.crc_valid(),
        "clock_config_crc_ok": header.clock_config.crc_valid(),
    })
    result.hashes["image_hash"] = header.hash.hex()

    for name in ("header_crc_ok", "flash_config_crc_ok", "clock_config_crc_ok"):
        if not result.metadata[name]:
            result.add_warning(f"{name.replace('_ok', '').replace('_', ' ')} mismatch")

    if len(blob) > BOOT_HEADER_LEN:
        try:
            image = EFlashLoaderImage.parse(blob)
        except FlasherError as e:
            result.add_warning(f"Data after boot header is not a segment list: {e}")
        else:
            result.metadata["segments"] = [
                {"dest_addr": str(segment.dest_addr), "size": segment.size}
                for segment in image.segments
            ]
    return result
