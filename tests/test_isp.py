"""Tests for the handshake and the ISP engine, driven over a fake serial port."""

import hashlib
import struct

import pytest

from bouffalo_flasher.errors import (
    AlignmentError,
    DeviceError,
    HandshakeFailedError,
    SessionExpiredError,
)
from bouffalo_flasher.firmware_image import BootHeader, FlashConfig, Segment, VirtAddr
from bouffalo_flasher.protocol.commands import Stage
from bouffalo_flasher.protocol.device_errors import DeviceErrorCode
from bouffalo_flasher.protocol.isp import IspEngine, handshake, sync_byte_count
from bouffalo_flasher.protocol.session import BootloaderSession


def _data_reply(payload: bytes) -> bytes:
    return b"OK" + struct.pack("<H", len(payload)) + payload


def _engine(transport, stage: Stage, clock=None) -> IspEngine:
    if clock is None:
        return IspEngine(BootloaderSession(transport, stage))
    return IspEngine(BootloaderSession(transport, stage, clock=clock))


class TestHandshake:
    """Sync burst and OK reply."""

    def test_sync_byte_count(self):
        """Sync burst length scales with baud rate."""
        assert sync_byte_count(500_000) == 150
        assert sync_byte_count(2_000_000) == 600
        assert sync_byte_count(115_200) == 34

    def test_handshake_sends_sync_burst(self, fake_transport):
        """Handshake sends the burst and returns a ROM session."""
        transport = fake_transport([b"OK"])
        session = handshake(transport, Stage.ROM)

        assert transport.ser.writes == [b"\x55" * 150]
        assert session.stage is Stage.ROM
        assert session.transport is transport

    def test_sync_burst_scales_with_baud(self, fake_transport):
        """The eflash loader handshake at 2 Mbaud sends 600 bytes."""
        transport = fake_transport([b"OK"], baudrate=2_000_000)
        handshake(transport, Stage.EFLASH_LOADER)
        assert len(transport.ser.writes[0]) == 600

    def test_handshake_drains_stale_input(self, fake_transport):
        """Stale bytes are flushed before the burst."""
        transport = fake_transport([b"OK"])
        transport.ser.rx.extend(b"garbage")
        handshake(transport, Stage.ROM)

        assert transport.ser.rx == bytearray()
        assert transport.ser.writes == [b"\x55" * 150]

    def test_handshake_rejects_other_reply(self, fake_transport):
        """Any reply other than OK fails the handshake."""
        with pytest.raises(HandshakeFailedError) as exc_info:
            handshake(fake_transport([b"NO"]), Stage.ROM)
        assert exc_info.value.reply == b"NO"

    def test_handshake_no_answer(self, fake_transport):
        """Silence fails the handshake."""
        with pytest.raises(HandshakeFailedError):
            handshake(fake_transport([]), Stage.ROM)


class TestRomStage:
    """Loading an image through the boot ROM."""

    def test_get_boot_info(self, fake_transport):
        """get_boot_info decodes the ROM reply."""
        payload = bytes.fromhex("01000000 00000000 03000000 589E0242 E8B41D00")
        transport = fake_transport([_data_reply(payload)])
        info = _engine(transport, Stage.ROM).get_boot_info()

        assert transport.ser.writes == [bytes([0x10, 0x00, 0x00, 0x00])]
        assert info.version == 1
        assert info.otp_info == payload[4:]

    def test_load_segment_chunks_at_4092(self, fake_transport):
        """Segments are sent in 4092-byte chunks."""
        segment = Segment(VirtAddr(0x22010000), bytes(range(256)) * 40)  # 10240 bytes
        transport = fake_transport([_data_reply(segment.header_bytes()), b"OK", b"OK", b"OK"])
        progress = []

        _engine(transport, Stage.ROM).load_segment(segment, lambda done, total: progress.append((done, total)))

        writes = transport.ser.writes
        assert writes[0][0] == 0x17
        assert writes[0][4:] == segment.header_bytes()
        assert [len(w) - 4 for w in writes[1:]] == [4092, 4092, 2056]
        assert all(w[0] == 0x18 for w in writes[1:])
        assert b"".join(w[4:] for w in writes[1:]) == segment.data
        assert progress == [(4092, 10240), (8184, 10240), (10240, 10240)]

    def test_load_segment_stops_on_device_error(self, fake_transport):
        """A device error stops the upload at that chunk."""
        segment = Segment(VirtAddr(0x22010000), b"\x00" * 5000)
        transport = fake_transport([_data_reply(segment.header_bytes()), b"FL\x15\x02"])

        with pytest.raises(DeviceError) as exc_info:
            _engine(transport, Stage.ROM).load_segment(segment)

        assert exc_info.value.error is DeviceErrorCode.IMG_SECTIONDATA_CRC_ERROR
        # header + first chunk only, nothing after the failure
        assert len(transport.ser.writes) == 2

    def test_load_image_sequence(self, fake_transport):
        """load_image sends header, segments, check and run in order."""
        header = BootHeader.builder().flash_config(FlashConfig()).build()
        segments = [
            Segment(VirtAddr(0x22010000), b"\x01" * 10),
            Segment(VirtAddr(0x22020000), b"\x02" * 20),
        ]
        replies = [b"OK"]
        for segment in segments:
            replies += [_data_reply(segment.header_bytes()), b"OK"]
        replies += [b"OK", b"OK"]
        transport = fake_transport(replies)
        progress = []

        _engine(transport, Stage.ROM).load_image(
            header, segments, lambda done, total: progress.append((done, total))
        )

        ids = [w[0] for w in transport.ser.writes]
        assert ids == [0x11, 0x17, 0x18, 0x17, 0x18, 0x19, 0x1A]
        assert transport.ser.writes[0][4:] == header.to_bytes()
        assert progress == [(10, 30), (30, 30)]


class TestEflashStage:
    """Flash operations through the eflash loader."""

    def test_write_flash_24000_bytes(self, fake_transport):
        """24000 bytes take one erase and three writes."""
        data = bytes(range(250)) * 96  # 24000 bytes
        transport = fake_transport([b"OK"] * 4)

        _engine(transport, Stage.EFLASH_LOADER).write_flash(0x10000, data)

        writes = transport.ser.writes
        erases = [w for w in writes if w[0] == 0x30]
        programs = [w for w in writes if w[0] == 0x31]
        assert len(erases) == 1
        assert struct.unpack("<II", erases[0][4:]) == (0x10000, 0x10000 + 24000 - 1)
        assert len(programs) == 3
        assert writes[0][0] == 0x30
        addrs = [struct.unpack("<I", w[4:8])[0] for w in programs]
        assert addrs == [0x10000, 0x10000 + 8192, 0x10000 + 16384]
        assert b"".join(w[8:] for w in programs) == data
        for frame in writes:
            assert frame[1] == sum(frame[2:]) & 0xFF

    def test_erase_requires_aligned_start(self, fake_transport):
        """Unaligned erase starts are refused before any I/O."""
        transport = fake_transport([b"OK"])
        with pytest.raises(AlignmentError):
            _engine(transport, Stage.EFLASH_LOADER).erase_flash(0x10001, 4096)
        assert transport.ser.writes == []

    def test_erase_is_not_rounded(self, fake_transport):
        """Erase length is sent as-is."""
        transport = fake_transport([b"OK"])
        _engine(transport, Stage.EFLASH_LOADER).erase_flash(0x2000, 100)
        assert struct.unpack("<II", transport.ser.writes[0][4:]) == (0x2000, 0x2000 + 99)

    def test_read_flash_exact(self, fake_transport):
        """Reads are split at 8192 bytes and hashed on the host."""
        content = bytes((i * 7) & 0xFF for i in range(10000))
        transport = fake_transport([_data_reply(content[:8192]), _data_reply(content[8192:])])
        buffer = bytearray(len(content))

        digest = _engine(transport, Stage.EFLASH_LOADER).read_flash_exact(0x4000, buffer)

        assert bytes(buffer) == content
        assert digest == hashlib.sha256(content).digest()
        requests = [struct.unpack("<II", w[4:]) for w in transport.ser.writes]
        assert requests == [(0x4000, 8192), (0x4000 + 8192, 1808)]

    def test_flash_sha256_and_verify(self, fake_transport):
        """The device digest is compared against the expected one."""
        digest = hashlib.sha256(b"firmware").digest()
        transport = fake_transport([_data_reply(digest), _data_reply(digest)])
        engine = _engine(transport, Stage.EFLASH_LOADER)

        assert engine.flash_sha256(0, 8) == digest
        assert not engine.verify_flash(0, 8, hashlib.sha256(b"other").digest())
        assert transport.ser.writes[0][0] == 0x3D

    def test_timeout_widened_and_restored(self, fake_transport):
        """Flash operations widen the timeout and restore it."""
        transport = fake_transport([b"OK"] * 2)
        _engine(transport, Stage.EFLASH_LOADER).write_flash(0, b"\x00" * 16)
        assert transport.timeout == 2.0
        assert 60.0 in transport.ser.timeout_history
        assert transport.ser.timeout == 2.0

    def test_timeout_restored_after_device_error(self, fake_transport):
        """The timeout is restored when the device reports an error."""
        transport = fake_transport([b"OK", b"FL\x06\x00"])
        with pytest.raises(DeviceError) as exc_info:
            _engine(transport, Stage.EFLASH_LOADER).write_flash(0, b"\x00" * 16)
        assert exc_info.value.error is DeviceErrorCode.FLASH_WRITE_ERROR
        assert transport.timeout == 2.0
        assert transport.ser.timeout == 2.0

    def test_expired_session_aborts_write(self, fake_transport, clock):
        """An idle session refuses to write."""
        transport = fake_transport([b"OK"] * 4)
        engine = _engine(transport, Stage.EFLASH_LOADER, clock=clock)
        clock.advance(5.0)

        with pytest.raises(SessionExpiredError) as exc_info:
            engine.write_flash(0, b"\x00" * 100)
        assert exc_info.value.transport is transport
        assert transport.ser.writes == []

    def test_expired_session_leaves_port_settings_alone(self, fake_transport, clock):
        """An idle session leaves the port timeout untouched."""
        transport = fake_transport([b"OK"])
        engine = _engine(transport, Stage.EFLASH_LOADER, clock=clock)
        clock.advance(3.0)

        with pytest.raises(SessionExpiredError):
            engine.erase_flash(0, 4096)
        assert transport.ser.timeout_history == []
        assert transport.ser.writes == []

    @pytest.mark.parametrize("operation", [
        lambda engine: engine.write_flash(0, b"\x00" * 16),
        lambda engine: engine.read_flash_exact(0, bytearray(16)),
        lambda engine: engine.flash_sha256(0, 16),
    ])
    def test_second_attempt_after_expiry_is_still_session_expired(self, fake_transport, clock, operation):
        """Retrying after expiry raises SessionExpiredError again."""
        transport = fake_transport([b"OK"] * 4)
        engine = _engine(transport, Stage.EFLASH_LOADER, clock=clock)
        clock.advance(3.0)

        with pytest.raises(SessionExpiredError) as first:
            operation(engine)
        with pytest.raises(SessionExpiredError) as second:
            operation(engine)

        assert first.value.transport is transport
        assert second.value.transport is None
        assert transport.ser.timeout_history == []
