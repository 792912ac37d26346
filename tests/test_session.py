"""Tests for the bootloader session inactivity window."""

import pytest

from bouffalo_flasher.errors import ProtocolError, SessionExpiredError, StageMismatchError
from bouffalo_flasher.protocol.commands import CheckImage, EraseFlash, GetBootInfo, Stage
from bouffalo_flasher.protocol.session import SESSION_TIMEOUT, BootloaderSession, SessionState


def test_expired_session_rejects_without_io(fake_transport, clock):
    """An idle session raises without touching the port."""
    transport = fake_transport([b"OK"])
    session = BootloaderSession(transport, Stage.ROM, clock=clock)
    session.last_interaction = clock() - 3.0

    with pytest.raises(SessionExpiredError) as exc_info:
        session.send(CheckImage())

    assert transport.ser.writes == []
    assert exc_info.value.transport is transport
    assert session.state is SessionState.EXPIRED


def test_expired_session_hands_transport_back_only_once(fake_transport, clock):
    """Only the first expiry returns the transport."""
    session = BootloaderSession(fake_transport(), Stage.ROM, clock=clock)
    clock.advance(SESSION_TIMEOUT + 0.5)

    with pytest.raises(SessionExpiredError):
        session.send(CheckImage())
    with pytest.raises(SessionExpiredError) as exc_info:
        session.send(CheckImage())
    assert exc_info.value.transport is None


def test_traffic_refreshes_last_interaction(fake_transport, clock):
    """Each reply restarts the inactivity window."""
    transport = fake_transport([b"OK", b"OK"])
    session = BootloaderSession(transport, Stage.ROM, clock=clock)

    clock.advance(1.5)
    session.send(CheckImage())
    clock.advance(1.5)
    # 3s since creation, but only 1.5s since the last reply
    session.send(CheckImage())

    assert len(transport.ser.writes) == 2
    assert session.is_active


def test_exactly_at_window_is_still_active(fake_transport, clock):
    """Exactly two seconds idle is still active."""
    session = BootloaderSession(fake_transport([b"OK"]), Stage.ROM, clock=clock)
    clock.advance(SESSION_TIMEOUT)
    session.send(CheckImage())
    assert session.state is SessionState.ACTIVE


def test_stage_mismatch(fake_transport, clock):
    """Commands of the other stage are refused."""
    transport = fake_transport()
    session = BootloaderSession(transport, Stage.ROM, clock=clock)
    with pytest.raises(StageMismatchError):
        session.send(EraseFlash(0, 4095))
    assert transport.ser.writes == []

    eflash = BootloaderSession(fake_transport(), Stage.EFLASH_LOADER, clock=clock)
    with pytest.raises(StageMismatchError):
        eflash.send(GetBootInfo())


def test_send_returns_payload_for_data_commands(fake_transport, clock):
    """Data commands return their payload."""
    reply = b"OK\x14\x00" + b"\x01\x00\x00\x00" + bytes(16)
    session = BootloaderSession(fake_transport([reply]), Stage.ROM, clock=clock)
    assert session.send(GetBootInfo()) == b"\x01\x00\x00\x00" + bytes(16)


def test_release_hands_transport_back(fake_transport, clock):
    """release() hands the transport back and ends the session."""
    transport = fake_transport()
    session = BootloaderSession(transport, Stage.ROM, clock=clock)

    assert session.release() is transport
    assert not session.is_active
    with pytest.raises(ProtocolError):
        session.transport
    with pytest.raises(SessionExpiredError):
        session.send(CheckImage())


def test_timeout_scope_widens_and_restores(fake_transport, clock):
    """The scope yields the transport and restores the timeout."""
    transport = fake_transport()
    session = BootloaderSession(transport, Stage.EFLASH_LOADER, clock=clock)

    with session.timeout_scope(60.0) as scoped:
        assert scoped is transport
        assert transport.timeout == 60.0
    assert transport.timeout == 2.0


def test_timeout_scope_checks_expiry_first(fake_transport, clock):
    """An idle session raises before the timeout changes."""
    transport = fake_transport()
    session = BootloaderSession(transport, Stage.EFLASH_LOADER, clock=clock)
    clock.advance(SESSION_TIMEOUT + 1.0)

    with pytest.raises(SessionExpiredError):
        with session.timeout_scope(60.0):
            pass
    assert transport.ser.timeout_history == []
