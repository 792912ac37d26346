"""
Bootloader session: the serial link once the device has answered the
sync handshake.

Both the boot ROM and the eflash loader fall back to their idle state
after 2000ms without traffic. The session tracks the time of the last
successful send/receive and checks it lazily, just before the next
command goes out. There is no background timer.

Once expired the session is dead for good. The first attempt that
notices the expiry gets the transport back inside SessionExpiredError
so the caller can reopen and handshake again; later attempts get
nothing.
"""

import logging
import time
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Iterator, Optional

from bouffalo_flasher.errors import ProtocolError, SessionExpiredError, StageMismatchError
from bouffalo_flasher.protocol.commands import Reply, Stage, read_data, read_status
from bouffalo_flasher.protocol.transport import SerialTransport

logger = logging.getLogger(__name__)

# Device-side inactivity reset window (seconds)
SESSION_TIMEOUT = 2.0


class SessionState(Enum):
    ACTIVE = "active"
    EXPIRED = "expired"


class BootloaderSession:
    """
    Exclusive owner of a transport talking to one firmware stage.

    Create it through `isp.handshake()`, not directly.
    """

    def __init__(
        self,
        transport: SerialTransport,
        stage: Stage,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._transport: Optional[SerialTransport] = transport
        self.stage = stage
        self._clock = clock
        self.state = SessionState.ACTIVE
        self.last_interaction = clock()

    @property
    def transport(self) -> SerialTransport:
        """The owned transport (ProtocolError once released or expired)."""
        if self._transport is None:
            raise ProtocolError("Session no longer owns a transport")
        return self._transport

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE and self._transport is not None

    def idle_time(self) -> float:
        return self._clock() - self.last_interaction

    def touch(self) -> None:
        self.last_interaction = self._clock()

    def check_alive(self) -> SerialTransport:
        """
        Evaluate the expiry transition before a send.

        Raises:
            SessionExpiredError: If more than SESSION_TIMEOUT elapsed since
                the last interaction. Performs no I/O.
        """
        if self.state is SessionState.EXPIRED or self._transport is None:
            raise SessionExpiredError(transport=None)

        idle = self.idle_time()
        if idle > SESSION_TIMEOUT:
            self.state = SessionState.EXPIRED
            transport, self._transport = self._transport, None
            logger.warning(f"Bootloader session expired after {idle:.3f}s idle")
            raise SessionExpiredError(transport=transport, idle=idle)
        return self._transport

    @contextmanager
    def timeout_scope(self, seconds: float) -> Iterator[SerialTransport]:
        """
        Run a block with a widened transport timeout.

        Expiry is checked before the port is reconfigured.
        """
        transport = self.check_alive()
        with transport.timeout_scope(seconds):
            yield transport

    def release(self) -> SerialTransport:
        """Give up the session and hand the transport back to the caller."""
        transport = self.transport
        self._transport = None
        self.state = SessionState.EXPIRED
        logger.debug(f"Released {self.stage.value} session")
        return transport

    # --- I/O -------------------------------------------------------------

    def write(self, data: bytes) -> None:
        transport = self.check_alive()
        transport.write(data)
        self.touch()

    def read(self, length: int) -> bytes:
        data = self.transport.read(length)
        self.touch()
        return data

    def send(self, command) -> Optional[bytes]:
        """
        Send one command and decode its reply.

        Returns:
            The reply payload for data commands, None for status-only ones

        Raises:
            StageMismatchError: Command belongs to the other stage
            SessionExpiredError: Session idle past the reset window
            DeviceError / UnexpectedReplyError: On a failed reply
        """
        if command.STAGE is not self.stage:
            raise StageMismatchError(
                f"{type(command).__name__} is a {command.STAGE.value} command, "
                f"session is in {self.stage.value}"
            )
        self.write(command.encode())
        if command.REPLY is Reply.DATA:
            return read_data(self)
        read_status(self)
        return None
