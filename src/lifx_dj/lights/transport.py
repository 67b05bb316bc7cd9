"""
UDP transport for the LIFX LAN protocol.

Owns the socket, broadcasts discovery requests on a fixed interval, and
routes every inbound datagram to the client (reply matching) and to the
device registry (announcements).

Protocol reference:
  - Discovery: GetService broadcast to 255.255.255.255:56700
  - Control:   unicast UDP to the device's address and port
"""

from __future__ import annotations

import asyncio
import logging
import socket
from collections import deque
from typing import Any, Optional

from aiolifx.unpack import unpack_lifx_message

from ..config.schema import TransportConfig
from ..exceptions import TransportBindError
from . import commands
from .client import BROADCAST_TARGET, Client
from .registry import DeviceRegistry, serial_from_target

logger = logging.getLogger(__name__)


def decode(data: bytes) -> Optional[Any]:
    """Decode a datagram, or return None for anything that is not a LIFX message."""
    try:
        return unpack_lifx_message(data)
    except Exception as e:
        # Foreign traffic trips the decoder in arbitrary ways.
        logger.debug("Dropping undecodable datagram (%d bytes): %s", len(data), e)
        return None


class _DatagramProtocol(asyncio.DatagramProtocol):
    """asyncio callbacks forwarded to the owning LanTransport."""

    def __init__(self, owner: "LanTransport"):
        self._owner = owner

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        self._owner._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.warning("UDP error: %s", exc)

    def pause_writing(self) -> None:
        self._owner._pause_writing()

    def resume_writing(self) -> None:
        self._owner._resume_writing()

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._owner._on_connection_lost(exc)


class LanTransport:
    """
    Bound UDP endpoint with periodic discovery.

    Sends are fire-and-forget. Datagrams the OS cannot take yet (write flow
    control paused) are held in a backlog and counted as pending; close()
    defers the socket teardown until that count drains to zero, or drops
    the backlog once close_grace seconds have passed.

    Usage:
        registry = DeviceRegistry()
        transport = LanTransport(registry)
        await transport.open()
        ...
        transport.close()
        await transport.wait_closed()
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        config: TransportConfig | None = None,
        close_grace: float = 2.0,
    ):
        self.registry = registry
        self.config = config or TransportConfig()
        self.close_grace = close_grace
        self.client = Client(
            self.send,
            broadcast_address=self.config.broadcast_address,
            device_port=self.config.device_port,
            request_timeout=self.config.request_timeout,
        )

        self._transport: asyncio.DatagramTransport | None = None
        self._discovery_task: asyncio.Task | None = None
        self._backlog: deque[tuple[bytes, tuple[str, int]]] = deque()
        self._pending_sends = 0
        self._writing_paused = False
        self._should_close = False
        self._grace_handle: asyncio.TimerHandle | None = None
        self._closed = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._should_close

    @property
    def pending_sends(self) -> int:
        return self._pending_sends

    @property
    def local_address(self) -> tuple[str, int] | None:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")

    async def open(self) -> None:
        """
        Bind the socket and start discovery.

        Raises:
            TransportBindError: The endpoint could not be bound
        """
        loop = asyncio.get_running_loop()
        host, port = self.config.bind_host, self.config.bind_port
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self),
                local_addr=(host, port),
                family=socket.AF_INET,
                allow_broadcast=True,
            )
        except OSError as e:
            raise TransportBindError(host, port, str(e)) from e

        self._transport = transport
        logger.info("UDP transport bound on %s", self.local_address)
        self._discovery_task = loop.create_task(self._discovery_loop())

    async def _discovery_loop(self) -> None:
        command = commands.get_service()
        while True:
            try:
                self.client.broadcast(command)
            except Exception as e:
                logger.warning("Discovery broadcast failed: %s", e)
            await asyncio.sleep(self.config.discovery_interval)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, data: bytes, address: tuple[str, int]) -> bool:
        """
        Queue a datagram for sending.

        Returns False (and drops the datagram) once close() has been called.
        """
        if self._transport is None or self._should_close:
            logger.debug("Transport closed, dropping datagram to %s", address)
            return False

        self._pending_sends += 1
        if self._writing_paused:
            self._backlog.append((data, address))
            return True

        self._write(data, address)
        return True

    def _write(self, data: bytes, address: tuple[str, int]) -> None:
        try:
            self._transport.sendto(data, address)
        except OSError as e:
            logger.warning("Send to %s failed: %s", address, e)
        finally:
            self._send_done()

    def _send_done(self) -> None:
        self._pending_sends -= 1
        if self._should_close and self._pending_sends <= 0:
            self._teardown()

    def _pause_writing(self) -> None:
        self._writing_paused = True

    def _resume_writing(self) -> None:
        self._writing_paused = False
        while self._backlog and not self._writing_paused:
            data, address = self._backlog.popleft()
            self._write(data, address)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    def _on_datagram(self, data: bytes, addr: tuple[str, int]) -> None:
        message = decode(data)
        if message is None:
            return

        target = getattr(message, "target_addr", None)
        if not target or target == BROADCAST_TARGET:
            return

        host, port = addr[0], addr[1]
        self.registry.register(serial_from_target(target), port, host, target)
        self.client.receive(message)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop discovery and release the socket once pending sends drain."""
        if self._should_close:
            return
        self._should_close = True

        if self._discovery_task is not None:
            self._discovery_task.cancel()
            self._discovery_task = None
        self.client.cancel_all()

        if self._pending_sends <= 0:
            self._teardown()
        else:
            self._grace_handle = asyncio.get_running_loop().call_later(
                self.close_grace, self._drop_backlog
            )

    def _drop_backlog(self) -> None:
        self._grace_handle = None
        logger.warning("Dropping %d unsent datagrams on close", self._pending_sends)
        self._backlog.clear()
        self._pending_sends = 0
        self._teardown()

    def _teardown(self) -> None:
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            logger.info("UDP transport closed")
        self._closed.set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def _on_connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            logger.warning("UDP endpoint lost: %s", exc)
        self._should_close = True
        if self._discovery_task is not None:
            self._discovery_task.cancel()
            self._discovery_task = None
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None
        self._backlog.clear()
        self._pending_sends = 0
        self._transport = None
        self._closed.set()
