"""
Message-level client.

Addresses commands, numbers them, and pairs state replies with the request
that asked for them. The client never touches the socket itself: it is
handed a send callable by the transport.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..exceptions import LifxDjError, QueryTimeoutError, TransportClosedError
from .commands import Command
from .registry import Device, serial_from_target

logger = logging.getLogger(__name__)

BROADCAST_TARGET = "00:00:00:00:00:00"
DEFAULT_DEVICE_PORT = 56700

SendFunc = Callable[[bytes, tuple[str, int]], bool]

# Failures a single unicast may raise; callers log them and carry on.
DISPATCH_ERRORS = (LifxDjError, OSError, ValueError)


@dataclass
class PendingRequest:
    """A request waiting for its reply."""
    future: asyncio.Future
    response_type: Optional[type]
    command: str


class Client:
    """
    Sends commands through a transport and matches replies.

    Replies are matched on (device serial, sequence number) and must be of
    the command's expected response type; acknowledgements and unrelated
    traffic are ignored.
    """

    def __init__(
        self,
        send: SendFunc,
        broadcast_address: str = "255.255.255.255",
        device_port: int = DEFAULT_DEVICE_PORT,
        request_timeout: float = 1.0,
        source: Optional[int] = None,
    ):
        self._send = send
        self.broadcast_address = broadcast_address
        self.device_port = device_port
        self.request_timeout = request_timeout
        self.source = source if source is not None else random.randint(2, 0xFFFFFFFF)
        self._sequence = 0
        self._pending: dict[tuple[str, int], PendingRequest] = {}

    def _next_sequence(self) -> int:
        self._sequence = (self._sequence + 1) % 256
        return self._sequence

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def broadcast(self, command: Command) -> None:
        """Send a tagged command to every device on the segment."""
        data = command.pack(BROADCAST_TARGET, self.source, self._next_sequence())
        self._send(data, (self.broadcast_address, self.device_port))

    def unicast(self, command: Command, device: Device) -> None:
        """Fire-and-forget a command to one device."""
        data = command.pack(device.target, self.source, self._next_sequence())
        if not self._send(data, (device.address, device.port)):
            raise TransportClosedError(f"unicast {command.name}")

    async def request(
        self,
        command: Command,
        device: Device,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Send a command that expects a reply and wait for it.

        Raises:
            QueryTimeoutError: No matching reply arrived in time
            TransportClosedError: The transport is closed
        """
        timeout = self.request_timeout if timeout is None else timeout
        sequence = self._next_sequence()
        key = (device.serial, sequence)

        future = asyncio.get_running_loop().create_future()
        self._pending[key] = PendingRequest(future, command.response_type, command.name)
        try:
            data = command.pack(device.target, self.source, sequence, response=True)
            if not self._send(data, (device.address, device.port)):
                raise TransportClosedError(f"request {command.name}")
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise QueryTimeoutError(device.serial, command.name, timeout) from None
        finally:
            self._pending.pop(key, None)

    def receive(self, message: Any) -> bool:
        """
        Offer a decoded message to the pending requests.

        Returns True if it completed a request.
        """
        if getattr(message, "source_id", self.source) != self.source:
            return False

        key = (serial_from_target(message.target_addr), message.seq_num)
        pending = self._pending.get(key)
        if pending is None or pending.future.done():
            return False
        if pending.response_type is not None and not isinstance(message, pending.response_type):
            return False

        pending.future.set_result(message)
        return True

    def cancel_all(self) -> None:
        """Fail every outstanding request."""
        for pending in list(self._pending.values()):
            if not pending.future.done():
                pending.future.set_exception(TransportClosedError(f"request {pending.command}"))
        self._pending.clear()
