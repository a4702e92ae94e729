"""
In-process messaging hub. Stands in for the trusted medium when every
context lives in one interpreter (embedding, tests).
"""

import itertools
import logging
from typing import Any, Callable, Optional

from sphere_bridge.errors import TransportError
from sphere_bridge.transport.base import Listener, MessageSender, PushHandler, Reply

logger = logging.getLogger(__name__)


class LocalMessaging:
    def __init__(self) -> None:
        self._listeners: list[Listener] = []
        self._ports: dict[str, "LocalPort"] = {}
        self._ids = itertools.count(1)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def connect(self, target: Optional[str] = None, approver: bool = False) -> "LocalPort":
        """Open a port. Each port is one addressable target.

        Reconnecting under a live target takes it over; the older port
        is closed.
        """
        target = target or f"local-{next(self._ids)}"
        previous = self._ports.get(target)
        if previous is not None:
            logger.info(f"Target {target} reconnected")
            previous._hub = None
        port = LocalPort(self, target, approver)
        self._ports[target] = port
        return port

    async def send_to(self, target: str, message: dict[str, Any]) -> None:
        port = self._ports.get(target)
        if port is None:
            raise TransportError(f"Target not reachable: {target}", target)
        port._deliver(message)

    async def _dispatch(self, message: dict[str, Any], sender: MessageSender) -> Reply:
        reply: Reply = None
        for listener in list(self._listeners):
            out = await listener(message, sender)
            if reply is None and out is not None:
                reply = out
        return reply

    def _detach(self, port: "LocalPort") -> None:
        if self._ports.get(port.target) is port:
            del self._ports[port.target]


class LocalPort:
    def __init__(self, hub: LocalMessaging, target: str, approver: bool):
        self._hub: Optional[LocalMessaging] = hub
        self.target = target
        self.approver = approver
        self._push_handlers: list[PushHandler] = []

    @property
    def closed(self) -> bool:
        return self._hub is None

    async def request(self, message: dict[str, Any]) -> Any:
        if self._hub is None:
            raise TransportError("Port is closed", self.target)
        sender = MessageSender(target=self.target, origin=message.get("origin"), approver=self.approver)
        return await self._hub._dispatch(message, sender)

    def on_push(self, handler: PushHandler) -> Callable[[], None]:
        self._push_handlers.append(handler)

        def remove() -> None:
            try:
                self._push_handlers.remove(handler)
            except ValueError:
                pass

        return remove

    def _deliver(self, message: dict[str, Any]) -> None:
        for handler in list(self._push_handlers):
            try:
                handler(message)
            except Exception:
                logger.exception(f"Push handler failed on {self.target}")

    async def close(self) -> None:
        if self._hub is not None:
            self._hub._detach(self)
            self._hub = None
        self._push_handlers.clear()
