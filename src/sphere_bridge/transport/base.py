"""
Host-side transport: receive from any relay, send to one addressable target.

Delivery of pushes is best-effort and at-most-once. The original caller may
already be gone, so a failed send is logged and dropped, never retried.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from sphere_bridge.models.events import is_request

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageSender:
    """Identity metadata attached by the trusted medium, not by the page."""
    target: Optional[str] = None
    origin: Optional[str] = None
    approver: bool = False


Reply = Optional[Any]
Listener = Callable[[dict[str, Any], MessageSender], Awaitable[Reply]]
Handler = Callable[[dict[str, Any], MessageSender], Union[Reply, Awaitable[Reply]]]
PushHandler = Callable[[dict[str, Any]], Any]


class MessagingApi(Protocol):
    """The trusted medium a HostTransport is layered on."""

    def add_listener(self, listener: Listener) -> None: ...

    def remove_listener(self, listener: Listener) -> None: ...

    async def send_to(self, target: str, message: dict[str, Any]) -> None: ...


class DispatcherPort(Protocol):
    """A relay's connection to the dispatcher."""

    async def request(self, message: dict[str, Any]) -> Any: ...

    def on_push(self, handler: PushHandler) -> Callable[[], None]: ...

    async def close(self) -> None: ...


class HostTransport:
    def __init__(self, api: MessagingApi):
        self._api: Optional[MessagingApi] = api
        self._handlers: list[Handler] = []
        self._active_target: Optional[str] = None
        api.add_listener(self._on_raw)

    @property
    def active_target(self) -> Optional[str]:
        return self._active_target

    def on_message(self, handler: Handler) -> Callable[[], None]:
        """Register a handler for every inbound envelope. Returns a cleanup function.

        The first non-None value returned by a handler becomes the reply.
        """
        self._handlers.append(handler)

        def remove() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return remove

    async def _on_raw(self, message: dict[str, Any], sender: MessageSender) -> Reply:
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.debug("Dropping untyped message from %s", sender.target)
            return None
        if sender.target is not None and is_request(message["type"]):
            self._active_target = sender.target

        reply: Reply = None
        for handler in list(self._handlers):
            try:
                out = handler(message, sender)
                if inspect.isawaitable(out):
                    out = await out
            except Exception:
                logger.exception(f"Handler failed for {message['type']}")
                continue
            if reply is None and out is not None:
                reply = out
        return reply

    async def send(self, envelope: dict[str, Any]) -> bool:
        """Send to the most recent request sender. No-op without one."""
        if self._active_target is None:
            logger.debug("No active target; dropping %s", envelope.get("type"))
            return False
        return await self.send_to(self._active_target, envelope)

    async def send_to(self, target: Optional[str], envelope: dict[str, Any]) -> bool:
        """Send to a specific target. Returns False if it could not be delivered."""
        if self._api is None or target is None:
            logger.warning(f"Cannot deliver {envelope.get('type')}: no target")
            return False
        try:
            await self._api.send_to(target, envelope)
        except Exception as e:
            logger.warning(f"Failed to deliver {envelope.get('type')} to {target}: {e}")
            return False
        return True

    def destroy(self) -> None:
        if self._api is not None:
            self._api.remove_listener(self._on_raw)
            self._api = None
        self._handlers.clear()
        self._active_target = None
