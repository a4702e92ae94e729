"""
Relay: the only component that crosses the trust boundary.

Page side: forwards request envelopes to the dispatcher and posts replies
back. Dispatcher side: forwards pushed results to the page unmodified.
A "pending" reply is swallowed; the page waits for the later result.
Any local failure becomes a ``success: false`` response for the same
request id, so the page never waits on a relay fault.
"""

import logging
from typing import Any, Callable, Optional

from sphere_bridge.errors import TransportError
from sphere_bridge.models.events import is_request, is_response, is_result, response_type
from sphere_bridge.transport.base import DispatcherPort
from sphere_bridge.transport.envelope import build_failure, parse_request
from sphere_bridge.transport.page import PageChannel

logger = logging.getLogger(__name__)


class Relay:
    def __init__(self, page: PageChannel, port: DispatcherPort, origin: str):
        self._page = page
        self._port = port
        self._origin = origin
        self._in_flight: set[str] = set()
        self._remove_page: Optional[Callable[[], None]] = None
        self._remove_push: Optional[Callable[[], None]] = None

    @property
    def origin(self) -> str:
        return self._origin

    @property
    def running(self) -> bool:
        return self._remove_page is not None

    def start(self) -> None:
        if self.running:
            return
        self._remove_page = self._page.add_listener(self._on_page_message)
        self._remove_push = self._port.on_push(self._on_push)

    async def stop(self, close_port: bool = True) -> None:
        if self._remove_page is not None:
            self._remove_page()
            self._remove_page = None
        if self._remove_push is not None:
            self._remove_push()
            self._remove_push = None
        if close_port:
            await self._port.close()

    async def _on_page_message(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        message_type = data.get("type")
        if not is_request(message_type):
            return  # not a general pipe
        request_id = data.get("requestId")
        if not isinstance(request_id, str) or not request_id:
            logger.debug(f"Dropping {message_type} without a request id")
            return
        if request_id in self._in_flight:
            logger.debug(f"Dropping duplicate {message_type} {request_id}")
            return

        self._in_flight.add(request_id)
        try:
            await self._forward(message_type, request_id, data)
        finally:
            self._in_flight.discard(request_id)

    async def _forward(self, message_type: str, request_id: str, data: dict[str, Any]) -> None:
        logger.debug("Relay forwarding %s %s", message_type, request_id)
        try:
            outgoing = {**data, "origin": self._origin}
            parse_request(outgoing)
            response = await self._port.request(outgoing)
            if not isinstance(response, dict):
                raise TransportError("No response from wallet")
            if not is_response(response.get("type")):
                raise TransportError(f"Unexpected reply from wallet: {response.get('type')}")
            if response.get("pending"):
                logger.debug(f"{request_id} is awaiting approval")
                return
            self._page.post({"type": response_type(message_type), **response, "requestId": request_id})
        except Exception as e:
            logger.error(f"Relay error for {message_type} {request_id}: {e}")
            self._page.post(build_failure(message_type, request_id, str(e) or "Unknown error"))

    def _on_push(self, message: dict[str, Any]) -> None:
        if not is_result(message.get("type")):
            logger.debug(f"Ignoring push {message.get('type')}")
            return
        self._page.post(message)
