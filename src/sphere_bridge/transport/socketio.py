"""
Socket.IO transport: the trusted medium between relays and the dispatcher.

Relays and approvers connect as clients. Each connection names a stable
target in its auth payload (a relay keeps it across reconnects and
restarts); the server maps it to whichever sid currently holds it.
Requests travel on ``sphere:request`` and are answered through the
Socket.IO ack; results are pushed on ``sphere:push``.
"""

import asyncio
import logging
import secrets
import uuid
from typing import Any, Callable, Optional

import socketio
from socketio import exceptions as sio_exceptions

from sphere_bridge.errors import TransportError
from sphere_bridge.transport.base import Listener, MessageSender, PushHandler, Reply

SOCKETIO_PATH = "/sphere/socket.io/"
REQUEST_EVENT = "sphere:request"
PUSH_EVENT = "sphere:push"
DEFAULT_CALL_TIMEOUT_S = 90.0

logger = logging.getLogger(__name__)


class SocketIOMessaging:
    """Server side. Wraps an AsyncServer as a MessagingApi."""

    def __init__(self, server: socketio.AsyncServer, approver_token: Optional[str] = None):
        self._server = server
        self._approver_token = approver_token
        self._listeners: list[Listener] = []
        self._sids: dict[str, str] = {}     # target -> live sid
        self._targets: dict[str, str] = {}  # sid -> target
        server.on("connect", self._on_connect)
        server.on("disconnect", self._on_disconnect)
        server.on(REQUEST_EVENT, self._on_request)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def sid_for(self, target: str) -> Optional[str]:
        return self._sids.get(target)

    async def send_to(self, target: str, message: dict[str, Any]) -> None:
        sid = self._sids.get(target)
        if sid is None:
            raise TransportError(f"Target not connected: {target}", target)
        try:
            await self._server.emit(PUSH_EVENT, message, to=sid)
        except Exception as e:
            raise TransportError(f"Push to {target} failed: {e}", target) from e

    async def _on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> Optional[bool]:
        auth = auth if isinstance(auth, dict) else {}
        token = auth.get("token")
        approver = False
        if token is not None:
            if not self._approver_token or not secrets.compare_digest(str(token), self._approver_token):
                logger.warning(f"Rejecting connection {sid}: bad approver token")
                return False
            approver = True

        requested = auth.get("target")
        target = requested if isinstance(requested, str) and requested else sid
        previous = self._sids.get(target)
        if previous is not None and previous != sid:
            logger.info(f"Target {target} moved from {previous} to {sid}")
            self._targets.pop(previous, None)
        self._sids[target] = sid
        self._targets[sid] = target

        await self._server.save_session(sid, {"approver": approver})
        logger.debug("Connected %s as %s (approver=%s)", sid, target, approver)
        return None

    async def _on_disconnect(self, sid: str, *_args: Any) -> None:
        target = self._targets.pop(sid, None)
        if target is not None and self._sids.get(target) == sid:
            del self._sids[target]
        logger.debug("Disconnected %s (%s)", sid, target)

    async def _on_request(self, sid: str, data: Any) -> Reply:
        session = await self._server.get_session(sid)
        origin = data.get("origin") if isinstance(data, dict) else None
        sender = MessageSender(
            target=self._targets.get(sid, sid),
            origin=origin,
            approver=bool(session.get("approver")),
        )
        reply: Reply = None
        for listener in list(self._listeners):
            out = await listener(data, sender)
            if reply is None and out is not None:
                reply = out
        return reply


class SocketIOPort:
    """Client side. A relay's (or approver's) connection to the dispatcher.

    ``target`` names this endpoint to the server. A relay that restarts
    passes the same value so results parked for it still arrive.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        target: Optional[str] = None,
        transports: Optional[list[str]] = None,
        socketio_path: str = SOCKETIO_PATH,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_S,
        connect_timeout: float = 15.0,
    ):
        self._url = url
        self._token = token
        self._target = target or uuid.uuid4().hex
        self._transports = transports or ["websocket"]
        self._socketio_path = socketio_path
        self._call_timeout = call_timeout
        self._connect_timeout = connect_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._push_handlers: list[PushHandler] = []

    @property
    def connected(self) -> bool:
        return self._sio is not None and self._sio.connected

    @property
    def target(self) -> str:
        return self._target

    def on_push(self, handler: PushHandler) -> Callable[[], None]:
        """Add a push handler. Returns a cleanup function."""
        self._push_handlers.append(handler)

        def remove() -> None:
            try:
                self._push_handlers.remove(handler)
            except ValueError:
                pass

        return remove

    def _auth(self) -> dict[str, str]:
        auth = {"target": self._target}
        if self._token:
            auth["token"] = self._token
        return auth

    async def connect(self) -> None:
        if self.connected:
            return

        self._sio = socketio.AsyncClient()

        @self._sio.on(PUSH_EVENT)
        async def on_push(data: Any) -> None:
            if not isinstance(data, dict):
                return
            for handler in list(self._push_handlers):
                try:
                    handler(data)
                except Exception:
                    logger.exception("Push handler failed")

        try:
            await asyncio.wait_for(
                self._sio.connect(
                    self._url,
                    auth=self._auth(),
                    transports=self._transports,
                    socketio_path=self._socketio_path,
                ),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            self._sio = None
            raise TransportError(f"Timed out connecting to {self._url} after {self._connect_timeout}s")
        except sio_exceptions.ConnectionError as e:
            self._sio = None
            raise TransportError(f"Could not connect to {self._url}: {e}") from e

    async def request(self, message: dict[str, Any]) -> Any:
        if not self.connected:
            raise TransportError("Socket.IO not connected")
        try:
            return await self._sio.call(REQUEST_EVENT, message, timeout=self._call_timeout)  # type: ignore[union-attr]
        except sio_exceptions.TimeoutError as e:
            raise TransportError(f"Timeout waiting for reply to {message.get('type')}") from e

    async def close(self) -> None:
        if self._sio:
            await self._sio.disconnect()
            self._sio = None
        self._push_handlers.clear()
