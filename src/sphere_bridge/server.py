"""
Bridge server: the dispatcher behind a Socket.IO ASGI app.
"""

import asyncio
import logging
from typing import Any, Optional

import socketio

from sphere_bridge.config import BridgeSettings
from sphere_bridge.dispatcher import Dispatcher
from sphere_bridge.storage import JsonFileStorage, KeyValueStorage
from sphere_bridge.store import PendingTransactionStore
from sphere_bridge.transport.base import HostTransport
from sphere_bridge.transport.socketio import SocketIOMessaging
from sphere_bridge.wallet import HttpWallet, WalletService

logger = logging.getLogger(__name__)


class BridgeServer:
    def __init__(
        self,
        settings: BridgeSettings,
        wallet: Optional[WalletService] = None,
        storage: Optional[KeyValueStorage] = None,
    ):
        self.settings = settings
        self.sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=settings.cors_allowed_origins or [],
        )
        self.messaging = SocketIOMessaging(self.sio, approver_token=settings.approver_token)
        self.transport = HostTransport(self.messaging)
        self.store = PendingTransactionStore(storage or JsonFileStorage(settings.storage_path))
        self.wallet: Any = wallet or HttpWallet(settings.wallet_url, token=settings.wallet_token)
        self.dispatcher = Dispatcher(
            self.wallet,
            self.store,
            self.transport,
            connect_timeout=settings.connect_timeout,
            pending_ttl=settings.pending_ttl,
        )
        self.app = socketio.ASGIApp(self.sio, socketio_path=settings.socketio_path)
        self._server: Any = None

    @property
    def started(self) -> bool:
        return self._server is not None and self._server.started

    async def sweep_expired(self) -> None:
        """Periodically expire stale pending transactions."""
        while True:
            await asyncio.sleep(self.settings.expiry_interval)
            try:
                await self.dispatcher.expire_stale()
            except Exception:
                logger.exception("Expiry sweep failed")

    async def serve(self) -> None:
        import uvicorn

        pending = await self.store.list()
        if pending:
            logger.info(f"{len(pending)} pending transaction(s) carried over from a previous run")

        config = uvicorn.Config(
            self.app,
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        self._server = uvicorn.Server(config)
        sweeper = asyncio.create_task(self.sweep_expired()) if self.settings.pending_ttl else None
        try:
            await self._server.serve()
        finally:
            if sweeper is not None:
                sweeper.cancel()
            await self.aclose()

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

    async def aclose(self) -> None:
        self.dispatcher.close()
        self.transport.destroy()
        close = getattr(self.wallet, "close", None)
        if close is not None:
            await close()
