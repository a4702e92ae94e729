"""
Approver client: the wallet owner's side of the control channel.

Talks to the dispatcher directly over a port authenticated as approver.
"""

from typing import Any

from sphere_bridge.errors import RequestFailedError, TransportError
from sphere_bridge.models.events import PopupMessage
from sphere_bridge.models.transaction import PendingTransaction
from sphere_bridge.models.wallet import WalletState
from sphere_bridge.transport.base import DispatcherPort


class ApproverClient:
    def __init__(self, port: DispatcherPort):
        self._port = port

    async def _call(self, message_type: str, **fields: Any) -> dict[str, Any]:
        reply = await self._port.request({"type": message_type, **fields})
        if not isinstance(reply, dict):
            raise TransportError(f"No reply to {message_type}")
        if not reply.get("success"):
            raise RequestFailedError(reply.get("error") or f"{message_type} failed")
        return reply

    async def get_state(self) -> WalletState:
        reply = await self._call(PopupMessage.GET_STATE)
        return WalletState.model_validate(reply["state"])

    async def unlock(self, password: str) -> dict[str, Any]:
        reply = await self._call(PopupMessage.UNLOCK_WALLET, password=password)
        return reply["identity"]

    async def lock(self) -> None:
        await self._call(PopupMessage.LOCK_WALLET)

    async def list_pending(self) -> list[PendingTransaction]:
        reply = await self._call(PopupMessage.GET_PENDING_TRANSACTIONS)
        return [PendingTransaction.model_validate(tx) for tx in reply.get("transactions", [])]

    async def approve(self, request_id: str) -> Any:
        """Approve and return the operation result. Raises if it failed."""
        reply = await self._call(PopupMessage.APPROVE_TRANSACTION, requestId=request_id)
        return reply.get("result")

    async def reject(self, request_id: str) -> None:
        await self._call(PopupMessage.REJECT_TRANSACTION, requestId=request_id)

    async def connected_sites(self) -> list[str]:
        reply = await self._call(PopupMessage.GET_CONNECTED_SITES)
        return list(reply.get("sites", []))

    async def revoke_site(self, origin: str) -> None:
        await self._call(PopupMessage.REVOKE_CONNECTED_SITE, origin=origin)

    async def close(self) -> None:
        await self._port.close()
