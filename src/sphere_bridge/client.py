"""
SphereClient: the page-side proxy.

Each call posts one request envelope and returns when exactly one reply
(response or result) with the same request id arrives, or when the
request timeout fires. There is no automatic retry.
"""

import asyncio
import logging
from typing import Any, Optional, Union

from sphere_bridge.errors import RequestFailedError, RequestTimeoutError
from sphere_bridge.models.events import RequestType, is_result
from sphere_bridge.models.wallet import (
    IdentityInfo,
    NametagInfo,
    NametagResolution,
    NostrPublicKey,
    SendTokensResult,
    TokenBalance,
)
from sphere_bridge.transport.envelope import build_request, generate_request_id, parse_reply
from sphere_bridge.transport.page import PageChannel

DEFAULT_REQUEST_TIMEOUT_S = 30.0

logger = logging.getLogger(__name__)


class PendingCall:
    __slots__ = ("request_type", "future", "timer")

    def __init__(self, request_type: str, future: "asyncio.Future[dict[str, Any]]", timer: asyncio.TimerHandle):
        self.request_type = request_type
        self.future = future
        self.timer = timer


class CorrelationTable:
    """request id -> pending call. Each entry leaves exactly once."""

    def __init__(self) -> None:
        self._entries: dict[str, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._entries

    def register(self, request_id: str, call: PendingCall) -> None:
        if request_id in self._entries:
            raise ValueError(f"Request id already in flight: {request_id}")
        self._entries[request_id] = call

    def pop(self, request_id: str) -> Optional[PendingCall]:
        """Remove and return the entry; None if it is already gone."""
        call = self._entries.pop(request_id, None)
        if call is not None:
            call.timer.cancel()
        return call

    def drain(self) -> list[PendingCall]:
        calls = list(self._entries.values())
        for call in calls:
            call.timer.cancel()
        self._entries.clear()
        return calls


class SphereClient:
    def __init__(self, channel: PageChannel, request_timeout: float = DEFAULT_REQUEST_TIMEOUT_S):
        self._channel = channel
        self._request_timeout = request_timeout
        self._calls = CorrelationTable()
        self._remove_listener = channel.add_listener(self._on_message)

    @property
    def pending_count(self) -> int:
        return len(self._calls)

    def has_pending(self, request_id: str) -> bool:
        return request_id in self._calls

    async def request(self, request_type: str, **fields: Any) -> dict[str, Any]:
        """Send one request and wait for its reply envelope."""
        loop = asyncio.get_running_loop()
        request_id = generate_request_id()
        future: asyncio.Future[dict[str, Any]] = loop.create_future()
        timer = loop.call_later(self._request_timeout, self._expire, request_id)
        self._calls.register(request_id, PendingCall(request_type, future, timer))
        self._channel.post(build_request(request_type, request_id, **fields))
        try:
            return await future
        finally:
            self._calls.pop(request_id)

    def _expire(self, request_id: str) -> None:
        call = self._calls.pop(request_id)
        if call is not None and not call.future.done():
            logger.debug(f"{call.request_type} {request_id} timed out")
            call.future.set_exception(RequestTimeoutError(request_id=request_id))

    def _on_message(self, data: Any) -> None:
        reply = parse_reply(data)
        if reply is None:
            return
        call = self._calls.pop(reply.request_id)
        if call is None:
            logger.debug("No pending call for %s; dropping %s", reply.request_id, reply.type)
            return
        if call.future.done():
            return
        if not reply.success:
            call.future.set_exception(RequestFailedError(reply.error or "Request failed", reply.request_id))
        else:
            call.future.set_result(data)

    def close(self) -> None:
        self._remove_listener()
        for call in self._calls.drain():
            if not call.future.done():
                call.future.set_exception(RequestFailedError("Client closed"))

    @staticmethod
    def _payload(reply: dict[str, Any]) -> dict[str, Any]:
        # results carry verb fields inside ``result``
        if is_result(reply.get("type")):
            result = reply.get("result")
            return result if isinstance(result, dict) else {}
        return reply

    async def connect(self) -> IdentityInfo:
        """Connect this origin. Waits for unlock if the wallet is locked."""
        reply = await self.request(RequestType.CONNECT)
        return IdentityInfo.model_validate(reply["identity"])

    async def disconnect(self) -> None:
        await self.request(RequestType.DISCONNECT)

    async def get_active_identity(self) -> Optional[IdentityInfo]:
        reply = await self.request(RequestType.GET_ACTIVE_IDENTITY)
        identity = reply.get("identity")
        return IdentityInfo.model_validate(identity) if identity else None

    async def get_balances(self) -> list[TokenBalance]:
        reply = await self.request(RequestType.GET_BALANCES)
        return [TokenBalance.model_validate(b) for b in reply.get("balances") or []]

    async def send_tokens(
        self, recipient: str, coin_id: str, amount: Union[str, int], message: Optional[str] = None,
    ) -> SendTokensResult:
        """Send tokens. Resolves only after the wallet owner approves."""
        fields: dict[str, Any] = {"recipient": recipient, "coinId": coin_id, "amount": str(amount)}
        if message is not None:
            fields["message"] = message
        reply = await self.request(RequestType.SEND_TOKENS, **fields)
        return SendTokensResult.model_validate(self._payload(reply))

    async def sign_message(self, message: str) -> str:
        reply = await self.request(RequestType.SIGN_MESSAGE, message=message)
        return self._payload(reply)["signature"]

    async def get_nostr_public_key(self) -> NostrPublicKey:
        reply = await self.request(RequestType.GET_NOSTR_PUBLIC_KEY)
        return NostrPublicKey(hex=reply["publicKey"], npub=reply["npub"])

    async def sign_nostr_event(self, event_hash: str) -> str:
        reply = await self.request(RequestType.SIGN_NOSTR_EVENT, eventHash=event_hash)
        return self._payload(reply)["signature"]

    async def nip44_encrypt(self, recipient_pubkey: str, plaintext: str) -> str:
        reply = await self.request(RequestType.NIP44_ENCRYPT, recipientPubkey=recipient_pubkey, plaintext=plaintext)
        return reply["ciphertext"]

    async def nip44_decrypt(self, sender_pubkey: str, ciphertext: str) -> str:
        reply = await self.request(RequestType.NIP44_DECRYPT, senderPubkey=sender_pubkey, ciphertext=ciphertext)
        return reply["plaintext"]

    async def get_my_nametag(self) -> Optional[NametagInfo]:
        reply = await self.request(RequestType.GET_MY_NAMETAG)
        nametag = reply.get("nametag")
        return NametagInfo.model_validate(nametag) if nametag else None

    async def resolve_nametag(self, nametag: str) -> Optional[NametagResolution]:
        reply = await self.request(RequestType.RESOLVE_NAMETAG, nametag=nametag)
        resolution = reply.get("resolution")
        return NametagResolution.model_validate(resolution) if resolution else None

    async def check_nametag_available(self, nametag: str) -> bool:
        reply = await self.request(RequestType.CHECK_NAMETAG_AVAILABLE, nametag=nametag)
        return bool(reply.get("available"))

    async def register_nametag(self, nametag: str) -> NametagInfo:
        """Mint a nametag. Resolves only after the wallet owner approves."""
        reply = await self.request(RequestType.MINT_NAMETAG, nametag=nametag)
        return NametagInfo.model_validate(self._payload(reply)["nametag"])
