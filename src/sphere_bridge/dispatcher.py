"""
Dispatcher: the trusted router and approval policy point.

Per request:
- auto verbs run against the wallet and answer with an immediate Response
- approval verbs are parked in the pending store and answered with a
  "pending" Response; the terminal outcome is pushed later as a Result
  to the relay target recorded on the pending entry

Every terminal path (completed, failed, rejected, expired) yields exactly
one Response or one Result. Handler failures become ``success: false``.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from sphere_bridge.errors import DuplicateRequestError, ExecutionError, NotFoundError, RequestTimeoutError, SphereError, ValidationError
from sphere_bridge.models.envelope import (
    MintNametagRequest,
    SendTokensRequest,
    SignMessageRequest,
    SignNostrEventRequest,
    SphereRequest,
    TransactionResult,
)
from sphere_bridge.models.events import MessageKind, PopupMessage, RequestType, StateEvent, classify
from sphere_bridge.models.transaction import (
    MintNametagData,
    PendingData,
    PendingKind,
    PendingTransaction,
    SendTransactionData,
    SignMessageData,
    SignNostrData,
)
from sphere_bridge.models.wallet import WalletState
from sphere_bridge.store import PendingTransactionStore, serialize
from sphere_bridge.transport.base import HostTransport, MessageSender
from sphere_bridge.transport.envelope import build_failure, build_pending, build_response, build_result, parse_request
from sphere_bridge.wallet import WalletService, clean_nametag

CONNECT_TIMEOUT_S = 60.0

NOT_CONNECTED = "Not connected. Call connect() first."
WALLET_LOCKED = "Wallet is locked."
CONNECT_TIMED_OUT = "Connection timed out. Please try again."
USER_REJECTED = "User rejected the request"
REQUEST_EXPIRED = "Request expired"

logger = logging.getLogger(__name__)


class Policy(str, Enum):
    AUTO = "auto"
    APPROVAL = "approval"


VERB_POLICY: dict[str, Policy] = {
    RequestType.CONNECT: Policy.AUTO,
    RequestType.DISCONNECT: Policy.AUTO,
    RequestType.GET_ACTIVE_IDENTITY: Policy.AUTO,
    RequestType.GET_BALANCES: Policy.AUTO,
    RequestType.GET_NOSTR_PUBLIC_KEY: Policy.AUTO,
    RequestType.NIP44_ENCRYPT: Policy.AUTO,
    RequestType.NIP44_DECRYPT: Policy.AUTO,
    RequestType.RESOLVE_NAMETAG: Policy.AUTO,
    RequestType.CHECK_NAMETAG_AVAILABLE: Policy.AUTO,
    RequestType.GET_MY_NAMETAG: Policy.AUTO,
    RequestType.SEND_TOKENS: Policy.APPROVAL,
    RequestType.SIGN_MESSAGE: Policy.APPROVAL,
    RequestType.SIGN_NOSTR_EVENT: Policy.APPROVAL,
    RequestType.MINT_NAMETAG: Policy.APPROVAL,
}

APPROVAL_KINDS: dict[str, str] = {
    RequestType.SEND_TOKENS: PendingKind.SEND,
    RequestType.SIGN_MESSAGE: PendingKind.SIGN_MESSAGE,
    RequestType.SIGN_NOSTR_EVENT: PendingKind.SIGN_NOSTR,
    RequestType.MINT_NAMETAG: PendingKind.MINT_NAMETAG,
}

# Verbs a page may call before connecting or while the wallet is locked.
UNGATED = {RequestType.CONNECT, RequestType.DISCONNECT, RequestType.GET_ACTIVE_IDENTITY}

StateListener = Callable[[str, dict[str, Any]], None]
AutoHandler = Callable[[Any, str], Awaitable[dict[str, Any]]]
PopupHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _pending_data(request: SphereRequest) -> PendingData:
    if isinstance(request, SendTokensRequest):
        return SendTransactionData(
            recipient=request.recipient, coin_id=request.coin_id,
            amount=request.amount, message=request.message,
        )
    if isinstance(request, SignMessageRequest):
        return SignMessageData(message=request.message)
    if isinstance(request, SignNostrEventRequest):
        return SignNostrData(event_hash=request.event_hash)
    if isinstance(request, MintNametagRequest):
        return MintNametagData(nametag=clean_nametag(request.nametag))
    raise ValidationError(f"{request.type} does not take approval")


class Dispatcher:
    def __init__(
        self,
        wallet: WalletService,
        store: PendingTransactionStore,
        transport: HostTransport,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        pending_ttl: Optional[float] = None,
    ):
        self._wallet = wallet
        self._store = store
        self._transport = transport
        self._connect_timeout = connect_timeout
        self._pending_ttl = pending_ttl
        self._connected_sites: set[str] = set()
        self._unlock_waiters: list[asyncio.Future[bool]] = []
        self._listeners: list[StateListener] = []

        self._auto_handlers: dict[str, AutoHandler] = {
            RequestType.CONNECT: self._connect,
            RequestType.DISCONNECT: self._disconnect,
            RequestType.GET_ACTIVE_IDENTITY: self._get_active_identity,
            RequestType.GET_BALANCES: self._get_balances,
            RequestType.GET_NOSTR_PUBLIC_KEY: self._get_nostr_public_key,
            RequestType.NIP44_ENCRYPT: self._nip44_encrypt,
            RequestType.NIP44_DECRYPT: self._nip44_decrypt,
            RequestType.RESOLVE_NAMETAG: self._resolve_nametag,
            RequestType.CHECK_NAMETAG_AVAILABLE: self._check_nametag_available,
            RequestType.GET_MY_NAMETAG: self._get_my_nametag,
        }
        self._popup_handlers: dict[str, PopupHandler] = {
            PopupMessage.GET_STATE: self._popup_get_state,
            PopupMessage.UNLOCK_WALLET: self._popup_unlock,
            PopupMessage.LOCK_WALLET: self._popup_lock,
            PopupMessage.GET_BALANCES: self._popup_get_balances,
            PopupMessage.GET_PENDING_TRANSACTIONS: self._popup_get_pending,
            PopupMessage.APPROVE_TRANSACTION: self._popup_approve,
            PopupMessage.REJECT_TRANSACTION: self._popup_reject,
            PopupMessage.GET_CONNECTED_SITES: self._popup_get_sites,
            PopupMessage.REVOKE_CONNECTED_SITE: self._popup_revoke_site,
        }
        unrouted = set(VERB_POLICY) - set(self._auto_handlers) - set(APPROVAL_KINDS)
        if unrouted:
            raise RuntimeError(f"No route for {sorted(unrouted)}")

        self._remove_handler: Optional[Callable[[], None]] = transport.on_message(self.handle_message)

    @property
    def connected_sites(self) -> list[str]:
        return sorted(self._connected_sites)

    @property
    def pending_ttl(self) -> Optional[float]:
        return self._pending_ttl

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a state-change listener. Returns a cleanup function."""
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return remove

    def _broadcast(self, event: str, data: Optional[dict[str, Any]] = None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, data or {})
            except Exception:
                logger.exception(f"State listener failed on {event}")

    async def handle_message(self, message: dict[str, Any], sender: MessageSender) -> Optional[dict[str, Any]]:
        """Route any inbound envelope. Replies are returned, never raised."""
        message_type = message.get("type")
        kind = classify(message_type)
        if kind is MessageKind.POPUP:
            if not sender.approver:
                logger.warning(f"Refusing {message_type} from non-approver {sender.target}")
                return {"success": False, "error": "Not authorized"}
            return await self.handle_popup(message)
        if kind is MessageKind.REQUEST:
            return await self.handle_request(message, sender)
        if kind in (MessageKind.RESPONSE, MessageKind.RESULT):
            return None
        if not message_type:
            return {"success": False, "error": "Missing message type"}
        return {"success": False, "error": f"Unknown message type: {message_type}"}

    async def handle_request(self, message: dict[str, Any], sender: MessageSender) -> dict[str, Any]:
        request_type = str(message.get("type") or "")
        request_id = str(message.get("requestId") or "")
        try:
            request = parse_request(message)
        except ValidationError as e:
            logger.debug(f"Rejecting malformed {request_type}: {e}")
            return build_failure(request_type, request_id, e.message)

        origin = request.origin or sender.origin or ""
        logger.debug("Dispatcher received %s %s from %s", request.type, request.request_id, origin)
        try:
            if request.type not in UNGATED:
                refusal = await self._gate(origin)
                if refusal:
                    return build_failure(request.type, request.request_id, refusal)
            if VERB_POLICY[request.type] is Policy.APPROVAL:
                return await self._enqueue(request, origin, sender.target)
            fields = await self._auto_handlers[request.type](request, origin)
            return build_response(request.type, request.request_id, **fields)
        except SphereError as e:
            return build_failure(request.type, request.request_id, e.message)
        except Exception as e:
            logger.exception(f"Handler error for {request.type}")
            return build_failure(request.type, request.request_id, str(e) or "Unknown error")

    async def handle_popup(self, message: dict[str, Any]) -> dict[str, Any]:
        message_type = str(message.get("type"))
        handler = self._popup_handlers.get(message_type)
        if handler is None:
            return {"success": False, "error": f"Unknown popup message type: {message_type}"}
        try:
            return await handler(message)
        except SphereError as e:
            return {"success": False, "error": e.message}
        except Exception as e:
            logger.exception(f"Popup handler error for {message_type}")
            return {"success": False, "error": str(e) or "Unknown error"}

    async def list_pending(self) -> list[PendingTransaction]:
        return await self._store.list()

    async def approve(self, request_id: str) -> TransactionResult:
        """Execute a parked request and push its Result. Raises NotFoundError."""
        tx = await self._store.remove_by_request_id(request_id)
        if tx is None:
            raise NotFoundError(request_id=request_id)
        self._broadcast(StateEvent.PENDING_CHANGED, {"requestId": request_id})

        try:
            result = await self._execute(tx)
        except Exception as e:
            failure = e if isinstance(e, SphereError) else ExecutionError(str(e) or "Execution failed")
            logger.warning(f"Approved {tx.type} {request_id} failed: {failure.message}")
            outcome = build_result(request_id, False, error=failure.message)
        else:
            outcome = build_result(request_id, True, result=result)
            if tx.type == PendingKind.SEND:
                self._broadcast(StateEvent.BALANCES_CHANGED)
            elif tx.type == PendingKind.MINT_NAMETAG:
                self._broadcast(StateEvent.IDENTITY_CHANGED)

        await self._push(tx, outcome)
        return outcome

    async def reject(self, request_id: str, reason: str = USER_REJECTED) -> TransactionResult:
        """Drop a parked request without running it. Raises NotFoundError."""
        tx = await self._store.remove_by_request_id(request_id)
        if tx is None:
            raise NotFoundError(request_id=request_id)
        self._broadcast(StateEvent.PENDING_CHANGED, {"requestId": request_id})
        outcome = build_result(request_id, False, error=reason)
        await self._push(tx, outcome)
        return outcome

    async def expire_stale(self, now_ms: Optional[int] = None) -> list[str]:
        """Expire entries older than the pending TTL. Returns the expired ids."""
        if self._pending_ttl is None:
            return []
        cutoff = (now_ms if now_ms is not None else _now_ms()) - int(self._pending_ttl * 1000)
        expired = []
        for entry in await self._store.list():
            if entry.timestamp > cutoff:
                continue
            tx = await self._store.remove_by_request_id(entry.request_id)
            if tx is None:
                continue  # decided meanwhile
            expired.append(tx.request_id)
            await self._push(tx, build_result(tx.request_id, False, error=REQUEST_EXPIRED))
        if expired:
            logger.info(f"Expired {len(expired)} pending transaction(s)")
            self._broadcast(StateEvent.PENDING_CHANGED, {"expired": expired})
        return expired

    async def unlock(self, password: str) -> dict[str, Any]:
        identity = await self._wallet.unlock(password)
        for waiter in list(self._unlock_waiters):
            if not waiter.done():
                waiter.set_result(True)
        self._broadcast(StateEvent.IDENTITY_CHANGED)
        return identity.to_wire()

    async def lock(self) -> None:
        await self._wallet.lock()
        self._broadcast(StateEvent.IDENTITY_CHANGED)

    def revoke_site(self, origin: str) -> bool:
        if origin not in self._connected_sites:
            return False
        self._connected_sites.discard(origin)
        self._broadcast(StateEvent.SITES_CHANGED, {"origin": origin})
        return True

    def close(self) -> None:
        if self._remove_handler is not None:
            self._remove_handler()
            self._remove_handler = None
        for waiter in self._unlock_waiters:
            if not waiter.done():
                waiter.set_result(False)
        self._unlock_waiters.clear()
        self._listeners.clear()

    async def _gate(self, origin: str) -> Optional[str]:
        if origin not in self._connected_sites:
            return NOT_CONNECTED
        if not await self._wallet.is_unlocked():
            return WALLET_LOCKED
        return None

    async def _enqueue(self, request: SphereRequest, origin: str, target: Optional[str]) -> dict[str, Any]:
        tx = PendingTransaction(
            request_id=request.request_id,
            type=APPROVAL_KINDS[request.type],  # type: ignore[arg-type]
            origin=origin,
            target=target,
            timestamp=_now_ms(),
            data=_pending_data(request),
        )
        try:
            await self._store.add(tx)
        except DuplicateRequestError:
            # Already awaiting a decision; its one Result is still to come.
            logger.info(f"Ignoring repeated {tx.type} {tx.request_id}; already pending")
            return build_pending(request.type, request.request_id)
        if target is None:
            logger.warning(f"Pending {tx.type} {tx.request_id} has no target; its result cannot be delivered")
        logger.info(f"Awaiting approval: {tx.type} {tx.request_id} from {origin}")
        self._broadcast(StateEvent.PENDING_CHANGED, {"requestId": tx.request_id})
        self._broadcast(StateEvent.ATTENTION_REQUIRED, {"reason": "approval", "requestId": tx.request_id})
        return build_pending(request.type, request.request_id)

    async def _execute(self, tx: PendingTransaction) -> dict[str, Any]:
        data = tx.data
        if isinstance(data, SendTransactionData):
            sent = await self._wallet.send_amount(data.coin_id, data.amount, data.recipient, data.message)
            return sent.to_wire()
        if isinstance(data, SignMessageData):
            return {"signature": await self._wallet.sign_message(data.message)}
        if isinstance(data, SignNostrData):
            return {"signature": await self._wallet.sign_nostr_event_hash(data.event_hash)}
        if isinstance(data, MintNametagData):
            nametag = await self._wallet.register_nametag(data.nametag)
            return {"nametag": nametag.to_wire()}
        raise ValidationError(f"Unsupported transaction type: {tx.type}")

    async def _push(self, tx: PendingTransaction, outcome: TransactionResult) -> None:
        delivered = await self._transport.send_to(tx.target, outcome.to_wire())
        if not delivered:
            logger.info(f"Result for {tx.request_id} dropped; target {tx.target} is gone")

    async def _wait_for_unlock(self) -> bool:
        waiter: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._unlock_waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=self._connect_timeout)
        except asyncio.TimeoutError:
            return False
        finally:
            if waiter in self._unlock_waiters:
                self._unlock_waiters.remove(waiter)

    async def _connect(self, request: Any, origin: str) -> dict[str, Any]:
        if not await self._wallet.is_unlocked():
            self._broadcast(StateEvent.ATTENTION_REQUIRED, {"reason": "unlock", "origin": origin})
            if not await self._wait_for_unlock():
                raise RequestTimeoutError(CONNECT_TIMED_OUT, request.request_id)
        if origin not in self._connected_sites:
            self._connected_sites.add(origin)
            self._broadcast(StateEvent.SITES_CHANGED, {"origin": origin})
        identity = await self._wallet.get_active_identity()
        return {"identity": identity.to_wire()}

    async def _disconnect(self, request: Any, origin: str) -> dict[str, Any]:
        self.revoke_site(origin)
        return {}

    async def _get_active_identity(self, request: Any, origin: str) -> dict[str, Any]:
        if origin not in self._connected_sites or not await self._wallet.is_unlocked():
            return {"identity": None}
        identity = await self._wallet.get_active_identity()
        return {"identity": identity.to_wire()}

    async def _get_balances(self, request: Any, origin: str) -> dict[str, Any]:
        balances = await self._wallet.get_balances()
        return {"balances": [b.to_wire() for b in balances]}

    async def _get_nostr_public_key(self, request: Any, origin: str) -> dict[str, Any]:
        keys = await self._wallet.get_nostr_public_key()
        return {"publicKey": keys.hex, "npub": keys.npub}

    async def _nip44_encrypt(self, request: Any, origin: str) -> dict[str, Any]:
        return {"ciphertext": await self._wallet.nip44_encrypt(request.recipient_pubkey, request.plaintext)}

    async def _nip44_decrypt(self, request: Any, origin: str) -> dict[str, Any]:
        return {"plaintext": await self._wallet.nip44_decrypt(request.sender_pubkey, request.ciphertext)}

    async def _resolve_nametag(self, request: Any, origin: str) -> dict[str, Any]:
        resolution = await self._wallet.resolve_nametag(request.nametag)
        return {"resolution": resolution.to_wire() if resolution else None}

    async def _check_nametag_available(self, request: Any, origin: str) -> dict[str, Any]:
        return {"available": await self._wallet.is_nametag_available(request.nametag)}

    async def _get_my_nametag(self, request: Any, origin: str) -> dict[str, Any]:
        nametag = await self._wallet.get_my_nametag()
        return {"nametag": nametag.to_wire() if nametag else None}

    async def _popup_get_state(self, message: dict[str, Any]) -> dict[str, Any]:
        unlocked = await self._wallet.is_unlocked()
        active_id = (await self._wallet.get_active_identity()).id if unlocked else None
        pending = await self._store.list()
        state = WalletState(is_unlocked=unlocked, active_identity_id=active_id, pending_count=len(pending))
        return {"success": True, "state": state.to_wire()}

    async def _popup_unlock(self, message: dict[str, Any]) -> dict[str, Any]:
        password = message.get("password")
        if not isinstance(password, str):
            return {"success": False, "error": "Missing password"}
        return {"success": True, "identity": await self.unlock(password)}

    async def _popup_lock(self, message: dict[str, Any]) -> dict[str, Any]:
        await self.lock()
        return {"success": True}

    async def _popup_get_balances(self, message: dict[str, Any]) -> dict[str, Any]:
        if not await self._wallet.is_unlocked():
            return {"success": False, "error": WALLET_LOCKED}
        balances = await self._wallet.get_balances()
        return {"success": True, "balances": [b.to_wire() for b in balances]}

    async def _popup_get_pending(self, message: dict[str, Any]) -> dict[str, Any]:
        return {"success": True, "transactions": serialize(await self._store.list())}

    async def _popup_approve(self, message: dict[str, Any]) -> dict[str, Any]:
        outcome = await self.approve(str(message.get("requestId") or ""))
        return outcome.model_dump(include={"success", "result", "error"}, exclude_none=True)

    async def _popup_reject(self, message: dict[str, Any]) -> dict[str, Any]:
        await self.reject(str(message.get("requestId") or ""))
        return {"success": True}

    async def _popup_get_sites(self, message: dict[str, Any]) -> dict[str, Any]:
        return {"success": True, "sites": self.connected_sites}

    async def _popup_revoke_site(self, message: dict[str, Any]) -> dict[str, Any]:
        origin = message.get("origin")
        if not isinstance(origin, str) or not self.revoke_site(origin):
            return {"success": False, "error": f"Site not connected: {origin}"}
        return {"success": True}
