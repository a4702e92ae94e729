"""Shared fixtures: a scripted wallet and an in-process bridge."""

import asyncio
import inspect
from typing import Any, Optional

import pytest

from sphere_bridge.approver import ApproverClient
from sphere_bridge.client import SphereClient
from sphere_bridge.dispatcher import Dispatcher
from sphere_bridge.errors import WalletServiceError
from sphere_bridge.models.wallet import (
    IdentityInfo,
    NametagInfo,
    NametagResolution,
    NostrPublicKey,
    SendTokensResult,
    TokenBalance,
)
from sphere_bridge.relay import Relay
from sphere_bridge.storage import KeyValueStorage, MemoryStorage
from sphere_bridge.store import PendingTransactionStore
from sphere_bridge.transport.base import HostTransport
from sphere_bridge.transport.local import LocalMessaging
from sphere_bridge.transport.page import PageChannel

ORIGIN = "https://app.example"
PASSWORD = "hunter2"


class FakeWallet:
    """WalletService double. Records calls; ``fail_with[name]`` makes a call raise."""

    def __init__(self, unlocked: bool = True):
        self.unlocked = unlocked
        self.calls: list[tuple[Any, ...]] = []
        self.fail_with: dict[str, Exception] = {}
        self.identity = IdentityInfo(id="id-1", label="Main", public_key="02" + "ab" * 32)
        self.balances = [TokenBalance(coin_id="c0ffee", symbol="ALPHA", amount="1000")]
        self.nametag: Optional[NametagInfo] = None
        self.taken = {"alice": NametagResolution(nametag="alice", pubkey="02" + "cd" * 32, proxy_address="DIRECT://alice")}

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        if name in self.fail_with:
            raise self.fail_with[name]

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    async def is_unlocked(self) -> bool:
        return self.unlocked

    async def unlock(self, password: str) -> IdentityInfo:
        self._record("unlock", password)
        if password != PASSWORD:
            raise WalletServiceError("Invalid password", 401)
        self.unlocked = True
        return self.identity

    async def lock(self) -> None:
        self._record("lock")
        self.unlocked = False

    async def get_active_identity(self) -> IdentityInfo:
        self._record("get_active_identity")
        return self.identity

    async def get_balances(self) -> list[TokenBalance]:
        self._record("get_balances")
        return self.balances

    async def send_amount(self, coin_id, amount, recipient, message=None) -> SendTokensResult:
        self._record("send_amount", coin_id, amount, recipient, message)
        return SendTokensResult(transaction_id=f"tx-{len(self.calls)}", sent=amount)

    async def sign_message(self, message: str) -> str:
        self._record("sign_message", message)
        return "sig:" + message

    async def get_nostr_public_key(self) -> NostrPublicKey:
        self._record("get_nostr_public_key")
        return NostrPublicKey(hex="ab" * 32, npub="npub1example")

    async def sign_nostr_event_hash(self, event_hash: str) -> str:
        self._record("sign_nostr_event_hash", event_hash)
        return "schnorr:" + event_hash

    async def nip44_encrypt(self, recipient_pubkey: str, plaintext: str) -> str:
        self._record("nip44_encrypt", recipient_pubkey, plaintext)
        return plaintext[::-1]

    async def nip44_decrypt(self, sender_pubkey: str, ciphertext: str) -> str:
        self._record("nip44_decrypt", sender_pubkey, ciphertext)
        return ciphertext[::-1]

    async def resolve_nametag(self, nametag: str) -> Optional[NametagResolution]:
        self._record("resolve_nametag", nametag)
        return self.taken.get(nametag.lstrip("@").lower())

    async def is_nametag_available(self, nametag: str) -> bool:
        self._record("is_nametag_available", nametag)
        return nametag.lstrip("@").lower() not in self.taken

    async def get_my_nametag(self) -> Optional[NametagInfo]:
        self._record("get_my_nametag")
        return self.nametag

    async def register_nametag(self, nametag: str) -> NametagInfo:
        self._record("register_nametag", nametag)
        self.nametag = NametagInfo(nametag=nametag, proxy_address=f"DIRECT://{nametag}")
        return self.nametag


class Bridge:
    """Client, relay, dispatcher and approver wired over an in-process hub."""

    def __init__(
        self,
        wallet: FakeWallet,
        request_timeout: float = 5.0,
        connect_timeout: float = 5.0,
        pending_ttl: Optional[float] = None,
        storage: Optional[KeyValueStorage] = None,
    ):
        self.wallet = wallet
        self.storage = storage or MemoryStorage()
        self.store = PendingTransactionStore(self.storage)
        self.hub = LocalMessaging()
        self.transport = HostTransport(self.hub)
        self.dispatcher = Dispatcher(
            wallet, self.store, self.transport,
            connect_timeout=connect_timeout, pending_ttl=pending_ttl,
        )
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.dispatcher.add_listener(lambda event, data: self.events.append((event, data)))

        self.page = PageChannel()
        self.port = self.hub.connect("tab-1")
        self.relay = Relay(self.page, self.port, ORIGIN)
        self.relay.start()
        self.client = SphereClient(self.page, request_timeout=request_timeout)
        self.approver = ApproverClient(self.hub.connect("approver", approver=True))

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events]


async def _wait_until(predicate, timeout: float = 2.0) -> Any:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        value = predicate()
        if inspect.isawaitable(value):
            value = await value
        if value:
            return value
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def bridge(wallet):
    return Bridge(wallet)


@pytest.fixture
def wait_until():
    return _wait_until
