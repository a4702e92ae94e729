"""Tests for dispatcher policy, gating and the approval lifecycle."""

import asyncio

import pytest

from sphere_bridge.dispatcher import (
    CONNECT_TIMED_OUT,
    NOT_CONNECTED,
    REQUEST_EXPIRED,
    USER_REJECTED,
    VERB_POLICY,
    WALLET_LOCKED,
    Dispatcher,
    Policy,
)
from sphere_bridge.errors import NotFoundError, WalletServiceError
from sphere_bridge.models.events import RequestType, StateEvent
from sphere_bridge.storage import MemoryStorage
from sphere_bridge.store import PendingTransactionStore
from sphere_bridge.transport.base import HostTransport, MessageSender
from sphere_bridge.transport.local import LocalMessaging

from conftest import ORIGIN, PASSWORD, FakeWallet

TAB = MessageSender(target="tab-1", origin=ORIGIN)
APPROVER = MessageSender(target="approver", approver=True)


class Harness:
    def __init__(self, wallet, **kwargs):
        self.wallet = wallet
        self.hub = LocalMessaging()
        self.tab = self.hub.connect("tab-1")
        self.pushed = []
        self.tab.on_push(self.pushed.append)
        self.store = PendingTransactionStore(MemoryStorage())
        self.dispatcher = Dispatcher(wallet, self.store, HostTransport(self.hub), **kwargs)
        self.events = []
        self.dispatcher.add_listener(lambda event, data: self.events.append((event, data)))

    async def request(self, message_type, request_id="r1", sender=TAB, **fields):
        return await self.dispatcher.handle_message({"type": message_type, "requestId": request_id, **fields}, sender)

    async def connect(self):
        reply = await self.request(RequestType.CONNECT, "c1")
        assert reply["success"] is True
        return reply

    async def send(self, request_id="r1", amount="25"):
        return await self.request(RequestType.SEND_TOKENS, request_id,
                                  recipient="@bob", coinId="c0ffee", amount=amount)


@pytest.fixture
def harness(wallet):
    return Harness(wallet)


def test_policy_table_is_closed():
    approval = {verb for verb, policy in VERB_POLICY.items() if policy is Policy.APPROVAL}
    assert approval == {RequestType.SEND_TOKENS, RequestType.SIGN_MESSAGE,
                        RequestType.SIGN_NOSTR_EVENT, RequestType.MINT_NAMETAG}
    assert len(VERB_POLICY) == 14


@pytest.mark.asyncio
async def test_connect_returns_identity(harness):
    reply = await harness.connect()
    assert reply["type"] == "SPHERE_CONNECT_RESPONSE"
    assert reply["identity"]["id"] == "id-1"
    assert reply["identity"]["publicKey"].startswith("02")
    assert harness.dispatcher.connected_sites == [ORIGIN]
    assert (StateEvent.SITES_CHANGED, {"origin": ORIGIN}) in harness.events


@pytest.mark.asyncio
async def test_unconnected_origin_is_refused(harness):
    reply = await harness.request(RequestType.GET_BALANCES)
    assert reply == {"type": "SPHERE_GET_BALANCES_RESPONSE", "requestId": "r1",
                     "success": False, "error": NOT_CONNECTED}
    assert harness.wallet.called("get_balances") == []

    identity = await harness.request(RequestType.GET_ACTIVE_IDENTITY)
    assert identity["success"] is True
    assert identity["identity"] is None


@pytest.mark.asyncio
async def test_locked_wallet_is_refused(harness):
    await harness.connect()
    harness.wallet.unlocked = False
    reply = await harness.send()
    assert reply["error"] == WALLET_LOCKED
    assert await harness.store.list() == []


@pytest.mark.asyncio
async def test_auto_verbs(harness):
    await harness.connect()

    balances = await harness.request(RequestType.GET_BALANCES)
    assert balances["balances"] == [{"coinId": "c0ffee", "symbol": "ALPHA", "amount": "1000"}]

    keys = await harness.request(RequestType.GET_NOSTR_PUBLIC_KEY)
    assert keys["publicKey"] == "ab" * 32
    assert keys["npub"] == "npub1example"

    sealed = await harness.request(RequestType.NIP44_ENCRYPT, recipientPubkey="02aa", plaintext="hi there")
    assert sealed["ciphertext"] == "ereht ih"
    opened = await harness.request(RequestType.NIP44_DECRYPT, senderPubkey="02aa", ciphertext="ereht ih")
    assert opened["plaintext"] == "hi there"

    resolved = await harness.request(RequestType.RESOLVE_NAMETAG, nametag="alice")
    assert resolved["resolution"]["proxyAddress"] == "DIRECT://alice"
    missing = await harness.request(RequestType.RESOLVE_NAMETAG, nametag="nobody")
    assert missing["resolution"] is None

    taken = await harness.request(RequestType.CHECK_NAMETAG_AVAILABLE, nametag="alice")
    assert taken["available"] is False

    mine = await harness.request(RequestType.GET_MY_NAMETAG)
    assert mine["success"] is True and mine["nametag"] is None

    assert await harness.store.list() == []


@pytest.mark.asyncio
async def test_wallet_failure_becomes_failure_response(harness):
    await harness.connect()
    harness.wallet.fail_with["get_balances"] = WalletServiceError("daemon unreachable")
    reply = await harness.request(RequestType.GET_BALANCES)
    assert reply["success"] is False
    assert reply["error"] == "daemon unreachable"

    harness.wallet.fail_with["get_balances"] = KeyError()
    reply = await harness.request(RequestType.GET_BALANCES, "r2")
    assert reply["success"] is False
    assert reply["error"]


@pytest.mark.asyncio
async def test_approval_verbs_are_parked(harness):
    await harness.connect()
    reply = await harness.send()
    assert reply == {"type": "SPHERE_SEND_TOKENS_RESPONSE", "requestId": "r1", "success": True, "pending": True}
    assert harness.wallet.called("send_amount") == []

    [tx] = await harness.store.list()
    assert tx.request_id == "r1"
    assert tx.type == "send"
    assert tx.origin == ORIGIN
    assert tx.target == "tab-1"
    assert tx.data.amount == "25"
    assert (StateEvent.ATTENTION_REQUIRED, {"reason": "approval", "requestId": "r1"}) in harness.events


@pytest.mark.asyncio
async def test_repeated_pending_request_is_not_a_failure(harness):
    await harness.connect()
    await harness.send("r1")
    harness.events.clear()

    reply = await harness.send("r1", amount="999")
    assert reply == {"type": "SPHERE_SEND_TOKENS_RESPONSE", "requestId": "r1", "success": True, "pending": True}
    [tx] = await harness.store.list()
    assert tx.data.amount == "25"
    assert harness.events == []

    await harness.dispatcher.approve("r1")
    assert [(m["requestId"], m["success"]) for m in harness.pushed] == [("r1", True)]


@pytest.mark.asyncio
async def test_approve_executes_and_pushes_one_result(harness):
    await harness.connect()
    await harness.send("r1")
    await harness.send("r2", amount="7")

    outcome = await harness.dispatcher.approve("r1")
    assert outcome.success is True
    assert harness.wallet.called("send_amount") == [("send_amount", "c0ffee", "25", "@bob", None)]
    assert [tx.request_id for tx in await harness.store.list()] == ["r2"]
    assert len(harness.pushed) == 1
    assert harness.pushed[0]["type"] == "SPHERE_TRANSACTION_RESULT"
    assert harness.pushed[0]["requestId"] == "r1"
    assert harness.pushed[0]["result"]["transactionId"]
    assert StateEvent.BALANCES_CHANGED in [e for e, _ in harness.events]


@pytest.mark.asyncio
async def test_approve_twice_is_not_found(harness):
    await harness.connect()
    await harness.send("r1")
    await harness.send("r2")
    await harness.dispatcher.approve("r1")

    with pytest.raises(NotFoundError):
        await harness.dispatcher.approve("r1")
    with pytest.raises(NotFoundError):
        await harness.dispatcher.reject("missing")
    assert [tx.request_id for tx in await harness.store.list()] == ["r2"]
    assert len(harness.pushed) == 1


@pytest.mark.asyncio
async def test_failed_execution_pushes_failure_result(harness):
    await harness.connect()
    await harness.request(RequestType.SIGN_MESSAGE, "r1", message="hello")
    harness.wallet.fail_with["sign_message"] = WalletServiceError("signer offline")

    outcome = await harness.dispatcher.approve("r1")
    assert outcome.success is False
    assert harness.pushed == [{"type": "SPHERE_TRANSACTION_RESULT", "requestId": "r1",
                               "success": False, "error": "signer offline"}]
    assert await harness.store.list() == []


@pytest.mark.asyncio
async def test_reject_never_touches_the_wallet(harness):
    await harness.connect()
    await harness.request(RequestType.SIGN_NOSTR_EVENT, "r1", eventHash="ab" * 32)
    calls_before = list(harness.wallet.calls)

    await harness.dispatcher.reject("r1")
    assert harness.wallet.calls == calls_before
    assert harness.pushed == [{"type": "SPHERE_TRANSACTION_RESULT", "requestId": "r1",
                               "success": False, "error": USER_REJECTED}]


@pytest.mark.asyncio
async def test_mint_nametag_is_cleaned_and_executed(harness):
    await harness.connect()
    await harness.request(RequestType.MINT_NAMETAG, "r1", nametag=" @Carol ")
    [tx] = await harness.store.list()
    assert tx.data.nametag == "carol"

    await harness.dispatcher.approve("r1")
    assert harness.wallet.called("register_nametag") == [("register_nametag", "carol")]
    assert harness.pushed[0]["result"]["nametag"]["nametag"] == "carol"
    assert StateEvent.IDENTITY_CHANGED in [e for e, _ in harness.events]


@pytest.mark.asyncio
async def test_result_goes_to_recording_target():
    wallet = FakeWallet()
    h = Harness(wallet)
    tab2 = h.hub.connect("tab-2")
    pushed2 = []
    tab2.on_push(pushed2.append)

    await h.connect()
    await h.send("r1")
    await h.dispatcher.handle_message(
        {"type": RequestType.GET_BALANCES, "requestId": "r2"},
        MessageSender(target="tab-2", origin=ORIGIN),
    )
    await h.dispatcher.approve("r1")
    assert [m["requestId"] for m in h.pushed] == ["r1"]
    assert pushed2 == []


@pytest.mark.asyncio
async def test_gone_target_drops_result_quietly(harness):
    await harness.connect()
    await harness.send("r1")
    await harness.tab.close()
    outcome = await harness.dispatcher.approve("r1")
    assert outcome.success is True
    assert await harness.store.list() == []


@pytest.mark.asyncio
async def test_expire_stale():
    h = Harness(FakeWallet(), pending_ttl=60)
    await h.connect()
    await h.send("old")
    [tx] = await h.store.list()

    assert await h.dispatcher.expire_stale(now_ms=tx.timestamp + 1_000) == []
    assert await h.dispatcher.expire_stale(now_ms=tx.timestamp + 61_000) == ["old"]
    assert h.pushed == [{"type": "SPHERE_TRANSACTION_RESULT", "requestId": "old",
                         "success": False, "error": REQUEST_EXPIRED}]
    assert await h.store.list() == []


@pytest.mark.asyncio
async def test_expiry_disabled_without_ttl(harness):
    await harness.connect()
    await harness.send("r1")
    assert await harness.dispatcher.expire_stale(now_ms=10**15) == []
    assert len(await harness.store.list()) == 1


@pytest.mark.asyncio
async def test_connect_waits_for_unlock(wait_until):
    h = Harness(FakeWallet(unlocked=False))
    task = asyncio.create_task(h.request(RequestType.CONNECT, "c1"))
    await wait_until(lambda: StateEvent.ATTENTION_REQUIRED in [e for e, _ in h.events])
    assert not task.done()

    await h.dispatcher.unlock(PASSWORD)
    reply = await task
    assert reply["success"] is True
    assert reply["identity"]["id"] == "id-1"


@pytest.mark.asyncio
async def test_connect_times_out_while_locked():
    h = Harness(FakeWallet(unlocked=False), connect_timeout=0.05)
    reply = await h.request(RequestType.CONNECT, "c1")
    assert reply["success"] is False
    assert reply["error"] == CONNECT_TIMED_OUT
    assert h.dispatcher.connected_sites == []


@pytest.mark.asyncio
async def test_disconnect_and_revoke(harness):
    await harness.connect()
    await harness.request(RequestType.DISCONNECT, "d1")
    assert harness.dispatcher.connected_sites == []
    reply = await harness.request(RequestType.GET_BALANCES)
    assert reply["error"] == NOT_CONNECTED

    await harness.connect()
    assert harness.dispatcher.revoke_site(ORIGIN) is True
    assert harness.dispatcher.revoke_site(ORIGIN) is False


@pytest.mark.asyncio
async def test_unknown_and_untyped_messages(harness):
    assert await harness.dispatcher.handle_message({"requestId": "x"}, TAB) == \
        {"success": False, "error": "Missing message type"}
    assert await harness.dispatcher.handle_message({"type": "SOMETHING_ELSE"}, TAB) == \
        {"success": False, "error": "Unknown message type: SOMETHING_ELSE"}
    assert await harness.dispatcher.handle_message(
        {"type": "SPHERE_CONNECT_RESPONSE", "requestId": "x", "success": True}, TAB) is None

    reply = await harness.request("SPHERE_TELEPORT", "r9")
    assert reply == {"type": "SPHERE_TELEPORT_RESPONSE", "requestId": "r9", "success": False,
                     "error": "Unknown message type: SPHERE_TELEPORT"}


@pytest.mark.asyncio
async def test_popup_requires_approver(harness):
    reply = await harness.dispatcher.handle_message({"type": "POPUP_GET_PENDING_TRANSACTIONS"}, TAB)
    assert reply == {"success": False, "error": "Not authorized"}

    reply = await harness.dispatcher.handle_message({"type": "POPUP_NOPE"}, APPROVER)
    assert reply["success"] is False


@pytest.mark.asyncio
async def test_popup_messages(harness):
    await harness.connect()
    await harness.send("r1")
    call = harness.dispatcher.handle_message

    state = await call({"type": "POPUP_GET_STATE"}, APPROVER)
    assert state == {"success": True, "state": {"isUnlocked": True, "activeIdentityId": "id-1", "pendingCount": 1}}

    pending = await call({"type": "POPUP_GET_PENDING_TRANSACTIONS"}, APPROVER)
    assert [tx["requestId"] for tx in pending["transactions"]] == ["r1"]

    sites = await call({"type": "POPUP_GET_CONNECTED_SITES"}, APPROVER)
    assert sites == {"success": True, "sites": [ORIGIN]}

    approved = await call({"type": "POPUP_APPROVE_TRANSACTION", "requestId": "r1"}, APPROVER)
    assert approved["success"] is True
    assert approved["result"]["transactionId"]

    again = await call({"type": "POPUP_APPROVE_TRANSACTION", "requestId": "r1"}, APPROVER)
    assert again == {"success": False, "error": "Transaction not found"}

    assert (await call({"type": "POPUP_LOCK_WALLET"}, APPROVER))["success"] is True
    assert harness.wallet.unlocked is False
    locked = await call({"type": "POPUP_GET_BALANCES"}, APPROVER)
    assert locked == {"success": False, "error": WALLET_LOCKED}

    bad = await call({"type": "POPUP_UNLOCK_WALLET", "password": "wrong"}, APPROVER)
    assert bad == {"success": False, "error": "Invalid password"}
    missing = await call({"type": "POPUP_UNLOCK_WALLET"}, APPROVER)
    assert missing == {"success": False, "error": "Missing password"}
    unlocked = await call({"type": "POPUP_UNLOCK_WALLET", "password": PASSWORD}, APPROVER)
    assert unlocked["identity"]["label"] == "Main"

    revoked = await call({"type": "POPUP_REVOKE_CONNECTED_SITE", "origin": ORIGIN}, APPROVER)
    assert revoked == {"success": True}
    revoked = await call({"type": "POPUP_REVOKE_CONNECTED_SITE", "origin": ORIGIN}, APPROVER)
    assert revoked["success"] is False


@pytest.mark.asyncio
async def test_close_releases_waiters(wait_until):
    h = Harness(FakeWallet(unlocked=False))
    task = asyncio.create_task(h.request(RequestType.CONNECT, "c1"))
    await wait_until(lambda: h.events)
    h.dispatcher.close()
    reply = await task
    assert reply["error"] == CONNECT_TIMED_OUT


@pytest.mark.asyncio
async def test_unexpected_execution_error_is_reported(harness):
    await harness.connect()
    await harness.request(RequestType.SIGN_MESSAGE, "r1", message="hello")
    harness.wallet.fail_with["sign_message"] = RuntimeError()

    outcome = await harness.dispatcher.approve("r1")
    assert outcome.error == "Execution failed"
    assert harness.pushed[0]["error"] == "Execution failed"
