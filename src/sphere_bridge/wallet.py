"""
Wallet service: the cryptographic collaborator the dispatcher drives.

Key storage, unlocking and signing live behind this interface. HttpWallet
talks to a wallet daemon over REST.
"""

from typing import Any, Optional, Protocol

from sphere_bridge.errors import WalletServiceError
from sphere_bridge.models.wallet import (
    IdentityInfo,
    NametagInfo,
    NametagResolution,
    NostrPublicKey,
    SendTokensResult,
    TokenBalance,
)
from sphere_bridge.transport.http import DEFAULT_WALLET_URL, HttpClient


class WalletService(Protocol):
    async def is_unlocked(self) -> bool: ...

    async def unlock(self, password: str) -> IdentityInfo: ...

    async def lock(self) -> None: ...

    async def get_active_identity(self) -> IdentityInfo: ...

    async def get_balances(self) -> list[TokenBalance]: ...

    async def send_amount(
        self, coin_id: str, amount: str, recipient: str, message: Optional[str] = None,
    ) -> SendTokensResult: ...

    async def sign_message(self, message: str) -> str: ...

    async def get_nostr_public_key(self) -> NostrPublicKey: ...

    async def sign_nostr_event_hash(self, event_hash: str) -> str: ...

    async def nip44_encrypt(self, recipient_pubkey: str, plaintext: str) -> str: ...

    async def nip44_decrypt(self, sender_pubkey: str, ciphertext: str) -> str: ...

    async def resolve_nametag(self, nametag: str) -> Optional[NametagResolution]: ...

    async def is_nametag_available(self, nametag: str) -> bool: ...

    async def get_my_nametag(self) -> Optional[NametagInfo]: ...

    async def register_nametag(self, nametag: str) -> NametagInfo: ...


def clean_nametag(nametag: str) -> str:
    return nametag.replace("@", "").strip().lower()


class HttpWallet:
    def __init__(self, base_url: str = DEFAULT_WALLET_URL, token: Optional[str] = None, http: Optional[HttpClient] = None):
        self._http = http or HttpClient(base_url=base_url, token=token)

    @staticmethod
    def _require(data: Any, what: str) -> Any:
        if data is None:
            raise WalletServiceError(f"Wallet service returned no {what}")
        return data

    async def is_unlocked(self) -> bool:
        state = await self._http.get("/v1/state")
        return bool(state and state.get("isUnlocked"))

    async def unlock(self, password: str) -> IdentityInfo:
        data = await self._http.post("/v1/unlock", {"password": password})
        return IdentityInfo.model_validate(self._require(data, "identity"))

    async def lock(self) -> None:
        await self._http.post("/v1/lock")

    async def get_active_identity(self) -> IdentityInfo:
        data = await self._http.get("/v1/identity")
        return IdentityInfo.model_validate(self._require(data, "identity"))

    async def get_balances(self) -> list[TokenBalance]:
        data = await self._http.get("/v1/balances") or []
        return [TokenBalance.model_validate(b) for b in data]

    async def send_amount(
        self, coin_id: str, amount: str, recipient: str, message: Optional[str] = None,
    ) -> SendTokensResult:
        body: dict[str, Any] = {"coinId": coin_id, "amount": amount, "recipient": recipient}
        if message is not None:
            body["message"] = message
        data = await self._http.post("/v1/transfers", body)
        return SendTokensResult.model_validate(self._require(data, "transfer result"))

    async def sign_message(self, message: str) -> str:
        data = self._require(await self._http.post("/v1/sign/message", {"message": message}), "signature")
        return data["signature"]

    async def get_nostr_public_key(self) -> NostrPublicKey:
        data = await self._http.get("/v1/nostr/public-key")
        return NostrPublicKey.model_validate(self._require(data, "public key"))

    async def sign_nostr_event_hash(self, event_hash: str) -> str:
        data = self._require(await self._http.post("/v1/sign/nostr", {"eventHash": event_hash}), "signature")
        return data["signature"]

    async def nip44_encrypt(self, recipient_pubkey: str, plaintext: str) -> str:
        data = await self._http.post("/v1/nip44/encrypt", {"recipientPubkey": recipient_pubkey, "plaintext": plaintext})
        return self._require(data, "ciphertext")["ciphertext"]

    async def nip44_decrypt(self, sender_pubkey: str, ciphertext: str) -> str:
        data = await self._http.post("/v1/nip44/decrypt", {"senderPubkey": sender_pubkey, "ciphertext": ciphertext})
        return self._require(data, "plaintext")["plaintext"]

    async def resolve_nametag(self, nametag: str) -> Optional[NametagResolution]:
        data = await self._http.get(f"/v1/nametags/{clean_nametag(nametag)}")
        return NametagResolution.model_validate(data) if data else None

    async def is_nametag_available(self, nametag: str) -> bool:
        data = await self._http.get(f"/v1/nametags/{clean_nametag(nametag)}/available")
        return bool(self._require(data, "availability").get("available"))

    async def get_my_nametag(self) -> Optional[NametagInfo]:
        data = await self._http.get("/v1/nametags/mine")
        return NametagInfo.model_validate(data) if data else None

    async def register_nametag(self, nametag: str) -> NametagInfo:
        data = await self._http.post("/v1/nametags", {"nametag": clean_nametag(nametag)})
        return NametagInfo.model_validate(self._require(data, "nametag"))

    async def close(self) -> None:
        await self._http.close()
