"""
Wallet records returned by the wallet service.
"""

from typing import Literal, Optional

from sphere_bridge.models.envelope import WireModel


class IdentityInfo(WireModel):
    id: str
    label: str = ""
    public_key: str = ""     # compressed secp256k1, hex
    created_at: str = ""


class TokenBalance(WireModel):
    coin_id: str
    symbol: str = ""
    amount: str = "0"        # smallest units, kept as a string


class NametagInfo(WireModel):
    nametag: str
    proxy_address: str = ""
    token_id: str = ""
    status: Literal["active", "minting", "pending"] = "active"


class NametagResolution(WireModel):
    nametag: str
    pubkey: str
    proxy_address: str


class NostrPublicKey(WireModel):
    hex: str
    npub: str


class SendTokensResult(WireModel):
    transaction_id: str
    recipient_payload: Optional[str] = None
    sent: Optional[str] = None
    tokens_used: Optional[int] = None
    split_performed: Optional[bool] = None


class WalletState(WireModel):
    is_unlocked: bool
    active_identity_id: Optional[str] = None
    pending_count: int = 0
