"""
Wire envelopes: one record per request verb, discriminated on ``type``.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class BaseRequest(WireModel):
    request_id: str = Field(min_length=1)
    origin: Optional[str] = None  # stamped by the relay


class ConnectRequest(BaseRequest):
    type: Literal["SPHERE_CONNECT"] = "SPHERE_CONNECT"


class DisconnectRequest(BaseRequest):
    type: Literal["SPHERE_DISCONNECT"] = "SPHERE_DISCONNECT"


class GetActiveIdentityRequest(BaseRequest):
    type: Literal["SPHERE_GET_ACTIVE_IDENTITY"] = "SPHERE_GET_ACTIVE_IDENTITY"


class GetBalancesRequest(BaseRequest):
    type: Literal["SPHERE_GET_BALANCES"] = "SPHERE_GET_BALANCES"


class SendTokensRequest(BaseRequest):
    type: Literal["SPHERE_SEND_TOKENS"] = "SPHERE_SEND_TOKENS"
    recipient: str = Field(min_length=1)
    coin_id: str = Field(min_length=1)
    amount: str = Field(pattern=r"^[0-9]+$")  # smallest units
    message: Optional[str] = None


class SignMessageRequest(BaseRequest):
    type: Literal["SPHERE_SIGN_MESSAGE"] = "SPHERE_SIGN_MESSAGE"
    message: str


class GetNostrPublicKeyRequest(BaseRequest):
    type: Literal["SPHERE_GET_NOSTR_PUBLIC_KEY"] = "SPHERE_GET_NOSTR_PUBLIC_KEY"


class SignNostrEventRequest(BaseRequest):
    type: Literal["SPHERE_SIGN_NOSTR_EVENT"] = "SPHERE_SIGN_NOSTR_EVENT"
    event_hash: str = Field(pattern=r"^[0-9a-fA-F]+$")


class Nip44EncryptRequest(BaseRequest):
    type: Literal["SPHERE_NIP44_ENCRYPT"] = "SPHERE_NIP44_ENCRYPT"
    recipient_pubkey: str = Field(min_length=1)
    plaintext: str


class Nip44DecryptRequest(BaseRequest):
    type: Literal["SPHERE_NIP44_DECRYPT"] = "SPHERE_NIP44_DECRYPT"
    sender_pubkey: str = Field(min_length=1)
    ciphertext: str


class ResolveNametagRequest(BaseRequest):
    type: Literal["SPHERE_RESOLVE_NAMETAG"] = "SPHERE_RESOLVE_NAMETAG"
    nametag: str = Field(min_length=1)


class CheckNametagAvailableRequest(BaseRequest):
    type: Literal["SPHERE_CHECK_NAMETAG_AVAILABLE"] = "SPHERE_CHECK_NAMETAG_AVAILABLE"
    nametag: str = Field(min_length=1)


class GetMyNametagRequest(BaseRequest):
    type: Literal["SPHERE_GET_MY_NAMETAG"] = "SPHERE_GET_MY_NAMETAG"


class MintNametagRequest(BaseRequest):
    type: Literal["SPHERE_MINT_NAMETAG"] = "SPHERE_MINT_NAMETAG"
    nametag: str = Field(min_length=1)


SphereRequest = Annotated[
    Union[
        ConnectRequest,
        DisconnectRequest,
        GetActiveIdentityRequest,
        GetBalancesRequest,
        SendTokensRequest,
        SignMessageRequest,
        GetNostrPublicKeyRequest,
        SignNostrEventRequest,
        Nip44EncryptRequest,
        Nip44DecryptRequest,
        ResolveNametagRequest,
        CheckNametagAvailableRequest,
        GetMyNametagRequest,
        MintNametagRequest,
    ],
    Field(discriminator="type"),
]


class SphereResponse(WireModel):
    """Reply to exactly one request. Verb fields ride along as extras."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    type: str
    request_id: str
    success: bool
    error: Optional[str] = None
    pending: Optional[bool] = None

    def to_wire(self) -> dict[str, Any]:
        # extras such as ``identity: null`` are meaningful and kept
        data = self.model_dump(by_alias=True)
        for key in ("error", "pending"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class TransactionResult(WireModel):
    """Out-of-band terminal outcome pushed after approval, rejection or expiry."""
    type: Literal["SPHERE_TRANSACTION_RESULT"] = "SPHERE_TRANSACTION_RESULT"
    request_id: str
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None
