"""
Pending transactions: requests parked until the wallet owner decides.
"""

from typing import Any, Literal, Optional, Union

from pydantic import Field, model_validator

from sphere_bridge.models.envelope import WireModel


class PendingKind:
    SEND = "send"
    SIGN_MESSAGE = "sign_message"
    SIGN_NOSTR = "sign_nostr"
    MINT_NAMETAG = "mint_nametag"


class SendTransactionData(WireModel):
    recipient: str
    coin_id: str
    amount: str
    message: Optional[str] = None


class SignMessageData(WireModel):
    message: str


class SignNostrData(WireModel):
    event_hash: str


class MintNametagData(WireModel):
    nametag: str


PendingData = Union[SendTransactionData, SignMessageData, SignNostrData, MintNametagData]

DATA_MODELS: dict[str, type[WireModel]] = {
    PendingKind.SEND: SendTransactionData,
    PendingKind.SIGN_MESSAGE: SignMessageData,
    PendingKind.SIGN_NOSTR: SignNostrData,
    PendingKind.MINT_NAMETAG: MintNametagData,
}


class PendingTransaction(WireModel):
    request_id: str = Field(min_length=1)
    type: Literal["send", "sign_message", "sign_nostr", "mint_nametag"]
    origin: str
    target: Optional[str] = None  # addressable relay target for the result push
    timestamp: int  # epoch milliseconds
    data: PendingData

    @model_validator(mode="before")
    @classmethod
    def _select_data_model(cls, values: Any) -> Any:
        # data carries no tag of its own; the record's type decides its shape
        if isinstance(values, dict):
            model = DATA_MODELS.get(values.get("type"))  # type: ignore[arg-type]
            data = values.get("data")
            if model is not None and isinstance(data, dict):
                values = {**values, "data": model.model_validate(data)}
        return values

    @model_validator(mode="after")
    def _check_data_matches_type(self) -> "PendingTransaction":
        expected = DATA_MODELS[self.type]
        if not isinstance(self.data, expected):
            raise ValueError(f"data does not match transaction type {self.type!r}")
        return self
