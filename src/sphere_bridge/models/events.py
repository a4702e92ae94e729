"""
Message taxonomy: prefixes, suffixes and the closed sets of message types.

The naming convention is a wire detail; code should branch on
``classify()`` rather than on string tests of its own.
"""

from enum import Enum
from typing import Optional

MESSAGE_PREFIX = "SPHERE_"
POPUP_PREFIX = "POPUP_"
RESPONSE_SUFFIX = "_RESPONSE"
RESULT_MARKER = "_RESULT"


class RequestType:
    CONNECT = "SPHERE_CONNECT"
    DISCONNECT = "SPHERE_DISCONNECT"
    GET_ACTIVE_IDENTITY = "SPHERE_GET_ACTIVE_IDENTITY"
    GET_BALANCES = "SPHERE_GET_BALANCES"
    SEND_TOKENS = "SPHERE_SEND_TOKENS"
    SIGN_MESSAGE = "SPHERE_SIGN_MESSAGE"
    GET_NOSTR_PUBLIC_KEY = "SPHERE_GET_NOSTR_PUBLIC_KEY"
    SIGN_NOSTR_EVENT = "SPHERE_SIGN_NOSTR_EVENT"
    NIP44_ENCRYPT = "SPHERE_NIP44_ENCRYPT"
    NIP44_DECRYPT = "SPHERE_NIP44_DECRYPT"
    RESOLVE_NAMETAG = "SPHERE_RESOLVE_NAMETAG"
    CHECK_NAMETAG_AVAILABLE = "SPHERE_CHECK_NAMETAG_AVAILABLE"
    GET_MY_NAMETAG = "SPHERE_GET_MY_NAMETAG"
    MINT_NAMETAG = "SPHERE_MINT_NAMETAG"


class ResultType:
    TRANSACTION_RESULT = "SPHERE_TRANSACTION_RESULT"


class PopupMessage:
    GET_STATE = "POPUP_GET_STATE"
    UNLOCK_WALLET = "POPUP_UNLOCK_WALLET"
    LOCK_WALLET = "POPUP_LOCK_WALLET"
    GET_BALANCES = "POPUP_GET_BALANCES"
    GET_PENDING_TRANSACTIONS = "POPUP_GET_PENDING_TRANSACTIONS"
    APPROVE_TRANSACTION = "POPUP_APPROVE_TRANSACTION"
    REJECT_TRANSACTION = "POPUP_REJECT_TRANSACTION"
    GET_CONNECTED_SITES = "POPUP_GET_CONNECTED_SITES"
    REVOKE_CONNECTED_SITE = "POPUP_REVOKE_CONNECTED_SITE"


class StateEvent:
    """Broadcast to dispatcher listeners so approver UIs can refresh."""
    PENDING_CHANGED = "pending_changed"
    BALANCES_CHANGED = "balances_changed"
    IDENTITY_CHANGED = "identity_changed"
    SITES_CHANGED = "sites_changed"
    ATTENTION_REQUIRED = "attention_required"


class MessageKind(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    RESULT = "result"
    POPUP = "popup"


def classify(message_type: object) -> Optional[MessageKind]:
    """Return the kind of a wire type, or None if it is not ours."""
    if not isinstance(message_type, str):
        return None
    if message_type.startswith(POPUP_PREFIX):
        return MessageKind.POPUP
    if not message_type.startswith(MESSAGE_PREFIX):
        return None
    if message_type.endswith(RESPONSE_SUFFIX):
        return MessageKind.RESPONSE
    if RESULT_MARKER in message_type:
        return MessageKind.RESULT
    return MessageKind.REQUEST


def is_request(message_type: object) -> bool:
    return classify(message_type) is MessageKind.REQUEST


def is_response(message_type: object) -> bool:
    return classify(message_type) is MessageKind.RESPONSE


def is_result(message_type: object) -> bool:
    return classify(message_type) is MessageKind.RESULT


def is_reply(message_type: object) -> bool:
    """Responses and Results both settle a pending call."""
    return classify(message_type) in (MessageKind.RESPONSE, MessageKind.RESULT)


def response_type(request_type: str) -> str:
    return f"{request_type}{RESPONSE_SUFFIX}"
