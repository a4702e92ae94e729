"""
sphere-bridge: let web pages use a Sphere wallet without touching its keys.

Page-side client, untrusted-boundary relay and trusted dispatcher with a
human approval queue, joined by Socket.IO or an in-process hub.
"""

from sphere_bridge.approver import ApproverClient
from sphere_bridge.client import SphereClient
from sphere_bridge.dispatcher import Dispatcher
from sphere_bridge.errors import (
    DuplicateRequestError,
    ExecutionError,
    NotFoundError,
    RequestFailedError,
    RequestTimeoutError,
    SphereError,
    TransportError,
    ValidationError,
    WalletServiceError,
)
from sphere_bridge.models.events import PopupMessage, RequestType, ResultType
from sphere_bridge.relay import Relay
from sphere_bridge.store import PendingTransactionStore

__version__ = "0.1.0"
__all__ = [
    "SphereClient",
    "Relay",
    "Dispatcher",
    "ApproverClient",
    "PendingTransactionStore",
    "SphereError",
    "ValidationError",
    "DuplicateRequestError",
    "RequestTimeoutError",
    "RequestFailedError",
    "NotFoundError",
    "ExecutionError",
    "TransportError",
    "WalletServiceError",
    "RequestType",
    "ResultType",
    "PopupMessage",
]
