"""
Sphere bridge error types.
"""

from typing import Any, Optional


class SphereError(Exception):
    def __init__(self, code: str, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


class ValidationError(SphereError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("validation_error", message, details)


class DuplicateRequestError(ValidationError):
    def __init__(self, request_id: str):
        super().__init__(f"Duplicate request id: {request_id}", {"request_id": request_id})
        self.request_id = request_id


class RequestTimeoutError(SphereError):
    def __init__(self, message: str = "Request timeout", request_id: Optional[str] = None):
        super().__init__("timeout", message, {"request_id": request_id} if request_id else None)
        self.request_id = request_id


class RequestFailedError(SphereError):
    """The wallet answered with success: false."""

    def __init__(self, message: str, request_id: Optional[str] = None):
        super().__init__("request_failed", message, {"request_id": request_id} if request_id else None)
        self.request_id = request_id


class NotFoundError(SphereError):
    def __init__(self, message: str = "Transaction not found", request_id: Optional[str] = None):
        super().__init__("not_found", message, {"request_id": request_id} if request_id else None)
        self.request_id = request_id


class ExecutionError(SphereError):
    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__("execution_error", message, details)


class TransportError(SphereError):
    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__("transport_error", message, {"target": target} if target else None)
        self.target = target


class WalletServiceError(SphereError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__("wallet_error", message, {"status_code": status_code} if status_code else None)
        self.status_code = status_code
