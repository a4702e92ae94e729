"""
Envelope construction and parsing.
"""

import time
import uuid
from typing import Any, Optional, Union

import pydantic
from pydantic import TypeAdapter

from sphere_bridge.errors import ValidationError
from sphere_bridge.models.envelope import SphereRequest, SphereResponse, TransactionResult
from sphere_bridge.models.events import MessageKind, classify, is_reply, is_result, response_type

_REQUEST_ADAPTER = TypeAdapter(SphereRequest)


def generate_request_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}"


def build_request(request_type: str, request_id: Optional[str] = None, **fields: Any) -> dict[str, Any]:
    """Build a request envelope as a plain dict ready to post."""
    return {"type": request_type, "requestId": request_id or generate_request_id(), **fields}


def build_response(
    request_type: str,
    request_id: str,
    success: bool = True,
    error: Optional[str] = None,
    **fields: Any,
) -> dict[str, Any]:
    response = SphereResponse(
        type=response_type(request_type),
        request_id=request_id,
        success=success,
        error=error,
        **fields,
    )
    return response.to_wire()


def build_failure(request_type: str, request_id: str, error: str) -> dict[str, Any]:
    return build_response(request_type, request_id, success=False, error=error)


def build_pending(request_type: str, request_id: str) -> dict[str, Any]:
    """The dispatcher's "parked for approval" outcome. Never reaches the page."""
    return build_response(request_type, request_id, pending=True)


def build_result(
    request_id: str,
    success: bool,
    result: Any = None,
    error: Optional[str] = None,
) -> TransactionResult:
    return TransactionResult(request_id=request_id, success=success, result=result, error=error)


def _describe(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p)
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def parse_request(raw: Any) -> SphereRequest:
    """Validate an inbound request envelope. Raises ValidationError."""
    if not isinstance(raw, dict):
        raise ValidationError("Message is not an object")
    message_type = raw.get("type")
    if not message_type:
        raise ValidationError("Missing message type")
    if classify(message_type) is not MessageKind.REQUEST:
        raise ValidationError(f"Not a request type: {message_type}")
    try:
        return _REQUEST_ADAPTER.validate_python(raw)
    except pydantic.ValidationError as e:
        if any(err["type"] == "union_tag_invalid" for err in e.errors()):
            raise ValidationError(f"Unknown message type: {message_type}") from e
        raise ValidationError(f"Invalid {message_type} request: {_describe(e)}") from e


def parse_reply(raw: Any) -> Optional[Union[SphereResponse, TransactionResult]]:
    """Parse a response or result envelope. Returns None if invalid."""
    if not isinstance(raw, dict) or not is_reply(raw.get("type")):
        return None
    model = TransactionResult if is_result(raw["type"]) else SphereResponse
    try:
        return model.model_validate(raw)
    except pydantic.ValidationError:
        return None
