"""Body codec - request body encoding and opportunistic response decoding.

Outgoing bodies are an explicit tagged variant: RawBody is sent verbatim as
application/octet-stream, JsonBody is JSON-encoded as application/json.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from pydantic import BaseModel

from yaquest.errors import SerializationError

logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
APPLICATION_JSON = "application/json"


@dataclass(frozen=True)
class RawBody:
    """Bytes sent as-is."""

    data: bytes


@dataclass(frozen=True)
class JsonBody:
    """Any JSON-serializable value (pydantic models included)."""

    value: Any


Body = Union[RawBody, JsonBody]


def coerce_body(value: Any) -> Body:
    """Tag a caller-supplied body by its type.

    Bytes-like values become RawBody, already tagged bodies pass through,
    everything else becomes JsonBody.
    """
    if isinstance(value, (RawBody, JsonBody)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return RawBody(bytes(value))
    return JsonBody(value)


def encode_body(body: Body) -> tuple[bytes, str]:
    """Encode a tagged body into (bytes, content_type).

    Raises:
        SerializationError: If a JsonBody value cannot be encoded (unsupported
            type, circular reference, NaN or Infinity).
    """
    if isinstance(body, RawBody):
        return body.data, OCTET_STREAM

    value = body.value
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")

    try:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Request body is not JSON-serializable: {e}", cause=e) from e

    return text.encode("utf-8"), APPLICATION_JSON


def decode_body(content: bytes, binary: bool) -> Any:
    """Decode response bytes as JSON unless binary mode is set or content is empty.

    Malformed or non-JSON payloads are not failures: the raw bytes are
    returned instead.
    """
    if binary or not content:
        return content

    try:
        return json.loads(content, parse_constant=_reject_constant)
    except (ValueError, RecursionError):
        # ValueError covers JSONDecodeError and UnicodeDecodeError; deeply
        # nested payloads exhaust the recursion limit
        logger.debug("Response body is not JSON (%d bytes), keeping raw bytes", len(content))
        return content


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not JSON
    raise ValueError(f"invalid JSON constant {name!r}")
