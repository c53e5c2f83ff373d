"""yaquest - fluent, awaitable HTTP requests."""

from yaquest.body import JsonBody, RawBody
from yaquest.engine import Execution, ExecutionState
from yaquest.errors import (
    ConfigurationError,
    DecompressionError,
    HttpStatusError,
    RequestTimeoutError,
    ResponseProcessingError,
    SerializationError,
    TransportError,
    YaquestError,
)
from yaquest.models import Method, RequestDescriptor, Response, Target
from yaquest.outcome import Outcome, OutcomeState, Reflection
from yaquest.request import (
    Endpoint,
    Request,
    combine_url,
    delete,
    for_url,
    get,
    patch,
    post,
    put,
    request,
)
from yaquest.transport import HttpxTransport, Transport

__all__ = [
    "ConfigurationError",
    "DecompressionError",
    "Endpoint",
    "Execution",
    "ExecutionState",
    "HttpStatusError",
    "HttpxTransport",
    "JsonBody",
    "Method",
    "Outcome",
    "OutcomeState",
    "RawBody",
    "Reflection",
    "Request",
    "RequestDescriptor",
    "RequestTimeoutError",
    "Response",
    "ResponseProcessingError",
    "SerializationError",
    "Target",
    "Transport",
    "TransportError",
    "YaquestError",
    "combine_url",
    "delete",
    "for_url",
    "get",
    "patch",
    "post",
    "put",
    "request",
]
