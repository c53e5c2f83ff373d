"""Error taxonomy for yaquest.

Pre-dispatch errors (ConfigurationError, SerializationError) are raised
synchronously before any I/O. Everything that happens after dispatch is
delivered through the request's outcome as one of the remaining kinds.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from yaquest.models import RequestDescriptor, Response


class YaquestError(Exception):
    """Base class for all yaquest errors.

    The request and response back-references are attached after settlement
    for diagnostics only. They are None when the failure happened before a
    descriptor existed or before any response headers arrived.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
        self.request: RequestDescriptor | None = None
        self.response: Response | None = None

    @property
    def status(self) -> int | None:
        """Status of the partial response, if one was received."""
        return self.response.status if self.response is not None else None

    @property
    def data(self) -> Any:
        """Body of the partial response, if one was received."""
        return self.response.body if self.response is not None else None


class ConfigurationError(YaquestError):
    """Raised when a request is missing method/target or has invalid settings."""


class SerializationError(YaquestError):
    """Raised when a request body cannot be JSON-encoded."""


class TransportError(YaquestError):
    """Connection or socket level failure (DNS, reset, premature close)."""


class DecompressionError(YaquestError):
    """Raised by the gzip filter on a corrupt or truncated stream.

    Never surfaced directly: the engine wraps it as the cause of a
    TransportError.
    """


class RequestTimeoutError(YaquestError, TimeoutError):
    """The timeout elapsed before the request settled."""


class HttpStatusError(YaquestError):
    """A response arrived with a status outside [200, 300)."""


class ResponseProcessingError(YaquestError):
    """Unexpected failure while assembling a fully received response."""
