"""Transport - the connection primitive the execution engine drives.

The engine only sees the Transport protocol: open a handle for a descriptor,
write body bytes, end the request (which waits for response headers), and
abort/release the handle. HttpxTransport is the default implementation.
"""

from __future__ import annotations

import ssl
from typing import Any, AsyncIterator, Protocol

import httpx

from yaquest.errors import ConfigurationError
from yaquest.models import RequestDescriptor, TlsConfig


class TransportResponse(Protocol):
    """Response headers plus the undecoded body stream."""

    @property
    def status_code(self) -> int | None: ...

    @property
    def headers(self) -> list[tuple[str, str]]: ...

    def aiter_raw(self) -> AsyncIterator[bytes]: ...


class TransportHandle(Protocol):
    """One in-flight request. Owned by exactly one execution."""

    async def write(self, data: bytes) -> None: ...

    async def end(self) -> TransportResponse: ...

    async def abort(self) -> None:
        """Release the connection, cutting off any further bytes. Idempotent."""
        ...


class Transport(Protocol):
    async def open(self, descriptor: RequestDescriptor) -> TransportHandle: ...


class HttpxTransport:
    """Transport on top of httpx.AsyncClient.

    Without an explicit client, every handle gets its own AsyncClient which is
    closed when the handle is aborted. A caller-supplied client is shared by
    all handles and never closed here.

    httpx never sees a timeout (the engine owns it), never follows redirects
    and never decodes the body (raw bytes are read so the decompression
    filter stays in charge of gzip).
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        tls: TlsConfig | None = None,
        trust_env: bool = False,
    ) -> None:
        """Initialize the transport.

        Args:
            client: Shared client to send through. Mutually exclusive with tls.
            tls: TLS settings for the per-handle clients.
            trust_env: Honour proxy/certificate environment variables.

        Raises:
            ConfigurationError: If both client and tls are given, or the TLS
                settings are invalid.
        """
        if client is not None and tls is not None:
            raise ConfigurationError("HttpxTransport accepts either a client or tls settings, not both")
        self._client = client
        self._client_kwargs = self._build_client_kwargs(tls or TlsConfig(), trust_env)

    @classmethod
    def from_tls(cls, tls: TlsConfig) -> HttpxTransport:
        return cls(tls=tls)

    def _build_client_kwargs(self, tls: TlsConfig, trust_env: bool) -> dict[str, Any]:
        """Build kwargs for httpx.AsyncClient including TLS configuration."""
        kwargs: dict[str, Any] = {
            "timeout": None,
            "follow_redirects": False,
            "trust_env": trust_env,
        }
        if not tls.is_default:
            kwargs["verify"] = self._build_ssl_context(tls)
        return kwargs

    @staticmethod
    def _build_ssl_context(tls: TlsConfig) -> ssl.SSLContext:
        try:
            ssl_context = ssl.create_default_context(cafile=tls.ca_bundle)
        except (OSError, ssl.SSLError) as e:
            raise ConfigurationError(f"Cannot load CA bundle '{tls.ca_bundle}': {e}", cause=e) from e

        if not tls.verify_ssl:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE

        # Client certificate (mTLS)
        if tls.cert:
            try:
                ssl_context.load_cert_chain(tls.cert, tls.key, tls.key_password)
            except (OSError, ssl.SSLError) as e:
                raise ConfigurationError(f"Cannot load client certificate '{tls.cert}': {e}", cause=e) from e

        if tls.ciphers:
            try:
                ssl_context.set_ciphers(tls.ciphers)
            except ssl.SSLError as e:
                raise ConfigurationError(f"Invalid cipher string '{tls.ciphers}': {e}", cause=e) from e

        return ssl_context

    async def open(self, descriptor: RequestDescriptor) -> HttpxHandle:
        if self._client is not None:
            return HttpxHandle(self._client, descriptor, owns_client=False)
        return HttpxHandle(httpx.AsyncClient(**self._client_kwargs), descriptor, owns_client=True)


class HttpxResponse:
    """TransportResponse view over a streaming httpx.Response."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def status_code(self) -> int | None:
        return self._response.status_code or None

    @property
    def headers(self) -> list[tuple[str, str]]:
        return list(self._response.headers.multi_items())

    def aiter_raw(self) -> AsyncIterator[bytes]:
        return self._response.aiter_raw()


class HttpxHandle:
    """Buffers written body bytes and sends the request on end().

    httpx connects lazily inside send(), so connection establishment happens
    during end() rather than open().
    """

    def __init__(self, client: httpx.AsyncClient, descriptor: RequestDescriptor, owns_client: bool) -> None:
        self._client = client
        self._descriptor = descriptor
        self._owns_client = owns_client
        self._buffer = bytearray()
        self._response: httpx.Response | None = None
        self._closed = False

    async def write(self, data: bytes) -> None:
        self._buffer += data

    async def end(self) -> HttpxResponse:
        request = self._client.build_request(
            method=self._descriptor.method.value,
            url=self._descriptor.full_url(),
            headers=self._descriptor.headers,
            content=bytes(self._buffer) if self._buffer else None,
        )
        self._response = await self._client.send(request, stream=True)
        return HttpxResponse(self._response)

    async def abort(self) -> None:
        """Close the response and, when owned, the client.

        Uses try/finally so the client is closed even if closing the response
        raises.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self._response is not None:
                await self._response.aclose()
        finally:
            if self._owns_client:
                await self._client.aclose()
