"""Request builder - fluent configuration of a single HTTP request.

Configuration methods return the builder for chaining. Nothing is sent
until the request is awaited; the first await snapshots the configuration
into a RequestDescriptor and starts one execution, later awaits observe the
same execution. Mutating a builder after it was awaited does not affect the
run already in flight; use copy() for an independent run.

Usage:
    import yaquest

    response = await yaquest.post("https://api.example.com/items").send({"name": "x"})
    response.body  # parsed JSON

    api = yaquest.for_url("https://api.example.com")
    result = await api.get("/items").query("tag", "a").query("tag", "b").reflect()
"""

from __future__ import annotations

import base64
from typing import Any, Callable, Generator

from pydantic import ValidationError

from yaquest.body import coerce_body, encode_body
from yaquest.engine import Execution
from yaquest.errors import ConfigurationError
from yaquest.models import ClientProfile, Method, RequestDescriptor, Target
from yaquest.outcome import Outcome, Reflection
from yaquest.transport import HttpxTransport, Transport

DEFAULT_TIMEOUT_MS = 30000


def _query_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Request:
    """Mutable request descriptor with a fluent API. Not thread-safe."""

    def __init__(self) -> None:
        self._method: Method | None = None
        self._target: Target | None = None
        self._headers: dict[str, str] = {"Accept-Encoding": "gzip"}
        self._query: dict[str, list[str]] = {}
        self._body: bytes | None = None
        self._binary = False
        self._timeout_ms: int = DEFAULT_TIMEOUT_MS
        self._transport: Transport | None = None
        self._execution: Execution | None = None

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def url(self, url: str) -> Request:
        self._target = Target.parse(url)
        return self

    def method(self, method: Method | str) -> Request:
        try:
            self._method = Method(method.upper() if isinstance(method, str) else method)
        except ValueError as e:
            raise ConfigurationError(f"Unsupported HTTP method '{method}'", cause=e) from e
        return self

    def get(self) -> Request:
        return self.method(Method.GET)

    def post(self) -> Request:
        return self.method(Method.POST)

    def put(self) -> Request:
        return self.method(Method.PUT)

    def patch(self) -> Request:
        return self.method(Method.PATCH)

    def delete(self) -> Request:
        return self.method(Method.DELETE)

    def binary(self, enabled: bool = True) -> Request:
        """Return the response body as raw bytes, never JSON-decoded."""
        self._binary = enabled
        return self

    def send(self, body: Any) -> Request:
        """Set the body and (re)compute Content-Type and Content-Length.

        Bytes-like values are sent verbatim as application/octet-stream,
        anything else is JSON-encoded. Wrap in RawBody/JsonBody to choose
        explicitly.

        Raises:
            SerializationError: If the body cannot be JSON-encoded.
        """
        data, content_type = encode_body(coerce_body(body))
        self._body = data
        self.set("Content-Type", content_type)
        self.set("Content-Length", str(len(data)))
        return self

    def set(self, name: str, value: Any) -> Request:
        """Set a header. Header names are case-insensitive; last write wins."""
        for existing in [key for key in self._headers if key.lower() == name.lower()]:
            del self._headers[existing]
        self._headers[name] = str(value)
        return self

    def query(self, name: str, value: Any) -> Request:
        """Append a query parameter value. Repeated names accumulate in order."""
        self._query.setdefault(name, []).append(_query_text(value))
        return self

    def auth(self, username: str, password: str) -> Request:
        credentials = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        return self.set("Authorization", f"Basic {credentials}")

    def timeout(self, timeout_ms: int) -> Request:
        """Timeout in milliseconds covering the whole request. 0 disables it."""
        self._timeout_ms = timeout_ms
        return self

    def transport(self, transport: Transport) -> Request:
        """Send through a specific transport instead of a fresh HttpxTransport."""
        self._transport = transport
        return self

    def copy(self) -> Request:
        """An unexecuted builder with the same configuration."""
        clone = Request()
        clone._method = self._method
        clone._target = self._target
        clone._headers = dict(self._headers)
        clone._query = {name: list(values) for name, values in self._query.items()}
        clone._body = self._body
        clone._binary = self._binary
        clone._timeout_ms = self._timeout_ms
        clone._transport = self._transport
        return clone

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def descriptor(self) -> RequestDescriptor:
        """Snapshot the configuration.

        Raises:
            ConfigurationError: If method or URL is missing, or a setting is invalid.
        """
        if self._method is None:
            raise ConfigurationError("Request method is not set")
        if self._target is None:
            raise ConfigurationError("Request URL is not set")

        try:
            return RequestDescriptor(
                method=self._method,
                target=self._target,
                headers=dict(self._headers),
                query={name: list(values) for name, values in self._query.items()},
                body=self._body,
                binary=self._binary,
                timeout_ms=self._timeout_ms,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid request configuration: {e}", cause=e) from e

    @property
    def execution(self) -> Execution | None:
        return self._execution

    def _execute(self) -> Outcome:
        if self._execution is None:
            self._execution = Execution(self.descriptor(), self._transport or HttpxTransport())
        return self._execution.start()

    def __await__(self) -> Generator[Any, None, Any]:
        return self._execute().__await__()

    async def then(
        self,
        on_fulfilled: Callable[[Any], Any] | None = None,
        on_rejected: Callable[[BaseException], Any] | None = None,
    ) -> Any:
        return await self._execute().then(on_fulfilled, on_rejected)

    async def catch(self, on_rejected: Callable[[BaseException], Any]) -> Any:
        return await self._execute().catch(on_rejected)

    async def reflect(self) -> Reflection:
        """Await the response, returning failures as a rejected Reflection.

        Configuration errors are still raised.
        """
        return await self._execute().reflect()

    def __str__(self) -> str:
        method = self._method.value if self._method is not None else "<no method>"
        url = self._target.display_url if self._target is not None else "<no url>"
        return f"{method} {url}"

    def __repr__(self) -> str:
        return f"<Request {self}>"


# =============================================================================
# Shortcuts
# =============================================================================


def combine_url(base_url: str, path: str) -> str:
    """Join base and path with exactly one slash. Empty parts are left alone."""
    base_url = base_url or ""
    path = path or ""
    if base_url and not base_url.endswith("/"):
        base_url += "/"
    if path.startswith("/"):
        path = path[1:]
    return base_url + path


def request(method: Method | str, url: str) -> Request:
    return Request().method(method).url(url)


def get(url: str) -> Request:
    return Request().get().url(url)


def post(url: str) -> Request:
    return Request().post().url(url)


def put(url: str) -> Request:
    return Request().put().url(url)


def patch(url: str) -> Request:
    return Request().patch().url(url)


def delete(url: str) -> Request:
    return Request().delete().url(url)


class Endpoint:
    """Creates requests relative to a base URL, with shared defaults.

    Usage:
        api = Endpoint("https://api.example.com", headers={"X-Api-Key": key})
        response = await api.get("/items")
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        timeout_ms: int | None = None,
        binary: bool = False,
        transport: Transport | None = None,
    ) -> None:
        self.base_url = base_url
        self._headers = dict(headers or {})
        self._auth = auth
        self._timeout_ms = timeout_ms
        self._binary = binary
        self._transport = transport

    @classmethod
    def from_profile(cls, profile: ClientProfile) -> Endpoint:
        """Build an endpoint from a configuration profile.

        Raises:
            ConfigurationError: If the profile's TLS settings are invalid.
        """
        return cls(
            profile.base_url,
            headers=profile.headers,
            auth=(profile.auth.username, profile.auth.password) if profile.auth else None,
            timeout_ms=profile.timeout_ms,
            binary=profile.binary,
            transport=None if profile.tls.is_default else HttpxTransport.from_tls(profile.tls),
        )

    def request(self, method: Method | str, path: str = "") -> Request:
        req = Request().method(method).url(combine_url(self.base_url, path))
        for name, value in self._headers.items():
            req.set(name, value)
        if self._auth is not None:
            req.auth(*self._auth)
        if self._timeout_ms is not None:
            req.timeout(self._timeout_ms)
        if self._binary:
            req.binary()
        if self._transport is not None:
            req.transport(self._transport)
        return req

    def get(self, path: str = "") -> Request:
        return self.request(Method.GET, path)

    def post(self, path: str = "") -> Request:
        return self.request(Method.POST, path)

    def put(self, path: str = "") -> Request:
        return self.request(Method.PUT, path)

    def patch(self, path: str = "") -> Request:
        return self.request(Method.PATCH, path)

    def delete(self, path: str = "") -> Request:
        return self.request(Method.DELETE, path)


def for_url(base_url: str) -> Endpoint:
    return Endpoint(base_url)
