"""Data models for yaquest.

All models use Pydantic v2. RequestDescriptor and Response are frozen: a
descriptor is the snapshot an execution runs from, a response is built once
after the body stream has been drained.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator

from yaquest.errors import ConfigurationError


# =============================================================================
# Request Models
# =============================================================================


class Method(str, Enum):
    """Supported HTTP methods."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class Target(BaseModel):
    """Parsed request URL. Parsed once, never re-derived mid-flight.

    The query string that came with the URL is kept apart from the path so
    that the display form never contains it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    scheme: str = Field(description="http or https")
    host: str = Field(description="Host name or address, no port")
    port: int | None = Field(default=None, description="Explicit port, None for the scheme default")
    path: str = Field(default="/", description="Percent-encoded path")
    query: str = Field(default="", description="Query string carried in the URL, without '?'")

    @classmethod
    def parse(cls, url: str) -> Target:
        """Parse an absolute http(s) URL.

        Raises:
            ConfigurationError: If the URL is malformed or not http(s).
        """
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            raise ConfigurationError(f"Invalid URL '{url}': {e}", cause=e) from e

        if parsed.scheme not in ("http", "https"):
            raise ConfigurationError(
                f"Invalid URL '{url}': scheme must be http or https, got '{parsed.scheme}'"
            )
        if not parsed.host:
            raise ConfigurationError(f"Invalid URL '{url}': missing host")

        raw_path = parsed.raw_path.decode("ascii")
        path, _, query = raw_path.partition("?")
        return cls(
            scheme=parsed.scheme,
            host=parsed.host,
            port=parsed.port,
            path=path or "/",
            query=query,
        )

    @property
    def _host_literal(self) -> str:
        # IPv6 literals need brackets inside a URL
        return f"[{self.host}]" if ":" in self.host else self.host

    @property
    def display_url(self) -> str:
        """scheme://host/path, without port or query string."""
        return f"{self.scheme}://{self._host_literal}{self.path}"

    @property
    def origin(self) -> str:
        """scheme://host[:port], the address actually connected to."""
        if self.port is None:
            return f"{self.scheme}://{self._host_literal}"
        return f"{self.scheme}://{self._host_literal}:{self.port}"


class RequestDescriptor(BaseModel):
    """Immutable snapshot of a fully configured request.

    Query values are lists so repeated parameters keep their order. Header
    names are stored as given; the builder enforces case-insensitive last
    write wins before the snapshot is taken.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    method: Method = Field(description="HTTP method")
    target: Target = Field(description="Parsed URL")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    query: dict[str, list[str]] = Field(
        default_factory=dict, description="Query parameters (lists for repeated params)"
    )
    body: bytes | None = Field(default=None, description="Encoded request body")
    binary: bool = Field(default=False, description="Return response body as raw bytes")
    timeout_ms: int = Field(default=30000, ge=0, description="Timeout in ms, 0 disables it")

    @field_validator("query")
    @classmethod
    def check_query_values(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        for name, values in value.items():
            if not values:
                raise ValueError(f"query parameter '{name}' has no values")
        return value

    @property
    def url(self) -> str:
        return self.target.display_url

    def query_params(self) -> dict[str, str | list[str]]:
        """Query mapping as common encoders see it.

        A name with exactly one value maps to a scalar, two or more to a list.
        """
        return {
            name: values[0] if len(values) == 1 else list(values)
            for name, values in self.query.items()
        }

    def query_string(self) -> str:
        """The full query string: URL query first, then builder params in order."""
        pairs = [(name, value) for name, values in self.query.items() for value in values]
        encoded = str(httpx.QueryParams(pairs)) if pairs else ""
        return "&".join(part for part in (self.target.query, encoded) if part)

    def full_url(self) -> str:
        """Absolute URL including port and query string, as sent on the wire."""
        url = f"{self.target.origin}{self.target.path}"
        query = self.query_string()
        return f"{url}?{query}" if query else url

    def __str__(self) -> str:
        return f"{self.method.value} {self.url}"


# =============================================================================
# Response Models
# =============================================================================


class Response(BaseModel):
    """One fully received HTTP response.

    Header keys are lowercase. Header values are arrays for repeated headers.
    body holds the parsed JSON value when decoding succeeded, otherwise the
    raw (already decompressed) bytes, which are also kept in content.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    status: int = Field(description="HTTP status code, 500 if the transport reported none")
    headers: dict[str, list[str]] = Field(
        default_factory=dict, description="Response headers (lowercase keys, array values)"
    )
    body: Any = Field(default=None, description="Parsed JSON value or raw bytes")
    content: bytes = Field(default=b"", description="Decompressed body bytes")
    is_binary: bool = Field(default=False, description="Mirrors the request's binary mode")

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def reason(self) -> str:
        return reason_phrase(self.status)

    def header(self, name: str) -> str | None:
        """First value of a header, case-insensitive."""
        values = self.headers.get(name.lower())
        return values[0] if values else None


def reason_phrase(status: int) -> str:
    """Standard reason phrase for a status code."""
    return httpx.codes.get_reason_phrase(status) or f"Unknown Status {status}"


# =============================================================================
# Configuration Models
# =============================================================================


class TlsConfig(BaseModel):
    """TLS settings for the default transport."""

    model_config = ConfigDict(extra="forbid")

    verify_ssl: bool = Field(default=True, description="Verify the server certificate")
    ca_bundle: str | None = Field(default=None, description="Path to a CA bundle file")
    cert: str | None = Field(default=None, description="Client certificate (mTLS)")
    key: str | None = Field(default=None, description="Client private key (mTLS)")
    key_password: str | None = Field(default=None, description="Password for the client key")
    ciphers: str | None = Field(default=None, description="OpenSSL cipher string")

    @property
    def is_default(self) -> bool:
        return self == TlsConfig()


class AuthConfig(BaseModel):
    """Basic auth credentials."""

    model_config = ConfigDict(extra="forbid")

    username: str = Field(description="User name")
    password: str = Field(description="Password (supports ${ENV_VAR} substitution)")


class ClientProfile(BaseModel):
    """Defaults applied to every request created from an endpoint."""

    model_config = ConfigDict(extra="forbid")

    base_url: str = Field(description="Base URL requests are joined onto")
    timeout_ms: int = Field(default=30000, ge=0, description="Timeout in ms, 0 disables it")
    binary: bool = Field(default=False, description="Return response bodies as raw bytes")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers to include (supports ${ENV_VAR} substitution)",
    )
    auth: AuthConfig | None = Field(default=None, description="Basic auth credentials")
    tls: TlsConfig = Field(default_factory=TlsConfig, description="TLS settings")


class ClientConfig(BaseModel):
    """Top-level client configuration file structure."""

    model_config = ConfigDict(extra="forbid")

    profiles: dict[str, ClientProfile] = Field(description="Profile name -> settings mapping")
