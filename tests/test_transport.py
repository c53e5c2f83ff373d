"""Tests for HttpxTransport client construction and handle lifecycle."""

import ssl

import httpx
import pytest

from yaquest.errors import ConfigurationError
from yaquest.models import Method, RequestDescriptor, Target, TlsConfig
from yaquest.transport import HttpxHandle, HttpxTransport
from tests.conftest import run


def _descriptor() -> RequestDescriptor:
    return RequestDescriptor(method=Method.GET, target=Target.parse("http://localhost/"))


class TestClientKwargs:
    def test_defaults(self):
        kwargs = HttpxTransport()._client_kwargs
        assert kwargs == {"timeout": None, "follow_redirects": False, "trust_env": False}

    def test_trust_env(self):
        assert HttpxTransport(trust_env=True)._client_kwargs["trust_env"] is True

    def test_verify_disabled(self):
        context = HttpxTransport(tls=TlsConfig(verify_ssl=False))._client_kwargs["verify"]
        assert isinstance(context, ssl.SSLContext)
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    def test_missing_ca_bundle(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot load CA bundle"):
            HttpxTransport(tls=TlsConfig(ca_bundle=str(tmp_path / "missing.pem")))

    def test_missing_client_cert(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot load client certificate"):
            HttpxTransport(tls=TlsConfig(cert=str(tmp_path / "missing.pem")))

    def test_invalid_ciphers(self):
        with pytest.raises(ConfigurationError, match="Invalid cipher string"):
            HttpxTransport(tls=TlsConfig(ciphers="NOT-A-CIPHER"))

    def test_client_and_tls_exclusive(self):
        with pytest.raises(ConfigurationError, match="not both"):
            HttpxTransport(client=httpx.AsyncClient(), tls=TlsConfig(verify_ssl=False))


class TestHandles:
    def test_owned_client_closed_on_abort(self):
        async def scenario():
            handle = await HttpxTransport().open(_descriptor())
            assert isinstance(handle, HttpxHandle)
            await handle.abort()
            await handle.abort()
            return handle._client

        client = run(scenario())
        assert client.is_closed

    def test_shared_client_left_open(self):
        async def scenario():
            client = httpx.AsyncClient()
            transport = HttpxTransport(client=client)
            first = await transport.open(_descriptor())
            second = await transport.open(_descriptor())
            await first.abort()
            await second.abort()
            closed = client.is_closed
            await client.aclose()
            return first, second, closed

        first, second, closed = run(scenario())
        assert first._client is second._client
        assert closed is False
