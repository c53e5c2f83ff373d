"""Pytest configuration and fixtures for yaquest tests.

This file provides:
- run: Drive an awaitable to completion on a fresh event loop
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the FastAPI mock server
- RawServer: In-process socket server replying with scripted bytes (or nothing)
- Fixtures: Shared test infrastructure (servers, control client)
"""

from __future__ import annotations

import asyncio
import socket
import socketserver
import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Generator

import httpx
import pytest

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def run(awaitable: Awaitable[Any]) -> Any:
    """Await anything (coroutine, Request, Outcome) on a fresh event loop."""

    async def _main() -> Any:
        return await awaitable

    return asyncio.run(_main())


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    WHY this exists: find_free_port() has a race window - another process can
    grab the port between when we find it and when our server binds. This class
    keeps the socket open until just before the server starts, eliminating the race.

    Usage:
        reservation = PortReservation()
        # port is held exclusively until release()
        server = MockServer(reservation)
        server.start()  # calls release() internally, then binds
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages a mock server subprocess for integration tests.

    Runs tests/integration/mock_server.py as a subprocess. With gzip=True
    every response is gzip-compressed.
    """

    def __init__(self, port: int | PortReservation, gzip: bool = False) -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.gzip = gzip
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        command = [
            sys.executable, "-m", MOCK_SERVER_MODULE,
            "--host", self.host,
            "--port", str(self.port),
        ]
        if self.gzip:
            command.append("--gzip")

        self._process = subprocess.Popen(
            command,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer(gzip={self.gzip}) failed to start on port {self.port}. "
                f"stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess with graceful shutdown.

        Uses SIGTERM first, then SIGKILL after 5s if process doesn't exit.
        Safe to call multiple times or if server was never started.
        """
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                # Process ignored SIGTERM, escalate to SIGKILL
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Process is unkillable (zombie?), nothing more we can do
            self._process = None

    # --- Control API (synchronous, outside the code under test) ---

    def respond(self, **script: Any) -> None:
        """Script the next responses, e.g. respond(status=500, json={"error": "x"})."""
        response = httpx.post(f"{self.base_url}/__control/respond", json=script, trust_env=False)
        response.raise_for_status()

    def reset(self) -> None:
        httpx.post(f"{self.base_url}/__control/reset", trust_env=False).raise_for_status()

    def last_request(self) -> dict[str, Any]:
        response = httpx.get(f"{self.base_url}/__control/last-request", trust_env=False)
        response.raise_for_status()
        return response.json()["request"]

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


class _RawHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        data = b""
        while b"\r\n\r\n" not in data:
            chunk = self.request.recv(65536)
            if not chunk:
                return
            data += chunk
        self.server.requests.append(data)
        if self.server.reply:
            self.request.sendall(self.server.reply)
        # Closing without (or mid) reply simulates a destroyed connection


class RawServer(socketserver.ThreadingTCPServer):
    """Socket server that reads one request head, writes scripted bytes, then closes.

    With reply=b"" the connection is dropped without any response.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, reply: bytes = b"") -> None:
        super().__init__(("127.0.0.1", 0), _RawHandler)
        self.reply = reply
        self.requests: list[bytes] = []
        self.port = self.server_address[1]
        self.base_url = f"http://127.0.0.1:{self.port}"
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)

    def __enter__(self) -> RawServer:
        self._thread.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()
        self.server_close()
        self._thread.join(timeout=2.0)


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def fixture_mock_servers() -> Generator[dict[str, MockServer], None, None]:
    """Start a plain and a gzip-compressing mock server.

    Session-scoped: servers start once per test session for performance.
    Yields dict with keys "plain" and "gzip".
    """
    with MockServer(PortReservation()) as plain:
        with MockServer(PortReservation(), gzip=True) as gzipped:
            yield {"plain": plain, "gzip": gzipped}


@pytest.fixture(params=["plain", "gzip"])
def mock_server(request: pytest.FixtureRequest, fixture_mock_servers: dict[str, MockServer]) -> MockServer:
    """Each test runs against both servers, starting from the default script."""
    server = fixture_mock_servers[request.param]
    server.reset()
    return server


@pytest.fixture
def plain_server(fixture_mock_servers: dict[str, MockServer]) -> MockServer:
    server = fixture_mock_servers["plain"]
    server.reset()
    return server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    This hook runs after test collection and tags tests with markers
    based on their directory location. Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.path)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
