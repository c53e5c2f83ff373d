"""Execution engine - drives one request through to a single settlement.

Several sources can end an execution: the response stream finishing, a
transport error, a corrupt gzip stream, and the timeout timer. Whichever
handler runs first settles the outcome; every handler checks the settled
state first, so later arrivals are no-ops. The timeout timer is disarmed on
every settlement path and the transport handle is released when the drive
task finishes, however it finishes.

State machine:
    IDLE -> CONNECTING -> SENDING -> AWAITING_RESPONSE -> STREAMING -> SETTLED
    (any non-SETTLED state) -> SETTLED on timeout or transport error
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from yaquest.body import decode_body
from yaquest.decompress import decode_stream
from yaquest.errors import (
    HttpStatusError,
    RequestTimeoutError,
    ResponseProcessingError,
    TransportError,
    YaquestError,
)
from yaquest.models import RequestDescriptor, Response, reason_phrase
from yaquest.outcome import Outcome
from yaquest.transport import Transport, TransportHandle, TransportResponse

logger = logging.getLogger(__name__)

# Status used when the transport reports none
FALLBACK_STATUS = 500


class ExecutionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    STREAMING = "streaming"
    SETTLED = "settled"


def _describe(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


def _collect_headers(head: TransportResponse) -> dict[str, list[str]]:
    headers: dict[str, list[str]] = {}
    for key, value in head.headers:
        headers.setdefault(key.lower(), []).append(value)
    return headers


class Execution:
    """One run of a RequestDescriptor over a transport.

    Usage:
        execution = Execution(descriptor, transport)
        response = await execution.start()

    start() is idempotent: the first call dispatches, later calls return the
    same outcome.
    """

    def __init__(self, descriptor: RequestDescriptor, transport: Transport) -> None:
        self._descriptor = descriptor
        self._transport = transport
        self._state = ExecutionState.IDLE
        self._outcome: Outcome | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._handle: TransportHandle | None = None
        self._head: TransportResponse | None = None

    @property
    def descriptor(self) -> RequestDescriptor:
        return self._descriptor

    @property
    def state(self) -> ExecutionState:
        return self._state

    @property
    def outcome(self) -> Outcome | None:
        return self._outcome

    @property
    def settled(self) -> bool:
        return self._state is ExecutionState.SETTLED

    def start(self) -> Outcome:
        """Dispatch the request (first call only) and return its outcome."""
        if self._outcome is not None:
            return self._outcome

        loop = asyncio.get_running_loop()
        self._outcome = Outcome(loop)
        self._transition(ExecutionState.CONNECTING)
        logger.debug("Dispatching %s", self._descriptor)
        self._arm_timeout(loop)
        self._task = loop.create_task(self._drive(), name=f"yaquest {self._descriptor}")
        return self._outcome

    # -------------------------------------------------------------------------
    # Timer
    # -------------------------------------------------------------------------

    def _arm_timeout(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._descriptor.timeout_ms:
            self._timer = loop.call_later(self._descriptor.timeout_ms / 1000, self._on_timeout)

    def _disarm_timeout(self) -> None:
        """Cancel the timer. No-op if never armed or already fired."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def _on_timeout(self) -> None:
        self._disarm_timeout()
        if self.settled:
            logger.debug("Late timeout for %s ignored", self._descriptor)
            return
        if self._task is not None:
            # Aborts the transport operation; the drive task releases the handle
            self._task.cancel()
        self._fail(
            RequestTimeoutError(
                f"request {self._descriptor} timed out after {self._descriptor.timeout_ms} ms"
            )
        )

    def _on_transport_error(self, exc: BaseException) -> None:
        if self.settled:
            logger.debug("Late transport error for %s ignored: %s", self._descriptor, exc)
            return
        if isinstance(exc, TransportError):
            error = exc
        else:
            error = TransportError(f"request {self._descriptor} failed: {_describe(exc)}", cause=exc)
        self._fail(error)

    def _on_stream_end(self, content: bytes) -> None:
        if self.settled:
            logger.debug("Late stream end for %s ignored", self._descriptor)
            return
        try:
            response = self._assemble_response(content)
        except Exception as exc:
            self._fail(
                ResponseProcessingError(
                    f"request {self._descriptor} could not be processed: {_describe(exc)}",
                    cause=exc,
                )
            )
            return

        if response.ok:
            self._succeed(response)
        else:
            self._fail(HttpStatusError(reason_phrase(response.status)), response)

    # -------------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------------

    def _succeed(self, response: Response) -> None:
        self._transition(ExecutionState.SETTLED)
        self._disarm_timeout()
        self._outcome.resolve(response)
        logger.debug("%s settled with status %d", self._descriptor, response.status)

    def _fail(self, error: YaquestError, response: Response | None = None) -> None:
        self._transition(ExecutionState.SETTLED)
        self._disarm_timeout()
        self._outcome.reject(error)
        # Diagnostics only, attached after the decision was made
        error.request = self._descriptor
        error.response = response if response is not None else self._partial_response()
        logger.debug("%s failed: %s", self._descriptor, error)

    # -------------------------------------------------------------------------
    # Drive
    # -------------------------------------------------------------------------

    def _transition(self, state: ExecutionState) -> None:
        logger.debug("%s: %s -> %s", self._descriptor, self._state.value, state.value)
        self._state = state

    def _advance(self, state: ExecutionState) -> bool:
        """Move to the next state unless something already settled the run."""
        if self.settled:
            return False
        self._transition(state)
        return True

    async def _drive(self) -> None:
        try:
            content = await self._exchange()
            if content is not None:
                self._on_stream_end(content)
        except asyncio.CancelledError:
            # Cancelled by something other than the timer (e.g. loop shutdown)
            if not self.settled:
                self._on_transport_error(TransportError(f"request {self._descriptor} was aborted"))
            raise
        except Exception as exc:
            self._on_transport_error(exc)
        finally:
            if self._handle is not None:
                await self._handle.abort()

    async def _exchange(self) -> bytes | None:
        """Connect, send and drain the response. None if settled mid-flight."""
        descriptor = self._descriptor

        self._handle = await self._transport.open(descriptor)
        if not self._advance(ExecutionState.SENDING):
            return None
        if descriptor.body:
            await self._handle.write(descriptor.body)

        if not self._advance(ExecutionState.AWAITING_RESPONSE):
            return None
        head = await self._handle.end()

        if not self._advance(ExecutionState.STREAMING):
            return None
        self._head = head

        chunks: list[bytes] = []
        async for chunk in decode_stream(head.aiter_raw(), head.headers):
            if self.settled:
                return None
            chunks.append(chunk)
        return b"".join(chunks)

    def _assemble_response(self, content: bytes) -> Response:
        return Response(
            status=self._head.status_code or FALLBACK_STATUS,
            headers=_collect_headers(self._head),
            body=decode_body(content, self._descriptor.binary),
            content=content,
            is_binary=self._descriptor.binary,
        )

    def _partial_response(self) -> Response | None:
        """Status and headers received before a failure, if any."""
        if self._head is None:
            return None
        return Response(
            status=self._head.status_code or FALLBACK_STATUS,
            headers=_collect_headers(self._head),
            is_binary=self._descriptor.binary,
        )
