"""Outcome - single-assignment result cell observed through continuations.

Exactly one of resolve()/reject() takes effect; later writes are no-ops and
report False. Any number of observers may await the same outcome.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generator

logger = logging.getLogger(__name__)


class OutcomeState(str, Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Reflection:
    """Tagged inspection value returned by Outcome.reflect()."""

    state: OutcomeState
    value: Any = None
    error: BaseException | None = None

    @property
    def is_fulfilled(self) -> bool:
        return self.state is OutcomeState.FULFILLED

    @property
    def is_rejected(self) -> bool:
        return self.state is OutcomeState.REJECTED


async def _call(callback: Callable[[Any], Any], arg: Any) -> Any:
    result = callback(arg)
    if inspect.isawaitable(result):
        result = await result
    return result


class Outcome:
    """Deferred result settled exactly once.

    Must be created while an event loop is running (or with an explicit loop).
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future[Any] = self._loop.create_future()
        # Rejections are delivered to awaiters; an outcome nobody awaits must
        # not trigger asyncio's "exception was never retrieved" warning.
        self._future.add_done_callback(_mark_retrieved)

    @property
    def state(self) -> OutcomeState:
        if not self._future.done():
            return OutcomeState.PENDING
        if self._future.exception() is not None:
            return OutcomeState.REJECTED
        return OutcomeState.FULFILLED

    @property
    def settled(self) -> bool:
        return self._future.done()

    def resolve(self, value: Any) -> bool:
        """Settle as success. Returns False if already settled."""
        if self._future.done():
            logger.debug("Ignoring resolve on settled outcome")
            return False
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        """Settle as failure. Returns False if already settled."""
        if self._future.done():
            logger.debug("Ignoring reject on settled outcome: %s", error)
            return False
        self._future.set_exception(error)
        return True

    def result(self) -> Any:
        """Settled value, raising the error for a rejected outcome.

        Raises:
            asyncio.InvalidStateError: If the outcome is still pending.
        """
        return self._future.result()

    def __await__(self) -> Generator[Any, None, Any]:
        # Shielded so that cancelling one observer never cancels the cell
        return asyncio.shield(self._future).__await__()

    async def then(
        self,
        on_fulfilled: Callable[[Any], Any] | None = None,
        on_rejected: Callable[[BaseException], Any] | None = None,
    ) -> Any:
        """Await the outcome and pass it through the matching continuation.

        Continuations may be plain functions or coroutine functions. With no
        matching continuation the value is returned or the error re-raised.
        """
        try:
            value = await self
        except Exception as error:
            if on_rejected is None:
                raise
            return await _call(on_rejected, error)
        if on_fulfilled is None:
            return value
        return await _call(on_fulfilled, value)

    async def catch(self, on_rejected: Callable[[BaseException], Any]) -> Any:
        return await self.then(None, on_rejected)

    async def reflect(self) -> Reflection:
        """Await without raising; failures become a rejected Reflection."""
        try:
            value = await self
        except Exception as error:
            return Reflection(OutcomeState.REJECTED, error=error)
        return Reflection(OutcomeState.FULFILLED, value=value)


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()
