"""Bridge callback-registration APIs into cold asyncio streams.

A :class:`CallbackFlow` describes how to register and unregister a callback
handle; it does nothing until iterated. Every subscription owns its own
handle and its own bounded :class:`CallbackChannel`, registers on start and
unregisters exactly once when it closes, whatever the exit path.

Usage::

    async with flow.subscribe() as events:
        async for event in events:
            ...

or, iterating the flow itself::

    async with contextlib.aclosing(aiter(flow)) as events:
        async for event in events:
            ...

Both forms unregister before the ``async with`` block exits. A bare
``async for`` that is abandoned with ``break`` is closed later by the event
loop's async-generator finaliser.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Generic, Optional, TypeVar, Union

from measurebridge.errors import RegistrationError, StreamOverflowError, SubscriptionClosedError
from measurebridge.telemetry.logging import get_logger
from measurebridge.telemetry.metrics import mark_registration, mark_unregistration, observe_send

T = TypeVar("T")

DEFAULT_CAPACITY = 64

RegistrationCall = Callable[[Any], Union[None, Awaitable[None]]]


class SubscriptionState(str, Enum):
    UNSUBSCRIBED = "unsubscribed"
    REGISTERING = "registering"
    ACTIVE = "active"
    UNREGISTERING = "unregistering"
    CLOSED = "closed"


class _EndOfStream:
    """Terminal marker for a channel closed without an error."""


_END = _EndOfStream()


async def _maybe_await(result: Union[None, Awaitable[None]]) -> None:
    if inspect.isawaitable(result):
        await result


class CallbackChannel(Generic[T]):
    """Bounded hand-off between client callbacks and one asyncio consumer.

    ``send`` may be called from any thread. Senders are serialised; a sender on
    a foreign thread blocks while the buffer is full, a sender on the event loop
    thread raises :class:`StreamOverflowError` instead. Closing the channel wakes
    blocked senders, which then raise :class:`SubscriptionClosedError`.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, capacity: int, *, name: str) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._loop = loop
        self._loop_thread = threading.get_ident()
        self._capacity = capacity
        self._name = name
        self._send_lock = threading.Lock()
        self._cond = threading.Condition()
        self._in_flight = 0
        self._closed = False
        # loop thread only
        self._buffer: Deque[T] = deque()
        self._terminal: Optional[Union[_EndOfStream, BaseException]] = None
        self._getter: Optional[asyncio.Future[None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, item: T) -> None:
        """Hand ``item`` to the consumer, blocking a foreign thread while the buffer is full."""

        if threading.get_ident() == self._loop_thread:
            # never wait on _send_lock here: its holder may be waiting for this loop to drain
            with self._cond:
                if self._closed:
                    raise SubscriptionClosedError(f"{self._name} subscription closed")
                if self._in_flight >= self._capacity:
                    raise StreamOverflowError(f"{self._name} buffer full ({self._capacity})")
                self._in_flight += 1
                self._deliver(item)
            observe_send(self._name, 0.0)
            return

        with self._send_lock:
            started = time.monotonic()
            with self._cond:
                while not self._closed and self._in_flight >= self._capacity:
                    self._cond.wait()
                if self._closed:
                    raise SubscriptionClosedError(f"{self._name} subscription closed")
                self._in_flight += 1
                self._loop.call_soon_threadsafe(self._deliver, item)
            observe_send(self._name, time.monotonic() - started)

    def close(self, error: Optional[BaseException] = None) -> None:
        """End the stream; buffered items are still delivered before the end (or ``error``)."""

        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
            terminal = error if error is not None else _END
            if threading.get_ident() == self._loop_thread:
                self._finish(terminal)
            elif not self._loop.is_closed():
                self._loop.call_soon_threadsafe(self._finish, terminal)

    async def receive(self) -> T:
        """Wait for the next item; raises ``StopAsyncIteration`` or the close error at the end."""

        while not self._buffer:
            if self._terminal is _END:
                raise StopAsyncIteration
            if isinstance(self._terminal, BaseException):
                raise self._terminal
            self._getter = self._loop.create_future()
            try:
                await self._getter
            finally:
                self._getter = None
        item = self._buffer.popleft()
        with self._cond:
            self._in_flight -= 1
            self._cond.notify()
        return item

    def _deliver(self, item: T) -> None:
        self._buffer.append(item)
        self._wake()

    def _finish(self, terminal: Union[_EndOfStream, BaseException]) -> None:
        if self._terminal is None:
            self._terminal = terminal
        self._wake()

    def _wake(self) -> None:
        if self._getter is not None and not self._getter.done():
            self._getter.set_result(None)


class CallbackSubscription(Generic[T]):
    """One registration of a :class:`CallbackFlow`; an async iterator and context manager."""

    def __init__(self, flow: "CallbackFlow[T]") -> None:
        self._flow = flow
        self._state = SubscriptionState.UNSUBSCRIBED
        self._channel: Optional[CallbackChannel[T]] = None
        self._handle: Any = None
        self._close_requested = False
        self._closed = asyncio.Event()
        self._logger = get_logger("callback_flow", flow=flow.name)

    @property
    def state(self) -> SubscriptionState:
        return self._state

    async def __aenter__(self) -> "CallbackSubscription[T]":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        try:
            while True:
                try:
                    item = await self.__anext__()
                except StopAsyncIteration:
                    return
                yield item
        finally:
            await self.aclose()

    async def __anext__(self) -> T:
        await self.start()
        if self._state is not SubscriptionState.ACTIVE or self._channel is None:
            raise StopAsyncIteration
        try:
            return await self._channel.receive()
        except StopAsyncIteration:
            await self.aclose()
            raise
        except BaseException:
            # upstream error or consumer cancellation
            await self.aclose()
            raise

    async def start(self) -> None:
        """Register the callback handle; a no-op once the subscription has started."""

        if self._state is not SubscriptionState.UNSUBSCRIBED:
            return
        self._state = SubscriptionState.REGISTERING
        channel: CallbackChannel[T] = CallbackChannel(
            asyncio.get_running_loop(), self._flow.capacity, name=self._flow.name
        )
        handle = self._flow.make_callback(channel)
        self._logger.info("Registering callback")
        try:
            await _maybe_await(self._flow.register(handle))
        except asyncio.CancelledError:
            # the client may have completed the registration; undo it
            self._channel, self._handle = channel, handle
            self._state = SubscriptionState.ACTIVE
            mark_registration(self._flow.name, "ok")
            await self.aclose()
            raise
        except Exception as exc:
            self._state = SubscriptionState.CLOSED
            channel.close()
            self._closed.set()
            mark_registration(self._flow.name, "error")
            self._logger.warning(f"Callback registration failed: {exc!r}")
            raise RegistrationError(f"registering {self._flow.name} callback failed: {exc}") from exc
        self._channel, self._handle = channel, handle
        self._state = SubscriptionState.ACTIVE
        mark_registration(self._flow.name, "ok")
        self._logger.info("Callback registered")
        if self._close_requested:
            await self.aclose()

    async def aclose(self) -> None:
        """Unregister the handle exactly once; returns after unregistration has finished."""

        state = self._state
        if state is SubscriptionState.UNSUBSCRIBED:
            self._state = SubscriptionState.CLOSED
            self._closed.set()
            return
        if state is SubscriptionState.REGISTERING:
            self._close_requested = True
            await self._closed.wait()
            return
        if state is not SubscriptionState.ACTIVE:
            await self._closed.wait()
            return
        self._state = SubscriptionState.UNREGISTERING
        await self._teardown()

    async def _teardown(self) -> None:
        if self._channel is not None:
            self._channel.close()
        outcome = "error"
        self._logger.info("Unregistering callback")
        try:
            await _maybe_await(self._flow.unregister(self._handle))
            outcome = "ok"
        except Exception:
            self._logger.exception("Callback unregistration failed")
            raise
        finally:
            mark_unregistration(self._flow.name, outcome)
            self._handle = None
            self._state = SubscriptionState.CLOSED
            self._closed.set()
        self._logger.info("Callback unregistered")


class CallbackFlow(Generic[T]):
    """Cold stream over a callback-registration API.

    ``make_callback(channel)`` builds the handle handed to ``register`` and
    ``unregister``; the handle pushes events with ``channel.send``. Constructing
    the flow has no side effects.
    """

    def __init__(
        self,
        *,
        register: RegistrationCall,
        unregister: RegistrationCall,
        make_callback: Callable[[CallbackChannel[T]], Any],
        capacity: int = DEFAULT_CAPACITY,
        name: str = "callback_flow",
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.register = register
        self.unregister = unregister
        self.make_callback = make_callback
        self.capacity = capacity
        self.name = name

    def subscribe(self) -> CallbackSubscription[T]:
        """Return a new, not yet registered subscription."""

        return CallbackSubscription(self)

    def __aiter__(self) -> AsyncIterator[T]:
        return aiter(self.subscribe())


__all__ = [
    "DEFAULT_CAPACITY",
    "CallbackChannel",
    "CallbackFlow",
    "CallbackSubscription",
    "SubscriptionState",
]
