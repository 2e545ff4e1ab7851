"""Shared fakes for connection handle tests."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from redisui.connections import TransportError, TransportEvent
from redisui.models import TopologyDescriptor

DEFAULT_RESPONSES: dict[tuple[str, ...], Any] = {
    ("INFO", "keyspace"): "# Keyspace\r\n",
    ("CONFIG", "GET", "databases"): ["databases", "16"],
}


class FakeHandle:
    """Connection handle whose lifecycle is scripted by the test.

    ``outcome`` is ``"ready"``, ``"fail"`` or ``"hang"``; ``late`` is an extra
    event emitted right after the first one.
    """

    def __init__(
        self,
        descriptor: TopologyDescriptor,
        *,
        outcome: str = "ready",
        error: BaseException | None = None,
        late: TransportEvent | None = None,
        responses: dict[tuple[str, ...], Any] | None = None,
        call_errors: dict[tuple[str, ...], BaseException] | None = None,
        disconnect_error: BaseException | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.outcome = outcome
        self.error = error or TransportError("connection refused")
        self.late = late
        self.responses = {**DEFAULT_RESPONSES, **(responses or {})}
        self.call_errors = dict(call_errors or {})
        self.disconnect_error = disconnect_error
        self.calls: list[tuple[str, ...]] = []
        self.opened = 0
        self.disconnects = 0
        self._listeners: set[Callable[[TransportEvent], None]] = set()

    def open(self) -> None:
        self.opened += 1
        loop = asyncio.get_running_loop()
        if self.outcome == "ready":
            loop.call_soon(self.emit, TransportEvent.ready())
        elif self.outcome == "fail":
            loop.call_soon(self.emit, TransportEvent.failed(self.error))
        if self.late is not None:
            loop.call_soon(self.emit, self.late)

    def emit(self, event: TransportEvent) -> None:
        for listener in tuple(self._listeners):
            listener(event)

    def subscribe(self, listener: Callable[[TransportEvent], None]) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def call(self, *args: str) -> Any:
        self.calls.append(args)
        await asyncio.sleep(0)
        if args in self.call_errors:
            raise self.call_errors[args]
        return self.responses[args]

    async def disconnect(self) -> None:
        self.disconnects += 1
        if self.disconnect_error is not None:
            raise self.disconnect_error


class FakeHandleFactory:
    """Handle factory recording every handle it creates."""

    def __init__(self) -> None:
        self.handles: list[FakeHandle] = []
        self.options: dict[str, Any] = {}

    def configure(self, **options: Any) -> None:
        self.options = options

    def __call__(self, descriptor: TopologyDescriptor) -> FakeHandle:
        handle = FakeHandle(descriptor, **self.options)
        self.handles.append(handle)
        return handle

    @property
    def last(self) -> FakeHandle:
        return self.handles[-1]


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def handle_factory() -> FakeHandleFactory:
    return FakeHandleFactory()
