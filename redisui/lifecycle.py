"""Single-shot connect outcome for one connection attempt."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from .connections import ConnectionHandle, TransportError, TransportEvent, TransportEventKind

LOG = logging.getLogger(__name__)


class AttemptState(str, Enum):
    CONNECTING = "connecting"
    FAILED = "failed"
    READY = "ready"


@dataclass(frozen=True, slots=True)
class ConnectionOutcome:
    """Terminal result of a connection attempt."""

    state: AttemptState
    handle: ConnectionHandle
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.state is AttemptState.READY


class ConnectionLifecycleCoordinator:
    """Drives a handle from ``CONNECTING`` to exactly one of ``FAILED``/``READY``.

    The outcome is delivered once through a future. Events arriving after
    the terminal state never produce a second report: a late error, or a
    late ready for an attempt whose caller gave up, disconnects the handle
    instead of leaking it. The handle is disconnected at most once.
    """

    def __init__(self, handle: ConnectionHandle) -> None:
        self._handle = handle
        self._state = AttemptState.CONNECTING
        self._abandoned = False
        self._future: asyncio.Future[ConnectionOutcome] | None = None
        self._disconnect_task: asyncio.Future[None] | None = None
        self._unsubscribe = handle.subscribe(self._handle_event)

    @property
    def state(self) -> AttemptState:
        return self._state

    @property
    def handle(self) -> ConnectionHandle:
        return self._handle

    @property
    def disconnected(self) -> bool:
        return self._disconnect_task is not None

    async def connect(self, timeout: float | None = None) -> ConnectionOutcome:
        """Open the handle and wait for its single outcome.

        A timeout counts as a transport failure. If the awaiting task is
        cancelled the attempt is abandoned.
        """

        future = self._ensure_future()
        self._handle.open()
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout)
        except TimeoutError:
            self.on_failed(TransportError("timed out waiting for the connection to become ready"))
            return future.result()
        except asyncio.CancelledError:
            self.abandon()
            raise

    def on_failed(self, cause: BaseException) -> None:
        """Record a transport error; report it only if nothing was reported yet."""

        if self._state is AttemptState.CONNECTING:
            self._state = AttemptState.FAILED
            if not self._abandoned:
                self._deliver(ConnectionOutcome(AttemptState.FAILED, self._handle, cause))
        else:
            LOG.warning(
                "Transport error after the connection attempt completed: %s",
                cause,
                extra={"connection_id": self._handle.descriptor.connection_id},
            )
        self._schedule_disconnect()

    def on_ready(self) -> None:
        if self._state is not AttemptState.CONNECTING:
            return
        self._state = AttemptState.READY
        if self._abandoned:
            LOG.info(
                "Connection became ready after its caller gave up; disconnecting",
                extra={"connection_id": self._handle.descriptor.connection_id},
            )
            self._schedule_disconnect()
            return
        self._deliver(ConnectionOutcome(AttemptState.READY, self._handle))

    def abandon(self) -> None:
        """Caller will not consume the outcome; a ready handle becomes an orphan."""

        self._abandoned = True
        if self._state is AttemptState.READY:
            self._schedule_disconnect()

    async def disconnect(self) -> None:
        """Disconnect the handle (idempotent) and stop listening for events."""

        await self._schedule_disconnect()

    def _handle_event(self, event: TransportEvent) -> None:
        if event.kind is TransportEventKind.READY:
            self.on_ready()
        else:
            self.on_failed(event.error or TransportError("unknown transport error"))

    def _ensure_future(self) -> asyncio.Future[ConnectionOutcome]:
        if self._future is None:
            self._future = asyncio.get_running_loop().create_future()
        return self._future

    def _deliver(self, outcome: ConnectionOutcome) -> None:
        future = self._ensure_future()
        if not future.done():
            future.set_result(outcome)

    def _schedule_disconnect(self) -> asyncio.Future[None]:
        if self._disconnect_task is None:
            self._unsubscribe()
            self._disconnect_task = asyncio.ensure_future(self._disconnect_handle())
        return self._disconnect_task

    async def _disconnect_handle(self) -> None:
        try:
            await self._handle.disconnect()
        except Exception:
            LOG.warning(
                "Failed to disconnect connection handle",
                exc_info=True,
                extra={"connection_id": self._handle.descriptor.connection_id},
            )


__all__ = ["AttemptState", "ConnectionLifecycleCoordinator", "ConnectionOutcome"]
