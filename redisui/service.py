"""Login, database discovery and logout on top of the connection registry."""

from __future__ import annotations

import functools
import logging
from typing import Callable, Mapping

from .config import ConfigStore, SavedConnection
from .connections import ConnectionHandle, HandleFactory, create_redis_handle
from .descriptors import DescriptorBuilder, ValidationError
from .lifecycle import ConnectionLifecycleCoordinator
from .models import ConnectionSummary, Topology, TopologyDescriptor
from .probe import DatabaseProbe, ProbeError
from .registry import ConnectionRegistry, NotFoundError, RegistryListener

LOG = logging.getLogger(__name__)

Response = dict[str, object]

DUPLICATE_MESSAGE = "already logged in to this server and db"


class ConnectionService:
    """Request layer shared by the Textual console and any HTTP front-end.

    Takes login request bodies (field names as sent by the web form) and
    returns wire-shaped responses. Validation and transport failures become
    ``{"ok": False, "message": ...}``; persistence failures propagate.
    """

    def __init__(
        self,
        store: ConfigStore,
        *,
        registry: ConnectionRegistry | None = None,
        handle_factory: HandleFactory | None = None,
        builder: DescriptorBuilder | None = None,
        probe: DatabaseProbe | None = None,
    ) -> None:
        config = store.config
        self._store = store
        self._registry = registry or ConnectionRegistry()
        self._handle_factory = handle_factory or functools.partial(
            create_redis_handle,
            connect_timeout=config.connect_timeout,
            command_timeout=config.command_timeout,
        )
        self._builder = builder or DescriptorBuilder()
        self._probe = probe or DatabaseProbe(
            self._handle_factory,
            connect_timeout=config.connect_timeout,
            command_timeout=config.command_timeout,
        )
        self._connect_timeout = config.connect_timeout

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def store(self) -> ConfigStore:
        return self._store

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Subscribe to connection list changes; returns an unsubscribe handle."""

        listener(self._registry.list_for_display())
        return self._registry.subscribe(listener)

    def summaries(self) -> tuple[ConnectionSummary, ...]:
        return self._registry.list_for_display()

    def connections(self) -> Response:
        return {"ok": True, "connections": [summary.as_dict() for summary in self.summaries()]}

    async def login(self, fields: Mapping[str, object]) -> Response:
        """Connect and register a new connection unless the identity is already live."""

        try:
            descriptor = self._builder.build(fields)
        except ValidationError as exc:
            return {"ok": False, "message": str(exc)}

        if not self._registry.reserve(descriptor):
            return {"ok": True, "message": DUPLICATE_MESSAGE}
        try:
            error = await self._connect_and_register(descriptor)
        finally:
            self._registry.release(descriptor)
        if error is not None:
            LOG.warning("Invalid login: %s", error, extra={"connection_id": descriptor.connection_id})
            return {"ok": False, "message": f"invalid login: {error}"}

        self._remember(descriptor)
        return {"ok": True}

    async def detect_databases(self, fields: Mapping[str, object]) -> Response:
        """Probe the server described by ``fields`` without registering it."""

        try:
            descriptor = self._builder.build(fields)
            result = await self._probe.probe(descriptor)
        except (ValidationError, ProbeError) as exc:
            return {"ok": False, "message": str(exc)}
        return result.as_response()

    async def logout(self, connection_id: str) -> str:
        """Disconnect and forget a connection.

        A miss in either the registry or the saved list is logged and
        tolerated; ``NotFoundError`` is raised only when the id is unknown
        to both. ``PersistenceError`` propagates.
        """

        registered = True
        try:
            entry = self._registry.remove_by_identity(connection_id)
        except NotFoundError:
            registered = False
            LOG.warning("Logout of unregistered connection", extra={"connection_id": connection_id})
        else:
            await self._disconnect(entry.handle, connection_id)
            LOG.info("Logged out %s", entry.descriptor.label, extra={"connection_id": connection_id})

        saved = self._store.read()
        remaining = [connection for connection in saved if _saved_id(connection) != connection_id]
        if len(remaining) == len(saved):
            if not registered:
                raise NotFoundError(f"Connection '{connection_id}' is not known.")
            LOG.warning(
                "Could not remove connection from saved connections",
                extra={"connection_id": connection_id},
            )
            return "OK"
        self._store.replace(remaining)
        return "OK"

    async def restore(self) -> tuple[str, ...]:
        """Reconnect saved connections at startup; returns ids that came up."""

        restored: list[str] = []
        for saved in self._store.read():
            try:
                descriptor = saved.to_descriptor()
            except ValidationError as exc:
                LOG.warning("Skipping saved connection %r: %s", saved.label, exc)
                continue
            if not self._registry.reserve(descriptor):
                continue
            try:
                error = await self._connect_and_register(descriptor)
            finally:
                self._registry.release(descriptor)
            if error is not None:
                LOG.warning(
                    "Could not restore connection %r: %s",
                    saved.label,
                    error,
                    extra={"connection_id": descriptor.connection_id},
                )
                continue
            restored.append(descriptor.connection_id)
        return tuple(restored)

    async def shutdown(self) -> None:
        """Disconnect every registered connection."""

        for entry in self._registry.drain():
            await self._disconnect(entry.handle, entry.connection_id)

    async def _connect_and_register(self, descriptor: TopologyDescriptor) -> BaseException | None:
        _log_connecting(descriptor)
        coordinator = ConnectionLifecycleCoordinator(self._handle_factory(descriptor))
        outcome = await coordinator.connect(timeout=self._connect_timeout)
        if not outcome.ok:
            await coordinator.disconnect()
            return outcome.error
        self._registry.insert(descriptor, outcome.handle)
        LOG.info("Connected %s", descriptor.label, extra={"connection_id": descriptor.connection_id})
        return None

    def _remember(self, descriptor: TopologyDescriptor) -> None:
        # the saved list and the live registry may differ
        saved = self._store.read()
        identity = descriptor.identity()
        for connection in saved:
            try:
                if connection.to_descriptor().identity() == identity:
                    return
            except ValidationError:
                continue
        self._store.replace([*saved, SavedConnection.from_descriptor(descriptor)])

    @staticmethod
    async def _disconnect(handle: ConnectionHandle, connection_id: str) -> None:
        try:
            await handle.disconnect()
        except Exception:
            LOG.warning("Failed to disconnect", exc_info=True, extra={"connection_id": connection_id})


def _saved_id(connection: SavedConnection) -> str | None:
    try:
        return connection.connection_id
    except ValidationError:
        return None


def _log_connecting(descriptor: TopologyDescriptor) -> None:
    if descriptor.topology is Topology.SENTINEL:
        LOG.info("Connecting sentinel %s", descriptor.describe())
    elif descriptor.topology is Topology.CLUSTER:
        LOG.info("Connecting cluster %s", descriptor.describe())
    else:
        LOG.info("Connecting %s", descriptor.describe())


__all__ = ["ConnectionService", "DUPLICATE_MESSAGE", "Response"]
