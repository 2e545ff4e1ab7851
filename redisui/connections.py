"""Connection handles wrapping the redis-py asyncio clients."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.cluster import ClusterNode, RedisCluster
from redis.asyncio.sentinel import Sentinel
from redis.exceptions import RedisError

from .models import Topology, TopologyDescriptor
from .tls import ServerNameSSLConnection, TlsFiles, server_name_of, tls_connection_kwargs

LOG = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 3.0
DEFAULT_COMMAND_TIMEOUT = 5.0


class TransportError(RuntimeError):
    """Raised (or emitted) when the transport cannot connect or run a command."""


class TransportEventKind(str, Enum):
    READY = "ready"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TransportEvent:
    """Lifecycle event emitted by a connection handle."""

    kind: TransportEventKind
    error: BaseException | None = None

    @classmethod
    def ready(cls) -> TransportEvent:
        return cls(TransportEventKind.READY)

    @classmethod
    def failed(cls, error: BaseException) -> TransportEvent:
        return cls(TransportEventKind.ERROR, error)


TransportListener = Callable[[TransportEvent], None]


@runtime_checkable
class ConnectionHandle(Protocol):
    """Protocol implemented by connection handles.

    ``open`` starts connecting in the background; the outcome arrives as
    :class:`TransportEvent` objects delivered to subscribers.
    """

    descriptor: TopologyDescriptor

    def open(self) -> None:
        """Start connecting (non-blocking)."""

    def subscribe(self, listener: TransportListener) -> Callable[[], None]:
        """Subscribe to lifecycle events; returns an unsubscribe handle."""

    async def call(self, *args: object) -> Any:
        """Run a raw command and return its reply."""

    async def disconnect(self) -> None:
        """Close the underlying client and release its resources."""


HandleFactory = Callable[[TopologyDescriptor], ConnectionHandle]


class RedisConnectionHandle:
    """Connection handle backed by ``redis.asyncio``.

    Readiness is confirmed with ``PING``; the socket timeout doubles as the
    per-command timeout.
    """

    def __init__(
        self,
        descriptor: TopologyDescriptor,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.descriptor = descriptor
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout
        self._listeners: set[TransportListener] = set()
        self._client: Redis | RedisCluster | None = None
        self._sentinel: Sentinel | None = None
        self._task: asyncio.Task[None] | None = None
        self._tls_files = TlsFiles()

    def open(self) -> None:
        if self._task is not None:
            return
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._connect(), name=f"redisui-connect-{self.descriptor.connection_id}")

    def subscribe(self, listener: TransportListener) -> Callable[[], None]:
        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    async def call(self, *args: object) -> Any:
        client = self._client
        if client is None:
            raise TransportError("Connection is not open.")
        options: dict[str, object] = {}
        if isinstance(client, RedisCluster):
            options["target_nodes"] = RedisCluster.RANDOM
        try:
            return await client.execute_command(*args, **options)
        except RedisError as exc:
            raise TransportError(str(exc) or type(exc).__name__) from exc

    async def disconnect(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        client, self._client = self._client, None
        sentinel, self._sentinel = self._sentinel, None
        try:
            if isinstance(client, RedisCluster):
                await client.aclose()
            elif client is not None:
                await client.aclose(close_connection_pool=True)
            if sentinel is not None:
                for node in sentinel.sentinels:
                    await node.aclose()
        finally:
            self._tls_files.cleanup()

    async def _connect(self) -> None:
        try:
            self._client = self._create_client()
            await asyncio.wait_for(self._client.ping(), timeout=self._connect_timeout)
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            error = TransportError(f"timed out connecting to {self.descriptor.describe()}")
            self._emit(TransportEvent.failed(error))
            return
        except Exception as exc:
            error = TransportError(str(exc) or type(exc).__name__)
            error.__cause__ = exc
            self._emit(TransportEvent.failed(error))
            return
        self._emit(TransportEvent.ready())

    def _emit(self, event: TransportEvent) -> None:
        for listener in tuple(self._listeners):
            listener(event)

    def _create_client(self) -> Redis | RedisCluster:
        descriptor = self.descriptor
        common: dict[str, Any] = {
            "username": descriptor.username,
            "password": descriptor.password,
            "socket_timeout": self._command_timeout,
            "socket_connect_timeout": self._connect_timeout,
            "decode_responses": True,
        }
        if descriptor.topology is Topology.SOCKET:
            return Redis(unix_socket_path=descriptor.path, db=descriptor.database_index, **common)

        tls = tls_connection_kwargs(
            descriptor.tls,
            files=self._tls_files,
            skip_verification=descriptor.cluster_skip_certificate_validation,
        )
        server_name = server_name_of(descriptor.tls)

        if descriptor.topology is Topology.CLUSTER:
            if server_name:
                LOG.warning("TLS server name override is not supported for clusters; ignoring it")
            nodes = [ClusterNode(endpoint.host, endpoint.port) for endpoint in descriptor.clusters]
            return RedisCluster(startup_nodes=nodes, **common, **tls)

        if descriptor.topology is Topology.SENTINEL:
            if server_name or server_name_of(descriptor.sentinel_tls):
                LOG.warning("TLS server name override is not supported for sentinel groups; ignoring it")
            sentinel_kwargs: dict[str, Any] = {
                "password": descriptor.sentinel_password,
                "socket_timeout": self._command_timeout,
                "socket_connect_timeout": self._connect_timeout,
            }
            sentinel_kwargs.update(
                tls_connection_kwargs(descriptor.sentinel_tls, files=self._tls_files, prefix="sentinel")
            )
            self._sentinel = Sentinel(
                [(endpoint.host, endpoint.port) for endpoint in descriptor.sentinels],
                sentinel_kwargs=sentinel_kwargs,
            )
            return self._sentinel.master_for(
                descriptor.sentinel_group_name,
                db=descriptor.database_index,
                **common,
                **tls,
            )

        if server_name:
            tls.pop("ssl", None)
            pool = ConnectionPool(
                connection_class=ServerNameSSLConnection,
                host=descriptor.host,
                port=descriptor.port,
                db=descriptor.database_index,
                ssl_server_name=server_name,
                **common,
                **tls,
            )
            return Redis.from_pool(pool)
        return Redis(host=descriptor.host, port=descriptor.port, db=descriptor.database_index, **common, **tls)


def create_redis_handle(
    descriptor: TopologyDescriptor,
    *,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> RedisConnectionHandle:
    """Default :data:`HandleFactory` used by the service layer."""

    return RedisConnectionHandle(descriptor, connect_timeout=connect_timeout, command_timeout=command_timeout)


__all__ = [
    "ConnectionHandle",
    "DEFAULT_COMMAND_TIMEOUT",
    "DEFAULT_CONNECT_TIMEOUT",
    "HandleFactory",
    "RedisConnectionHandle",
    "TransportError",
    "TransportEvent",
    "TransportEventKind",
    "TransportListener",
    "create_redis_handle",
]
