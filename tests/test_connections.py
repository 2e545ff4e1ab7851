"""Tests for the redis-py backed connection handle."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from redisui import connections as connections_module
from redisui.connections import RedisConnectionHandle, TransportError, TransportEvent, TransportEventKind
from redisui.models import Endpoint, TlsOptions, Topology, TopologyDescriptor
from redisui.tls import ServerNameSSLConnection, TlsFiles, tls_connection_kwargs


class _FakeRedis:
    instances: list[_FakeRedis] = []
    ping_error: BaseException | None = None
    command_error: BaseException | None = None

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.args = args
        self.kwargs = kwargs
        self.pool: Any = None
        self.commands: list[tuple[tuple[object, ...], dict[str, object]]] = []
        self.closed: list[object] = []
        type(self).instances.append(self)

    @classmethod
    def from_pool(cls, pool: Any) -> _FakeRedis:
        client = cls()
        client.pool = pool
        return client

    async def ping(self) -> bool:
        if self.ping_error is not None:
            raise self.ping_error
        return True

    async def execute_command(self, *args: object, **options: object) -> object:
        self.commands.append((args, options))
        if self.command_error is not None:
            raise self.command_error
        return "OK"

    async def aclose(self, close_connection_pool: bool | None = None) -> None:
        self.closed.append(close_connection_pool)


class _FakeCluster(_FakeRedis):
    RANDOM = "random"
    instances: list[_FakeRedis] = []


class _FakePool:
    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs


class _FakeSentinel:
    instances: list[_FakeSentinel] = []

    def __init__(self, sentinels: list[tuple[str, int]], sentinel_kwargs: dict[str, Any]) -> None:
        self.endpoints = sentinels
        self.sentinel_kwargs = sentinel_kwargs
        self.sentinels = [_FakeRedis(), _FakeRedis()]
        self.master: _FakeRedis | None = None
        self.master_args: tuple[str, dict[str, Any]] | None = None
        type(self).instances.append(self)

    def master_for(self, service_name: str, **kwargs: Any) -> _FakeRedis:
        self.master_args = (service_name, kwargs)
        self.master = _FakeRedis(**kwargs)
        return self.master


@pytest.fixture(autouse=True)
def fake_clients(monkeypatch: pytest.MonkeyPatch) -> None:
    _FakeRedis.instances = []
    _FakeRedis.ping_error = None
    _FakeRedis.command_error = None
    _FakeCluster.instances = []
    _FakeSentinel.instances = []
    monkeypatch.setattr(connections_module, "Redis", _FakeRedis)
    monkeypatch.setattr(connections_module, "RedisCluster", _FakeCluster)
    monkeypatch.setattr(connections_module, "ConnectionPool", _FakePool)
    monkeypatch.setattr(connections_module, "Sentinel", _FakeSentinel)


async def _open(handle: RedisConnectionHandle) -> TransportEvent:
    events: list[TransportEvent] = []
    done = asyncio.Event()

    def _listener(event: TransportEvent) -> None:
        events.append(event)
        done.set()

    handle.subscribe(_listener)
    handle.open()
    await asyncio.wait_for(done.wait(), 1)
    return events[0]


def _standalone(**overrides: Any) -> TopologyDescriptor:
    fields: dict[str, Any] = {
        "label": "cache",
        "topology": Topology.STANDALONE,
        "host": "redis.local",
        "port": 6380,
        "database_index": 2,
        "username": "admin",
        "password": "hunter2",
    }
    fields.update(overrides)
    return TopologyDescriptor(**fields)


@pytest.mark.anyio
async def test_standalone_handle_connects_and_runs_commands() -> None:
    handle = RedisConnectionHandle(_standalone(), connect_timeout=1, command_timeout=2)

    event = await _open(handle)
    reply = await handle.call("INFO", "keyspace")
    await handle.disconnect()

    client = _FakeRedis.instances[0]
    assert event.kind is TransportEventKind.READY
    assert reply == "OK"
    assert client.kwargs["host"] == "redis.local"
    assert client.kwargs["port"] == 6380
    assert client.kwargs["db"] == 2
    assert client.kwargs["username"] == "admin"
    assert client.kwargs["password"] == "hunter2"
    assert client.kwargs["socket_timeout"] == 2
    assert client.kwargs["decode_responses"] is True
    assert "ssl" not in client.kwargs
    assert client.commands == [(("INFO", "keyspace"), {})]
    assert client.closed == [True]


@pytest.mark.anyio
async def test_ping_failure_emits_transport_error() -> None:
    _FakeRedis.ping_error = RedisConnectionError("Connection refused")
    handle = RedisConnectionHandle(_standalone())

    event = await _open(handle)
    await handle.disconnect()

    assert event.kind is TransportEventKind.ERROR
    assert isinstance(event.error, TransportError)
    assert "Connection refused" in str(event.error)


@pytest.mark.anyio
async def test_command_errors_are_wrapped() -> None:
    _FakeRedis.command_error = ResponseError("NOPERM this user has no permissions")
    handle = RedisConnectionHandle(_standalone())
    await _open(handle)

    with pytest.raises(TransportError, match="NOPERM"):
        await handle.call("CONFIG", "GET", "databases")
    await handle.disconnect()


@pytest.mark.anyio
async def test_call_before_open_fails() -> None:
    handle = RedisConnectionHandle(_standalone())

    with pytest.raises(TransportError):
        await handle.call("PING")


@pytest.mark.anyio
async def test_socket_handle_uses_unix_path() -> None:
    descriptor = TopologyDescriptor(label="", topology=Topology.SOCKET, path="/tmp/redis.sock", database_index=1)
    handle = RedisConnectionHandle(descriptor)

    await _open(handle)
    await handle.disconnect()

    client = _FakeRedis.instances[0]
    assert client.kwargs["unix_socket_path"] == "/tmp/redis.sock"
    assert client.kwargs["db"] == 1


@pytest.mark.anyio
async def test_cluster_handle_targets_random_node() -> None:
    descriptor = TopologyDescriptor(
        label="",
        topology=Topology.CLUSTER,
        clusters=(Endpoint("n1", 7000), Endpoint("n2", 7001)),
        tls=True,
        cluster_skip_certificate_validation=True,
    )
    handle = RedisConnectionHandle(descriptor)

    await _open(handle)
    await handle.call("INFO", "keyspace")
    await handle.disconnect()

    client = _FakeCluster.instances[0]
    nodes = client.kwargs["startup_nodes"]
    assert [(node.host, node.port) for node in nodes] == [("n1", 7000), ("n2", 7001)]
    assert client.kwargs["ssl"] is True
    assert client.kwargs["ssl_cert_reqs"] == "none"
    assert client.kwargs["ssl_check_hostname"] is False
    assert client.commands == [(("INFO", "keyspace"), {"target_nodes": "random"})]
    assert client.closed == [None]


@pytest.mark.anyio
async def test_sentinel_handle_resolves_master_and_closes_sentinels() -> None:
    descriptor = TopologyDescriptor(
        label="",
        topology=Topology.SENTINEL,
        sentinels=(Endpoint("s1", 26379),),
        sentinel_group_name="mymaster",
        sentinel_password="watcher",
        sentinel_tls=True,
        password="hunter2",
        database_index=3,
    )
    handle = RedisConnectionHandle(descriptor)

    await _open(handle)
    await handle.disconnect()

    sentinel = _FakeSentinel.instances[0]
    assert sentinel.endpoints == [("s1", 26379)]
    assert sentinel.sentinel_kwargs["password"] == "watcher"
    assert sentinel.sentinel_kwargs["ssl"] is True
    assert sentinel.master_args is not None
    name, kwargs = sentinel.master_args
    assert name == "mymaster"
    assert kwargs["db"] == 3
    assert kwargs["password"] == "hunter2"
    assert "ssl" not in kwargs
    assert all(node.closed == [None] for node in sentinel.sentinels)


@pytest.mark.anyio
async def test_server_name_uses_dedicated_connection_class() -> None:
    descriptor = _standalone(tls=TlsOptions(server_name="cache.internal"))
    handle = RedisConnectionHandle(descriptor)

    await _open(handle)
    await handle.disconnect()

    pool = _FakeRedis.instances[0].pool
    assert pool.kwargs["connection_class"] is ServerNameSSLConnection
    assert pool.kwargs["ssl_server_name"] == "cache.internal"
    assert pool.kwargs["ssl_cert_reqs"] == "required"
    assert "ssl" not in pool.kwargs


def test_tls_kwargs_write_client_material_to_private_files() -> None:
    files = TlsFiles()
    options = TlsOptions(
        certificate_authority="CA PEM",
        client_certificate="CERT PEM",
        client_private_key="KEY PEM",
    )

    kwargs = tls_connection_kwargs(options, files=files)

    try:
        assert kwargs["ssl_ca_data"] == "CA PEM"
        assert Path(str(kwargs["ssl_certfile"])).read_text() == "CERT PEM"
        key_path = Path(str(kwargs["ssl_keyfile"]))
        assert key_path.read_text() == "KEY PEM"
        assert key_path.stat().st_mode & 0o777 == 0o600
    finally:
        files.cleanup()
    assert not key_path.exists()


def test_tls_kwargs_empty_when_disabled() -> None:
    assert tls_connection_kwargs(None, files=TlsFiles()) == {}
