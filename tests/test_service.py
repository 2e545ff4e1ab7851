"""Tests for login, database detection and logout."""

from __future__ import annotations

import asyncio

import pytest

from redisui.config import AppConfig, ConfigStore, PersistenceError, SavedConnection
from redisui.connections import TransportError
from redisui.registry import NotFoundError
from redisui.service import DUPLICATE_MESSAGE, ConnectionService

LOGIN = {"label": "cache", "hostname": "localhost", "port": "6379", "password": "hunter2", "dbIndex": "0"}


class _Saver:
    def __init__(self) -> None:
        self.saved: list[AppConfig] = []
        self.error: OSError | None = None

    def __call__(self, config: AppConfig) -> None:
        if self.error is not None:
            raise self.error
        self.saved.append(config)


@pytest.fixture
def saver() -> _Saver:
    return _Saver()


def _service(handle_factory, saver: _Saver, *connections: SavedConnection) -> ConnectionService:
    store = ConfigStore(AppConfig(connect_timeout=1, command_timeout=1, connections=list(connections)), saver=saver)
    return ConnectionService(store, handle_factory=handle_factory)


@pytest.mark.anyio
async def test_login_registers_and_persists(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)

    response = await service.login(LOGIN)

    assert response == {"ok": True}
    assert len(service.registry) == 1
    assert [connection.label for connection in service.store.read()] == ["cache"]
    assert saver.saved[-1].connections[0].password == "hunter2"
    assert handle_factory.last.disconnects == 0


@pytest.mark.anyio
async def test_duplicate_login_short_circuits_before_connecting(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)
    await service.login(LOGIN)

    response = await service.login({**LOGIN, "password": "other", "label": "again"})

    assert response == {"ok": True, "message": DUPLICATE_MESSAGE}
    assert len(handle_factory.handles) == 1
    assert len(service.registry) == 1


@pytest.mark.anyio
async def test_concurrent_logins_for_same_identity_register_once(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)

    first, second = await asyncio.gather(service.login(LOGIN), service.login(LOGIN))

    assert sorted([first.get("message", ""), second.get("message", "")]) == ["", DUPLICATE_MESSAGE]
    assert len(handle_factory.handles) == 1
    assert len(service.registry) == 1


@pytest.mark.anyio
async def test_other_database_is_a_separate_connection(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)

    await service.login(LOGIN)
    response = await service.login({**LOGIN, "dbIndex": "1"})

    assert response == {"ok": True}
    assert len(service.registry) == 2


@pytest.mark.anyio
async def test_validation_error_is_reported_without_connecting(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)

    response = await service.login({"label": "nothing"})

    assert response == {"ok": False, "message": "invalid or missing hostname or socket path"}
    assert handle_factory.handles == []


@pytest.mark.anyio
async def test_transport_error_reports_invalid_login(handle_factory, saver) -> None:
    handle_factory.configure(outcome="fail", error=TransportError("WRONGPASS invalid username-password pair"))
    service = _service(handle_factory, saver)

    response = await service.login(LOGIN)

    assert response["ok"] is False
    assert response["message"] == "invalid login: WRONGPASS invalid username-password pair"
    assert len(service.registry) == 0
    assert service.store.read() == ()
    assert handle_factory.last.disconnects == 1
    # identity is free again
    handle_factory.configure()
    assert await service.login(LOGIN) == {"ok": True}


@pytest.mark.anyio
async def test_login_does_not_duplicate_saved_connection(handle_factory, saver) -> None:
    saved = SavedConnection(label="cache", host="localhost", port=6379, password="old")
    service = _service(handle_factory, saver, saved)

    response = await service.login(LOGIN)

    assert response == {"ok": True}
    assert service.store.read() == (saved,)
    assert saver.saved == []


@pytest.mark.anyio
async def test_persistence_error_propagates_from_login(handle_factory, saver) -> None:
    saver.error = OSError("read-only file system")
    service = _service(handle_factory, saver)

    with pytest.raises(PersistenceError):
        await service.login(LOGIN)


@pytest.mark.anyio
async def test_detect_databases_returns_probe_response(handle_factory, saver) -> None:
    handle_factory.configure(responses={("INFO", "keyspace"): "db0:keys=5,expires=0\r\ndb2:keys=10,expires=1\r\n"})
    service = _service(handle_factory, saver)

    response = await service.detect_databases({**LOGIN, "dbIndex": "3"})

    assert response == {
        "ok": True,
        "server": "standalone localhost",
        "dbs": {"used": [{"dbIndex": 0, "keys": 5}, {"dbIndex": 2, "keys": 10}], "max": 16},
    }
    assert len(service.registry) == 0
    assert handle_factory.last.disconnects == 1


@pytest.mark.anyio
async def test_detect_databases_reports_failures(handle_factory, saver) -> None:
    handle_factory.configure(outcome="fail", error=TransportError("Connection refused"))
    service = _service(handle_factory, saver)

    response = await service.detect_databases(LOGIN)
    invalid = await service.detect_databases({})

    assert response == {
        "ok": False,
        "message": "Error connecting to Redis to get all databases used: Connection refused",
    }
    assert invalid["ok"] is False


@pytest.mark.anyio
async def test_logout_disconnects_and_forgets(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)
    await service.login(LOGIN)

    result = await service.logout("R:localhost:6379:0")

    assert result == "OK"
    assert len(service.registry) == 0
    assert service.store.read() == ()
    assert handle_factory.last.disconnects == 1


@pytest.mark.anyio
async def test_logout_of_saved_only_connection_is_tolerated(handle_factory, saver) -> None:
    saved = SavedConnection(label="cache", host="localhost", port=6379)
    service = _service(handle_factory, saver, saved)

    assert await service.logout(saved.connection_id) == "OK"
    assert service.store.read() == ()


@pytest.mark.anyio
async def test_logout_of_registered_but_unsaved_connection_is_tolerated(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)
    await service.login(LOGIN)
    service.store.replace([])

    assert await service.logout("R:localhost:6379:0") == "OK"
    assert len(service.registry) == 0


@pytest.mark.anyio
async def test_logout_of_unknown_connection_raises(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)

    with pytest.raises(NotFoundError):
        await service.logout("R:nowhere:6379:0")


@pytest.mark.anyio
async def test_logout_persistence_error_propagates(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)
    await service.login(LOGIN)
    saver.error = OSError("disk full")

    with pytest.raises(PersistenceError):
        await service.logout("R:localhost:6379:0")
    assert len(service.registry) == 0


@pytest.mark.anyio
async def test_restore_reconnects_saved_connections(handle_factory, saver) -> None:
    first = SavedConnection(label="one", host="localhost", port=6379)
    second = SavedConnection(label="two", host="localhost", port=6379, db_index=1)
    service = _service(handle_factory, saver, first, second)

    restored = await service.restore()

    assert restored == (first.connection_id, second.connection_id)
    assert len(service.registry) == 2
    assert saver.saved == []


@pytest.mark.anyio
async def test_restore_skips_unreachable_connections(handle_factory, saver) -> None:
    handle_factory.configure(outcome="fail")
    service = _service(handle_factory, saver, SavedConnection(label="one", host="localhost", port=6379))

    assert await service.restore() == ()
    assert handle_factory.last.disconnects == 1
    assert len(service.store.read()) == 1


@pytest.mark.anyio
async def test_shutdown_disconnects_everything(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)
    await service.login(LOGIN)
    await service.login({**LOGIN, "dbIndex": "1"})

    await service.shutdown()

    assert len(service.registry) == 0
    assert [handle.disconnects for handle in handle_factory.handles] == [1, 1]


@pytest.mark.anyio
async def test_connections_listing_and_subscription(handle_factory, saver) -> None:
    service = _service(handle_factory, saver)
    seen = []
    unsubscribe = service.subscribe(seen.append)

    await service.login(LOGIN)
    unsubscribe()

    assert seen[0] == ()
    assert [summary.label for summary in seen[-1]] == ["cache"]
    assert service.connections() == {
        "ok": True,
        "connections": [
            {
                "connectionId": "R:localhost:6379:0",
                "label": "cache",
                "type": "standalone",
                "server": "localhost:6379",
                "dbIndex": 0,
                "tls": False,
            }
        ],
    }
