"""Tests for the connection registry."""

from __future__ import annotations

import pytest

from redisui.models import ConnectionSummary, Topology, TopologyDescriptor
from redisui.registry import ConnectionRegistry, NotFoundError


class _Handle:
    def __init__(self, descriptor: TopologyDescriptor) -> None:
        self.descriptor = descriptor


def _descriptor(db: int = 0, password: str | None = None) -> TopologyDescriptor:
    return TopologyDescriptor(
        label="cache",
        topology=Topology.STANDALONE,
        host="localhost",
        port=6379,
        database_index=db,
        password=password,
    )


def test_contains_after_insert_and_not_after_remove() -> None:
    registry = ConnectionRegistry()
    descriptor = _descriptor()

    registry.insert(descriptor, _Handle(descriptor))  # type: ignore[arg-type]

    assert registry.contains(descriptor)
    assert registry.contains(_descriptor(password="other"))
    assert not registry.contains(_descriptor(db=1))

    entry = registry.remove_by_identity(descriptor.connection_id)

    assert entry.descriptor is descriptor
    assert not registry.contains(descriptor)
    assert len(registry) == 0


def test_remove_missing_identity_raises() -> None:
    registry = ConnectionRegistry()

    with pytest.raises(NotFoundError):
        registry.remove_by_identity("R:localhost:6379:0")


def test_reserve_blocks_second_claim_until_release() -> None:
    registry = ConnectionRegistry()
    descriptor = _descriptor()

    assert registry.reserve(descriptor)
    assert not registry.reserve(_descriptor(password="other"))

    registry.release(descriptor)

    assert registry.reserve(descriptor)


def test_reserve_rejects_live_identity() -> None:
    registry = ConnectionRegistry()
    descriptor = _descriptor()
    registry.insert(descriptor, _Handle(descriptor))  # type: ignore[arg-type]

    assert not registry.reserve(descriptor)


def test_listeners_receive_display_summaries() -> None:
    registry = ConnectionRegistry()
    seen: list[tuple[ConnectionSummary, ...]] = []
    unsubscribe = registry.subscribe(seen.append)
    descriptor = _descriptor(password="hunter2")

    registry.insert(descriptor, _Handle(descriptor))  # type: ignore[arg-type]
    registry.drain()
    unsubscribe()
    registry.insert(descriptor, _Handle(descriptor))  # type: ignore[arg-type]

    assert len(seen) == 2
    assert [summary.connection_id for summary in seen[0]] == ["R:localhost:6379:0"]
    assert seen[1] == ()
    assert "hunter2" not in repr(seen)


def test_find_returns_entry_by_id() -> None:
    registry = ConnectionRegistry()
    descriptor = _descriptor(db=4)
    handle = _Handle(descriptor)
    registry.insert(descriptor, handle)  # type: ignore[arg-type]

    entry = registry.find("R:localhost:6379:4")

    assert entry is not None and entry.handle is handle
    assert registry.find("R:localhost:6379:0") is None
