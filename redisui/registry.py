"""In-memory registry of live connection handles."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from .models import ConnectionSummary, TopologyDescriptor

if TYPE_CHECKING:
    from .connections import ConnectionHandle

RegistryListener = Callable[[tuple[ConnectionSummary, ...]], None]


class NotFoundError(LookupError):
    """Raised when no registered connection matches an identity."""


@dataclass(frozen=True, slots=True)
class RegistryEntry:
    """Descriptor paired with its live connection handle."""

    descriptor: TopologyDescriptor
    handle: "ConnectionHandle"

    @property
    def connection_id(self) -> str:
        return self.descriptor.connection_id


class ConnectionRegistry:
    """Holds at most one live handle per connection identity.

    ``insert`` does not re-check for duplicates; callers check ``contains``
    first or, when an await separates the check from the insert, hold a
    reservation (``reserve``/``release``) so a concurrent login for the
    same identity is rejected in between.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._entries: list[RegistryEntry] = []
        self._pending: set[tuple[object, ...]] = set()
        self._listeners: set[RegistryListener] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def contains(self, descriptor: TopologyDescriptor) -> bool:
        """True if a live entry shares the descriptor's identity."""

        identity = descriptor.identity()
        with self._lock:
            return any(entry.descriptor.identity() == identity for entry in self._entries)

    def reserve(self, descriptor: TopologyDescriptor) -> bool:
        """Atomically claim an identity; False if it is live or already claimed."""

        identity = descriptor.identity()
        with self._lock:
            if identity in self._pending or self.contains(descriptor):
                return False
            self._pending.add(identity)
            return True

    def release(self, descriptor: TopologyDescriptor) -> None:
        with self._lock:
            self._pending.discard(descriptor.identity())

    def insert(self, descriptor: TopologyDescriptor, handle: "ConnectionHandle") -> RegistryEntry:
        entry = RegistryEntry(descriptor=descriptor, handle=handle)
        with self._lock:
            self._entries.append(entry)
        self._notify()
        return entry

    def find(self, connection_id: str) -> RegistryEntry | None:
        with self._lock:
            for entry in self._entries:
                if entry.connection_id == connection_id:
                    return entry
        return None

    def remove_by_identity(self, connection_id: str) -> RegistryEntry:
        """Remove and return the entry registered under ``connection_id``."""

        with self._lock:
            for index, entry in enumerate(self._entries):
                if entry.connection_id == connection_id:
                    del self._entries[index]
                    break
            else:
                raise NotFoundError(f"Connection '{connection_id}' is not registered.")
        self._notify()
        return entry

    def drain(self) -> tuple[RegistryEntry, ...]:
        """Remove every entry (process shutdown)."""

        with self._lock:
            entries = tuple(self._entries)
            self._entries.clear()
        if entries:
            self._notify()
        return entries

    def list_for_display(self) -> tuple[ConnectionSummary, ...]:
        """Summaries without passwords or TLS material."""

        with self._lock:
            return tuple(entry.descriptor.summary() for entry in self._entries)

    def subscribe(self, listener: RegistryListener) -> Callable[[], None]:
        """Subscribe to registry changes; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _notify(self) -> None:
        summaries = self.list_for_display()
        for listener in tuple(self._listeners):
            listener(summaries)


__all__ = ["ConnectionRegistry", "NotFoundError", "RegistryEntry"]
