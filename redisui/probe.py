"""Discover which logical databases of a server hold keys."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from .connections import DEFAULT_COMMAND_TIMEOUT, DEFAULT_CONNECT_TIMEOUT, ConnectionHandle, HandleFactory
from .lifecycle import ConnectionLifecycleCoordinator
from .models import Topology, TopologyDescriptor

LOG = logging.getLogger(__name__)

DEFAULT_DATABASE_CEILING = 16

_KEYSPACE_LINE = re.compile(r"^db(\d+):\s*keys=(\d+)")
_KEYSPACE_KEY = re.compile(r"^db(\d+)$")


class ProbeError(RuntimeError):
    """Raised when database discovery cannot produce a result."""


class SlotPolicy(str, Enum):
    """How a failed diagnostic command affects the probe."""

    FATAL = "fatal"
    TOLERATED = "tolerated"


@dataclass(frozen=True, slots=True)
class DatabaseUsage:
    index: int
    keys: int

    def as_dict(self) -> dict[str, int]:
        return {"dbIndex": self.index, "keys": self.keys}


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of a successful probe."""

    topology: Topology
    server_identity: str
    databases_in_use: tuple[DatabaseUsage, ...]
    database_ceiling: int

    @property
    def server(self) -> str:
        return f"{self.topology.value} {self.server_identity}"

    def as_response(self) -> dict[str, object]:
        return {
            "ok": True,
            "server": self.server,
            "dbs": {
                "used": [usage.as_dict() for usage in self.databases_in_use],
                "max": self.database_ceiling,
            },
        }


@dataclass(slots=True)
class DiagnosticSlot:
    """One diagnostic command plus the policy applied when it fails."""

    name: str
    command: tuple[str, ...]
    parse: Callable[[Any], Any]
    policy: SlotPolicy
    default: Any = None
    value: Any = None
    error: BaseException | None = field(default=None)

    def settle(self, outcome: object) -> None:
        if isinstance(outcome, BaseException):
            self.error = outcome
            return
        try:
            self.value = self.parse(outcome)
        except (TypeError, ValueError) as exc:
            self.error = exc

    def resolve(self) -> Any:
        """Parsed value, the default for tolerated failures, or raise ProbeError."""

        if self.error is None:
            return self.value
        if self.policy is SlotPolicy.TOLERATED:
            LOG.warning("%s failed, using default %r: %s", self.name, self.default, self.error)
            return self.default
        raise ProbeError(_describe(self.error)) from self.error


def parse_keyspace(payload: object) -> tuple[DatabaseUsage, ...]:
    """Extract ``(db, keys)`` pairs from an ``INFO keyspace`` reply.

    Accepts the raw text (``db0:keys=5,expires=0``) as well as the mapping
    redis-py builds from it (``{"db0": {"keys": 5, ...}}``). Lines that do
    not describe a database are ignored.
    """

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    usages: list[DatabaseUsage] = []
    if isinstance(payload, str):
        for line in payload.splitlines():
            match = _KEYSPACE_LINE.match(line.strip())
            if match:
                usages.append(DatabaseUsage(index=int(match.group(1)), keys=int(match.group(2))))
        return tuple(usages)
    if isinstance(payload, Mapping):
        for key, stats in payload.items():
            match = _KEYSPACE_KEY.match(str(key))
            if match and isinstance(stats, Mapping) and "keys" in stats:
                usages.append(DatabaseUsage(index=int(match.group(1)), keys=int(stats["keys"])))
        return tuple(sorted(usages, key=lambda usage: usage.index))
    raise TypeError(f"unexpected INFO keyspace reply: {type(payload).__name__}")


def parse_database_ceiling(payload: object) -> int:
    """Read ``databases`` from a ``CONFIG GET databases`` reply."""

    if isinstance(payload, Mapping):
        value = payload.get("databases")
    elif isinstance(payload, Sequence) and not isinstance(payload, (str, bytes)) and len(payload) >= 2:
        value = payload[1]
    else:
        value = None
    if isinstance(value, bytes):
        value = value.decode()
    if value is None:
        raise ValueError("databases setting missing from CONFIG GET reply")
    return int(value)


def server_identity(descriptor: TopologyDescriptor) -> str:
    """Short server name for display: socket path, first endpoint host or host."""

    if descriptor.topology is Topology.SOCKET:
        return descriptor.path or ""
    if descriptor.topology in (Topology.SENTINEL, Topology.CLUSTER):
        return descriptor.endpoints[0].host
    return descriptor.host or ""


class DatabaseProbe:
    """Opens a throwaway connection to database 0 and inspects the keyspace.

    ``INFO keyspace`` and ``CONFIG GET databases`` run concurrently and are
    both awaited. A keyspace failure fails the probe; a refused ceiling
    query falls back to :data:`DEFAULT_DATABASE_CEILING`. The transient
    connection is disconnected exactly once on every exit path.
    """

    def __init__(
        self,
        handle_factory: HandleFactory,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self._handle_factory = handle_factory
        self._connect_timeout = connect_timeout
        self._command_timeout = command_timeout

    async def probe(self, descriptor: TopologyDescriptor) -> ProbeResult:
        # database 0 always exists, higher numbers are optional
        target = descriptor.with_database(0)
        LOG.info(
            "Checking for databases at %s %s",
            target.topology.value,
            target.describe(),
            extra={"connection_id": target.connection_id},
        )
        coordinator = ConnectionLifecycleCoordinator(self._handle_factory(target))
        try:
            outcome = await coordinator.connect(timeout=self._connect_timeout)
            if not outcome.ok:
                LOG.warning("Cannot connect to redis db: %s", outcome.error)
                raise ProbeError(
                    f"Error connecting to Redis to get all databases used: {_describe(outcome.error)}"
                ) from outcome.error
            keyspace, ceiling = await self._run_diagnostics(coordinator.handle)
            return ProbeResult(
                topology=target.topology,
                server_identity=server_identity(target),
                databases_in_use=keyspace.resolve(),
                database_ceiling=ceiling.resolve(),
            )
        finally:
            await coordinator.disconnect()

    async def _run_diagnostics(self, handle: ConnectionHandle) -> tuple[DiagnosticSlot, DiagnosticSlot]:
        keyspace = DiagnosticSlot(
            name="INFO keyspace",
            command=("INFO", "keyspace"),
            parse=parse_keyspace,
            policy=SlotPolicy.FATAL,
        )
        ceiling = DiagnosticSlot(
            name="CONFIG GET databases",
            command=("CONFIG", "GET", "databases"),
            parse=parse_database_ceiling,
            policy=SlotPolicy.TOLERATED,
            default=DEFAULT_DATABASE_CEILING,
        )
        slots = (keyspace, ceiling)
        outcomes = await asyncio.gather(
            *(asyncio.wait_for(handle.call(*slot.command), self._command_timeout) for slot in slots),
            return_exceptions=True,
        )
        for slot, outcome in zip(slots, outcomes):
            slot.settle(outcome)
        return keyspace, ceiling


def _describe(error: BaseException | None) -> str:
    if error is None:
        return "unknown error"
    if isinstance(error, TimeoutError) and not str(error):
        return "timed out"
    return str(error) or type(error).__name__


__all__ = [
    "DEFAULT_DATABASE_CEILING",
    "DatabaseProbe",
    "DatabaseUsage",
    "DiagnosticSlot",
    "ProbeError",
    "ProbeResult",
    "SlotPolicy",
    "parse_database_ceiling",
    "parse_keyspace",
    "server_identity",
]
