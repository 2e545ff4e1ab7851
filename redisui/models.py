"""Shared dataclasses describing connection targets."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum

DEFAULT_PORT = 6379


class Topology(str, Enum):
    """Deployment shape of a Redis target."""

    STANDALONE = "standalone"
    SOCKET = "socket"
    SENTINEL = "sentinel"
    CLUSTER = "cluster"


@dataclass(frozen=True, slots=True)
class Endpoint:
    """Single ``host:port`` pair of a sentinel group or cluster."""

    host: str
    port: int

    def __str__(self) -> str:
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


@dataclass(frozen=True, slots=True)
class TlsOptions:
    """Explicit TLS material; PEM fields hold real newlines."""

    certificate_authority: str | None = None
    client_certificate: str | None = None
    client_private_key: str | None = None
    server_name: str | None = None


TransportSecurity = bool | TlsOptions


@dataclass(frozen=True, slots=True)
class ConnectionSummary:
    """Display-safe view of a registered connection."""

    connection_id: str
    label: str
    topology: Topology
    server: str
    database_index: int
    tls: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "connectionId": self.connection_id,
            "label": self.label,
            "type": self.topology.value,
            "server": self.server,
            "dbIndex": self.database_index,
            "tls": self.tls,
        }


@dataclass(frozen=True, slots=True)
class TopologyDescriptor:
    """Normalized identity and credentials of one connection request.

    Exactly one topology variant is populated: ``host``/``port`` for
    standalone servers, ``path`` for unix sockets, ``sentinels`` plus
    ``sentinel_group_name`` for sentinel groups and ``clusters`` for
    clusters. ``tls`` is ``None`` when transport security is disabled,
    ``True`` for defaults or a :class:`TlsOptions` for explicit material.
    """

    label: str
    topology: Topology
    username: str | None = None
    password: str | None = None
    database_index: int = 0
    host: str | None = None
    port: int | None = None
    path: str | None = None
    sentinels: tuple[Endpoint, ...] = ()
    sentinel_group_name: str | None = None
    sentinel_password: str | None = None
    sentinel_tls: TransportSecurity | None = None
    clusters: tuple[Endpoint, ...] = ()
    tls: TransportSecurity | None = None
    cluster_skip_certificate_validation: bool = False

    def __post_init__(self) -> None:
        if self.database_index < 0:
            raise ValueError("database index must not be negative")
        populated = {
            Topology.STANDALONE: self.host is not None,
            Topology.SOCKET: self.path is not None,
            Topology.SENTINEL: bool(self.sentinels),
            Topology.CLUSTER: bool(self.clusters),
        }
        if not populated[self.topology] or sum(populated.values()) != 1:
            raise ValueError(f"descriptor must only populate the {self.topology.value} fields")
        if self.topology in (Topology.SENTINEL, Topology.CLUSTER) and self.port is not None:
            raise ValueError(f"{self.topology.value} descriptors do not carry a port")
        if self.topology is Topology.CLUSTER and self.database_index != 0:
            raise ValueError("cluster descriptors only support database 0")

    def identity(self) -> tuple[object, ...]:
        """Fields deciding whether two descriptors name the same connection.

        Password, username, label and TLS settings are not part of it.
        """

        if self.topology is Topology.SOCKET:
            locator: tuple[object, ...] = (self.path,)
        elif self.topology is Topology.SENTINEL:
            locator = (self.sentinel_group_name, self.sentinels)
        elif self.topology is Topology.CLUSTER:
            locator = (self.clusters,)
        else:
            locator = (self.host, self.port)
        return (self.topology, *locator, self.database_index)

    def same_identity(self, other: TopologyDescriptor) -> bool:
        return self.identity() == other.identity()

    @property
    def connection_id(self) -> str:
        """Opaque, deterministic id derived from the identity fields."""

        if self.topology is Topology.SOCKET:
            return f"U:{self.path}:{self.database_index}"
        if self.topology is Topology.SENTINEL:
            endpoints = ",".join(str(endpoint) for endpoint in self.sentinels)
            return f"S:{self.sentinel_group_name}@{endpoints}:{self.database_index}"
        if self.topology is Topology.CLUSTER:
            endpoints = ",".join(str(endpoint) for endpoint in self.clusters)
            return f"C:{endpoints}:{self.database_index}"
        return f"R:{self.host}:{self.port}:{self.database_index}"

    @property
    def endpoints(self) -> tuple[Endpoint, ...]:
        if self.topology is Topology.SENTINEL:
            return self.sentinels
        if self.topology is Topology.CLUSTER:
            return self.clusters
        return ()

    def describe(self) -> str:
        """Human readable target used in log lines (never includes secrets)."""

        if self.topology is Topology.SOCKET:
            return f"{self.path}"
        if self.topology is Topology.STANDALONE:
            return f"{self.host}:{self.port}"
        joined = ", ".join(str(endpoint) for endpoint in self.endpoints)
        if self.topology is Topology.SENTINEL:
            return f"{self.sentinel_group_name} via {joined}"
        return joined

    def with_database(self, index: int) -> TopologyDescriptor:
        """Return a copy pointing at another logical database."""

        return replace(self, database_index=index)

    def summary(self) -> ConnectionSummary:
        return ConnectionSummary(
            connection_id=self.connection_id,
            label=self.label,
            topology=self.topology,
            server=self.describe(),
            database_index=self.database_index,
            tls=bool(self.tls),
        )


__all__ = [
    "ConnectionSummary",
    "DEFAULT_PORT",
    "Endpoint",
    "TlsOptions",
    "Topology",
    "TopologyDescriptor",
    "TransportSecurity",
]
