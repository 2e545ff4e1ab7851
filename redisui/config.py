"""App configuration loading helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Callable, Iterable

import tomllib

from pydantic import BaseModel, Field

from .connections import DEFAULT_COMMAND_TIMEOUT, DEFAULT_CONNECT_TIMEOUT
from .descriptors import ValidationError, parse_server_list
from .models import TlsOptions, Topology, TopologyDescriptor, TransportSecurity

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "redisui" / "config.toml"


class PersistenceError(RuntimeError):
    """Raised when the configuration cannot be written."""


class LayoutState(BaseModel):
    """Persisted layout hints for the TUI."""

    sidebar_width: int | None = None


class TlsConfig(BaseModel):
    """Explicit TLS material stored with a saved connection."""

    ca: str | None = None
    cert: str | None = None
    key: str | None = None
    server_name: str | None = None

    def to_options(self) -> TlsOptions:
        return TlsOptions(
            certificate_authority=self.ca,
            client_certificate=self.cert,
            client_private_key=self.key,
            server_name=self.server_name,
        )

    @classmethod
    def from_options(cls, options: TlsOptions) -> TlsConfig:
        return cls(
            ca=options.certificate_authority,
            cert=options.client_certificate,
            key=options.client_private_key,
            server_name=options.server_name,
        )


class SavedConnection(BaseModel):
    """Connection stored in config.toml and reconnected on startup."""

    label: str = ""
    topology: Topology = Topology.STANDALONE
    username: str | None = None
    password: str | None = None
    db_index: int = 0
    host: str | None = None
    port: int | None = None
    path: str | None = None
    sentinels: list[str] = Field(default_factory=list)
    sentinel_name: str | None = None
    sentinel_password: str | None = None
    sentinel_tls: bool | TlsConfig | None = None
    clusters: list[str] = Field(default_factory=list)
    tls: bool | TlsConfig | None = None
    cluster_no_tls_validation: bool = False

    @property
    def connection_id(self) -> str:
        return self.to_descriptor().connection_id

    def to_descriptor(self) -> TopologyDescriptor:
        """Rebuild the runtime descriptor; raises ``ValidationError`` when inconsistent."""

        fields: dict[str, object] = {
            "label": self.label,
            "topology": self.topology,
            "username": self.username,
            "password": self.password,
            "database_index": self.db_index,
            "tls": _security_from_config(self.tls),
            "cluster_skip_certificate_validation": self.cluster_no_tls_validation,
        }
        if self.topology is Topology.SENTINEL:
            fields["sentinels"] = parse_server_list("sentinels", ",".join(self.sentinels))
            fields["sentinel_group_name"] = self.sentinel_name
            fields["sentinel_password"] = self.sentinel_password
            fields["sentinel_tls"] = _security_from_config(self.sentinel_tls)
        elif self.topology is Topology.CLUSTER:
            fields["clusters"] = parse_server_list("clusters", ",".join(self.clusters))
        elif self.topology is Topology.SOCKET:
            fields["path"] = self.path
        else:
            fields["host"] = self.host
            fields["port"] = self.port
        try:
            return TopologyDescriptor(**fields)  # type: ignore[arg-type]
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    @classmethod
    def from_descriptor(cls, descriptor: TopologyDescriptor) -> SavedConnection:
        return cls(
            label=descriptor.label,
            topology=descriptor.topology,
            username=descriptor.username,
            password=descriptor.password,
            db_index=descriptor.database_index,
            host=descriptor.host,
            port=descriptor.port,
            path=descriptor.path,
            sentinels=[str(endpoint) for endpoint in descriptor.sentinels],
            sentinel_name=descriptor.sentinel_group_name,
            sentinel_password=descriptor.sentinel_password,
            sentinel_tls=_security_to_config(descriptor.sentinel_tls),
            clusters=[str(endpoint) for endpoint in descriptor.clusters],
            tls=_security_to_config(descriptor.tls),
            cluster_no_tls_validation=descriptor.cluster_skip_certificate_validation,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    connections: list[SavedConnection] = Field(default_factory=list)
    layout: LayoutState = Field(default_factory=LayoutState)

    def with_connections(self, connections: Iterable[SavedConnection]) -> AppConfig:
        """Return a copy with the saved connection list replaced."""

        return self.model_copy(update={"connections": list(connections)})

    def with_layout(self, **updates: object) -> AppConfig:
        """Return a copy with layout state changes applied."""

        layout = self.layout.model_copy(update=updates)
        return self.model_copy(update={"layout": layout})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file %s", CONFIG_FILE, exc_info=True)
        return AppConfig()
    return AppConfig(**data)


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"theme = {_toml_str(config.theme)}",
        f"connect_timeout = {config.connect_timeout}",
        f"command_timeout = {config.command_timeout}",
    ]
    if config.layout.sidebar_width is not None:
        lines.append("")
        lines.append("[layout]")
        lines.append(f"sidebar_width = {config.layout.sidebar_width}")
    for connection in config.connections:
        lines.append("")
        lines.extend(_connection_lines(connection))
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


class ConfigStore:
    """Persistence handle for the saved connection list.

    Holds the current :class:`AppConfig`; ``replace`` writes a new copy and
    only adopts it once the write succeeded.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        saver: Callable[[AppConfig], None] = save_config,
    ) -> None:
        self._config = config if config is not None else AppConfig()
        self._saver = saver

    @property
    def config(self) -> AppConfig:
        return self._config

    def read(self) -> tuple[SavedConnection, ...]:
        return tuple(self._config.connections)

    def replace(self, connections: Iterable[SavedConnection]) -> None:
        updated = self._config.with_connections(connections)
        self._save(updated)

    def update_layout(self, **updates: object) -> None:
        self._save(self._config.with_layout(**updates))

    def _save(self, config: AppConfig) -> None:
        try:
            self._saver(config)
        except OSError as exc:
            raise PersistenceError(f"Could not save configuration: {exc}") from exc
        self._config = config


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    theme = raw.get("theme")
    if isinstance(theme, str):
        data["theme"] = theme
    for key in ("connect_timeout", "command_timeout"):
        value = raw.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
            data[key] = float(value)
    connections = raw.get("connections")
    if isinstance(connections, list):
        parsed: list[SavedConnection] = []
        for entry in connections:
            if not isinstance(entry, dict):
                continue
            try:
                connection = SavedConnection(**entry)
                connection.to_descriptor()
            except (ValueError, TypeError):
                LOG.warning("Skipping invalid saved connection %r", entry.get("label"))
                continue
            parsed.append(connection)
        data["connections"] = parsed
    layout = raw.get("layout")
    if isinstance(layout, dict):
        state: dict[str, object] = {}
        sidebar_width = layout.get("sidebar_width")
        if isinstance(sidebar_width, int):
            state["sidebar_width"] = sidebar_width
        data["layout"] = LayoutState(**state)
    return data


def _connection_lines(connection: SavedConnection) -> list[str]:
    lines = ["[[connections]]", f"label = {_toml_str(connection.label)}", f"topology = {_toml_str(connection.topology.value)}"]
    for key in ("username", "password", "host", "path", "sentinel_name", "sentinel_password"):
        value = getattr(connection, key)
        if value is not None:
            lines.append(f"{key} = {_toml_str(value)}")
    if connection.port is not None:
        lines.append(f"port = {connection.port}")
    lines.append(f"db_index = {connection.db_index}")
    if connection.sentinels:
        lines.append(f"sentinels = [{', '.join(_toml_str(item) for item in connection.sentinels)}]")
    if connection.clusters:
        lines.append(f"clusters = [{', '.join(_toml_str(item) for item in connection.clusters)}]")
    if connection.cluster_no_tls_validation:
        lines.append("cluster_no_tls_validation = true")
    tables: list[str] = []
    for key in ("tls", "sentinel_tls"):
        value = getattr(connection, key)
        if isinstance(value, bool):
            lines.append(f"{key} = {str(value).lower()}")
        elif isinstance(value, TlsConfig):
            tables.append(f"[connections.{key}]")
            for name, item in value.model_dump(exclude_none=True).items():
                tables.append(f"{name} = {_toml_str(item)}")
    return lines + tables


def _toml_str(value: str) -> str:
    # JSON string escapes are valid TOML basic-string escapes
    return json.dumps(value, ensure_ascii=False)


def _security_from_config(value: bool | TlsConfig | None) -> TransportSecurity | None:
    if isinstance(value, TlsConfig):
        return value.to_options()
    return True if value else None


def _security_to_config(value: TransportSecurity | None) -> bool | TlsConfig | None:
    if isinstance(value, TlsOptions):
        return TlsConfig.from_options(value)
    return True if value else None


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "ConfigStore",
    "LayoutState",
    "PersistenceError",
    "SavedConnection",
    "TlsConfig",
    "load_config",
    "save_config",
]
