"""Turn raw login form fields into validated connection descriptors."""

from __future__ import annotations

from typing import Mapping

from .models import DEFAULT_PORT, Endpoint, TlsOptions, Topology, TopologyDescriptor, TransportSecurity


class ValidationError(ValueError):
    """Raised when login fields cannot be turned into a descriptor."""


def unescape_newlines(value: str) -> str:
    """Replace literal ``\\n`` sequences (as sent by web forms) with newlines."""

    return value.replace("\\n", "\n")


def parse_port(value: object, *, field: str = "port") -> int:
    """Parse a TCP port given as int or numeric string."""

    if isinstance(value, bool):
        raise ValidationError(f"invalid {field}: {value!r}")
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"invalid {field}: {value!r}") from None
    if not 0 < port < 65536:
        raise ValidationError(f"invalid {field}: {value!r}")
    return port


def parse_database_index(value: object) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValidationError("invalid database index")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("invalid database index")
        value = int(value)
    try:
        index = int(str(value).strip())
    except ValueError:
        raise ValidationError("invalid database index") from None
    if index < 0:
        raise ValidationError("invalid database index")
    return index


def parse_server_list(field: str, value: object) -> tuple[Endpoint, ...]:
    """Parse a comma separated ``host:port`` list such as ``a:26379, b:26379``.

    IPv6 hosts must be bracketed (``[::1]:26379``).
    """

    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field}: list of servers is missing")
    endpoints: list[Endpoint] = []
    for raw in value.split(","):
        entry = raw.strip()
        host, sep, port = entry.rpartition(":")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        if not sep or not host:
            raise ValidationError(f"{field}: invalid server entry '{entry}', expected host:port")
        endpoints.append(Endpoint(host=host, port=parse_port(port, field=f"{field} port")))
    return tuple(endpoints)


def resolve_sentinel_group_name(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("sentinel group name is missing")
    return value.strip()


def resolve_transport_security(
    mode: object,
    *,
    certificate_authority: object = None,
    client_certificate: object = None,
    client_private_key: object = None,
    server_name: object = None,
) -> TransportSecurity | None:
    """Map a ``yes``/``custom`` selector to the TLS configuration variant.

    Only supplied (non-empty) sub-fields end up in the custom variant.
    """

    if mode == "yes":
        return True
    if mode != "custom":
        return None
    return TlsOptions(
        certificate_authority=_pem(certificate_authority),
        client_certificate=_pem(client_certificate),
        client_private_key=_pem(client_private_key),
        server_name=_text(server_name),
    )


class DescriptorBuilder:
    """Builds :class:`TopologyDescriptor` objects from login request bodies.

    Field names follow the login request body: ``label``, ``serverType``,
    ``hostname``, ``port``, ``username``, ``password``, ``dbIndex``,
    ``sentinels``, ``sentinelName``, ``sentinelPWType``, ``sentinelPassword``,
    ``sentinelTLS*``, ``clusters``, ``redisTLS*`` and the presence flag
    ``clusterNoTlsValidation``.
    """

    def build(self, fields: Mapping[str, object]) -> TopologyDescriptor:
        database_index = parse_database_index(fields.get("dbIndex"))
        common: dict[str, object] = {
            "label": _text(fields.get("label")) or "",
            "username": _text(fields.get("username")),
            "password": _secret(fields.get("password")),
            "database_index": database_index,
        }
        common.update(self._primary_tls(fields))

        server_type = fields.get("serverType")
        if server_type == "sentinel":
            return TopologyDescriptor(
                topology=Topology.SENTINEL,
                sentinels=parse_server_list("sentinels", fields.get("sentinels")),
                sentinel_group_name=resolve_sentinel_group_name(fields.get("sentinelName")),
                sentinel_password=self._sentinel_password(fields),
                sentinel_tls=resolve_transport_security(
                    fields.get("sentinelTLS"),
                    certificate_authority=fields.get("sentinelTLSCA"),
                    client_certificate=fields.get("sentinelTLSPublicKey"),
                    client_private_key=fields.get("sentinelTLSPrivateKey"),
                    server_name=fields.get("sentinelTLSServerName"),
                ),
                **common,
            )
        if server_type == "cluster":
            if database_index != 0:
                raise ValidationError("cluster connections only support database 0")
            return TopologyDescriptor(
                topology=Topology.CLUSTER,
                clusters=parse_server_list("clusters", fields.get("clusters")),
                **common,
            )

        hostname = fields.get("hostname")
        if isinstance(hostname, str) and hostname.strip():
            hostname = hostname.strip()
            if hostname.startswith("/"):
                return TopologyDescriptor(topology=Topology.SOCKET, path=hostname, **common)
            port = fields.get("port")
            return TopologyDescriptor(
                topology=Topology.STANDALONE,
                host=hostname,
                port=DEFAULT_PORT if port in (None, "") else parse_port(port),
                **common,
            )
        raise ValidationError("invalid or missing hostname or socket path")

    @staticmethod
    def _sentinel_password(fields: Mapping[str, object]) -> str | None:
        selector = fields.get("sentinelPWType")
        if selector == "sentinel":
            return _secret(fields.get("sentinelPassword"))
        if selector == "redis":
            return _secret(fields.get("password"))
        return None

    @staticmethod
    def _primary_tls(fields: Mapping[str, object]) -> dict[str, object]:
        tls = resolve_transport_security(
            fields.get("redisTLS"),
            certificate_authority=fields.get("redisTLSCA"),
            client_certificate=fields.get("redisTLSPublicKey"),
            client_private_key=fields.get("redisTLSPrivateKey"),
            server_name=fields.get("redisTLSServerName"),
        )
        if tls is None:
            return {}
        # checkbox: only sent by forms when ticked
        return {"tls": tls, "cluster_skip_certificate_validation": "clusterNoTlsValidation" in fields}


def _text(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _secret(value: object) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def _pem(value: object) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    return unescape_newlines(value)


__all__ = [
    "DescriptorBuilder",
    "ValidationError",
    "parse_database_index",
    "parse_port",
    "parse_server_list",
    "resolve_sentinel_group_name",
    "resolve_transport_security",
    "unescape_newlines",
]
