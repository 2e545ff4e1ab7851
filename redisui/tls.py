"""TLS plumbing between descriptors and redis-py connection kwargs."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Mapping

from redis.asyncio.connection import SSLConnection

from .models import TlsOptions, TransportSecurity


class TlsFiles:
    """Private temp directory for client certificate/key PEM material.

    redis-py only accepts file paths for client certificates, so inline
    material is written here and removed by :meth:`cleanup`.
    """

    def __init__(self) -> None:
        self._directory: Path | None = None

    def write(self, name: str, content: str) -> str:
        if self._directory is None:
            # mkdtemp creates the directory with 0700
            self._directory = Path(tempfile.mkdtemp(prefix="redisui-tls-"))
        path = self._directory / name
        path.write_text(content)
        path.chmod(0o600)
        return str(path)

    def cleanup(self) -> None:
        if self._directory is not None:
            shutil.rmtree(self._directory, ignore_errors=True)
            self._directory = None


def tls_connection_kwargs(
    security: TransportSecurity | None,
    *,
    files: TlsFiles,
    prefix: str = "redis",
    skip_verification: bool = False,
) -> dict[str, object]:
    """Translate a TLS setting into ``redis.asyncio`` keyword arguments."""

    if not security:
        return {}
    kwargs: dict[str, object] = {
        "ssl": True,
        "ssl_cert_reqs": "none" if skip_verification else "required",
    }
    if skip_verification:
        kwargs["ssl_check_hostname"] = False
    if isinstance(security, TlsOptions):
        if security.certificate_authority:
            kwargs["ssl_ca_data"] = security.certificate_authority
        if security.client_certificate:
            kwargs["ssl_certfile"] = files.write(f"{prefix}-client.crt", security.client_certificate)
        if security.client_private_key:
            kwargs["ssl_keyfile"] = files.write(f"{prefix}-client.key", security.client_private_key)
    return kwargs


def server_name_of(security: TransportSecurity | None) -> str | None:
    if isinstance(security, TlsOptions):
        return security.server_name
    return None


class ServerNameSSLConnection(SSLConnection):
    """SSL connection that sends ``ssl_server_name`` as SNI and verifies against it."""

    def __init__(self, *, ssl_server_name: str | None = None, **kwargs: object) -> None:
        self.ssl_server_name = ssl_server_name
        super().__init__(**kwargs)

    def _connection_arguments(self) -> Mapping:
        kwargs = dict(super()._connection_arguments())
        if self.ssl_server_name:
            kwargs["server_hostname"] = self.ssl_server_name
        return kwargs


__all__ = ["ServerNameSSLConnection", "TlsFiles", "server_name_of", "tls_connection_kwargs"]
