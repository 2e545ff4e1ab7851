"""Textual application entry point for redisui."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Mapping, Sequence

from textual import on
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Footer, Header

from .config import AppConfig, ConfigStore, PersistenceError, load_config
from .connections import HandleFactory
from .registry import NotFoundError
from .service import DUPLICATE_MESSAGE, ConnectionService, Response
from .widgets import ConnectionSidebar, LoginForm, StatusBar

LOG = logging.getLogger(__name__)

DEFAULT_SIDEBAR_WIDTH = 34
MIN_SIDEBAR_WIDTH = 20
MAX_SIDEBAR_WIDTH = 64
SIDEBAR_STEP = 4


def _load_app_config() -> AppConfig:
    """Load configuration with a small wrapper for test overrides."""

    return load_config()


class RedisuiApp(App[None]):
    """Operator console: log in, detect databases and log out of Redis servers."""

    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        padding: 1 2;
        height: 1fr;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+o", "connect", "Connect"),
        ("ctrl+t", "detect", "Detect Databases"),
        ("ctrl+left", "narrow_sidebar", "Narrow Sidebar"),
        ("ctrl+right", "widen_sidebar", "Widen Sidebar"),
    ]

    def __init__(self, *, handle_factory: HandleFactory | None = None, restore: bool = True) -> None:
        super().__init__()
        self._config = _load_app_config()
        self._store = ConfigStore(self._config)
        self._service = ConnectionService(self._store, handle_factory=handle_factory)
        self._restore_on_mount = restore
        self._pending_notifications: list[tuple[str, str]] = []
        self._sidebar: ConnectionSidebar | None = None
        self._login_form: LoginForm | None = None
        self._status_bar: StatusBar | None = None
        self._sidebar_width = self._config.layout.sidebar_width or DEFAULT_SIDEBAR_WIDTH

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        self._sidebar = ConnectionSidebar(self._service, width=self._sidebar_width)
        self._login_form = LoginForm()
        yield Horizontal(self._sidebar, Container(self._login_form, id="main-column"), id="content")
        self._status_bar = StatusBar(self._service)
        yield self._status_bar
        yield Footer()

    async def on_mount(self) -> None:
        self._flush_pending_notifications()
        if self._restore_on_mount and self._store.read():
            self.run_worker(self.restore_connections(), group="restore", exit_on_error=False)

    @property
    def service(self) -> ConnectionService:
        """Expose the connection service for tests."""

        return self._service

    @property
    def sidebar_width(self) -> int:
        return self._sidebar_width

    async def submit_login(self, fields: Mapping[str, object]) -> Response:
        """Log in with the given request fields and report the outcome."""

        try:
            response = await self._service.login(fields)
        except PersistenceError as exc:
            LOG.exception("Failed to persist connection")
            self._report(str(exc), severity="error")
            return {"ok": False, "message": str(exc)}
        if not response.get("ok"):
            self._report(str(response.get("message")), severity="error")
        elif response.get("message") == DUPLICATE_MESSAGE:
            self._report(DUPLICATE_MESSAGE.capitalize() + ".", severity="warning")
        else:
            self._report(f"Connected {fields.get('label') or fields.get('hostname') or 'server'}.")
        return response

    async def detect_databases(self, fields: Mapping[str, object]) -> Response:
        """Probe the server in ``fields`` and show which databases hold keys."""

        response = await self._service.detect_databases(fields)
        if self._login_form is not None and self._login_form.is_mounted:
            self._login_form.show_probe_result(response)
        if response.get("ok"):
            self._report(f"Detected databases on {response.get('server')}.")
        else:
            self._report(str(response.get("message")), severity="error")
        return response

    async def logout(self, connection_id: str) -> bool:
        """Log out of ``connection_id``; returns whether it succeeded."""

        try:
            await self._service.logout(connection_id)
        except NotFoundError as exc:
            self._report(str(exc), severity="warning")
            return False
        except PersistenceError as exc:
            LOG.exception("Failed to persist logout", extra={"connection_id": connection_id})
            self._report(str(exc), severity="error")
            return False
        self._report(f"Logged out {connection_id}.")
        return True

    async def restore_connections(self) -> None:
        restored = await self._service.restore()
        missing = len(self._store.read()) - len(restored)
        if missing > 0:
            self._report(f"{missing} saved connection(s) could not be restored.", severity="warning")
        elif restored:
            self._report(f"Restored {len(restored)} saved connection(s).")

    def remember_sidebar_width(self, width: int) -> None:
        """Persist the sidebar width when it changes."""

        self._sidebar_width = width
        if self._sidebar is not None:
            self._sidebar.styles.width = width
        if self._config.layout.sidebar_width == width:
            return
        try:
            self._store.update_layout(sidebar_width=width)
        except PersistenceError:
            LOG.warning("Could not save sidebar width", exc_info=True)
            return
        self._config = self._store.config

    def action_connect(self) -> None:
        if self._login_form is not None:
            self.run_worker(self.submit_login(self._login_form.fields()), group="login", exit_on_error=False)

    def action_detect(self) -> None:
        if self._login_form is not None:
            self.run_worker(self.detect_databases(self._login_form.fields()), group="detect", exit_on_error=False)

    def action_widen_sidebar(self) -> None:
        self.remember_sidebar_width(min(MAX_SIDEBAR_WIDTH, self._sidebar_width + SIDEBAR_STEP))

    def action_narrow_sidebar(self) -> None:
        self.remember_sidebar_width(max(MIN_SIDEBAR_WIDTH, self._sidebar_width - SIDEBAR_STEP))

    @on(LoginForm.LoginRequested)
    def _handle_login_requested(self, message: LoginForm.LoginRequested) -> None:
        self.run_worker(self.submit_login(message.fields), group="login", exit_on_error=False)

    @on(LoginForm.DetectRequested)
    def _handle_detect_requested(self, message: LoginForm.DetectRequested) -> None:
        self.run_worker(self.detect_databases(message.fields), group="detect", exit_on_error=False)

    @on(ConnectionSidebar.LogoutRequested)
    def _handle_logout_requested(self, message: ConnectionSidebar.LogoutRequested) -> None:
        self.run_worker(self.logout(message.connection_id), group="logout", exit_on_error=False)

    async def _shutdown(self) -> None:
        await self._service.shutdown()
        await super()._shutdown()

    def _report(self, message: str, *, severity: str = "information") -> None:
        if self._status_bar is not None and self._status_bar.is_mounted:
            self._status_bar.report(message)
        self._safe_notify(message, severity=severity)

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display notification", extra={"message": message})
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(message, severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"message": message})


def _configure_logging(level: str, log_file: Path | None) -> None:
    options: dict[str, object] = {
        "level": level.upper(),
        "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
    }
    if log_file is not None:
        options["filename"] = str(log_file)
    else:
        # the terminal belongs to Textual
        options["handlers"] = [logging.NullHandler()]
    logging.basicConfig(**options)  # type: ignore[arg-type]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="redisui", description="Terminal console for Redis connections.")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: %(default)s).")
    parser.add_argument("--log-file", type=Path, help="Write logs to this file.")
    parser.add_argument(
        "--no-restore",
        action="store_true",
        help="Do not reconnect saved connections on startup.",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Invoke the Textual application."""

    args = build_parser().parse_args(argv)
    _configure_logging(args.log_level, args.log_file)
    RedisuiApp(restore=not args.no_restore).run()


if __name__ == "__main__":
    main()
