"""Sidebar widget listing registered connections."""

from __future__ import annotations

from typing import Callable

from textual import on
from textual.app import ComposeResult
from textual.containers import Container
from textual.message import Message
from textual.widgets import Button, Label, ListItem, ListView, Static

from redisui.models import ConnectionSummary
from redisui.service import ConnectionService


class ConnectionSidebar(Container):
    """Shows live connections and lets the operator log out of one."""

    DEFAULT_CSS = """
    ConnectionSidebar {
        width: 34;
        min-width: 24;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    ConnectionSidebar .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    #connection-list {
        height: 1fr;
        border: round $primary 30%;
        margin-bottom: 1;
    }

    #connection-summary {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
        min-height: 4;
    }
    """

    class LogoutRequested(Message):
        """Posted when the operator asks to log out of a connection."""

        def __init__(self, connection_id: str) -> None:
            super().__init__()
            self.connection_id = connection_id

    def __init__(self, service: ConnectionService, *, width: int | None = None) -> None:
        super().__init__(id="connection-sidebar")
        self._service = service
        self._summaries: tuple[ConnectionSummary, ...] = ()
        self._list: ListView | None = None
        self._details: Static | None = None
        self._unsubscribe: Callable[[], None] | None = None
        if width:
            self.styles.width = width

    @property
    def summaries(self) -> tuple[ConnectionSummary, ...]:
        return self._summaries

    def compose(self) -> ComposeResult:
        yield Static("Connections", classes="sidebar-heading")
        self._list = ListView(id="connection-list")
        yield self._list
        self._details = Static("No connection selected.", id="connection-summary", markup=False)
        yield self._details
        yield Button("Logout", id="logout", variant="error")

    async def on_mount(self) -> None:
        self._unsubscribe = self._service.subscribe(self._handle_connections)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_connections(self, summaries: tuple[ConnectionSummary, ...]) -> None:
        self._summaries = summaries
        if self._list is None:
            return
        self._list.clear()
        for summary in summaries:
            self._list.append(_ConnectionListItem(summary))
        if not summaries and self._details is not None:
            self._details.update("No connection selected.")

    @on(ListView.Highlighted, "#connection-list")
    def _handle_highlighted(self, event: ListView.Highlighted) -> None:
        if self._details is None:
            return
        item = event.item
        if not isinstance(item, _ConnectionListItem):
            return
        summary = item.summary
        lines = [
            summary.label or summary.server,
            f"Type: {summary.topology.value}",
            f"Server: {summary.server}",
            f"Database: {summary.database_index}",
            f"TLS: {'on' if summary.tls else 'off'}",
        ]
        self._details.update("\n".join(lines))

    @on(Button.Pressed, "#logout")
    def _handle_logout(self, event: Button.Pressed) -> None:
        event.stop()
        if self._list is None:
            return
        item = self._list.highlighted_child
        if isinstance(item, _ConnectionListItem):
            self.post_message(self.LogoutRequested(item.summary.connection_id))


class _ConnectionListItem(ListItem):
    def __init__(self, summary: ConnectionSummary) -> None:
        super().__init__(Label(_item_label(summary), markup=False))
        self.summary = summary


def _item_label(summary: ConnectionSummary) -> str:
    name = summary.label or summary.server
    return f"{name} [db{summary.database_index}]"


__all__ = ["ConnectionSidebar"]
