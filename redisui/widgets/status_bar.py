"""Status bar widget that mirrors the connection registry."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from textual.widgets import Static

from redisui.models import ConnectionSummary
from redisui.service import ConnectionService


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, service: ConnectionService) -> None:
        super().__init__("", id="status-bar", markup=False)
        self._service = service
        self._summaries: tuple[ConnectionSummary, ...] = ()
        self._last_event: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._service.subscribe(self._handle_connections)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def report(self, message: str) -> None:
        """Show the outcome of the latest operator action."""

        stamp = datetime.now().strftime("%H:%M:%S")
        self._last_event = f"{stamp} {message.splitlines()[0][:80]}" if message else None
        self._render_status()

    def _handle_connections(self, summaries: tuple[ConnectionSummary, ...]) -> None:
        self._summaries = summaries
        self._render_status()

    def _render_status(self) -> None:
        topologies = sorted({summary.topology.value for summary in self._summaries})
        parts = [f"Connections: {len(self._summaries)}"]
        if topologies:
            parts.append(f"Types: {', '.join(topologies)}")
        if self._last_event:
            parts.append(f"Last: {self._last_event}")
        self.update(" | ".join(parts))


__all__ = ["StatusBar"]
