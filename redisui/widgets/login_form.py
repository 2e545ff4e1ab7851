"""Form collecting login request fields."""

from __future__ import annotations

from textual import on
from textual.app import ComposeResult
from textual.containers import Horizontal, VerticalScroll
from textual.message import Message
from textual.widgets import Button, Checkbox, Input, Label, Select, Static

from redisui.service import Response

# (field, title, options, default)
_SELECT_FIELDS: tuple[tuple[str, str, tuple[tuple[str, str], ...], str], ...] = (
    (
        "serverType",
        "Server type",
        (("Standalone / unix socket", "standalone"), ("Sentinel", "sentinel"), ("Cluster", "cluster")),
        "standalone",
    ),
    ("redisTLS", "TLS", (("Off", "no"), ("Default settings", "yes"), ("Custom", "custom")), "no"),
    (
        "sentinelPWType",
        "Sentinel password",
        (("Separate sentinel password", "sentinel"), ("Same as Redis password", "redis")),
        "sentinel",
    ),
    ("sentinelTLS", "Sentinel TLS", (("Off", "no"), ("Default settings", "yes"), ("Custom", "custom")), "no"),
)

# (field, title, masked)
_TEXT_FIELDS: tuple[tuple[str, str, bool], ...] = (
    ("label", "Label", False),
    ("hostname", "Hostname or socket path", False),
    ("port", "Port", False),
    ("username", "Username", False),
    ("password", "Password", True),
    ("dbIndex", "Database index", False),
    ("sentinels", "Sentinels (host:port, ...)", False),
    ("sentinelName", "Sentinel group name", False),
    ("sentinelPassword", "Sentinel password", True),
    ("clusters", "Cluster nodes (host:port, ...)", False),
    ("redisTLSCA", "TLS CA certificate (PEM, \\n for newlines)", False),
    ("redisTLSPublicKey", "TLS client certificate (PEM)", False),
    ("redisTLSPrivateKey", "TLS client key (PEM)", True),
    ("redisTLSServerName", "TLS server name", False),
    ("sentinelTLSCA", "Sentinel TLS CA certificate (PEM)", False),
    ("sentinelTLSPublicKey", "Sentinel TLS client certificate (PEM)", False),
    ("sentinelTLSPrivateKey", "Sentinel TLS client key (PEM)", True),
    ("sentinelTLSServerName", "Sentinel TLS server name", False),
)

_DEFAULTS = {"label": "local", "hostname": "localhost", "port": "6379", "dbIndex": "0"}


class LoginForm(VerticalScroll):
    """Inputs mirror the login request body so values pass through unchanged."""

    DEFAULT_CSS = """
    LoginForm {
        height: 1fr;
        padding: 0 1;
    }

    LoginForm .form-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    #form-actions {
        height: auto;
        margin-top: 1;
    }

    #probe-result {
        margin-top: 1;
        color: $text-muted;
    }
    """

    class LoginRequested(Message):
        def __init__(self, fields: dict[str, object]) -> None:
            super().__init__()
            self.fields = fields

    class DetectRequested(Message):
        def __init__(self, fields: dict[str, object]) -> None:
            super().__init__()
            self.fields = fields

    def __init__(self) -> None:
        super().__init__(id="login-form")

    def compose(self) -> ComposeResult:
        yield Static("New connection", classes="form-heading")
        for name, title, options, default in _SELECT_FIELDS:
            yield Label(title)
            yield Select(options, value=default, allow_blank=False, id=f"field-{name}")
        for name, title, masked in _TEXT_FIELDS:
            yield Label(title)
            yield Input(value=_DEFAULTS.get(name, ""), password=masked, id=f"field-{name}")
        yield Checkbox("Skip TLS certificate validation", id="field-clusterNoTlsValidation")
        with Horizontal(id="form-actions"):
            yield Button("Detect databases", id="detect")
            yield Button("Connect", id="connect", variant="primary")
        yield Static("", id="probe-result", markup=False)

    def fields(self) -> dict[str, object]:
        """Current values in login request shape; empty inputs are omitted."""

        values: dict[str, object] = {}
        for name, *_ in _SELECT_FIELDS:
            values[name] = self.query_one(f"#field-{name}", Select).value
        for name, *_ in _TEXT_FIELDS:
            value = self.query_one(f"#field-{name}", Input).value
            if value:
                values[name] = value
        if self.query_one("#field-clusterNoTlsValidation", Checkbox).value:
            values["clusterNoTlsValidation"] = "on"
        return values

    def show_probe_result(self, response: Response) -> None:
        target = self.query_one("#probe-result", Static)
        if not response.get("ok"):
            target.update(f"Detection failed: {response.get('message', 'unknown error')}")
            return
        dbs = response.get("dbs") or {}
        used = dbs.get("used", []) if isinstance(dbs, dict) else []
        lines = [f"{response.get('server')}: {dbs.get('max') if isinstance(dbs, dict) else '?'} databases"]
        for usage in used:
            lines.append(f"  db{usage['dbIndex']}: {usage['keys']} keys")
        if not used:
            lines.append("  no database holds keys")
        target.update("\n".join(lines))

    @on(Button.Pressed, "#connect")
    def _handle_connect(self, event: Button.Pressed) -> None:
        event.stop()
        self.post_message(self.LoginRequested(self.fields()))

    @on(Button.Pressed, "#detect")
    def _handle_detect(self, event: Button.Pressed) -> None:
        event.stop()
        self.post_message(self.DetectRequested(self.fields()))


__all__ = ["LoginForm"]
