"""Widget library for the Textual UI."""

from __future__ import annotations

from .connection_sidebar import ConnectionSidebar
from .login_form import LoginForm
from .status_bar import StatusBar

__all__ = ["ConnectionSidebar", "LoginForm", "StatusBar"]
