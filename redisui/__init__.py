"""Terminal console for managing Redis connections."""

from __future__ import annotations

__version__ = "0.1.0"
