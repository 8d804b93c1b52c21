"""contenant - Run Claude Code in an isolated, firewalled container."""

from __future__ import annotations

__version__ = "0.3.0"
