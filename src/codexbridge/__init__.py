"""MCP server bridging MCP clients to the OpenAI Codex CLI."""

from __future__ import annotations

__version__ = "0.1.0"

from .server import main, run, server

__all__ = ["__version__", "main", "run", "server"]
