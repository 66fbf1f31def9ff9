"""MCP server exposing the Codex CLI as tools."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import CallToolResult, Tool

from codexbridge import tool_handlers
from codexbridge.arguments import CODEX_TOOL, MAX_PAGE_SIZE, MIN_PAGE_SIZE
from codexbridge.command import resolve_callback_uri, resolve_model
from codexbridge.errors import ValidationError
from codexbridge.executor import CommandExecutor, ProgressCallback
from codexbridge.pagination import PageStore
from codexbridge.sessions import SessionStore
from codexbridge.tools import build_tools

server = Server("codexbridge")

logger = logging.getLogger("codexbridge")

DEFAULT_PAGE_SIZE = 40_000


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r; using %d", name, raw, default)
        return default


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


SESSION_TTL_MS = _env_int("CODEX_SESSION_TTL_MS", 3_600_000)
SESSION_MAX_BYTES = _env_int("CODEX_SESSION_MAX_BYTES", 400_000)
PAGE_TTL_MS = _env_int("CODEX_PAGE_TTL_MS", 600_000)
LEGACY_PAGINATION = _env_flag("CODEX_MCP_LEGACY_PAGINATION")
CODEX_EXECUTABLE = os.environ.get("CODEX_MCP_EXECUTABLE", "").strip() or "codex"
_ALLOWED_DIRS_ENV = os.environ.get("CODEX_MCP_ALLOWED_DIRS")
ALLOWED_DIRS = [
    os.path.realpath(path)
    for path in (_ALLOWED_DIRS_ENV.split(os.pathsep) if _ALLOWED_DIRS_ENV else [])
    if path
]

SESSIONS = SessionStore(ttl_seconds=SESSION_TTL_MS / 1000, max_bytes=SESSION_MAX_BYTES)
PAGES = PageStore(ttl_seconds=PAGE_TTL_MS / 1000)
SESSION_LOCKS = tool_handlers.SessionLocks()
EXECUTOR = CommandExecutor()


def _configure_logging() -> None:
    level = os.environ.get("CODEX_MCP_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _validate_allowed_dirs() -> None:
    for path in ALLOWED_DIRS:
        if not os.path.isdir(path):
            logger.warning("CODEX_MCP_ALLOWED_DIRS entry does not exist: %s", path)


def _validate_cwd(cwd: str | None) -> str | None:
    """Resolve ``workingDirectory`` and keep it inside ``ALLOWED_DIRS``."""
    if cwd is None:
        return None
    resolved = os.path.realpath(cwd)
    if not ALLOWED_DIRS:
        return resolved
    for allowed in ALLOWED_DIRS:
        allowed_real = os.path.realpath(allowed)
        if os.path.commonpath([resolved, allowed_real]) == allowed_real:
            return resolved
    raise ValidationError(
        CODEX_TOOL,
        "workingDirectory is not in CODEX_MCP_ALLOWED_DIRS",
        field="workingDirectory",
    )


def _default_page_size() -> int:
    value = _env_int("CODEX_PAGE_SIZE", DEFAULT_PAGE_SIZE)
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, value))


def _resolve_page_size(page_size: int | None) -> int:
    """Resolve page length: explicit > CODEX_PAGE_SIZE env > built-in default."""
    if page_size is not None:
        return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, page_size))
    return _default_page_size()


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Build MCP tool metadata."""
    return build_tools(default_page_size=_default_page_size())


def _build_tool_handler_deps() -> tool_handlers.ToolHandlerDeps:
    """Collect stores and configuration callbacks for protocol-layer dispatch."""
    return tool_handlers.ToolHandlerDeps(
        sessions=SESSIONS,
        pages=PAGES,
        executor=EXECUTOR,
        session_locks=SESSION_LOCKS,
        executable=CODEX_EXECUTABLE,
        resolve_model=resolve_model,
        resolve_page_size=_resolve_page_size,
        resolve_callback_uri=resolve_callback_uri,
        validate_cwd=_validate_cwd,
        legacy_page_token_item=LEGACY_PAGINATION,
    )


async def handle_tool(
    name: str,
    arguments: dict[str, Any] | None,
    progress: ProgressCallback | None = None,
) -> CallToolResult:
    """Dispatch a tool invocation with validation and stable error payloads.

    Separated from ``call_tool`` so tests can invoke tool logic without the
    MCP decorator.

    Args:
        name: MCP tool name (``codex``, ``list_sessions``, etc.).
        arguments: Tool argument payload from the MCP client.
        progress: Receives output chunks while the Codex CLI runs.
    """
    return await tool_handlers.handle_tool(
        name,
        arguments,
        deps=_build_tool_handler_deps(),
        logger=logger,
        progress=progress,
    )


def _progress_reporter() -> ProgressCallback | None:
    """Forward output chunks as progress notifications when the caller asked for them."""
    try:
        ctx = server.request_context
    except LookupError:
        return None
    token = ctx.meta.progressToken if ctx.meta else None
    if token is None:
        return None

    sent = 0

    async def report(chunk: str) -> None:
        nonlocal sent
        sent += 1
        await ctx.session.send_progress_notification(token, sent, message=chunk)

    return report


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> CallToolResult:
    """MCP tool handler -- delegates to ``handle_tool``."""
    progress = _progress_reporter() if name == CODEX_TOOL else None
    return await handle_tool(name, arguments, progress)


async def run() -> None:
    """Run the MCP server over stdio until the client disconnects."""
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def main() -> None:
    """CLI entry point that validates prerequisites then starts the server."""
    _configure_logging()
    _validate_allowed_dirs()
    from codexbridge import __version__

    logger.info("codexbridge %s starting (executable: %s)", __version__, CODEX_EXECUTABLE)
    if shutil.which(CODEX_EXECUTABLE) is None:
        print(
            f"Error: {CODEX_EXECUTABLE} CLI not found. Install: npm install -g @openai/codex",
            file=sys.stderr,
        )
        sys.exit(1)
    asyncio.run(run())


if __name__ == "__main__":
    main()
