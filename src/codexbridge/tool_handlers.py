"""MCP protocol-layer tool dispatch and the Codex request lifecycle."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from mcp.types import CallToolResult, TextContent

from codexbridge.arguments import (
    CODEX_TOOL,
    HELP_TOOL,
    LIST_SESSIONS_TOOL,
    PING_TOOL,
    SESSION_STATUS_TOOL,
    CodexArguments,
    check_reasoning_effort,
    parse_codex_arguments,
    parse_no_arguments,
    parse_ping_arguments,
    parse_session_status_arguments,
)
from codexbridge.command import (
    build_context_prompt,
    build_invocation,
    extract_conversation_id,
    extract_thread_id,
)
from codexbridge.errors import ToolExecutionError, ValidationError, format_error
from codexbridge.executor import CommandResult, ProgressCallback
from codexbridge.pagination import PageStore
from codexbridge.sessions import SessionStore, Turn
from codexbridge.telemetry import generate_request_id, trace_span
from codexbridge.usage import (
    find_latest_rollout,
    find_rollout_file,
    format_usage_status,
    read_usage_status,
)

NO_OUTPUT_TEXT = "No output from Codex"
EXPIRED_PAGE_TEXT = "No data found for pageToken (it may have expired)."
NO_SESSIONS_TEXT = "No active sessions."
NO_HELP_TEXT = "No help information available"
NO_USAGE_TEXT = "No token usage information found for this session."


class Executor(Protocol):
    async def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult: ...

    async def run_streamed(
        self,
        executable: str,
        args: Sequence[str],
        on_progress: ProgressCallback,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult: ...


class SessionLocks:
    """Per-session ``asyncio.Lock`` registry.

    Calls sharing a session id run one at a time so the second call sees the
    conversation handle attached by the first. Locks are dropped once no call
    holds or waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, session_id: str | None) -> AsyncIterator[None]:
        if session_id is None:
            yield
            return
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._holders[session_id] = self._holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[session_id] -= 1
            if not self._holders[session_id]:
                del self._holders[session_id]
                del self._locks[session_id]


@dataclass(frozen=True)
class ToolHandlerDeps:
    """Stores, executor and configuration callbacks from the server layer."""

    sessions: SessionStore
    pages: PageStore
    executor: Executor
    session_locks: SessionLocks
    executable: str
    resolve_model: Callable[[str | None], str]
    resolve_page_size: Callable[[int | None], int]
    resolve_callback_uri: Callable[[str | None], str | None]
    validate_cwd: Callable[[str | None], str | None]
    legacy_page_token_item: bool = False
    usage_root: Path | None = None


def text_result(
    text: str,
    meta: dict[str, Any] | None = None,
    *,
    legacy_page_token_item: bool = False,
) -> CallToolResult:
    """Build a text result carrying ``meta`` inline and as structured content."""
    item: dict[str, Any] = {"type": "text", "text": text}
    payload: dict[str, Any] = {"content": [item]}
    if meta:
        item["_meta"] = dict(meta)
        payload["structuredContent"] = dict(meta)
        payload["_meta"] = dict(meta)
        token = meta.get("nextPageToken")
        if token and legacy_page_token_item:
            payload["content"].append(
                {"type": "text", "text": json.dumps({"nextPageToken": token})}
            )
    return CallToolResult.model_validate(payload)


def json_text(payload: Any) -> CallToolResult:
    """Serialize payload into the MCP text transport format."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(payload, ensure_ascii=True))]
    )


def error_result(message: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=message)], isError=True)


def _next_page(
    page_token: str,
    page_len: int,
    deps: ToolHandlerDeps,
) -> CallToolResult:
    remaining = deps.pages.peek(page_token)
    if remaining is None:
        return text_result(EXPIRED_PAGE_TEXT)
    head = remaining[:page_len]
    # Advance in place; the token stays stable for retries.
    deps.pages.advance(page_token, len(head))
    meta = {"nextPageToken": page_token} if len(remaining) > len(head) else None
    return text_result(head, meta, legacy_page_token_item=deps.legacy_page_token_item)


async def _execute_codex(
    args: CodexArguments,
    prompt: str,
    model: str,
    page_len: int,
    working_directory: str | None,
    callback_uri: str | None,
    *,
    deps: ToolHandlerDeps,
    logger: logging.Logger,
    progress: ProgressCallback | None,
) -> CallToolResult:
    sessions = deps.sessions
    session_id = args.session_id
    conversation_id: str | None = None
    effective_prompt = prompt

    if session_id:
        session = sessions.ensure(session_id)
        if args.reset_session:
            sessions.reset(session_id)
        conversation_id = session.conversation_id
        if conversation_id is None:
            effective_prompt = build_context_prompt(session.turns, prompt)

    invocation = build_invocation(
        args,
        effective_prompt,
        model,
        conversation_id=conversation_id,
        callback_uri=callback_uri,
        working_directory=working_directory,
    )
    if invocation.is_resume and (args.sandbox or args.full_auto or working_directory):
        logger.debug("sandbox/fullAuto/workingDirectory are not applied when resuming")

    env = invocation.env or None
    if progress is not None:
        result = await deps.executor.run_streamed(
            deps.executable, invocation.args, progress, env=env
        )
    else:
        result = await deps.executor.run(deps.executable, invocation.args, env=env)

    output = result.stdout or result.stderr or NO_OUTPUT_TEXT
    thread_id = extract_thread_id(f"{result.stderr}\n{result.stdout}")

    if session_id:
        sessions.ensure(session_id)
        if not invocation.is_resume:
            discovered = extract_conversation_id(result.stderr)
            if discovered:
                sessions.set_conversation_id(session_id, discovered)
                logger.info("Session %s bound to conversation %s", session_id, discovered)
        # Full output, not the returned page, so later context is complete.
        sessions.add_turn(session_id, Turn(prompt=prompt, response=output, timestamp=time.time()))

    text = output
    next_page_token: str | None = None
    if len(output) > page_len:
        text = output[:page_len]
        next_page_token = deps.pages.save(output[page_len:])

    meta: dict[str, Any] = {"model": model}
    if session_id:
        meta["sessionId"] = session_id
    if thread_id:
        meta["threadId"] = thread_id
    if callback_uri:
        meta["callbackUri"] = callback_uri
    if next_page_token:
        meta["nextPageToken"] = next_page_token
    return text_result(text, meta, legacy_page_token_item=deps.legacy_page_token_item)


async def run_codex(
    arguments: Any,
    *,
    deps: ToolHandlerDeps,
    logger: logging.Logger,
    progress: ProgressCallback | None = None,
) -> CallToolResult:
    """Run one ``codex`` tool call from validation to response assembly.

    Raises:
        ValidationError: Before any store mutation or subprocess spawn.
        ToolExecutionError: Wrapping any later failure as ``__cause__``.
    """
    args = parse_codex_arguments(arguments)
    page_len = deps.resolve_page_size(args.page_size)

    if args.page_token is not None:
        if args.session_id and args.reset_session:
            deps.sessions.ensure(args.session_id)
            deps.sessions.reset(args.session_id)
        return _next_page(args.page_token, page_len, deps)

    model = deps.resolve_model(args.model)
    check_reasoning_effort(model, args.reasoning_effort)
    working_directory = deps.validate_cwd(args.working_directory)
    callback_uri = deps.resolve_callback_uri(args.callback_uri)

    try:
        async with deps.session_locks.hold(args.session_id):
            return await _execute_codex(
                args,
                args.prompt or "",
                model,
                page_len,
                working_directory,
                callback_uri,
                deps=deps,
                logger=logger,
                progress=progress,
            )
    except Exception as exc:
        logger.error("codex call failed: %s", exc)
        raise ToolExecutionError(CODEX_TOOL, "Failed to execute codex command") from exc


def _list_sessions(arguments: Any, deps: ToolHandlerDeps) -> CallToolResult:
    parse_no_arguments(LIST_SESSIONS_TOOL, arguments)
    summaries = deps.sessions.list_sessions()
    if not summaries:
        return text_result(NO_SESSIONS_TEXT)
    return json_text([summary.to_dict() for summary in summaries])


async def _help(arguments: Any, deps: ToolHandlerDeps) -> CallToolResult:
    parse_no_arguments(HELP_TOOL, arguments)
    try:
        result = await deps.executor.run(deps.executable, ["--help"])
    except Exception as exc:
        raise ToolExecutionError(HELP_TOOL, "Failed to execute help command") from exc
    return text_result(result.stdout or NO_HELP_TEXT)


async def _session_status(arguments: Any, deps: ToolHandlerDeps) -> CallToolResult:
    session_id = parse_session_status_arguments(arguments)
    conversation_id = deps.sessions.get_conversation_id(session_id) if session_id else None

    def lookup() -> str:
        if conversation_id:
            path = find_rollout_file(conversation_id, deps.usage_root)
        else:
            path = find_latest_rollout(deps.usage_root)
        status = read_usage_status(path) if path else None
        return format_usage_status(status) if status else NO_USAGE_TEXT

    try:
        text = await asyncio.to_thread(lookup)
    except Exception as exc:
        raise ToolExecutionError(SESSION_STATUS_TOOL, "Failed to read session status") from exc
    return text_result(text)


async def handle_tool(
    name: str,
    arguments: dict[str, Any] | None,
    *,
    deps: ToolHandlerDeps,
    logger: logging.Logger,
    progress: ProgressCallback | None = None,
) -> CallToolResult:
    """Dispatch MCP tool calls; failures become ``isError`` results."""
    request_id = generate_request_id()
    try:
        with trace_span(
            f"handle_tool/{name}",
            attributes={"tool": name, "request_id": request_id},
        ):
            if name == CODEX_TOOL:
                return await run_codex(arguments, deps=deps, logger=logger, progress=progress)

            if name == LIST_SESSIONS_TOOL:
                return _list_sessions(arguments, deps)

            if name == PING_TOOL:
                return text_result(parse_ping_arguments(arguments))

            if name == HELP_TOOL:
                return await _help(arguments, deps)

            if name == SESSION_STATUS_TOOL:
                return await _session_status(arguments, deps)

            return error_result(f"Unknown tool: {name}")
    except ValidationError as exc:
        logger.warning("Validation error: %s", exc)
        return error_result(format_error(exc, f'tool "{name}"'))
    except Exception as exc:
        message = format_error(exc, f'tool "{name}"')
        logger.error("%s (request %s)", message, request_id)
        return error_result(message)


__all__ = [
    "EXPIRED_PAGE_TEXT",
    "NO_OUTPUT_TEXT",
    "Executor",
    "SessionLocks",
    "ToolHandlerDeps",
    "error_result",
    "handle_tool",
    "json_text",
    "run_codex",
    "text_result",
]
