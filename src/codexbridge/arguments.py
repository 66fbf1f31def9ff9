"""Validation of untyped tool arguments into typed structures.

Nothing here has side effects: every check runs before the orchestrator
touches a store or spawns a process.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from codexbridge.errors import ValidationError

CODEX_TOOL = "codex"
LIST_SESSIONS_TOOL = "list_sessions"
SESSION_STATUS_TOOL = "session_status"
PING_TOOL = "ping"
HELP_TOOL = "help"

# Ordered from least to most effort.
REASONING_EFFORTS = ("none", "minimal", "low", "medium", "high", "xhigh")
SANDBOX_MODES = ("read-only", "workspace-write", "danger-full-access")
XHIGH_MODELS = frozenset({"gpt-5.1-codex-max", "gpt-5.2", "gpt-5.2-codex", "gpt-5.3-codex"})

SESSION_ID_PATTERN = r"^[a-zA-Z0-9_-]{1,256}$"
_SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)

MIN_PAGE_SIZE = 1_000
MAX_PAGE_SIZE = 200_000


@dataclass(frozen=True)
class CodexArguments:
    """Validated arguments for the ``codex`` tool."""

    prompt: str | None = None
    session_id: str | None = None
    reset_session: bool = False
    model: str | None = None
    reasoning_effort: str | None = None
    sandbox: str | None = None
    full_auto: bool = False
    working_directory: str | None = None
    callback_uri: str | None = None
    page_size: int | None = None
    page_token: str | None = None


def _as_mapping(tool_name: str, arguments: Any) -> Mapping[str, Any]:
    if arguments is None:
        return {}
    if not isinstance(arguments, Mapping):
        raise ValidationError(tool_name, "arguments must be an object")
    return arguments


def _optional_str(tool_name: str, arguments: Mapping[str, Any], key: str) -> str | None:
    value = arguments.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(tool_name, f"'{key}' must be a string", field=key)
    return value


def _optional_bool(tool_name: str, arguments: Mapping[str, Any], key: str) -> bool:
    value = arguments.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(tool_name, f"'{key}' must be a boolean", field=key)
    return value


def _optional_option(tool_name: str, arguments: Mapping[str, Any], key: str) -> str | None:
    """Free-text option value that ends up on the command line."""
    value = _optional_str(tool_name, arguments, key)
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if value.startswith("-"):
        raise ValidationError(tool_name, f"'{key}' cannot start with '-': {value}", field=key)
    return value


def _optional_choice(
    tool_name: str,
    arguments: Mapping[str, Any],
    key: str,
    choices: tuple[str, ...],
) -> str | None:
    value = _optional_str(tool_name, arguments, key)
    if value is None:
        return None
    if value not in choices:
        allowed = ", ".join(choices)
        raise ValidationError(
            tool_name, f"'{key}' must be one of: {allowed} (got {value!r})", field=key
        )
    return value


def validate_session_id(tool_name: str, value: str | None) -> str | None:
    if value is None:
        return None
    if not _SESSION_ID_RE.match(value):
        raise ValidationError(
            tool_name,
            "'sessionId' must be 1-256 characters of letters, digits, '_' or '-'",
            field="sessionId",
        )
    return value


def _optional_page_size(tool_name: str, arguments: Mapping[str, Any]) -> int | None:
    value = arguments.get("pageSize")
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(tool_name, "'pageSize' must be an integer", field="pageSize")
    if value < MIN_PAGE_SIZE or value > MAX_PAGE_SIZE:
        raise ValidationError(
            tool_name,
            f"'pageSize' must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}",
            field="pageSize",
        )
    return value


def parse_codex_arguments(arguments: Any) -> CodexArguments:
    """Validate ``codex`` tool arguments.

    Raises:
        ValidationError: If a field is malformed or neither ``prompt`` nor
            ``pageToken`` is present.
    """
    tool = CODEX_TOOL
    args = _as_mapping(tool, arguments)

    prompt = _optional_str(tool, args, "prompt")
    if prompt is not None:
        prompt = prompt.strip() or None
    page_token = _optional_str(tool, args, "pageToken") or None
    if prompt is None and page_token is None:
        raise ValidationError(
            tool, "Missing required 'prompt' (or provide a 'pageToken').", field="prompt"
        )

    return CodexArguments(
        prompt=prompt,
        session_id=validate_session_id(tool, _optional_str(tool, args, "sessionId")),
        reset_session=_optional_bool(tool, args, "resetSession"),
        model=_optional_option(tool, args, "model"),
        reasoning_effort=_optional_choice(tool, args, "reasoningEffort", REASONING_EFFORTS),
        sandbox=_optional_choice(tool, args, "sandbox", SANDBOX_MODES),
        full_auto=_optional_bool(tool, args, "fullAuto"),
        working_directory=_optional_str(tool, args, "workingDirectory") or None,
        callback_uri=_optional_str(tool, args, "callbackUri") or None,
        page_size=_optional_page_size(tool, args),
        page_token=page_token,
    )


def supports_xhigh(model: str) -> bool:
    return model in XHIGH_MODELS


def check_reasoning_effort(model: str, reasoning_effort: str | None) -> None:
    """Reject ``xhigh`` for models outside the supported subset."""
    if reasoning_effort == "xhigh" and not supports_xhigh(model):
        supported = ", ".join(sorted(XHIGH_MODELS))
        raise ValidationError(
            CODEX_TOOL,
            f"reasoningEffort 'xhigh' is not supported for model '{model}' "
            f"(supported: {supported})",
            field="reasoningEffort",
        )


def parse_ping_arguments(arguments: Any) -> str:
    args = _as_mapping(PING_TOOL, arguments)
    message = _optional_str(PING_TOOL, args, "message")
    return "pong" if message is None else message


def parse_session_status_arguments(arguments: Any) -> str | None:
    args = _as_mapping(SESSION_STATUS_TOOL, arguments)
    return validate_session_id(
        SESSION_STATUS_TOOL, _optional_str(SESSION_STATUS_TOOL, args, "sessionId")
    )


def parse_no_arguments(tool_name: str, arguments: Any) -> None:
    _as_mapping(tool_name, arguments)


__all__ = [
    "CODEX_TOOL",
    "HELP_TOOL",
    "LIST_SESSIONS_TOOL",
    "PING_TOOL",
    "REASONING_EFFORTS",
    "SANDBOX_MODES",
    "SESSION_STATUS_TOOL",
    "XHIGH_MODELS",
    "CodexArguments",
    "check_reasoning_effort",
    "parse_codex_arguments",
    "parse_no_arguments",
    "parse_ping_arguments",
    "parse_session_status_arguments",
    "supports_xhigh",
]
