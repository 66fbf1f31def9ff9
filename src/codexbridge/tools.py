"""Tool schema definitions for the codexbridge MCP server.

Parameters and tools are declared as frozen dataclasses and converted to the
JSON Schema shapes MCP clients expect.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from mcp.types import Tool, ToolAnnotations

from codexbridge.arguments import (
    CODEX_TOOL,
    HELP_TOOL,
    LIST_SESSIONS_TOOL,
    MAX_PAGE_SIZE,
    MIN_PAGE_SIZE,
    PING_TOOL,
    REASONING_EFFORTS,
    SANDBOX_MODES,
    SESSION_ID_PATTERN,
    SESSION_STATUS_TOOL,
)


@dataclass(frozen=True)
class ParameterDef:
    """Definition for a JSON Schema parameter."""

    type: str  # "string", "integer", "boolean"
    description: str
    default: Any = None
    enum: tuple[str, ...] | None = None
    minimum: int | None = None
    maximum: int | None = None
    pattern: str | None = None


@dataclass(frozen=True)
class ToolDef:
    """Definition for an MCP tool."""

    name: str
    description: str
    parameters: tuple[tuple[str, ParameterDef], ...]  # Ordered (name, param) pairs
    required: tuple[str, ...] = ()
    annotations: ToolAnnotations | None = None


# =============================================================================
# Reusable parameter definitions
# =============================================================================

PROMPT_PARAM = ParameterDef(
    type="string",
    description=(
        "The coding task, question, or analysis request. "
        "Optional when fetching a further page with pageToken."
    ),
)

SESSION_ID_PARAM = ParameterDef(
    type="string",
    description=(
        "Caller-chosen session identifier. Calls sharing it continue the same "
        "Codex conversation."
    ),
    pattern=SESSION_ID_PATTERN,
)

RESET_SESSION_PARAM = ParameterDef(
    type="boolean",
    description="Clear the session's history before running this prompt",
)

MODEL_PARAM = ParameterDef(
    type="string",
    description="Model to use (e.g., 'gpt-5.2-codex'). Falls back to CODEX_DEFAULT_MODEL.",
)

REASONING_EFFORT_PARAM = ParameterDef(
    type="string",
    description=(
        "Reasoning effort (none, minimal, low, medium, high, xhigh). "
        "xhigh is only accepted for models that support it."
    ),
    enum=REASONING_EFFORTS,
)

SANDBOX_PARAM = ParameterDef(
    type="string",
    description="Sandbox policy for shell commands Codex runs (new conversations only)",
    enum=SANDBOX_MODES,
)

FULL_AUTO_PARAM = ParameterDef(
    type="boolean",
    description="Run Codex in full-auto mode (new conversations only)",
)

WORKING_DIRECTORY_PARAM = ParameterDef(
    type="string",
    description="Directory Codex treats as its workspace root (new conversations only)",
)

CALLBACK_URI_PARAM = ParameterDef(
    type="string",
    description="Callback URI exported to Codex as CODEX_MCP_CALLBACK_URI",
)

PAGE_TOKEN_PARAM = ParameterDef(
    type="string",
    description="Opaque token returned by a previous call to fetch the next page",
)

MESSAGE_PARAM = ParameterDef(
    type="string",
    description="Message to echo back",
)

STATUS_SESSION_ID_PARAM = ParameterDef(
    type="string",
    description=(
        "Session whose Codex conversation to inspect. "
        "Defaults to the most recent Codex conversation."
    ),
    pattern=SESSION_ID_PATTERN,
)


def _build_page_size_param(default_page_size: int) -> ParameterDef:
    """Create page size parameter with dynamic default.

    Raises:
        ValueError: If default_page_size is outside the valid range.
    """
    if default_page_size < MIN_PAGE_SIZE or default_page_size > MAX_PAGE_SIZE:
        raise ValueError(
            f"default_page_size must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}, "
            f"got {default_page_size}"
        )
    return ParameterDef(
        type="integer",
        description=f"Approximate characters per page (default {default_page_size})",
        minimum=MIN_PAGE_SIZE,
        maximum=MAX_PAGE_SIZE,
    )


# =============================================================================
# Tool definitions
# =============================================================================

_READ_ONLY = ToolAnnotations(readOnlyHint=True, destructiveHint=False, openWorldHint=False)

CODEX_TOOL_DEF = ToolDef(
    name=CODEX_TOOL,
    description=(
        "Execute Codex CLI in non-interactive mode for AI assistance. Supports "
        "sessions (resumed Codex conversations) and pagination for large outputs."
    ),
    parameters=(
        ("prompt", PROMPT_PARAM),
        ("sessionId", SESSION_ID_PARAM),
        ("resetSession", RESET_SESSION_PARAM),
        ("model", MODEL_PARAM),
        ("reasoningEffort", REASONING_EFFORT_PARAM),
        ("sandbox", SANDBOX_PARAM),
        ("fullAuto", FULL_AUTO_PARAM),
        ("workingDirectory", WORKING_DIRECTORY_PARAM),
        ("callbackUri", CALLBACK_URI_PARAM),
        ("pageSize", ParameterDef(type="integer", description="")),  # replaced dynamically
        ("pageToken", PAGE_TOKEN_PARAM),
    ),
    # prompt stays optional so a pageToken-only follow-up is valid
    required=(),
    annotations=ToolAnnotations(
        title="Codex",
        readOnlyHint=False,
        destructiveHint=False,
        idempotentHint=False,
        openWorldHint=True,
    ),
)

LIST_SESSIONS_TOOL_DEF = ToolDef(
    name=LIST_SESSIONS_TOOL,
    description="List active sessions with creation time, last access and turn count",
    parameters=(),
    annotations=_READ_ONLY,
)

SESSION_STATUS_TOOL_DEF = ToolDef(
    name=SESSION_STATUS_TOOL,
    description="Show Codex token usage, context-window fill and rate limits for a session",
    parameters=(("sessionId", STATUS_SESSION_ID_PARAM),),
    annotations=_READ_ONLY,
)

PING_TOOL_DEF = ToolDef(
    name=PING_TOOL,
    description="Test MCP server connection",
    parameters=(("message", MESSAGE_PARAM),),
    annotations=_READ_ONLY,
)

HELP_TOOL_DEF = ToolDef(
    name=HELP_TOOL,
    description="Get Codex CLI help information",
    parameters=(),
    annotations=_READ_ONLY,
)

TOOL_DEFS = (
    CODEX_TOOL_DEF,
    LIST_SESSIONS_TOOL_DEF,
    SESSION_STATUS_TOOL_DEF,
    PING_TOOL_DEF,
    HELP_TOOL_DEF,
)


# =============================================================================
# Schema generation functions
# =============================================================================


def _param_to_schema(param: ParameterDef) -> dict[str, Any]:
    """Convert a ParameterDef to a JSON Schema dict."""
    schema: dict[str, Any] = {"type": param.type}

    if param.description:
        schema["description"] = param.description
    if param.default is not None:
        schema["default"] = param.default
    if param.enum is not None:
        schema["enum"] = list(param.enum)
    if param.minimum is not None:
        schema["minimum"] = param.minimum
    if param.maximum is not None:
        schema["maximum"] = param.maximum
    if param.pattern is not None:
        schema["pattern"] = param.pattern

    return schema


def build_input_schema(tool: ToolDef, default_page_size: int) -> dict[str, Any]:
    """Convert ToolDef to MCP inputSchema dict.

    Args:
        tool: The tool definition to convert.
        default_page_size: Default advertised for ``pageSize`` parameters.

    Returns:
        A JSON Schema dict suitable for MCP Tool.inputSchema.
    """
    properties: dict[str, Any] = {}

    for name, param in tool.parameters:
        if name == "pageSize":
            param = _build_page_size_param(default_page_size)
        properties[name] = _param_to_schema(param)

    return {
        "type": "object",
        "properties": properties,
        "required": list(tool.required),
    }


def build_tools(default_page_size: int) -> list[Tool]:
    """Build all MCP Tool objects from definitions."""
    return [
        Tool(
            name=tool.name,
            description=tool.description,
            inputSchema=build_input_schema(tool, default_page_size),
            annotations=tool.annotations,
        )
        for tool in TOOL_DEFS
    ]


__all__ = ["TOOL_DEFS", "build_input_schema", "build_tools"]
