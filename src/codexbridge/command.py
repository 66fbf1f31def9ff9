"""Codex CLI argument vectors and parsing of what the CLI prints back."""

from __future__ import annotations

import os
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from codexbridge.arguments import CodexArguments
from codexbridge.sessions import Turn

DEFAULT_MODEL = "gpt-5.2-codex"
CALLBACK_URI_ENV = "CODEX_MCP_CALLBACK_URI"

FRESH_MODE = "fresh"
RESUME_MODE = "resume"

# "session id: abc-123", "Conversation ID:xyz" ... anywhere in the stream.
_CONVERSATION_ID_RE = re.compile(
    r"(?:session|conversation)\s*id\s*:\s*([a-zA-Z0-9-]+)", re.IGNORECASE
)
_THREAD_ID_RE = re.compile(r"thread\s*id\s*:\s*([a-zA-Z0-9_-]+)", re.IGNORECASE)

_CONTEXT_TURNS = 2
_PROMPT_EXCERPT_CHARS = 100
_RESPONSE_EXCERPT_CHARS = 200


@dataclass(frozen=True)
class CommandInvocation:
    """Everything needed to run one Codex request."""

    args: tuple[str, ...]
    mode: str
    model: str
    env: dict[str, str] = field(default_factory=dict)

    @property
    def is_resume(self) -> bool:
        return self.mode == RESUME_MODE


def _normalize(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None


def resolve_model(explicit: str | None) -> str:
    """Resolve model: explicit > CODEX_DEFAULT_MODEL env > built-in default."""
    return (
        _normalize(explicit)
        or _normalize(os.environ.get("CODEX_DEFAULT_MODEL"))
        or DEFAULT_MODEL
    )


def resolve_callback_uri(explicit: str | None) -> str | None:
    return _normalize(explicit) or _normalize(os.environ.get(CALLBACK_URI_ENV))


def build_fresh_args(
    prompt: str,
    model: str,
    *,
    reasoning_effort: str | None = None,
    sandbox: str | None = None,
    full_auto: bool = False,
    working_directory: str | None = None,
) -> list[str]:
    args = ["exec", "--model", model]
    if reasoning_effort:
        args.extend(["-c", f'model_reasoning_effort="{reasoning_effort}"'])
    if sandbox:
        args.extend(["--sandbox", sandbox])
    if full_auto:
        args.append("--full-auto")
    if working_directory:
        args.extend(["-C", working_directory])
    args.extend(["--skip-git-repo-check", prompt])
    return args


def build_resume_args(
    prompt: str,
    model: str,
    conversation_id: str,
    *,
    reasoning_effort: str | None = None,
) -> list[str]:
    """Resume vector; every exec option precedes the ``resume`` subcommand."""
    args = ["exec", "--skip-git-repo-check", "-c", f'model="{model}"']
    if reasoning_effort:
        args.extend(["-c", f'model_reasoning_effort="{reasoning_effort}"'])
    args.extend(["resume", conversation_id, prompt])
    return args


def build_invocation(
    arguments: CodexArguments,
    prompt: str,
    model: str,
    *,
    conversation_id: str | None = None,
    callback_uri: str | None = None,
    working_directory: str | None = None,
) -> CommandInvocation:
    """Assemble the invocation, choosing resume mode when a handle is known."""
    if conversation_id:
        args = build_resume_args(
            prompt,
            model,
            conversation_id,
            reasoning_effort=arguments.reasoning_effort,
        )
        mode = RESUME_MODE
    else:
        args = build_fresh_args(
            prompt,
            model,
            reasoning_effort=arguments.reasoning_effort,
            sandbox=arguments.sandbox,
            full_auto=arguments.full_auto,
            working_directory=working_directory,
        )
        mode = FRESH_MODE
    env = {CALLBACK_URI_ENV: callback_uri} if callback_uri else {}
    return CommandInvocation(args=tuple(args), mode=mode, model=model, env=env)


def _excerpt(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_context_prompt(turns: Sequence[Turn], task: str) -> str:
    """Prefix ``task`` with excerpts of the most recent turns."""
    if not turns:
        return task
    lines = ["Context:"]
    for turn in turns[-_CONTEXT_TURNS:]:
        lines.append(f"Previous: {_excerpt(turn.prompt, _PROMPT_EXCERPT_CHARS)}")
        lines.append(f"Response: {_excerpt(turn.response, _RESPONSE_EXCERPT_CHARS)}")
    return "\n".join(lines) + f"\n\nTask: {task}"


def extract_conversation_id(text: str | None) -> str | None:
    """Find a resumable ``session id:``/``conversation id:`` token."""
    if not text:
        return None
    match = _CONVERSATION_ID_RE.search(text)
    return match.group(1) if match else None


def extract_thread_id(text: str | None) -> str | None:
    if not text:
        return None
    match = _THREAD_ID_RE.search(text)
    return match.group(1) if match else None


__all__ = [
    "CALLBACK_URI_ENV",
    "DEFAULT_MODEL",
    "FRESH_MODE",
    "RESUME_MODE",
    "CommandInvocation",
    "build_context_prompt",
    "build_fresh_args",
    "build_invocation",
    "build_resume_args",
    "extract_conversation_id",
    "extract_thread_id",
    "resolve_callback_uri",
    "resolve_model",
]
