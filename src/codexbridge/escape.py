"""Argument escaping for cmd.exe-launched subprocesses."""

from __future__ import annotations

import re

_NEWLINES_RE = re.compile(r"[\r\n]+")
_NEEDS_QUOTES_RE = re.compile(r"[\s&|<>^]")


def escape_windows_arg(arg: str) -> str:
    """Escape a single argument for cmd.exe.

    Newline runs collapse to one space (cmd.exe treats them as command
    separators), ``%`` is doubled to block variable expansion, arguments with
    whitespace or ``& | < > ^`` are double-quoted with inner quotes doubled,
    and remaining bare quotes are caret-escaped. Simple tokens such as
    ``--flag`` pass through unchanged.
    """
    escaped = _NEWLINES_RE.sub(" ", arg)
    escaped = escaped.replace("%", "%%")

    if _NEEDS_QUOTES_RE.search(escaped):
        return '"' + escaped.replace('"', '""') + '"'
    if '"' in escaped:
        return escaped.replace('"', '^"')
    return escaped


__all__ = ["escape_windows_arg"]
