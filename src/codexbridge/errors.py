"""Error taxonomy for codexbridge tool calls."""

from __future__ import annotations


class ValidationError(ValueError):
    """Bad or missing tool arguments, or a policy rejection.

    Always raised before any subprocess is spawned or store is touched.
    """

    def __init__(self, tool_name: str, message: str, field: str | None = None) -> None:
        super().__init__(f'Validation failed for tool "{tool_name}": {message}')
        self.tool_name = tool_name
        self.field = field


class CommandExecutionError(Exception):
    """The external CLI could not be run or produced no usable output."""

    def __init__(
        self,
        command: str,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(f'Command execution failed for "{command}": {message}')
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class SpawnError(CommandExecutionError):
    """The child process could not be started (missing executable, permissions)."""


class ToolExecutionError(Exception):
    """Umbrella for any failure surfaced to the protocol layer.

    The original exception is chained as ``__cause__``.
    """

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f'Failed to execute tool "{tool_name}": {message}')
        self.tool_name = tool_name


def format_error(error: BaseException | object, context: str) -> str:
    """Render an error and its ``__cause__`` chain as one line."""
    if not isinstance(error, BaseException):
        return f"Error in {context}: {error}"

    messages: list[str] = []
    seen: set[int] = set()
    current: BaseException | None = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        messages.append(str(current) or type(current).__name__)
        current = current.__cause__

    unique = [msg for idx, msg in enumerate(messages) if idx == 0 or msg != messages[idx - 1]]
    return f"Error in {context}: {' - Caused by: '.join(unique)}"


__all__ = [
    "CommandExecutionError",
    "SpawnError",
    "ToolExecutionError",
    "ValidationError",
    "format_error",
]
