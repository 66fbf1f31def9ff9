"""Tests for codexbridge.errors."""

from codexbridge.errors import (
    CommandExecutionError,
    SpawnError,
    ToolExecutionError,
    ValidationError,
    format_error,
)


def test_validation_error_is_value_error() -> None:
    err = ValidationError("codex", "bad prompt", field="prompt")

    assert isinstance(err, ValueError)
    assert str(err) == 'Validation failed for tool "codex": bad prompt'
    assert err.tool_name == "codex"
    assert err.field == "prompt"


def test_command_execution_error_carries_exit_details() -> None:
    err = CommandExecutionError("codex exec hi", "exited with code 2", exit_code=2, stderr="boom")

    assert str(err) == 'Command execution failed for "codex exec hi": exited with code 2'
    assert err.exit_code == 2
    assert err.stderr == "boom"
    assert err.command == "codex exec hi"


def test_spawn_error_is_command_execution_error() -> None:
    assert issubclass(SpawnError, CommandExecutionError)


def test_format_error_walks_cause_chain() -> None:
    try:
        try:
            raise CommandExecutionError("codex", "exited with code 2")
        except CommandExecutionError as inner:
            raise ToolExecutionError("codex", "Failed to execute codex command") from inner
    except ToolExecutionError as exc:
        rendered = format_error(exc, 'tool "codex"')

    assert rendered == (
        'Error in tool "codex": Failed to execute tool "codex": '
        "Failed to execute codex command - Caused by: "
        'Command execution failed for "codex": exited with code 2'
    )


def test_format_error_drops_consecutive_duplicates() -> None:
    outer = RuntimeError("same")
    outer.__cause__ = RuntimeError("same")

    assert format_error(outer, "ctx") == "Error in ctx: same"


def test_format_error_uses_type_name_for_empty_message() -> None:
    assert format_error(KeyError(), "ctx") == "Error in ctx: KeyError"


def test_format_error_accepts_non_exceptions() -> None:
    assert format_error("plain text", "ctx") == "Error in ctx: plain text"
