"""Tests for Codex command assembly and output parsing."""

from __future__ import annotations

import pytest

from codexbridge.arguments import CodexArguments
from codexbridge.command import (
    CALLBACK_URI_ENV,
    DEFAULT_MODEL,
    build_context_prompt,
    build_fresh_args,
    build_invocation,
    build_resume_args,
    extract_conversation_id,
    extract_thread_id,
    resolve_callback_uri,
    resolve_model,
)
from codexbridge.sessions import Turn


class TestResolveModel:
    def test_builtin_default(self) -> None:
        assert resolve_model(None) == DEFAULT_MODEL == "gpt-5.2-codex"

    def test_env_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODEX_DEFAULT_MODEL", "gpt-5.3-codex")
        assert resolve_model(None) == "gpt-5.3-codex"

    def test_explicit_wins(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODEX_DEFAULT_MODEL", "gpt-5.3-codex")
        assert resolve_model("o3") == "o3"

    def test_blank_env_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CODEX_DEFAULT_MODEL", "   ")
        assert resolve_model(None) == DEFAULT_MODEL


def test_resolve_callback_uri(monkeypatch: pytest.MonkeyPatch) -> None:
    assert resolve_callback_uri(None) is None
    monkeypatch.setenv(CALLBACK_URI_ENV, "http://env")
    assert resolve_callback_uri(None) == "http://env"
    assert resolve_callback_uri("http://explicit") == "http://explicit"


class TestFreshArgs:
    def test_minimal(self) -> None:
        assert build_fresh_args("hi", "gpt-5.2-codex") == [
            "exec",
            "--model",
            "gpt-5.2-codex",
            "--skip-git-repo-check",
            "hi",
        ]

    def test_all_options_in_order(self) -> None:
        assert build_fresh_args(
            "task",
            "gpt-5.2",
            reasoning_effort="high",
            sandbox="read-only",
            full_auto=True,
            working_directory="/repo",
        ) == [
            "exec",
            "--model",
            "gpt-5.2",
            "-c",
            'model_reasoning_effort="high"',
            "--sandbox",
            "read-only",
            "--full-auto",
            "-C",
            "/repo",
            "--skip-git-repo-check",
            "task",
        ]


class TestResumeArgs:
    def test_vector(self) -> None:
        assert build_resume_args("next", "gpt-5.2-codex", "abc-123") == [
            "exec",
            "--skip-git-repo-check",
            "-c",
            'model="gpt-5.2-codex"',
            "resume",
            "abc-123",
            "next",
        ]

    @pytest.mark.parametrize("effort", [None, "low", "xhigh"])
    def test_options_precede_resume(self, effort: str | None) -> None:
        args = build_resume_args("-c looks like a flag", "m", "id", reasoning_effort=effort)
        resume_at = args.index("resume")
        option_positions = [
            i
            for i, arg in enumerate(args[:resume_at])
            if arg in ("-c", "--skip-git-repo-check")
        ]

        assert option_positions
        assert resume_at > max(option_positions)
        assert args[resume_at + 1 :] == ["id", "-c looks like a flag"]


class TestBuildInvocation:
    def test_fresh_without_handle(self) -> None:
        invocation = build_invocation(CodexArguments(prompt="p", sandbox="read-only"), "p", "m")

        assert invocation.mode == "fresh"
        assert not invocation.is_resume
        assert "--sandbox" in invocation.args
        assert invocation.env == {}

    def test_resume_ignores_fresh_only_options(self) -> None:
        invocation = build_invocation(
            CodexArguments(prompt="p", sandbox="read-only", full_auto=True),
            "p",
            "m",
            conversation_id="abc",
            working_directory="/repo",
        )

        assert invocation.is_resume
        assert "--sandbox" not in invocation.args
        assert "--full-auto" not in invocation.args
        assert "-C" not in invocation.args

    def test_callback_goes_to_env_not_args(self) -> None:
        invocation = build_invocation(
            CodexArguments(prompt="p"), "p", "m", callback_uri="http://cb"
        )

        assert invocation.env == {CALLBACK_URI_ENV: "http://cb"}
        assert "http://cb" not in invocation.args


class TestContextPrompt:
    def test_no_turns_returns_task(self) -> None:
        assert build_context_prompt([], "task") == "task"

    def test_uses_two_most_recent_turns(self) -> None:
        turns = [Turn(f"p{i}", f"r{i}", float(i)) for i in range(3)]

        assert build_context_prompt(turns, "next") == (
            "Context:\nPrevious: p1\nResponse: r1\nPrevious: p2\nResponse: r2\n\nTask: next"
        )

    def test_excerpts_are_truncated(self) -> None:
        turns = [Turn("p" * 150, "r" * 250, 0.0)]

        prompt = build_context_prompt(turns, "go")

        assert f"Previous: {'p' * 100}...\n" in prompt
        assert f"Response: {'r' * 200}...\n" in prompt


class TestExtractConversationId:
    @pytest.mark.parametrize(
        "text",
        [
            "session id: abc-123",
            "Session ID:abc-123",
            "[info] conversation id : abc-123\nmore",
            "CONVERSATION ID:   abc-123 trailing",
            "workdir: /x\nsessionid: abc-123",
        ],
    )
    def test_phrasings(self, text: str) -> None:
        assert extract_conversation_id(text) == "abc-123"

    @pytest.mark.parametrize("text", [None, "", "no identifiers here", "thread id: t1"])
    def test_absent(self, text: str | None) -> None:
        assert extract_conversation_id(text) is None

    def test_underscore_ends_identifier(self) -> None:
        assert extract_conversation_id("session id: abc_def") == "abc"


class TestExtractThreadId:
    def test_found_anywhere(self) -> None:
        assert extract_thread_id("output\nThread ID: th_9-x\n") == "th_9-x"

    def test_absent(self) -> None:
        assert extract_thread_id("session id: abc") is None
        assert extract_thread_id(None) is None
