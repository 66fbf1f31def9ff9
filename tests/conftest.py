from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import pytest

from codexbridge.command import resolve_callback_uri, resolve_model
from codexbridge.executor import CommandResult, ProgressCallback
from codexbridge.pagination import PageStore
from codexbridge.sessions import SessionStore
from codexbridge.tool_handlers import SessionLocks, ToolHandlerDeps

_CONFIG_ENV = (
    "CODEX_DEFAULT_MODEL",
    "CODEX_PAGE_SIZE",
    "CODEX_MCP_CALLBACK_URI",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _CONFIG_ENV:
        monkeypatch.delenv(name, raising=False)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class ExecutorCall:
    executable: str
    args: list[str]
    env: dict[str, str] | None
    streamed: bool


class FakeExecutor:
    """Records argument vectors and replays queued results or exceptions."""

    def __init__(self) -> None:
        self.calls: list[ExecutorCall] = []
        self._outcomes: list[CommandResult | BaseException] = []

    def queue(self, stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self._outcomes.append(CommandResult(stdout=stdout, stderr=stderr, returncode=returncode))

    def queue_error(self, exc: BaseException) -> None:
        self._outcomes.append(exc)

    @property
    def last_args(self) -> list[str]:
        return self.calls[-1].args

    def _next(self) -> CommandResult:
        if not self._outcomes:
            return CommandResult(stdout="ok", stderr="", returncode=0)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def run(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        self.calls.append(ExecutorCall(executable, list(args), dict(env) if env else None, False))
        return self._next()

    async def run_streamed(
        self,
        executable: str,
        args: Sequence[str],
        on_progress: ProgressCallback,
        *,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        self.calls.append(ExecutorCall(executable, list(args), dict(env) if env else None, True))
        result = self._next()
        if result.stdout:
            await on_progress(result.stdout)
        return result


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sessions(clock: FakeClock) -> SessionStore:
    return SessionStore(ttl_seconds=3600, max_bytes=400_000, clock=clock)


@pytest.fixture
def pages(clock: FakeClock) -> PageStore:
    return PageStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


def _default_page_size(page_size: int | None) -> int:
    return page_size if page_size is not None else 40_000


@pytest.fixture
def make_deps(
    sessions: SessionStore,
    pages: PageStore,
    fake_executor: FakeExecutor,
) -> Any:
    def factory(**overrides: Any) -> ToolHandlerDeps:
        values: dict[str, Any] = {
            "sessions": sessions,
            "pages": pages,
            "executor": fake_executor,
            "session_locks": SessionLocks(),
            "executable": "codex",
            "resolve_model": resolve_model,
            "resolve_page_size": _default_page_size,
            "resolve_callback_uri": resolve_callback_uri,
            "validate_cwd": lambda cwd: cwd,
        }
        values.update(overrides)
        return ToolHandlerDeps(**values)

    return factory


@pytest.fixture
def deps(make_deps: Any) -> ToolHandlerDeps:
    return make_deps()


@pytest.fixture
def test_logger() -> logging.Logger:
    return logging.getLogger("codexbridge.tests")
