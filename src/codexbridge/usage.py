"""Token usage read from Codex's own rollout logs.

Codex writes one JSONL file per conversation under
``~/.codex/sessions/YYYY/MM/DD/rollout-<timestamp>-<uuid>.jsonl``. The last
``token_count`` event in a file describes context-window usage and rate limits.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_ROLLOUT_ID_RE = re.compile(
    r"([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\.jsonl$", re.IGNORECASE
)


def codex_sessions_dir() -> Path:
    return Path.home() / ".codex" / "sessions"


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _count(value: Any) -> int:
    return int(value) if _is_number(value) else 0


def _percent(value: Any) -> float:
    return float(value) if _is_number(value) else 0.0


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int
    cached_input_tokens: int
    output_tokens: int
    reasoning_output_tokens: int
    total_tokens: int

    @classmethod
    def from_event(cls, data: Any) -> TokenUsage:
        if not isinstance(data, dict):
            data = {}
        return cls(
            input_tokens=_count(data.get("input_tokens")),
            cached_input_tokens=_count(data.get("cached_input_tokens")),
            output_tokens=_count(data.get("output_tokens")),
            reasoning_output_tokens=_count(data.get("reasoning_output_tokens")),
            total_tokens=_count(data.get("total_tokens")),
        )


@dataclass(frozen=True)
class RateLimit:
    used_percent: float
    window_minutes: int | None
    resets_at: int | None


@dataclass(frozen=True)
class UsageStatus:
    conversation_id: str
    context_window: int
    total: TokenUsage
    last: TokenUsage
    primary_limit: RateLimit
    secondary_limit: RateLimit

    @property
    def context_usage_percent(self) -> float:
        if self.context_window <= 0:
            return 0.0
        return self.total.input_tokens / self.context_window * 100

    @property
    def is_near_limit(self) -> bool:
        return self.context_usage_percent > 80

    @property
    def recommendation(self) -> str | None:
        percent = self.context_usage_percent
        if percent > 90:
            return "CRITICAL: Context window almost full. Reset session immediately."
        if percent > 80:
            return "WARNING: Context window is getting full. Consider resetting session soon."
        if percent > 60:
            return "INFO: Context usage is moderate. Monitor usage."
        return None


def _day_dirs(root: Path) -> list[Path]:
    """YYYY/MM/DD directories, newest first."""
    days: list[Path] = []
    for year in sorted((p for p in root.iterdir() if p.is_dir()), reverse=True):
        for month in sorted((p for p in year.iterdir() if p.is_dir()), reverse=True):
            days.extend(sorted((p for p in month.iterdir() if p.is_dir()), reverse=True))
    return days


def find_rollout_file(conversation_id: str, root: Path | None = None) -> Path | None:
    root = root or codex_sessions_dir()
    if not root.is_dir():
        return None
    for day in _day_dirs(root):
        for path in sorted(day.glob("*.jsonl")):
            if conversation_id in path.name:
                return path
    return None


def find_latest_rollout(root: Path | None = None) -> Path | None:
    """Most recently modified rollout in the newest day that has one."""
    root = root or codex_sessions_dir()
    if not root.is_dir():
        return None
    for day in _day_dirs(root):
        candidates = [p for p in day.glob("*.jsonl") if _ROLLOUT_ID_RE.search(p.name)]
        if candidates:
            return max(candidates, key=lambda p: p.stat().st_mtime)
    return None


def _rate_limit(data: dict[str, Any]) -> RateLimit:
    return RateLimit(
        used_percent=_percent(data.get("used_percent")),
        window_minutes=_optional_int(data.get("window_minutes")),
        resets_at=_optional_int(data.get("resets_at")),
    )


def read_usage_status(path: Path) -> UsageStatus | None:
    """Parse the last complete ``token_count`` event in ``path``."""
    match = _ROLLOUT_ID_RE.search(path.name)
    conversation_id = match.group(1) if match else "unknown"
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as exc:
        logger.warning("Could not read rollout %s: %s", path, exc)
        return None

    for line in reversed(lines):
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(event, dict) or event.get("type") != "event_msg":
            continue
        payload = event.get("payload")
        if not isinstance(payload, dict) or payload.get("type") != "token_count":
            continue
        info = payload.get("info")
        limits = payload.get("rate_limits")
        if not isinstance(info, dict) or not isinstance(limits, dict):
            continue
        # Short sessions emit token_count events without usage yet.
        total = info.get("total_token_usage")
        primary = limits.get("primary")
        secondary = limits.get("secondary")
        if not all(isinstance(part, dict) and part for part in (total, primary, secondary)):
            continue
        return UsageStatus(
            conversation_id=conversation_id,
            context_window=_count(info.get("model_context_window")),
            total=TokenUsage.from_event(total),
            last=TokenUsage.from_event(info.get("last_token_usage")),
            primary_limit=_rate_limit(primary),
            secondary_limit=_rate_limit(secondary),
        )
    return None


def format_usage_status(status: UsageStatus) -> str:
    lines = [
        f"Session ID: {status.conversation_id}",
        "",
        f"Context Window: {status.context_window:,} tokens",
        f"Context Usage: {status.context_usage_percent:.1f}%",
        "",
        "Total Token Usage:",
        f"  Input: {status.total.input_tokens:,}",
        f"  Cached: {status.total.cached_input_tokens:,}",
        f"  Output: {status.total.output_tokens:,}",
        f"  Total: {status.total.total_tokens:,}",
        "",
        "Rate Limits:",
        f"  Primary (5h): {status.primary_limit.used_percent:g}% used",
        f"  Secondary (7d): {status.secondary_limit.used_percent:g}% used",
    ]
    if status.recommendation:
        lines.extend(["", status.recommendation])
    return "\n".join(lines)


__all__ = [
    "RateLimit",
    "TokenUsage",
    "UsageStatus",
    "codex_sessions_dir",
    "find_latest_rollout",
    "find_rollout_file",
    "format_usage_status",
    "read_usage_status",
]
