"""Optional OpenTelemetry spans; every helper is a no-op without the SDK."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from importlib import import_module
from typing import Any

logger = logging.getLogger("codexbridge.telemetry")

trace: Any | None = None
try:
    trace = import_module("opentelemetry.trace")
    _HAS_OTEL = True
except Exception:
    _HAS_OTEL = False

_TRACER_NAME = "codexbridge"
_ATTRIBUTE_PREFIX = "codexbridge."


def _get_tracer() -> Any:
    """Return OTel tracer or None when not installed."""
    if _HAS_OTEL and trace is not None:
        return trace.get_tracer(_TRACER_NAME)
    return None


def generate_request_id() -> str:
    """UUID4 used to correlate log lines and spans of one tool call."""
    return str(uuid.uuid4())


def _prefixed(attributes: dict[str, Any] | None) -> dict[str, Any]:
    return {
        f"{_ATTRIBUTE_PREFIX}{key}": value
        for key, value in (attributes or {}).items()
        if value is not None
    }


def set_span_attributes(span: Any, **attributes: Any) -> None:
    """Record attributes on ``span``; tolerates ``None`` spans and SDK failures."""
    if span is None:
        return
    for key, value in _prefixed(attributes).items():
        try:
            span.set_attribute(key, value)
        except Exception as exc:
            logger.debug("Failed to set span attribute %s: %s", key, exc)


@contextmanager
def trace_span(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Generator[Any, None, None]:
    """Open a span named ``name`` or yield ``None``.

    Attribute keys are namespaced with ``codexbridge.``; ``None`` values are
    dropped.
    """
    try:
        tracer = _get_tracer()
    except Exception as exc:
        logger.debug("OpenTelemetry unavailable for span '%s': %s", name, exc)
        tracer = None

    if tracer is None:
        yield None
        return

    try:
        span_context = tracer.start_as_current_span(name, attributes=_prefixed(attributes))
        span = span_context.__enter__()
    except Exception as exc:
        logger.debug("OpenTelemetry unavailable for span '%s': %s", name, exc)
        yield None
        return

    try:
        yield span
    except BaseException as inner_exc:
        try:
            span_context.__exit__(type(inner_exc), inner_exc, inner_exc.__traceback__)
        except Exception as exit_exc:
            logger.debug("Failed to close span '%s': %s", name, exit_exc)
        raise
    else:
        try:
            span_context.__exit__(None, None, None)
        except Exception as exit_exc:
            logger.debug("Failed to close span '%s': %s", name, exit_exc)


__all__ = ["generate_request_id", "set_span_attributes", "trace_span"]
