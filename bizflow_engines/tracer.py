"""
bizflow_engines.tracer -- Engine invocation tracer emitting WORKFLOW_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging: engine name,
    version, a deterministic fingerprint of selected inputs, duration and
    an optional summary of the result.

Architecture position:
    Engines -- infrastructure support for the pure calculation layer.
    Emits a log record only; does not import kernel logging so engines
    stay free of configuration side effects.

Invariants enforced:
    - Fingerprints are deterministic: dict keys are sorted and the hash is
      SHA-256 truncated to 16 hex chars.
    - The decorator never mutates inputs or results.

Usage:
    @traced_engine("workflow_traversal", "1.0", ("current_node_id", "action"))
    def calculate_next_step(self, current_node_id, action=None, context=None):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from typing import Any

_logger = logging.getLogger("bizflow.engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """Deterministic 16-char SHA-256 prefix over the named arguments.

    Missing arguments are recorded as "null".
    """
    parts = [f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields]
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], dict[str, Any]] | None = None,
) -> Callable:
    """Decorator that emits WORKFLOW_ENGINE_TRACE for engine invocations.

    ``summarize`` maps the result to extra trace fields (for traversal: the
    pause node and how many side-channel nodes were passed).
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            record: dict[str, Any] = {
                "trace_type": "WORKFLOW_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fp,
                "duration_ms": duration_ms,
                "function": func.__qualname__,
            }
            if summarize is not None:
                record.update(summarize(result))
            _logger.debug("WORKFLOW_ENGINE_TRACE", extra=record)
            return result

        return wrapper

    return decorator
