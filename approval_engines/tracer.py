"""
approval_engines.tracer -- APPROVAL_ENGINE_TRACE records for pure engines.

``@traced_engine`` logs one DEBUG record per engine call: the engine's
name and version, a short fingerprint of the named keyword arguments, and
the wall time.  Two calls with equal inputs carry equal fingerprints, so
a routing decision can be matched to the inputs that produced it.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable
from typing import Any

from approval_kernel.utils.hashing import canonicalize_json

_logger = logging.getLogger("approval_kernel.engines.tracer")

TRACE_MESSAGE = "APPROVAL_ENGINE_TRACE"


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return value


def compute_input_fingerprint(fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    """First 16 hex chars of SHA-256 over the named kwargs (absent ones are null)."""
    selected = {name: _plain(kwargs.get(name)) for name in fields}
    return hashlib.sha256(canonicalize_json(selected).encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            if _logger.isEnabledFor(logging.DEBUG):
                _logger.debug(
                    TRACE_MESSAGE,
                    extra={
                        "trace_type": TRACE_MESSAGE,
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": (
                            compute_input_fingerprint(fingerprint_fields, kwargs)
                            if fingerprint_fields else ""
                        ),
                        "duration_ms": round((time.monotonic() - started) * 1000, 2),
                        "function": func.__qualname__,
                    },
                )
            return result

        return wrapper

    return decorator
