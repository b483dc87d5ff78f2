from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger("academy.telemetry")


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    span = {"name": name, "attributes": attributes or {}}
    started = time.perf_counter()
    try:
        yield span
    except Exception:
        span["status"] = "error"
        raise
    else:
        span["status"] = "ok"
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            "span %s status=%s duration_ms=%.2f attributes=%s",
            name,
            span.get("status"),
            elapsed_ms,
            span["attributes"],
        )
