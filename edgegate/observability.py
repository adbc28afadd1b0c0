from __future__ import annotations

import json
import logging
import os
import time
import uuid
from typing import Any, Mapping, Optional

LOGGER_NAME = "edgegate"

_SEVERITY_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def configure_logging(level_name: str | None = None) -> None:
    """Configure application logging.

    We emit **JSON lines** so hosted log pipelines parse them into structured
    fields automatically, without extra logging dependencies.
    """

    name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper().strip()
    level = getattr(logging, name, logging.INFO)

    # Dedicated logger so the server's logging config doesn't clobber our format.
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))

    # Replace handlers so repeated app construction doesn't duplicate logs.
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False


def request_id_from_headers(headers: Mapping[str, str]) -> str:
    """Determine a request ID.

    Preference order:
      1) X-Request-Id (reverse proxies)
      2) X-Correlation-Id
      3) generated UUID4
    """

    rid = headers.get("x-request-id") or headers.get("x-correlation-id")
    return (rid.strip() if rid else "") or str(uuid.uuid4())


def log_event(event: str, *, severity: str = "INFO", **fields: Any) -> None:
    """Emit a single structured event line on the gate logger."""

    payload: dict[str, Any] = {"severity": severity, "event": event}
    for k, v in fields.items():
        if v is not None:
            payload[k] = v
    logging.getLogger(LOGGER_NAME).log(
        _SEVERITY_LEVELS.get(severity, logging.INFO),
        json.dumps(payload, ensure_ascii=False, default=str),
    )


def log_http_request(
    *,
    request_id: str,
    method: str,
    url: str,
    path: str,
    status: int,
    latency_ms: float,
    remote_ip: str,
    user_agent: str,
    outcome: str,
    limited: bool = False,
    error_type: Optional[str] = None,
    severity: str = "INFO",
) -> None:
    """Emit a structured request log (one per request)."""

    payload: dict[str, Any] = {
        "severity": severity,
        "message": "http_request",
        "service": os.getenv("K_SERVICE", "job-board-edge-gate"),
        "request_id": request_id,
        "path": path,
        "gate_outcome": outcome,
        "limited": limited,
        "latency_ms": round(latency_ms, 2),
        "httpRequest": {
            "requestMethod": method,
            "requestUrl": url,
            "status": status,
            "latency": f"{latency_ms / 1000.0:.3f}s",
            "remoteIp": remote_ip,
            "userAgent": user_agent,
        },
    }

    if error_type:
        payload["error_type"] = error_type

    logging.getLogger(LOGGER_NAME).log(
        _SEVERITY_LEVELS.get(severity, logging.INFO),
        json.dumps(payload, ensure_ascii=False),
    )


class Timer:
    """Tiny helper for timing blocks."""

    def __init__(self) -> None:
        self._t0 = time.perf_counter()

    def ms(self) -> float:
        return (time.perf_counter() - self._t0) * 1000.0
