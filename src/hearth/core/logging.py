"""
Hearth logging.

Text lines for a terminal, one JSON object per line when
HEARTH_LOG_FORMAT=json. Both carry the turn fields passed through
``extra``, so a session or rule can be followed across components:

    logger.info("Turn done", extra={"session_id": "s1", "intent": "weather.query"})
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

# Fields picked up from ``extra``, in output order
TURN_FIELDS = (
    "user_id",
    "session_id",
    "intent",
    "handler",
    "rule",
    "device_id",
    "status",
    "duration_ms",
)

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "redis",
    "aiosqlite",
    "uvicorn.access",
)

_LEVEL_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[1;31m",
}
_DIM = "\033[2m"
_RESET = "\033[0m"


def turn_fields(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in TURN_FIELDS if hasattr(record, key)}


class ColorFormatter(logging.Formatter):
    """``12:00:01 [hearth.orchestrator] INFO: Turn ... {session_id=s1 intent=...}``"""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        fields = turn_fields(record)
        suffix = ""
        if fields:
            suffix = " {" + " ".join(f"{k}={v}" for k, v in fields.items()) + "}"

        if not self.use_color:
            return super().format(record) + suffix

        levelname, name = record.levelname, record.name
        record.levelname = f"{_LEVEL_COLORS.get(levelname, '')}{levelname}{_RESET}"
        record.name = f"{_DIM}{name}{_RESET}"
        try:
            line = super().format(record)
        finally:
            record.levelname, record.name = levelname, name
        return line + (f"{_DIM}{suffix}{_RESET}" if suffix else "")


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; turn fields sit at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **turn_fields(record),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        # Utterances are mostly Korean; keep them readable in the log store
        return json.dumps(entry, default=str, ensure_ascii=False)


class PipelineTimer:
    """Per-stage timing for one turn.

        timer = PipelineTimer()
        timer.mark("context")
        timer.mark("intent")
        timer.mark("dispatch")
        timer.summary()  # "context: 0.0s | intent: 0.2s | dispatch: 1.1s | Total: 1.3s"
    """

    def __init__(self):
        self._start = time.monotonic()
        self._marks: list[tuple[str, float]] = []

    def mark(self, stage: str) -> None:
        self._marks.append((stage, time.monotonic()))

    def _durations(self) -> list[tuple[str, float]]:
        out, prev = [], self._start
        for name, ts in self._marks:
            out.append((name, ts - prev))
            prev = ts
        return out

    def elapsed(self, stage: str) -> float | None:
        """Seconds spent in *stage*, or None if it was never marked."""
        for name, seconds in self._durations():
            if name == stage:
                return seconds
        return None

    def total(self) -> float:
        return time.monotonic() - self._start

    def total_ms(self) -> int:
        return round(self.total() * 1000)

    def summary(self) -> str:
        parts = [f"{name}: {seconds:.1f}s" for name, seconds in self._durations()]
        parts.append(f"Total: {self.total():.1f}s")
        return " | ".join(parts)


def _use_color() -> bool:
    setting = os.getenv("HEARTH_LOG_COLOR", "auto").lower()
    if setting in ("true", "false"):
        return setting == "true"
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure the root logger from HEARTH_LOG_LEVEL / _COLOR / _FORMAT.

    Replaces any handlers already on the root logger; call once at startup.
    """
    level_name = os.getenv("HEARTH_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("HEARTH_LOG_FORMAT", "text").lower()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(level)

    logging.getLogger("hearth").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
