"""Tests for log formatting and turn timing."""

import json
import logging
from types import SimpleNamespace

import pytest

from hearth.core.logging import (
    ColorFormatter,
    PipelineTimer,
    StructuredFormatter,
    setup_logging,
)


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord(
        name="hearth.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


# ─── Formatters ──────────────────────────────────────────────


def test_structured_formatter_emits_json_with_extra_fields():
    line = StructuredFormatter().format(
        _record(session_id="s1", intent="weather.query", duration_ms=42, ignored="x")
    )
    entry = json.loads(line)
    assert entry["msg"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "hearth.test"
    assert entry["session_id"] == "s1"
    assert entry["intent"] == "weather.query"
    assert entry["duration_ms"] == 42
    assert "ignored" not in entry


def test_structured_formatter_keeps_korean_readable():
    line = StructuredFormatter().format(_record(msg="거실 불 켜 줘", args=()))
    assert "거실 불 켜 줘" in line


def test_color_formatter_restores_record():
    record = _record()
    out = ColorFormatter(use_color=True).format(record)
    assert "\033[" in out
    assert record.levelname == "INFO"
    assert record.name == "hearth.test"


def test_color_formatter_plain():
    out = ColorFormatter(use_color=False).format(_record())
    assert "\033[" not in out
    assert "hello world" in out


def test_color_formatter_appends_turn_fields():
    out = ColorFormatter(use_color=False).format(
        _record(session_id="s1", rule="night_light", ignored="x")
    )
    assert out.endswith("hello world {session_id=s1 rule=night_light}")



# ─── setup_logging ───────────────────────────────────────────


def test_setup_logging_json(monkeypatch, restore_root):
    monkeypatch.setenv("HEARTH_LOG_FORMAT", "json")
    monkeypatch.setenv("HEARTH_LOG_LEVEL", "DEBUG")
    setup_logging()
    assert restore_root.level == logging.DEBUG
    assert len(restore_root.handlers) == 1
    assert isinstance(restore_root.handlers[0].formatter, StructuredFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_setup_logging_unknown_level_defaults_to_info(monkeypatch, restore_root):
    monkeypatch.setenv("HEARTH_LOG_LEVEL", "CHATTY")
    monkeypatch.setenv("HEARTH_LOG_FORMAT", "text")
    monkeypatch.setenv("HEARTH_LOG_COLOR", "false")
    setup_logging()
    assert restore_root.level == logging.INFO
    formatter = restore_root.handlers[0].formatter
    assert isinstance(formatter, ColorFormatter)
    assert formatter.use_color is False


# ─── PipelineTimer ───────────────────────────────────────────


def test_pipeline_timer_stages(monkeypatch):
    ticks = iter([100.0, 100.5, 101.5, 102.0])
    monkeypatch.setattr(
        "hearth.core.logging.time", SimpleNamespace(monotonic=lambda: next(ticks))
    )

    timer = PipelineTimer()  # 100.0
    timer.mark("intent")  # 100.5
    timer.mark("dispatch")  # 101.5

    assert timer.elapsed("intent") == pytest.approx(0.5)
    assert timer.elapsed("dispatch") == pytest.approx(1.0)
    assert timer.elapsed("update") is None
    assert timer.total_ms() == 2000  # 102.0


def test_pipeline_timer_summary_lists_stages():
    timer = PipelineTimer()
    timer.mark("context")
    timer.mark("intent")
    summary = timer.summary()
    assert summary.startswith("context: ")
    assert "| intent: " in summary
    assert "Total: " in summary
