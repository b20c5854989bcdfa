"""Tests for metrics, structured logging and the stage timer."""

import json
import logging
import sys

from nova.core.logging import ColorFormatter, PipelineTimer, StructuredFormatter, setup_logging
from nova.core.metrics import MetricsCollector


def _record(msg: str = "turn done", **extra) -> logging.LogRecord:
    record = logging.LogRecord("nova.runtime", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# --- Metrics ---


def test_counters_with_labels():
    m = MetricsCollector()
    m.inc("turns.accepted", labels={"lane": "chat"})
    m.inc("turns.accepted", labels={"lane": "chat"})
    m.inc("turns.failed", labels={"reason": "internal", "lane": "chat"})

    assert m.counter("turns.accepted", labels={"lane": "chat"}) == 2
    assert m.counter("turns.accepted") == 0
    snapshot = m.snapshot()
    assert snapshot["counters"]["turns.failed{lane=chat,reason=internal}"] == 1


def test_histogram_summary():
    m = MetricsCollector()
    for value in range(1, 101):
        m.observe("turn.latency_ms", float(value))

    summary = m.snapshot()["histograms"]["turn.latency_ms"]
    assert summary["count"] == 100
    assert (summary["min"], summary["max"]) == (1.0, 100.0)
    assert summary["p50"] == 51.0
    assert summary["p95"] == 96.0


def test_histogram_window_is_bounded():
    m = MetricsCollector()
    for value in range(MetricsCollector.HISTOGRAM_MAX_SAMPLES + 10):
        m.observe("x", float(value))
    assert m.snapshot()["histograms"]["x"]["count"] == MetricsCollector.HISTOGRAM_MAX_SAMPLES


def test_gauges_and_reset():
    m = MetricsCollector()
    m.gauge_inc("turns.in_flight")
    m.gauge_inc("turns.in_flight")
    m.gauge_dec("turns.in_flight")
    assert m.gauge("turns.in_flight") == 1.0

    m.reset()
    assert m.gauge("turns.in_flight") == 0.0
    assert m.snapshot()["counters"] == {}


# --- Logging ---


def test_structured_formatter_lifts_extra_fields():
    line = StructuredFormatter().format(
        _record(turn_id="t-1", lane="chat", duration_ms=42, unrelated="x")
    )
    entry = json.loads(line)
    assert entry["msg"] == "turn done"
    assert entry["logger"] == "nova.runtime"
    assert entry["level"] == "INFO"
    assert (entry["turn_id"], entry["lane"], entry["duration_ms"]) == ("t-1", "chat", 42)
    assert "unrelated" not in entry


def test_structured_formatter_includes_exception():
    try:
        raise ValueError("bad")
    except ValueError:
        record = logging.LogRecord("nova", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    entry = json.loads(StructuredFormatter().format(record))
    assert "ValueError: bad" in entry["exc"]


def test_color_formatter_restores_record():
    record = _record()
    colored = ColorFormatter(use_color=True).format(record)
    assert "\033[32mINFO" in colored
    assert record.levelname == "INFO"
    assert record.name == "nova.runtime"
    assert "\033" not in ColorFormatter(use_color=False).format(_record())


def test_setup_logging_json(monkeypatch):
    monkeypatch.setenv("NOVA_LOG_FORMAT", "json")
    monkeypatch.setenv("NOVA_LOG_LEVEL", "debug")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)


def test_pipeline_timer():
    timer = PipelineTimer()
    timer.mark("route")
    timer.mark("loop")

    assert timer.elapsed("route") >= 0
    assert timer.elapsed("missing") is None
    summary = timer.summary()
    assert summary.startswith("route: ")
    assert "loop: " in summary
    assert summary.endswith("s")
    assert "Total: " in summary
    assert timer.total_ms() >= 0
