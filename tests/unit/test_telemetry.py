"""Tests for the telemetry context."""

from unittest.mock import MagicMock

import pytest

from alma_batch.telemetry import SimpleReporter, TelemetryContext


@pytest.mark.unit
def test_disabled_without_environment_flag():
    ctx = TelemetryContext(SimpleReporter())

    with ctx("alma.request", method="GET"):
        pass
    ctx.metric("pages", 1)

    assert TelemetryContext() is ctx


@pytest.mark.unit
def test_enabled_context_records_nested_scopes(monkeypatch):
    monkeypatch.setenv("ALMA_BATCH_TELEMETRY", "1")
    reporter = MagicMock(spec=SimpleReporter)
    ctx = TelemetryContext(reporter)

    with ctx("batch.page", page=0), ctx("alma.request", method="GET"):
        ctx.count("users")

    inner, outer = reporter.record_timing.call_args_list
    assert inner.args[0] == "batch.page.alma.request"
    assert inner.args[1] >= 0
    assert inner.kwargs == {"method": "GET", "parent_scope": "batch.page"}
    assert outer.args[0] == "batch.page"
    assert outer.kwargs == {"page": 0, "parent_scope": None}
    reporter.record_metric.assert_called_once_with(
        "batch.page.alma.request.users", 1, metric_type="counter"
    )


@pytest.mark.unit
def test_simple_reporter_summarises_calls_and_totals(monkeypatch):
    monkeypatch.setenv("ALMA_BATCH_TELEMETRY", "1")
    reporter = SimpleReporter()
    ctx = TelemetryContext(reporter)

    for updated in (3, 4):
        with ctx("batch.page"):
            ctx.count("users.updated", updated)

    assert len(reporter.timings["batch.page"]) == 2
    assert reporter.metrics["batch.page.users.updated"] == [3, 4]
    report = reporter.get_report()
    assert "batch.page: 2 calls" in report
    assert "batch.page.users.updated: total 7" in report


@pytest.mark.unit
def test_failing_reporter_does_not_break_the_scope(monkeypatch, caplog):
    monkeypatch.setenv("ALMA_BATCH_TELEMETRY", "1")

    class Broken:
        def record_timing(self, scope, duration, **metadata):
            raise RuntimeError("reporter down")

        def record_metric(self, scope, value, **metadata):
            raise RuntimeError("reporter down")

    ctx = TelemetryContext(Broken())
    with ctx("batch.page"):
        ctx.metric("x", 1)

    assert "Telemetry reporter 'Broken' failed" in caplog.text
