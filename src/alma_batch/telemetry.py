"""Opt-in timings and counters for batch runs.

`TelemetryContext()` hands out a shared no-op object unless telemetry is
switched on with ``ALMA_BATCH_TELEMETRY=1`` and at least one reporter is
given. Callers use the same three operations either way::

    with telemetry("batch.page", page=3):
        telemetry.count("users.updated", 12)

Scopes nest per asyncio task: a request timed inside a page scope is reported
as ``batch.page.alma.request``.
"""

from collections import defaultdict
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
import logging
import os
import time
from typing import Any, Protocol, runtime_checkable

log = logging.getLogger(__name__)

TELEMETRY_ENV_VAR = "ALMA_BATCH_TELEMETRY"

_active_scopes: ContextVar[tuple[str, ...]] = ContextVar("alma_scopes", default=())


def telemetry_enabled() -> bool:
    """Whether telemetry was switched on through the environment."""
    return os.getenv(TELEMETRY_ENV_VAR) == "1"


@runtime_checkable
class TelemetryReporter(Protocol):
    """Receives scope timings and metric values."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


def _qualified(name: str) -> str:
    return ".".join((*_active_scopes.get(), name))


class _DisabledTelemetry:
    """Shared stand-in that records nothing."""

    __slots__ = ()

    @contextmanager
    def __call__(self, name: str, **metadata: Any) -> Iterator[None]:  # noqa: ARG002
        yield

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass


class _ReportingTelemetry:
    """Forwards scope timings and metrics to every reporter."""

    __slots__ = ("reporters",)

    def __init__(self, reporters: tuple[TelemetryReporter, ...]) -> None:
        self.reporters = reporters

    @contextmanager
    def __call__(self, name: str, **metadata: Any) -> Iterator[None]:
        if not name:
            raise ValueError("Scope name must be a non-empty string")
        parents = _active_scopes.get()
        token = _active_scopes.set((*parents, name))
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            _active_scopes.reset(token)
            scope = ".".join((*parents, name))
            parent = ".".join(parents) or None
            self._emit("record_timing", scope, elapsed, parent_scope=parent, **metadata)

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        """Report a value under the current scope path."""
        self._emit("record_metric", _qualified(name), value, **metadata)

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        """Report a counter increment under the current scope path."""
        self.metric(name, increment, metric_type="counter", **metadata)

    def _emit(self, method: str, scope: str, value: Any, **metadata: Any) -> None:
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(scope, value, **metadata)
            except Exception as e:  # noqa: BLE001 - a broken reporter never fails a run
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )


_DISABLED = _DisabledTelemetry()

type TelemetryContextProtocol = _ReportingTelemetry | _DisabledTelemetry


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return a reporting context, or the shared disabled one."""
    if reporters and telemetry_enabled():
        return _ReportingTelemetry(reporters)
    return _DISABLED


class SimpleReporter:
    """In-memory reporter; `get_report()` summarises a finished run."""

    def __init__(self) -> None:
        self.timings: dict[str, list[float]] = defaultdict(list)
        self.metrics: dict[str, list[Any]] = defaultdict(list)

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:  # noqa: ARG002, D102
        self.timings[scope].append(duration)

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:  # noqa: ARG002, D102
        self.metrics[scope].append(value)

    def get_report(self) -> str:
        """Per-scope call counts and mean durations, then metric totals."""
        lines = ["=== Telemetry ==="]
        for scope in sorted(self.timings):
            durations = self.timings[scope]
            mean = sum(durations) / len(durations)
            lines.append(f"{scope}: {len(durations)} calls, mean {mean:.3f}s")
        for scope in sorted(self.metrics):
            total = sum(v for v in self.metrics[scope] if isinstance(v, int | float))
            lines.append(f"{scope}: total {total:g}")
        return "\n".join(lines)
