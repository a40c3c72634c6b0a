"""Timings and metrics for span labeling requests.

``RobustLlmClient`` opens one ``span_labeling`` scope per request and records
raw span counts, final span counts and the validation outcome inside it.
Scopes nest through a context variable, so concurrent requests on one event
loop keep separate scope paths.

Telemetry is on when reporters are passed explicitly, or when
``SPAN_LABELER_TELEMETRY=1`` or ``DEBUG=1`` is set; the environment switch
writes to the ``span_labeler.telemetry`` logger at DEBUG level. Otherwise the
factory returns a shared no-op context.
"""

from collections import deque
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os
import time
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

log = logging.getLogger(__name__)

_active_scopes: ContextVar[tuple[str, ...]] = ContextVar(
    "span_labeler_active_scopes", default=()
)

# Read once at import
_TELEMETRY_ENABLED = (
    os.getenv("SPAN_LABELER_TELEMETRY") == "1" or os.getenv("DEBUG") == "1"
)


@runtime_checkable
class TelemetryReporter(Protocol):
    """Anything that accepts timings and metrics keyed by dotted scope path."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


def _scope_metadata(parents: tuple[str, ...], extra: dict[str, Any]) -> dict[str, Any]:
    return {
        "depth": len(parents),
        "parent_scope": ".".join(parents) or None,
        **extra,
    }


@dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return None

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass


class _ReportingTelemetryContext:
    """Fans scope timings and metrics out to its reporters.

    A reporter that raises is logged and skipped; the request carries on.
    """

    __slots__ = ("reporters",)

    def __init__(self, *reporters: TelemetryReporter):
        self.reporters = reporters

    def _dispatch(self, record: Callable[[TelemetryReporter], None]) -> None:
        for reporter in self.reporters:
            try:
                record(reporter)
            except Exception as e:
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )

    def __call__(
        self, name: str, **metadata: Any
    ) -> AbstractContextManager["_ReportingTelemetryContext"]:
        return self._timed_scope(name, metadata)

    @contextmanager
    def _timed_scope(
        self, name: str, metadata: dict[str, Any]
    ) -> Iterator["_ReportingTelemetryContext"]:
        if not isinstance(name, str) or not name:
            raise ValueError("Scope name must be a non-empty string")

        parents = _active_scopes.get()
        path = ".".join((*parents, name))
        token = _active_scopes.set((*parents, name))
        started = time.perf_counter()
        try:
            yield self
        finally:
            elapsed = time.perf_counter() - started
            _active_scopes.reset(token)
            tags = _scope_metadata(parents, metadata)
            self._dispatch(lambda r: r.record_timing(path, elapsed, **tags))

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        """Record ``value`` under ``name`` inside the innermost open scope."""
        parents = _active_scopes.get()
        path = ".".join((*parents, name))
        tags = _scope_metadata(parents, metadata)
        self._dispatch(lambda r: r.record_metric(path, value, **tags))

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        self.metric(name, increment, metric_type="counter", **metadata)


type TelemetryContextProtocol = _ReportingTelemetryContext | _NoOpTelemetryContext

_NO_OP = _NoOpTelemetryContext()


class LoggingReporter:
    """Writes every timing and metric to the module logger at DEBUG."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        log.debug("timing %s %.4fs %s", scope, duration, metadata)

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        log.debug("metric %s=%r %s", scope, value, metadata)


class InMemoryReporter:
    """Keeps the most recent entries per scope, for tests and diagnostics."""

    def __init__(self, max_entries_per_scope: int = 1000):
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def _bucket(self, store: dict[str, deque], scope: str) -> deque:
        return store.setdefault(scope, deque(maxlen=self.max_entries))

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        self._bucket(self.timings, scope).append((duration, metadata))

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        self._bucket(self.metrics, scope).append((value, metadata))

    def get_report(self) -> str:
        """One line per timed scope (call count, mean), then latest metric values."""
        lines = ["=== Telemetry Report ==="]
        for scope in sorted(self.timings):
            durations = [duration for duration, _ in self.timings[scope]]
            mean = sum(durations) / len(durations)
            lines.append(f"{scope:<40} | Calls: {len(durations):<4} | Avg: {mean:.4f}s")
        lines.extend(
            f"{scope:<40} | Last: {self.metrics[scope][-1][0]!r}"
            for scope in sorted(self.metrics)
        )
        return "\n".join(lines)


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return a telemetry context for the given reporters.

    With no reporters, the environment switch picks a logging context or the
    shared no-op instance.
    """
    if reporters:
        return _ReportingTelemetryContext(*reporters)
    if _TELEMETRY_ENABLED:
        return _ReportingTelemetryContext(LoggingReporter())
    return _NO_OP
