"""
Structured logging, counters and span-based tracing.

One ``Observability`` instance is built at startup and handed to every
component that needs instrumentation. Nothing here may fail the caller:
log and metric failures are swallowed.
"""
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from .logging_config import get_trace_id, new_trace_id
from .services.prometheus_metrics import PrometheusMetrics

SPAN_SUCCESS = "success"
SPAN_ERROR = "error"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


@dataclass
class Span:
    trace_id: str
    operation: str
    start_time: float
    attributes: Dict[str, Any] = field(default_factory=dict)
    end_time: Optional[float] = None
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trace_id": self.trace_id,
            "operation": self.operation,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "error": self.error,
            "attributes": dict(self.attributes),
        }


def metric_key(name: str, tags: Optional[Dict[str, Any]] = None) -> str:
    """Key under which a metric/tag combination accumulates."""
    return f"{name}:{json.dumps(tags or {}, sort_keys=True, default=str)}"


class Observability:
    def __init__(self, logger_name: str = "trustlayer", recent_spans: int = 1000,
                 prometheus: Optional[PrometheusMetrics] = None):
        self.logger = logging.getLogger(logger_name)
        self.prometheus = prometheus or PrometheusMetrics()
        self._metrics: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._spans = deque(maxlen=recent_spans)

    # ----- Logging -----
    def log(self, level: Union[str, int], message: str, attributes: Optional[Dict[str, Any]] = None,
            component: str = "core") -> None:
        try:
            levelno = level if isinstance(level, int) else _LEVELS.get(str(level).lower(), logging.INFO)
            self.logger.log(levelno, message, extra={
                "trace_id": get_trace_id() or new_trace_id(),
                "attributes": attributes or {},
                "component": component,
            })
        except Exception:
            pass

    # ----- Metrics -----
    def record_metric(self, name: str, value: float, tags: Optional[Dict[str, Any]] = None) -> None:
        try:
            key = metric_key(name, tags)
            with self._lock:
                self._metrics[key] = self._metrics.get(key, 0) + value
        except Exception:
            pass

    def mirror(self, method: str, *args) -> None:
        """Call ``PrometheusMetrics.<method>(*args)``; exporter failures never reach the caller."""
        try:
            getattr(self.prometheus, method)(*args)
        except Exception:
            pass

    def get_metrics(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._metrics)

    def get_metric(self, name: str, tags: Optional[Dict[str, Any]] = None) -> float:
        with self._lock:
            return self._metrics.get(metric_key(name, tags), 0)

    # ----- Tracing -----
    def start_span(self, operation: str, attributes: Optional[Dict[str, Any]] = None) -> Span:
        return Span(
            trace_id=get_trace_id() or new_trace_id(),
            operation=operation,
            start_time=time.time(),
            attributes=dict(attributes or {}),
        )

    def finish_span(self, span: Span, status: str = SPAN_SUCCESS, error: Optional[BaseException] = None) -> Span:
        """Close a span and emit its duration and count metrics.

        Must be called exactly once per span, on every exit path of the
        operation it measures, including error paths.
        """
        if span.finished:
            raise RuntimeError(f"span {span.operation!r} ({span.trace_id}) already finished")

        span.end_time = time.time()
        span.status = status
        if error is not None:
            span.error = str(error) or type(error).__name__

        duration = span.duration_ms
        tags = {"status": status}
        self.record_metric(f"span.{span.operation}.duration", duration, tags)
        self.record_metric(f"span.{span.operation}.count", 1, tags)

        self.mirror("observe_span", span.operation, status, duration)

        try:
            self._spans.append(span)
        except Exception:
            pass

        self.log(
            "error" if status == SPAN_ERROR else "debug",
            f"span {span.operation} {status}",
            {
                "operation": span.operation,
                "trace_id": span.trace_id,
                "duration_ms": round(duration, 3),
                "status": status,
                "error": span.error,
                **span.attributes,
            },
            component="tracing",
        )
        return span

    def recent_spans(self, limit: int = 100) -> List[Dict[str, Any]]:
        spans = list(self._spans)
        return [s.to_dict() for s in spans[-limit:]] if limit else [s.to_dict() for s in spans]
