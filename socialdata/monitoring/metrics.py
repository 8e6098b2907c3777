"""In-process metrics for the socialdata data layer.

Rendered in Prometheus text format by generate_metrics():
- Call metrics: attempts_total, call_latency_seconds, fallbacks_total
- Change feed metrics: change_events_total
- Connection metrics: backend_connected
"""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


def _format_labels(names: list[str], values: tuple) -> str:
    return ",".join(f'{n}="{v}"' for n, v in zip(names, values))


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._lock = threading.Lock()

    def _key(self, kwargs: dict) -> tuple:
        return tuple(str(kwargs.get(l, "")) for l in self._label_names)

    def _header(self) -> list[str]:
        return [
            f"# HELP {self.name} {self.description}",
            f"# TYPE {self.name} {self.kind}",
        ]


class Counter(_Metric):
    """A counter metric that can only increase."""

    kind = "counter"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        super().__init__(name, description, labels)
        self._values: dict[tuple, float] = {}

    def labels(self, **kwargs) -> "_BoundCounter":
        """Return a counter with specific labels."""
        return _BoundCounter(self, self._key(kwargs))

    def inc(self, value: float = 1.0) -> None:
        self._inc(self._key({}), value)

    def _inc(self, key: tuple, value: float) -> None:
        if value < 0:
            raise ValueError("Counters can only increase")
        with self._lock:
            self._values[key] = self._values.get(key, 0) + value

    def get(self, **kwargs) -> float:
        with self._lock:
            return self._values.get(self._key(kwargs), 0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        lines = self._header()
        with self._lock:
            for key, value in self._values.items():
                if key:
                    lines.append(f"{self.name}{{{_format_labels(self._label_names, key)}}} {value}")
                else:
                    lines.append(f"{self.name} {value}")
        return "\n".join(lines)


class _BoundCounter:
    def __init__(self, parent: Counter, key: tuple):
        self._parent = parent
        self._key = key

    def inc(self, value: float = 1.0) -> None:
        self._parent._inc(self._key, value)


class Gauge(_Metric):
    """A gauge metric that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        super().__init__(name, description, labels)
        self._values: dict[tuple, float] = {}

    def set(self, value: float, **labels) -> None:
        with self._lock:
            self._values[self._key(labels)] = value

    def get(self, **labels) -> float:
        with self._lock:
            return self._values.get(self._key(labels), 0)

    def reset(self) -> None:
        with self._lock:
            self._values.clear()

    def to_prometheus(self) -> str:
        lines = self._header()
        with self._lock:
            for key, value in self._values.items():
                if key:
                    lines.append(f"{self.name}{{{_format_labels(self._label_names, key)}}} {value}")
                else:
                    lines.append(f"{self.name} {value}")
        return "\n".join(lines)


class Histogram(_Metric):
    """A histogram metric for tracking distributions."""

    kind = "histogram"
    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[list[str]] = None,
        buckets: Optional[tuple] = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: dict[tuple, list[float]] = {}

    def observe(self, value: float, **labels) -> None:
        """Record an observation."""
        with self._lock:
            self._observations.setdefault(self._key(labels), []).append(value)

    def count(self, **labels) -> int:
        with self._lock:
            return len(self._observations.get(self._key(labels), []))

    def reset(self) -> None:
        with self._lock:
            self._observations.clear()

    def to_prometheus(self) -> str:
        lines = self._header()
        with self._lock:
            for key, observations in self._observations.items():
                prefix = _format_labels(self._label_names, key)
                sep = "," if prefix else ""
                for bucket in self.buckets:
                    bucket_count = sum(1 for o in observations if o <= bucket)
                    lines.append(f'{self.name}_bucket{{{prefix}{sep}le="{bucket}"}} {bucket_count}')
                lines.append(f'{self.name}_bucket{{{prefix}{sep}le="+Inf"}} {len(observations)}')
                suffix = f"{{{prefix}}}" if prefix else ""
                lines.append(f"{self.name}_sum{suffix} {sum(observations)}")
                lines.append(f"{self.name}_count{suffix} {len(observations)}")
        return "\n".join(lines)


# =============================================================================
# Call Metrics
# =============================================================================

attempts_total = Counter(
    name="socialdata_attempts_total",
    description="Remote call attempts by outcome",
    labels=["resource", "outcome"],
)

call_latency_seconds = Histogram(
    name="socialdata_call_latency_seconds",
    description="End-to-end latency of executed calls, including backoff",
    labels=["resource"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

fallbacks_total = Counter(
    name="socialdata_fallbacks_total",
    description="Results served from fallback values",
    labels=["resource", "kind"],
)


# =============================================================================
# Change Feed / Connection Metrics
# =============================================================================

change_events_total = Counter(
    name="socialdata_change_events_total",
    description="Change events reconciled into held result sets",
    labels=["collection", "operation"],
)

backend_connected = Gauge(
    name="socialdata_backend_connected",
    description="1 if the last backend health check succeeded",
)


_ALL_METRICS = [
    attempts_total,
    call_latency_seconds,
    fallbacks_total,
    change_events_total,
    backend_connected,
]


def generate_metrics() -> str:
    """Generate all metrics in Prometheus text format."""
    output = []
    for metric in _ALL_METRICS:
        text = metric.to_prometheus()
        if text.strip():
            output.append(text)
    return "\n\n".join(output)


def reset_metrics() -> None:
    """Clear all recorded values."""
    for metric in _ALL_METRICS:
        metric.reset()
