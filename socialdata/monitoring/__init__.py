"""Metrics for the socialdata data layer."""

from .metrics import (
    Counter,
    Gauge,
    Histogram,
    attempts_total,
    backend_connected,
    call_latency_seconds,
    change_events_total,
    fallbacks_total,
    generate_metrics,
    reset_metrics,
)

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "attempts_total",
    "backend_connected",
    "call_latency_seconds",
    "change_events_total",
    "fallbacks_total",
    "generate_metrics",
    "reset_metrics",
]
