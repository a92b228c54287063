"""
In-process metrics: counters, gauges and rolling histograms for external
service calls, generation outcomes and background task counts.

Served as JSON at GET /metrics.
"""

import time
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Dict, Any

from app.utils.logger import get_logger

logger = get_logger("metrics")

_counters: Dict[str, int] = defaultdict(int)
_gauges: Dict[str, float] = {}
_histograms: Dict[str, list] = defaultdict(list)

MAX_HISTOGRAM_SAMPLES = 500  # Rolling window


def inc(name: str, value: int = 1) -> None:
    """Increment a counter."""
    _counters[name] += value


def set_gauge(name: str, value: float) -> None:
    _gauges[name] = value


def observe(name: str, value: float) -> None:
    """Record a histogram observation (e.g., duration)."""
    bucket = _histograms[name]
    bucket.append(value)
    if len(bucket) > MAX_HISTOGRAM_SAMPLES:
        _histograms[name] = bucket[-MAX_HISTOGRAM_SAMPLES:]


@asynccontextmanager
async def track_duration(service: str, operation: str = "call"):
    """
    Track duration and outcome of a block.

    Usage:
        async with track_duration("pdf", "render_bundle"):
            pdf = await render(...)
    """
    start = time.monotonic()
    outcome = "success"
    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        duration_ms = (time.monotonic() - start) * 1000
        observe(f"{service}.{operation}.duration_ms", duration_ms)
        inc(f"{service}.{operation}.{outcome}")
        log_fn = logger.info if outcome == "success" else logger.warning
        log_fn(
            "metrics.call",
            extra={
                "service": service,
                "operation": operation,
                "duration_ms": round(duration_ms, 1),
                "status": outcome,
            },
        )


def _percentile(sorted_samples: list, fraction: float) -> float:
    idx = min(int(len(sorted_samples) * fraction), len(sorted_samples) - 1)
    return round(sorted_samples[idx], 1)


def get_snapshot() -> Dict[str, Any]:
    """Return a snapshot of all counters, gauges and histogram summaries."""
    summaries = {}
    for name, samples in _histograms.items():
        if not samples:
            continue
        ordered = sorted(samples)
        summaries[name] = {
            "count": len(ordered),
            "p50": _percentile(ordered, 0.5),
            "p95": _percentile(ordered, 0.95),
            "p99": _percentile(ordered, 0.99),
            "max": round(ordered[-1], 1),
        }
    return {"counters": dict(_counters), "gauges": dict(_gauges), "histograms": summaries}


def reset() -> None:
    """Reset all metrics (used by tests)."""
    _counters.clear()
    _gauges.clear()
    _histograms.clear()
