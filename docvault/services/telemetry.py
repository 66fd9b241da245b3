from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture API call latency and outcomes per endpoint family.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def _percentile(ordered: list[float], fraction: float) -> float:
    return ordered[max(0, math.ceil(fraction * len(ordered)) - 1)]


def api_call_stats(window_s: int) -> dict[str, dict[str, float | int]]:
    """Summarize document service calls per endpoint family over the last ``window_s`` seconds.

    Each family reports call and failure counts plus p50, p95 and max latency in
    milliseconds. Families without calls in the window are omitted.
    """
    cutoff = time.time() - window_s
    recent = [sample for sample in _external_samples if sample.ts >= cutoff]
    stats: dict[str, dict[str, float | int]] = {}
    for integration in sorted({sample.integration for sample in recent}):
        samples = [sample for sample in recent if sample.integration == integration]
        ordered = sorted(sample.latency_ms for sample in samples)
        stats[integration] = {
            "calls": len(samples),
            "failures": sum(1 for sample in samples if not sample.success),
            "p50_ms": _percentile(ordered, 0.5),
            "p95_ms": _percentile(ordered, 0.95),
            "max_ms": ordered[-1],
        }
    return stats


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset() -> None:
    # Tests start from empty samples and counters.
    _external_samples.clear()
    _counters.clear()
