from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


# In-process only; each API worker reports its own numbers.
@dataclass(frozen=True)
class RequestSample:
    ts: float
    route_class: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_requests: Deque[RequestSample] = deque(maxlen=20000)
_external_calls: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, route_class: str, status_code: int, latency_ms: float) -> None:
    _requests.append(RequestSample(time.time(), route_class, status_code, latency_ms))
    if status_code >= 500:
        _counters[f"{route_class}_server_errors_total"] += 1


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Classifier, chat and calendar calls all land here through timed_call.
    _external_calls.append(ExternalCallSample(time.time(), integration, latency_ms, success))


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def _p95(values: list[float]) -> float:
    ordered = sorted(values)
    return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]


def latency_by_route_class(window_s: int) -> dict[str, float]:
    cutoff = time.time() - window_s
    grouped: dict[str, list[float]] = defaultdict(list)
    for sample in _requests:
        if sample.ts >= cutoff:
            grouped[sample.route_class].append(sample.latency_ms)
    return {route_class: _p95(latencies) for route_class, latencies in grouped.items()}


def external_failure_ratio(integration: str, window_s: int) -> float | None:
    cutoff = time.time() - window_s
    samples = [s for s in _external_calls if s.integration == integration and s.ts >= cutoff]
    if not samples:
        return None
    return sum(1 for s in samples if not s.success) / len(samples)


def reset_telemetry() -> None:
    # Clear samples and counters between tests.
    _requests.clear()
    _external_calls.clear()
    _counters.clear()
