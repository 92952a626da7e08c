from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass
import time


@dataclass(frozen=True)
class CallSample:
    at: float
    integration: str
    latency_ms: float
    success: bool


# Process-global; a bounded window keeps long-running batch jobs from growing without limit.
_samples: deque[CallSample] = deque(maxlen=10000)
_counters: Counter[str] = Counter()


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    _samples.append(CallSample(at=time.time(), integration=integration, latency_ms=latency_ms, success=success))


def increment_counter(name: str, value: int = 1) -> None:
    # Fallback writes, index failures and retries are counted here.
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def external_call_summary(integration: str) -> dict[str, float | int]:
    latencies = [s.latency_ms for s in _samples if s.integration == integration]
    failures = sum(1 for s in _samples if s.integration == integration and not s.success)
    avg = round(sum(latencies) / len(latencies), 2) if latencies else 0.0
    return {"calls": len(latencies), "failures": failures, "avg_latency_ms": avg}


def reset_telemetry() -> None:
    _samples.clear()
    _counters.clear()
