"""Tool execution tracing and token estimation."""

from __future__ import annotations

import json
import math
import time
from collections import deque
from typing import Any

from search_agent.types import ToolTrace

MAX_TRACE_ENTRIES = 200


class ToolTraceLog:
    """Bounded in-memory log of tool executions for API-level observability.

    Oldest traces are dropped once `max_entries` is exceeded; the summary
    only covers traces still held.
    """

    def __init__(self, max_entries: int = MAX_TRACE_ENTRIES) -> None:
        self._records: deque[ToolTrace] = deque(maxlen=max_entries)

    def record(self, trace: ToolTrace) -> None:
        self._records.append(trace)

    def list_recent(self, limit: int = 20) -> list[ToolTrace]:
        if limit <= 0:
            return []
        return list(self._records)[-limit:]

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate core observability metrics for dashboard display."""
        records = list(self._records)
        total = len(records)
        if total == 0:
            return {
                "total_calls": 0,
                "failed_calls": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_result_tokens": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_calls": total,
            "failed_calls": sum(1 for record in records if not record.success),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_result_tokens": sum(record.token_count for record in records),
        }


class Timer:
    """Simple context timer used around tool and synthesis calls."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_result_tokens(data: Any) -> int:
    """Estimate the context cost of a result as a quarter of its JSON length."""
    if data is None:
        return 0
    text = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False, default=str)
    return math.ceil(len(text) / 4)
