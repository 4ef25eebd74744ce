"""
Performance tracking — per (model, task type) latency and success.

The only mutable state shared across concurrent calls. Every update
(counter increment plus rolling-mean recomputation) happens under one
lock, so concurrent outcomes for the same key never lose increments.

Usage:
    tracker = PerformanceTracker()
    tracker.record("o3", "risk_assessment", elapsed_ms=812.0, success=True)
    tracker.get("o3", "risk_assessment").success_rate
    # → 1.0
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional

from modelrelay.llm.llm_config import resolve_provider


@dataclass
class PerformanceRecord:
    """Accumulated outcomes for one (model, task type) key."""

    total_calls: int = 0
    success_count: int = 0
    rolling_avg_response_time_ms: float = 0.0
    last_used_at: Optional[datetime] = None

    @property
    def success_rate(self) -> float:
        if self.total_calls == 0:
            return 0.0
        return self.success_count / self.total_calls


@dataclass
class ProviderLoad:
    """Request count and mean latency per provider family."""

    requests: int = 0
    avg_response_time_ms: float = 0.0


class PerformanceTracker:
    """Lock-guarded map of PerformanceRecord, empty at construction."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[tuple[str, str], PerformanceRecord] = {}
        self._load: dict[str, ProviderLoad] = {}

    def record(
        self,
        model_id: str,
        task_type: str,
        elapsed_ms: float,
        success: bool,
    ) -> PerformanceRecord:
        """Apply one outcome; returns a copy of the updated record."""
        provider = resolve_provider(model_id)[0].value
        now = datetime.now(timezone.utc)

        with self._lock:
            current = self._records.setdefault(
                (model_id, task_type), PerformanceRecord()
            )
            current.total_calls += 1
            if success:
                current.success_count += 1
            current.rolling_avg_response_time_ms += (
                elapsed_ms - current.rolling_avg_response_time_ms
            ) / current.total_calls
            current.last_used_at = now

            load = self._load.setdefault(provider, ProviderLoad())
            load.requests += 1
            load.avg_response_time_ms += (
                elapsed_ms - load.avg_response_time_ms
            ) / load.requests

            return replace(current)

    def get(self, model_id: str, task_type: str) -> Optional[PerformanceRecord]:
        with self._lock:
            current = self._records.get((model_id, task_type))
            return replace(current) if current else None

    def snapshot(self) -> dict[tuple[str, str], PerformanceRecord]:
        """Copies of every record, safe to read while calls continue."""
        with self._lock:
            return {key: replace(rec) for key, rec in self._records.items()}

    def provider_load(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {
                provider: {
                    "requests": load.requests,
                    "avg_response_time_ms": round(load.avg_response_time_ms, 1),
                }
                for provider, load in self._load.items()
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
