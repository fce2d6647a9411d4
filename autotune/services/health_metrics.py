"""Per-version health and quality aggregates from production traces."""

from __future__ import annotations

import logging
import time
from typing import Iterable

from autotune.models import HealthMetrics, QualityStats, TraceEvent
from autotune.services.database_service import DatabaseService

logger = logging.getLogger(__name__)


def compute_health(traces: Iterable[TraceEvent], behavior: str, version: str) -> HealthMetrics:
    """Aggregate error and tool-failure rates over traces tagged with ``version``."""
    count = 0
    errors = 0
    tool_calls = 0
    tool_failures = 0

    for trace in traces:
        if trace.prompt_pack_versions.get(behavior) != version:
            continue
        count += 1
        if trace.error_code:
            errors += 1
        for call in trace.tool_calls:
            tool_calls += 1
            if not call.ok:
                tool_failures += 1

    return HealthMetrics(
        version=version,
        count=count,
        error_rate=errors / count if count else 0.0,
        tool_calls=tool_calls,
        tool_failure_rate=tool_failures / tool_calls if tool_calls else 0.0,
    )


def quality_stats(rows: Iterable[tuple[float, dict[str, str]]], behavior: str, version: str) -> QualityStats:
    """Average metric score over traces produced by ``version``."""
    scores = [score for score, versions in rows if versions.get(behavior) == version]
    return QualityStats(average=sum(scores) / len(scores) if scores else 0.0, count=len(scores))


class HealthMetricsService:
    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    def recent_traces(
        self, window_hours: float, now_ms: int | None = None, limit: int | None = None
    ) -> list[TraceEvent]:
        """Newest traces inside the window, at most ``limit`` of them."""
        now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
        since_ms = now_ms - int(window_hours * 3600 * 1000)
        return self.db_service.get_recent_traces(since_ms, limit=limit)

    def health_for_version(
        self,
        behavior: str,
        version: str,
        window_hours: float,
        now_ms: int | None = None,
        limit: int | None = None,
    ) -> HealthMetrics:
        return compute_health(self.recent_traces(window_hours, now_ms, limit), behavior, version)

    def quality_for_version(self, behavior: str, version: str, metric: str) -> QualityStats:
        return quality_stats(self.db_service.get_scores_with_traces(metric), behavior, version)
