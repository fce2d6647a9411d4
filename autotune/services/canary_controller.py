"""Resolves pending canaries into promotions or rollbacks."""

from __future__ import annotations

import logging
import time
from typing import Callable

from autotune.config import DeployConfig
from autotune.models import CanaryAction, CanaryDecision, DeploymentStatus, HealthMetrics
from autotune.services.database_service import DatabaseService
from autotune.services.deployer import PackArtifacts
from autotune.services.health_metrics import HealthMetricsService, compute_health
from autotune.services.rubrics import metric_for_behavior
from autotune.services.selector import SCORE_EPSILON

logger = logging.getLogger(__name__)

SCORE_REGRESSION_NOTE = "score_regression"


def find_health_violation(
    canary: HealthMetrics, active: HealthMetrics | None, config: DeployConfig
) -> str | None:
    """Return a note describing the first health ceiling the canary breaks, if any."""
    if canary.count < config.health_min_samples:
        return None

    comparable = active is not None and active.count >= config.health_min_samples
    checks = [
        (
            "error_rate",
            canary.error_rate,
            active.error_rate if active else None,
            config.max_error_rate,
            config.max_error_rate_delta,
        ),
        (
            "tool_failure_rate",
            canary.tool_failure_rate,
            active.tool_failure_rate if active else None,
            config.max_tool_failure_rate,
            config.max_tool_failure_rate_delta,
        ),
    ]
    for name, value, active_value, ceiling, delta_ceiling in checks:
        if value > ceiling:
            return f"health_gate: {name}={value:.3f} exceeds {ceiling:.3f}"
        if comparable and value - active_value > delta_ceiling:
            return f"health_gate: {name}={value:.3f} (active {active_value:.3f}) delta exceeds {delta_ceiling:.3f}"
    return None


class CanaryController:
    """Per-behavior canary state machine.

    Health gating runs first and can veto a canary regardless of its quality
    scores. Quality comparison then promotes, rolls back or keeps waiting.
    """

    def __init__(
        self,
        db_service: DatabaseService,
        artifacts: PackArtifacts,
        config: DeployConfig,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ):
        self.db_service = db_service
        self.artifacts = artifacts
        self.config = config
        self.clock_ms = clock_ms
        self.metrics = HealthMetricsService(db_service)

    def evaluate(self, behavior: str) -> CanaryDecision:
        state = self.db_service.get_behavior_state(behavior)
        canary_version = state.canary_version
        active_version = state.active_version
        if not canary_version:
            return CanaryDecision(behavior=behavior, action=CanaryAction.NONE, active_version=active_version)

        decision = CanaryDecision(
            behavior=behavior,
            action=CanaryAction.WAITING,
            canary_version=canary_version,
            active_version=active_version,
        )

        if self.config.health_window_hours > 0:
            traces = self.metrics.recent_traces(
                self.config.health_window_hours, self.clock_ms(), limit=self.config.health_max_traces
            )
            decision.canary_health = compute_health(traces, behavior, canary_version)
            if active_version:
                decision.active_health = compute_health(traces, behavior, active_version)

            violation = find_health_violation(decision.canary_health, decision.active_health, self.config)
            if violation:
                return self._rollback(decision, violation)

        metric = metric_for_behavior(behavior)
        decision.canary_quality = self.metrics.quality_for_version(behavior, canary_version, metric)
        if active_version:
            decision.active_quality = self.metrics.quality_for_version(behavior, active_version, metric)

        if decision.canary_quality.count < self.config.canary_min_samples:
            return decision

        if not active_version:
            return self._promote(decision, "no_active_pack")

        improvement = decision.canary_quality.average - decision.active_quality.average
        if improvement + SCORE_EPSILON >= self.config.canary_min_improvement:
            return self._promote(decision, f"score_improvement={improvement:.3f}")
        if -improvement + SCORE_EPSILON >= self.config.canary_min_improvement:
            return self._rollback(decision, SCORE_REGRESSION_NOTE)

        return decision

    def _promote(self, decision: CanaryDecision, note: str) -> CanaryDecision:
        """Make the canary the active pack.

        The active file is written from the stored pack, so it intentionally
        drops the ``canaryPercent`` and ``canarySince`` keys the canary file had.
        """
        behavior = decision.behavior
        pack = self.db_service.get_prompt_pack(behavior, decision.canary_version)
        if pack is None:
            raise LookupError(f"Canary pack {behavior}@{decision.canary_version} is missing from storage")

        self.db_service.record_transition(
            behavior,
            pack.version,
            self.artifacts.active_path(behavior),
            DeploymentStatus.PROMOTED,
            100,
            note=note,
            active_version=pack.version,
            canary_version=None,
            canary_since=None,
        )
        self.artifacts.write_active(pack)
        self.artifacts.remove_canary(behavior)

        logger.info(f"Promoted {behavior} canary {pack.version} (was {decision.active_version}): {note}")
        decision.action = CanaryAction.PROMOTED
        decision.note = note
        decision.active_version = pack.version
        return decision

    def _rollback(self, decision: CanaryDecision, note: str) -> CanaryDecision:
        behavior = decision.behavior
        self.db_service.record_transition(
            behavior,
            decision.canary_version,
            self.artifacts.canary_path(behavior),
            DeploymentStatus.ROLLED_BACK,
            0,
            note=note,
            canary_version=None,
            canary_since=None,
        )
        self.artifacts.remove_canary(behavior)

        logger.warning(f"Rolled back {behavior} canary {decision.canary_version}: {note}")
        decision.action = CanaryAction.ROLLED_BACK
        decision.note = note
        return decision
