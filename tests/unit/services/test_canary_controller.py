"""Tests for canary promotion, rollback and health gating."""

from datetime import datetime

import pytest

from autotune.config import DeployConfig
from autotune.database import BehaviorStateDB
from autotune.models import CanaryAction, DeploymentStatus, EvalResult, HealthMetrics, PromptPack
from autotune.services.canary_controller import CanaryController, find_health_violation
from autotune.services.deployer import PackArtifacts

BEHAVIOR = "task-extraction"
METRIC = "task_extraction"


def _pack(version):
    return PromptPack(name=f"Autotune {BEHAVIOR}", version=version, behavior=BEHAVIOR, instructions=f"v{version}")


@pytest.fixture()
def artifacts(tmp_path):
    return PackArtifacts(tmp_path)


@pytest.fixture()
def seed(db_service, make_trace):
    """Store ``count`` traces tagged with ``version`` and score each one."""

    def _seed(version, count, score, errors=0, tool_calls=None):
        traces = []
        for i in range(count):
            traces.append(
                make_trace(
                    trace_id=f"{version}-{i}",
                    versions={BEHAVIOR: version},
                    error_code="upstream_error" if i < errors else None,
                    tool_calls=tool_calls,
                )
            )
        db_service.add_traces(traces)
        for trace in traces:
            db_service.upsert_eval_score(trace.trace_id, METRIC, EvalResult(score=score))

    return _seed


def _stage(db_service, artifacts, active=None, canary=None):
    """Put packs in place the way the deployer would."""
    if active:
        db_service.insert_prompt_pack(_pack(active))
        db_service.record_transition(BEHAVIOR, active, artifacts.active_path(BEHAVIOR), DeploymentStatus.FULL, 100, active_version=active)
        artifacts.write_active(_pack(active))
    if canary:
        db_service.insert_prompt_pack(_pack(canary))
        since = datetime(2026, 1, 1)
        db_service.record_transition(
            BEHAVIOR, canary, artifacts.canary_path(BEHAVIOR), DeploymentStatus.CANARY, 10,
            canary_version=canary, canary_since=since,
        )
        artifacts.write_canary(_pack(canary), 10, since)


def _controller(db_service, artifacts, **overrides):
    return CanaryController(db_service, artifacts, DeployConfig(output_dir=artifacts.output_dir, **overrides))


# ============================================================================
# State machine
# ============================================================================


@pytest.mark.unit
def test_no_canary_is_noop(db_service, artifacts):
    _stage(db_service, artifacts, active="1")

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.NONE
    assert decision.active_version == "1"
    assert len(db_service.list_deployments(BEHAVIOR)) == 1


@pytest.mark.unit
def test_waits_below_min_samples(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 25, 0.2)
    seed("2", 19, 0.9)

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.WAITING
    assert decision.canary_quality.count == 19
    assert db_service.get_behavior_state(BEHAVIOR).canary_version == "2"
    assert artifacts.canary_path(BEHAVIOR).exists()


@pytest.mark.unit
def test_promotes_on_improvement(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 25, 0.65)
    seed("2", 25, 0.70)

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.PROMOTED
    assert decision.note == "score_improvement=0.050"
    assert decision.active_version == "2"

    state = db_service.get_behavior_state(BEHAVIOR)
    assert (state.active_version, state.canary_version, state.canary_since) == ("2", None, None)
    assert not artifacts.canary_path(BEHAVIOR).exists()
    active = artifacts.read(artifacts.active_path(BEHAVIOR))
    assert active["version"] == "2"
    assert "canaryPercent" not in active["metadata"]

    latest = db_service.list_deployments(BEHAVIOR)[0]
    assert (latest.status, latest.pack_version, latest.canary_percent) == (DeploymentStatus.PROMOTED, "2", 100)


@pytest.mark.unit
def test_promotes_without_active_pack(db_service, artifacts, seed):
    _stage(db_service, artifacts, canary="1")
    seed("1", 20, 0.3)

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.PROMOTED
    assert decision.note == "no_active_pack"
    assert artifacts.read(artifacts.active_path(BEHAVIOR))["version"] == "1"


@pytest.mark.unit
def test_rolls_back_on_score_regression(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 25, 0.70)
    seed("2", 25, 0.60)

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.ROLLED_BACK
    assert decision.note == "score_regression"
    state = db_service.get_behavior_state(BEHAVIOR)
    assert (state.active_version, state.canary_version) == ("1", None)
    assert not artifacts.canary_path(BEHAVIOR).exists()
    assert artifacts.read(artifacts.active_path(BEHAVIOR))["version"] == "1"

    latest = db_service.list_deployments(BEHAVIOR)[0]
    assert (latest.status, latest.canary_percent, latest.note) == (DeploymentStatus.ROLLED_BACK, 0, "score_regression")


@pytest.mark.unit
def test_keeps_waiting_inside_dead_band(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 25, 0.70)
    seed("2", 25, 0.71)

    assert _controller(db_service, artifacts).evaluate(BEHAVIOR).action == CanaryAction.WAITING


@pytest.mark.unit
def test_improvement_exactly_at_threshold_promotes(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 20, 0.1)
    seed("2", 20, 0.3)

    decision = _controller(db_service, artifacts, canary_min_improvement=0.2).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.PROMOTED


# ============================================================================
# Health gating
# ============================================================================


@pytest.mark.unit
def test_error_rate_ceiling_vetoes_good_scores(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 20, 0.5)
    seed("2", 20, 0.95, errors=6)

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.ROLLED_BACK
    assert "error_rate=0.300" in decision.note
    assert decision.canary_health.error_rate == pytest.approx(0.3)
    assert db_service.get_behavior_state(BEHAVIOR).canary_version is None
    assert not artifacts.canary_path(BEHAVIOR).exists()


@pytest.mark.unit
def test_tool_failure_delta_rolls_back(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    ok = [{"name": "search", "ok": True}] * 4
    seed("1", 20, 0.5, tool_calls=ok + [{"name": "search", "ok": True}])
    # canary: 1 of 5 calls fail -> 0.2, under the ceiling but 0.2 above active
    seed("2", 20, 0.9, tool_calls=ok + [{"name": "search", "ok": False}])

    decision = _controller(db_service, artifacts).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.ROLLED_BACK
    assert decision.note.startswith("health_gate: tool_failure_rate=0.200 (active 0.000)")


@pytest.mark.unit
def test_zero_window_disables_health_gate(db_service, artifacts, seed):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 20, 0.5)
    seed("2", 20, 0.9, errors=20)

    decision = _controller(db_service, artifacts, health_window_hours=0).evaluate(BEHAVIOR)

    assert decision.action == CanaryAction.PROMOTED
    assert decision.canary_health is None


@pytest.mark.unit
def test_promote_fails_when_pack_missing(db_service, artifacts, seed):
    seed("ghost", 20, 0.9)
    db_service.db.add(BehaviorStateDB(behavior=BEHAVIOR, canary_version="ghost"))
    db_service.db.commit()

    with pytest.raises(LookupError):
        _controller(db_service, artifacts, health_window_hours=0).evaluate(BEHAVIOR)


@pytest.mark.unit
class TestFindHealthViolation:
    def _health(self, count=20, error_rate=0.0, tool_failure_rate=0.0):
        return HealthMetrics(version="v", count=count, error_rate=error_rate, tool_calls=10, tool_failure_rate=tool_failure_rate)

    def test_too_few_samples_never_violates(self):
        assert find_health_violation(self._health(count=5, error_rate=1.0), None, DeployConfig()) is None

    def test_absolute_ceiling(self):
        note = find_health_violation(self._health(error_rate=0.3), None, DeployConfig())
        assert note == "health_gate: error_rate=0.300 exceeds 0.250"

    def test_delta_needs_comparable_active(self):
        config = DeployConfig()
        canary = self._health(error_rate=0.2)
        assert find_health_violation(canary, self._health(count=3, error_rate=0.0), config) is None
        assert find_health_violation(canary, self._health(error_rate=0.0), config) == (
            "health_gate: error_rate=0.200 (active 0.000) delta exceeds 0.100"
        )

    def test_healthy_canary(self):
        assert find_health_violation(self._health(error_rate=0.1), self._health(error_rate=0.05), DeployConfig()) is None


@pytest.mark.unit
def test_health_gate_reads_at_most_max_traces(db_service, artifacts, seed, make_trace):
    _stage(db_service, artifacts, active="1", canary="2")
    seed("1", 20, 0.5)
    seed("2", 20, 0.5)
    # Newer untagged traffic fills the cap, leaving no canary samples to gate on
    db_service.add_traces([make_trace(trace_id=f"other-{i}", created_at=int(1e13) - i) for i in range(5)])

    decision = _controller(db_service, artifacts, health_max_traces=5).evaluate(BEHAVIOR)

    assert decision.canary_health.count == 0
    assert decision.active_health.count == 0
