"""Tests for batch judging of stored traces."""

import pytest

from autotune.config import AutotuneConfig, JudgeConfig
from autotune.database import EvalRunDB, EvalScoreDB
from autotune.models import EvalResult
from autotune.services.eval_service import EvalService
from autotune.services.judge_service import JudgeService
from autotune.services.rubrics import RESPONSE_QUALITY, TASK_EXTRACTION


def _service(db_service, llm):
    config = AutotuneConfig(judge=JudgeConfig(stage1_model="judge-fast"), eval_max_traces=50)
    return EvalService(db_service, JudgeService(llm, config.judge), config)


@pytest.mark.unit
def test_scores_pending_traces_and_records_run(db_service, db_session, make_trace, scripted_llm):
    db_service.add_traces([make_trace(trace_id="a"), make_trace(trace_id="b")])
    llm = scripted_llm(lambda model, messages: '{"score": 0.8, "reason": "good"}')

    evaluated = _service(db_service, llm).run([RESPONSE_QUALITY])

    assert evaluated == {"response_quality": 2}
    assert db_service.get_eval_score("a", "response_quality").score == 0.8
    run = db_session.query(EvalRunDB).one()
    assert (run.rubric, run.model_id, run.status, run.trace_count) == ("response_quality", "judge-fast", "success", 2)
    assert {c["model"] for c in llm.calls} == {"judge-fast"}


@pytest.mark.unit
def test_rejudging_never_duplicates_scores(db_service, db_session, make_trace, scripted_llm):
    """Scored traces are skipped, and explicit re-scoring replaces the earlier row."""
    db_service.add_traces([make_trace(trace_id="a")])
    service = _service(db_service, scripted_llm(lambda model, messages: '{"score": 0.4}'))

    service.run([RESPONSE_QUALITY])
    assert service.run([RESPONSE_QUALITY]) == {"response_quality": 0}

    db_service.upsert_eval_score("a", "response_quality", EvalResult(score=0.9, reason="re-judged"))
    db_service.upsert_eval_score("a", "response_quality", EvalResult(score=0.7, reason="again"))

    rows = db_session.query(EvalScoreDB).filter_by(trace_id="a", metric="response_quality").all()
    assert len(rows) == 1
    assert rows[0].score == 0.7
    assert rows[0].reason == "again"


@pytest.mark.unit
def test_failure_marks_run_failed_and_keeps_partial_scores(db_service, db_session, make_trace, scripted_llm):
    """A failing rubric batch keeps earlier scores and does not stop the next rubric."""
    db_service.add_traces([make_trace(trace_id="newest", created_at=3000), make_trace(trace_id="older", created_at=2000)])
    calls = {"n": 0}

    def flaky(model, messages):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("backend unavailable")
        return '{"score": 0.5, "reason": "ok"}'

    evaluated = _service(db_service, scripted_llm(flaky)).run([RESPONSE_QUALITY, TASK_EXTRACTION])

    assert evaluated == {"response_quality": 1, "task_extraction": 2}
    assert db_service.get_eval_score("newest", "response_quality") is not None
    assert db_service.get_eval_score("older", "response_quality") is None
    statuses = {run.rubric: run.status for run in db_session.query(EvalRunDB).all()}
    assert statuses == {"response_quality": "failed", "task_extraction": "success"}


@pytest.mark.unit
def test_malformed_judge_output_is_stored_as_zero(db_service, make_trace, scripted_llm):
    db_service.add_traces([make_trace(trace_id="a")])
    _service(db_service, scripted_llm(lambda model, messages: "no idea")).run([RESPONSE_QUALITY])

    result = db_service.get_eval_score("a", "response_quality")
    assert result.score == 0.0
    assert result.reason == "Judge returned invalid JSON"
