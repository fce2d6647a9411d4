"""Tests for JudgeService and judge response parsing."""

import pytest

from autotune.config import JudgeConfig
from autotune.services.judge_service import INVALID_JUDGE_REASON, JudgeService, parse_judge_response
from autotune.services.rubrics import RESPONSE_QUALITY, TASK_EXTRACTION


# ============================================================================
# Response parsing
# ============================================================================


@pytest.mark.unit
class TestParseJudgeResponse:
    def test_valid_score_and_reason(self):
        result = parse_judge_response('{"score": 0.75, "reason": "Mostly correct"}')
        assert result.score == 0.75
        assert result.reason == "Mostly correct"

    def test_score_is_clamped(self):
        assert parse_judge_response('{"score": 1.7, "reason": "x"}').score == 1.0
        assert parse_judge_response('{"score": -3, "reason": "x"}').score == 0.0

    def test_integer_score_accepted(self):
        assert parse_judge_response('{"score": 1}').score == 1.0

    def test_missing_reason_defaults_to_empty(self):
        result = parse_judge_response('{"score": 0.5}')
        assert result.reason == ""

    def test_non_string_reason_defaults_to_empty(self):
        assert parse_judge_response('{"score": 0.5, "reason": 3}').reason == ""

    @pytest.mark.parametrize(
        "text",
        [
            "I think this deserves a 7/10",
            '{"reason": "no score"}',
            '{"score": "0.8", "reason": "string score"}',
            '{"score": true, "reason": "bool score"}',
            '{"score": NaN, "reason": "nan"}',
            "",
        ],
    )
    def test_malformed_output_falls_back(self, text):
        result = parse_judge_response(text)
        assert result.score == 0.0
        assert result.reason == INVALID_JUDGE_REASON

    def test_trailing_object_preferred(self):
        text = 'Example: {"score": 0.1, "reason": "example"}\nActual: {"score": 0.9, "reason": "actual"}'
        assert parse_judge_response(text).score == 0.9


# ============================================================================
# Judge calls
# ============================================================================


@pytest.mark.unit
def test_judge_sends_rubric_prompt_with_configured_sampling(scripted_llm, make_trace):
    """Judge uses the rubric system prompt and the configured temperature and token cap."""
    llm = scripted_llm(lambda model, messages: '{"score": 0.6, "reason": "fine"}')
    judge = JudgeService(llm, JudgeConfig(temperature=0.0, max_output_tokens=256))
    trace = make_trace(input_text="book a dentist appointment friday", output_text=None)

    result = judge.judge(TASK_EXTRACTION, trace, "judge-model")

    assert result.score == 0.6
    call = llm.calls[0]
    assert call["model"] == "judge-model"
    assert call["temperature"] == 0.0
    assert call["max_output_tokens"] == 256
    assert call["messages"][0] == {"role": "system", "content": TASK_EXTRACTION.system_prompt}
    assert "book a dentist appointment friday" in call["messages"][1]["content"]
    assert "(empty)" in call["messages"][1]["content"]


@pytest.mark.unit
def test_judge_never_raises_on_garbage(scripted_llm, make_trace):
    """A garbage reply is a zero score, not an exception."""
    llm = scripted_llm(lambda model, messages: "Sorry, I can't grade that.")
    judge = JudgeService(llm, JudgeConfig())

    result = judge.judge(RESPONSE_QUALITY, make_trace(), "judge-model")

    assert result.score == 0.0
    assert result.reason == INVALID_JUDGE_REASON


@pytest.mark.unit
def test_judge_propagates_transport_errors(scripted_llm, make_trace):
    """Transport failures are not swallowed by the judge."""

    def boom(model, messages):
        raise RuntimeError("connection reset")

    judge = JudgeService(scripted_llm(boom), JudgeConfig())
    with pytest.raises(RuntimeError, match="connection reset"):
        judge.judge(RESPONSE_QUALITY, make_trace(), "judge-model")
