"""Service for scoring traces against rubrics with an LLM judge."""

import logging
import math

from autotune.config import JudgeConfig
from autotune.models import EvalResult, TraceEvent
from autotune.services.llm_service import LLMService
from autotune.services.rubrics import Rubric
from autotune.utils.json_utils import parse_json_object

logger = logging.getLogger(__name__)

INVALID_JUDGE_REASON = 'Judge returned invalid JSON'


def parse_judge_response(text: str) -> EvalResult:
  """Turn raw judge output into a clamped score.

  Malformed output yields score 0 with ``INVALID_JUDGE_REASON`` instead of raising.
  """
  parsed = parse_json_object(text)
  if not parsed.ok:
    return EvalResult(score=0.0, reason=INVALID_JUDGE_REASON)

  score = parsed.value.get('score')
  # bool is an int subclass but never a valid score
  if isinstance(score, bool) or not isinstance(score, (int, float)) or not math.isfinite(score):
    return EvalResult(score=0.0, reason=INVALID_JUDGE_REASON)

  reason = parsed.value.get('reason')
  return EvalResult(
    score=min(1.0, max(0.0, float(score))),
    reason=reason if isinstance(reason, str) else '',
  )


class JudgeService:
  """Scores one trace against one rubric via a single LLM call."""

  def __init__(self, llm: LLMService, config: JudgeConfig):
    self.llm = llm
    self.config = config

  def judge(self, rubric: Rubric, trace: TraceEvent, model: str) -> EvalResult:
    """Score ``trace`` with ``rubric`` using ``model``.

    LLM transport failures propagate; malformed replies do not.
    """
    prompt = rubric.build_prompt(trace)
    text = self.llm.invoke(
      model,
      [
        {'role': 'system', 'content': prompt.system},
        {'role': 'user', 'content': prompt.user},
      ],
      temperature=self.config.temperature,
      max_output_tokens=self.config.max_output_tokens,
    )

    result = parse_judge_response(text)
    if result.reason == INVALID_JUDGE_REASON:
      logger.warning(f'Judge {model} returned unparseable output for trace {trace.trace_id} ({rubric.name})')
    return result
