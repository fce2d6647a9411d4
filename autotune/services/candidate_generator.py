"""Proposes rewritten instruction variants for a behavior."""

import logging
from typing import List

from autotune.models import TraceEvent
from autotune.services.llm_service import LLMService
from autotune.utils.json_utils import parse_json_object

logger = logging.getLogger(__name__)

MAX_EXAMPLE_TRACES = 8
GENERATOR_TEMPERATURE = 0.4
GENERATOR_MAX_TOKENS = 800

GENERATOR_SYSTEM_PROMPT = "Return only JSON."

GENERATOR_PROMPT_TEMPLATE = """You are improving instructions for the behavior: {behavior}.

Current instructions:
{instructions}

Examples of recent interactions:
{examples}

Propose {count} improved instruction variants. Keep them short and specific.
Return JSON: {{"candidates": ["..."]}}"""


def format_examples(traces: List[TraceEvent]) -> str:
    blocks = []
    for trace in traces[:MAX_EXAMPLE_TRACES]:
        blocks.append(f"User: {trace.input_text}\nAssistant: {trace.output_text or ''}")
    return "\n\n".join(blocks)


def parse_candidates(text: str) -> List[str]:
    """Extract non-empty candidate strings; anything malformed yields []."""
    parsed = parse_json_object(text)
    if not parsed.ok:
        return []
    candidates = parsed.value.get("candidates")
    if not isinstance(candidates, list):
        return []
    return [c.strip() for c in candidates if isinstance(c, str) and c.strip()]


class CandidateGenerator:
    def __init__(self, llm: LLMService, model: str):
        self.llm = llm
        self.model = model

    def generate(self, behavior: str, baseline: str, examples: List[TraceEvent], count: int) -> List[str]:
        """Ask the model for up to ``count`` alternative instructions."""
        prompt = GENERATOR_PROMPT_TEMPLATE.format(
            behavior=behavior,
            instructions=baseline,
            examples=format_examples(examples),
            count=count,
        )
        text = self.llm.invoke(
            self.model,
            [
                {"role": "system", "content": GENERATOR_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=GENERATOR_TEMPERATURE,
            max_output_tokens=GENERATOR_MAX_TOKENS,
        )

        candidates = parse_candidates(text)
        if not candidates:
            logger.warning(f"Candidate generation for {behavior} produced no usable candidates")
        return candidates[:count]
