"""One optimization cycle per behavior: generate, rerank twice, select, persist."""

from __future__ import annotations

import logging
import time
from typing import Callable

from autotune.config import AutotuneConfig
from autotune.models import PackMetric, PromptPack
from autotune.services.candidate_generator import MAX_EXAMPLE_TRACES, CandidateGenerator
from autotune.services.database_service import DatabaseService
from autotune.services.judge_service import JudgeService
from autotune.services.llm_service import LLMService
from autotune.services.pack_defaults import default_instructions
from autotune.services.reranker import Predictor, Reranker
from autotune.services.rubrics import get_rubric
from autotune.services.selector import instructions_key, select_candidate

logger = logging.getLogger(__name__)

STAGE2_TOP_K = 3


def next_version(current: str | None, now_ms: int) -> str:
    """Increment a numeric version, otherwise fall back to a millisecond timestamp."""
    if current is not None and current.strip().isdigit():
        return str(int(current.strip()) + 1)
    return str(now_ms)


def merge_candidates(baseline: str, generated: list[str], max_candidates: int) -> list[str]:
    """Baseline first, then unique non-empty candidates, capped at ``max_candidates`` extras."""
    merged: list[str] = []
    seen: set[str] = set()
    for text in [baseline, *generated]:
        text = text.strip()
        if not text:
            continue
        key = instructions_key(text)
        if key in seen:
            continue
        seen.add(key)
        merged.append(text)
    return merged[: max_candidates + 1]


class Optimizer:
    """Produces a new prompt pack for a behavior when a candidate measurably beats the baseline."""

    def __init__(
        self,
        db_service: DatabaseService,
        llm: LLMService,
        config: AutotuneConfig,
        clock: Callable[[], float] = time.time,
    ):
        self.db_service = db_service
        self.config = config
        self.clock = clock
        judge = JudgeService(llm, config.judge)
        self.generator = CandidateGenerator(llm, config.optimize.candidate_model)
        self.reranker = Reranker(
            Predictor(llm, config.optimize.predictor_model),
            judge,
            max_workers=config.optimize.max_workers,
        )

    def optimize(self, behavior: str) -> PromptPack | None:
        """Run one cycle. Returns the persisted pack, or None when nothing beat the baseline."""
        rubric = get_rubric(behavior)
        if rubric is None:
            logger.warning(f"No rubric for behavior {behavior}; skipping optimization")
            return None

        opt = self.config.optimize
        scored_traces = self.db_service.get_traces_with_scores(rubric.name, opt.sample_size)
        if not scored_traces:
            logger.info(f"No scored traces for {rubric.name}; skipping optimization of {behavior}")
            return None
        samples = [s.trace for s in scored_traces]

        state = self.db_service.get_behavior_state(behavior)
        if state.canary_version:
            logger.warning(f"Optimizing {behavior} while canary {state.canary_version} is still pending")

        current = self.db_service.get_latest_prompt_pack(behavior)
        baseline = (current.instructions if current else default_instructions(behavior)).strip()

        generated = self.generator.generate(behavior, baseline, samples[:MAX_EXAMPLE_TRACES], opt.max_candidates)
        candidates = merge_candidates(baseline, generated, opt.max_candidates)
        if len(candidates) < 2:
            logger.info(f"No new candidates for {behavior}; keeping baseline")
            return None

        stage1 = self.reranker.rerank(behavior, rubric, candidates, samples, self.config.judge.stage1_model)
        finalists = [c.instructions for c in stage1[:STAGE2_TOP_K]]
        stage2 = self.reranker.rerank(behavior, rubric, finalists, samples, self.config.judge.stage2_model)

        selection = select_candidate(stage2, baseline, opt.min_improvement)
        if selection.selected is None:
            logger.info(f"No candidate beat the {behavior} baseline (baseline score {selection.baseline_score:.3f})")
            return None

        winner = selection.selected
        version = next_version(current.version if current else None, int(self.clock() * 1000))
        pack = PromptPack(
            name=f"Autotune {behavior}",
            version=version,
            behavior=behavior,
            instructions=winner.instructions,
            demos=[],
            metric=PackMetric(name=rubric.name, model=self.config.judge.stage2_model, score=winner.score),
            metadata={
                "baseline_version": current.version if current else None,
                "baseline_score": selection.baseline_score,
                "sample_size": len(samples),
                "created_by": "autotune",
            },
        )
        stored = self.db_service.insert_prompt_pack(pack, winner.score)
        logger.info(
            f"New {behavior} pack {version}: score {winner.score:.3f} vs baseline {selection.baseline_score:.3f}"
        )
        return stored
