"""Scores candidate instructions by simulating outputs on sample traces."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Tuple

from autotune.models import CandidateScore, TraceEvent
from autotune.services.judge_service import JudgeService
from autotune.services.llm_service import LLMService
from autotune.services.rubrics import Rubric

logger = logging.getLogger(__name__)

TASK_EXTRACTION_SYSTEM_TEMPLATE = """You are a task extraction module. Follow these instructions:
{instructions}
Return JSON: {{"tasks": [{{"task": string, "due": string}}]}} or null."""

ASSISTANT_SYSTEM_TEMPLATE = """You are the assistant. Follow these {behavior} instructions:
{instructions}"""


class Predictor:
    """Simulates the assistant's output for a trace under candidate instructions."""

    def __init__(self, llm: LLMService, model: str):
        self.llm = llm
        self.model = model

    def predict(self, behavior: str, instructions: str, trace: TraceEvent) -> str:
        if behavior == "task-extraction":
            system = TASK_EXTRACTION_SYSTEM_TEMPLATE.format(instructions=instructions)
            temperature, max_tokens = 0.0, 500
        else:
            system = ASSISTANT_SYSTEM_TEMPLATE.format(behavior=behavior, instructions=instructions)
            temperature, max_tokens = 0.2, 800

        return self.llm.invoke(
            self.model,
            [
                {"role": "system", "content": system},
                {"role": "user", "content": trace.input_text},
            ],
            temperature=temperature,
            max_output_tokens=max_tokens,
        )


class Reranker:
    """Averages judged scores per candidate and orders candidates best first.

    ``max_workers`` caps how many (candidate, trace) evaluations run at once;
    1 keeps everything sequential. Results are collected in submission order
    so ties always resolve the same way.
    """

    def __init__(self, predictor: Predictor, judge: JudgeService, max_workers: int = 1):
        self.predictor = predictor
        self.judge = judge
        self.max_workers = max(1, max_workers)

    def _score_one(self, behavior: str, rubric: Rubric, judge_model: str, instructions: str, trace: TraceEvent) -> float:
        predicted = self.predictor.predict(behavior, instructions, trace)
        simulated = trace.model_copy(update={"output_text": predicted})
        return self.judge.judge(rubric, simulated, judge_model).score

    def rerank(
        self,
        behavior: str,
        rubric: Rubric,
        candidates: List[str],
        samples: List[TraceEvent],
        judge_model: str,
    ) -> List[CandidateScore]:
        """Score every candidate on every sample trace.

        Any prediction or judge call failure propagates to the caller.
        """
        jobs: List[Tuple[int, TraceEvent]] = [(i, trace) for i in range(len(candidates)) for trace in samples]

        def run(job: Tuple[int, TraceEvent]) -> float:
            index, trace = job
            return self._score_one(behavior, rubric, judge_model, candidates[index], trace)

        if self.max_workers == 1:
            scores = [run(job) for job in jobs]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                scores = list(executor.map(run, jobs))

        per_candidate: List[List[float]] = [[] for _ in candidates]
        for (index, _), score in zip(jobs, scores):
            per_candidate[index].append(score)

        results = [
            CandidateScore(
                instructions=instructions,
                score=sum(details) / len(details) if details else 0.0,
                details=details,
            )
            for instructions, details in zip(candidates, per_candidate)
        ]
        # Stable sort keeps input order among equal scores
        results.sort(key=lambda r: r.score, reverse=True)
        if results:
            logger.info(f"Reranked {len(results)} candidates for {behavior} with {judge_model}; best={results[0].score:.3f}")
        return results
