"""Batch judging of stored traces."""

import logging
from typing import Dict, List

from autotune.config import AutotuneConfig
from autotune.models import EvalRunStatus
from autotune.services.database_service import DatabaseService
from autotune.services.judge_service import JudgeService
from autotune.services.rubrics import Rubric

logger = logging.getLogger(__name__)


class EvalService:
    """Judges traces that have no score yet, one audited batch per rubric."""

    def __init__(self, db_service: DatabaseService, judge: JudgeService, config: AutotuneConfig):
        self.db_service = db_service
        self.judge = judge
        self.config = config

    def run(self, rubrics: List[Rubric], max_traces: int | None = None) -> Dict[str, int]:
        """Judge pending traces for each rubric.

        A failing rubric marks its run ``failed`` and the next rubric still runs.
        Scores stored before the failure are kept.

        Returns:
            Number of traces scored per rubric name.
        """
        limit = max_traces if max_traces is not None else self.config.eval_max_traces
        model = self.config.judge.stage1_model
        evaluated: Dict[str, int] = {}

        for rubric in rubrics:
            traces = self.db_service.get_traces_needing_eval(rubric.name, limit)
            evaluated[rubric.name] = 0
            if not traces:
                continue

            run = self.db_service.create_eval_run(rubric.name, model, len(traces))
            try:
                for trace in traces:
                    result = self.judge.judge(rubric, trace, model)
                    self.db_service.upsert_eval_score(trace.trace_id, rubric.name, result, run_id=run.id)
                    evaluated[rubric.name] += 1
            except Exception as e:
                logger.exception(f"Eval run {run.id} for {rubric.name} failed after {evaluated[rubric.name]} traces: {e}")
                self.db_service.db.rollback()
                self.db_service.finish_eval_run(run.id, EvalRunStatus.FAILED)
                continue

            self.db_service.finish_eval_run(run.id, EvalRunStatus.SUCCESS)
            logger.info(f"Scored {evaluated[rubric.name]} traces for {rubric.name}")

        return evaluated
