"""Autotune API endpoints: behavior state, health, packs, deployments and cycles."""

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from autotune.config import AutotuneConfig, load_config
from autotune.database import get_db
from autotune.models import BehaviorState, CanaryDecision, CycleReport, Deployment, HealthMetrics, PromptPack
from autotune.services.canary_controller import CanaryController
from autotune.services.database_service import DatabaseService
from autotune.services.deployer import PackArtifacts
from autotune.services.health_metrics import HealthMetricsService, compute_health
from autotune.services.llm_service import LLMService
from autotune.services.rubrics import get_rubric
from autotune.services.scheduler import CycleInProgressError, run_cycle

logger = logging.getLogger(__name__)

router = APIRouter()


@lru_cache
def get_config() -> AutotuneConfig:
    return load_config()


def get_llm_service(config: AutotuneConfig = Depends(get_config)) -> LLMService:
    try:
        return LLMService(config.openrouter)
    except ValueError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e


def _require_behavior(behavior: str, config: AutotuneConfig) -> None:
    if behavior not in config.behaviors and get_rubric(behavior) is None:
        raise HTTPException(status_code=404, detail=f"Unknown behavior: {behavior}")


@router.get("/behaviors", response_model=List[BehaviorState])
async def list_behaviors(db: Session = Depends(get_db), config: AutotuneConfig = Depends(get_config)):
    """Lifecycle state of every configured behavior plus any others with stored state."""
    db_service = DatabaseService(db)
    states = {behavior: db_service.get_behavior_state(behavior) for behavior in config.behaviors}
    for state in db_service.list_behavior_states():
        states.setdefault(state.behavior, state)
    return list(states.values())


@router.get("/behaviors/{behavior}/health", response_model=Dict[str, Optional[HealthMetrics]])
async def get_behavior_health(
    behavior: str,
    window_hours: Optional[float] = Query(None, gt=0),
    db: Session = Depends(get_db),
    config: AutotuneConfig = Depends(get_config),
):
    """Health metrics for the active and canary versions of a behavior."""
    _require_behavior(behavior, config)
    db_service = DatabaseService(db)
    state = db_service.get_behavior_state(behavior)

    window = window_hours or config.deploy.health_window_hours or 24.0
    traces = HealthMetricsService(db_service).recent_traces(window, limit=config.deploy.health_max_traces)
    return {
        "active": compute_health(traces, behavior, state.active_version) if state.active_version else None,
        "canary": compute_health(traces, behavior, state.canary_version) if state.canary_version else None,
    }


@router.get("/behaviors/{behavior}/pack", response_model=PromptPack)
async def get_latest_pack(behavior: str, db: Session = Depends(get_db), config: AutotuneConfig = Depends(get_config)):
    _require_behavior(behavior, config)
    pack = DatabaseService(db).get_latest_prompt_pack(behavior)
    if not pack:
        raise HTTPException(status_code=404, detail=f"No prompt pack for {behavior}")
    return pack


@router.get("/deployments", response_model=List[Deployment])
async def list_deployments(
    behavior: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return DatabaseService(db).list_deployments(behavior=behavior, limit=limit)


@router.post("/behaviors/{behavior}/canary/evaluate", response_model=CanaryDecision)
def evaluate_canary(behavior: str, db: Session = Depends(get_db), config: AutotuneConfig = Depends(get_config)):
    """Resolve a pending canary now instead of waiting for the next cycle."""
    _require_behavior(behavior, config)
    controller = CanaryController(DatabaseService(db), PackArtifacts(config.deploy.output_dir), config.deploy)
    return controller.evaluate(behavior)


@router.post("/cycle", response_model=CycleReport)
def trigger_cycle(
    db: Session = Depends(get_db),
    config: AutotuneConfig = Depends(get_config),
    llm: LLMService = Depends(get_llm_service),
):
    """Run a full eval/optimize/deploy/canary cycle synchronously."""
    try:
        return run_cycle(DatabaseService(db), config, llm)
    except CycleInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
