"""Database service layer implementing the autotune storage contract."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.orm import Session

from autotune.database import (
  BehaviorStateDB,
  DeploymentDB,
  EvalRunDB,
  EvalScoreDB,
  PromptPackDB,
  TraceDB,
)
from autotune.models import (
  BehaviorState,
  Deployment,
  DeploymentStatus,
  EvalResult,
  EvalRun,
  EvalRunStatus,
  PackMetric,
  PromptPack,
  ScoredTrace,
  ToolCallRecord,
  TraceEvent,
)

logger = logging.getLogger(__name__)

# Marks a behavior-state field that a transition leaves untouched
_KEEP = object()


class DatabaseService:
  """Service layer for traces, scores, prompt packs and deployment state."""

  def __init__(self, db: Session):
    self.db = db

  # Traces

  def add_traces(self, traces: List[TraceEvent]) -> int:
    """Insert traces, ignoring ids that are already stored. Returns the number inserted."""
    inserted = 0
    seen = set()
    for trace in traces:
      if trace.trace_id in seen or self.db.get(TraceDB, trace.trace_id) is not None:
        continue
      seen.add(trace.trace_id)
      self.db.add(
        TraceDB(
          trace_id=trace.trace_id,
          timestamp=trace.timestamp,
          created_at=trace.created_at,
          chat_id=trace.chat_id,
          group_folder=trace.group_folder,
          user_id=trace.user_id,
          input_text=trace.input_text,
          output_text=trace.output_text,
          model_id=trace.model_id,
          prompt_pack_versions=dict(trace.prompt_pack_versions),
          memory_summary=trace.memory_summary,
          memory_facts=list(trace.memory_facts),
          memory_recall=list(trace.memory_recall),
          session_recall=list(trace.session_recall),
          tool_calls=[call.model_dump(exclude_none=True) for call in trace.tool_calls],
          latency_ms=trace.latency_ms,
          tokens_prompt=trace.tokens_prompt,
          tokens_completion=trace.tokens_completion,
          cost_total_usd=trace.cost_total_usd,
          error_code=trace.error_code,
          source=trace.source,
        )
      )
      inserted += 1

    self.db.commit()
    return inserted

  def get_trace(self, trace_id: str) -> Optional[TraceEvent]:
    db_trace = self.db.get(TraceDB, trace_id)
    return self._trace_from_db(db_trace) if db_trace else None

  def get_traces_needing_eval(self, metric: str, limit: int) -> List[TraceEvent]:
    """Get the newest traces that have no score for the given metric yet."""
    db_traces = (
      self.db.query(TraceDB)
      .outerjoin(EvalScoreDB, and_(EvalScoreDB.trace_id == TraceDB.trace_id, EvalScoreDB.metric == metric))
      .filter(EvalScoreDB.trace_id.is_(None))
      .order_by(TraceDB.created_at.desc())
      .limit(limit)
      .all()
    )
    return [self._trace_from_db(db_trace) for db_trace in db_traces]

  def get_traces_with_scores(self, metric: str, limit: int) -> List[ScoredTrace]:
    """Get scored traces for a metric, worst score first."""
    rows = (
      self.db.query(TraceDB, EvalScoreDB)
      .join(EvalScoreDB, EvalScoreDB.trace_id == TraceDB.trace_id)
      .filter(EvalScoreDB.metric == metric)
      .order_by(EvalScoreDB.score.asc(), TraceDB.created_at.desc())
      .limit(limit)
      .all()
    )
    return [
      ScoredTrace(trace=self._trace_from_db(db_trace), score=db_score.score, reason=db_score.reason)
      for db_trace, db_score in rows
    ]

  def get_scores_with_traces(self, metric: str) -> List[Tuple[float, Dict[str, str]]]:
    """Get every (score, prompt-pack-version tags) pair recorded for a metric."""
    rows = (
      self.db.query(EvalScoreDB.score, TraceDB.prompt_pack_versions)
      .join(TraceDB, TraceDB.trace_id == EvalScoreDB.trace_id)
      .filter(EvalScoreDB.metric == metric)
      .all()
    )
    return [(score, versions or {}) for score, versions in rows]

  def get_recent_traces(self, since_ms: int, limit: Optional[int] = None) -> List[TraceEvent]:
    """Get traces created at or after ``since_ms``, newest first."""
    query = self.db.query(TraceDB).filter(TraceDB.created_at >= since_ms).order_by(TraceDB.created_at.desc())
    if limit is not None:
      query = query.limit(limit)
    return [self._trace_from_db(db_trace) for db_trace in query.all()]

  def _trace_from_db(self, db_trace: TraceDB) -> TraceEvent:
    return TraceEvent(
      trace_id=db_trace.trace_id,
      timestamp=db_trace.timestamp,
      created_at=db_trace.created_at,
      chat_id=db_trace.chat_id,
      group_folder=db_trace.group_folder,
      user_id=db_trace.user_id,
      input_text=db_trace.input_text,
      output_text=db_trace.output_text,
      model_id=db_trace.model_id,
      prompt_pack_versions=db_trace.prompt_pack_versions or {},
      memory_summary=db_trace.memory_summary,
      memory_facts=db_trace.memory_facts or [],
      memory_recall=db_trace.memory_recall or [],
      session_recall=db_trace.session_recall or [],
      tool_calls=[ToolCallRecord(**call) for call in (db_trace.tool_calls or [])],
      latency_ms=db_trace.latency_ms,
      tokens_prompt=db_trace.tokens_prompt,
      tokens_completion=db_trace.tokens_completion,
      cost_total_usd=db_trace.cost_total_usd,
      error_code=db_trace.error_code,
      source=db_trace.source,
    )

  # Evaluation

  def create_eval_run(self, rubric: str, model_id: str, trace_count: int) -> EvalRun:
    db_run = EvalRunDB(
      id=str(uuid.uuid4()),
      rubric=rubric,
      model_id=model_id,
      status=EvalRunStatus.RUNNING.value,
      trace_count=trace_count,
      cost_usd=0.0,
      created_at=datetime.now(),
    )
    self.db.add(db_run)
    self.db.commit()
    return self._eval_run_from_db(db_run)

  def finish_eval_run(self, run_id: str, status: EvalRunStatus) -> Optional[EvalRun]:
    db_run = self.db.get(EvalRunDB, run_id)
    if not db_run:
      return None
    db_run.status = status.value
    db_run.finished_at = datetime.now()
    self.db.commit()
    return self._eval_run_from_db(db_run)

  def get_eval_run(self, run_id: str) -> Optional[EvalRun]:
    db_run = self.db.get(EvalRunDB, run_id)
    return self._eval_run_from_db(db_run) if db_run else None

  def _eval_run_from_db(self, db_run: EvalRunDB) -> EvalRun:
    return EvalRun(
      id=db_run.id,
      rubric=db_run.rubric,
      model_id=db_run.model_id,
      trace_count=db_run.trace_count,
      status=EvalRunStatus(db_run.status),
      created_at=db_run.created_at,
    )

  def upsert_eval_score(self, trace_id: str, metric: str, result: EvalResult, run_id: Optional[str] = None) -> None:
    """Store a score, replacing any earlier score for the same (trace, metric)."""
    db_score = self.db.get(EvalScoreDB, (trace_id, metric))
    if db_score:
      db_score.score = result.score
      db_score.reason = result.reason
      db_score.run_id = run_id
      db_score.updated_at = datetime.now()
    else:
      self.db.add(
        EvalScoreDB(
          trace_id=trace_id,
          metric=metric,
          score=result.score,
          reason=result.reason,
          run_id=run_id,
          created_at=datetime.now(),
        )
      )
    self.db.commit()

  def get_eval_score(self, trace_id: str, metric: str) -> Optional[EvalResult]:
    db_score = self.db.get(EvalScoreDB, (trace_id, metric))
    if not db_score:
      return None
    return EvalResult(score=db_score.score, reason=db_score.reason or '')

  # Prompt packs

  def insert_prompt_pack(self, pack: PromptPack, score: Optional[float] = None) -> PromptPack:
    """Persist a new pack version. Existing versions are never edited."""
    if score is None and pack.metric is not None:
      score = pack.metric.score

    db_pack = PromptPackDB(
      id=str(uuid.uuid4()),
      behavior=pack.behavior,
      version=pack.version,
      pack_name=pack.name,
      instructions=pack.instructions,
      demos=list(pack.demos),
      metric=pack.metric.model_dump() if pack.metric else None,
      score=score,
      pack_metadata=dict(pack.metadata),
      created_at=datetime.now(),
    )
    self.db.add(db_pack)
    self.db.commit()
    logger.info(f'Stored prompt pack {pack.behavior}@{pack.version}')
    return self._pack_from_db(db_pack)

  def get_latest_prompt_pack(self, behavior: str) -> Optional[PromptPack]:
    db_pack = (
      self.db.query(PromptPackDB)
      .filter(PromptPackDB.behavior == behavior)
      .order_by(PromptPackDB.created_at.desc())
      .first()
    )
    return self._pack_from_db(db_pack) if db_pack else None

  def get_prompt_pack(self, behavior: str, version: str) -> Optional[PromptPack]:
    db_pack = (
      self.db.query(PromptPackDB)
      .filter(PromptPackDB.behavior == behavior, PromptPackDB.version == version)
      .first()
    )
    return self._pack_from_db(db_pack) if db_pack else None

  def _pack_from_db(self, db_pack: PromptPackDB) -> PromptPack:
    return PromptPack(
      name=db_pack.pack_name,
      version=db_pack.version,
      behavior=db_pack.behavior,
      instructions=db_pack.instructions,
      demos=db_pack.demos or [],
      metric=PackMetric(**db_pack.metric) if db_pack.metric else None,
      metadata=db_pack.pack_metadata or {},
    )

  # Deployments and behavior state

  def deploy_prompt_pack(
    self,
    behavior: str,
    pack_version: str,
    target_path: str,
    status: DeploymentStatus,
    canary_percent: int,
    note: Optional[str] = None,
  ) -> Deployment:
    """Append a deployment event without touching behavior state."""
    db_deployment = self._new_deployment(behavior, pack_version, target_path, status, canary_percent, note)
    self.db.commit()
    return self._deployment_from_db(db_deployment)

  def record_transition(
    self,
    behavior: str,
    pack_version: str,
    target_path: str,
    status: DeploymentStatus,
    canary_percent: int,
    note: Optional[str] = None,
    active_version: Any = _KEEP,
    canary_version: Any = _KEEP,
    canary_since: Any = _KEEP,
  ) -> Deployment:
    """Append a deployment event and move the behavior state pointers in one commit.

    State fields left at their default are not changed.
    """
    db_deployment = self._new_deployment(behavior, pack_version, target_path, status, canary_percent, note)

    db_state = self.db.get(BehaviorStateDB, behavior)
    if db_state is None:
      db_state = BehaviorStateDB(behavior=behavior)
      self.db.add(db_state)
    if active_version is not _KEEP:
      db_state.active_version = active_version
    if canary_version is not _KEEP:
      db_state.canary_version = canary_version
    if canary_since is not _KEEP:
      db_state.canary_since = canary_since
    db_state.updated_at = datetime.now()

    try:
      self.db.commit()
    except Exception:
      self.db.rollback()
      raise

    logger.info(f'Behavior {behavior}: {status.value} {pack_version} (active={db_state.active_version}, canary={db_state.canary_version})')
    return self._deployment_from_db(db_deployment)

  def _new_deployment(self, behavior, pack_version, target_path, status, canary_percent, note) -> DeploymentDB:
    db_deployment = DeploymentDB(
      id=str(uuid.uuid4()),
      behavior=behavior,
      pack_version=pack_version,
      target_path=str(target_path),
      status=DeploymentStatus(status).value,
      canary_percent=canary_percent,
      note=note,
      created_at=datetime.now(),
    )
    self.db.add(db_deployment)
    return db_deployment

  def list_deployments(self, behavior: Optional[str] = None, limit: int = 50) -> List[Deployment]:
    """List deployment events, newest first."""
    query = self.db.query(DeploymentDB)
    if behavior:
      query = query.filter(DeploymentDB.behavior == behavior)
    db_deployments = query.order_by(DeploymentDB.created_at.desc()).limit(limit).all()
    return [self._deployment_from_db(d) for d in db_deployments]

  def _deployment_from_db(self, db_deployment: DeploymentDB) -> Deployment:
    return Deployment(
      id=db_deployment.id,
      behavior=db_deployment.behavior,
      pack_version=db_deployment.pack_version,
      target_path=db_deployment.target_path,
      status=DeploymentStatus(db_deployment.status),
      canary_percent=db_deployment.canary_percent,
      note=db_deployment.note,
      created_at=db_deployment.created_at,
    )

  def get_behavior_state(self, behavior: str) -> BehaviorState:
    """Get the lifecycle state for a behavior; an untouched behavior has no active or canary pack."""
    db_state = self.db.get(BehaviorStateDB, behavior)
    if not db_state:
      return BehaviorState(behavior=behavior)
    return self._state_from_db(db_state)

  def list_behavior_states(self) -> List[BehaviorState]:
    db_states = self.db.query(BehaviorStateDB).order_by(BehaviorStateDB.behavior).all()
    return [self._state_from_db(s) for s in db_states]

  def _state_from_db(self, db_state: BehaviorStateDB) -> BehaviorState:
    return BehaviorState(
      behavior=db_state.behavior,
      active_version=db_state.active_version,
      canary_version=db_state.canary_version,
      canary_since=db_state.canary_since,
      updated_at=db_state.updated_at,
    )
