"""Data models for the prompt-pack autotune engine."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EvalRunStatus(StrEnum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class DeploymentStatus(StrEnum):
    CANARY = "canary"
    FULL = "full"
    PROMOTED = "promoted"
    ROLLED_BACK = "rolled_back"


class CanaryAction(StrEnum):
    """Outcome of one canary evaluation."""

    NONE = "none"  # No canary pending
    WAITING = "waiting"  # Not enough signal yet
    PROMOTED = "promoted"
    ROLLED_BACK = "rolled_back"


# Trace Models
class ToolCallRecord(BaseModel):
    name: str
    ok: bool
    args: Any | None = None
    duration_ms: int | None = None
    error: str | None = None
    output_bytes: int | None = None
    output_truncated: bool | None = None


class TraceEvent(BaseModel):
    """One recorded assistant interaction. Never mutated once ingested."""

    model_config = ConfigDict(frozen=True)

    trace_id: str
    timestamp: str
    created_at: int  # epoch milliseconds
    chat_id: str
    group_folder: str
    user_id: str | None = None
    input_text: str
    output_text: str | None = None
    model_id: str
    prompt_pack_versions: dict[str, str] = Field(default_factory=dict)
    memory_summary: str | None = None
    memory_facts: list[str] = Field(default_factory=list)
    memory_recall: list[str] = Field(default_factory=list)
    session_recall: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    latency_ms: int | None = None
    tokens_prompt: int | None = None
    tokens_completion: int | None = None
    cost_total_usd: float | None = None
    error_code: str | None = None
    source: str | None = None


class ScoredTrace(BaseModel):
    trace: TraceEvent
    score: float
    reason: str | None = None


# Evaluation Models
class EvalResult(BaseModel):
    score: float
    reason: str = ""


class EvalRun(BaseModel):
    id: str
    rubric: str
    model_id: str
    trace_count: int
    status: EvalRunStatus = EvalRunStatus.RUNNING
    created_at: datetime = Field(default_factory=datetime.now)


# Prompt Pack Models
class PackMetric(BaseModel):
    name: str
    model: str
    score: float


class PromptPack(BaseModel):
    """Versioned instruction artifact for one behavior. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    behavior: str
    instructions: str
    demos: list[dict[str, Any]] = Field(default_factory=list)
    metric: PackMetric | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Deployment(BaseModel):
    id: str
    behavior: str
    pack_version: str
    target_path: str
    status: DeploymentStatus
    canary_percent: int
    note: str | None = None
    created_at: datetime | None = None


class BehaviorState(BaseModel):
    """Authoritative lifecycle record for a behavior's deployed packs."""

    behavior: str
    active_version: str | None = None
    canary_version: str | None = None
    canary_since: datetime | None = None
    updated_at: datetime | None = None


# Optimization Models
class CandidateScore(BaseModel):
    instructions: str
    score: float
    details: list[float] = Field(default_factory=list)


class SelectionResult(BaseModel):
    selected: CandidateScore | None = None
    baseline_score: float


# Monitoring Models
class HealthMetrics(BaseModel):
    version: str
    count: int
    error_rate: float
    tool_calls: int
    tool_failure_rate: float


class QualityStats(BaseModel):
    average: float
    count: int


class CanaryDecision(BaseModel):
    behavior: str
    action: CanaryAction
    canary_version: str | None = None
    active_version: str | None = None
    note: str | None = None
    canary_health: HealthMetrics | None = None
    active_health: HealthMetrics | None = None
    canary_quality: QualityStats | None = None
    active_quality: QualityStats | None = None


class CycleReport(BaseModel):
    """Summary of one autotune cycle across all configured behaviors."""

    evaluated: dict[str, int] = Field(default_factory=dict)
    packs: dict[str, str | None] = Field(default_factory=dict)
    canaries: dict[str, CanaryAction] = Field(default_factory=dict)
    errors: dict[str, str] = Field(default_factory=dict)
