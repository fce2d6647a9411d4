"""Configuration for the autotune engine and its HTTP server."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autotune.utils.config import load_yaml_config

logger = logging.getLogger(__name__)

DEFAULT_BEHAVIORS = ["task-extraction", "response-quality"]
DEFAULT_FAST_MODEL = "anthropic/claude-haiku-4-5"
DEFAULT_STRONG_MODEL = "anthropic/claude-sonnet-4-5"


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class ServerConfig:
    """HTTP server settings."""

    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    KEEP_ALIVE_TIMEOUT: int = int(os.getenv("KEEP_ALIVE_TIMEOUT", "65"))
    TIMEOUT_GRACEFUL_SHUTDOWN: int = int(os.getenv("TIMEOUT_GRACEFUL_SHUTDOWN", "30"))
    CORS_ORIGINS: list = ["*"]

    @classmethod
    def get_uvicorn_config(cls) -> dict:
        """Get uvicorn keyword arguments."""
        return {
            "host": cls.HOST,
            "port": cls.PORT,
            "timeout_keep_alive": cls.KEEP_ALIVE_TIMEOUT,
            "timeout_graceful_shutdown": cls.TIMEOUT_GRACEFUL_SHUTDOWN,
            "access_log": True,
            "log_level": "info",
        }


@dataclass
class OpenRouterConfig:
    """Connection settings for the OpenAI-compatible router."""

    api_key: str | None = None
    base_url: str = "https://openrouter.ai/api/v1"
    timeout_seconds: float = 120.0
    max_retries: int = 3
    site_url: str | None = None
    site_name: str | None = None

    @classmethod
    def from_env(cls) -> OpenRouterConfig:
        return cls(
            api_key=os.getenv("OPENROUTER_API_KEY"),
            base_url=os.getenv("OPENROUTER_BASE_URL", cls.base_url),
            timeout_seconds=_env_float("AUTOTUNE_OPENROUTER_TIMEOUT_SECONDS", cls.timeout_seconds),
            max_retries=_env_int("AUTOTUNE_OPENROUTER_MAX_RETRIES", cls.max_retries),
            site_url=os.getenv("OPENROUTER_SITE_URL"),
            site_name=os.getenv("OPENROUTER_SITE_NAME"),
        )


@dataclass
class JudgeConfig:
    stage1_model: str = DEFAULT_FAST_MODEL
    stage2_model: str = DEFAULT_STRONG_MODEL
    temperature: float = 0.0
    max_output_tokens: int = 512

    @classmethod
    def from_env(cls) -> JudgeConfig:
        return cls(
            stage1_model=os.getenv("AUTOTUNE_JUDGE_STAGE1_MODEL", cls.stage1_model),
            stage2_model=os.getenv("AUTOTUNE_JUDGE_STAGE2_MODEL", cls.stage2_model),
            temperature=_env_float("AUTOTUNE_JUDGE_TEMPERATURE", cls.temperature),
            max_output_tokens=_env_int("AUTOTUNE_JUDGE_MAX_OUTPUT_TOKENS", cls.max_output_tokens),
        )


@dataclass
class OptimizeConfig:
    min_improvement: float = 0.05
    max_candidates: int = 6
    sample_size: int = 20
    candidate_model: str = DEFAULT_FAST_MODEL
    predictor_model: str = DEFAULT_FAST_MODEL
    max_workers: int = 1  # 1 keeps reranking strictly sequential

    @classmethod
    def from_env(cls) -> OptimizeConfig:
        return cls(
            min_improvement=_env_float("AUTOTUNE_MIN_IMPROVEMENT", cls.min_improvement),
            max_candidates=_env_int("AUTOTUNE_MAX_CANDIDATES", cls.max_candidates),
            sample_size=_env_int("AUTOTUNE_SAMPLE_SIZE", cls.sample_size),
            candidate_model=os.getenv("AUTOTUNE_CANDIDATE_MODEL", cls.candidate_model),
            predictor_model=os.getenv("AUTOTUNE_PREDICTOR_MODEL", cls.predictor_model),
            max_workers=max(1, _env_int("AUTOTUNE_MAX_WORKERS", cls.max_workers)),
        )


@dataclass
class DeployConfig:
    """Artifact location, canary thresholds and health-gate ceilings."""

    output_dir: Path = field(default_factory=lambda: Path.home() / ".config" / "autotune" / "prompts")
    canary_fraction: float = 0.1
    canary_min_samples: int = 20
    canary_min_improvement: float = 0.02
    health_window_hours: float = 24.0  # 0 disables health gating
    health_min_samples: int = 20
    health_max_traces: int = 5000  # newest traces scanned per health check
    max_error_rate: float = 0.25
    max_error_rate_delta: float = 0.10
    max_tool_failure_rate: float = 0.30
    max_tool_failure_rate_delta: float = 0.10

    @classmethod
    def from_env(cls) -> DeployConfig:
        defaults = cls()
        output_dir = os.getenv("AUTOTUNE_OUTPUT_DIR")
        return cls(
            output_dir=Path(output_dir).expanduser() if output_dir else defaults.output_dir,
            canary_fraction=_env_float("AUTOTUNE_CANARY_FRACTION", defaults.canary_fraction),
            canary_min_samples=_env_int("AUTOTUNE_CANARY_MIN_SAMPLES", defaults.canary_min_samples),
            canary_min_improvement=_env_float("AUTOTUNE_CANARY_MIN_IMPROVEMENT", defaults.canary_min_improvement),
            health_window_hours=_env_float("AUTOTUNE_HEALTH_WINDOW_HOURS", defaults.health_window_hours),
            health_min_samples=_env_int("AUTOTUNE_HEALTH_MIN_SAMPLES", defaults.health_min_samples),
            health_max_traces=_env_int("AUTOTUNE_HEALTH_MAX_TRACES", defaults.health_max_traces),
            max_error_rate=_env_float("AUTOTUNE_MAX_ERROR_RATE", defaults.max_error_rate),
            max_error_rate_delta=_env_float("AUTOTUNE_MAX_ERROR_RATE_DELTA", defaults.max_error_rate_delta),
            max_tool_failure_rate=_env_float("AUTOTUNE_MAX_TOOL_FAILURE_RATE", defaults.max_tool_failure_rate),
            max_tool_failure_rate_delta=_env_float(
                "AUTOTUNE_MAX_TOOL_FAILURE_RATE_DELTA", defaults.max_tool_failure_rate_delta
            ),
        )


@dataclass
class AutotuneConfig:
    """Top-level engine configuration."""

    openrouter: OpenRouterConfig = field(default_factory=OpenRouterConfig)
    judge: JudgeConfig = field(default_factory=JudgeConfig)
    optimize: OptimizeConfig = field(default_factory=OptimizeConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    behaviors: list[str] = field(default_factory=lambda: list(DEFAULT_BEHAVIORS))
    interval_minutes: float = 60.0
    eval_max_traces: int = 200
    scheduler_enabled: bool = False

    @classmethod
    def from_env(cls) -> AutotuneConfig:
        return cls(
            openrouter=OpenRouterConfig.from_env(),
            judge=JudgeConfig.from_env(),
            optimize=OptimizeConfig.from_env(),
            deploy=DeployConfig.from_env(),
            behaviors=_env_list("AUTOTUNE_BEHAVIORS", DEFAULT_BEHAVIORS),
            interval_minutes=_env_float("AUTOTUNE_INTERVAL_MINUTES", 60.0),
            eval_max_traces=_env_int("AUTOTUNE_EVAL_MAX_TRACES", 200),
            scheduler_enabled=_env_bool("AUTOTUNE_SCHEDULER_ENABLED", False),
        )


_SECTIONS = {
    "openrouter": OpenRouterConfig,
    "judge": JudgeConfig,
    "optimize": OptimizeConfig,
    "deploy": DeployConfig,
}


def _merge_section(section: Any, overrides: dict[str, Any], section_name: str) -> Any:
    known = {f.name for f in dataclasses.fields(section)}
    updates = {}
    for key, value in overrides.items():
        if key not in known:
            logger.warning(f"Ignoring unknown config key {section_name}.{key}")
            continue
        if key == "output_dir":
            value = Path(str(value)).expanduser()
        updates[key] = value
    return dataclasses.replace(section, **updates)


def merge_config(base: AutotuneConfig, overrides: dict[str, Any]) -> AutotuneConfig:
    """Overlay a settings mapping (as loaded from YAML) on top of ``base``."""
    config = base
    top_level = {f.name for f in dataclasses.fields(AutotuneConfig)} - set(_SECTIONS)

    for key, value in overrides.items():
        if key in _SECTIONS:
            if not isinstance(value, dict):
                logger.warning(f"Ignoring config section {key}: expected a mapping")
                continue
            merged = _merge_section(getattr(config, key), value, key)
            config = dataclasses.replace(config, **{key: merged})
        elif key in top_level:
            if key == "behaviors" and isinstance(value, str):
                value = [item.strip() for item in value.split(",") if item.strip()]
            config = dataclasses.replace(config, **{key: value})
        else:
            logger.warning(f"Ignoring unknown config key {key}")

    return config


def load_config(config_path: str | Path | None = None) -> AutotuneConfig:
    """Build the engine config from environment variables and an optional YAML file.

    File values take precedence over environment values.
    """
    return merge_config(AutotuneConfig.from_env(), load_yaml_config(config_path))
