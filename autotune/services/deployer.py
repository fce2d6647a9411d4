"""Pack artifact projection and deployment.

The ``behavior_states`` table is the source of truth for which version is
active or in canary. Artifact files are written only after the matching state
transition has been committed, and can be regenerated from it at any time.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from autotune.config import DeployConfig
from autotune.models import Deployment, DeploymentStatus, PromptPack
from autotune.services.database_service import DatabaseService

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    """Write JSON to a sibling temp file, then rename it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.write("\n")
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def artifact_payload(
    pack: PromptPack,
    canary_percent: int | None = None,
    canary_since: datetime | None = None,
) -> dict[str, Any]:
    payload = pack.model_dump(mode="json")
    if canary_percent is not None:
        # Key names are read by the assistant runtime
        payload["metadata"] = {
            **payload.get("metadata", {}),
            "canaryPercent": canary_percent,
            "canarySince": (canary_since or datetime.now()).isoformat(),
        }
    return payload


class PackArtifacts:
    """Reads and writes the JSON pack files consumed by the assistant."""

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def active_path(self, behavior: str) -> Path:
        return self.output_dir / f"{behavior}.json"

    def canary_path(self, behavior: str) -> Path:
        return self.output_dir / f"{behavior}.canary.json"

    def write_active(self, pack: PromptPack) -> Path:
        path = self.active_path(pack.behavior)
        write_json_atomic(path, artifact_payload(pack))
        return path

    def write_canary(self, pack: PromptPack, canary_percent: int, canary_since: datetime) -> Path:
        path = self.canary_path(pack.behavior)
        write_json_atomic(path, artifact_payload(pack, canary_percent, canary_since))
        return path

    def remove_canary(self, behavior: str) -> bool:
        path = self.canary_path(behavior)
        if not path.exists():
            return False
        path.unlink()
        return True

    def read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read pack artifact {path}: {e}")
            return None


def canary_percent_for(fraction: float) -> int:
    return int(round(fraction * 100))


class Deployer:
    """Stages new packs as canaries or deploys them straight to active."""

    def __init__(
        self,
        db_service: DatabaseService,
        artifacts: PackArtifacts,
        config: DeployConfig,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db_service = db_service
        self.artifacts = artifacts
        self.config = config
        self.clock = clock

    def deploy(self, pack: PromptPack) -> Deployment:
        """Deploy ``pack``. Fractions below 1.0 stage a canary; 1.0 or more go straight to active."""
        if self.config.canary_fraction < 1:
            return self._deploy_canary(pack)
        return self._deploy_full(pack)

    def _deploy_canary(self, pack: PromptPack) -> Deployment:
        state = self.db_service.get_behavior_state(pack.behavior)
        if state.canary_version and state.canary_version != pack.version:
            logger.warning(f"Replacing pending {pack.behavior} canary {state.canary_version} with {pack.version}")

        percent = canary_percent_for(self.config.canary_fraction)
        since = self.clock()
        deployment = self.db_service.record_transition(
            pack.behavior,
            pack.version,
            self.artifacts.canary_path(pack.behavior),
            DeploymentStatus.CANARY,
            percent,
            canary_version=pack.version,
            canary_since=since,
        )
        self.artifacts.write_canary(pack, percent, since)
        logger.info(f"Staged {pack.behavior} {pack.version} as {percent}% canary")
        return deployment

    def _deploy_full(self, pack: PromptPack) -> Deployment:
        """Deploy straight to active; a pending canary is superseded and cleared."""
        state = self.db_service.get_behavior_state(pack.behavior)
        if state.canary_version:
            logger.warning(f"Full deploy of {pack.behavior} {pack.version} replaces pending canary {state.canary_version}")

        deployment = self.db_service.record_transition(
            pack.behavior,
            pack.version,
            self.artifacts.active_path(pack.behavior),
            DeploymentStatus.FULL,
            100,
            active_version=pack.version,
            canary_version=None,
            canary_since=None,
        )
        self.artifacts.write_active(pack)
        self.artifacts.remove_canary(pack.behavior)
        logger.info(f"Deployed {pack.behavior} {pack.version} to active")
        return deployment

    def sync_artifacts(self, behavior: str) -> dict[str, str | None]:
        """Rewrite a behavior's artifact files from its committed state.

        Repairs files left stale by a crash between a state commit and the
        file write that follows it.
        """
        state = self.db_service.get_behavior_state(behavior)
        written: dict[str, str | None] = {"active": None, "canary": None}

        if state.active_version:
            active = self.db_service.get_prompt_pack(behavior, state.active_version)
            if active:
                written["active"] = str(self.artifacts.write_active(active))

        if state.canary_version:
            canary = self.db_service.get_prompt_pack(behavior, state.canary_version)
            if canary:
                since = state.canary_since or self.clock()
                path = self.artifacts.write_canary(canary, canary_percent_for(self.config.canary_fraction), since)
                written["canary"] = str(path)
        elif self.artifacts.remove_canary(behavior):
            logger.info(f"Removed stale {behavior} canary artifact")

        return written
