"""Command-line entry point for running autotune cycles.

Usage:
    autotune                       # one full cycle (same as `autotune once`)
    autotune eval
    autotune optimize --behavior task-extraction
    autotune daemon
    autotune serve
"""

from __future__ import annotations

import argparse
import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError

from autotune.config import AutotuneConfig, ServerConfig, load_config
from autotune.database import create_tables, session_scope
from autotune.models import TraceEvent
from autotune.services.canary_controller import CanaryController
from autotune.services.database_service import DatabaseService
from autotune.services.deployer import Deployer, PackArtifacts
from autotune.services.eval_service import EvalService
from autotune.services.judge_service import JudgeService
from autotune.services.llm_service import LLMService
from autotune.services.optimizer import Optimizer
from autotune.services.rubrics import get_rubrics
from autotune.services.scheduler import run_daemon, run_once

logger = logging.getLogger(__name__)


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="autotune", description="Prompt-pack optimization and canary rollout.")
    p.add_argument("--config", default=None, help="YAML settings file (defaults to AUTOTUNE_CONFIG or ~/.config/autotune/config.yaml).")
    p.add_argument("--log-level", default="INFO", help="Logging level (default INFO).")
    sub = p.add_subparsers(dest="command")

    p_ingest = sub.add_parser("ingest", help="Load trace events from a JSONL file.")
    p_ingest.add_argument("path", type=Path, help="JSONL file with one trace event per line.")

    sub.add_parser("eval", help="Judge traces that have no score yet.")

    p_optimize = sub.add_parser("optimize", help="Run one optimization cycle per behavior.")
    p_optimize.add_argument("--behavior", action="append", help="Behavior to optimize (repeatable; defaults to all configured).")
    p_optimize.add_argument("--deploy", action="store_true", help="Deploy any new pack right away.")

    p_deploy = sub.add_parser("deploy", help="Deploy the latest stored pack for a behavior.")
    p_deploy.add_argument("--behavior", required=True)

    p_canary = sub.add_parser("canary", help="Evaluate pending canaries.")
    p_canary.add_argument("--behavior", action="append", help="Behavior to evaluate (repeatable; defaults to all configured).")

    p_sync = sub.add_parser("sync", help="Rewrite artifact files from the stored behavior state.")
    p_sync.add_argument("--behavior", action="append")

    sub.add_parser("once", help="Run eval, optimize, deploy and canary evaluation once (default).")

    p_daemon = sub.add_parser("daemon", help="Run cycles every interval_minutes until interrupted.")
    p_daemon.add_argument("--max-cycles", type=int, default=None)

    sub.add_parser("serve", help="Run the HTTP API with uvicorn.")

    return p


def _load_traces(path: Path) -> list[TraceEvent]:
    traces = []
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                traces.append(TraceEvent.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Skipping {path}:{line_no}: {e}")
    return traces


def _run_command(args: argparse.Namespace, config: AutotuneConfig) -> int:
    command = args.command or "once"

    if command == "serve":
        import uvicorn

        uvicorn.run("autotune.app:app", **ServerConfig.get_uvicorn_config())
        return 0

    create_tables()

    if command == "ingest":
        with session_scope() as db:
            inserted = DatabaseService(db).add_traces(_load_traces(args.path))
        print(f"Ingested {inserted} new traces from {args.path}")
        return 0

    artifacts = PackArtifacts(config.deploy.output_dir)

    if command in ("canary", "sync", "deploy"):
        behaviors = args.behavior if command != "deploy" else [args.behavior]
        with session_scope() as db:
            db_service = DatabaseService(db)
            for behavior in behaviors or config.behaviors:
                if command == "canary":
                    decision = CanaryController(db_service, artifacts, config.deploy).evaluate(behavior)
                    print(f"{behavior}: {decision.action.value}" + (f" ({decision.note})" if decision.note else ""))
                elif command == "sync":
                    print(f"{behavior}: {Deployer(db_service, artifacts, config.deploy).sync_artifacts(behavior)}")
                else:
                    pack = db_service.get_latest_prompt_pack(behavior)
                    if pack is None:
                        print(f"No prompt pack stored for {behavior}")
                        return 1
                    deployment = Deployer(db_service, artifacts, config.deploy).deploy(pack)
                    print(f"{behavior}: {deployment.status.value} {deployment.pack_version} -> {deployment.target_path}")
        return 0

    llm = LLMService(config.openrouter)

    if command == "eval":
        with session_scope() as db:
            judge = JudgeService(llm, config.judge)
            evaluated = EvalService(DatabaseService(db), judge, config).run(get_rubrics(config.behaviors))
        for rubric, count in evaluated.items():
            print(f"{rubric}: {count} scored")
        return 0

    if command == "optimize":
        with session_scope() as db:
            db_service = DatabaseService(db)
            optimizer = Optimizer(db_service, llm, config)
            for behavior in args.behavior or config.behaviors:
                pack = optimizer.optimize(behavior)
                if pack is None:
                    print(f"{behavior}: no improvement")
                    continue
                print(f"{behavior}: new pack {pack.version}")
                if args.deploy:
                    Deployer(db_service, artifacts, config.deploy).deploy(pack)
        return 0

    if command == "daemon":
        try:
            run_daemon(config, llm, stop_event=threading.Event(), max_cycles=args.max_cycles)
        except KeyboardInterrupt:
            logger.info("Daemon interrupted")
        return 0

    report = run_once(config, llm)
    print(report.model_dump_json(indent=2))
    return 1 if report.errors else 0


def main(argv: list[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config(args.config)
    try:
        return _run_command(args, config)
    except Exception as e:
        logger.error(f"autotune {args.command or 'once'} failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
