"""Autotune cycle orchestration: single runs, the blocking daemon loop and the background timer."""

from __future__ import annotations

import logging
import threading
from typing import Callable

from autotune.config import AutotuneConfig
from autotune.database import session_scope
from autotune.models import CycleReport
from autotune.services.canary_controller import CanaryController
from autotune.services.database_service import DatabaseService
from autotune.services.deployer import Deployer, PackArtifacts
from autotune.services.eval_service import EvalService
from autotune.services.judge_service import JudgeService
from autotune.services.llm_service import LLMService
from autotune.services.optimizer import Optimizer
from autotune.services.rubrics import get_rubrics

logger = logging.getLogger(__name__)

# One cycle at a time per process
_cycle_lock = threading.Lock()

_cycle_timer: threading.Timer | None = None
_cycle_timer_lock = threading.Lock()
_cycle_timer_running = False


class CycleInProgressError(RuntimeError):
    """Raised when a cycle is requested while another one is still running."""


def run_cycle(db_service: DatabaseService, config: AutotuneConfig, llm: LLMService) -> CycleReport:
    """Run one cycle on an existing session. Raises CycleInProgressError if one is already running."""
    if not _cycle_lock.acquire(blocking=False):
        raise CycleInProgressError("An autotune cycle is already running")
    try:
        return _run_cycle(db_service, config, llm)
    finally:
        _cycle_lock.release()


def _run_cycle(db_service: DatabaseService, config: AutotuneConfig, llm: LLMService) -> CycleReport:
    report = CycleReport()
    judge = JudgeService(llm, config.judge)
    report.evaluated = EvalService(db_service, judge, config).run(get_rubrics(config.behaviors))

    artifacts = PackArtifacts(config.deploy.output_dir)
    optimizer = Optimizer(db_service, llm, config)
    deployer = Deployer(db_service, artifacts, config.deploy)
    controller = CanaryController(db_service, artifacts, config.deploy)

    for behavior in config.behaviors:
        try:
            pack = optimizer.optimize(behavior)
            report.packs[behavior] = pack.version if pack else None
            if pack:
                deployer.deploy(pack)
        except Exception as e:
            db_service.db.rollback()
            logger.exception(f"Optimization failed for {behavior}: {e}")
            report.errors[behavior] = str(e)

        try:
            report.canaries[behavior] = controller.evaluate(behavior).action
        except Exception as e:
            db_service.db.rollback()
            logger.exception(f"Canary evaluation failed for {behavior}: {e}")
            report.errors.setdefault(behavior, str(e))

    return report


def run_once(config: AutotuneConfig, llm: LLMService, session_factory: Callable | None = None) -> CycleReport:
    """Run eval, optimize, deploy and canary evaluation once for every configured behavior.

    A failure in one behavior is logged and recorded in the report; the others still run.
    """
    with session_scope(session_factory) as db:
        report = run_cycle(DatabaseService(db), config, llm)

    logger.info(f"Autotune cycle finished: packs={report.packs} canaries={report.canaries} errors={len(report.errors)}")
    return report


def run_daemon(
    config: AutotuneConfig,
    llm: LLMService,
    session_factory: Callable | None = None,
    stop_event: threading.Event | None = None,
    max_cycles: int | None = None,
) -> int:
    """Run cycles forever (or ``max_cycles`` times), sleeping ``interval_minutes`` between them.

    Returns the number of cycles attempted.
    """
    stop_event = stop_event or threading.Event()
    interval_seconds = config.interval_minutes * 60
    cycles = 0

    while not stop_event.is_set():
        cycles += 1
        try:
            run_once(config, llm, session_factory)
        except Exception as e:
            logger.error(f"[alert] Autotune cycle {cycles} failed: {e}", exc_info=True)

        if max_cycles is not None and cycles >= max_cycles:
            break
        stop_event.wait(interval_seconds)

    return cycles


def _run_periodic_cycle(config: AutotuneConfig, llm: LLMService, session_factory: Callable | None) -> None:
    """Run a cycle and reschedule the next one. Called by the timer."""
    global _cycle_timer

    if not _cycle_timer_running:
        return

    try:
        run_once(config, llm, session_factory)
    except CycleInProgressError:
        logger.info("Skipping scheduled cycle; another cycle is running")
    except Exception as e:
        logger.error(f"Scheduled autotune cycle failed: {e}", exc_info=True)

    # Always reschedule, even if the cycle failed
    with _cycle_timer_lock:
        if _cycle_timer_running:
            _cycle_timer = threading.Timer(
                config.interval_minutes * 60, _run_periodic_cycle, args=(config, llm, session_factory)
            )
            _cycle_timer.daemon = True
            _cycle_timer.start()
            logger.debug(f"Next autotune cycle in {config.interval_minutes} minutes")


def start_cycle_timer(config: AutotuneConfig, llm: LLMService, session_factory: Callable | None = None) -> bool:
    """Start running cycles in the background every ``interval_minutes``.

    Returns False when the interval disables scheduling or a timer is already running.
    """
    global _cycle_timer, _cycle_timer_running

    if config.interval_minutes <= 0:
        logger.info("AUTOTUNE_INTERVAL_MINUTES is 0 - scheduled cycles disabled")
        return False

    with _cycle_timer_lock:
        if _cycle_timer_running:
            logger.warning("Autotune cycle timer already running")
            return False

        _cycle_timer_running = True
        _cycle_timer = threading.Timer(
            config.interval_minutes * 60, _run_periodic_cycle, args=(config, llm, session_factory)
        )
        _cycle_timer.daemon = True
        _cycle_timer.start()

    logger.info(f"Autotune cycle timer started - running every {config.interval_minutes} minutes")
    return True


def stop_cycle_timer() -> None:
    global _cycle_timer, _cycle_timer_running

    with _cycle_timer_lock:
        _cycle_timer_running = False
        if _cycle_timer is not None:
            _cycle_timer.cancel()
            _cycle_timer = None

    logger.info("Autotune cycle timer stopped")


def is_cycle_timer_running() -> bool:
    return _cycle_timer_running
