from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

from celery import Celery

import config
from db import ResultStore
from runner import ScanCoordinator

BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://redis:6379/0")
RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://redis:6379/1")

celery_app = Celery("tls_checker", broker=BROKER_URL, backend=RESULT_BACKEND)

celery_app.conf.update(
    task_track_started=True,
    result_extended=True,
    task_time_limit=int(os.environ.get("TASK_TIME_LIMIT", "3600")),       # hard kill (seconds)
    task_soft_time_limit=int(os.environ.get("TASK_SOFT_TIME_LIMIT", "3540")),
)

logger = logging.getLogger("tls_checker.tasks")


def build_coordinator() -> ScanCoordinator:
    return ScanCoordinator(
        ResultStore(config.DB_PATH),
        logger=logger,
        options=config.ScanOptions.from_env(),
    )


def run_full_scan(
    coordinator: ScanCoordinator,
    directories: Optional[List[str]] = None,
    batch_size: Optional[int] = None,
) -> Dict[str, Any]:
    """Start a scan and keep feeding batches until nothing is left."""
    size = max(1, int(batch_size or coordinator.options.batch_size))
    total = coordinator.start_scan(directories)

    offset = 0
    batch = coordinator.process_batch(size, offset)
    while batch["remaining"] > 0:
        offset += size
        batch = coordinator.process_batch(size, offset)

    summary = coordinator.get_results()
    logger.info(
        "TLS scan finished: %d scanned, %d passing, %d failing overall",
        total, summary["passing"], summary["failing"],
    )
    return {
        "scanned": total,
        "passing": summary["passing"],
        "failing": summary["failing"],
        "failing_urls": summary["failing_keys"],
    }


@celery_app.task(name="run_scan_task")
def run_scan_task(directories: Optional[List[str]] = None, batch_size: Optional[int] = None) -> Dict[str, Any]:
    """
    Execute a complete codebase scan in a Celery worker.
    Results land in the result store so the API can report them.
    """
    config.configure_logging()
    try:
        return run_full_scan(build_coordinator(), directories, batch_size)
    except Exception:
        logger.exception("run_scan_task failed")
        raise
