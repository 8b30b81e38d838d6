from __future__ import annotations

import logging
import os
from typing import List, Optional

DB_PATH = os.environ.get("TLS_CHECKER_DB", "tls_checker.db")

SCAN_ROOT = os.environ.get("TLS_CHECKER_SCAN_ROOT", ".")
DEFAULT_DIRECTORIES = os.environ.get("TLS_CHECKER_DIRECTORIES", "modules,themes")

PROBE_TIMEOUT = float(os.environ.get("TLS_CHECKER_PROBE_TIMEOUT", "10"))
BATCH_SIZE = int(os.environ.get("TLS_CHECKER_BATCH_SIZE", "10"))
CA_FILE = os.environ.get("TLS_CHECKER_CA_FILE", "").strip() or None

API_KEY = os.getenv("TLS_CHECKER_API_KEY", "").strip()
LOG_LEVEL = os.environ.get("TLS_CHECKER_LOG_LEVEL", "INFO").upper()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


STICKY_PASSING = _env_flag("TLS_CHECKER_STICKY_PASSING", True)
REACHABILITY_PRECHECK = _env_flag("TLS_CHECKER_REACHABILITY_PRECHECK", False)


def split_directories(value: Optional[str]) -> List[str]:
    """Turn a comma-separated directory list into clean entries."""
    return [d.strip() for d in (value or "").split(",") if d.strip()]


class ScanOptions(object):
    """Behaviour flags and limits for a scan coordinator."""

    def __init__(
        self,
        sticky_passing: bool = True,
        reachability_precheck: bool = False,
        probe_timeout: float = 10.0,
        batch_size: int = 10,
        cafile: Optional[str] = None,
        directories: Optional[List[str]] = None,
        base_dir: str = ".",
    ):
        self.sticky_passing = sticky_passing
        self.reachability_precheck = reachability_precheck
        self.probe_timeout = probe_timeout
        self.batch_size = max(1, int(batch_size))
        self.cafile = cafile
        self.directories = list(directories) if directories is not None else ["modules", "themes"]
        self.base_dir = base_dir

    @classmethod
    def from_env(cls) -> "ScanOptions":
        return cls(
            sticky_passing=STICKY_PASSING,
            reachability_precheck=REACHABILITY_PRECHECK,
            probe_timeout=PROBE_TIMEOUT,
            batch_size=BATCH_SIZE,
            cafile=CA_FILE,
            directories=split_directories(DEFAULT_DIRECTORIES),
            base_dir=SCAN_ROOT,
        )


_LOGGING_CONFIGURED = False


def configure_logging(level: Optional[str] = None) -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # worker chatter stays out of scan logs
    logging.getLogger("celery").setLevel(logging.WARNING)
    _LOGGING_CONFIGURED = True
