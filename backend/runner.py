from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, TypedDict

from code_scanner import extract_urls
from config import ScanOptions
from db import ResultStore
from hosts import normalize_host_key, split_host_key
from scanner import Status, check_reachability, probe

ProbeFn = Callable[..., Status]
ReachabilityFn = Callable[..., bool]


class ScanState(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    PROBING = "probing"
    COMPLETE = "complete"


class BatchResult(TypedDict):
    processed: int
    remaining: int
    passing: int
    failing: int
    failing_keys: List[str]


class UrlScanResult(TypedDict):
    processed: int
    passing: int
    failing: int
    failing_urls: List[str]


class ResultsSummary(TypedDict):
    passing: int
    failing: int
    passing_keys: List[str]
    failing_keys: List[str]
    has_data: bool


class ScanSession(object):
    """Pending host keys of one scan and the verdicts gathered for them so far.

    ``start_offset`` is the caller offset that maps to ``pending[0]``. It is
    non-zero only for a session rebuilt from the store part way through a scan.
    """

    def __init__(self, pending: List[str], start_offset: int = 0):
        self.pending = list(pending)
        self.start_offset = start_offset
        self.results: Dict[str, Status] = {}

    @property
    def processed_count(self) -> int:
        return len(self.results)

    @property
    def passing_count(self) -> int:
        return sum(1 for s in self.results.values() if s is Status.PASSING)

    @property
    def failing_count(self) -> int:
        return sum(1 for s in self.results.values() if s is Status.FAILING)

    @property
    def failing_keys(self) -> List[str]:
        return sorted(k for k, s in self.results.items() if s is Status.FAILING)

    @property
    def remaining(self) -> int:
        return max(0, len(self.pending) - self.processed_count)


class ScanCoordinator(object):
    """
    Extraction -> dedup against stored results -> batched probing -> persistence.

    Batches are driven by the caller (process_batch with an increasing offset);
    hosts inside one batch are probed in parallel and joined before returning.
    """

    def __init__(
        self,
        store: ResultStore,
        logger: Optional[logging.Logger] = None,
        options: Optional[ScanOptions] = None,
        probe: Optional[ProbeFn] = None,
        reachability: Optional[ReachabilityFn] = None,
    ):
        self.store = store
        self.logger = logger or logging.getLogger("tls_checker")
        self.options = options or ScanOptions()
        self._probe = probe or _default_probe
        self._reachability = reachability or check_reachability

        self.state = ScanState.IDLE
        self.session: Optional[ScanSession] = None
        self._lock = threading.Lock()

    # -----------------------------
    # Discovery
    # -----------------------------

    def _extract_keys(self, root_dirs: Optional[Iterable[str]]) -> List[str]:
        dirs = list(root_dirs) if root_dirs else self.options.directories
        candidates = extract_urls(dirs, base_dir=self.options.base_dir)
        keys = []
        seen = set()
        for cand in candidates:
            key = normalize_host_key(cand.origin)
            if key and key not in seen:
                seen.add(key)
                keys.append(key)
        return sorted(keys)

    def _sticky_keys(self) -> set:
        if not self.options.sticky_passing:
            return set()
        return set(self.store.select_by_status(Status.PASSING))

    def discover_urls(self, root_dirs: Optional[Iterable[str]] = None) -> List[str]:
        """Extracted origins still worth scanning (known-passing hosts left out when sticky)."""
        dirs = list(root_dirs) if root_dirs else self.options.directories
        skip = self._sticky_keys()
        out = []
        for cand in extract_urls(dirs, base_dir=self.options.base_dir):
            key = normalize_host_key(cand.origin)
            if key and key not in skip:
                out.append(cand.origin)
        return out

    def start_scan(self, root_dirs: Optional[Iterable[str]] = None) -> int:
        """
        Build the pending set; hosts seen for the first time are stored as pending.
        Hosts with an earlier verdict keep it until they are probed again.
        """
        with self._lock:
            self.state = ScanState.EXTRACTING
            self.session = None

        keys = self._extract_keys(root_dirs)
        skip = self._sticky_keys()
        pending = [k for k in keys if k not in skip]

        known = self.store.all_rows()
        for key in pending:
            if key not in known:
                self.store.upsert(key, Status.PENDING)

        with self._lock:
            self.session = ScanSession(pending)
            self.state = ScanState.PROBING if pending else ScanState.COMPLETE

        self.logger.info(
            "TLS scan started: %d hosts found, %d already passing, %d pending",
            len(keys), len(keys) - len(pending), len(pending),
        )
        return len(pending)

    def resume(self, start_offset: int = 0) -> int:
        """Rebuild the session from hosts still marked pending in the store."""
        pending = self.store.select_by_status(Status.PENDING)
        with self._lock:
            self.session = ScanSession(pending, start_offset)
            self.state = ScanState.PROBING if pending else ScanState.COMPLETE
        self.logger.info("TLS scan resumed with %d pending hosts", len(pending))
        return len(pending)

    # -----------------------------
    # Probing
    # -----------------------------

    def _check_key(self, key: str) -> Status:
        host, port = split_host_key(key)
        timeout = self.options.probe_timeout

        if self.options.reachability_precheck and not self._reachability(key, timeout=timeout):
            self.logger.warning("Skipping TLS check for unreachable host %s", key)
            return Status.FAILING

        status = self._probe(host, port, timeout=timeout, cafile=self.options.cafile)
        return Status(status)

    def _probe_and_store(self, key: str) -> Status:
        try:
            status = self._check_key(key)
        except Exception as e:
            self.logger.warning("TLS check raised for %s: %s", key, e)
            status = Status.FAILING
        self.store.upsert(key, status)
        self.logger.debug("TLS result %s: %s", key, status.value)
        return status

    def _run_pool(self, keys: List[str], workers: int) -> Dict[str, Status]:
        results: Dict[str, Status] = {}
        if not keys:
            return results

        with ThreadPoolExecutor(max_workers=max(1, min(len(keys), workers))) as ex:
            futures = {ex.submit(self._probe_and_store, k): k for k in keys}
            # store errors surface from fut.result() once every sibling has finished
            errors = []
            for fut in as_completed(futures):
                try:
                    results[futures[fut]] = fut.result()
                except Exception as e:
                    errors.append(e)
        if errors:
            raise errors[0]
        return results

    def process_batch(self, batch_size: Optional[int] = None, offset: int = 0) -> BatchResult:
        size = max(1, int(batch_size or self.options.batch_size))
        offset = max(0, int(offset))

        if self.session is None:
            # continue a scan started by an earlier process
            self.resume(offset)
        session = self.session

        total = len(session.pending)
        index = max(0, offset - session.start_offset)
        batch = session.pending[index:index + size]

        if batch:
            results = self._run_pool(batch, size)
            with self._lock:
                session.results.update(results)

        with self._lock:
            if session.remaining == 0:
                self.state = ScanState.COMPLETE
            out: BatchResult = {
                "processed": session.processed_count,
                "remaining": session.remaining if index < total else 0,
                "passing": session.passing_count,
                "failing": session.failing_count,
                "failing_keys": session.failing_keys,
            }

        self.logger.info(
            "TLS batch at offset %d: %d/%d processed, %d passing, %d failing",
            offset, out["processed"], total, out["passing"], out["failing"],
        )
        return out

    def scan_urls(self, urls: Iterable[str]) -> UrlScanResult:
        """Probe an explicit list of URLs and store the verdicts."""
        keys: List[str] = []
        for url in urls:
            if not isinstance(url, str):
                self.logger.warning("Unexpected data type in URLs: %r", url)
                continue
            key = normalize_host_key(url)
            if key and key not in keys:
                keys.append(key)

        results = self._run_pool(keys, self.options.batch_size)
        failing = sorted(k for k, s in results.items() if s is Status.FAILING)
        return {
            "processed": len(keys),
            "passing": len(results) - len(failing),
            "failing": len(failing),
            "failing_urls": failing,
        }

    # -----------------------------
    # Results
    # -----------------------------

    def get_results(self) -> ResultsSummary:
        has_data = self.store.table_exists()
        passing = self.store.select_by_status(Status.PASSING)
        failing = self.store.select_by_status(Status.FAILING)
        return {
            "passing": len(passing),
            "failing": len(failing),
            "passing_keys": passing,
            "failing_keys": failing,
            "has_data": has_data,
        }

    def reset(self) -> None:
        self.store.reset()
        with self._lock:
            self.session = None
            self.state = ScanState.IDLE


def _default_probe(host: str, port: int, timeout: float, cafile: Optional[str] = None) -> Status:
    return probe(host, port, timeout=timeout, cafile=cafile)
