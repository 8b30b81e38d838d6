from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import closing
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import DB_PATH
from scanner import Status

logger = logging.getLogger(__name__)

TABLE = "tls_checker_results"


class ResultStoreError(Exception):
    """The result database could not be read or written."""


class ResultStore(object):
    """
    Durable host_key -> status mapping in SQLite.
    One row per host key (upsert, last write wins). Writes are serialized by a
    table-level lock so batch workers can upsert concurrently.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or DB_PATH
        self._lock = threading.Lock()

    def get_connection(self) -> sqlite3.Connection:
        # check_same_thread=False allows batch worker threads to write results
        try:
            return sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        except sqlite3.Error as e:
            raise ResultStoreError(f"cannot open result database {self.db_path}: {e}") from e

    def table_exists(self) -> bool:
        try:
            with closing(self.get_connection()) as conn:
                row = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                    (TABLE,),
                ).fetchone()
        except sqlite3.Error as e:
            raise ResultStoreError(str(e)) from e
        return row is not None

    def create_table(self) -> None:
        try:
            with closing(self.get_connection()) as conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {TABLE} (
                        host_key TEXT PRIMARY KEY,
                        status TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{TABLE}_status ON {TABLE} (status)")
                conn.commit()
        except sqlite3.Error as e:
            raise ResultStoreError(str(e)) from e

    def drop_table(self) -> None:
        try:
            with closing(self.get_connection()) as conn:
                conn.execute(f"DROP TABLE IF EXISTS {TABLE}")
                conn.commit()
        except sqlite3.Error as e:
            raise ResultStoreError(str(e)) from e

    def ensure_table(self) -> None:
        if not self.table_exists():
            self.create_table()
            logger.info("Created missing %s table.", TABLE)

    def upsert(self, host_key: str, status: Status) -> None:
        status = Status(status)
        with self._lock:
            self.ensure_table()
            try:
                with closing(self.get_connection()) as conn:
                    conn.execute(
                        f"INSERT OR REPLACE INTO {TABLE} (host_key, status, updated_at) VALUES (?, ?, ?)",
                        (host_key, status.value, datetime.now(timezone.utc).isoformat()),
                    )
                    conn.commit()
            except sqlite3.Error as e:
                raise ResultStoreError(f"failed to store result for {host_key}: {e}") from e

    def select_by_status(self, status: Status) -> List[str]:
        status = Status(status)
        if not self.table_exists():
            return []
        try:
            with closing(self.get_connection()) as conn:
                rows = conn.execute(
                    f"SELECT host_key FROM {TABLE} WHERE status = ? ORDER BY host_key",
                    (status.value,),
                ).fetchall()
        except sqlite3.Error as e:
            raise ResultStoreError(str(e)) from e
        return [r[0] for r in rows]

    def all_rows(self) -> Dict[str, Status]:
        if not self.table_exists():
            return {}
        try:
            with closing(self.get_connection()) as conn:
                rows = conn.execute(f"SELECT host_key, status FROM {TABLE} ORDER BY host_key").fetchall()
        except sqlite3.Error as e:
            raise ResultStoreError(str(e)) from e
        return {k: Status(s) for k, s in rows}

    def reset(self) -> bool:
        """Drop and recreate the results table. Returns False when there was nothing to drop."""
        with self._lock:
            existed = self.table_exists()
            if existed:
                self.drop_table()
            self.create_table()
        if existed:
            logger.info("TLS scan data has been fully reset.")
        else:
            logger.warning("Attempted to reset scan data, but the results table does not exist.")
        return existed
