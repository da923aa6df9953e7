from __future__ import annotations

import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from ...core.exceptions import FlowNotFound, StorageError
from ...core.logging import LoggerManager
from ...ports.store import (
    EngineDataStore,
    Flow,
    FlowStep,
    FlowStore,
    Job,
    JobStatus,
    JobStore,
    ProcessedItemStore,
    TERMINAL_STATUSES,
)
from .schema import MIGRATION_TABLE_DDL, get_migrations_since


logger = LoggerManager.get_logger(__name__)

_TERMINAL_SQL = "(" + ",".join(f"'{s.value}'" for s in TERMINAL_STATUSES) + ")"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SQLiteStoreConfig:
    db_path: Path


class SQLiteStore(FlowStore, JobStore, EngineDataStore, ProcessedItemStore):
    """
    SQLite engine store:
    - flows / flow_steps hold the pipeline definitions
    - jobs is the only place job state lives; every status change is a conditional UPDATE
    - processed_items carries the UNIQUE triple that makes item consumption at-most-once
    """

    def __init__(self, config: SQLiteStoreConfig):
        self.config = config
        self._lock = threading.RLock()
        self._ensure_db()

    def _connect(self) -> sqlite3.Connection:
        self.config.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.config.db_path), check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        # WAL for concurrent workers
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def _ensure_db(self) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.executescript(MIGRATION_TABLE_DDL)
                row = conn.execute(
                    "SELECT MAX(CAST(version AS INTEGER)) AS v FROM schema_migrations WHERE success=1"
                ).fetchone()
                current = str(row["v"]) if row is not None and row["v"] is not None else ""
                for migration in get_migrations_since(current):
                    conn.executescript(migration.up_sql)
                    conn.execute(
                        "INSERT OR REPLACE INTO schema_migrations(version, description, applied_at, success) "
                        "VALUES(?, ?, ?, 1)",
                        (migration.version, migration.description, _utc_now_iso()),
                    )
                    conn.commit()
                    logger.info(f"Applied schema migration {migration.version}: {migration.description}")
            except sqlite3.Error as e:
                raise StorageError(f"Schema migration failed: {e}", path=str(self.config.db_path),
                                   operation="migrate") from e
            finally:
                conn.close()

    # -------------------------
    # Flows
    # -------------------------

    @staticmethod
    def _row_to_flow(row: sqlite3.Row) -> Flow:
        return Flow(
            flow_id=str(row["flow_id"]),
            name=str(row["name"]),
            schedule_interval=row["schedule_interval"],
            next_run_at=row["next_run_at"],
            created_at=str(row["created_at"]),
        )

    @staticmethod
    def _row_to_flow_step(row: sqlite3.Row) -> FlowStep:
        return FlowStep(
            flow_step_id=str(row["flow_step_id"]),
            flow_id=str(row["flow_id"]),
            step_type=str(row["step_type"]),
            position=int(row["position"]),
            config=json.loads(row["config_json"] or "{}"),
        )

    def create_flow(self, name: str, flow_id: Optional[str] = None) -> Flow:
        flow_id = flow_id or uuid4().hex
        now = _utc_now_iso()
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT INTO flows(flow_id, name, created_at) VALUES(?, ?, ?)",
                    (flow_id, name, now),
                )
                conn.commit()
            finally:
                conn.close()
        return Flow(flow_id=flow_id, name=name, created_at=now)

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT * FROM flows WHERE flow_id=?", (flow_id,)).fetchone()
                return self._row_to_flow(row) if row is not None else None
            finally:
                conn.close()

    def add_flow_step(self, flow_id: str, step_type: str, config: Dict[str, Any], *,
                      flow_step_id: Optional[str] = None, position: Optional[int] = None) -> FlowStep:
        flow_step_id = flow_step_id or uuid4().hex
        with self._lock:
            conn = self._connect()
            try:
                if conn.execute("SELECT 1 FROM flows WHERE flow_id=?", (flow_id,)).fetchone() is None:
                    raise FlowNotFound(f"Flow {flow_id} does not exist", flow_id=flow_id)
                if position is None:
                    row = conn.execute(
                        "SELECT COALESCE(MAX(position), -1) + 1 AS next_pos FROM flow_steps WHERE flow_id=?",
                        (flow_id,),
                    ).fetchone()
                    position = int(row["next_pos"])
                else:
                    conn.execute(
                        "UPDATE flow_steps SET position = position + 1 WHERE flow_id=? AND position >= ?",
                        (flow_id, position),
                    )
                conn.execute(
                    "INSERT INTO flow_steps(flow_step_id, flow_id, position, step_type, config_json) "
                    "VALUES(?, ?, ?, ?, ?)",
                    (flow_step_id, flow_id, position, step_type, json.dumps(config or {}, ensure_ascii=False)),
                )
                conn.commit()
            finally:
                conn.close()
        return FlowStep(flow_step_id, flow_id, step_type, position, dict(config or {}))

    def get_flow_steps(self, flow_id: str) -> List[FlowStep]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT * FROM flow_steps WHERE flow_id=? ORDER BY position ASC", (flow_id,)
                ).fetchall()
                return [self._row_to_flow_step(r) for r in rows]
            finally:
                conn.close()

    def get_flow_step(self, flow_step_id: str) -> Optional[FlowStep]:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT * FROM flow_steps WHERE flow_step_id=?", (flow_step_id,)).fetchone()
                return self._row_to_flow_step(row) if row is not None else None
            finally:
                conn.close()

    def set_schedule(self, flow_id: str, interval: Optional[str], next_run_at: Optional[float]) -> None:
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(
                    "UPDATE flows SET schedule_interval=?, next_run_at=? WHERE flow_id=?",
                    (interval, next_run_at, flow_id),
                )
                conn.commit()
                if cur.rowcount == 0:
                    raise FlowNotFound(f"Flow {flow_id} does not exist", flow_id=flow_id)
            finally:
                conn.close()

    def list_due_flows(self, now: float) -> List[Flow]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(
                    "SELECT * FROM flows WHERE next_run_at IS NOT NULL AND next_run_at <= ? ORDER BY next_run_at ASC",
                    (now,),
                ).fetchall()
                return [self._row_to_flow(r) for r in rows]
            finally:
                conn.close()

    def claim_scheduled_run(self, flow_id: str, expected_next_run_at: float,
                            new_next_run_at: Optional[float]) -> bool:
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(
                    "UPDATE flows SET next_run_at=? WHERE flow_id=? AND next_run_at=?",
                    (new_next_run_at, flow_id, expected_next_run_at),
                )
                conn.commit()
                return cur.rowcount == 1
            finally:
                conn.close()

    # -------------------------
    # Jobs
    # -------------------------

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            job_id=str(row["job_id"]),
            flow_id=str(row["flow_id"]),
            flow_step_ids=list(json.loads(row["flow_step_ids_json"] or "[]")),
            status=JobStatus(row["status"]),
            current_step_index=int(row["current_step_index"]),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
            failure_reason=row["failure_reason"],
            context=str(row["context"] or ""),
        )

    def create_job(self, flow_id: str, flow_step_ids: List[str], context: str = "") -> Job:
        job_id = uuid4().hex
        now = _utc_now_iso()
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO jobs(job_id, flow_id, flow_step_ids_json, status, current_step_index,
                                     context, created_at, updated_at)
                    VALUES(?, ?, ?, 'pending', 0, ?, ?, ?)
                    """,
                    (job_id, flow_id, json.dumps(list(flow_step_ids)), context or "", now, now),
                )
                conn.commit()
            finally:
                conn.close()
        return Job(job_id=job_id, flow_id=flow_id, flow_step_ids=list(flow_step_ids),
                   created_at=now, updated_at=now, context=context or "")

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT * FROM jobs WHERE job_id=?", (job_id,)).fetchone()
                return self._row_to_job(row) if row is not None else None
            finally:
                conn.close()

    def _conditional_update(self, sql: str, params: tuple) -> bool:
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(sql, params)
                conn.commit()
                return cur.rowcount == 1
            finally:
                conn.close()

    def mark_running(self, job_id: str) -> bool:
        return self._conditional_update(
            "UPDATE jobs SET status='running', updated_at=? WHERE job_id=? AND status='pending'",
            (_utc_now_iso(), job_id),
        )

    def advance_step(self, job_id: str, from_index: int) -> bool:
        return self._conditional_update(
            f"""
            UPDATE jobs SET current_step_index=?, updated_at=?
            WHERE job_id=? AND current_step_index=? AND status NOT IN {_TERMINAL_SQL}
              AND ? < json_array_length(flow_step_ids_json)
            """,
            (from_index + 1, _utc_now_iso(), job_id, from_index, from_index + 1),
        )

    def complete_job(self, job_id: str, status: JobStatus) -> bool:
        if status not in (JobStatus.COMPLETED, JobStatus.COMPLETED_NO_ITEMS):
            raise ValueError(f"complete_job does not accept status {status}")
        return self._conditional_update(
            f"UPDATE jobs SET status=?, updated_at=? WHERE job_id=? AND status NOT IN {_TERMINAL_SQL}",
            (status.value, _utc_now_iso(), job_id),
        )

    def fail_job(self, job_id: str, reason: str) -> bool:
        return self._conditional_update(
            f"""
            UPDATE jobs SET status='failed', failure_reason=?, updated_at=?
            WHERE job_id=? AND status NOT IN {_TERMINAL_SQL}
            """,
            (reason, _utc_now_iso(), job_id),
        )

    def list_jobs(self, flow_id: Optional[str] = None, status: Optional[JobStatus] = None) -> List[Job]:
        clauses, params = [], []
        if flow_id:
            clauses.append("flow_id=?")
            params.append(flow_id)
        if status:
            clauses.append("status=?")
            params.append(JobStatus(status).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute(f"SELECT * FROM jobs {where} ORDER BY created_at ASC", params).fetchall()
                return [self._row_to_job(r) for r in rows]
            finally:
                conn.close()

    def delete_jobs(self, failed_only: bool = False) -> List[str]:
        where = "WHERE status='failed'" if failed_only else ""
        with self._lock:
            conn = self._connect()
            try:
                job_ids = [str(r["job_id"]) for r in conn.execute(f"SELECT job_id FROM jobs {where}").fetchall()]
                for job_id in job_ids:
                    conn.execute("DELETE FROM engine_data WHERE job_id=?", (job_id,))
                    conn.execute("DELETE FROM jobs WHERE job_id=?", (job_id,))
                conn.commit()
                return job_ids
            finally:
                conn.close()

    # -------------------------
    # Engine data
    # -------------------------

    def get_engine_data(self, job_id: str) -> Dict[str, str]:
        with self._lock:
            conn = self._connect()
            try:
                rows = conn.execute("SELECT key, value FROM engine_data WHERE job_id=?", (job_id,)).fetchall()
                return {str(r["key"]): str(r["value"]) for r in rows}
            finally:
                conn.close()

    def merge_engine_data(self, job_id: str, values: Dict[str, Any]) -> Dict[str, str]:
        with self._lock:
            conn = self._connect()
            try:
                for key, value in (values or {}).items():
                    if value is None:
                        continue
                    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
                    conn.execute(
                        "INSERT OR REPLACE INTO engine_data(job_id, key, value) VALUES(?, ?, ?)",
                        (job_id, str(key), text),
                    )
                conn.commit()
            finally:
                conn.close()
        return self.get_engine_data(job_id)

    def delete_engine_data(self, job_id: str) -> None:
        with self._lock:
            conn = self._connect()
            try:
                conn.execute("DELETE FROM engine_data WHERE job_id=?", (job_id,))
                conn.commit()
            finally:
                conn.close()

    # -------------------------
    # Processed items
    # -------------------------

    def is_processed(self, flow_step_id: str, source_type: str, item_identifier: str) -> bool:
        with self._lock:
            conn = self._connect()
            try:
                row = conn.execute(
                    "SELECT 1 FROM processed_items WHERE flow_step_id=? AND source_type=? AND item_identifier=?",
                    (flow_step_id, source_type, str(item_identifier)),
                ).fetchone()
                return row is not None
            finally:
                conn.close()

    def mark_processed(self, flow_step_id: str, source_type: str, item_identifier: str, job_id: str) -> bool:
        """
        Insert the dedup record.

        A unique-constraint violation means another attempt already claimed the
        item; that is reported as False, not raised.
        """
        with self._lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO processed_items(flow_step_id, source_type, item_identifier, job_id, created_at)
                    VALUES(?, ?, ?, ?, ?)
                    """,
                    (flow_step_id, source_type, str(item_identifier), job_id, _utc_now_iso()),
                )
                conn.commit()
                return True
            except sqlite3.IntegrityError:
                logger.debug(f"Item already processed: {flow_step_id}/{source_type}/{item_identifier}")
                return False
            finally:
                conn.close()

    def delete_processed_items(self, *, job_id: Optional[str] = None, flow_step_id: Optional[str] = None,
                               flow_id: Optional[str] = None, source_type: Optional[str] = None) -> int:
        clauses, params = [], []
        if job_id:
            clauses.append("job_id=?")
            params.append(job_id)
        if flow_step_id:
            clauses.append("flow_step_id=?")
            params.append(flow_step_id)
        if flow_id:
            clauses.append("flow_step_id IN (SELECT flow_step_id FROM flow_steps WHERE flow_id=?)")
            params.append(flow_id)
        if source_type:
            clauses.append("source_type=?")
            params.append(source_type)
        if not clauses:
            logger.warning("delete_processed_items called without criteria, nothing deleted")
            return 0

        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute(f"DELETE FROM processed_items WHERE {' AND '.join(clauses)}", params)
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()

    def cleanup_processed_items(self, older_than_days: int) -> int:
        if older_than_days <= 0:
            return 0
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat()
        with self._lock:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM processed_items WHERE created_at < ?", (cutoff,))
                conn.commit()
                return cur.rowcount
            finally:
                conn.close()
