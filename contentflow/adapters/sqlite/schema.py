"""
SQLite schema definition and migrations.

Contains:
- table DDL
- schema version tracking
- ordered migrations
"""
from __future__ import annotations

from typing import List

# Current schema version
SCHEMA_VERSION = "3"

# =============================================================================
# Flow definitions
# =============================================================================

FLOW_TABLES_DDL = """
CREATE TABLE IF NOT EXISTS flows (
    flow_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS flow_steps (
    flow_step_id TEXT PRIMARY KEY,
    flow_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    step_type TEXT NOT NULL,
    config_json TEXT NOT NULL DEFAULT '{}',
    FOREIGN KEY(flow_id) REFERENCES flows(flow_id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_flow_steps_flow ON flow_steps(flow_id, position);
"""

# =============================================================================
# Job state
# =============================================================================

JOB_TABLES_DDL = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    flow_id TEXT NOT NULL,
    flow_step_ids_json TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    current_step_index INTEGER NOT NULL DEFAULT 0,
    failure_reason TEXT,
    context TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_flow ON jobs(flow_id);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);

-- job-scoped side channel (source_url, image_url...)
CREATE TABLE IF NOT EXISTS engine_data (
    job_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY(job_id, key),
    FOREIGN KEY(job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
);
"""

# =============================================================================
# Deduplication ledger
# =============================================================================

PROCESSED_ITEMS_DDL = """
CREATE TABLE IF NOT EXISTS processed_items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    flow_step_id TEXT NOT NULL,
    source_type TEXT NOT NULL,
    item_identifier TEXT NOT NULL,
    job_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE(flow_step_id, source_type, item_identifier)
);
CREATE INDEX IF NOT EXISTS idx_processed_items_job ON processed_items(job_id);
CREATE INDEX IF NOT EXISTS idx_processed_items_created_at ON processed_items(created_at);
"""

# =============================================================================
# Flow schedules
# =============================================================================

SCHEDULE_COLUMNS_DDL = """
ALTER TABLE flows ADD COLUMN schedule_interval TEXT;
ALTER TABLE flows ADD COLUMN next_run_at REAL;
CREATE INDEX IF NOT EXISTS idx_flows_next_run_at ON flows(next_run_at);
"""

# =============================================================================
# Migration bookkeeping
# =============================================================================

MIGRATION_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT NOT NULL,
    success INTEGER NOT NULL DEFAULT 1
);
"""


class Migration:
    """Migration definition"""
    def __init__(self, version: str, description: str, up_sql: str, down_sql: str = ""):
        self.version = version
        self.description = description
        self.up_sql = up_sql
        self.down_sql = down_sql


# Ordered by version
MIGRATIONS: List[Migration] = [
    Migration(
        version="1",
        description="Initial schema with flows, flow_steps, jobs and engine_data",
        up_sql=FLOW_TABLES_DDL + JOB_TABLES_DDL,
    ),
    Migration(
        version="2",
        description="Add processed_items deduplication ledger",
        up_sql=PROCESSED_ITEMS_DDL,
    ),
    Migration(
        version="3",
        description="Add flow schedule columns",
        up_sql=SCHEDULE_COLUMNS_DDL,
    ),
]


def get_migrations_since(current_version: str) -> List[Migration]:
    """Migrations newer than current_version"""
    if not current_version:
        return MIGRATIONS
    try:
        current_num = int(current_version)
    except ValueError:
        current_num = 0
    return [m for m in MIGRATIONS if int(m.version) > current_num]
