"""Database layer for analysis runs.

Supports two backends:
- PostgreSQL (production, set RUNS_DATABASE_URL env var)
- SQLite (local development, default)

Uses raw SQL via psycopg2 (Postgres) or sqlite3 (SQLite). No ORM.

Thread-safety: Postgres uses a ThreadedConnectionPool. SQLite uses
per-call connections with check_same_thread=False, so poll threads and
request handlers can share the module.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

# Database URL: postgres://... for Postgres, or empty for SQLite
DATABASE_URL = os.environ.get("RUNS_DATABASE_URL", "")

SQLITE_PATH = Path(os.environ.get("RUNS_SQLITE_PATH", Path(__file__).parent / "runs.db"))

_initialized = False
_pg_pool = None


def _is_postgres() -> bool:
    return DATABASE_URL.startswith("postgres")


def _get_pg_pool():
    """Get or create the Postgres connection pool (lazy singleton)."""
    global _pg_pool
    if _pg_pool is None:
        import psycopg2.pool
        _pg_pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=5,
            dsn=DATABASE_URL,
        )
        logger.info("PostgreSQL connection pool initialized (1-5 connections)")
    return _pg_pool


@contextmanager
def get_connection():
    """Get a database connection (Postgres or SQLite).

    Usage:
        with get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(...)
            conn.commit()
    """
    if _is_postgres():
        pool = _get_pg_pool()
        conn = pool.getconn()
        try:
            yield conn
        finally:
            pool.putconn(conn)
    else:
        conn = sqlite3.connect(str(SQLITE_PATH), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()


def json_dumps(data: Any) -> str:
    """Serialize data to JSON string for storage."""
    if data is None:
        return "{}"
    return json.dumps(data, ensure_ascii=False, default=str)


def json_loads(text: Any) -> Any:
    """Deserialize JSON string from storage."""
    if not text:
        return {}
    if isinstance(text, (dict, list)):
        return text  # Already parsed (Postgres JSONB)
    return json.loads(text)


def execute(sql: str, params: tuple = (), fetch: str = "none") -> Any:
    """Execute a SQL statement.

    Args:
        sql: SQL statement with %s placeholders (adapted to ? for SQLite)
        params: Parameters tuple
        fetch: "none", "one", "all", or "rowcount"

    Returns:
        None for "none", dict for "one", list[dict] for "all",
        int for "rowcount"
    """
    init_db()
    adapted_sql = sql if _is_postgres() else sql.replace("%s", "?")

    with get_connection() as conn:
        cursor = conn.cursor()
        cursor.execute(adapted_sql, params)

        if fetch == "one":
            row = cursor.fetchone()
            if row is None:
                return None
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return dict(zip(columns, row))
            return dict(row)
        if fetch == "all":
            rows = cursor.fetchall()
            if _is_postgres():
                columns = [desc[0] for desc in cursor.description]
                return [dict(zip(columns, row)) for row in rows]
            return [dict(row) for row in rows]

        conn.commit()
        if fetch == "rowcount":
            return cursor.rowcount
        return None


def init_db() -> None:
    """Create tables if they don't exist."""
    global _initialized
    if _initialized:
        return

    ddl = _POSTGRES_DDL if _is_postgres() else _SQLITE_DDL
    with get_connection() as conn:
        cursor = conn.cursor()
        if _is_postgres():
            cursor.execute(ddl)
        else:
            cursor.executescript(ddl)
        conn.commit()

    _initialized = True
    backend = "PostgreSQL" if _is_postgres() else f"SQLite ({SQLITE_PATH})"
    logger.info(f"Runs database initialized: {backend}")


_POSTGRES_DDL = """
CREATE TABLE IF NOT EXISTS analysis_runs (
    id VARCHAR(100) PRIMARY KEY,
    subject_id VARCHAR(100) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    format_type VARCHAR(10) NOT NULL,
    started_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP,
    input_snapshot JSONB NOT NULL,
    overall_score INTEGER,
    confidence_score INTEGER,
    breakdowns JSONB DEFAULT '{}',
    details JSONB DEFAULT '{}',
    error_message TEXT,
    failure_kind VARCHAR(20),
    remote_job_id VARCHAR(100)
);

CREATE INDEX IF NOT EXISTS idx_analysis_runs_subject
    ON analysis_runs(subject_id, started_at DESC);
"""

_SQLITE_DDL = """
CREATE TABLE IF NOT EXISTS analysis_runs (
    id TEXT PRIMARY KEY,
    subject_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    format_type TEXT NOT NULL,
    started_at TEXT NOT NULL,
    completed_at TEXT,
    input_snapshot TEXT NOT NULL,
    overall_score INTEGER,
    confidence_score INTEGER,
    breakdowns TEXT DEFAULT '{}',
    details TEXT DEFAULT '{}',
    error_message TEXT,
    failure_kind TEXT,
    remote_job_id TEXT
);

CREATE INDEX IF NOT EXISTS idx_analysis_runs_subject
    ON analysis_runs(subject_id, started_at DESC);
"""
