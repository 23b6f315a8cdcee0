"""Persistence layer for conversations, datasets and evaluation history.

Supports two backends:
- **SQLite** (default): Zero dependencies, used for CLI and development.
- **PostgreSQL** (production): Used when the database URL starts with "postgresql://".

The connection interface is unified: both backends return a connection
that supports execute(), fetchone(), fetchall(), commit(), close(). SQL in
this package is written with "?" placeholders; ``execute`` rewrites them for
psycopg.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

DB_PATH = Path("data/evaluations.db")

# ---------------------------------------------------------------------------
# Schema (compatible with both SQLite and PostgreSQL)
# ---------------------------------------------------------------------------

_VERDICT_COLUMNS = "\n".join(
    f"""    {kind}_score REAL,
    {kind}_reasoning TEXT,
    {kind}_flags TEXT,
    {kind}_raw TEXT,
    {kind}_error TEXT,"""
    for kind in ("groundedness", "relevance", "safety", "comprehensiveness")
)

_TABLES_SQL = f"""\
CREATE TABLE IF NOT EXISTS agent_conversations (
    thread_id       TEXT NOT NULL,
    user_name       TEXT,
    agent_name      TEXT,
    user_query      TEXT,
    agent_response  TEXT,
    tool_used       TEXT,
    event_timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evaluation_runs (
    id              TEXT PRIMARY KEY,
    status          TEXT DEFAULT 'running',
    window_days     INTEGER,
    sample_size     INTEGER,
    judge_model     TEXT,
    sampled         INTEGER DEFAULT 0,
    evaluated       INTEGER DEFAULT 0,
    started_at      TEXT NOT NULL,
    finished_at     TEXT
);

CREATE TABLE IF NOT EXISTS evaluation_dataset (
    run_id          TEXT NOT NULL,
    thread_id       TEXT NOT NULL,
    user_name       TEXT,
    agent_name      TEXT,
    user_query      TEXT,
    agent_response  TEXT,
    tool_used       TEXT,
    event_timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS evaluation_results (
    id              {{pk}},
    run_id          TEXT NOT NULL,
    thread_id       TEXT NOT NULL,
    user_name       TEXT,
    agent_name      TEXT,
    user_query      TEXT,
    agent_response  TEXT,
    tool_used       TEXT,
    event_timestamp TEXT NOT NULL,
    evaluated_at    TEXT NOT NULL,
    judge_model     TEXT,
{_VERDICT_COLUMNS}
    composite_score REAL NOT NULL,
    evaluation_status TEXT NOT NULL,
    persisted_at    TEXT
);

CREATE INDEX IF NOT EXISTS idx_results_evaluated_at ON evaluation_results (evaluated_at);
CREATE INDEX IF NOT EXISTS idx_results_status ON evaluation_results (evaluation_status);
CREATE INDEX IF NOT EXISTS idx_results_agent ON evaluation_results (agent_name);
CREATE INDEX IF NOT EXISTS idx_conversations_ts ON agent_conversations (event_timestamp);
"""

SCHEMA_SQL = _TABLES_SQL.replace("{pk}", "INTEGER PRIMARY KEY AUTOINCREMENT")

# PostgreSQL version uses SERIAL instead of AUTOINCREMENT
PG_SCHEMA_SQL = _TABLES_SQL.replace("{pk}", "SERIAL PRIMARY KEY")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def to_db_timestamp(value: datetime) -> str:
    """UTC ISO 8601 with fixed precision so stored values sort lexically."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Table setup
# ---------------------------------------------------------------------------

_PERSISTED_AT_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_results_persisted_at ON evaluation_results (persisted_at)"
)


def _ensure_sqlite_tables(conn: sqlite3.Connection) -> None:
    """Create tables if they don't exist. Runs migrations for schema changes."""
    conn.executescript(SCHEMA_SQL)
    # Migration: rows written before persisted_at existed take their run stamp
    columns = {row[1] for row in conn.execute("PRAGMA table_info(evaluation_results)")}
    if "persisted_at" not in columns:
        conn.execute("ALTER TABLE evaluation_results ADD COLUMN persisted_at TEXT")
        conn.execute("UPDATE evaluation_results SET persisted_at = evaluated_at")
    conn.execute(_PERSISTED_AT_INDEX)
    conn.commit()


def _ensure_pg_tables(conn) -> None:  # noqa: ANN001
    with conn.cursor() as cur:
        cur.execute(PG_SCHEMA_SQL)
        cur.execute("ALTER TABLE evaluation_results ADD COLUMN IF NOT EXISTS persisted_at TEXT")
        cur.execute(
            "UPDATE evaluation_results SET persisted_at = evaluated_at WHERE persisted_at IS NULL"
        )
        cur.execute(_PERSISTED_AT_INDEX)


# ---------------------------------------------------------------------------
# Connection factory
# ---------------------------------------------------------------------------


def _is_pg_url(path_str: str) -> bool:
    return path_str.startswith("postgresql://") or path_str.startswith("postgres://")


def get_connection(db_path: str | Path | None = None):
    """Get a database connection.

    Routing logic:
    - If db_path starts with "postgresql://", returns a psycopg connection.
    - Otherwise, returns a SQLite connection (default).
    """
    path_str = str(db_path) if db_path else ""

    if _is_pg_url(path_str):
        return _get_pg_connection(path_str)

    return _get_sqlite_connection(db_path)


def _get_sqlite_connection(db_path: str | Path | None = None) -> sqlite3.Connection:
    """Get or create SQLite connection. Auto-creates tables on first use."""
    path = Path(db_path) if db_path else DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    _ensure_sqlite_tables(conn)
    return conn


def _get_pg_connection(db_url: str):
    """Get a PostgreSQL connection via psycopg with dict rows."""
    import psycopg
    from psycopg.rows import dict_row

    conn = psycopg.connect(db_url, autocommit=True, row_factory=dict_row)
    _ensure_pg_tables(conn)
    logger.info("pg_connection_established", db_url=db_url[:30] + "...")
    return conn


def is_sqlite(conn: Any) -> bool:
    return isinstance(conn, sqlite3.Connection)


def execute(conn: Any, sql: str, params: tuple | list = ()):
    """Run one statement with "?" placeholders on either backend."""
    if not is_sqlite(conn):
        sql = sql.replace("?", "%s")
    return conn.execute(sql, params)


@contextmanager
def transaction(conn: Any) -> Iterator[None]:
    """Commit the enclosed statements together, or roll all of them back.

    psycopg connections run in autocommit mode, so they need an explicit
    transaction block; sqlite3's connection context manager does the same job.
    """
    if is_sqlite(conn):
        with conn:
            yield
    else:
        with conn.transaction():
            yield
