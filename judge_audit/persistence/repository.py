"""Repository functions for run bookkeeping and the evaluation dataset.

Each function takes a connection and performs a single operation.
Connections are opened/closed by callers (orchestrator, scheduler, audit.py).
Evaluation results themselves go through ``EvaluationStore``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

import structlog

from judge_audit.persistence.db import execute, from_db_timestamp, to_db_timestamp, transaction
from judge_audit.schemas.conversation import Conversation

logger = structlog.get_logger(__name__)

_CONVERSATION_COLUMNS = (
    "thread_id, user_name, agent_name, user_query, agent_response, tool_used, event_timestamp"
)


def _now() -> str:
    """Return current UTC time in ISO 8601 format."""
    return to_db_timestamp(datetime.now(timezone.utc))


def _conversation_params(conversation: Conversation) -> tuple:
    return (
        conversation.thread_id,
        conversation.user_name,
        conversation.agent_name,
        conversation.user_query,
        conversation.agent_response,
        conversation.tool_used,
        to_db_timestamp(conversation.event_timestamp),
    )


def row_to_conversation(row) -> Conversation:  # noqa: ANN001
    return Conversation(
        thread_id=row["thread_id"],
        user_name=row["user_name"],
        agent_name=row["agent_name"],
        user_query=row["user_query"],
        agent_response=row["agent_response"],
        tool_used=row["tool_used"],
        event_timestamp=from_db_timestamp(row["event_timestamp"]),
    )


# ---------------------------------------------------------------------------
# Conversations (source table, read-only to the pipeline)
# ---------------------------------------------------------------------------


def insert_conversations(conn, conversations: Iterable[Conversation]) -> int:
    """Load conversation records into the source table. Returns the count."""
    count = 0
    for conversation in conversations:
        execute(
            conn,
            f"INSERT INTO agent_conversations ({_CONVERSATION_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?)",
            _conversation_params(conversation),
        )
        count += 1
    conn.commit()
    logger.info("conversations_loaded", count=count)
    return count


def select_eligible_conversations(
    conn,
    since: datetime,
    until: datetime,
    min_response_chars: int,
    min_query_chars: int,
) -> list[Conversation]:
    """Conversations inside [since, until] whose turns pass the length filters."""
    rows = execute(
        conn,
        f"""SELECT {_CONVERSATION_COLUMNS}
           FROM agent_conversations
           WHERE event_timestamp >= ?
             AND event_timestamp <= ?
             AND agent_response IS NOT NULL
             AND user_query IS NOT NULL
             AND LENGTH(agent_response) > ?
             AND LENGTH(user_query) > ?
           ORDER BY event_timestamp""",
        (
            to_db_timestamp(since),
            to_db_timestamp(until),
            min_response_chars,
            min_query_chars,
        ),
    ).fetchall()
    return [row_to_conversation(row) for row in rows]


# ---------------------------------------------------------------------------
# Evaluation dataset (replaced on every run)
# ---------------------------------------------------------------------------


def replace_dataset(conn, run_id: str, conversations: list[Conversation]) -> None:
    """Swap the previous dataset for this run's sample in one transaction."""
    with transaction(conn):
        execute(conn, "DELETE FROM evaluation_dataset")
        for conversation in conversations:
            execute(
                conn,
                f"""INSERT INTO evaluation_dataset (run_id, {_CONVERSATION_COLUMNS})
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (run_id, *_conversation_params(conversation)),
            )
    logger.info("dataset_replaced", run_id=run_id, size=len(conversations))


def get_dataset(conn) -> list[Conversation]:
    rows = execute(
        conn,
        f"SELECT {_CONVERSATION_COLUMNS} FROM evaluation_dataset ORDER BY event_timestamp",
    ).fetchall()
    return [row_to_conversation(row) for row in rows]


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def create_run(
    conn,
    run_id: str,
    started_at: datetime,
    window_days: int,
    sample_size: int,
    judge_model: str,
) -> str:
    """Create a new evaluation run record. Returns run_id."""
    execute(
        conn,
        """INSERT INTO evaluation_runs (id, window_days, sample_size, judge_model, started_at)
           VALUES (?, ?, ?, ?, ?)""",
        (run_id, window_days, sample_size, judge_model, to_db_timestamp(started_at)),
    )
    conn.commit()
    logger.info("run_created", run_id=run_id, window_days=window_days, sample_size=sample_size)
    return run_id


def finish_run(
    conn,
    run_id: str,
    status: str = "done",
    sampled: int = 0,
    evaluated: int = 0,
) -> None:
    """Mark a run as finished."""
    execute(
        conn,
        """UPDATE evaluation_runs SET status = ?, sampled = ?, evaluated = ?, finished_at = ?
           WHERE id = ?""",
        (status, sampled, evaluated, _now(), run_id),
    )
    conn.commit()
    logger.info("run_finished", run_id=run_id, status=status, evaluated=evaluated)


def get_run(conn, run_id: str) -> dict | None:
    row = execute(conn, "SELECT * FROM evaluation_runs WHERE id = ?", (run_id,)).fetchone()
    return dict(row) if row else None


def list_runs(conn, limit: int = 20) -> list[dict]:
    rows = execute(
        conn,
        "SELECT * FROM evaluation_runs ORDER BY started_at DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [dict(row) for row in rows]
