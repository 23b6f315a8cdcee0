"""Evaluation Store: append-only history of evaluation results.

The store exposes ``append`` and read queries only. There is deliberately no
update or delete: a correction is a new row from a new run, and the audit
trail cannot be edited by the pipeline.

Malformed verdicts are stored as NULL scores, so analysts can tell a judge
failure apart from a genuine 0.0.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Literal

import structlog

from judge_audit.errors import StoreWriteFailed
from judge_audit.persistence.db import execute, from_db_timestamp, to_db_timestamp, transaction
from judge_audit.persistence.repository import row_to_conversation
from judge_audit.schemas.evaluation import (
    AgentBreakdown,
    EvaluationResult,
    EvaluationStatus,
    EvaluationSummary,
    TrendPoint,
)
from judge_audit.schemas.verdicts import JudgeKind, JudgeVerdict

logger = structlog.get_logger(__name__)

_KINDS = tuple(JudgeKind)

_BASE_COLUMNS = (
    "run_id",
    "thread_id",
    "user_name",
    "agent_name",
    "user_query",
    "agent_response",
    "tool_used",
    "event_timestamp",
    "evaluated_at",
    "judge_model",
)
_VERDICT_FIELDS = ("score", "reasoning", "flags", "raw", "error")
_RESULT_COLUMNS = (
    *_BASE_COLUMNS,
    *(f"{kind}_{field}" for kind in _KINDS for field in _VERDICT_FIELDS),
    "composite_score",
    "evaluation_status",
)

# persisted_at is a write stamp for alerting; it is not part of a result
_INSERT_COLUMNS = (*_RESULT_COLUMNS, "persisted_at")
_INSERT_SQL = (
    f"INSERT INTO evaluation_results ({', '.join(_INSERT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _INSERT_COLUMNS)})"
)
_SELECT_SQL = f"SELECT {', '.join(_RESULT_COLUMNS)} FROM evaluation_results"


def _round(value: float | None, ndigits: int = 3) -> float | None:
    return None if value is None else round(float(value), ndigits)


def _pct(part: int, total: int) -> float | None:
    if not total:
        return None
    return round(part * 100.0 / total, 1)


def _result_params(result: EvaluationResult) -> tuple:
    conversation = result.conversation
    params: list = [
        result.run_id,
        conversation.thread_id,
        conversation.user_name,
        conversation.agent_name,
        conversation.user_query,
        conversation.agent_response,
        conversation.tool_used,
        to_db_timestamp(conversation.event_timestamp),
        to_db_timestamp(result.evaluated_at),
        result.judge_model,
    ]
    for kind in _KINDS:
        verdict = result.verdicts[kind]
        params.extend(
            [
                verdict.score,
                verdict.reasoning,
                json.dumps(verdict.flags) if kind.flag_field else None,
                verdict.raw,
                verdict.error,
            ]
        )
    params.extend([result.composite_score, result.evaluation_status.value])
    return tuple(params)


def _row_to_verdict(row, kind: JudgeKind) -> JudgeVerdict:  # noqa: ANN001
    score = row[f"{kind}_score"]
    if score is None:
        return JudgeVerdict(
            kind=kind,
            malformed=True,
            error=row[f"{kind}_error"],
            raw=row[f"{kind}_raw"],
        )
    flags_text = row[f"{kind}_flags"]
    return JudgeVerdict(
        kind=kind,
        score=score,
        reasoning=row[f"{kind}_reasoning"],
        flags=json.loads(flags_text) if flags_text else [],
        raw=row[f"{kind}_raw"],
    )


def row_to_result(row) -> EvaluationResult:  # noqa: ANN001
    return EvaluationResult(
        run_id=row["run_id"],
        conversation=row_to_conversation(row),
        verdicts={kind: _row_to_verdict(row, kind) for kind in _KINDS},
        composite_score=row["composite_score"],
        evaluation_status=EvaluationStatus(row["evaluation_status"]),
        evaluated_at=from_db_timestamp(row["evaluated_at"]),
        judge_model=row["judge_model"],
    )


def _window_clause(
    since: datetime | None,
    until: datetime | None,
    column: str = "evaluated_at",
) -> tuple[list[str], list]:
    clauses: list[str] = []
    params: list = []
    if since is not None:
        clauses.append(f"{column} >= ?")
        params.append(to_db_timestamp(since))
    if until is not None:
        clauses.append(f"{column} <= ?")
        params.append(to_db_timestamp(until))
    return clauses, params


def _where(clauses: list[str]) -> str:
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


class EvaluationStore:
    """Append/query access to the evaluation_results table.

    Every appended row is stamped with ``persisted_at`` from ``clock``. Alert
    windows use that stamp, so rows written late in a long run are still
    seen by the next check. Reports and trends use ``evaluated_at``.
    """

    def __init__(
        self,
        conn,  # noqa: ANN001
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._conn = conn
        self._clock = clock

    # -----------------------------------------------------------------------
    # Append
    # -----------------------------------------------------------------------

    def append(self, results: Iterable[EvaluationResult]) -> int:
        """Append results to the history. Returns the number of rows written."""
        count = 0
        persisted_at = to_db_timestamp(self._clock())
        try:
            with transaction(self._conn):
                for result in results:
                    execute(self._conn, _INSERT_SQL, (*_result_params(result), persisted_at))
                    count += 1
        except Exception as exc:
            raise StoreWriteFailed(f"failed to append evaluation results: {exc}") from exc
        logger.debug("results_appended", count=count)
        return count

    # -----------------------------------------------------------------------
    # Aggregates
    # -----------------------------------------------------------------------

    def summary(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
        status: EvaluationStatus | None = None,
    ) -> EvaluationSummary:
        """Totals, average scores (nulls ignored), status counts and pass rate."""
        clauses, params = _window_clause(since, until)
        if status is not None:
            clauses.append("evaluation_status = ?")
            params.append(status.value)

        malformed_cols = ", ".join(
            f"SUM(CASE WHEN {kind}_score IS NULL THEN 1 ELSE 0 END) AS {kind}_malformed"
            for kind in _KINDS
        )
        row = execute(
            self._conn,
            f"""SELECT
                   COUNT(*) AS total,
                   AVG(groundedness_score) AS avg_groundedness,
                   AVG(relevance_score) AS avg_relevance,
                   AVG(safety_score) AS avg_safety,
                   AVG(comprehensiveness_score) AS avg_comprehensiveness,
                   AVG(composite_score) AS avg_composite,
                   SUM(CASE WHEN evaluation_status = 'PASS' THEN 1 ELSE 0 END) AS passed,
                   SUM(CASE WHEN evaluation_status = 'REVIEW' THEN 1 ELSE 0 END) AS needs_review,
                   SUM(CASE WHEN evaluation_status = 'CRITICAL' THEN 1 ELSE 0 END) AS critical,
                   {malformed_cols}
               FROM evaluation_results{_where(clauses)}""",
            params,
        ).fetchone()

        total = row["total"] or 0
        passed = row["passed"] or 0
        return EvaluationSummary(
            total=total,
            avg_groundedness=_round(row["avg_groundedness"]),
            avg_relevance=_round(row["avg_relevance"]),
            avg_safety=_round(row["avg_safety"]),
            avg_comprehensiveness=_round(row["avg_comprehensiveness"]),
            avg_composite=_round(row["avg_composite"]),
            passed=passed,
            needs_review=row["needs_review"] or 0,
            critical=row["critical"] or 0,
            pass_rate_pct=_pct(passed, total),
            malformed={kind: row[f"{kind}_malformed"] or 0 for kind in _KINDS},
        )

    def agent_breakdown(
        self,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[AgentBreakdown]:
        """Per-agent averages, best composite first."""
        clauses, params = _window_clause(since, until)
        rows = execute(
            self._conn,
            f"""SELECT
                   agent_name,
                   COUNT(*) AS samples,
                   AVG(groundedness_score) AS avg_groundedness,
                   AVG(relevance_score) AS avg_relevance,
                   AVG(safety_score) AS avg_safety,
                   AVG(composite_score) AS avg_composite,
                   SUM(CASE WHEN evaluation_status = 'PASS' THEN 1 ELSE 0 END) AS passed
               FROM evaluation_results{_where(clauses)}
               GROUP BY agent_name
               ORDER BY avg_composite DESC""",
            params,
        ).fetchall()
        return [
            AgentBreakdown(
                agent_name=row["agent_name"],
                samples=row["samples"],
                avg_groundedness=_round(row["avg_groundedness"]),
                avg_relevance=_round(row["avg_relevance"]),
                avg_safety=_round(row["avg_safety"]),
                avg_composite=_round(row["avg_composite"]),
                pass_rate_pct=_pct(row["passed"] or 0, row["samples"]),
            )
            for row in rows
        ]

    def trend(
        self,
        by: Literal["event", "evaluated"] = "event",
        since: datetime | None = None,
    ) -> list[TrendPoint]:
        """Daily buckets, newest first. ``by`` picks the timestamp to bucket on."""
        column = "event_timestamp" if by == "event" else "evaluated_at"
        clauses, params = _window_clause(since, None, column=column)
        rows = execute(
            self._conn,
            f"""SELECT
                   SUBSTR({column}, 1, 10) AS day,
                   COUNT(*) AS samples,
                   AVG(composite_score) AS avg_composite,
                   SUM(CASE WHEN evaluation_status = 'CRITICAL' THEN 1 ELSE 0 END) AS critical_count
               FROM evaluation_results{_where(clauses)}
               GROUP BY SUBSTR({column}, 1, 10)
               ORDER BY day DESC""",
            params,
        ).fetchall()
        return [
            TrendPoint(
                day=row["day"],
                samples=row["samples"],
                avg_composite=_round(row["avg_composite"]),
                critical_count=row["critical_count"] or 0,
            )
            for row in rows
        ]

    # -----------------------------------------------------------------------
    # Drill-down
    # -----------------------------------------------------------------------

    def critical_results(self, since: datetime | None = None) -> list[EvaluationResult]:
        """CRITICAL rows, lowest safety score first, then most recent event."""
        clauses, params = _window_clause(since, None)
        clauses.append("evaluation_status = ?")
        params.append(EvaluationStatus.CRITICAL.value)
        rows = execute(
            self._conn,
            f"""{_SELECT_SQL}{_where(clauses)}
               ORDER BY CASE WHEN safety_score IS NULL THEN 1 ELSE 0 END,
                        safety_score ASC, event_timestamp DESC""",
            params,
        ).fetchall()
        return [row_to_result(row) for row in rows]

    def groundedness_issues(
        self,
        threshold: float = 0.5,
        since: datetime | None = None,
    ) -> list[EvaluationResult]:
        """Rows whose groundedness score is below ``threshold`` (likely hallucinations)."""
        clauses, params = _window_clause(since, None)
        clauses.append("groundedness_score < ?")
        params.append(threshold)
        rows = execute(
            self._conn,
            f"{_SELECT_SQL}{_where(clauses)} ORDER BY groundedness_score ASC",
            params,
        ).fetchall()
        return [row_to_result(row) for row in rows]

    def results_for_thread(self, thread_id: str) -> list[EvaluationResult]:
        rows = execute(
            self._conn,
            f"{_SELECT_SQL} WHERE thread_id = ? ORDER BY evaluated_at DESC",
            (thread_id,),
        ).fetchall()
        return [row_to_result(row) for row in rows]

    def results_for_run(self, run_id: str) -> list[EvaluationResult]:
        rows = execute(
            self._conn,
            f"{_SELECT_SQL} WHERE run_id = ? ORDER BY event_timestamp",
            (run_id,),
        ).fetchall()
        return [row_to_result(row) for row in rows]

    # -----------------------------------------------------------------------
    # Alerting
    # -----------------------------------------------------------------------

    def count_critical_since(self, since: datetime, until: datetime | None = None) -> int:
        """CRITICAL rows persisted within [since, until]."""
        clauses, params = _window_clause(since, until, column="persisted_at")
        clauses.append("evaluation_status = ?")
        params.append(EvaluationStatus.CRITICAL.value)
        row = execute(
            self._conn,
            f"SELECT COUNT(*) AS n FROM evaluation_results{_where(clauses)}",
            params,
        ).fetchone()
        return row["n"] or 0

    def has_critical_since(self, since: datetime, until: datetime | None = None) -> bool:
        return self.count_critical_since(since, until) > 0
