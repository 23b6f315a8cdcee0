"""Shared test fixtures."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure tests don't accidentally call real APIs
os.environ.setdefault("OPENROUTER_API_KEY", "test-key")
os.environ.setdefault("GROQ_API_KEY", "test-key")

from judge_audit.judges.parser import malformed_verdict  # noqa: E402
from judge_audit.persistence.db import get_connection  # noqa: E402
from judge_audit.schemas.conversation import Conversation  # noqa: E402
from judge_audit.schemas.evaluation import EvaluationResult  # noqa: E402
from judge_audit.schemas.verdicts import JudgeKind, JudgeVerdict  # noqa: E402
from judge_audit.scoring import score_verdicts  # noqa: E402

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)

LONG_RESPONSE = (
    "Your portfolio returned 4.2% last quarter according to the account statement, "
    "driven mostly by the bond allocation."
)


@pytest.fixture()
def db_conn(tmp_path: Path):
    """Fresh SQLite database with the schema applied."""
    conn = get_connection(tmp_path / "test.db")
    yield conn
    conn.close()


@pytest.fixture()
def make_conversation():
    def _make(
        thread_id: str = "t-1",
        user_query: str | None = "How did my portfolio do last quarter?",
        agent_response: str | None = LONG_RESPONSE,
        agent_name: str | None = "portfolio-agent",
        age: timedelta = timedelta(days=1),
        **kwargs,
    ) -> Conversation:
        return Conversation(
            thread_id=thread_id,
            user_name=kwargs.pop("user_name", "alice"),
            agent_name=agent_name,
            user_query=user_query,
            agent_response=agent_response,
            tool_used=kwargs.pop("tool_used", None),
            event_timestamp=kwargs.pop("event_timestamp", NOW - age),
        )

    return _make


@pytest.fixture()
def make_result(make_conversation):
    """Build an EvaluationResult from four scores (None = malformed verdict)."""

    def _make(
        thread_id: str = "t-1",
        scores: tuple[float | None, float | None, float | None, float | None] = (0.9, 0.8, 1.0, 0.5),
        evaluated_at: datetime = NOW,
        run_id: str = "run-1",
        agent_name: str | None = "portfolio-agent",
        flags: dict[JudgeKind, list[str]] | None = None,
        **conversation_kwargs,
    ) -> EvaluationResult:
        flags = flags or {}
        verdicts = {}
        for kind, score in zip(JudgeKind, scores):
            if score is None:
                verdicts[kind] = malformed_verdict(kind, "not valid JSON", raw="oops")
            else:
                verdicts[kind] = JudgeVerdict(
                    kind=kind,
                    score=score,
                    reasoning=f"{kind.value} looks fine",
                    flags=flags.get(kind, []),
                    raw=f'{{"score": {score}}}',
                )
        composite, status = score_verdicts(verdicts)
        return EvaluationResult(
            run_id=run_id,
            conversation=make_conversation(
                thread_id=thread_id, agent_name=agent_name, **conversation_kwargs
            ),
            verdicts=verdicts,
            composite_score=composite,
            evaluation_status=status,
            evaluated_at=evaluated_at,
            judge_model="test-judge",
        )

    return _make
