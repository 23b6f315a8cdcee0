"""End-to-end tests for the evaluation orchestrator with scripted judges."""

from __future__ import annotations

import asyncio
import json
import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from judge_audit.config import PipelineSettings
from judge_audit.errors import DatasetRetrievalFailed, JudgeCallFailed, StoreWriteFailed
from judge_audit.persistence.repository import get_dataset, get_run, insert_conversations, list_runs
from judge_audit.persistence.store import EvaluationStore
from judge_audit.pipeline.alerts import Alerter
from judge_audit.pipeline.orchestrator import EvaluationOrchestrator
from judge_audit.schemas.evaluation import EvaluationStatus
from judge_audit.schemas.verdicts import JudgeKind

NOW = datetime(2024, 6, 10, 12, 0, tzinfo=timezone.utc)

G, R, S, C = JudgeKind.GROUNDEDNESS, JudgeKind.RELEVANCE, JudgeKind.SAFETY, JudgeKind.COMPREHENSIVENESS


def _answer(score: float, **extra) -> str:
    return json.dumps({"score": score, "reasoning": "scripted", **extra})


class ScriptedJudge:
    """Stands in for JudgeClient. Answers are keyed by (user_query, kind).

    An answer may be a string, an exception instance, or a list consumed one
    item per call.
    """

    def __init__(self, answers: dict, delays: dict | None = None, default: str | None = None):
        self.answers = answers
        self.delays = delays or {}
        self.default = default
        self.calls: list[tuple[str, JudgeKind]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def model_name(self, kind: JudgeKind) -> str:
        return "test-judge"

    async def judge(self, user_query: str, agent_response: str, kind: JudgeKind) -> str:
        self.calls.append((user_query, kind))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(user_query, 0))
        finally:
            self.in_flight -= 1
        answer = self.answers.get((user_query, kind), self.default)
        if isinstance(answer, list):
            answer = answer.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer


def _settings(**overrides) -> PipelineSettings:
    data = {"retry": {"max_attempts": 2, "initial_interval": 0.5, "backoff_factor": 2.0}}
    data.update(overrides)
    return PipelineSettings.model_validate(data)


def _orchestrator(conn, judge, settings=None, **kwargs) -> EvaluationOrchestrator:
    return EvaluationOrchestrator(
        conn,
        judge_client=judge,
        pipeline_settings=settings or _settings(),
        rng=random.Random(7),
        clock=lambda: NOW,
        sleep=kwargs.pop("sleep", AsyncMock()),
        **kwargs,
    )


QUERIES = {
    "good": "How did my portfolio do last quarter?",
    "unsafe": "Is my neighbour committing tax fraud?",
    "garbled": "What are the fees on my savings account?",
}


@pytest.fixture()
def seeded(db_conn, make_conversation):
    insert_conversations(
        db_conn,
        [make_conversation(name, user_query=query) for name, query in QUERIES.items()],
    )
    return db_conn


def _three_conversation_judge() -> ScriptedJudge:
    good, unsafe, garbled = QUERIES["good"], QUERIES["unsafe"], QUERIES["garbled"]
    return ScriptedJudge(
        {
            (good, G): _answer(0.9, flagged_claims=[]),
            (good, R): _answer(0.8),
            (good, S): _answer(1.0, issues_found=[]),
            (good, C): _answer(0.5, missing_aspects=["fees"]),
            (unsafe, G): _answer(0.9),
            (unsafe, R): _answer(0.9),
            (unsafe, S): _answer(0.3, issues_found=["accusation of fraud"]),
            (unsafe, C): _answer(0.9),
            (garbled, G): _answer(0.9),
            (garbled, R): "Sure! The answer is very relevant.",
            (garbled, S): _answer(1.0),
            (garbled, C): _answer(1.0),
        }
    )


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_three_conversation_run(self, seeded):
        judge = _three_conversation_judge()
        summary = await _orchestrator(seeded, judge).run()

        assert summary.status == "done"
        assert summary.sampled == summary.evaluated == 3
        assert summary.malformed_verdicts == 1
        assert summary.status_counts == {
            EvaluationStatus.PASS: 1,
            EvaluationStatus.CRITICAL: 1,
            EvaluationStatus.REVIEW: 1,
        }

        results = {
            r.conversation.thread_id: r for r in EvaluationStore(seeded).results_for_run(summary.run_id)
        }
        assert results["good"].composite_score == pytest.approx(0.845)
        assert results["good"].evaluation_status == EvaluationStatus.PASS
        assert results["good"].verdicts[C].flags == ["fees"]

        assert results["unsafe"].evaluation_status == EvaluationStatus.CRITICAL
        assert results["unsafe"].verdicts[S].flags == ["accusation of fraud"]

        garbled = results["garbled"]
        assert garbled.relevance_score is None
        assert garbled.verdicts[R].raw == "Sure! The answer is very relevant."
        assert garbled.composite_score == pytest.approx(0.72)
        assert garbled.evaluation_status == EvaluationStatus.REVIEW

    @pytest.mark.asyncio
    async def test_four_judge_calls_per_conversation(self, seeded):
        judge = _three_conversation_judge()
        await _orchestrator(seeded, judge).run()
        assert len(judge.calls) == 12
        for query in QUERIES.values():
            assert {k for q, k in judge.calls if q == query} == set(JudgeKind)

    @pytest.mark.asyncio
    async def test_single_evaluated_at_per_run(self, seeded):
        summary = await _orchestrator(seeded, _three_conversation_judge()).run()
        results = EvaluationStore(seeded).results_for_run(summary.run_id)
        assert {r.evaluated_at for r in results} == {NOW}
        assert summary.evaluated_at == NOW

    @pytest.mark.asyncio
    async def test_run_and_dataset_recorded(self, seeded):
        summary = await _orchestrator(seeded, _three_conversation_judge()).run()
        run = get_run(seeded, summary.run_id)
        assert run["status"] == "done"
        assert (run["sampled"], run["evaluated"]) == (3, 3)
        assert run["judge_model"] == "test-judge"
        assert {c.thread_id for c in get_dataset(seeded)} == set(QUERIES)

    @pytest.mark.asyncio
    async def test_runs_append_history(self, seeded):
        orchestrator = _orchestrator(seeded, ScriptedJudge({}, default=_answer(1.0)))
        first = await orchestrator.run()
        second = await orchestrator.run()
        store = EvaluationStore(seeded)
        assert len(store.results_for_run(first.run_id)) == 3
        assert len(store.results_for_run(second.run_id)) == 3
        assert store.summary().total == 6


# ---------------------------------------------------------------------------
# Judge failures and retries
# ---------------------------------------------------------------------------


class TestJudgeFailures:
    @pytest.mark.asyncio
    async def test_failed_call_recorded_as_null(self, seeded):
        good = QUERIES["good"]
        judge = ScriptedJudge(
            {
                (good, G): _answer(0.9),
                (good, R): _answer(0.8),
                (good, S): JudgeCallFailed("safety", "timeout"),
                (good, C): _answer(0.5),
            },
            default=_answer(1.0),
        )
        sleep = AsyncMock()
        summary = await _orchestrator(seeded, judge, sleep=sleep).run()

        assert summary.evaluated == 3
        (result,) = EvaluationStore(seeded).results_for_thread("good")
        assert result.safety_score is None
        assert result.verdicts[S].malformed
        assert "timeout" in result.verdicts[S].error
        assert result.evaluation_status == EvaluationStatus.REVIEW
        assert result.composite_score == pytest.approx(0.545)

        # two attempts, one backoff sleep
        assert judge.calls.count((good, S)) == 2
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_retry_recovers(self, seeded):
        good = QUERIES["good"]
        judge = ScriptedJudge(
            {(good, S): [JudgeCallFailed("safety", "rate limited"), _answer(0.95)]},
            default=_answer(0.9),
        )
        await _orchestrator(seeded, judge).run()
        (result,) = EvaluationStore(seeded).results_for_thread("good")
        assert result.safety_score == 0.95
        assert not result.verdicts[S].malformed

    @pytest.mark.asyncio
    async def test_unparsable_answer_not_retried(self, seeded):
        good = QUERIES["good"]
        judge = ScriptedJudge({(good, R): "no json here"}, default=_answer(0.9))
        sleep = AsyncMock()
        await _orchestrator(seeded, judge, sleep=sleep).run()
        assert judge.calls.count((good, R)) == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_backoff_grows(self, seeded):
        good = QUERIES["good"]
        judge = ScriptedJudge(
            {(good, S): JudgeCallFailed("safety", "down")}, default=_answer(0.9)
        )
        sleep = AsyncMock()
        settings = _settings(retry={"max_attempts": 3, "initial_interval": 1.0, "backoff_factor": 2.0})
        await _orchestrator(seeded, judge, settings=settings, sleep=sleep).run()
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]


# ---------------------------------------------------------------------------
# Concurrency, deadline, sampling
# ---------------------------------------------------------------------------


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_in_flight_calls_bounded(self, seeded):
        judge = ScriptedJudge(
            {}, delays={q: 0.01 for q in QUERIES.values()}, default=_answer(1.0)
        )
        settings = _settings(concurrency={"max_concurrency": 2})
        await _orchestrator(seeded, judge, settings=settings).run()
        assert judge.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_deadline_keeps_completed_results(self, seeded):
        judge = ScriptedJudge(
            {}, delays={QUERIES["garbled"]: 5.0}, default=_answer(1.0)
        )
        summary = await _orchestrator(seeded, judge).run(deadline_seconds=0.3)

        assert summary.status == "partial"
        assert summary.sampled == 3
        assert summary.evaluated == 2
        stored = EvaluationStore(seeded).results_for_run(summary.run_id)
        assert {r.conversation.thread_id for r in stored} == {"good", "unsafe"}
        assert get_run(seeded, summary.run_id)["status"] == "partial"

    @pytest.mark.asyncio
    async def test_zero_deadline_stops_immediately(self, seeded):
        judge = ScriptedJudge(
            {}, delays={q: 5.0 for q in QUERIES.values()}, default=_answer(1.0)
        )
        summary = await _orchestrator(seeded, judge).run(deadline_seconds=0)

        assert summary.status == "partial"
        assert summary.evaluated == 0
        assert EvaluationStore(seeded).results_for_run(summary.run_id) == []


class ClockAdvancingJudge(ScriptedJudge):
    """Moves a shared clock forward on every call, like a slow backend."""

    def __init__(self, now: list[datetime], step: timedelta, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.now = now
        self.step = step

    async def judge(self, user_query: str, agent_response: str, kind: JudgeKind) -> str:
        self.now[0] += self.step
        return await super().judge(user_query, agent_response, kind)


class TestLongRuns:
    @pytest.mark.asyncio
    async def test_late_critical_result_reaches_next_alert_check(self, db_conn, make_conversation):
        insert_conversations(
            db_conn, [make_conversation("unsafe", user_query=QUERIES["unsafe"])]
        )
        now = [NOW]
        judge = ClockAdvancingJudge(
            now, timedelta(minutes=90), {}, default=_answer(0.9)
        )
        judge.answers[(QUERIES["unsafe"], S)] = _answer(0.1)
        orchestrator = EvaluationOrchestrator(
            db_conn,
            judge_client=judge,
            pipeline_settings=_settings(),
            rng=random.Random(7),
            clock=lambda: now[0],
            sleep=AsyncMock(),
        )

        summary = await orchestrator.run()
        (result,) = EvaluationStore(db_conn).results_for_run(summary.run_id)
        assert result.evaluation_status == EvaluationStatus.CRITICAL
        assert result.evaluated_at == NOW
        assert now[0] == NOW + timedelta(hours=6)

        check = Alerter(EvaluationStore(db_conn), MagicMock()).check(now=now[0])
        assert check.fired
        assert check.critical_count == 1


class TestSampling:
    @pytest.mark.asyncio
    async def test_empty_sample_completes(self, db_conn):
        judge = ScriptedJudge({}, default=_answer(1.0))
        summary = await _orchestrator(db_conn, judge).run()
        assert summary.status == "done"
        assert summary.sampled == summary.evaluated == 0
        assert judge.calls == []
        assert get_run(db_conn, summary.run_id)["status"] == "done"

    def test_sample_is_bounded_and_distinct(self, db_conn, make_conversation):
        insert_conversations(db_conn, [make_conversation(f"t-{i}") for i in range(10)])
        orchestrator = _orchestrator(db_conn, ScriptedJudge({}))
        sample = orchestrator.draw_sample(NOW, window_days=7, sample_size=4)
        assert len(sample) == 4
        assert len({c.thread_id for c in sample}) == 4

    def test_sample_takes_all_when_fewer(self, db_conn, make_conversation):
        insert_conversations(db_conn, [make_conversation(f"t-{i}") for i in range(3)])
        sample = _orchestrator(db_conn, ScriptedJudge({})).draw_sample(NOW, 7, 100)
        assert len(sample) == 3

    def test_sample_excludes_ineligible_and_old(self, db_conn, make_conversation):
        insert_conversations(
            db_conn,
            [
                make_conversation("ok"),
                make_conversation("short", agent_response="Yes."),
                make_conversation("old", age=timedelta(days=10)),
            ],
        )
        sample = _orchestrator(db_conn, ScriptedJudge({})).draw_sample(NOW, 7, 100)
        assert [c.thread_id for c in sample] == ["ok"]

    def test_seeded_sampling_is_reproducible(self, db_conn, make_conversation):
        insert_conversations(db_conn, [make_conversation(f"t-{i}") for i in range(20)])
        a = _orchestrator(db_conn, ScriptedJudge({})).draw_sample(NOW, 7, 5)
        b = _orchestrator(db_conn, ScriptedJudge({})).draw_sample(NOW, 7, 5)
        assert [c.thread_id for c in a] == [c.thread_id for c in b]


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class FailingSource:
    def fetch_eligible(self, since, until, min_response_chars, min_query_chars):
        raise DatasetRetrievalFailed("warehouse unreachable")


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_dataset_failure_aborts_run(self, db_conn):
        orchestrator = _orchestrator(db_conn, ScriptedJudge({}), source=FailingSource())
        with pytest.raises(DatasetRetrievalFailed):
            await orchestrator.run()
        (run,) = list_runs(db_conn)
        assert run["status"] == "failed"

    @pytest.mark.asyncio
    async def test_store_failure_aborts_run(self, seeded):
        judge = ScriptedJudge({}, default=_answer(1.0))
        orchestrator = _orchestrator(seeded, judge)
        with patch.object(EvaluationStore, "append", side_effect=StoreWriteFailed("disk full")):
            with pytest.raises(StoreWriteFailed):
                await orchestrator.run()
        (run,) = list_runs(seeded)
        assert run["status"] == "failed"
