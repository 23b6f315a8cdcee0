"""Evaluation Orchestrator: sample → judge (×4, concurrently) → score → persist.

One run:
1. Select eligible conversations in ``[now - window_days, now]`` and draw a
   uniform random sample without replacement (all of them when fewer).
2. Replace the evaluation dataset with the sample.
3. Evaluate conversations concurrently. Each conversation fans out to the
   four judges and fans back in once all four have answered or failed.
   A semaphore bounds the judge calls in flight across the whole run.
4. Append each result to the store as soon as its conversation completes,
   so a deadline or cancellation keeps everything already evaluated.

Per-judge failures become malformed verdicts. Only dataset retrieval and
store writes abort a run.
"""

from __future__ import annotations

import asyncio
import random
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog

from judge_audit import metrics
from judge_audit.config import PipelineSettings, get_pipeline_settings
from judge_audit.errors import JudgeCallFailed, SampleEmpty, StoreWriteFailed
from judge_audit.judges.client import JudgeClient
from judge_audit.judges.parser import malformed_verdict, parse_verdict
from judge_audit.logging_config import bind_run_context, clear_run_context
from judge_audit.persistence.repository import create_run, finish_run, replace_dataset
from judge_audit.persistence.sources import ConversationSource, SqlConversationSource
from judge_audit.persistence.store import EvaluationStore
from judge_audit.schemas.conversation import Conversation
from judge_audit.schemas.evaluation import EvaluationResult, EvaluationStatus, RunSummary
from judge_audit.schemas.verdicts import JudgeKind, JudgeVerdict
from judge_audit.scoring import score_verdicts

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationOrchestrator:
    """Runs the evaluation pipeline against one database connection.

    Args:
        conn: Connection holding the dataset, runs and results tables.
        source: Where conversations come from. Defaults to the
            agent_conversations table on ``conn``.
        judge_client: Judge backend boundary. Built from config when omitted.
        pipeline_settings: judges.toml settings. Loaded when omitted.
        rng: Random generator used for sampling. Seed it for reproducible runs.
        clock: Returns the current UTC time; the run-start value stamps every row.
        sleep: Awaitable used between retries.
    """

    def __init__(
        self,
        conn,  # noqa: ANN001
        source: ConversationSource | None = None,
        judge_client: JudgeClient | None = None,
        pipeline_settings: PipelineSettings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._conn = conn
        self._settings = pipeline_settings or get_pipeline_settings()
        self._source = source or SqlConversationSource(conn)
        self._client = judge_client or JudgeClient(pipeline_settings=self._settings)
        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self._store = EvaluationStore(conn, clock=clock)

    # -----------------------------------------------------------------------
    # Sampling
    # -----------------------------------------------------------------------

    def draw_sample(self, now: datetime, window_days: int, sample_size: int) -> list[Conversation]:
        """Uniform sample of eligible conversations from the last ``window_days``.

        Raises:
            SampleEmpty: nothing in the window passes the length filters.
            DatasetRetrievalFailed: the source could not be read.
        """
        sampling = self._settings.sampling
        since = now - timedelta(days=window_days)
        eligible = self._source.fetch_eligible(
            since, now, sampling.min_response_chars, sampling.min_query_chars
        )
        if not eligible:
            raise SampleEmpty(f"no eligible conversations since {since.isoformat()}")
        if len(eligible) <= sample_size:
            return list(eligible)
        return self._rng.sample(eligible, sample_size)

    # -----------------------------------------------------------------------
    # Judging
    # -----------------------------------------------------------------------

    def _judge_model(self) -> str:
        models = sorted({self._client.model_name(kind) for kind in JudgeKind})
        return ",".join(models)

    async def _run_judge(
        self,
        conversation: Conversation,
        kind: JudgeKind,
        semaphore: asyncio.Semaphore,
    ) -> JudgeVerdict:
        retry = self._settings.retry
        max_attempts = max(1, retry.max_attempts)
        delay = retry.initial_interval

        for attempt in range(1, max_attempts + 1):
            try:
                async with semaphore:
                    metrics.IN_FLIGHT_JUDGE_CALLS.inc()
                    try:
                        raw = await self._client.judge(
                            conversation.user_query or "",
                            conversation.agent_response or "",
                            kind,
                        )
                    finally:
                        metrics.IN_FLIGHT_JUDGE_CALLS.dec()
            except JudgeCallFailed as exc:
                if attempt >= max_attempts:
                    logger.warning(
                        "judge_call_failed",
                        judge=kind.value,
                        thread_id=conversation.thread_id,
                        attempts=attempt,
                        error=exc.reason,
                    )
                    metrics.record_judge_call(kind.value, "failed")
                    return malformed_verdict(kind, str(exc))
                logger.info(
                    "judge_call_retry",
                    judge=kind.value,
                    thread_id=conversation.thread_id,
                    attempt=attempt,
                    delay=delay,
                    error=exc.reason,
                )
                await self._sleep(delay)
                delay *= retry.backoff_factor
                continue

            verdict = parse_verdict(kind, raw)
            metrics.record_judge_call(kind.value, "malformed" if verdict.malformed else "ok")
            return verdict

        raise AssertionError("unreachable")  # pragma: no cover

    async def evaluate_conversation(
        self,
        conversation: Conversation,
        run_id: str,
        evaluated_at: datetime,
        semaphore: asyncio.Semaphore | None = None,
    ) -> EvaluationResult:
        """Run all four judges on one conversation and score the verdicts."""
        semaphore = semaphore or asyncio.Semaphore(self._settings.concurrency.max_concurrency)
        verdicts = await asyncio.gather(
            *(self._run_judge(conversation, kind, semaphore) for kind in JudgeKind)
        )
        by_kind = {verdict.kind: verdict for verdict in verdicts}
        composite, status = score_verdicts(by_kind)

        logger.info(
            "conversation_evaluated",
            thread_id=conversation.thread_id,
            agent=conversation.agent_name,
            composite=round(composite, 3),
            status=status.value,
            malformed=[v.kind.value for v in verdicts if v.malformed],
        )
        return EvaluationResult(
            run_id=run_id,
            conversation=conversation,
            verdicts=by_kind,
            composite_score=composite,
            evaluation_status=status,
            evaluated_at=evaluated_at,
            judge_model=self._judge_model(),
        )

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------

    def _finish(self, run_id: str, status: str, sampled: int, evaluated: int) -> None:
        try:
            finish_run(self._conn, run_id, status=status, sampled=sampled, evaluated=evaluated)
        except Exception:
            logger.exception("run_finish_not_recorded", run_id=run_id, status=status)
        metrics.record_run_completed(status)

    async def run(
        self,
        window_days: int | None = None,
        sample_size: int | None = None,
        deadline_seconds: float | None = None,
    ) -> RunSummary:
        """Execute one full pipeline run.

        Args:
            window_days: Look-back window. Defaults to [sampling].window_days.
            sample_size: Maximum conversations to judge. Defaults to [sampling].sample_size.
            deadline_seconds: Stop judging after this long; completed results
                are kept and the run is marked ``partial``.

        Raises:
            DatasetRetrievalFailed: conversations could not be read.
            StoreWriteFailed: results could not be persisted.
        """
        sampling = self._settings.sampling
        window_days = window_days if window_days is not None else sampling.window_days
        sample_size = sample_size if sample_size is not None else sampling.sample_size
        if deadline_seconds is None:
            deadline_seconds = self._settings.concurrency.deadline_seconds

        evaluated_at = self._clock()
        run_id = str(uuid.uuid4())
        bind_run_context(run_id)

        try:
            try:
                create_run(
                    self._conn,
                    run_id=run_id,
                    started_at=evaluated_at,
                    window_days=window_days,
                    sample_size=sample_size,
                    judge_model=self._judge_model(),
                )
            except Exception as exc:
                raise StoreWriteFailed(f"cannot record run: {exc}") from exc
            logger.info("run_started", window_days=window_days, sample_size=sample_size)

            try:
                sample = self.draw_sample(evaluated_at, window_days, sample_size)
            except SampleEmpty as exc:
                logger.info("sample_empty", reason=str(exc))
                sample = []
            except Exception:
                self._finish(run_id, "failed", 0, 0)
                raise

            return await self._evaluate_sample(
                run_id, evaluated_at, sample, deadline_seconds
            )
        finally:
            clear_run_context()

    async def _evaluate_sample(
        self,
        run_id: str,
        evaluated_at: datetime,
        sample: list[Conversation],
        deadline_seconds: float | None,
    ) -> RunSummary:
        counts: Counter[EvaluationStatus] = Counter()
        malformed = 0
        evaluated = 0

        try:
            replace_dataset(self._conn, run_id, sample)
        except Exception as exc:
            self._finish(run_id, "failed", len(sample), 0)
            raise StoreWriteFailed(f"cannot replace evaluation dataset: {exc}") from exc

        semaphore = asyncio.Semaphore(self._settings.concurrency.max_concurrency)
        pending = {
            asyncio.create_task(self.evaluate_conversation(c, run_id, evaluated_at, semaphore))
            for c in sample
        }

        loop = asyncio.get_running_loop()
        deadline = None if deadline_seconds is None else loop.time() + deadline_seconds
        status = "done"

        try:
            while pending:
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                done, pending = await asyncio.wait(
                    pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                if not done:
                    status = "partial"
                    logger.warning("run_deadline_reached", remaining=len(pending))
                    break
                for task in done:
                    result = task.result()
                    self._store.append([result])
                    evaluated += 1
                    counts[result.evaluation_status] += 1
                    malformed += sum(1 for v in result.verdicts.values() if v.malformed)
                    metrics.record_result(result.evaluation_status.value)
        except asyncio.CancelledError:
            self._finish(run_id, "partial", len(sample), evaluated)
            logger.warning("run_cancelled", evaluated=evaluated, sampled=len(sample))
            raise
        except Exception:
            self._finish(run_id, "failed", len(sample), evaluated)
            logger.error("run_failed", evaluated=evaluated, exc_info=True)
            raise
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        self._finish(run_id, status, len(sample), evaluated)
        logger.info(
            "run_completed",
            status=status,
            sampled=len(sample),
            evaluated=evaluated,
            **{s.value.lower(): n for s, n in counts.items()},
        )
        return RunSummary(
            run_id=run_id,
            evaluated_at=evaluated_at,
            status=status,
            sampled=len(sample),
            evaluated=evaluated,
            status_counts=dict(counts),
            malformed_verdicts=malformed,
        )
