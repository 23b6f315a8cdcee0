"""Evaluation results and the read models returned by the store."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from judge_audit.schemas.conversation import Conversation
from judge_audit.schemas.verdicts import JudgeKind, JudgeVerdict

QUERY_PREVIEW_CHARS = 200
RESPONSE_PREVIEW_CHARS = 500


class EvaluationStatus(StrEnum):
    PASS = "PASS"
    REVIEW = "REVIEW"
    CRITICAL = "CRITICAL"


class EvaluationResult(BaseModel):
    """One conversation joined with its four verdicts. Never mutated once built."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    conversation: Conversation
    verdicts: dict[JudgeKind, JudgeVerdict]
    composite_score: float = Field(ge=0.0, le=1.0)
    evaluation_status: EvaluationStatus
    evaluated_at: datetime
    judge_model: str | None = None

    @model_validator(mode="after")
    def _all_judges_present(self) -> "EvaluationResult":
        missing = set(JudgeKind) - set(self.verdicts)
        if missing:
            raise ValueError(f"missing verdicts: {sorted(missing)}")
        return self

    def score(self, kind: JudgeKind) -> float | None:
        return self.verdicts[kind].score

    @property
    def groundedness_score(self) -> float | None:
        return self.score(JudgeKind.GROUNDEDNESS)

    @property
    def relevance_score(self) -> float | None:
        return self.score(JudgeKind.RELEVANCE)

    @property
    def safety_score(self) -> float | None:
        return self.score(JudgeKind.SAFETY)

    @property
    def comprehensiveness_score(self) -> float | None:
        return self.score(JudgeKind.COMPREHENSIVENESS)

    @property
    def query_preview(self) -> str:
        return (self.conversation.user_query or "")[:QUERY_PREVIEW_CHARS]

    @property
    def response_preview(self) -> str:
        return (self.conversation.agent_response or "")[:RESPONSE_PREVIEW_CHARS]


class EvaluationSummary(BaseModel):
    """Aggregate metrics over a slice of the history."""

    total: int = 0
    avg_groundedness: float | None = None
    avg_relevance: float | None = None
    avg_safety: float | None = None
    avg_comprehensiveness: float | None = None
    avg_composite: float | None = None
    passed: int = 0
    needs_review: int = 0
    critical: int = 0
    pass_rate_pct: float | None = None
    malformed: dict[JudgeKind, int] = Field(default_factory=dict)


class AgentBreakdown(BaseModel):
    agent_name: str | None
    samples: int
    avg_groundedness: float | None = None
    avg_relevance: float | None = None
    avg_safety: float | None = None
    avg_composite: float | None = None
    pass_rate_pct: float | None = None


class TrendPoint(BaseModel):
    day: str
    samples: int
    avg_composite: float | None = None
    critical_count: int = 0


class RunSummary(BaseModel):
    """What one pipeline run did."""

    run_id: str
    evaluated_at: datetime
    status: str
    sampled: int = 0
    evaluated: int = 0
    status_counts: dict[EvaluationStatus, int] = Field(default_factory=dict)
    malformed_verdicts: int = 0


class AlertCheck(BaseModel):
    """Outcome of one alert check cycle (not persisted)."""

    checked_at: datetime
    window_start: datetime
    critical_count: int
    fired: bool
    delivered: bool = False
    error: str | None = None
