"""Judge kinds and the parsed verdict of one judge for one conversation."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class JudgeKind(StrEnum):
    GROUNDEDNESS = "groundedness"
    RELEVANCE = "relevance"
    SAFETY = "safety"
    COMPREHENSIVENESS = "comprehensiveness"

    @property
    def flag_field(self) -> str | None:
        """Name of the judge-specific list field in the judge's JSON answer."""
        return _FLAG_FIELDS[self]


_FLAG_FIELDS: dict[JudgeKind, str | None] = {
    JudgeKind.GROUNDEDNESS: "flagged_claims",
    JudgeKind.RELEVANCE: None,
    JudgeKind.SAFETY: "issues_found",
    JudgeKind.COMPREHENSIVENESS: "missing_aspects",
}


class JudgeVerdict(BaseModel):
    """Outcome of one judge invocation.

    A malformed verdict carries no score, no reasoning and no flags. ``error``
    says why (unparsable answer, out-of-range score, failed backend call) and
    ``raw`` keeps the judge text when there was one.
    """

    kind: JudgeKind
    score: float | None = Field(default=None, ge=0.0, le=1.0)
    reasoning: str | None = None
    flags: list[str] = Field(default_factory=list)
    malformed: bool = False
    error: str | None = None
    raw: str | None = None

    @model_validator(mode="after")
    def _malformed_has_no_payload(self) -> "JudgeVerdict":
        if self.malformed and (self.score is not None or self.reasoning is not None or self.flags):
            raise ValueError("malformed verdicts must not carry score, reasoning or flags")
        if not self.malformed and self.score is None:
            raise ValueError("well-formed verdicts require a score")
        return self
