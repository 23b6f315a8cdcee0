"""Verdict Parser: raw judge text → JudgeVerdict.

Judge output is untrusted. ``parse_verdict`` never raises: anything that is
not a JSON object with a numeric ``score`` inside [0, 1] becomes a malformed
verdict (null score) so one bad answer cannot block the run.
"""

from __future__ import annotations

import json
import math
from typing import Any

import structlog
from langchain_core.utils.json import parse_json_markdown

from judge_audit.errors import VerdictParseFailed
from judge_audit.schemas.verdicts import JudgeKind, JudgeVerdict

logger = structlog.get_logger(__name__)


def malformed_verdict(kind: JudgeKind, error: str, raw: str | None = None) -> JudgeVerdict:
    """Build the null-score verdict recorded for a failed or unparsable judge."""
    return JudgeVerdict(kind=kind, malformed=True, error=error, raw=raw)


def _load_object(raw: str) -> dict[str, Any]:
    """Strict JSON (optionally inside a markdown code block) that must be an object."""
    try:
        data = parse_json_markdown(raw, parser=json.loads)
    except (ValueError, TypeError) as exc:
        raise VerdictParseFailed(f"not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise VerdictParseFailed(f"expected a JSON object, got {type(data).__name__}")
    return data


def _coerce_score(value: Any) -> float:
    if value is None:
        raise VerdictParseFailed("missing required field 'score'")
    if isinstance(value, bool):
        raise VerdictParseFailed("score is not numeric")
    try:
        score = float(value)
    except (TypeError, ValueError) as exc:
        raise VerdictParseFailed(f"score is not numeric: {value!r}") from exc
    if not math.isfinite(score):
        raise VerdictParseFailed(f"score is not finite: {value!r}")
    if score < 0.0 or score > 1.0:
        raise VerdictParseFailed(f"score {score} outside [0, 1]")
    return score


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def parse_verdict(kind: JudgeKind, raw: str | None) -> JudgeVerdict:
    """Parse one judge answer.

    Args:
        kind: Which judge produced ``raw``; selects the flag field to read.
        raw: The completion text as returned by the Judge Client.

    Returns:
        A well-formed verdict, or a malformed one with ``error`` set.
    """
    if raw is None or not raw.strip():
        return malformed_verdict(kind, "empty judge output", raw)

    try:
        data = _load_object(raw)
        score = _coerce_score(data.get("score"))
    except VerdictParseFailed as exc:
        logger.warning("verdict_malformed", judge=kind.value, error=str(exc), raw=raw[:120])
        return malformed_verdict(kind, str(exc), raw)

    reasoning = data.get("reasoning")
    flags = _string_list(data.get(kind.flag_field)) if kind.flag_field else []

    return JudgeVerdict(
        kind=kind,
        score=score,
        reasoning=reasoning if isinstance(reasoning, str) else None,
        flags=flags,
        raw=raw,
    )
