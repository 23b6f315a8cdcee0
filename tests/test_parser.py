"""Tests for judge verdict parsing."""

from __future__ import annotations

import pytest

from judge_audit.judges.parser import malformed_verdict, parse_verdict
from judge_audit.schemas.verdicts import JudgeKind


class TestWellFormed:
    def test_groundedness_with_flags(self):
        raw = (
            '{"score": 0.6, "reasoning": "One claim lacks a source.", '
            '"flagged_claims": ["returns will double"]}'
        )
        v = parse_verdict(JudgeKind.GROUNDEDNESS, raw)
        assert not v.malformed
        assert v.score == 0.6
        assert v.reasoning == "One claim lacks a source."
        assert v.flags == ["returns will double"]
        assert v.raw == raw

    def test_relevance_has_no_flags(self):
        raw = '{"score": 0.8, "reasoning": "On topic.", "flagged_claims": ["x"]}'
        v = parse_verdict(JudgeKind.RELEVANCE, raw)
        assert v.score == 0.8
        assert v.flags == []

    def test_safety_reads_issues_found(self):
        raw = '{"score": 0.3, "reasoning": "Leaks an account number.", "issues_found": ["PII"]}'
        v = parse_verdict(JudgeKind.SAFETY, raw)
        assert v.flags == ["PII"]

    def test_comprehensiveness_reads_missing_aspects(self):
        raw = '{"score": 0.5, "reasoning": "Partial.", "missing_aspects": ["fees", "taxes"]}'
        v = parse_verdict(JudgeKind.COMPREHENSIVENESS, raw)
        assert v.flags == ["fees", "taxes"]

    def test_missing_flag_field_is_empty_list(self):
        v = parse_verdict(JudgeKind.SAFETY, '{"score": 1.0, "reasoning": "Clean."}')
        assert v.flags == []

    def test_missing_reasoning_is_none(self):
        v = parse_verdict(JudgeKind.RELEVANCE, '{"score": 0.7}')
        assert not v.malformed
        assert v.reasoning is None

    def test_code_fenced_json(self):
        raw = '```json\n{"score": 0.9, "reasoning": "ok"}\n```'
        v = parse_verdict(JudgeKind.RELEVANCE, raw)
        assert v.score == 0.9

    def test_integer_boundaries(self):
        assert parse_verdict(JudgeKind.SAFETY, '{"score": 0}').score == 0.0
        assert parse_verdict(JudgeKind.SAFETY, '{"score": 1}').score == 1.0

    def test_numeric_string_score(self):
        assert parse_verdict(JudgeKind.SAFETY, '{"score": "0.75"}').score == 0.75

    def test_non_string_flags_dropped(self):
        raw = '{"score": 0.4, "flagged_claims": ["a", 3, null, "b"]}'
        assert parse_verdict(JudgeKind.GROUNDEDNESS, raw).flags == ["a", "b"]


class TestMalformed:
    @pytest.mark.parametrize(
        "raw",
        [
            "The response is great, I'd give it 0.9",
            '{"reasoning": "no score here"}',
            '{"score": 1.5, "reasoning": "too high"}',
            '{"score": -0.1}',
            '{"score": "high"}',
            '{"score": true}',
            '{"score": null}',
            "[0.5]",
            '{"score": 0.5',
        ],
    )
    def test_invalid_answers_are_malformed(self, raw):
        v = parse_verdict(JudgeKind.RELEVANCE, raw)
        assert v.malformed
        assert v.score is None
        assert v.reasoning is None
        assert v.flags == []
        assert v.error
        assert v.raw == raw

    @pytest.mark.parametrize("raw", [None, "", "   \n"])
    def test_empty_output(self, raw):
        v = parse_verdict(JudgeKind.SAFETY, raw)
        assert v.malformed
        assert v.error == "empty judge output"

    def test_out_of_range_error_mentions_range(self):
        v = parse_verdict(JudgeKind.SAFETY, '{"score": 2}')
        assert "outside [0, 1]" in v.error

    def test_malformed_verdict_helper(self):
        v = malformed_verdict(JudgeKind.GROUNDEDNESS, "judge call failed")
        assert v.kind == JudgeKind.GROUNDEDNESS
        assert v.malformed
        assert v.score is None
        assert v.raw is None
