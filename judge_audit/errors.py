"""Exception taxonomy for the evaluation pipeline.

Per-judge conditions (JudgeCallFailed, VerdictParseFailed) are contained by
the orchestrator and recorded as malformed verdicts. DatasetRetrievalFailed
and StoreWriteFailed abort a run. AlertDeliveryFailed is logged by the
alerter and never escapes a check. ConfigurationError stops a CLI command
before it starts work.
"""

from __future__ import annotations


class JudgeAuditError(Exception):
    """Base class for all pipeline errors."""


class JudgeCallFailed(JudgeAuditError):
    """The judge backend did not return a usable completion."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind} judge call failed: {reason}")
        self.kind = kind
        self.reason = reason


class VerdictParseFailed(JudgeAuditError):
    """The judge answered, but not in the required shape."""


class SampleEmpty(JudgeAuditError):
    """No conversation met the eligibility filters in the window."""


class DatasetRetrievalFailed(JudgeAuditError):
    """The conversation source could not be read."""


class StoreWriteFailed(JudgeAuditError):
    """Evaluation results could not be appended to the store."""


class AlertDeliveryFailed(JudgeAuditError):
    """The notification sink rejected or could not receive the alert."""


class ConfigurationError(JudgeAuditError):
    """A setting required by the requested command is missing or invalid."""
