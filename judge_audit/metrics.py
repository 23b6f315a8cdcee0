"""Prometheus metrics for the evaluation pipeline.

Tracks judge calls, evaluation outcomes, runs and alert checks. One-shot
commands write a textfile for the node_exporter textfile collector; the
scheduler daemon serves ``/metrics`` over HTTP.
"""

from __future__ import annotations

from pathlib import Path

from prometheus_client import REGISTRY, Counter, Gauge, start_http_server, write_to_textfile

# ---------------------------------------------------------------------------
# Metric definitions
# ---------------------------------------------------------------------------

JUDGE_CALLS = Counter(
    "judge_audit_judge_calls_total",
    "Judge invocations by judge kind and outcome",
    ["judge", "outcome"],
)
RESULTS_EVALUATED = Counter(
    "judge_audit_results_total",
    "Evaluation results persisted, by status",
    ["status"],
)
RUNS_COMPLETED = Counter(
    "judge_audit_runs_total",
    "Pipeline runs finished, by final run status",
    ["status"],
)
ALERT_CHECKS = Counter(
    "judge_audit_alert_checks_total",
    "Alert checks by outcome",
    ["outcome"],
)
IN_FLIGHT_JUDGE_CALLS = Gauge(
    "judge_audit_in_flight_judge_calls",
    "Judge calls currently waiting on the backend",
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------


def record_judge_call(judge: str, outcome: str) -> None:
    """outcome: ok | malformed | failed"""
    JUDGE_CALLS.labels(judge=judge, outcome=outcome).inc()


def record_result(status: str) -> None:
    RESULTS_EVALUATED.labels(status=status).inc()


def record_run_completed(status: str) -> None:
    RUNS_COMPLETED.labels(status=status).inc()


def record_alert_check(outcome: str) -> None:
    """outcome: quiet | sent | delivery_failed"""
    ALERT_CHECKS.labels(outcome=outcome).inc()


def write_metrics_textfile(path: str | Path) -> None:
    """Write the current counters atomically in exposition format."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    write_to_textfile(str(path), REGISTRY)


def serve_metrics(port: int) -> None:
    """Expose ``/metrics`` on ``port`` from a daemon thread."""
    start_http_server(port)
