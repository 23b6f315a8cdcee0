"""CLI entry point for the agent conversation audit pipeline.

Usage:
    python audit.py run                              # Evaluate a sample from the last 7 days
    python audit.py run --window-days 3 --sample-size 20
    python audit.py alert-check                      # One CRITICAL alert check
    python audit.py schedule                         # Weekly run + hourly alert check, forever
    python audit.py report --section agents          # Print reports from the history
    python audit.py import conversations.jsonl       # Load conversations into the source table
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timedelta, timezone

import structlog
from pydantic import ValidationError

from judge_audit import metrics
from judge_audit.config import Settings, get_pipeline_settings, get_settings
from judge_audit.errors import ConfigurationError, JudgeAuditError
from judge_audit.logging_config import setup_logging
from judge_audit.notifications import build_notifier
from judge_audit.persistence.db import get_connection
from judge_audit.persistence.repository import insert_conversations
from judge_audit.persistence.sources import JsonlConversationSource
from judge_audit.persistence.store import EvaluationStore
from judge_audit.pipeline.alerts import Alerter
from judge_audit.pipeline.orchestrator import EvaluationOrchestrator
from judge_audit.pipeline.scheduler import Scheduler
from judge_audit.reporting import (
    console,
    print_agent_breakdown,
    print_results,
    print_run_summary,
    print_summary,
    print_trend,
)

logger = structlog.get_logger(__name__)

REPORT_SECTIONS = ("summary", "agents", "critical", "groundedness", "trend", "all")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="LLM-as-a-judge evaluation of agent conversations"
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="SQLite path or postgresql:// URL (default: DATABASE_URL from .env)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Run one evaluation pass now")
    run_p.add_argument("--window-days", type=int, default=None)
    run_p.add_argument("--sample-size", type=int, default=None)
    run_p.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Stop judging after N seconds and keep what finished",
    )
    run_p.add_argument("--seed", type=int, default=None, help="Seed for reproducible sampling")

    alert_p = sub.add_parser("alert-check", help="Check for recent CRITICAL results once")
    alert_p.add_argument("--interval-minutes", type=int, default=None)

    sub.add_parser("schedule", help="Run the weekly evaluation and periodic alert check")

    report_p = sub.add_parser("report", help="Print reports from the evaluation history")
    report_p.add_argument("--since-days", type=int, default=None)
    report_p.add_argument("--section", choices=REPORT_SECTIONS, default="summary")

    import_p = sub.add_parser("import", help="Load a JSON-lines conversation export")
    import_p.add_argument("path", type=str)

    return parser.parse_args(argv)


def _database_url(args: argparse.Namespace, settings: Settings | None = None) -> str:
    if args.db:
        return args.db
    return (settings or get_settings()).database_url


def _require_judge_key(settings: Settings) -> None:
    if not settings.openrouter_api_key:
        raise ConfigurationError("OPENROUTER_API_KEY is not set; the judges cannot be called")


def _export_metrics(settings: Settings) -> None:
    if settings.metrics_textfile:
        metrics.write_metrics_textfile(settings.metrics_textfile)


async def _run(args: argparse.Namespace) -> int:
    import random

    settings = get_settings()
    _require_judge_key(settings)
    conn = get_connection(_database_url(args, settings))
    try:
        orchestrator = EvaluationOrchestrator(
            conn,
            rng=random.Random(args.seed) if args.seed is not None else None,
        )
        summary = await orchestrator.run(
            window_days=args.window_days,
            sample_size=args.sample_size,
            deadline_seconds=args.deadline,
        )
    finally:
        conn.close()
        _export_metrics(settings)
    print_run_summary(summary)
    return 0


def _alert_check(args: argparse.Namespace) -> int:
    settings = get_settings()
    pipeline_settings = get_pipeline_settings()
    interval = args.interval_minutes or pipeline_settings.schedule.alert_interval_minutes
    conn = get_connection(_database_url(args, settings))
    try:
        alerter = Alerter(
            EvaluationStore(conn),
            build_notifier(settings, pipeline_settings.alerts),
            interval_minutes=interval,
            alerts=pipeline_settings.alerts,
        )
        check = alerter.check()
    finally:
        conn.close()
    _export_metrics(settings)
    if check.fired and not check.delivered:
        console.print(f"[red]Alert not delivered:[/red] {check.error}")
        return 1
    if check.fired:
        console.print(f"[red]{check.critical_count} CRITICAL result(s); alert sent.[/red]")
    else:
        console.print("[green]No CRITICAL results in the check window.[/green]")
    return 0


async def _schedule(args: argparse.Namespace) -> int:
    settings = get_settings()
    _require_judge_key(settings)
    pipeline_settings = get_pipeline_settings()
    db_url = _database_url(args, settings)
    notifier = build_notifier(settings, pipeline_settings.alerts)
    if settings.metrics_port:
        metrics.serve_metrics(settings.metrics_port)
        logger.info("metrics_server_started", port=settings.metrics_port)

    async def run_evaluation():
        conn = get_connection(db_url)
        try:
            return await EvaluationOrchestrator(conn, pipeline_settings=pipeline_settings).run()
        finally:
            conn.close()

    def check_alerts(since):
        # Runs in a worker thread; SQLite connections stay on the thread that opened them.
        conn = get_connection(db_url)
        try:
            return Alerter(
                EvaluationStore(conn),
                notifier,
                interval_minutes=pipeline_settings.schedule.alert_interval_minutes,
                alerts=pipeline_settings.alerts,
            ).check(since=since)
        finally:
            conn.close()

    scheduler = Scheduler(run_evaluation, check_alerts, pipeline_settings.schedule)
    await scheduler.serve_forever()
    return 0


def _report(args: argparse.Namespace) -> int:
    since = None
    if args.since_days is not None:
        since = datetime.now(timezone.utc) - timedelta(days=args.since_days)
    sections = REPORT_SECTIONS[:-1] if args.section == "all" else (args.section,)

    conn = get_connection(_database_url(args))
    try:
        store = EvaluationStore(conn)
        if "summary" in sections:
            print_summary(store.summary(since=since))
        if "agents" in sections:
            print_agent_breakdown(store.agent_breakdown(since=since))
        if "critical" in sections:
            print_results(store.critical_results(since=since), title="Critical Results")
        if "groundedness" in sections:
            print_results(store.groundedness_issues(since=since), title="Groundedness Issues")
        if "trend" in sections:
            print_trend(store.trend(since=since))
    finally:
        conn.close()
    return 0


def _import(args: argparse.Namespace) -> int:
    conversations = JsonlConversationSource(args.path).load()
    conn = get_connection(_database_url(args))
    try:
        count = insert_conversations(conn, conversations)
    finally:
        conn.close()
    console.print(f"[green]Imported {count} conversation(s).[/green]")
    return 0


def dispatch(args: argparse.Namespace) -> int:
    if args.command == "run":
        return asyncio.run(_run(args))
    if args.command == "alert-check":
        return _alert_check(args)
    if args.command == "schedule":
        try:
            return asyncio.run(_schedule(args))
        except KeyboardInterrupt:
            return 0
    if args.command == "report":
        return _report(args)
    if args.command == "import":
        return _import(args)
    raise ValueError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    try:
        if args.command in ("run", "alert-check", "schedule"):
            settings = get_settings()
            setup_logging(settings.log_level, json_output=settings.log_json)
        else:
            setup_logging()
        code = dispatch(args)
    except (JudgeAuditError, ValidationError) as exc:
        logger.error("command_failed", command=args.command, error=str(exc))
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
