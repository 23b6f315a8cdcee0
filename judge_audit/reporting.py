"""Rich console reports over the evaluation history."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

from judge_audit.schemas.evaluation import (
    AgentBreakdown,
    EvaluationResult,
    EvaluationStatus,
    EvaluationSummary,
    RunSummary,
    TrendPoint,
)
from judge_audit.schemas.verdicts import JudgeKind

console = Console()

_STATUS_STYLE = {
    EvaluationStatus.PASS: "green",
    EvaluationStatus.REVIEW: "yellow",
    EvaluationStatus.CRITICAL: "red",
}


def _fmt(score: float | None) -> str:
    if score is None:
        return "[dim]n/a[/dim]"
    color = "green" if score >= 0.7 else "yellow" if score >= 0.5 else "red"
    return f"[{color}]{score:.2f}[/{color}]"


def _status(status: EvaluationStatus) -> str:
    style = _STATUS_STYLE[status]
    return f"[{style}]{status.value}[/{style}]"


def _truncate(text: str | None, width: int) -> str:
    text = (text or "").replace("\n", " ")
    return text[:width] + ("..." if len(text) > width else "")


def print_run_summary(summary: RunSummary, out: Console | None = None) -> None:
    out = out or console
    counts = summary.status_counts
    out.print(f"\n[bold]Run {summary.run_id}[/bold] ({summary.status})")
    out.print(f"  Sampled: {summary.sampled}  Evaluated: {summary.evaluated}")
    out.print(
        f"  [green]{counts.get(EvaluationStatus.PASS, 0)} PASS[/green] | "
        f"[yellow]{counts.get(EvaluationStatus.REVIEW, 0)} REVIEW[/yellow] | "
        f"[red]{counts.get(EvaluationStatus.CRITICAL, 0)} CRITICAL[/red]"
    )
    if summary.malformed_verdicts:
        out.print(f"  Malformed verdicts: {summary.malformed_verdicts}")
    out.print()


def print_summary(summary: EvaluationSummary, out: Console | None = None) -> None:
    """Aggregate metrics block."""
    out = out or console
    if not summary.total:
        out.print("[yellow]No evaluation results in range.[/yellow]")
        return

    out.print("\n[bold]Aggregate Metrics:[/bold]")
    out.print(f"  Conversations evaluated: {summary.total}")
    out.print(f"  Avg Groundedness: {_fmt(summary.avg_groundedness)}")
    out.print(f"  Avg Relevance: {_fmt(summary.avg_relevance)}")
    out.print(f"  Avg Safety: {_fmt(summary.avg_safety)}")
    out.print(f"  Avg Comprehensiveness: {_fmt(summary.avg_comprehensiveness)}")
    out.print(f"  Avg Composite: {_fmt(summary.avg_composite)}")
    out.print(
        f"  Status: [green]{summary.passed} PASS[/green] | "
        f"[yellow]{summary.needs_review} REVIEW[/yellow] | "
        f"[red]{summary.critical} CRITICAL[/red]"
    )
    out.print(f"  Pass Rate: {summary.pass_rate_pct:.1f}%")
    malformed = {k: n for k, n in summary.malformed.items() if n}
    if malformed:
        parts = ", ".join(f"{JudgeKind(k).value}={n}" for k, n in malformed.items())
        out.print(f"  Malformed verdicts: {parts}")
    out.print()


def print_agent_breakdown(rows: list[AgentBreakdown], out: Console | None = None) -> None:
    out = out or console
    if not rows:
        out.print("[yellow]No agents to display.[/yellow]")
        return

    table = Table(title="Agent Performance", show_lines=True)
    table.add_column("Agent", style="cyan")
    table.add_column("Samples", justify="right")
    table.add_column("Groundedness", justify="center")
    table.add_column("Relevance", justify="center")
    table.add_column("Safety", justify="center")
    table.add_column("Composite", justify="center")
    table.add_column("Pass Rate", justify="right")

    for row in rows:
        rate = "n/a" if row.pass_rate_pct is None else f"{row.pass_rate_pct:.1f}%"
        table.add_row(
            row.agent_name or "(unknown)",
            str(row.samples),
            _fmt(row.avg_groundedness),
            _fmt(row.avg_relevance),
            _fmt(row.avg_safety),
            _fmt(row.avg_composite),
            rate,
        )
    out.print(table)


def print_results(
    results: list[EvaluationResult],
    title: str = "Evaluation Results",
    out: Console | None = None,
) -> None:
    """One row per result, with the flags of the worst judge."""
    out = out or console
    if not results:
        out.print(f"[yellow]{title}: nothing to display.[/yellow]")
        return

    table = Table(title=title, show_lines=True)
    table.add_column("Thread", style="cyan", max_width=14)
    table.add_column("Agent", style="magenta")
    table.add_column("Query", max_width=40)
    table.add_column("G", justify="center")
    table.add_column("R", justify="center")
    table.add_column("S", justify="center")
    table.add_column("C", justify="center")
    table.add_column("Composite", justify="center")
    table.add_column("Status", justify="center")
    table.add_column("Flags", max_width=40)

    for r in results:
        flags = [
            *r.verdicts[JudgeKind.SAFETY].flags,
            *r.verdicts[JudgeKind.GROUNDEDNESS].flags,
        ]
        table.add_row(
            r.conversation.thread_id,
            r.conversation.agent_name or "",
            _truncate(r.query_preview, 40),
            _fmt(r.groundedness_score),
            _fmt(r.relevance_score),
            _fmt(r.safety_score),
            _fmt(r.comprehensiveness_score),
            _fmt(r.composite_score),
            _status(r.evaluation_status),
            _truncate("; ".join(flags), 40),
        )
    out.print(table)


def print_trend(points: list[TrendPoint], out: Console | None = None) -> None:
    out = out or console
    if not points:
        out.print("[yellow]No trend data.[/yellow]")
        return

    table = Table(title="Daily Trend")
    table.add_column("Day", style="cyan")
    table.add_column("Samples", justify="right")
    table.add_column("Avg Composite", justify="center")
    table.add_column("Critical", justify="right")
    for p in points:
        critical = f"[red]{p.critical_count}[/red]" if p.critical_count else "0"
        table.add_row(p.day, str(p.samples), _fmt(p.avg_composite), critical)
    out.print(table)
