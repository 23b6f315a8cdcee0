"""Evaluation pipeline: sampling, judging, scoring, alerting, scheduling.

Key components:
- orchestrator: one evaluation run (sample → 4 judges → score → append)
- alerts: CRITICAL alert check over a sliding window
- scheduler: weekly run + periodic alert check as independent asyncio loops
"""
