from __future__ import annotations

from typing import Iterable

from converge.core.model import Plan, PlanSummary, Result, RunSummary


def summarize(results: Iterable[Result]) -> RunSummary:
    total = 0
    success = 0
    for r in results:
        total += 1
        if r.success:
            success += 1
    return RunSummary(total=total, success=success)


def summarize_plan(plan: Plan) -> PlanSummary:
    entries = list(plan)
    return PlanSummary(
        total=len(entries),
        will_change=sum(1 for e in entries if e.will_change),
        errors=sum(1 for e in entries if e.error is not None),
    )
