from __future__ import annotations

import logging

from converge.core.cancel import CancelToken
from converge.core.errors import (
    ApplyError,
    CancellationError,
    CheckError,
    PlanMismatchError,
    UpstreamFailureError,
)
from converge.core.exec.errors import wrap
from converge.core.exec.workers import DEFAULT_WORKERS, run_level
from converge.core.graph.graph import Graph, Node
from converge.core.model import DiffEntry, Plan, Result

log = logging.getLogger(__name__)


def apply(graph: Graph, plan: Plan, token: CancelToken, *, workers: int = DEFAULT_WORKERS) -> list[Result]:
    """Apply the plan level by level and return one Result per node, in graph order.

    Per node, in this order:
    - a failed dependency short-circuits it with UpstreamFailureError;
    - a check error on its entry fails it (check errors propagate like apply errors);
    - no pending change is a successful no-op;
    - otherwise apply() runs, followed by a verification check.

    Once the token is cancelled no further level is started; every node in the
    remaining levels reports CancellationError. Only a plan that does not match
    the graph raises (PlanMismatchError); node failures are returned as Results.
    """

    entries = _entries_for(graph, plan)
    results: dict[str, Result] = {}

    for idx, level in enumerate(graph.levels()):
        if token.cancelled:
            log.debug("level %d not started: cancelled", idx)
            for nid in level:
                results[nid] = _cancelled(entries[nid], token, graph.file)
            continue

        runnable: list[str] = []
        for nid in level:
            entry = entries[nid]
            failed = [d for d in graph.dependencies(nid) if not results[d].success]
            if failed:
                results[nid] = Result(
                    id=nid,
                    success=False,
                    old_state=entry.current,
                    new_state=entry.current,
                    error=UpstreamFailureError(
                        code="E_UPSTREAM_FAILED",
                        message="error in dependency: " + ", ".join(sorted(failed)),
                        file=graph.file,
                        path=nid,
                    ),
                )
            elif entry.error is not None:
                results[nid] = Result(
                    id=nid,
                    success=False,
                    old_state=entry.current,
                    new_state=entry.current,
                    error=entry.error,
                )
            elif not entry.will_change:
                results[nid] = Result(id=nid, success=True, old_state=entry.current, new_state=entry.current)
            else:
                runnable.append(nid)

        log.debug("applying level %d: %s", idx, ", ".join(runnable) or "<nothing to change>")
        results.update(
            run_level(
                lambda nid: apply_node(graph.node(nid), entries[nid], token, file=graph.file),
                runnable,
                workers,
            )
        )

    return [results[nid] for nid in graph.order()]


def apply_node(node: Node, entry: DiffEntry, token: CancelToken, *, file: str | None = None) -> Result:
    # queued behind the pool bound when cancellation arrived
    if token.cancelled:
        return _cancelled(entry, token, file)

    try:
        node.task.apply(token)
    except Exception as e:
        err = wrap(e, ApplyError, "E_APPLY_FAILED", node.id, file)
        log.debug("%s: apply failed: %s", node.id, err.message)
        return Result(
            id=node.id,
            success=False,
            old_state=entry.current,
            new_state=entry.current,
            changed=True,
            error=err,
        )

    try:
        status = node.task.check(token)
        current, will_change = str(status.current), bool(status.will_change)
    except CancellationError:
        # the mutation itself completed
        log.warning("%s: applied, verification skipped: cancelled", node.id)
        return Result(id=node.id, success=True, old_state=entry.current, changed=True)
    except Exception as e:
        err = wrap(e, CheckError, "E_CHECK_FAILED", node.id, file)
        return Result(
            id=node.id,
            success=False,
            old_state=entry.current,
            changed=True,
            error=err,
        )

    if will_change:
        return Result(
            id=node.id,
            success=False,
            old_state=entry.current,
            new_state=current,
            changed=True,
            error=ApplyError(
                code="E_NOT_CONVERGED",
                message="apply finished but check still reports a pending change",
                file=file,
                path=node.id,
            ),
        )

    log.debug("%s: applied", node.id)
    return Result(id=node.id, success=True, old_state=entry.current, new_state=current, changed=True)


def _cancelled(entry: DiffEntry, token: CancelToken, file: str | None) -> Result:
    return Result(
        id=entry.id,
        success=False,
        old_state=entry.current,
        new_state=entry.current,
        error=CancellationError(
            code="E_CANCELLED",
            message=token.reason or "cancelled",
            file=file,
            path=entry.id,
        ),
    )


def _entries_for(graph: Graph, plan: Plan) -> dict[str, DiffEntry]:
    entries = plan.by_id()
    order = graph.order()
    missing = [nid for nid in order if nid not in entries]
    extra = sorted(set(entries) - set(order))
    if missing or extra or len(entries) != len(plan):
        parts = []
        if missing:
            parts.append("missing entries for " + ", ".join(missing))
        if extra:
            parts.append("entries for unknown nodes " + ", ".join(extra))
        if len(entries) != len(plan):
            parts.append("duplicate entries")
        raise PlanMismatchError(
            code="E_PLAN_MISMATCH",
            message="plan does not match graph: " + "; ".join(parts),
            file=graph.file,
        )
    return entries
