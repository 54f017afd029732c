from __future__ import annotations

import logging

from converge.core.cancel import CancelToken
from converge.core.errors import CancellationError, CheckError
from converge.core.exec.errors import wrap
from converge.core.exec.workers import DEFAULT_WORKERS, run_level
from converge.core.graph.graph import Graph, Node
from converge.core.model import DiffEntry, Plan

log = logging.getLogger(__name__)


def plan(graph: Graph, token: CancelToken, *, workers: int = DEFAULT_WORKERS) -> Plan:
    """Check every node, level by level, and return one DiffEntry per node.

    Checks are read-only, so every level is probed regardless of what earlier
    levels reported. A failing check is recorded on its entry and never stops
    the walk.
    """

    entries: dict[str, DiffEntry] = {}
    for idx, level in enumerate(graph.levels()):
        log.debug("planning level %d: %s", idx, ", ".join(level))
        entries.update(
            run_level(lambda nid: check_node(graph.node(nid), token, file=graph.file), level, workers)
        )

    return Plan(entries=tuple(entries[nid] for nid in graph.order()))


def check_node(node: Node, token: CancelToken, *, file: str | None = None) -> DiffEntry:
    if token.cancelled:
        return DiffEntry(
            id=node.id,
            current="",
            will_change=True,
            error=CancellationError(
                code="E_CANCELLED", message=token.reason or "cancelled", file=file, path=node.id
            ),
        )

    try:
        status = node.task.check(token)
        current, will_change = str(status.current), bool(status.will_change)
    except Exception as e:
        err = wrap(e, CheckError, "E_CHECK_FAILED", node.id, file)
        log.debug("%s: check failed: %s", node.id, err.message)
        return DiffEntry(id=node.id, current="", will_change=True, error=err)

    log.debug("%s: current=%r will_change=%s", node.id, current, will_change)
    return DiffEntry(id=node.id, current=current, will_change=will_change)
