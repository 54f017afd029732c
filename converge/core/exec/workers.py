from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Sequence, TypeVar

T = TypeVar("T")

DEFAULT_WORKERS = 4


def run_level(fn: Callable[[str], T], node_ids: Sequence[str], workers: int) -> dict[str, T]:
    """Run fn once per node id on a bounded pool and wait for all of them.

    fn must capture its own failures in the returned value; each worker writes
    only its own slot, the mapping is assembled here after the join.
    """

    if not node_ids:
        return {}

    out: dict[str, T] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(node_ids)))) as ex:
        futures = {ex.submit(fn, nid): nid for nid in node_ids}
        for f in as_completed(futures):
            out[futures[f]] = f.result()
    return out
