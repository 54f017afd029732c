from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from converge.core.errors import GraphConstructionError
from converge.core.resource.task import Task


@dataclass(frozen=True)
class Node:
    id: str
    task: Task = field(compare=False)
    depends_on: tuple[str, ...] = ()
    kind: str = "task"


class Graph:
    """Validated dependency DAG of resource nodes.

    Construction fails with GraphConstructionError on duplicate ids, dangling
    dependencies or cycles; there is no partially built graph. The structure is
    read-only afterwards and safe to share between worker threads.
    """

    def __init__(self, nodes: Iterable[Node], *, file: Optional[str] = None) -> None:
        self.file = file
        by_id: dict[str, Node] = {}
        for n in nodes:
            if n.id in by_id:
                raise GraphConstructionError(
                    code="E_DUPLICATE_ID",
                    message=f"duplicate node id: {n.id}",
                    file=file,
                    path=n.id,
                )
            by_id[n.id] = n

        for n in by_id.values():
            for dep in n.depends_on:
                if dep not in by_id:
                    raise GraphConstructionError(
                        code="E_UNKNOWN_DEPENDENCY",
                        message=f"depends_on references unknown id: {dep}",
                        file=file,
                        path=n.id,
                    )

        cycle = _find_cycle({nid: list(n.depends_on) for nid, n in by_id.items()})
        if cycle:
            raise GraphConstructionError(
                code="E_CYCLIC_DEPENDENCY",
                message="dependency cycle detected: " + " -> ".join(cycle),
                file=file,
                path=cycle[0],
            )

        self._nodes = by_id
        self._dependents: dict[str, list[str]] = defaultdict(list)
        for nid, n in by_id.items():
            for dep in n.depends_on:
                self._dependents[dep].append(nid)
        self._levels = _levels(by_id)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[Node]:
        for nid in self.order():
            yield self._nodes[nid]

    def node(self, node_id: str) -> Node:
        return self._nodes[node_id]

    def dependencies(self, node_id: str) -> tuple[str, ...]:
        return self._nodes[node_id].depends_on

    def dependents(self, node_id: str) -> list[str]:
        return sorted(self._dependents.get(node_id, []))

    def levels(self) -> list[list[str]]:
        """Level 0 has no dependencies; level k depends only on levels < k."""
        return [list(level) for level in self._levels]

    def order(self) -> list[str]:
        return [nid for level in self._levels for nid in level]

    def to_dot(self) -> str:
        lines = ["digraph {"]
        for nid in self.order():
            n = self._nodes[nid]
            lines.append(f'  "{nid}" [label="{nid}\\n({n.kind})"];')
        for nid in self.order():
            for dep in self._nodes[nid].depends_on:
                lines.append(f'  "{nid}" -> "{dep}";')
        lines.append("}")
        return "\n".join(lines)


def _levels(nodes: dict[str, Node]) -> tuple[tuple[str, ...], ...]:
    level_of: dict[str, int] = {}

    def visit(nid: str) -> int:
        if nid not in level_of:
            deps = nodes[nid].depends_on
            level_of[nid] = 1 + max((visit(d) for d in deps), default=-1)
        return level_of[nid]

    for nid in sorted(nodes):
        visit(nid)

    grouped: dict[int, list[str]] = defaultdict(list)
    for nid, lvl in level_of.items():
        grouped[lvl].append(nid)
    return tuple(tuple(sorted(grouped[i])) for i in range(len(grouped)))


def _find_cycle(id_to_deps: dict[str, list[str]]) -> list[str]:
    WHITE, GRAY, BLACK = 0, 1, 2
    state: dict[str, int] = {nid: WHITE for nid in id_to_deps}
    stack: list[str] = []

    def dfs(u: str) -> list[str]:
        state[u] = GRAY
        stack.append(u)
        for v in id_to_deps.get(u, []):
            if state.get(v) == GRAY:
                # cycle: v ... u -> v
                return stack[stack.index(v):] + [v]
            if state.get(v) == WHITE:
                found = dfs(v)
                if found:
                    return found
        stack.pop()
        state[u] = BLACK
        return []

    for nid in sorted(state):
        if state[nid] == WHITE:
            found = dfs(nid)
            if found:
                return found
    return []
