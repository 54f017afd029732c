import pytest

from converge.core.errors import GraphConstructionError
from converge.core.graph.graph import Graph, Node


def _node(nid, *deps):
    return Node(id=nid, task=object(), depends_on=tuple(deps))


def test_levels_group_by_dependency_depth():
    g = Graph([_node("c", "a", "b"), _node("b", "a"), _node("a"), _node("z")])
    assert g.levels() == [["a", "z"], ["b"], ["c"]]
    assert g.order() == ["a", "z", "b", "c"]
    assert [n.id for n in g] == g.order()


def test_level_only_depends_on_earlier_levels():
    g = Graph([_node("d", "b", "c"), _node("c", "a"), _node("b"), _node("a")])
    level_of = {nid: i for i, level in enumerate(g.levels()) for nid in level}
    for nid in g.order():
        for dep in g.dependencies(nid):
            assert level_of[dep] < level_of[nid]


def test_cycle_fails_and_names_nodes():
    with pytest.raises(GraphConstructionError) as exc:
        Graph([_node("a", "b"), _node("b", "a")])
    assert exc.value.code == "E_CYCLIC_DEPENDENCY"
    assert "a" in exc.value.message and "b" in exc.value.message


def test_self_dependency_is_a_cycle():
    with pytest.raises(GraphConstructionError) as exc:
        Graph([_node("a", "a")])
    assert exc.value.message == "dependency cycle detected: a -> a"


def test_unknown_dependency():
    with pytest.raises(GraphConstructionError) as exc:
        Graph([_node("a", "missing")])
    assert exc.value.code == "E_UNKNOWN_DEPENDENCY"
    assert exc.value.path == "a"


def test_duplicate_id():
    with pytest.raises(GraphConstructionError) as exc:
        Graph([_node("a"), _node("a")])
    assert exc.value.code == "E_DUPLICATE_ID"


def test_dependents_and_dot():
    g = Graph([_node("b", "a"), _node("c", "a"), _node("a")])
    assert g.dependents("a") == ["b", "c"]
    dot = g.to_dot()
    assert dot.startswith("digraph {")
    assert '"b" -> "a";' in dot
    assert '"c" -> "a";' in dot


def test_empty_graph():
    g = Graph([])
    assert len(g) == 0
    assert g.levels() == []
