import threading

import pytest

from converge.core.cancel import CancelToken
from converge.core.errors import (
    ApplyError,
    CancellationError,
    CheckError,
    PlanMismatchError,
    UpstreamFailureError,
)
from converge.core.exec.apply import apply
from converge.core.exec.plan import plan
from converge.core.model import DiffEntry, Plan
from converge.core.resource.task import Status


def _run(graph, token=None, workers=4):
    token = token or CancelToken()
    return apply(graph, plan(graph, token, workers=workers), token, workers=workers)


def test_one_result_per_node(fake, graph_of):
    g = graph_of({"a": fake("a"), "b": fake("b"), "c": fake("c")}, {"c": ["a", "b"]})
    results = _run(g)
    assert [r.id for r in results] == ["a", "b", "c"]
    assert all(r.success for r in results)
    assert all(r.changed for r in results)
    assert results[0].old_state == "old"
    assert results[0].new_state == "new"


def test_nothing_to_change_is_success_without_apply(fake, graph_of):
    tasks = {n: fake(n, current="same", desired="same") for n in ("a", "b", "c")}
    g = graph_of(tasks, {"b": ["a"], "c": ["b"]})
    results = _run(g)
    assert all(r.success for r in results)
    assert not any(r.changed for r in results)
    assert all(t.applies == 0 for t in tasks.values())


def test_second_run_is_a_no_op(fake, graph_of):
    tasks = {"a": fake("a"), "b": fake("b")}
    g = graph_of(tasks, {"b": ["a"]})
    _run(g)
    results = _run(g)
    assert all(r.success and not r.changed for r in results)
    assert tasks["a"].applies == 1
    assert tasks["b"].applies == 1


def test_dependency_applied_before_dependent(fake, graph_of, recorder):
    g = graph_of(
        {"a": fake("a"), "b": fake("b"), "c": fake("c"), "d": fake("d")},
        {"b": ["a"], "c": ["a"], "d": ["b", "c"]},
    )
    _run(g)
    for dependent, dependency in [("b", "a"), ("c", "a"), ("d", "b"), ("d", "c")]:
        assert recorder.index(f"apply:end:{dependency}") < recorder.index(f"apply:start:{dependent}")


def test_failure_propagates_to_transitive_dependents(fake, graph_of):
    tasks = {
        "a": fake("a", apply_error=ApplyError(code="E_DENIED", message="permission denied")),
        "b": fake("b"),
        "c": fake("c"),
    }
    g = graph_of(tasks, {"b": ["a"], "c": ["b"]})
    results = {r.id: r for r in _run(g)}

    assert results["a"].success is False
    assert results["a"].error.code == "E_DENIED"
    for nid in ("b", "c"):
        assert results[nid].success is False
        assert isinstance(results[nid].error, UpstreamFailureError)
        assert tasks[nid].applies == 0
    assert "a" in results["b"].error.message
    assert "b" in results["c"].error.message


def test_failure_is_isolated_to_its_subtree(fake, graph_of):
    tasks = {
        "bad": fake("bad", apply_error=RuntimeError("nope")),
        "bad-child": fake("bad-child"),
        "good": fake("good"),
        "good-child": fake("good-child"),
    }
    g = graph_of(tasks, {"bad-child": ["bad"], "good-child": ["good"]})
    results = {r.id: r for r in _run(g)}

    assert isinstance(results["bad"].error, ApplyError)
    assert results["bad"].error.code == "E_APPLY_FAILED"
    assert results["bad-child"].success is False
    assert results["good"].success is True
    assert results["good-child"].success is True
    assert tasks["good-child"].applies == 1


def test_check_error_blocks_apply_and_propagates(fake, graph_of):
    tasks = {
        "a": fake("a", check_error=CheckError(code="E_IS_DIRECTORY", message="is a directory")),
        "b": fake("b"),
        "other": fake("other"),
    }
    g = graph_of(tasks, {"b": ["a"]})
    results = {r.id: r for r in _run(g)}

    assert results["a"].success is False
    assert results["a"].error.code == "E_IS_DIRECTORY"
    assert tasks["a"].applies == 0
    assert isinstance(results["b"].error, UpstreamFailureError)
    assert tasks["b"].applies == 0
    assert results["other"].success is True


def test_nodes_in_a_level_run_concurrently(fake, graph_of):
    barrier = threading.Barrier(2, timeout=5)

    def wait(_token):
        barrier.wait()

    g = graph_of({"a": fake("a", on_apply=wait), "b": fake("b", on_apply=wait)})
    results = _run(g, workers=2)
    assert all(r.success for r in results)


def test_cancel_before_next_level(fake, graph_of):
    token = CancelToken()
    started = threading.Barrier(2, timeout=5)

    def cancel_after_both_started(t):
        started.wait()
        t.cancel("interrupt")

    tasks = {
        "first": fake("first", on_apply=cancel_after_both_started),
        "sibling": fake(
            "sibling",
            on_apply=lambda _t: started.wait(),
            apply_error=ApplyError(code="E_DENIED", message="denied"),
        ),
        "second": fake("second"),
        "third": fake("third"),
    }
    g = graph_of(tasks, {"second": ["first"], "third": ["second"]})
    results = {r.id: r for r in _run(g, token=token)}

    # already-started nodes report their true outcome
    assert results["first"].success is True
    assert results["sibling"].error.code == "E_DENIED"
    assert not results["sibling"].cancelled
    for nid in ("second", "third"):
        assert isinstance(results[nid].error, CancellationError)
        assert results[nid].cancelled
        assert tasks[nid].applies == 0


def test_cancel_skips_queued_nodes_in_current_level(fake, graph_of):
    token = CancelToken()
    tasks = {
        "a": fake("a", on_apply=lambda t: t.cancel()),
        "b": fake("b"),
    }
    g = graph_of(tasks)
    results = {r.id: r for r in _run(g, token=token, workers=1)}

    assert results["a"].success is True
    assert results["b"].cancelled
    assert tasks["b"].applies == 0


def test_apply_that_does_not_converge_fails(fake, graph_of):
    class Stuck:
        def check(self, token):
            return Status(current="old", will_change=True)

        def apply(self, token):
            return None

    g = graph_of({"stuck": Stuck()})
    result = _run(g)[0]
    assert result.success is False
    assert result.error.code == "E_NOT_CONVERGED"


def test_plan_must_cover_graph(fake, graph_of):
    g = graph_of({"a": fake("a"), "b": fake("b")})
    partial = Plan(entries=(DiffEntry(id="a", current="old", will_change=True),))
    with pytest.raises(PlanMismatchError) as exc:
        apply(g, partial, CancelToken())
    assert "missing entries for b" in exc.value.message


def test_verification_returning_garbage_fails_the_node(graph_of):
    class Flaky:
        def __init__(self):
            self.applied = False

        def check(self, token):
            if self.applied:
                return None
            return Status(current="old", will_change=True)

        def apply(self, token):
            self.applied = True

    result = _run(graph_of({"flaky": Flaky()}))[0]
    assert result.success is False
    assert isinstance(result.error, CheckError)
    assert result.error.code == "E_CHECK_FAILED"
