from __future__ import annotations

import threading
from typing import Callable, Optional

import pytest

from converge.core.cancel import CancelToken
from converge.core.graph.graph import Graph, Node
from converge.core.resource.task import Status


class Recorder:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[str] = []

    def record(self, event: str) -> None:
        with self._lock:
            self.events.append(event)

    def index(self, event: str) -> int:
        return self.events.index(event)


class FakeTask:
    """In-memory resource: converges `state` to `desired`."""

    def __init__(
        self,
        name: str,
        recorder: Recorder,
        *,
        current: str = "old",
        desired: str = "new",
        check_error: Optional[Exception] = None,
        apply_error: Optional[Exception] = None,
        on_apply: Optional[Callable[[CancelToken], None]] = None,
    ) -> None:
        self.name = name
        self.recorder = recorder
        self.state = current
        self.desired = desired
        self.check_error = check_error
        self.apply_error = apply_error
        self.on_apply = on_apply
        self.applies = 0

    def check(self, token: CancelToken) -> Status:
        self.recorder.record(f"check:{self.name}")
        if self.check_error is not None:
            raise self.check_error
        return Status(current=self.state, will_change=self.state != self.desired)

    def apply(self, token: CancelToken) -> None:
        self.applies += 1
        self.recorder.record(f"apply:start:{self.name}")
        if self.on_apply is not None:
            self.on_apply(token)
        if self.apply_error is not None:
            raise self.apply_error
        self.state = self.desired
        self.recorder.record(f"apply:end:{self.name}")


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def fake(recorder: Recorder) -> Callable[..., FakeTask]:
    def _make(name: str, **kwargs) -> FakeTask:
        return FakeTask(name, recorder, **kwargs)

    return _make


@pytest.fixture
def graph_of() -> Callable[..., Graph]:
    def _build(tasks: dict[str, FakeTask], deps: Optional[dict[str, list[str]]] = None) -> Graph:
        deps = deps or {}
        return Graph(
            [Node(id=nid, task=task, depends_on=tuple(deps.get(nid, [])), kind="fake") for nid, task in tasks.items()]
        )

    return _build
