from __future__ import annotations

from typing import Any, Callable, Optional

from converge.core.resource.shell import Shell
from converge.core.resource.task import Task
from converge.core.resource.template import Template


# kind name -> builder(raw resource mapping, file=..., path=...) -> Task
TaskFactory = Callable[..., Task]

DEFAULT_KINDS: dict[str, TaskFactory] = {
    "template": Template.from_config,
    "shell": Shell.from_config,
}


def merged_kinds(overrides: dict[str, TaskFactory] | None = None) -> dict[str, TaskFactory]:
    """Return DEFAULT_KINDS merged with optional extra kinds.

    Overrides replace kinds of the same name, and may add new ones.
    """
    merged = dict(DEFAULT_KINDS)
    if overrides:
        merged.update(overrides)
    return merged


def build_task(
    kinds: dict[str, TaskFactory], kind: str, raw: dict[str, Any], *, file: Optional[str], path: str
) -> Task:
    return kinds[kind](raw, file=file, path=path)
