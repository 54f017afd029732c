from __future__ import annotations

from typing import Union

import typer
from rich.console import Console

from converge.core.model import DiffEntry, PlanSummary, Result, RunSummary

Renderable = Union[DiffEntry, Result, RunSummary, PlanSummary]


class Renderer:
    """Print entries/results plainly, or as rich markup when color is on."""

    def __init__(self, color: bool) -> None:
        self.color = color
        self._console = Console(force_terminal=True, highlight=False, soft_wrap=True) if color else None

    def line(self, item: Renderable) -> None:
        if self._console is not None:
            self._console.print(item.pretty())
        else:
            typer.echo(str(item))

    def summary(self, item: Union[RunSummary, PlanSummary]) -> None:
        if self._console is not None:
            self._console.print()
        else:
            typer.echo("")
        self.line(item)
