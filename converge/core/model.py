from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Iterator, Optional

from rich.markup import escape

from converge.core.errors import CancellationError, ConvergeError


def _quote(s: str) -> str:
    return json.dumps(s, ensure_ascii=False)


@dataclass(frozen=True)
class DiffEntry:
    id: str
    current: str
    will_change: bool
    error: Optional[ConvergeError] = None

    def __str__(self) -> str:
        lines = [
            f"{self.id}:",
            f"\tCurrently: {_quote(self.current)}",
            f"\tWill Change: {str(self.will_change).lower()}",
        ]
        if self.error is not None:
            lines.append(f"\tError: {self.error.message}")
        return "\n".join(lines)

    def pretty(self) -> str:
        color = "red" if self.error is not None else "yellow" if self.will_change else "green"
        lines = [
            f"[bold]{escape(self.id)}[/bold]:",
            f"\tCurrently: {escape(_quote(self.current))}",
            f"\tWill Change: [{color}]{str(self.will_change).lower()}[/{color}]",
        ]
        if self.error is not None:
            lines.append(f"\tError: [red]{escape(self.error.message)}[/red]")
        return "\n".join(lines)


@dataclass(frozen=True)
class Plan:
    """Ordered DiffEntries, one per graph node, in level order."""

    entries: tuple[DiffEntry, ...]

    def __iter__(self) -> Iterator[DiffEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def by_id(self) -> dict[str, DiffEntry]:
        return {e.id: e for e in self.entries}


@dataclass(frozen=True)
class Result:
    id: str
    success: bool
    old_state: str = ""
    new_state: str = ""
    changed: bool = False
    error: Optional[ConvergeError] = None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, CancellationError)

    @property
    def description(self) -> str:
        if self.changed:
            return f"{_quote(self.old_state)} => {_quote(self.new_state)}"
        if self.error is not None:
            return _quote(self.old_state)
        return f"{_quote(self.old_state)} (no change)"

    def __str__(self) -> str:
        lines = [
            f"{self.id}:",
            f"\tStatus: {self.description}",
            f"\tSuccess: {str(self.success).lower()}",
        ]
        if self.error is not None:
            label = "Cancelled" if self.cancelled else "Error"
            lines.append(f"\t{label}: {self.error.message}")
        return "\n".join(lines)

    def pretty(self) -> str:
        color = "green" if self.success else "yellow" if self.cancelled else "red"
        lines = [
            f"[bold]{escape(self.id)}[/bold]:",
            f"\tStatus: {escape(self.description)}",
            f"\tSuccess: [{color}]{str(self.success).lower()}[/{color}]",
        ]
        if self.error is not None:
            label = "Cancelled" if self.cancelled else "Error"
            lines.append(f"\t{label}: [{color}]{escape(self.error.message)}[/{color}]")
        return "\n".join(lines)


@dataclass(frozen=True)
class RunSummary:
    total: int
    success: int

    @property
    def failures(self) -> int:
        return self.total - self.success

    @property
    def ok(self) -> bool:
        return self.failures == 0

    def __str__(self) -> str:
        return f"Apply complete. {self.total} changes, {self.success} successful, {self.failures} failed"

    def pretty(self) -> str:
        color = "red" if self.failures > 0 else "green"
        return f"[{color}]{self}[/{color}]"


@dataclass(frozen=True)
class PlanSummary:
    total: int
    will_change: int
    errors: int

    @property
    def ok(self) -> bool:
        return self.errors == 0

    def __str__(self) -> str:
        return f"Plan complete. {self.total} checks, {self.will_change} will change, {self.errors} errors"

    def pretty(self) -> str:
        color = "red" if self.errors > 0 else "yellow" if self.will_change else "green"
        return f"[{color}]{self}[/{color}]"
