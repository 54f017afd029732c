from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from converge.core.cancel import CancelToken
from converge.core.errors import LoadError


@dataclass(frozen=True)
class Status:
    current: str
    will_change: bool


@runtime_checkable
class Task(Protocol):
    """What every resource kind implements.

    - check: read-only probe. Raise CheckError when the current state can't be
      determined; the engine then treats the node as "will change".
    - apply: converge to the desired state. Raise ApplyError on failure.
      Calling it twice in a row must leave check() reporting no change.
    """

    def check(self, token: CancelToken) -> Status: ...

    def apply(self, token: CancelToken) -> None: ...


# handled by the loader for every kind
COMMON_FIELDS = frozenset({"id", "kind", "depends_on"})


def reject_unknown_fields(raw: dict[str, Any], fields: frozenset[str], *, file: Optional[str], path: str) -> None:
    unknown = sorted(str(k) for k in raw if k not in fields and k not in COMMON_FIELDS)
    if unknown:
        raise LoadError(
            code="E_UNKNOWN_FIELD",
            message=f"unknown field(s): {', '.join(unknown)}; allowed: {', '.join(sorted(fields))}",
            file=file,
            path=f"{path}.{unknown[0]}",
        )
