from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ConvergeError(Exception):
    """Base error envelope. Engine code attaches these to entries/results instead of raising."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        loc = ":".join(parts) if parts else "<module>"
        return f"{loc}: {self.code}: {self.message}"


class LoadError(ConvergeError):
    pass


class ConfigError(ConvergeError):
    pass


class GraphConstructionError(ConvergeError):
    pass


class CheckError(ConvergeError):
    pass


class ApplyError(ConvergeError):
    pass


class UpstreamFailureError(ApplyError):
    pass


class CancellationError(ConvergeError):
    pass


class PlanMismatchError(ConvergeError):
    pass
