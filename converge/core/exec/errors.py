from __future__ import annotations

from dataclasses import replace

from converge.core.errors import ConvergeError


def attach(err: ConvergeError, node_id: str, file: str | None) -> ConvergeError:
    """Return err located at node_id (keeps a location the task already set)."""
    return replace(err, path=err.path or node_id, file=err.file or file)


def wrap(exc: Exception, error_cls: type[ConvergeError], code: str, node_id: str, file: str | None) -> ConvergeError:
    """Convert an unexpected task exception into a domain error envelope."""
    if isinstance(exc, ConvergeError):
        return attach(exc, node_id, file)
    return error_cls(
        code=code,
        message=str(exc) or exc.__class__.__name__,
        file=file,
        path=node_id,
    )
