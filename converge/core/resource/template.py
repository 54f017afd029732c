from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from converge.core.cancel import CancelToken
from converge.core.errors import ApplyError, CheckError, LoadError
from converge.core.resource.task import Status, reject_unknown_fields


DEFAULT_MODE = 0o600
FIELDS = frozenset({"destination", "content", "mode"})


@dataclass(frozen=True)
class Template:
    """Render fixed content into a file.

    New files get ``mode`` or 0600. Existing files keep their permission bits
    unless ``mode`` is set explicitly.
    """

    destination: str
    content: str
    mode: Optional[int] = None

    def check(self, token: CancelToken) -> Status:
        path = Path(self.destination)

        if path.is_dir():
            raise CheckError(
                code="E_IS_DIRECTORY",
                message=f'cannot template "{self.destination}", is a directory',
            )
        if not path.exists():
            return Status(current="", will_change=True)

        try:
            current = path.read_bytes().decode("utf-8")
            perm = stat.S_IMODE(path.stat().st_mode)
        except (OSError, UnicodeDecodeError) as e:
            raise CheckError(code="E_READ_FAILED", message=f"cannot read {self.destination}: {e}") from e

        will_change = current != self.content
        if self.mode is not None and perm != self.mode:
            will_change = True
        return Status(current=current, will_change=will_change)

    def apply(self, token: CancelToken) -> None:
        path = Path(self.destination)

        if path.is_dir():
            raise ApplyError(
                code="E_IS_DIRECTORY",
                message=f'cannot template "{self.destination}", is a directory',
            )

        try:
            if path.exists():
                mode = self.mode if self.mode is not None else stat.S_IMODE(path.stat().st_mode)
                with path.open("w", encoding="utf-8", newline="") as fh:
                    fh.write(self.content)
            else:
                mode = self.mode if self.mode is not None else DEFAULT_MODE
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
                with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                    fh.write(self.content)
            # umask may have masked bits on create; pin them either way
            os.chmod(path, mode)
        except OSError as e:
            raise ApplyError(code="E_WRITE_FAILED", message=f"cannot write {self.destination}: {e}") from e

    @classmethod
    def from_config(cls, raw: dict[str, Any], *, file: Optional[str], path: str) -> "Template":
        reject_unknown_fields(raw, FIELDS, file=file, path=path)

        destination = raw.get("destination")
        if not isinstance(destination, str) or not destination.strip():
            raise LoadError(
                code="E_REQUIRED_FIELD",
                message="destination is required and must be a non-empty string",
                file=file,
                path=f"{path}.destination",
            )

        content = raw.get("content", "")
        if not isinstance(content, str):
            raise LoadError(
                code="E_INVALID_TYPE",
                message="content must be a string",
                file=file,
                path=f"{path}.content",
            )

        return cls(
            destination=destination,
            content=content,
            mode=parse_mode(raw.get("mode"), file=file, path=f"{path}.mode"),
        )


def parse_mode(value: Any, *, file: Optional[str], path: str) -> Optional[int]:
    """Accept 420, "0644", "644" or "0o644"."""

    if value is None:
        return None
    if isinstance(value, bool):
        mode = None
    elif isinstance(value, int):
        mode = value
    elif isinstance(value, str):
        text = value.strip().lower().removeprefix("0o")
        try:
            mode = int(text, 8)
        except ValueError:
            mode = None
    else:
        mode = None

    if mode is None or not 0 <= mode <= 0o7777:
        raise LoadError(
            code="E_INVALID_MODE",
            message=f"mode must be an octal permission value, got {value!r}",
            file=file,
            path=path,
        )
    return mode
