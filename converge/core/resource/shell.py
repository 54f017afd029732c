from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Any, Optional

from converge.core.cancel import CancelToken
from converge.core.errors import ApplyError, CheckError, ConvergeError, LoadError
from converge.core.resource.task import Status, reject_unknown_fields


DEFAULT_INTERPRETER = "sh"
DEFAULT_TIMEOUT_S = 300.0
FIELDS = frozenset({"check", "apply", "interpreter", "dir", "timeout"})


@dataclass(frozen=True)
class Shell:
    """Run a check command and, when it exits non-zero, an apply command.

    The check command must not mutate anything; its stdout is the current state.
    """

    check_cmd: str
    apply_cmd: str
    interpreter: str = DEFAULT_INTERPRETER
    dir: Optional[str] = None
    timeout_s: float = DEFAULT_TIMEOUT_S

    def _run(self, command: str, error_cls: type[ConvergeError]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                [self.interpreter, "-c", command],
                cwd=self.dir,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise error_cls(
                code="E_TIMEOUT",
                message=f"command timed out after {self.timeout_s:g}s: {command}",
            ) from e
        except OSError as e:
            raise error_cls(
                code="E_EXEC_FAILED",
                message=f"cannot run {self.interpreter}: {e}",
            ) from e

    def check(self, token: CancelToken) -> Status:
        token.raise_if_cancelled()
        proc = self._run(self.check_cmd, CheckError)
        return Status(current=(proc.stdout or "").strip(), will_change=proc.returncode != 0)

    def apply(self, token: CancelToken) -> None:
        token.raise_if_cancelled()
        proc = self._run(self.apply_cmd, ApplyError)
        if proc.returncode != 0:
            output = ((proc.stdout or "") + (proc.stderr or "")).strip()
            message = f"apply exited with status {proc.returncode}"
            if output:
                message += f": {output}"
            raise ApplyError(code="E_APPLY_EXIT_STATUS", message=message)

    @classmethod
    def from_config(cls, raw: dict[str, Any], *, file: Optional[str], path: str) -> "Shell":
        reject_unknown_fields(raw, FIELDS, file=file, path=path)

        for key in ("check", "apply"):
            v = raw.get(key)
            if not isinstance(v, str) or not v.strip():
                raise LoadError(
                    code="E_REQUIRED_FIELD",
                    message=f"{key} is required and must be a non-empty string",
                    file=file,
                    path=f"{path}.{key}",
                )

        interpreter = raw.get("interpreter", DEFAULT_INTERPRETER)
        if not isinstance(interpreter, str) or not interpreter.strip():
            raise LoadError(
                code="E_INVALID_TYPE",
                message="interpreter must be a non-empty string",
                file=file,
                path=f"{path}.interpreter",
            )

        workdir = raw.get("dir")
        if workdir is not None and not isinstance(workdir, str):
            raise LoadError(
                code="E_INVALID_TYPE",
                message="dir must be a string",
                file=file,
                path=f"{path}.dir",
            )

        timeout = raw.get("timeout", DEFAULT_TIMEOUT_S)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise LoadError(
                code="E_INVALID_TYPE",
                message="timeout must be a positive number of seconds",
                file=file,
                path=f"{path}.timeout",
            )

        return cls(
            check_cmd=raw["check"],
            apply_cmd=raw["apply"],
            interpreter=interpreter,
            dir=workdir,
            timeout_s=float(timeout),
        )
