from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Mapping, Optional, cast

import yaml

from converge.core.errors import ConvergeError, GraphConstructionError, LoadError
from converge.core.graph.graph import Graph, Node
from converge.core.resource.registry import TaskFactory, build_task, merged_kinds


log = logging.getLogger(__name__)

PARAM_RE = re.compile(r"\{\{\s*param\s+\"([^\"]+)\"\s*\}\}")

# fields that are structural, never templated
STRUCTURAL_FIELDS = {"id", "kind", "depends_on"}


def load_module(path: str) -> dict[str, Any]:
    """Load a YAML/JSON module file.

    Returns a dict with keys: params, resources, __file__.
    Does not coerce types; validate_module owns shape checking.
    """

    p = Path(path)
    if not p.exists():
        raise LoadError(
            code="E_FILE_NOT_FOUND",
            message="file does not exist",
            file=str(p),
        )

    suffix = p.suffix.lower()
    try:
        raw_text = p.read_text(encoding="utf-8")
    except OSError as e:  # pragma: no cover
        raise LoadError(code="E_FILE_READ", message=str(e), file=str(p)) from e

    try:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(raw_text)
        elif suffix == ".json":
            data = json.loads(raw_text)
        else:
            raise LoadError(
                code="E_UNSUPPORTED_FORMAT",
                message="supported formats are .yaml/.yml and .json",
                file=str(p),
            )
    except LoadError:
        raise
    except (yaml.YAMLError, ValueError) as e:
        code = "E_YAML_PARSE" if suffix in {".yaml", ".yml"} else "E_JSON_PARSE"
        raise LoadError(code=code, message=str(e), file=str(p)) from e

    if not isinstance(data, dict):
        raise LoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )

    return {
        "params": data.get("params"),
        "resources": data.get("resources"),
        "__file__": str(p),
    }


def validate_module(
    module: dict[str, Any],
    params: Optional[Mapping[str, str]] = None,
    kinds: Optional[dict[str, TaskFactory]] = None,
) -> tuple[Optional[Graph], list[ConvergeError]]:
    """Resolve params, build tasks and construct the graph.

    Returns (graph, errors). Graph is None when errors exist.
    """

    file = cast(Optional[str], module.get("__file__"))
    kinds = kinds if kinds is not None else merged_kinds()
    errors: list[ConvergeError] = []

    values, param_errors = _resolve_params(module.get("params"), params or {}, file)
    errors.extend(param_errors)
    declared = set(module["params"]) if isinstance(module.get("params"), dict) else set()

    resources = module.get("resources")
    if not isinstance(resources, list):
        errors.append(
            LoadError(
                code="E_REQUIRED_FIELD",
                message="resources is required and must be an array",
                file=file,
                path="resources",
            )
        )
        return None, _sorted(errors)

    nodes: list[Node] = []
    index_of: dict[str, int] = {}

    for i, raw in enumerate(resources):
        res_path = f"resources[{i}]"
        if not isinstance(raw, dict):
            errors.append(
                LoadError(code="E_INVALID_TYPE", message="resource must be an object", file=file, path=res_path)
            )
            continue

        rid = raw.get("id")
        if not isinstance(rid, str) or not rid.strip():
            errors.append(
                LoadError(
                    code="E_REQUIRED_FIELD",
                    message="id is required and must be a non-empty string",
                    file=file,
                    path=f"{res_path}.id",
                )
            )
            continue

        if rid in index_of:
            errors.append(
                GraphConstructionError(
                    code="E_DUPLICATE_ID",
                    message=f"duplicate resource id: {rid}",
                    file=file,
                    path=f"{res_path}.id",
                )
            )
            continue

        kind = raw.get("kind")
        if not isinstance(kind, str) or kind not in kinds:
            errors.append(
                LoadError(
                    code="E_UNKNOWN_KIND",
                    message=f"kind must be one of {sorted(kinds)}",
                    file=file,
                    path=f"{res_path}.kind",
                )
            )
            continue

        deps = raw.get("depends_on", [])
        if deps is None:
            deps = []
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            errors.append(
                LoadError(
                    code="E_INVALID_TYPE",
                    message="depends_on must be an array of strings",
                    file=file,
                    path=f"{res_path}.depends_on",
                )
            )
            continue

        try:
            rendered = {
                k: (v if k in STRUCTURAL_FIELDS else _render(v, values, declared, file=file, path=f"{res_path}.{k}"))
                for k, v in raw.items()
            }
            task = build_task(kinds, kind, rendered, file=file, path=res_path)
        except LoadError as e:
            errors.append(e)
            continue

        index_of[rid] = i
        nodes.append(Node(id=rid, task=task, depends_on=tuple(deps), kind=kind))

    # Referential integrity checks, with document paths.
    for n in nodes:
        for di, dep in enumerate(n.depends_on):
            if dep not in index_of:
                errors.append(
                    GraphConstructionError(
                        code="E_UNKNOWN_DEPENDENCY",
                        message=f"depends_on references unknown id: {dep}",
                        file=file,
                        path=f"resources[{index_of[n.id]}].depends_on[{di}]",
                    )
                )

    if errors:
        return None, _sorted(errors)

    try:
        graph = Graph(nodes, file=file)
    except GraphConstructionError as e:
        return None, [e]
    return graph, []


def load(
    path: str,
    params: Optional[Mapping[str, str]] = None,
    kinds: Optional[dict[str, TaskFactory]] = None,
) -> Graph:
    """Load and validate a module, raising its first error."""
    graph, errors = validate_module(load_module(path), params, kinds)
    if errors or graph is None:
        raise errors[0]
    return graph


def _resolve_params(
    declared: Any, supplied: Mapping[str, str], file: Optional[str]
) -> tuple[dict[str, str], list[ConvergeError]]:
    errors: list[ConvergeError] = []
    if declared is None:
        declared = {}
    if not isinstance(declared, dict):
        return {}, [
            LoadError(
                code="E_INVALID_TYPE",
                message="params must be a mapping of name -> {default: ...}",
                file=file,
                path="params",
            )
        ]

    values: dict[str, str] = {}
    for name, definition in declared.items():
        if definition is None:
            definition = {}
        if not isinstance(name, str) or not isinstance(definition, dict):
            errors.append(
                LoadError(
                    code="E_INVALID_TYPE",
                    message="each param must map a name to an object",
                    file=file,
                    path=f"params.{name}",
                )
            )
            continue

        if name in supplied:
            values[name] = supplied[name]
        elif "default" in definition and _is_scalar(definition["default"]):
            values[name] = _scalar_str(definition["default"])
        elif "default" in definition:
            errors.append(
                LoadError(
                    code="E_INVALID_TYPE",
                    message="param default must be a string, number or boolean",
                    file=file,
                    path=f"params.{name}.default",
                )
            )
        else:
            errors.append(
                LoadError(
                    code="E_MISSING_PARAM",
                    message=f"param {name!r} has no default and was not supplied",
                    file=file,
                    path=f"params.{name}",
                )
            )

    # one param set is shared by every module of an invocation
    ignored = sorted(set(supplied) - set(declared))
    if ignored:
        log.debug("%s: ignoring params not declared by the module: %s", file, ", ".join(ignored))

    return values, errors


def _render(value: Any, values: dict[str, str], declared: set[str], *, file: Optional[str], path: str) -> Any:
    if isinstance(value, str):

        def sub(m: re.Match[str]) -> str:
            name = m.group(1)
            if name not in values:
                if name in declared:
                    # already reported by _resolve_params
                    return m.group(0)
                raise LoadError(
                    code="E_UNKNOWN_PARAM",
                    message=f"reference to undeclared param {name!r}",
                    file=file,
                    path=path,
                )
            return values[name]

        return PARAM_RE.sub(sub, value)
    if isinstance(value, list):
        return [_render(v, values, declared, file=file, path=f"{path}[{i}]") for i, v in enumerate(value)]
    if isinstance(value, dict):
        return {k: _render(v, values, declared, file=file, path=f"{path}.{k}") for k, v in value.items()}
    return value


def _is_scalar(v: Any) -> bool:
    return isinstance(v, (str, int, float, bool))


def _scalar_str(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


def _sorted(errors: list[ConvergeError]) -> list[ConvergeError]:
    return sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
