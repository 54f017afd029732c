from __future__ import annotations

import json
import logging
from typing import Optional

import typer

from converge.core.cancel import CancelToken, graceful_exit
from converge.core.config import Settings, load_settings
from converge.core.errors import ConfigError, ConvergeError, LoadError, PlanMismatchError
from converge.core.exec.apply import apply as run_apply
from converge.core.exec.plan import plan as run_plan
from converge.core.exec.summary import summarize, summarize_plan
from converge.core.graph.graph import Graph
from converge.core.io.load_module import load_module, validate_module
from converge.core.logging import configure_logging
from converge.core.render import Renderer

app = typer.Typer(add_completion=False, no_args_is_help=True)
log = logging.getLogger("converge")

PARAM_HELP = "Module parameter as name=value (repeatable)"
PARAMS_JSON_HELP = "Module parameters as a JSON object"


class _ModuleFailed(Exception):
    def __init__(self, exit_code: int) -> None:
        super().__init__(exit_code)
        self.exit_code = exit_code


@app.callback()
def _callback(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(None, "--config", help="YAML settings file"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Concurrent nodes per level"),
    color: Optional[bool] = typer.Option(None, "--color/--no-color", help="Force colored output on/off"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG|INFO|WARNING|ERROR"),
) -> None:
    """converge: plan and apply dependency-ordered resource modules."""
    try:
        settings = load_settings(config, {"workers": workers, "color": color, "log_level": log_level})
    except ConfigError as e:
        _print_errors([e])
        raise typer.Exit(code=2)

    configure_logging(level=settings.log_level_value, force=True)
    ctx.obj = settings


@app.command("validate")
def validate(
    path: str = typer.Argument(..., help="Path to a module file (.yaml/.yml/.json)"),
    param: list[str] = typer.Option([], "--param", "-p", help=PARAM_HELP),
    params_json: Optional[str] = typer.Option(None, "--params-json", help=PARAMS_JSON_HELP),
) -> None:
    """Load a module and check its graph without touching the system."""
    params = _parse_params(param, params_json)
    try:
        graph = _load_graph(path, params)
    except _ModuleFailed as e:
        raise typer.Exit(code=e.exit_code)

    typer.echo(f"OK: {len(graph)} resources in {len(graph.levels())} levels")


@app.command("graph")
def graph_cmd(
    path: str = typer.Argument(..., help="Path to a module file (.yaml/.yml/.json)"),
    param: list[str] = typer.Option([], "--param", "-p", help=PARAM_HELP),
    params_json: Optional[str] = typer.Option(None, "--params-json", help=PARAMS_JSON_HELP),
) -> None:
    """Print the module's dependency graph in Graphviz DOT format."""
    params = _parse_params(param, params_json)
    try:
        graph = _load_graph(path, params)
    except _ModuleFailed as e:
        raise typer.Exit(code=e.exit_code)

    typer.echo(graph.to_dot())


@app.command("plan")
def plan_cmd(
    ctx: typer.Context,
    paths: list[str] = typer.Argument(..., help="Module files to plan"),
    param: list[str] = typer.Option([], "--param", "-p", help=PARAM_HELP),
    params_json: Optional[str] = typer.Option(None, "--params-json", help=PARAMS_JSON_HELP),
) -> None:
    """Check every resource and show what would change."""
    settings: Settings = ctx.obj
    params = _parse_params(param, params_json)
    out = Renderer(settings.use_color())

    token = CancelToken()
    errored = False
    with graceful_exit(token):
        for path in paths:
            log.info("planning %s", path)
            try:
                graph = _load_graph(path, params)
            except _ModuleFailed as e:
                raise typer.Exit(code=e.exit_code)

            plan = run_plan(graph, token, workers=settings.workers)
            for entry in plan:
                out.line(entry)

            summary = summarize_plan(plan)
            out.summary(summary)
            if not summary.ok:
                errored = True

    if errored:
        raise typer.Exit(code=1)


@app.command("apply")
def apply_cmd(
    ctx: typer.Context,
    paths: list[str] = typer.Argument(..., help="Module files to apply"),
    param: list[str] = typer.Option([], "--param", "-p", help=PARAM_HELP),
    params_json: Optional[str] = typer.Option(None, "--params-json", help=PARAMS_JSON_HELP),
    keep_going: bool = typer.Option(
        False,
        "--keep-going",
        help="Continue with the next module when one fails to load",
    ),
) -> None:
    """Apply what needs to change, in dependency order."""
    settings: Settings = ctx.obj
    params = _parse_params(param, params_json)
    out = Renderer(settings.use_color())

    token = CancelToken()
    failed = False
    with graceful_exit(token):
        for path in paths:
            log.info("applying %s", path)
            try:
                graph = _load_graph(path, params)
            except _ModuleFailed as e:
                if keep_going:
                    failed = True
                    continue
                raise typer.Exit(code=e.exit_code)

            plan = run_plan(graph, token, workers=settings.workers)
            try:
                results = run_apply(graph, plan, token, workers=settings.workers)
            except PlanMismatchError as e:
                log.error("plan does not match graph for %s", path)
                _print_errors([e])
                raise typer.Exit(code=1)

            for result in results:
                out.line(result)

            summary = summarize(results)
            out.summary(summary)
            if not summary.ok:
                failed = True

    if failed:
        raise typer.Exit(code=1)


def _load_graph(path: str, params: dict[str, str]) -> Graph:
    try:
        module = load_module(path)
    except LoadError as e:
        log.error("cannot load %s: %s", path, e.code)
        _print_errors([e])
        raise _ModuleFailed(1)

    graph, errors = validate_module(module, params)
    if errors or graph is None:
        log.error("invalid module %s: %d error(s)", path, len(errors))
        _print_errors(errors)
        raise _ModuleFailed(2)
    return graph


def _parse_params(pairs: list[str], params_json: Optional[str]) -> dict[str, str]:
    params: dict[str, str] = {}
    if params_json:
        try:
            raw = json.loads(params_json)
        except ValueError as e:
            _print_errors([LoadError(code="E_PARAMS_JSON", message=str(e), path="params-json")])
            raise typer.Exit(code=2)
        if not isinstance(raw, dict):
            _print_errors(
                [LoadError(code="E_PARAMS_JSON", message="params must be a JSON object", path="params-json")]
            )
            raise typer.Exit(code=2)
        params.update({str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items()})

    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            _print_errors(
                [LoadError(code="E_PARAM_FORMAT", message=f"expected name=value, got {pair!r}", path="param")]
            )
            raise typer.Exit(code=2)
        params[name.strip()] = value
    return params


def _print_errors(errors: list[ConvergeError]) -> None:
    errors_sorted = sorted(errors, key=lambda e: (e.file or "", e.path or "", e.code))
    for e in errors_sorted:
        typer.echo(str(e), err=True)


def main() -> None:
    app(prog_name="converge")


cli = typer.main.get_command(app)

if __name__ == "__main__":
    main()
