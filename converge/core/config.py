from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from converge.core.errors import ConfigError
from converge.core.exec.workers import DEFAULT_WORKERS


COLOR_MODES = ("auto", "always", "never")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

ENV_WORKERS = "CONVERGE_WORKERS"
ENV_COLOR = "CONVERGE_COLOR"
ENV_LOG_LEVEL = "CONVERGE_LOG_LEVEL"


@dataclass(frozen=True)
class Settings:
    workers: int = DEFAULT_WORKERS
    color: str = "auto"
    log_level: str = "WARNING"

    def use_color(self, stream: Any = None) -> bool:
        if self.color == "always":
            return True
        if self.color == "never" or os.environ.get("NO_COLOR"):
            return False
        stream = stream if stream is not None else sys.stdout
        isatty = getattr(stream, "isatty", None)
        return bool(isatty and isatty())

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level)


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Load settings overrides from a YAML file.

    Format:
      workers: 8
      color: auto|always|never
      log_level: DEBUG|INFO|WARNING|ERROR
    """
    p = Path(path)
    raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(code="E_CONFIG_INVALID", message="config file must be a mapping", file=str(p))

    unknown = sorted(set(raw) - {"workers", "color", "log_level"})
    if unknown:
        raise ConfigError(
            code="E_CONFIG_INVALID",
            message=f"unknown config keys: {', '.join(map(str, unknown))}",
            file=str(p),
        )
    return dict(raw)


def from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    env = os.environ if environ is None else environ
    out: dict[str, Any] = {}
    if env.get(ENV_WORKERS):
        out["workers"] = env[ENV_WORKERS]
    if env.get(ENV_COLOR):
        out["color"] = env[ENV_COLOR]
    if env.get(ENV_LOG_LEVEL):
        out["log_level"] = env[ENV_LOG_LEVEL]
    return out


def merged_settings(*layers: Optional[Mapping[str, Any]]) -> Settings:
    """Apply override layers (lowest precedence first) onto the defaults.

    None values inside a layer are ignored so unset CLI flags fall through.
    """
    settings = Settings()
    for layer in layers:
        if not layer:
            continue
        for key, value in layer.items():
            if value is None:
                continue
            settings = replace(settings, **{key: _coerce(key, value)})
    return settings


def load_settings(
    config_file: str | None,
    cli: Optional[Mapping[str, Any]] = None,
    environ: Mapping[str, str] | None = None,
) -> Settings:
    """defaults < config file < environment < CLI flags."""
    file_layer: dict[str, Any] = {}
    if config_file:
        try:
            file_layer = load_config_file(config_file)
        except FileNotFoundError as e:
            raise ConfigError(
                code="E_CONFIG_NOT_FOUND",
                message=f"config file not found: {config_file}",
                file=config_file,
            ) from e
        except yaml.YAMLError as e:
            raise ConfigError(code="E_CONFIG_INVALID", message=str(e), file=config_file) from e
    return merged_settings(file_layer, from_env(environ), cli)


def _coerce(key: str, value: Any) -> Any:
    if key == "workers":
        try:
            workers = int(value)
        except (TypeError, ValueError):
            workers = 0
        if isinstance(value, bool) or workers < 1:
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message=f"workers must be a positive integer, got {value!r}",
                path="workers",
            )
        return workers

    if key == "color":
        if isinstance(value, bool):
            return "always" if value else "never"
        color = str(value).strip().lower()
        if color not in COLOR_MODES:
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message=f"color must be one of {list(COLOR_MODES)}, got {value!r}",
                path="color",
            )
        return color

    if key == "log_level":
        level = str(value).strip().upper()
        if level not in LOG_LEVELS:
            raise ConfigError(
                code="E_CONFIG_INVALID",
                message=f"log_level must be one of {list(LOG_LEVELS)}, got {value!r}",
                path="log_level",
            )
        return level

    raise ConfigError(code="E_CONFIG_INVALID", message=f"unknown setting: {key}", path=key)
