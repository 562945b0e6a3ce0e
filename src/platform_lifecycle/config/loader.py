"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from platform_lifecycle.config.defaults import build_service_config
from platform_lifecycle.config.models import ServiceConfig

CONFIG_ENV_VAR = "PLATFORM_LIFECYCLE_CONFIG"

# ${NAME} or ${NAME:-fallback}; the fallback runs to the first closing brace.
_REFERENCE = re.compile(r"\$\{(?P<name>[^}:]+)(?::-(?P<fallback>[^}]*))?\}")


def _lookup(ref: re.Match[str]) -> str:
    name, fallback = ref.group("name", "fallback")
    value = os.environ.get(name, fallback)
    if value is None:
        msg = f"Environment variable '{name}' is not set and no default provided"
        raise ValueError(msg)
    return value


def resolve_env_vars(data: Any) -> Any:
    """Expand env references in every string of a parsed YAML tree."""
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(value) for value in data]
    if isinstance(data, str) and "${" in data:
        return _REFERENCE.sub(_lookup, data)
    return data


def _yaml_error(path: Path, exc: yaml.YAMLError) -> ValueError:
    where = ""
    mark = getattr(exc, "problem_mark", None)
    if mark is not None:
        where = f" at line {mark.line + 1}, column {mark.column + 1}"
    return ValueError(f"Failed to parse YAML in {path}{where}: {exc}")


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a YAML mapping from *path* with env references expanded.

    An empty file yields ``{}``.
    """
    path = Path(path)
    if not path.is_file():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise _yaml_error(path, exc) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {path}, got {type(data).__name__}"
        raise TypeError(msg)
    return resolve_env_vars(data)


def load_service_config(path: str | Path | None = None) -> ServiceConfig:
    """Load service config from built-in defaults, optionally merged with a file.

    Without an explicit *path*, ``$PLATFORM_LIFECYCLE_CONFIG`` is honoured.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or None
    overrides = load_yaml(path) if path is not None else {}
    try:
        return build_service_config(overrides)
    except ValidationError as exc:
        source = path or "built-in defaults"
        msg = f"Invalid service config ({source}):\n{exc}"
        raise ValueError(msg) from exc
