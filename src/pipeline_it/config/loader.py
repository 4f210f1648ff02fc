"""Settings loader: built-in defaults, an optional YAML file, and ``${VAR}`` references."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from pipeline_it.config.defaults import load_defaults, merge_configs
from pipeline_it.config.models import Settings
from pipeline_it.errors import ConfigurationError

logger = structlog.get_logger()

# Consulted when load_settings() gets no explicit path.
SETTINGS_ENV_VAR = "PIPELINE_IT_SETTINGS"

_REFERENCE = re.compile(
    r"""
    \$\{
        (?P<name>[^}:]+)
        (?::-(?P<default>(?:[^}\\]|\\.)*))?
    \}
    """,
    re.VERBOSE,
)


def _substitute(match: re.Match[str]) -> str:
    name = match.group("name")
    if name in os.environ:
        return os.environ[name]
    default = match.group("default")
    if default is None:
        msg = f"Environment variable '{name}' is not set and has no default"
        raise ConfigurationError(msg)
    return default.replace("\\}", "}")


def resolve_env_vars(data: Any) -> Any:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in every string of *data*."""
    if isinstance(data, str):
        return _REFERENCE.sub(_substitute, data)
    if isinstance(data, dict):
        return {key: resolve_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Parse a settings file into a mapping with references resolved."""
    path = Path(path)
    if not path.is_file():
        msg = f"Settings file not found: {path}"
        raise FileNotFoundError(msg)
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        msg = f"{path} is not valid YAML{where}: {exc}"
        raise ConfigurationError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"{path} must hold a mapping at the top level, not {type(data).__name__}"
        raise ConfigurationError(msg)
    resolved: dict[str, Any] = resolve_env_vars(data)
    return resolved


def load_settings(path: str | Path | None = None) -> Settings:
    """Build :class:`Settings` from the defaults plus *path*.

    Without *path* the file named by ``$PIPELINE_IT_SETTINGS`` is used, if set.
    """
    if path is None and os.environ.get(SETTINGS_ENV_VAR):
        path = os.environ[SETTINGS_ENV_VAR]
    data: dict[str, Any] = resolve_env_vars(load_defaults("settings"))
    if path is not None:
        data = merge_configs(data, load_yaml(path))
    try:
        settings = Settings.model_validate(data)
    except ValidationError as exc:
        msg = f"Invalid settings in {path or 'built-in defaults'}:\n{exc}"
        raise ConfigurationError(msg) from exc
    logger.debug("config.settings_loaded", source=str(path) if path else "defaults")
    return settings
