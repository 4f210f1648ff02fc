"""Built-in settings shipped inside the package."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

DEFAULTS_DIR = Path(__file__).parent / "defaults"


def load_defaults(name: str = "settings") -> dict[str, Any]:
    """Return the raw (unresolved) contents of ``defaults/<name>.yaml``."""
    path = DEFAULTS_DIR / f"{name}.yaml"
    try:
        text = path.read_text()
    except FileNotFoundError:
        msg = f"No built-in defaults named '{name}' (looked for {path})"
        raise FileNotFoundError(msg) from None
    return yaml.safe_load(text) or {}


def merge_configs(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge *overrides* over *base*; nested mappings merge key by key.

    Neither argument is modified.
    """
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged
