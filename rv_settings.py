from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional


SETTINGS_FILE = "runview_settings.json"


@dataclass
class ViewSettings:
    # width/height are the PNG size in pixels for graphs and map
    width: int = 800
    height: int = 600
    units_index: int = 0


def default_settings_path() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.join(os.path.expanduser("~"), ".config")
    return os.path.join(base, SETTINGS_FILE)


def _settings_from_dict(data: Dict[str, Any]) -> ViewSettings:
    kwargs: Dict[str, int] = {}
    for f in fields(ViewSettings):
        if f.name not in data:
            continue
        value = data[f.name]
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Setting '{f.name}' must be an integer, got {value!r}")
        kwargs[f.name] = value
    return ViewSettings(**kwargs)


def load_settings(path: Optional[str] = None) -> ViewSettings:
    """Read settings, falling back to defaults when the file is missing or bad."""
    path = path or default_settings_path()
    if not os.path.exists(path):
        return ViewSettings()
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise ValueError("settings file must hold a JSON object")
        return _settings_from_dict(data)
    except (OSError, ValueError) as exc:
        logging.warning("Ignoring settings file %s: %s", path, exc)
        return ViewSettings()


def save_settings(settings: ViewSettings, path: Optional[str] = None) -> str:
    path = path or default_settings_path()
    parent = os.path.dirname(path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    tmp_path = path + ".tmp"
    try:
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(asdict(settings), fh, indent=2)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logging.debug("Saved settings: %s", path)
    return path
