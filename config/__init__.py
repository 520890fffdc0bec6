from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

_SETTINGS_PATH = Path(__file__).with_name("settings.json")
_DEFAULT_STORAGE_PATH = Path.home() / ".tutorial" / "settings.json"


@lru_cache(maxsize=1)
def get_settings() -> Dict[str, Any]:
    """Return the parsed settings.json contents.

    The configuration is cached for subsequent lookups to avoid
    redundant file I/O, while still allowing tests to reset the cache by
    clearing ``get_settings.cache_clear()``.
    """
    with _SETTINGS_PATH.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def get_tutorial_settings() -> Dict[str, Any]:
    return dict(get_settings().get("tutorial", {}))


def storage_path(override: Optional[os.PathLike[str] | str] = None) -> Path:
    """Resolve where persisted tutorial settings live.

    ``override`` wins, then ``TUTORIAL_SETTINGS_PATH``, then settings.json,
    then a file under the user's home directory.
    """
    if override:
        return Path(override)
    env_path = os.getenv("TUTORIAL_SETTINGS_PATH")
    if env_path:
        return Path(env_path)
    configured = get_settings().get("storage", {}).get("path")
    if configured:
        return Path(configured)
    return _DEFAULT_STORAGE_PATH


__all__ = ["get_settings", "get_tutorial_settings", "storage_path"]
