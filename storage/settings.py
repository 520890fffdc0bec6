from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from config import storage_path

logger = structlog.get_logger(__name__)

TUTORIAL_COMPLETE_KEY = "tutorialComplete"


class SettingsStore:
    """Small persistent key/value store for tutorial state.

    Values are kept in a JSON object on disk. Writes go to a temporary file
    that then replaces the real one, so readers never see a half-written file.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = storage_path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def get_value(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._load().get(key, default)

    def set_value(self, key: str, value: Any) -> None:
        if not isinstance(key, str) or not key.strip():
            raise ValueError("key must be a non-empty string")
        with self._lock:
            data = self._load()
            data[key] = value
            self._persist(data)
        logger.debug("setting_saved", key=key, path=str(self._path))

    def clear(self) -> None:
        with self._lock:
            self._path.unlink(missing_ok=True)

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as handle:
            try:
                data = json.load(handle)
            except (json.JSONDecodeError, UnicodeDecodeError):
                logger.warning("settings_file_corrupt", path=str(self._path))
                return {}
        if isinstance(data, dict):
            return data
        return {}

    def _persist(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False, indent=2)
        except (TypeError, ValueError, OSError):
            tmp_path.unlink(missing_ok=True)
            raise
        tmp_path.replace(self._path)


__all__ = ["SettingsStore", "TUTORIAL_COMPLETE_KEY"]
