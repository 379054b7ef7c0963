"""Key/value settings storage for credentials and preferences."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# 持久化的设置键
OPENAI_API_KEY = "OPENAI_API_KEY"
OPENAI_BASE_URL = "OPENAI_BASE_URL"
RATE_LIMIT = "RATE_LIMIT"

DEFAULT_SETTINGS_FILE = Path.home() / ".srt-relay" / "settings.json"


class SettingsStore:
    """Simple string key/value store. Subclasses decide where values live."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._values: Dict[str, str] = dict(initial or {})

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def set(self, key: str, value: str) -> None:
        value = str(value)
        if self._values.get(key) == value:
            return
        self._values[key] = value
        self._on_change()

    def remove(self, key: str) -> None:
        if key in self._values:
            del self._values[key]
            self._on_change()

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def _on_change(self) -> None:
        pass


class MemorySettingsStore(SettingsStore):
    """In-process store; nothing survives the process."""


class JsonSettingsStore(SettingsStore):
    """
    JSON file backed store.

    The file is read once when the store is created and rewritten after
    every change.
    """

    def __init__(self, path: Path = DEFAULT_SETTINGS_FILE):
        self.path = path
        super().__init__(self._load())

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with self.path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load settings file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {self.path}: not a JSON object")
            return {}

        return {str(k): str(v) for k, v in data.items()}

    def _on_change(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open('w', encoding='utf-8') as f:
            json.dump(self._values, f, ensure_ascii=False, indent=2)
        logger.debug(f"Settings saved to {self.path}")
