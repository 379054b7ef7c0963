"""Configuration and constants."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from .models import LanguagePair
from .settings import (
    SettingsStore,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
    RATE_LIMIT,
)

# Load environment variables once
load_dotenv()

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TO_LANGUAGE = "Hinglish"
DEFAULT_BATCH_SIZES = [10, 50]
DEFAULT_RATE_LIMIT = 60

# 冷却窗口固定为 60 秒
COOLDOWN_WINDOW_SECONDS = 60.0

MAX_BATCH_SIZE = 200


@dataclass
class TranslatorConfig:
    """Configuration for a translation job."""

    # API settings
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model_name: str = DEFAULT_MODEL

    # Language settings
    from_language: str = ""
    to_language: str = DEFAULT_TO_LANGUAGE
    system_instruction: str = ""

    # Request settings
    temperature: float = 0.0
    batch_sizes: List[int] = field(default_factory=lambda: list(DEFAULT_BATCH_SIZES))
    use_moderator: bool = True
    use_structured_mode: bool = True
    rate_limit: int = DEFAULT_RATE_LIMIT

    store: Optional[SettingsStore] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        """Load API key from environment if not provided."""
        if self.api_key is None:
            self.api_key = os.environ.get("OPENAI_API_KEY")

    @classmethod
    def from_settings(cls, store: SettingsStore, **overrides) -> "TranslatorConfig":
        """
        Create config from a settings store.

        Persisted values are read once here; later edits made through the
        ``set_*`` methods are written back to the same store.
        """
        config = cls(**overrides)
        config.store = store

        stored_key = store.get(OPENAI_API_KEY)
        if stored_key:
            config.api_key = stored_key

        stored_rate = store.get(RATE_LIMIT)
        if stored_rate:
            try:
                config.rate_limit = int(float(stored_rate))
            except ValueError:
                pass

        # 与手动设置同一路径，保证自定义端点时关闭审核与结构化模式
        config._apply_base_url(store.get(OPENAI_BASE_URL) or os.environ.get("OPENAI_BASE_URL"))
        return config

    @classmethod
    def from_args(cls, args, store: Optional[SettingsStore] = None) -> "TranslatorConfig":
        """Create config from argparse namespace."""
        overrides = dict(
            model_name=getattr(args, 'model_name', DEFAULT_MODEL),
            from_language=getattr(args, 'from_language', "") or "",
            to_language=getattr(args, 'to_language', DEFAULT_TO_LANGUAGE),
            system_instruction=getattr(args, 'system_instruction', "") or "",
            temperature=getattr(args, 'temperature', 0.0),
            batch_sizes=list(getattr(args, 'batch_sizes', None) or DEFAULT_BATCH_SIZES),
        )
        if store is not None:
            config = cls.from_settings(store, **overrides)
        else:
            config = cls(**overrides)
            config._apply_base_url(os.environ.get("OPENAI_BASE_URL"))

        if getattr(args, 'api_key', None):
            config.set_api_key(args.api_key)
        if getattr(args, 'base_url', None):
            config.set_base_url(args.base_url)
        if getattr(args, 'rate_limit', None):
            config.set_rate_limit(args.rate_limit)
        if getattr(args, 'no_moderator', False):
            config.use_moderator = False
        if getattr(args, 'no_structured', False):
            config.use_structured_mode = False

        return config

    @property
    def language_pair(self) -> LanguagePair:
        return LanguagePair(self.from_language, self.to_language)

    @property
    def batch_size_range(self) -> tuple[int, int]:
        """(min, max) batch size; a single value means a fixed size."""
        sizes = self.batch_sizes or DEFAULT_BATCH_SIZES
        return min(sizes), max(sizes)

    def set_api_key(self, value: str) -> None:
        self.api_key = value
        if self.store is not None:
            self.store.set(OPENAI_API_KEY, value)

    def set_base_url(self, value: Optional[str]) -> None:
        """Set a custom API endpoint, persisting it (or clearing it when empty)."""
        value = value or None
        if self.store is not None:
            if value:
                self.store.set(OPENAI_BASE_URL, value)
            else:
                self.store.remove(OPENAI_BASE_URL)
        self._apply_base_url(value)

    def _apply_base_url(self, value: Optional[str]) -> None:
        # 只在 空 -> 非空 时关闭一次；之后用户手动重新开启不会被覆盖
        if not self.base_url and value:
            self.use_moderator = False
            self.use_structured_mode = False
        self.base_url = value or None

    def set_rate_limit(self, value: int) -> None:
        self.rate_limit = int(value)
        if self.store is not None:
            self.store.set(RATE_LIMIT, str(self.rate_limit))

    def validate(self) -> Optional[str]:
        """
        Validate configuration.

        Returns:
            Error message if invalid, None if valid
        """
        if not self.api_key:
            return "API key is required. Set OPENAI_API_KEY or use --api-key"

        if not self.to_language:
            return "Target language is required"

        low, high = self.batch_size_range
        if low < 1 or high > MAX_BATCH_SIZE:
            return f"Batch sizes must be 1-{MAX_BATCH_SIZE}, got {self.batch_sizes}"

        if self.temperature < 0 or self.temperature > 2:
            return f"Temperature must be 0-2, got {self.temperature}"

        if self.rate_limit < 1:
            return f"Rate limit must be at least 1 RPM, got {self.rate_limit}"

        return None


# Supported file extensions
SUPPORTED_EXTENSIONS = {".srt"}

# Progress file suffix
PROGRESS_SUFFIX = ".progress.json"
