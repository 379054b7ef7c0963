"""
SRT Relay - Streaming LLM subtitle translator with stop and resume.

Features:
- Line-by-line translation with streamed partial output
- Stop at any time and resume only the untranslated remainder
- Automatic recovery point after network or API failures
- Variable batch sizes with fallback on malformed answers
- Per-service request rate limiting and token usage estimates
"""

__version__ = "1.0.0"

from .models import SrtEntry, LanguagePair, TranslationOutput
from .parser import parse_srt, to_srt, save_srt, validate_srt_file, SrtParseError
from .config import TranslatorConfig
from .settings import SettingsStore, MemorySettingsStore, JsonSettingsStore
from .cooldown import CooldownContext
from .stream import StreamBuffer, StreamEvent, StreamEventKind, StreamSubscription
from .translator import (
    Translator,
    StructuredTranslator,
    TranslatorServices,
    TranslatorOptions,
    ModerationService,
    TranslationError,
    ModerationError,
    create_translator,
)
from .controller import (
    JobController,
    JobState,
    JobOutcome,
    CancellationToken,
    JobStateError,
    ResumePointError,
)
from .usage import UsageInfo, UsageTracker
from .progress import JobProgress, save_progress, load_progress

__all__ = [
    # Models
    "SrtEntry",
    "LanguagePair",
    "TranslationOutput",
    "UsageInfo",
    "UsageTracker",
    "JobProgress",
    # Parsing
    "parse_srt",
    "to_srt",
    "save_srt",
    "validate_srt_file",
    "SrtParseError",
    # Configuration
    "TranslatorConfig",
    "SettingsStore",
    "MemorySettingsStore",
    "JsonSettingsStore",
    # Translation
    "Translator",
    "StructuredTranslator",
    "TranslatorServices",
    "TranslatorOptions",
    "ModerationService",
    "TranslationError",
    "ModerationError",
    "create_translator",
    "CooldownContext",
    # Streaming
    "StreamBuffer",
    "StreamEvent",
    "StreamEventKind",
    "StreamSubscription",
    # Job control
    "JobController",
    "JobState",
    "JobOutcome",
    "CancellationToken",
    "JobStateError",
    "ResumePointError",
    # Progress
    "save_progress",
    "load_progress",
]
