"""Data models for subtitle entries and translation results."""

from __future__ import annotations
from dataclasses import dataclass


@dataclass
class SrtEntry:
    """Represents a single subtitle entry in SRT format.

    Timestamps are kept as the raw strings found in the source file so that
    re-serializing a document never alters them.
    """

    index: int
    start: str
    end: str
    text: str

    @property
    def timecode(self) -> str:
        """Return the timecode line in SRT format."""
        return f"{self.start} --> {self.end}"

    def to_srt(self, new_idx: int | None = None) -> str:
        """Convert entry to SRT format string."""
        idx = new_idx if new_idx is not None else self.index
        return f"{idx}\n{self.timecode}\n{self.text}\n\n"

    def copy(self, **changes) -> "SrtEntry":
        """Create a copy with optional field changes."""
        return SrtEntry(
            index=changes.get('index', self.index),
            start=changes.get('start', self.start),
            end=changes.get('end', self.end),
            text=changes.get('text', self.text),
        )


@dataclass(frozen=True)
class LanguagePair:
    """源语言 / 目标语言。from_language 为空表示自动识别。"""
    from_language: str
    to_language: str

    def describe(self) -> str:
        source = f"{self.from_language} " if self.from_language else ""
        return f"{source}to {self.to_language}"


@dataclass(frozen=True)
class TranslationOutput:
    """单行的最终翻译结果。index 从 1 开始，相对于本次提交的行。"""
    index: int
    final_transform: str
