"""SRT file parsing and saving utilities."""

from __future__ import annotations

import hashlib
import re
import logging
from pathlib import Path
from typing import List, Sequence, Optional

from .models import SrtEntry

logger = logging.getLogger(__name__)

# 时间轴行：保留原始时间戳字符串，不做格式化
TIMECODE_PATTERN = re.compile(r"^\s*(\S+)\s*-->\s*(.+?)\s*$")
BLOCK_SEPARATOR = re.compile(r"\n[ \t]*\n")

MAX_FILE_SIZE = 50 * 1024 * 1024  # 50MB


class SrtParseError(ValueError):
    """Raised when subtitle content is not valid SRT."""


def _normalize(content: str) -> str:
    return content.lstrip('\ufeff').replace('\r\n', '\n').replace('\r', '\n')


def parse_srt(content: str) -> List[SrtEntry]:
    """
    Parse SRT file content into list of SrtEntry objects.

    Multi-line text is kept as-is (joined with ``\\n``) and entries with
    empty text are kept, so the entry count always matches the source.

    Args:
        content: Raw SRT file content as string

    Returns:
        List of parsed SrtEntry objects

    Raises:
        SrtParseError: if a block has no numeric index or timecode line
    """
    if not content or not content.strip():
        return []

    content = _normalize(content).strip('\n')

    entries: List[SrtEntry] = []

    for block_num, block in enumerate(BLOCK_SEPARATOR.split(content), 1):
        if not block.strip():
            continue

        lines = block.strip('\n').split('\n')
        idx_line = lines[0].strip()
        if not idx_line.isdigit():
            raise SrtParseError(f"Block {block_num}: expected subtitle number, got {idx_line!r}")

        if len(lines) < 2:
            raise SrtParseError(f"Block {block_num}: missing timecode line")

        match = TIMECODE_PATTERN.match(lines[1])
        if not match:
            raise SrtParseError(f"Block {block_num}: invalid timecode line {lines[1]!r}")

        start, end = match.groups()
        entries.append(SrtEntry(int(idx_line), start, end, "\n".join(lines[2:])))

    if not entries:
        logger.warning("No valid SRT entries found in content")

    return entries


def to_srt(entries: Sequence[SrtEntry]) -> str:
    """Serialize entries back to SRT text, renumbered from 1."""
    return "".join(e.to_srt(new_idx) for new_idx, e in enumerate(entries, 1))


def document_id(content: str) -> str:
    """Stable fingerprint of a source document, used to guard resume points."""
    return hashlib.sha256(_normalize(content).strip().encode("utf-8")).hexdigest()


def validate_srt_file(path: Path) -> Optional[str]:
    """
    Validate SRT file before processing.

    Args:
        path: Path to SRT file

    Returns:
        Error message if invalid, None if valid
    """
    if not path.exists():
        return f"File not found: {path}"

    if not path.is_file():
        return f"Not a file: {path}"

    suffix = path.suffix.lower()
    if suffix != '.srt':
        return f"Invalid file extension: {suffix} (expected .srt)"

    # 检查文件大小
    size = path.stat().st_size
    if size == 0:
        return "File is empty"
    if size > MAX_FILE_SIZE:
        return f"File too large: {size / 1024 / 1024:.1f}MB (max 50MB)"

    return None


def save_srt(entries: Sequence[SrtEntry], path: Path) -> None:
    """
    Save SrtEntry list to SRT file.

    Args:
        entries: Sequence of SrtEntry objects to save
        path: Output file path
    """
    save_srt_text(to_srt(entries), path)
    logger.info(f"Saved {len(entries)} entries to {path}")


def save_srt_text(content: str, path: Path) -> None:
    """Write already-serialized SRT text to ``path``."""
    # 确保父目录存在
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        f.write(content)
