"""Text processing utilities."""

from __future__ import annotations

import json
import re
from typing import List, Optional, Sequence, Tuple


# 行首编号，如 "12. ", "3) ", "4: "
NUMBERED_LINE = re.compile(r'^\s*(\d+)\s*[\.:\)]\s?(.*)$')

CODE_FENCE = re.compile(r'^```(?:json)?\s*|\s*```$')

JSON_ESCAPES = {
    'n': ' ',
    'r': '',
    't': ' ',
    'b': '',
    'f': '',
    '"': '"',
    '\\': '\\',
    '/': '/',
}


def flatten_line(text: str) -> str:
    """Collapse a multi-line subtitle into a single prompt line."""
    return " ".join(line.strip() for line in text.splitlines() if line.strip())


def format_numbered_lines(lines: Sequence[str]) -> str:
    """Render lines as ``1. text`` rows for the prompt."""
    return "\n".join(f"{i}. {flatten_line(line)}" for i, line in enumerate(lines, 1))


def parse_numbered_line(line: str) -> Tuple[Optional[int], str]:
    """
    Split ``"N. text"`` into ``(N, text)``.

    Returns ``(None, line)`` when the line carries no number.
    """
    match = NUMBERED_LINE.match(line)
    if not match:
        return None, line.strip()
    return int(match.group(1)), match.group(2).strip()


def clean_translated_text(text: str) -> str:
    """
    Clean and normalize translated subtitle text.

    只清理格式标记，保留正常标点符号。

    Args:
        text: Raw translated text

    Returns:
        Cleaned text
    """
    if not text or not isinstance(text, str):
        return ""

    text = text.strip()

    # 移除 markdown 粗体标记
    text = re.sub(r'\*\*|__', '', text)

    # 标准化空格
    text = re.sub(r'\s+', ' ', text).strip()

    return text


def parse_json_translations(json_str: str) -> Optional[List[str]]:
    """
    Parse a ``{"translations": [...]}`` response.

    Returns None when the payload is not valid JSON of that shape.
    """
    if not json_str:
        return None

    # 清理可能的 markdown 格式
    clean = CODE_FENCE.sub('', json_str.strip())

    try:
        data = json.loads(clean)
    except json.JSONDecodeError:
        return None

    if not isinstance(data, dict):
        return None

    translations = data.get("translations")
    if not isinstance(translations, list):
        return None

    return [str(item) for item in translations]


class JsonArrayStreamer:
    """
    Incrementally extracts the strings of the first JSON array in a stream.

    Every completed array string is emitted followed by ``\\n``, so a
    streamed ``{"translations": ["a", "b"]}`` reads ``a\\nb\\n``.
    """

    def __init__(self):
        self.in_array = False
        self.done = False
        self._in_string = False
        self._escape = False
        self._unicode: Optional[str] = None

    def feed(self, data: str) -> str:
        out: List[str] = []

        for ch in data:
            if self.done:
                break

            if self._unicode is not None:
                self._unicode += ch
                if len(self._unicode) == 4:
                    if self.in_array:
                        try:
                            out.append(chr(int(self._unicode, 16)))
                        except ValueError:
                            pass
                    self._unicode = None
                continue

            if self._in_string:
                if self._escape:
                    self._escape = False
                    if ch == 'u':
                        self._unicode = ""
                    elif self.in_array:
                        out.append(JSON_ESCAPES.get(ch, ch))
                elif ch == '\\':
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
                    if self.in_array:
                        out.append("\n")
                elif self.in_array:
                    out.append(ch)
                continue

            if ch == '"':
                self._in_string = True
            elif ch == '[':
                self.in_array = True
            elif ch == ']' and self.in_array:
                self.done = True

        return "".join(out)
