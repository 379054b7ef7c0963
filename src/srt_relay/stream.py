"""Streamed partial output of the line currently being translated."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class StreamEventKind(Enum):
    CHUNK = "chunk"    # 增量文本
    CLEAR = "clear"    # 丢弃最近一行，后面会有更正
    END = "end"        # 本段流结束


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    text: str = ""


class StreamBuffer:
    """Text that has been streamed but not finalized yet."""

    def __init__(self):
        self.text = ""

    def apply(self, event: StreamEvent) -> None:
        if event.kind is StreamEventKind.CHUNK:
            self.append(event.text)
        elif event.kind is StreamEventKind.CLEAR:
            self.clear_line()
        elif event.kind is StreamEventKind.END:
            self.reset()

    def append(self, data: str) -> None:
        # 忽略开头单独的换行
        if self.text == "" and data == "\n":
            return
        self.text += data

    def clear_line(self) -> None:
        """Drop the last newline-delimited segment, keeping earlier lines."""
        lines = self.text.split("\n")
        if lines[0] == "":
            lines.pop(0)
        if lines:
            lines.pop()
        text = "\n".join(lines) + "\n"
        self.text = "" if text == "\n" else text

    def reset(self) -> None:
        self.text = ""

    def __str__(self) -> str:
        return self.text


class StreamSubscription:
    """
    Turns engine callbacks into events applied to one buffer.

    A subscription belongs to a single run; once closed, late callbacks from
    that run's engine are ignored.
    """

    def __init__(self, buffer: StreamBuffer, on_change: Optional[Callable[[StreamEvent], None]] = None):
        self.buffer = buffer
        self.on_change = on_change
        self.closed = False

    def publish(self, event: StreamEvent) -> None:
        if self.closed:
            logger.debug(f"Dropping {event.kind.value} event after subscription closed")
            return
        self.buffer.apply(event)
        if self.on_change is not None:
            self.on_change(event)

    def on_stream_chunk(self, data: str) -> None:
        self.publish(StreamEvent(StreamEventKind.CHUNK, data))

    def on_clear_line(self) -> None:
        self.publish(StreamEvent(StreamEventKind.CLEAR))

    def on_stream_end(self) -> None:
        self.publish(StreamEvent(StreamEventKind.END))

    def close(self) -> None:
        self.closed = True
