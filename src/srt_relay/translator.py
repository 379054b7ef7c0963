"""Core translation logic using LLM."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

from openai import AsyncOpenAI

from .cooldown import CooldownContext
from .llm_client import open_chat_stream, moderate, DEFAULT_MODERATION_MODEL
from .models import LanguagePair, TranslationOutput
from .text_utils import (
    JsonArrayStreamer,
    clean_translated_text,
    flatten_line,
    format_numbered_lines,
    parse_json_translations,
    parse_numbered_line,
)
from .usage import UsageInfo, UsageTracker

logger = logging.getLogger(__name__)


class TranslationError(RuntimeError):
    """The model could not produce a usable translation."""


class ModerationError(TranslationError):
    """Input was flagged by the moderation endpoint."""


def _noop(*args) -> None:
    pass


@dataclass
class ModerationService:
    client: AsyncOpenAI
    cooler: CooldownContext
    model: str = DEFAULT_MODERATION_MODEL


@dataclass
class TranslatorServices:
    """Remote clients, rate limiters and stream callbacks for one translator."""
    client: AsyncOpenAI
    cooler: CooldownContext
    on_stream_chunk: Callable[[str], None] = _noop
    on_stream_end: Callable[[], None] = _noop
    on_clear_line: Callable[[], None] = _noop
    moderation_service: Optional[ModerationService] = None


@dataclass
class TranslatorOptions:
    use_moderator: bool = True
    batch_sizes: Sequence[int] = (10, 50)
    request: Dict[str, Any] = field(default_factory=lambda: {"model": "gpt-4o-mini", "temperature": 0})
    system_instruction: str = ""
    structured_mode: bool = False
    max_retries: int = 3


class Translator:
    """
    Translates lines in batches with a streamed, numbered-line answer.

    The model is asked for exactly one ``N. translation`` row per input line.
    A batch whose answer has the wrong shape is discarded (its tokens count
    as wasted) and retried with the smallest batch size, then line by line.
    """

    FORMAT_RULES = (
        "You will receive numbered subtitle lines. "
        "Reply with exactly one numbered line per input line, in the same order, "
        "formatted as \"N. translation\". "
        "Do not merge, split, skip or explain lines."
    )

    def __init__(self, language: LanguagePair, services: TranslatorServices, options: TranslatorOptions):
        self.language = language
        self.services = services
        self.options = options

        sizes = list(options.batch_sizes) or [1]
        self.min_batch_size = max(1, min(sizes))
        self.max_batch_size = max(self.min_batch_size, max(sizes))

        self.system_instruction = options.system_instruction or f"Translate {language.describe()}."

        self._tracker = UsageTracker(str(options.request.get("model", "")))
        self._aborted = False

    @property
    def usage(self) -> UsageInfo:
        return self._tracker.snapshot()

    @property
    def aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        """Stop after the current stream; no further results are produced."""
        self._aborted = True

    async def translate_lines(self, lines: Sequence[str]) -> AsyncIterator[TranslationOutput]:
        """
        Translate ``lines`` and yield one result per line, in order.

        Result indices are 1-based within ``lines``. Stream callbacks for a
        batch fire before that batch's results are yielded.
        """
        lines = list(lines)
        position = 0
        moderated_until = 0
        retry_until = 0
        batch_size = self.max_batch_size

        while position < len(lines) and not self._aborted:
            batch = lines[position:position + batch_size]

            end = position + len(batch)
            if moderated_until < end:
                first = max(position, moderated_until)
                await self._moderate(lines[first:end], first)
                moderated_until = end

            translated = await self._translate_batch(batch)
            if self._aborted:
                return

            if translated is None:
                if len(batch) == 1:
                    raise TranslationError(f"No usable translation for line {position + 1}")
                # 先退到最小批次，再逐行；越过出错区间后恢复
                retry_until = max(retry_until, position + len(batch))
                batch_size = self.min_batch_size if len(batch) > self.min_batch_size else 1
                logger.warning(f"Batch at line {position + 1} returned a mismatched answer, retrying with batch size {batch_size}")
                self.services.on_stream_end()
                continue

            self.services.on_stream_end()
            for offset, text in enumerate(translated):
                yield TranslationOutput(position + offset + 1, text)

            position += len(batch)
            if position >= retry_until:
                batch_size = self.max_batch_size

    async def _moderate(self, texts: List[str], offset: int) -> None:
        service = self.services.moderation_service
        if not self.options.use_moderator or service is None or not texts:
            return

        await service.cooler.use()
        flags = await moderate(service.client, texts, service.model)
        flagged = [offset + i + 1 for i, is_flagged in enumerate(flags) if is_flagged]
        if flagged:
            raise ModerationError(f"Moderation flagged line(s) {', '.join(map(str, flagged))}")

    def _build_messages(self, batch: Sequence[str]) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": f"{self.system_instruction}\n\n{self.FORMAT_RULES}"},
            {"role": "user", "content": format_numbered_lines(batch)},
        ]

    def _request_params(self, batch: Sequence[str]) -> Dict[str, Any]:
        params = dict(self.options.request)
        params.pop("stream", None)
        params["messages"] = self._build_messages(batch)
        params["stream_options"] = {"include_usage": True}
        return params

    async def _translate_batch(self, batch: Sequence[str]) -> Optional[List[str]]:
        """Stream one request. Returns None when the answer must be discarded."""
        await self.services.cooler.use()
        if self._aborted:
            return None

        stream = await open_chat_stream(
            self.services.client,
            self._request_params(batch),
            max_retries=self.options.max_retries,
            is_cancelled=lambda: self._aborted,
        )
        if stream is None:
            return None

        reader = self._new_reader(len(batch))
        usage = None

        async for chunk in stream:
            if self._aborted:
                await stream.close()
                return None

            if getattr(chunk, "usage", None):
                usage = chunk.usage

            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta.content
            if delta and reader.ok:
                reader.feed(delta)

        results = reader.finish()
        self._record_usage(usage, wasted=results is None)
        return results

    def _new_reader(self, expected: int) -> "_NumberedReader":
        return _NumberedReader(expected, self.services)

    def _record_usage(self, usage, wasted: bool) -> None:
        if usage is None:
            return
        details = getattr(usage, "prompt_tokens_details", None)
        cached = getattr(details, "cached_tokens", 0) or 0
        self._tracker.add(usage.prompt_tokens or 0, usage.completion_tokens or 0, cached, wasted=wasted)


class StructuredTranslator(Translator):
    """Translator variant that asks for a JSON array of translations."""

    FORMAT_RULES = (
        "You will receive a JSON array of subtitle lines. "
        "Reply with JSON only: {\"translations\": [\"...\", ...]} "
        "containing exactly one translated string per input line, in the same order."
    )

    def _build_messages(self, batch: Sequence[str]) -> List[Dict[str, str]]:
        items = [flatten_line(line) for line in batch]
        return [
            {"role": "system", "content": f"{self.system_instruction}\n\n{self.FORMAT_RULES}"},
            {"role": "user", "content": json.dumps(items, ensure_ascii=False)},
        ]

    def _request_params(self, batch: Sequence[str]) -> Dict[str, Any]:
        params = super()._request_params(batch)
        params["response_format"] = {"type": "json_object"}
        return params

    def _new_reader(self, expected: int) -> "_JsonReader":
        return _JsonReader(expected, self.services)


class _NumberedReader:
    """
    Consumes a streamed ``N. text`` answer.

    Text is forwarded as it arrives; the newline ending a row is only
    forwarded once the row is accepted, otherwise the row is cleared.
    """

    def __init__(self, expected: int, services: TranslatorServices):
        self.expected = expected
        self.services = services
        self.results: List[str] = []
        self.pending = ""
        self.ok = True

    def feed(self, delta: str) -> None:
        parts = delta.split("\n")
        for i, part in enumerate(parts):
            if part:
                self.pending += part
                self.services.on_stream_chunk(part)
            if i < len(parts) - 1:
                if not self._finish_line():
                    return
                self.services.on_stream_chunk("\n")

    def _finish_line(self) -> bool:
        line, self.pending = self.pending, ""
        if not line.strip():
            return True

        number, text = parse_numbered_line(line)
        text = clean_translated_text(text)

        # 单行批次：模型换行时拼接
        if self.expected == 1 and (number is None or number == 1 or self.results):
            if self.results:
                self.results[0] = f"{self.results[0]} {text}".strip()
            else:
                self.results.append(text)
            return True

        if number != len(self.results) + 1 or len(self.results) >= self.expected:
            logger.debug(f"Unexpected row {line!r}, expected number {len(self.results) + 1}")
            self.services.on_clear_line()
            self.ok = False
            return False

        self.results.append(text)
        return True

    def finish(self) -> Optional[List[str]]:
        if self.ok and self.pending:
            self._finish_line()
        if not self.ok or len(self.results) != self.expected:
            return None
        if self.expected == 1 and not self.results[0]:
            return None
        return self.results


class _JsonReader:
    """Consumes a streamed ``{"translations": [...]}`` answer."""

    def __init__(self, expected: int, services: TranslatorServices):
        self.expected = expected
        self.services = services
        self.raw = ""
        self.ok = True
        self._streamer = JsonArrayStreamer()

    def feed(self, delta: str) -> None:
        self.raw += delta
        text = self._streamer.feed(delta)
        if text:
            self.services.on_stream_chunk(text)

    def finish(self) -> Optional[List[str]]:
        translations = parse_json_translations(self.raw)
        if translations is None:
            logger.debug(f"Unparseable structured answer: {self.raw[:200]}...")
            return None

        translations = [clean_translated_text(t) for t in translations]
        if self.expected == 1 and len(translations) > 1:
            translations = [" ".join(translations)]
        if len(translations) != self.expected:
            return None
        return translations


def create_translator(
    language: LanguagePair,
    services: TranslatorServices,
    options: TranslatorOptions,
) -> Translator:
    """Build the translator variant selected by ``options.structured_mode``."""
    implementation = StructuredTranslator if options.structured_mode else Translator
    return implementation(language, services, options)
