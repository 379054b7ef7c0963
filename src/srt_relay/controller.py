"""Resumable translation job controller."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from .config import TranslatorConfig, COOLDOWN_WINDOW_SECONDS
from .cooldown import CooldownContext
from .llm_client import create_client
from .models import LanguagePair, SrtEntry, TranslationOutput
from .parser import parse_srt, to_srt, document_id
from .settings import SettingsStore, MemorySettingsStore
from .stream import StreamBuffer, StreamSubscription
from .translator import (
    ModerationService,
    TranslatorOptions,
    TranslatorServices,
    create_translator,
)
from .usage import UsageInfo

logger = logging.getLogger(__name__)


class JobState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    COMPLETED = "completed"
    FAILED = "failed"


class JobOutcome(Enum):
    """How the most recent run ended."""
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class JobStateError(RuntimeError):
    """Operation not allowed in the controller's current state."""


class ResumePointError(ValueError):
    """Resume point does not fit the loaded document."""


class TranslationEngine(Protocol):
    services: TranslatorServices

    def translate_lines(self, lines: Sequence[str]): ...

    def abort(self) -> None: ...

    @property
    def usage(self) -> UsageInfo: ...


EngineFactory = Callable[[LanguagePair, TranslatorServices, TranslatorOptions], TranslationEngine]


class CancellationToken:
    """Per-run flag checked by the run loop after every produced result."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class JobController:
    """
    Drives one translation run at a time over a loaded subtitle document.

    Finalized lines are written to ``outputs`` and the exportable document
    as they arrive. A run that is stopped or fails leaves ``progress_index``
    at the number of finalized lines so that ``resume()`` continues right
    after them; a run that finishes every line resets it to 0.

    Listeners added with ``add_listener`` are called with the controller
    after every visible change.
    """

    def __init__(
        self,
        settings: Optional[SettingsStore] = None,
        engine_factory: Optional[EngineFactory] = None,
        config: Optional[TranslatorConfig] = None,
    ):
        self.settings = settings if settings is not None else MemorySettingsStore()
        self.config = config if config is not None else TranslatorConfig.from_settings(self.settings)
        self.engine_factory: EngineFactory = engine_factory or create_translator

        self.state = JobState.IDLE
        self.last_outcome: Optional[JobOutcome] = None
        self.progress_index = 0
        self.last_error: Optional[str] = None
        self.usage: Optional[UsageInfo] = None
        self.rpm = 0

        self._source_id = document_id("")
        self._source_entries: List[SrtEntry] = []
        self._outputs: List[str] = []
        self.exportable_text = ""

        self._stream = StreamBuffer()
        self._engine: Optional[TranslationEngine] = None
        self._token = CancellationToken()
        self._listeners: List[Callable[["JobController"], None]] = []

    # ── Observable state ─────────────────────────────────────────────

    @property
    def source_lines(self) -> List[str]:
        return [entry.text for entry in self._source_entries]

    @property
    def total_lines(self) -> int:
        return len(self._source_entries)

    @property
    def outputs(self) -> List[str]:
        return list(self._outputs)

    @property
    def stream_buffer(self) -> str:
        return self._stream.text

    @property
    def document_id(self) -> str:
        return self._source_id

    @property
    def is_running(self) -> bool:
        return self.state in (JobState.RUNNING, JobState.STOPPING)

    @property
    def finalized_count(self) -> int:
        return len(self._outputs)

    @property
    def can_resume(self) -> bool:
        return 0 < self.progress_index < self.total_lines

    def add_listener(self, callback: Callable[["JobController"], None]) -> None:
        self._listeners.append(callback)

    def _notify(self) -> None:
        for callback in self._listeners:
            try:
                callback(self)
            except Exception as e:
                logger.warning(f"Listener {callback!r} failed: {e}")

    # ── Document ─────────────────────────────────────────────────────

    def load_document(self, text: str) -> None:
        """
        Import a new source document and reset all progress.

        Raises SrtParseError before touching any state if ``text`` is not
        valid SRT.
        """
        if self.is_running:
            raise JobStateError("Cannot import a document while a job is running")

        entries = parse_srt(text)

        self._source_id = document_id(text)
        self._source_entries = entries
        self._outputs = []
        self.progress_index = 0
        self.last_error = None
        self.last_outcome = None
        self.exportable_text = text
        self._stream.reset()

        logger.info(f"Loaded document with {len(entries)} lines")
        self._notify()

    def restore(self, outputs: Sequence[str], source_id: str) -> None:
        """Restore outputs saved by an earlier process for the same document."""
        if self.is_running:
            raise JobStateError("Cannot restore progress while a job is running")
        if source_id != self._source_id:
            raise ResumePointError("Saved progress belongs to a different document")
        if len(outputs) > self.total_lines:
            raise ResumePointError(f"Saved progress has {len(outputs)} lines, document has {self.total_lines}")

        self._outputs = list(outputs)
        self.progress_index = len(self._outputs) if len(self._outputs) < self.total_lines else 0
        self._publish_document(self._working_copy())
        self._notify()

    def _working_copy(self) -> List[SrtEntry]:
        entries = [entry.copy() for entry in self._source_entries]
        for i, text in enumerate(self._outputs):
            entries[i].text = text
        return entries

    def _publish_document(self, entries: List[SrtEntry]) -> None:
        self.exportable_text = to_srt(entries)

    # ── Transitions ──────────────────────────────────────────────────

    async def resume(self) -> None:
        await self.start(self.progress_index)

    async def restart(self) -> None:
        await self.start(0)

    def stop(self) -> None:
        """Ask the running job to stop after the line in flight."""
        if self.state is not JobState.RUNNING:
            return

        logger.info("Stopping translation...")
        self.state = JobState.STOPPING
        self._token.cancel()
        if self._engine is not None:
            self._engine.abort()
        self._notify()

    def _check_start(self, from_index: int) -> None:
        if self.is_running:
            raise JobStateError("A translation job is already running")
        if from_index < 0 or from_index > self.total_lines:
            raise ResumePointError(f"Resume point {from_index} outside 0..{self.total_lines}")
        if from_index > len(self._outputs):
            raise ResumePointError(
                f"Resume point {from_index} is past the {len(self._outputs)} finalized lines of this document"
            )

    async def start(self, from_index: int = 0, config: Optional[TranslatorConfig] = None) -> None:
        """
        Run the translation from ``from_index`` to the end of the document.

        ``from_index > 0`` keeps the first ``from_index`` outputs (resume);
        0 discards all outputs (restart). Errors raised while translating are
        recorded in ``last_error`` and never propagate.

        Raises:
            JobStateError: a job is already running
            ResumePointError: ``from_index`` does not fit the loaded document
        """
        self._check_start(from_index)
        config = config or self.config

        token = CancellationToken()
        self._token = token
        self.last_error = None
        self.last_outcome = None
        self.state = JobState.RUNNING

        outputs = self._outputs[:from_index] if from_index > 0 else []
        self._outputs = outputs
        # 每次运行都从源文档重建，再填入保留的译文
        working = self._working_copy()
        self._publish_document(working)
        self.progress_index = from_index

        self._stream.reset()
        subscription = StreamSubscription(self._stream, lambda event: self._notify())
        remaining = self.source_lines[from_index:]
        if from_index:
            logger.info(f"Resuming at line {from_index + 1}: {len(remaining)} lines left")
        else:
            logger.info(f"Translating {len(remaining)} lines")
        self._notify()

        results = None
        try:
            self._engine = self._build_engine(config, subscription)
            results = self._engine.translate_lines(remaining)
            async for output in results:
                if token.cancelled:
                    logger.info("Translation aborted")
                    break
                self._reconcile(from_index, output, working)

            if len(outputs) >= self.total_lines:
                self.progress_index = 0
                self.last_outcome = JobOutcome.COMPLETED
                self.state = JobState.COMPLETED
                logger.info(f"Translation completed: {len(outputs)} lines")
                self._notify()
            else:
                self.progress_index = len(outputs)
                self.last_outcome = JobOutcome.STOPPED
                logger.info(f"Translation stopped at {len(outputs)}/{self.total_lines}")

        except Exception as e:
            logger.error(f"Translation failed after {len(outputs)}/{self.total_lines} lines: {e}")
            self.last_error = str(e) or type(e).__name__
            self.progress_index = len(outputs)
            self.last_outcome = JobOutcome.FAILED
            self.state = JobState.FAILED
            self._publish_document(working)
            self._notify()

        finally:
            if results is not None:
                await self._close_results(results)
            subscription.close()
            self._engine = None
            self._token = CancellationToken()
            self.state = JobState.IDLE
            self._notify()

    def _reconcile(self, from_index: int, output: TranslationOutput, working: List[SrtEntry]) -> None:
        absolute = from_index + output.index - 1
        if absolute < 0 or absolute > len(self._outputs) or absolute >= self.total_lines:
            raise RuntimeError(f"Engine returned line {output.index} out of order")

        if absolute == len(self._outputs):
            self._outputs.append(output.final_transform)
        else:
            self._outputs[absolute] = output.final_transform

        working[absolute].text = output.final_transform
        self.progress_index = max(self.progress_index, len(self._outputs))
        self._publish_document(working)

        if self._engine is not None:
            self.usage = self._engine.usage
            self.rpm = self._engine.services.cooler.rate
        self._notify()

    def _build_engine(self, config: TranslatorConfig, subscription: StreamSubscription) -> TranslationEngine:
        client = create_client(config.api_key or "", config.base_url)

        cooler = CooldownContext(config.rate_limit, COOLDOWN_WINDOW_SECONDS, "ChatAPI")
        moderation_cooler = CooldownContext(config.rate_limit, COOLDOWN_WINDOW_SECONDS, "Moderator")

        services = TranslatorServices(
            client=client,
            cooler=cooler,
            on_stream_chunk=subscription.on_stream_chunk,
            on_stream_end=subscription.on_stream_end,
            on_clear_line=subscription.on_clear_line,
            moderation_service=ModerationService(client=client, cooler=moderation_cooler),
        )
        options = TranslatorOptions(
            use_moderator=config.use_moderator,
            batch_sizes=config.batch_size_range,
            request={"model": config.model_name, "temperature": config.temperature},
            system_instruction=config.system_instruction,
            structured_mode=config.use_structured_mode,
        )
        return self.engine_factory(config.language_pair, services, options)

    @staticmethod
    async def _close_results(results) -> None:
        aclose = getattr(results, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            logger.warning(f"Error while closing translation stream: {e}")
