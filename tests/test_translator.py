"""Tests for the streaming translation engine."""

import asyncio
from types import SimpleNamespace

import pytest

from srt_relay.cooldown import CooldownContext
from srt_relay.models import LanguagePair, TranslationOutput
from srt_relay.stream import StreamBuffer, StreamSubscription
from srt_relay.translator import (
    ModerationError,
    ModerationService,
    StructuredTranslator,
    TranslationError,
    Translator,
    TranslatorOptions,
    TranslatorServices,
    create_translator,
)


def chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))], usage=None)


def usage_chunk(prompt, completion, cached=0):
    usage = SimpleNamespace(
        prompt_tokens=prompt,
        completion_tokens=completion,
        prompt_tokens_details=SimpleNamespace(cached_tokens=cached),
    )
    return SimpleNamespace(choices=[], usage=usage)


class FakeStream:
    def __init__(self, items):
        self.items = items
        self.closed = False

    async def _iterate(self):
        for item in self.items:
            yield item

    def __aiter__(self):
        return self._iterate()

    async def close(self):
        self.closed = True


class FakeCompletions:
    def __init__(self, answers):
        self.answers = list(answers)
        self.calls = []

    async def create(self, **params):
        self.calls.append(params)
        pieces = self.answers.pop(0)
        return FakeStream([chunk(p) if isinstance(p, str) else p for p in pieces])


class FakeModerations:
    def __init__(self, flagged=()):
        self.flagged = set(flagged)
        self.inputs = []

    async def create(self, model, input):
        self.inputs.append(input)
        return SimpleNamespace(results=[SimpleNamespace(flagged=text in self.flagged) for text in input])


def make_client(answers, flagged=()):
    return SimpleNamespace(
        chat=SimpleNamespace(completions=FakeCompletions(answers)),
        moderations=FakeModerations(flagged),
    )


def make_translator(client, buffer=None, structured=False, batch_sizes=(10, 10), use_moderator=False, events=None):
    buffer = buffer if buffer is not None else StreamBuffer()
    subscription = StreamSubscription(buffer, events.append if events is not None else None)
    services = TranslatorServices(
        client=client,
        cooler=CooldownContext(100, 60, "test"),
        on_stream_chunk=subscription.on_stream_chunk,
        on_stream_end=subscription.on_stream_end,
        on_clear_line=subscription.on_clear_line,
        moderation_service=ModerationService(client=client, cooler=CooldownContext(100, 60, "mod")),
    )
    options = TranslatorOptions(
        use_moderator=use_moderator,
        batch_sizes=batch_sizes,
        request={"model": "gpt-4o-mini", "temperature": 0},
        structured_mode=structured,
    )
    return create_translator(LanguagePair("English", "Spanish"), services, options)


def collect(translator, lines):
    async def run():
        return [output async for output in translator.translate_lines(lines)]
    return asyncio.run(run())


class TestNumberedTranslator:

    def test_translates_batch(self):
        client = make_client([["1. Hola\n2. ", "Mundo"]])
        translator = make_translator(client)

        results = collect(translator, ["Hello", "World"])

        assert results == [TranslationOutput(1, "Hola"), TranslationOutput(2, "Mundo")]
        assert len(client.chat.completions.calls) == 1

    def test_request_shape(self):
        client = make_client([["1. Hola"]])
        translator = make_translator(client)
        collect(translator, ["Hello"])

        params = client.chat.completions.calls[0]
        assert params["model"] == "gpt-4o-mini"
        assert params["stream"] is True
        assert params["stream_options"] == {"include_usage": True}
        assert "English to Spanish" in params["messages"][0]["content"]
        assert params["messages"][1]["content"] == "1. Hello"
        assert "response_format" not in params

    def test_system_instruction_override(self):
        client = make_client([["1. Hola"]])
        translator = make_translator(client)
        translator.system_instruction = "Use informal Spanish."
        collect(translator, ["Hello"])

        system = client.chat.completions.calls[0]["messages"][0]["content"]
        assert system.startswith("Use informal Spanish.")

    def test_stream_ends_before_results(self):
        events = []
        client = make_client([["1. Hola\n", "2. Mundo"]])
        buffer = StreamBuffer()
        translator = make_translator(client, buffer=buffer, events=events)

        async def run():
            snapshots = []
            async for output in translator.translate_lines(["Hello", "World"]):
                snapshots.append(buffer.text)
            return snapshots

        assert asyncio.run(run()) == ["", ""]
        kinds = [e.kind.value for e in events]
        assert kinds[-1] == "end"
        assert "chunk" in kinds

    def test_batches_split_by_max_size(self):
        client = make_client([["1. A\n2. B"], ["1. C"]])
        translator = make_translator(client, batch_sizes=(2, 2))

        results = collect(translator, ["a", "b", "c"])

        assert [r.final_transform for r in results] == ["A", "B", "C"]
        assert [r.index for r in results] == [1, 2, 3]
        assert client.chat.completions.calls[1]["messages"][1]["content"] == "1. c"

    def test_mismatch_falls_back_to_smaller_batches(self):
        events = []
        client = make_client([
            ["1. A\n3. C\n"],
            ["1. A"],
            ["1. B"],
            ["1. C"],
        ])
        translator = make_translator(client, batch_sizes=(1, 3), events=events)

        results = collect(translator, ["a", "b", "c"])

        assert [r.final_transform for r in results] == ["A", "B", "C"]
        assert len(client.chat.completions.calls) == 4
        assert "clear" in [e.kind.value for e in events]

    def test_mismatch_tokens_counted_as_wasted(self):
        client = make_client([
            ["1. A\n", usage_chunk(100, 50)],
            ["1. A", usage_chunk(10, 5)],
            ["1. B", usage_chunk(10, 5)],
        ])
        translator = make_translator(client, batch_sizes=(1, 2))

        collect(translator, ["a", "b"])

        usage = translator.usage
        assert usage.used_tokens == 180
        assert usage.wasted_tokens == 150

    def test_single_line_without_answer_raises(self):
        client = make_client([[""]])
        translator = make_translator(client, batch_sizes=(1, 1))

        with pytest.raises(TranslationError):
            collect(translator, ["a"])

    def test_single_line_wrapped_answer_joined(self):
        client = make_client([["1. first part\nsecond part"]])
        translator = make_translator(client, batch_sizes=(1, 1))

        results = collect(translator, ["a"])
        assert results[0].final_transform == "first part second part"

    def test_abort_stops_production(self):
        client = make_client([["1. A"], ["1. B"]])
        translator = make_translator(client, batch_sizes=(1, 1))

        async def run():
            produced = []
            async for output in translator.translate_lines(["a", "b"]):
                produced.append(output)
                translator.abort()
            return produced

        assert len(asyncio.run(run())) == 1
        assert len(client.chat.completions.calls) == 1

    def test_usage_snapshot(self):
        client = make_client([["1. Hola", usage_chunk(100, 50, cached=20)]])
        translator = make_translator(client)
        collect(translator, ["Hello"])

        usage = translator.usage
        assert usage.used_tokens == 150
        assert usage.cached_tokens == 20
        assert usage.used_tokens_pricing == pytest.approx(0.000045)
        assert usage.wasted_tokens == 0


class TestModeration:

    def test_flagged_input_raises(self):
        client = make_client([["1. A\n2. B"]], flagged={"bad"})
        translator = make_translator(client, use_moderator=True)

        with pytest.raises(ModerationError, match="2"):
            collect(translator, ["fine", "bad"])
        assert client.chat.completions.calls == []

    def test_each_line_moderated_once(self):
        client = make_client([["1. A\n3. C"], ["1. A"], ["1. B"], ["1. C"]])
        translator = make_translator(client, use_moderator=True, batch_sizes=(1, 3))

        collect(translator, ["a", "b", "c"])

        assert client.moderations.inputs == [["a", "b", "c"]]

    def test_moderator_disabled(self):
        client = make_client([["1. A"]], flagged={"a"})
        translator = make_translator(client, use_moderator=False)

        assert len(collect(translator, ["a"])) == 1
        assert client.moderations.inputs == []


class TestStructuredTranslator:

    def test_factory_selects_structured(self):
        translator = make_translator(make_client([]), structured=True)
        assert isinstance(translator, StructuredTranslator)
        assert type(make_translator(make_client([]))) is Translator

    def test_translates_json(self):
        buffer = StreamBuffer()
        streamed = []
        client = make_client([['{"translations": ["Ho', 'la", "Mundo"]}']])
        translator = make_translator(client, buffer=buffer, structured=True, events=streamed)

        results = collect(translator, ["Hello", "World"])

        assert [r.final_transform for r in results] == ["Hola", "Mundo"]
        params = client.chat.completions.calls[0]
        assert params["response_format"] == {"type": "json_object"}
        chunks = "".join(e.text for e in streamed if e.kind.value == "chunk")
        assert chunks == "Hola\nMundo\n"

    def test_wrong_count_retries(self):
        client = make_client([
            ['{"translations": ["Hola"]}'],
            ['{"translations": ["Hola"]}'],
            ['{"translations": ["Mundo"]}'],
        ])
        translator = make_translator(client, structured=True, batch_sizes=(1, 2))

        results = collect(translator, ["Hello", "World"])
        assert [r.final_transform for r in results] == ["Hola", "Mundo"]

    def test_invalid_json_single_line_raises(self):
        client = make_client([["not json"]])
        translator = make_translator(client, structured=True, batch_sizes=(1, 1))

        with pytest.raises(TranslationError):
            collect(translator, ["Hello"])


class AbortingCooler:
    """Rate limiter whose wait ends with the translator being stopped."""

    def __init__(self):
        self.translator = None

    async def use(self):
        self.translator.abort()


class TestAbortDuringWait:

    def test_abort_during_cooldown_skips_request(self):
        client = make_client([["1. Hola"]])
        translator = make_translator(client)
        cooler = AbortingCooler()
        cooler.translator = translator
        translator.services.cooler = cooler

        assert collect(translator, ["Hello"]) == []
        assert client.chat.completions.calls == []
