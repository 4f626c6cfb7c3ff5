from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from scout.models.company import Signal
from scout.services.cache import CacheLayer, InMemoryCacheStore
from scout.services.health import HealthTracker
from scout.services.signals import SignalExtractor, _extract_response_text, _parse_json_payload


class _ScriptedLLM:
    def __init__(self, reply: str | Exception) -> None:
        self.reply = reply
        self.calls: list[dict[str, object]] = []

    async def generate(self, *, system_prompt, user_prompt, model, temperature):
        self.calls.append({"user_prompt": user_prompt, "model": model, "temperature": temperature})
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


REPLY = """```json
{"signals": [
  {"type": "funding", "title": "Acme raises $20M Series A", "description": "Led by Index.", "date": "2026-09-01"},
  {"type": "hiring", "title": "Acme is hiring 40 engineers", "description": "", "date": "unknown"},
  {"type": "rumour", "title": "Ignored", "description": ""},
  {"type": "funding", "title": "Acme raises $20M Series A", "description": "duplicate"}
]}
```"""


def test_parse_json_payload_tolerates_fences_and_prose():
    assert _parse_json_payload('```json\n{"signals": []}\n```') == {"signals": []}
    assert _parse_json_payload('Here you go: {"signals": [1]} thanks') == {"signals": [1]}
    with pytest.raises(ValueError):
        _parse_json_payload("no json here")


def test_extract_response_text_reads_output_chunks():
    response = SimpleNamespace(
        output_text=None,
        output=[SimpleNamespace(content=[SimpleNamespace(type="output_text", text='{"signals": []}')])],
    )

    assert _extract_response_text(response) == '{"signals": []}'
    with pytest.raises(ValueError):
        _extract_response_text(SimpleNamespace(output_text="", output=[]))


@pytest.mark.asyncio
async def test_extract_builds_typed_deduplicated_signals():
    extractor = SignalExtractor(_ScriptedLLM(REPLY))

    signals = await extractor.extract("Acme closed a round...", "www.Acme.com", source="exa")

    assert [signal.type for signal in signals] == ["funding", "hiring"]
    assert all(signal.company_domain == "acme.com" for signal in signals)
    assert signals[0].date == "2026-09-01"
    assert signals[1].date == datetime.now(timezone.utc).date().isoformat()
    assert signals[0].id == Signal.make_id("acme.com", "funding", "Acme raises $20M Series A")
    assert signals[0].source == "exa"


@pytest.mark.asyncio
async def test_long_titles_are_truncated():
    reply = '{"signals": [{"type": "news", "title": "%s", "description": ""}]}' % ("x" * 120)
    extractor = SignalExtractor(_ScriptedLLM(reply))

    signals = await extractor.extract("content", "acme.com", source="exa")

    assert len(signals[0].title) == 80


@pytest.mark.asyncio
async def test_extraction_failures_yield_no_signals():
    assert await SignalExtractor(_ScriptedLLM(RuntimeError("model down"))).extract("text", "acme.com", source="exa") == []
    assert await SignalExtractor(_ScriptedLLM("not json")).extract("text", "acme.com", source="exa") == []
    assert await SignalExtractor(_ScriptedLLM('{"items": []}')).extract("text", "acme.com", source="exa") == []


@pytest.mark.asyncio
async def test_unconfigured_or_empty_content_skips_the_model():
    llm = _ScriptedLLM(REPLY)

    assert await SignalExtractor(None).extract("text", "acme.com", source="exa") == []
    assert await SignalExtractor(llm).extract("   ", "acme.com", source="exa") == []
    assert llm.calls == []


@pytest.mark.asyncio
async def test_identical_content_is_extracted_once():
    llm = _ScriptedLLM(REPLY)
    extractor = SignalExtractor(llm, cache=CacheLayer(InMemoryCacheStore()))

    first = await extractor.extract("same article", "acme.com", source="exa")
    second = await extractor.extract("same article", "acme.com", source="exa")

    assert len(llm.calls) == 1
    assert [signal.id for signal in second] == [signal.id for signal in first]


@pytest.mark.asyncio
async def test_content_is_trimmed_before_prompting():
    llm = _ScriptedLLM('{"signals": []}')
    extractor = SignalExtractor(llm, max_content_chars=10)

    await extractor.extract("abcdefghijKLMNOP", "acme.com", source="exa")

    assert "abcdefghij" in llm.calls[0]["user_prompt"]
    assert "KLMNOP" not in llm.calls[0]["user_prompt"]


@pytest.mark.asyncio
async def test_model_calls_are_reported_to_health():
    tracker = HealthTracker()
    extractor = SignalExtractor(_ScriptedLLM(RuntimeError("boom")), health=tracker)

    await extractor.extract("text", "acme.com", source="exa")

    summary = tracker.summary(timedelta(hours=1))
    assert summary.sources["openai"].call_count == 1
    assert summary.sources["openai"].error_rate == 100.0
