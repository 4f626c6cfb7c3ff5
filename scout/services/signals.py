"""LLM-backed extraction of buying signals from raw web content."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from openai import AsyncOpenAI

from scout.core.domains import normalize_domain
from scout.models.company import SIGNAL_TYPES, Signal
from scout.services.cache import CacheLayer, cache_ttl, hash_filters
from scout.services.health import HealthTracker

logger = logging.getLogger(__name__)

SIGNAL_SYSTEM_PROMPT = (
    "You are a B2B signal extraction engine. Parse web content about a company and "
    "extract structured signals. Only extract signals that are actionable for B2B sales "
    "outreach; skip generic marketing content. All output must be in English."
)

SIGNAL_USER_PROMPT = """For each signal found, identify:
- type: one of "hiring", "funding", "expansion", "news"
- title: short headline (max 80 chars)
- description: 1-2 sentence summary
- date: ISO date if mentioned, or "unknown"

Return JSON: {{"signals": [{{"type": "...", "title": "...", "description": "...", "date": "..."}}]}}

Company domain: {domain}
Content:
{content}"""


class SignalLLMClient(Protocol):
    """Minimal contract for an LLM that returns text."""

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
    ) -> str:
        ...


class OpenAISignalClient(SignalLLMClient):
    """Thin wrapper around the OpenAI Responses API."""

    def __init__(self, api_key: str) -> None:
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required for signal extraction.")
        self._client = AsyncOpenAI(api_key=api_key)

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        temperature: float,
    ) -> str:
        response = await self._client.responses.create(
            model=model,
            temperature=temperature,
            input=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
        return _extract_response_text(response)


def _extract_response_text(response: Any) -> str:
    """Normalize OpenAI responses across SDK versions."""
    text = getattr(response, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text.strip()
    chunks: list[str] = []
    for item in getattr(response, "output", None) or []:
        for content in getattr(item, "content", None) or []:
            if getattr(content, "type", None) == "output_text":
                chunks.append(getattr(content, "text", ""))
    if chunks:
        return "".join(chunks).strip()
    raise ValueError("OpenAI response did not include text output.")


def _parse_json_payload(raw_text: str) -> dict[str, Any]:
    """Best-effort JSON decoding that tolerates code fences or prose."""
    candidate = raw_text.strip()
    if candidate.startswith("```"):
        candidate = "\n".join(
            line for line in candidate.splitlines() if not line.strip().startswith("```")
        ).strip()
    start = candidate.find("{")
    end = candidate.rfind("}")
    if start == -1 or end <= start:
        raise ValueError("Response did not contain JSON object.")
    payload = json.loads(candidate[start : end + 1])
    if not isinstance(payload, dict):
        raise ValueError("Response JSON must be an object.")
    return payload


class SignalExtractor:
    """Turns free text into typed Signal records; every failure yields ``[]``."""

    def __init__(
        self,
        client: SignalLLMClient | None,
        *,
        cache: CacheLayer | None = None,
        health: HealthTracker | None = None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.0,
        max_content_chars: int = 4000,
        ttl_overrides: dict[str, int] | None = None,
    ) -> None:
        self._client = client
        self._cache = cache
        self._health = health
        self._model = model
        self._temperature = temperature
        self._max_chars = max_content_chars
        self._ttl = cache_ttl("signal_extraction", ttl_overrides)

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def extract(self, content: str, company_domain: str, *, source: str) -> list[Signal]:
        if self._client is None or not content.strip():
            return []
        domain = normalize_domain(company_domain) or company_domain
        trimmed = content[: self._max_chars]
        cache_key = f"signals:extract:{hash_filters({'domain': domain, 'content': trimmed})}"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if cached is not None:
                return [Signal.model_validate(entry) for entry in cached]

        try:
            raw = await self._generate(trimmed, domain)
            signals = _build_signals(_parse_json_payload(raw), domain, source)
        except Exception as exc:
            logger.warning(
                "signals.extraction_failed",
                extra={"domain": domain, "error": type(exc).__name__},
            )
            return []

        if self._cache is not None:
            await self._cache.set(
                cache_key, [signal.model_dump(mode="json") for signal in signals], self._ttl
            )
        return signals

    async def _generate(self, content: str, domain: str) -> str:
        user_prompt = SIGNAL_USER_PROMPT.format(domain=domain, content=content)

        async def _call() -> str:
            return await self._client.generate(  # type: ignore[union-attr]
                system_prompt=SIGNAL_SYSTEM_PROMPT,
                user_prompt=user_prompt,
                model=self._model,
                temperature=self._temperature,
            )

        if self._health is None:
            return await _call()
        return await self._health.track("openai", "responses.create", _call, context={"domain": domain})


def _build_signals(payload: dict[str, Any], domain: str, source: str) -> list[Signal]:
    entries = payload.get("signals")
    if not isinstance(entries, list):
        raise ValueError("Expected signals array.")
    signals: list[Signal] = []
    seen: set[str] = set()
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("type") not in SIGNAL_TYPES:
            continue
        title = str(entry.get("title") or "Untitled signal")[:80]
        signal_id = Signal.make_id(domain, entry["type"], title)
        if signal_id in seen:
            continue
        seen.add(signal_id)
        date = entry.get("date")
        if not date or date == "unknown":
            date = datetime.now(timezone.utc).date().isoformat()
        signals.append(
            Signal(
                id=signal_id,
                company_domain=domain,
                type=entry["type"],
                title=title,
                description=str(entry.get("description") or ""),
                date=str(date),
                source=source,
            )
        )
    return signals
