from __future__ import annotations

import json
from collections.abc import AsyncIterator

from loguru import logger

from ccna_api.core.cache import NullCache, TutorCache, cache, cache_key
from ccna_api.core.config import settings
from ccna_api.core.errors import GenerationFailed, GenerationTimeout, error_response
from ccna_api.schemas.tutor import TutorResult
from ccna_api.services.continuation import (
    ContinuationLimits,
    GenerationOutcome,
    continue_truncated,
    generate_with_continuation,
)
from ccna_api.services.gemini_client import GeminiClient
from ccna_api.services.prompts import build_tutor_prompt, prompt_contents
from ccna_api.services.tutor_normalizer import normalize_tutor_result


def format_sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class TutorService:
    def __init__(
        self,
        client: GeminiClient | None = None,
        cache_backend: TutorCache | None = None,
        cache_ttl_seconds: int | None = None,
        limits: ContinuationLimits | None = None,
    ) -> None:
        self.client = client or GeminiClient()
        if cache_backend is None:
            cache_backend = cache if settings.tutor_cache_enabled else NullCache()
        self.cache = cache_backend
        self.cache_ttl_seconds = cache_ttl_seconds or settings.tutor_cache_ttl_seconds
        self.limits = limits or ContinuationLimits(
            max_continuations=settings.tutor_max_continuations,
            max_output_chars=settings.tutor_max_output_chars,
        )

    def build_prompt(self, concept: str, context: str | None = None) -> str:
        return build_tutor_prompt(concept, context, max_context_chars=settings.tutor_max_context_chars)

    async def explain(
        self,
        concept: str,
        context: str | None = None,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> tuple[TutorResult, bool]:
        """Return the tutor result for ``concept`` and whether it came from the cache."""
        self.client.ensure_configured()
        prompt = self.build_prompt(concept, context)
        key = cache_key("tutor", self.client.model, prompt)

        cached = await self.cache.get(key)
        if cached is not None:
            logger.debug("Tutor cache hit for {!r}", concept)
            return normalize_tutor_result(cached, title=concept), True

        outcome = await generate_with_continuation(
            self.client,
            prompt,
            self.limits,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        )
        result = normalize_tutor_result(outcome.text, title=concept)
        await self._remember(key, outcome, result.to_wire())
        return result, False

    async def generate_text(self, prompt: str) -> tuple[str, bool]:
        self.client.ensure_configured()
        key = cache_key("generate", self.client.model, prompt)

        cached = await self.cache.get(key)
        if isinstance(cached, str):
            return cached, True

        outcome = await generate_with_continuation(self.client, prompt, self.limits)
        await self._remember(key, outcome, outcome.text)
        return outcome.text, False

    async def stream_explain(
        self,
        concept: str,
        context: str | None = None,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        """SSE frames: ``chunk`` per text delta, then ``done`` with the normalized result or ``error``."""
        prompt = self.build_prompt(concept, context)
        key = cache_key("tutor", self.client.model, prompt)

        cached = await self.cache.get(key)
        if cached is not None:
            result = normalize_tutor_result(cached, title=concept)
            yield format_sse("done", {"result": result.to_wire(), "cached": True})
            return

        outcome = GenerationOutcome(text="")
        try:
            async for delta in self._stream_generation(prompt, outcome, max_output_tokens, temperature):
                yield format_sse("chunk", {"delta": delta})
        except (GenerationFailed, GenerationTimeout) as exc:
            _, body = error_response(exc)
            yield format_sse("error", body)
            return

        result = normalize_tutor_result(outcome.text, title=concept)
        await self._remember(key, outcome, result.to_wire())
        yield format_sse("done", {"result": result.to_wire(), "cached": False})

    async def stream_text(self, prompt: str) -> AsyncIterator[str]:
        key = cache_key("generate", self.client.model, prompt)

        cached = await self.cache.get(key)
        if isinstance(cached, str):
            yield format_sse("done", {"text": cached, "cached": True})
            return

        outcome = GenerationOutcome(text="")
        try:
            async for delta in self._stream_generation(prompt, outcome):
                yield format_sse("chunk", {"delta": delta})
        except (GenerationFailed, GenerationTimeout) as exc:
            _, body = error_response(exc)
            yield format_sse("error", body)
            return

        await self._remember(key, outcome, outcome.text)
        yield format_sse("done", {"text": outcome.text, "cached": False})

    async def _stream_generation(
        self,
        prompt: str,
        outcome: GenerationOutcome,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[str]:
        async for chunk in self.client.stream(
            prompt_contents(prompt),
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        ):
            piece = chunk.text[: self.limits.max_output_chars - len(outcome.text)]
            if piece:
                outcome.text += piece
                yield piece
            if chunk.finish_reason:
                outcome.finish_reason = chunk.finish_reason

        async for delta in continue_truncated(
            self.client,
            prompt,
            outcome,
            self.limits,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        ):
            yield delta

    async def _remember(self, key: str, outcome: GenerationOutcome, value: dict | str) -> None:
        # Output that is still cut off is served but not cached.
        if outcome.truncated or not outcome.text.strip():
            logger.info("Not caching incomplete generation ({})", outcome.stop_reason)
            return
        await self.cache.set(key, value, self.cache_ttl_seconds)


tutor_service = TutorService()
