from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

import httpx
from loguru import logger

from ccna_api.core.config import settings
from ccna_api.core.errors import ConfigurationError, GenerationFailed, GenerationTimeout

TRUNCATED_FINISH_REASON = "MAX_TOKENS"
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


def extract_candidate(payload: dict) -> tuple[str, str | None]:
    """Return (text, finishReason) of the first candidate in a generateContent payload."""
    candidates = payload.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return "", None
    candidate = candidates[0]
    parts = (candidate.get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    return text, candidate.get("finishReason")


@dataclass
class GenerationResponse:
    status_code: int
    payload: dict = field(default_factory=dict)

    @property
    def text(self) -> str:
        return extract_candidate(self.payload)[0]

    @property
    def finish_reason(self) -> str | None:
        return extract_candidate(self.payload)[1]

    @property
    def truncated(self) -> bool:
        return self.finish_reason == TRUNCATED_FINISH_REASON


@dataclass
class GenerationChunk:
    text: str
    finish_reason: str | None = None


def _error_detail(response: httpx.Response):
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return body.get("error", body)
    return body


class GeminiClient:
    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        retry_once: bool | None = None,
        retry_delay_seconds: float = 1.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self.model = model or settings.gemini_model
        self.base_url = (base_url or settings.gemini_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.gemini_timeout_seconds
        self.retry_once = settings.gemini_retry_once if retry_once is None else retry_once
        self.retry_delay_seconds = retry_delay_seconds
        self.transport = transport

    def ensure_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is missing")

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds), transport=self.transport)

    def _url(self, method: str) -> str:
        return f"{self.base_url}/models/{self.model}:{method}"

    def _headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key or "", "Content-Type": "application/json"}

    @staticmethod
    def _body(contents: list[dict], max_output_tokens: int, temperature: float) -> dict:
        return {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": max_output_tokens, "temperature": temperature},
        }

    async def generate(
        self,
        contents: list[dict],
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> GenerationResponse:
        self.ensure_configured()
        body = self._body(
            contents,
            max_output_tokens or settings.tutor_max_output_tokens,
            settings.tutor_temperature if temperature is None else temperature,
        )
        retries_left = 1 if self.retry_once else 0
        while True:
            try:
                return await self._post(body)
            except GenerationFailed as exc:
                if not retries_left or exc.status_code not in RETRYABLE_STATUSES:
                    raise
                retries_left -= 1
                logger.warning("Gemini returned {}, retrying once", exc.status_code)
                await asyncio.sleep(self.retry_delay_seconds)

    async def _send(self, body: dict) -> httpx.Response:
        async with self._http_client() as client:
            return await client.post(self._url("generateContent"), json=body, headers=self._headers())

    async def _post(self, body: dict) -> GenerationResponse:
        # httpx limits each phase; wait_for bounds the whole call.
        try:
            response = await asyncio.wait_for(self._send(body), self.timeout_seconds)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.error("Gemini timed out after {}s", self.timeout_seconds)
            raise GenerationTimeout(self.timeout_seconds) from exc
        except httpx.TransportError as exc:
            logger.error("Gemini transport error: {}", exc)
            raise GenerationFailed(503, str(exc)) from exc

        if response.is_error:
            detail = _error_detail(response)
            logger.error("Gemini error {}: {}", response.status_code, detail)
            raise GenerationFailed(response.status_code, detail)

        try:
            payload = response.json()
        except ValueError as exc:
            raise GenerationFailed(response.status_code, "Gemini returned a non-JSON body") from exc
        return GenerationResponse(status_code=response.status_code, payload=payload if isinstance(payload, dict) else {})

    async def stream(
        self,
        contents: list[dict],
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[GenerationChunk]:
        self.ensure_configured()
        body = self._body(
            contents,
            max_output_tokens or settings.tutor_max_output_tokens,
            settings.tutor_temperature if temperature is None else temperature,
        )
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        try:
            async with self._http_client() as client:
                async with client.stream(
                    "POST",
                    self._url("streamGenerateContent"),
                    params={"alt": "sse"},
                    json=body,
                    headers=self._headers(),
                ) as response:
                    if response.is_error:
                        await response.aread()
                        detail = _error_detail(response)
                        logger.error("Gemini stream error {}: {}", response.status_code, detail)
                        raise GenerationFailed(response.status_code, detail)

                    async for line in response.aiter_lines():
                        if loop.time() > deadline:
                            logger.error("Gemini stream exceeded {}s", self.timeout_seconds)
                            raise GenerationTimeout(self.timeout_seconds)
                        if not line.startswith("data:"):
                            continue
                        try:
                            payload = json.loads(line[len("data:"):].strip())
                        except ValueError:
                            logger.warning("Skipping unparseable SSE line from Gemini")
                            continue
                        text, finish_reason = extract_candidate(payload if isinstance(payload, dict) else {})
                        if text or finish_reason:
                            yield GenerationChunk(text=text, finish_reason=finish_reason)
        except httpx.TimeoutException as exc:
            logger.error("Gemini stream timed out after {}s", self.timeout_seconds)
            raise GenerationTimeout(self.timeout_seconds) from exc
        except httpx.TransportError as exc:
            logger.error("Gemini stream transport error: {}", exc)
            raise GenerationFailed(503, str(exc)) from exc
