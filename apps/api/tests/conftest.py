"""
Pytest configuration and shared fixtures.

Gemini is never called for real: every client is built on an
``httpx.MockTransport`` whose handler the test supplies.
"""
import json
import os
import sys
from pathlib import Path

import httpx
import pytest

API_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(API_ROOT))

# Settings are read at import time; keep the shared app's limiter out of the way.
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("REDIS_URL", "")

from ccna_api.core.cache import MemoryTTLCache  # noqa: E402
from ccna_api.services.continuation import ContinuationLimits  # noqa: E402
from ccna_api.services.gemini_client import GeminiClient  # noqa: E402
from ccna_api.services.tutor_service import TutorService  # noqa: E402


def make_payload(text: str, finish_reason: str | None = "STOP") -> dict:
    candidate = {"content": {"role": "model", "parts": [{"text": text}]}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate]}


def make_sse(*events: dict) -> bytes:
    return "".join(f"data: {json.dumps(event)}\r\n\r\n" for event in events).encode("utf-8")


def parse_sse_frames(body: str) -> list[tuple[str, dict]]:
    frames = []
    for block in body.strip().split("\n\n"):
        lines = block.splitlines()
        event = next(line[len("event:"):].strip() for line in lines if line.startswith("event:"))
        data = next(line[len("data:"):].strip() for line in lines if line.startswith("data:"))
        frames.append((event, json.loads(data)))
    return frames


@pytest.fixture
def gemini_payload():
    return make_payload


@pytest.fixture
def sse_body():
    return make_sse


@pytest.fixture
def parse_sse():
    return parse_sse_frames


@pytest.fixture
def tutor_json():
    """A clean tutor answer as the model is asked to produce it."""
    return {
        "title": "OSPF",
        "simpleExplanation": "OSPF is a link-state routing protocol that lets routers share a full map of the network.",
        "realWorldExample": "A campus network uses OSPF area 0 as the backbone between buildings.",
        "keyCommands": ["router ospf 1", "network 10.0.0.0 0.255.255.255 area 0"],
        "commonMistakes": ["Mismatched hello timers", "Forgetting the wildcard mask"],
        "quickCheck": ["What is area 0?", "Which multicast address do OSPF routers use?"],
    }


@pytest.fixture
def upstream():
    """Scriptable Gemini stand-in: queue responses, inspect the requests it received."""

    class Upstream:
        def __init__(self):
            self.responses: list = []
            self.requests: list[httpx.Request] = []

        def queue(self, *responses):
            self.responses.extend(responses)

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if not self.responses:
                raise AssertionError(f"unexpected upstream call to {request.url}")
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

        @property
        def bodies(self) -> list[dict]:
            return [json.loads(request.content) for request in self.requests]

        def client(self, **kwargs) -> GeminiClient:
            kwargs.setdefault("api_key", "test-key")
            kwargs.setdefault("model", "gemini-test")
            kwargs.setdefault("base_url", "https://gemini.test/v1beta")
            kwargs.setdefault("retry_delay_seconds", 0)
            return GeminiClient(transport=httpx.MockTransport(self.handler), **kwargs)

    return Upstream()


@pytest.fixture
def memory_cache():
    return MemoryTTLCache()


@pytest.fixture
def tutor_service(upstream, memory_cache):
    return TutorService(
        client=upstream.client(),
        cache_backend=memory_cache,
        cache_ttl_seconds=1800,
        limits=ContinuationLimits(max_continuations=3, max_output_chars=12000),
    )
