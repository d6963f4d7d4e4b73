"""
Tests for the tutor pipeline: prompt, Gemini call, continuation, normalization, cache.
"""
import json

import httpx
import pytest

from ccna_api.core.cache import NullCache
from ccna_api.core.errors import ConfigurationError, GenerationFailed
from ccna_api.services.continuation import ContinuationLimits
from ccna_api.services.tutor_service import TutorService


class TestExplain:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, tutor_service, upstream, gemini_payload, tutor_json):
        upstream.queue(httpx.Response(200, json=gemini_payload(json.dumps(tutor_json))))

        first, first_cached = await tutor_service.explain("OSPF", "link-state IGP")
        second, second_cached = await tutor_service.explain("OSPF", "link-state IGP")

        assert first.to_wire() == tutor_json
        assert second == first
        assert (first_cached, second_cached) == (False, True)
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_different_context_is_a_different_prompt(self, tutor_service, upstream, gemini_payload):
        upstream.queue(
            httpx.Response(200, json=gemini_payload("Simple explanation:\nFirst.")),
            httpx.Response(200, json=gemini_payload("Simple explanation:\nSecond.")),
        )

        first, _ = await tutor_service.explain("OSPF", "context one")
        second, _ = await tutor_service.explain("OSPF", "context two")

        assert (first.simple_explanation, second.simple_explanation) == ("First.", "Second.")

    @pytest.mark.asyncio
    async def test_truncated_output_is_continued(self, tutor_service, upstream, gemini_payload, tutor_json):
        text = json.dumps(tutor_json)
        upstream.queue(
            httpx.Response(200, json=gemini_payload(text[:60], "MAX_TOKENS")),
            httpx.Response(200, json=gemini_payload(text[60:], "STOP")),
        )

        result, _ = await tutor_service.explain("OSPF")

        assert result.to_wire() == tutor_json
        assert len(upstream.requests) == 2
        assert upstream.bodies[1]["contents"][1] == {"role": "model", "parts": [{"text": text[:60]}]}

    @pytest.mark.asyncio
    async def test_incomplete_output_is_not_cached(self, tutor_service, upstream, gemini_payload, memory_cache):
        upstream.queue(
            httpx.Response(200, json=gemini_payload("Partial explanation", "MAX_TOKENS")),
            httpx.Response(500, json={"error": {"message": "internal"}}),
        )

        result, cached = await tutor_service.explain("BGP")

        assert result.simple_explanation == "Partial explanation"
        assert result.title == "BGP"
        assert not cached
        assert len(memory_cache) == 0

    @pytest.mark.asyncio
    async def test_upstream_failure_propagates(self, tutor_service, upstream):
        upstream.queue(httpx.Response(429, json={"error": {"message": "quota"}}))

        with pytest.raises(GenerationFailed):
            await tutor_service.explain("OSPF")

    @pytest.mark.asyncio
    async def test_missing_key_fails_before_cache_or_network(self, upstream, memory_cache):
        service = TutorService(client=upstream.client(api_key=""), cache_backend=memory_cache)

        with pytest.raises(ConfigurationError):
            await service.explain("OSPF")

        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_null_cache_always_calls_upstream(self, upstream, gemini_payload):
        service = TutorService(client=upstream.client(), cache_backend=NullCache())
        upstream.queue(
            httpx.Response(200, json=gemini_payload("Simple explanation:\nOne.")),
            httpx.Response(200, json=gemini_payload("Simple explanation:\nOne.")),
        )

        await service.explain("OSPF")
        _, cached = await service.explain("OSPF")

        assert not cached
        assert len(upstream.requests) == 2


class TestGenerateText:
    @pytest.mark.asyncio
    async def test_raw_text_is_cached(self, tutor_service, upstream, gemini_payload):
        upstream.queue(httpx.Response(200, json=gemini_payload("Plain answer.")))

        assert await tutor_service.generate_text("what is a VLAN?") == ("Plain answer.", False)
        assert await tutor_service.generate_text("what is a VLAN?") == ("Plain answer.", True)


class TestStreamExplain:
    @pytest.mark.asyncio
    async def test_chunks_then_done(self, tutor_service, upstream, gemini_payload, sse_body, parse_sse):
        upstream.queue(
            httpx.Response(
                200,
                content=sse_body(
                    gemini_payload("Simple explanation:\nOSPF is ", None),
                    gemini_payload("a link-state protocol.", "STOP"),
                ),
                headers={"content-type": "text/event-stream"},
            )
        )

        frames = parse_sse("".join([frame async for frame in tutor_service.stream_explain("OSPF")]))

        assert [event for event, _ in frames] == ["chunk", "chunk", "done"]
        assert "".join(data["delta"] for event, data in frames if event == "chunk") == (
            "Simple explanation:\nOSPF is a link-state protocol."
        )
        done = frames[-1][1]
        assert done["cached"] is False
        assert done["result"]["simpleExplanation"] == "OSPF is a link-state protocol."
        assert done["result"]["title"] == "OSPF"

    @pytest.mark.asyncio
    async def test_truncated_stream_is_continued(self, tutor_service, upstream, gemini_payload, sse_body, parse_sse):
        upstream.queue(
            httpx.Response(
                200,
                content=sse_body(gemini_payload("Simple explanation:\nHSRP gives", "MAX_TOKENS")),
                headers={"content-type": "text/event-stream"},
            ),
            httpx.Response(200, json=gemini_payload(" hosts a virtual gateway.", "STOP")),
        )

        frames = parse_sse("".join([frame async for frame in tutor_service.stream_explain("HSRP")]))

        assert [data.get("delta") for event, data in frames if event == "chunk"] == [
            "Simple explanation:\nHSRP gives",
            " hosts a virtual gateway.",
        ]
        assert frames[-1][1]["result"]["simpleExplanation"] == "HSRP gives hosts a virtual gateway."

    @pytest.mark.asyncio
    async def test_cached_result_streams_single_done(self, tutor_service, upstream, gemini_payload, parse_sse):
        upstream.queue(httpx.Response(200, json=gemini_payload("Simple explanation:\nCached.")))
        await tutor_service.explain("NTP")

        frames = parse_sse("".join([frame async for frame in tutor_service.stream_explain("NTP")]))

        assert frames == [("done", {"result": frames[0][1]["result"], "cached": True})]
        assert frames[0][1]["result"]["simpleExplanation"] == "Cached."
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_upstream_error_becomes_error_event(self, tutor_service, upstream, parse_sse):
        upstream.queue(httpx.Response(503, json={"error": {"message": "overloaded"}}))

        frames = parse_sse("".join([frame async for frame in tutor_service.stream_explain("OSPF")]))

        assert frames == [
            ("error", {"error": "Gemini request failed", "status": 503, "details": {"message": "overloaded"}})
        ]


class TestOutputCap:
    @pytest.mark.asyncio
    async def test_streamed_and_buffered_text_share_the_cap(
        self, upstream, memory_cache, gemini_payload, sse_body, parse_sse
    ):
        service = TutorService(
            client=upstream.client(),
            cache_backend=memory_cache,
            limits=ContinuationLimits(max_continuations=3, max_output_chars=10),
        )
        upstream.queue(
            httpx.Response(
                200,
                content=sse_body(gemini_payload("Hello ", None), gemini_payload("world, again", "STOP")),
                headers={"content-type": "text/event-stream"},
            ),
            httpx.Response(200, json=gemini_payload("Hello world, again", "STOP")),
        )

        frames = parse_sse("".join([frame async for frame in service.stream_text("greet")]))
        buffered, _ = await TutorService(
            client=upstream.client(),
            cache_backend=NullCache(),
            limits=ContinuationLimits(max_continuations=3, max_output_chars=10),
        ).generate_text("greet")

        assert frames == [
            ("chunk", {"delta": "Hello "}),
            ("chunk", {"delta": "worl"}),
            ("done", {"text": "Hello worl", "cached": False}),
        ]
        assert buffered == "Hello worl"
