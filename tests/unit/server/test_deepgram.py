"""
Unit tests for the Deepgram client and provider error mapping.

The client is exercised against a local aiohttp server standing in for the
Deepgram listen endpoint.
"""

import math

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from callscribe.errors import ProviderError, ProviderErrorCode, provider_error_from_status
from callscribe.server.common.deepgram import (
    DeepgramClient,
    extract_keywords,
    group_words_into_segments,
)
from callscribe.server.services import TranscriptionOptions


def _word(word: str, start: float, end: float, confidence: float = 0.9) -> dict:
    return {
        "word": word.lower(),
        "punctuated_word": word,
        "start": start,
        "end": end,
        "confidence": confidence,
    }


@pytest.mark.unit
class TestDeepgramHelpers:
    def test_keywords_skip_short_words_and_are_capped(self):
        prompt = "a to Sola Dental " + " ".join(f"word{i}" for i in range(20))

        keywords = extract_keywords(prompt)

        assert keywords[:2] == ["Sola", "Dental"]
        assert len(keywords) == 10
        assert extract_keywords(None) == []

    def test_words_are_grouped_into_thirty_second_segments(self):
        words = [
            _word("Hello,", 0.0, 0.5, 0.8),
            _word("there.", 10.0, 10.5, 1.0),
            _word("Next", 30.0, 30.4, 0.5),
            _word("part.", 45.0, 45.6, 0.5),
        ]

        segments = group_words_into_segments(words)

        assert len(segments) == 2
        assert segments[0].text == "Hello, there."
        assert segments[0].start == 0.0
        assert segments[0].end == 10.5
        assert segments[0].avg_logprob == pytest.approx(math.log(0.9))
        assert segments[0].no_speech_prob == pytest.approx(0.1)
        assert segments[1].id == 1
        assert segments[1].start == 30.0
        assert segments[1].no_speech_prob == pytest.approx(0.5)

    def test_no_words_gives_no_segments(self):
        assert group_words_into_segments([]) == []


@pytest.mark.unit
class TestProviderErrorFromStatus:
    @pytest.mark.parametrize(
        "status, code, retryable",
        [
            (401, ProviderErrorCode.API_ERROR, False),
            (402, ProviderErrorCode.INSUFFICIENT_CREDITS, False),
            (413, ProviderErrorCode.FILE_TOO_LARGE, False),
            (429, ProviderErrorCode.RATE_LIMIT, True),
            (500, ProviderErrorCode.API_ERROR, True),
            (503, ProviderErrorCode.API_ERROR, True),
            (400, ProviderErrorCode.API_ERROR, False),
        ],
    )
    def test_status_mapping(self, status, code, retryable):
        error = provider_error_from_status(status, "body", provider="deepgram")

        assert error.code == code
        assert error.retryable is retryable
        assert error.provider == "deepgram"
        assert error.details["status"] == status


@pytest.mark.unit
class TestDeepgramClient:
    @pytest.fixture
    def received(self) -> list[web.Request]:
        return []

    @pytest.fixture
    async def deepgram_server(self, received):
        state = {"status": 200, "payload": None}

        async def listen(request: web.Request) -> web.Response:
            received.append(request)
            request["body"] = await request.json()
            if state["status"] != 200:
                return web.Response(status=state["status"], text="error")
            return web.json_response(state["payload"])

        app = web.Application()
        app.router.add_post("/v1/listen", listen)
        async with TestServer(app) as server:
            server.state = state
            yield server

    @pytest.fixture
    async def client(self, deepgram_server):
        client = DeepgramClient(
            api_key="dg-key", endpoint=f"http://{deepgram_server.host}:{deepgram_server.port}"
        )
        await client.connect()
        yield client
        await client.disconnect()

    @pytest.mark.asyncio
    async def test_transcribe_parses_response(self, client, deepgram_server, received):
        deepgram_server.state["payload"] = {
            "metadata": {"duration": 12.5},
            "results": {
                "channels": [
                    {
                        "detected_language": "es",
                        "alternatives": [
                            {
                                "transcript": "Hola, buenos dias.",
                                "words": [
                                    _word("Hola,", 0.0, 0.4),
                                    _word("buenos", 0.5, 0.8),
                                    _word("dias.", 0.9, 1.2),
                                ],
                            }
                        ],
                    }
                ]
            },
        }

        result = await client.transcribe(
            "https://storage/signed/call.mp3",
            "call.mp3",
            TranscriptionOptions(prompt="Sola Dental"),
        )

        assert result.text == "Hola, buenos dias."
        assert result.language == "es"
        assert result.duration == 12.5
        assert result.provider == "deepgram"
        assert len(result.segments) == 1

        request = received[0]
        assert request.headers["Authorization"] == "Token dg-key"
        assert request["body"] == {"url": "https://storage/signed/call.mp3"}
        assert request.query["detect_language"] == "true"
        assert request.query.getall("keywords") == ["Sola", "Dental"]

    @pytest.mark.asyncio
    async def test_explicit_language_is_sent(self, client, deepgram_server, received):
        deepgram_server.state["payload"] = {
            "results": {"channels": [{"alternatives": [{"transcript": "hello"}]}]}
        }

        result = await client.transcribe("https://x/a.wav", "a.wav", TranscriptionOptions("en"))

        assert result.language == "en"
        assert received[0].query["language"] == "en"
        assert "detect_language" not in received[0].query

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable(self, client, deepgram_server):
        deepgram_server.state["status"] = 429

        with pytest.raises(ProviderError) as exc_info:
            await client.transcribe("https://x/a.wav", "a.wav", TranscriptionOptions())

        assert exc_info.value.code == ProviderErrorCode.RATE_LIMIT
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_missing_transcript_is_an_error(self, client, deepgram_server):
        deepgram_server.state["payload"] = {"results": {"channels": []}}

        with pytest.raises(ProviderError) as exc_info:
            await client.transcribe("https://x/a.wav", "a.wav", TranscriptionOptions())

        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_unsupported_format_is_rejected_locally(self, client, received):
        with pytest.raises(ProviderError) as exc_info:
            await client.transcribe("https://x/a.txt", "a.txt", TranscriptionOptions())

        assert exc_info.value.code == ProviderErrorCode.UNSUPPORTED_FORMAT
        assert received == []

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self):
        client = DeepgramClient(api_key="dg-key", endpoint="http://127.0.0.1:1")
        await client.connect()
        try:
            with pytest.raises(ProviderError) as exc_info:
                await client.transcribe("https://x/a.wav", "a.wav", TranscriptionOptions())
        finally:
            await client.disconnect()

        assert exc_info.value.code == ProviderErrorCode.NETWORK_ERROR
        assert exc_info.value.retryable
