"""
Unit tests for the Transcription Provider Manager Service (provider facade).
"""

import math

import pytest

from callscribe.errors import ProviderError, ProviderErrorCode
from callscribe.server.services import (
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from callscribe.services.transcription_provider.manager import (
    DEFAULT_CONFIDENCE_SCORE,
    calculate_confidence_score,
    format_segments_to_timestamps,
)

AUDIO_URL = "memory://storage/audio-files/user/recording.mp3"


@pytest.mark.unit
class TestSegmentHelpers:
    def test_no_segments_gives_neutral_confidence(self):
        assert calculate_confidence_score([]) == DEFAULT_CONFIDENCE_SCORE
        assert calculate_confidence_score(None) == DEFAULT_CONFIDENCE_SCORE

    def test_confidence_averages_segment_scores(self):
        segments = [
            TranscriptionSegment(0, 0.0, 1.0, "a", avg_logprob=0.0, no_speech_prob=0.0),
            TranscriptionSegment(1, 1.0, 2.0, "b", avg_logprob=-2.0, no_speech_prob=0.5),
        ]

        expected = (1.0 + 0.5 * math.exp(-1.0)) / 2

        assert calculate_confidence_score(segments) == pytest.approx(expected)

    def test_confidence_is_clamped(self):
        segments = [TranscriptionSegment(0, 0.0, 1.0, "a", avg_logprob=4.0, no_speech_prob=0.0)]

        assert calculate_confidence_score(segments) == 1.0

    def test_timestamps_are_indexed_and_stripped(self):
        segments = [
            TranscriptionSegment(0, 0.0, 2.5, "  hello ", no_speech_prob=0.1),
            TranscriptionSegment(1, 2.5, 4.0, "world", no_speech_prob=0.0),
        ]

        timestamps = format_segments_to_timestamps(segments)

        assert timestamps[0] == {
            "id": "segment-0",
            "start": 0.0,
            "end": 2.5,
            "text": "hello",
            "confidence": pytest.approx(0.9),
            "index": 0,
        }
        assert timestamps[1]["id"] == "segment-1"
        assert timestamps[1]["index"] == 1


@pytest.mark.unit
class TestTranscriptionProviderManagerService:
    """Test primary/secondary fallback semantics."""

    @pytest.fixture
    def providers(self, test_server_manager):
        return test_server_manager.primary_provider, test_server_manager.secondary_provider

    @pytest.mark.asyncio
    async def test_primary_success_does_not_touch_secondary(self, services_manager, providers):
        primary, secondary = providers
        primary.queue_response(TranscriptionResult(text="hello there", language="en"))

        result = await services_manager.transcription_provider_manager.transcribe(
            AUDIO_URL, "recording.mp3", TranscriptionOptions()
        )

        assert result.text == "hello there"
        assert result.provider == primary.name
        assert result.confidence == DEFAULT_CONFIDENCE_SCORE
        assert secondary.calls == []

    @pytest.mark.asyncio
    async def test_retryable_failure_falls_back_with_identical_options(
        self, services_manager, providers
    ):
        primary, secondary = providers
        primary.queue_response(
            ProviderError(ProviderErrorCode.RATE_LIMIT, "slow down", retryable=True)
        )
        secondary.queue_response(TranscriptionResult(text="from secondary", language="en"))
        options = TranscriptionOptions(language=None, prompt="Sola Dental")

        result = await services_manager.transcription_provider_manager.transcribe(
            AUDIO_URL, "recording.mp3", options
        )

        assert result.text == "from secondary"
        assert result.provider == secondary.name
        assert secondary.calls[0].options == primary.calls[0].options
        assert secondary.calls[0].audio_url == AUDIO_URL

    @pytest.mark.asyncio
    async def test_non_retryable_failure_does_not_fall_back(self, services_manager, providers):
        primary, secondary = providers
        primary.queue_response(
            ProviderError(ProviderErrorCode.FILE_TOO_LARGE, "too big", retryable=False)
        )

        with pytest.raises(ProviderError) as exc_info:
            await services_manager.transcription_provider_manager.transcribe(
                AUDIO_URL, "recording.mp3", TranscriptionOptions()
            )

        assert exc_info.value.code == ProviderErrorCode.FILE_TOO_LARGE
        assert secondary.calls == []

    @pytest.mark.asyncio
    async def test_primary_error_propagates_when_fallback_fails(
        self, services_manager, providers
    ):
        primary, secondary = providers
        primary.queue_response(
            ProviderError(ProviderErrorCode.API_ERROR, "primary down", retryable=True)
        )
        secondary.queue_response(
            ProviderError(ProviderErrorCode.NETWORK_ERROR, "secondary down", retryable=True)
        )

        with pytest.raises(ProviderError) as exc_info:
            await services_manager.transcription_provider_manager.transcribe(
                AUDIO_URL, "recording.mp3", TranscriptionOptions()
            )

        assert exc_info.value.message == "primary down"
        assert exc_info.value.provider == primary.name
        assert len(secondary.calls) == 1

    @pytest.mark.asyncio
    async def test_unknown_exception_is_retryable_and_falls_back(
        self, services_manager, providers
    ):
        primary, secondary = providers
        primary.queue_response(ValueError("unexpected payload"))
        secondary.queue_response(TranscriptionResult(text="recovered", language="en"))

        result = await services_manager.transcription_provider_manager.transcribe(
            AUDIO_URL, "recording.mp3", TranscriptionOptions()
        )

        assert result.text == "recovered"

    @pytest.mark.asyncio
    async def test_fallback_disabled_raises_primary_error(self, services_manager, providers):
        primary, secondary = providers
        facade = services_manager.transcription_provider_manager
        facade.fallback_enabled = False
        primary.queue_response(
            ProviderError(ProviderErrorCode.RATE_LIMIT, "slow down", retryable=True)
        )

        with pytest.raises(ProviderError):
            await facade.transcribe(AUDIO_URL, "recording.mp3", TranscriptionOptions())

        assert secondary.calls == []

    @pytest.mark.asyncio
    async def test_validate_configuration_rejects_missing_key(self, services_manager, providers):
        primary, _ = providers
        primary.api_key = None

        with pytest.raises(ProviderError) as exc_info:
            services_manager.transcription_provider_manager.validate_configuration()

        assert exc_info.value.code == ProviderErrorCode.API_ERROR
        assert not exc_info.value.retryable
