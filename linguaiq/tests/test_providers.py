"""
Tests for the transcription and rubric evaluation adapters.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from linguaiq.common.error_handling import (
    ProviderErrorCode,
    RubricEvaluationProviderError,
    TranscriptionProviderError,
)
from linguaiq.providers.evaluation import (
    CriterionEvaluation,
    RemoteRubricEvaluationProvider,
    RubricCriterionSpec,
    RubricEvaluationClient,
    RubricEvaluationResult,
)
from linguaiq.providers.remote_call import ClientError, RemoteCallOptions
from linguaiq.providers.transcription import (
    RemoteTranscriptionProvider,
    ShortAudioFileRef,
    TranscriptionClient,
    TranscriptionResult,
)

RUBRIC = [RubricCriterionSpec(id="crit-fluency", title="Fluency", description="Maintain flow (speaking)", weight=33)]


@pytest.fixture
def transcription_client():
    client = AsyncMock(spec=TranscriptionClient)
    client.transcribe_short_audio.return_value = TranscriptionResult(
        transcript="The deployment failed at noon", duration_ms=15000
    )
    return client


@pytest.fixture
def evaluation_client():
    client = AsyncMock(spec=RubricEvaluationClient)
    client.evaluate_rubric.return_value = RubricEvaluationResult(
        overall_score=72,
        summary="Clear structure",
        criteria=[CriterionEvaluation(criterion_id="crit-fluency", score=70)],
    )
    return client


class TestRemoteTranscriptionProvider:

    async def test_transcribes(self, transcription_client):
        provider = RemoteTranscriptionProvider(transcription_client)
        audio = ShortAudioFileRef(uri="s3://answers/a.webm", duration_ms=15000)
        options = RemoteCallOptions(metadata={"session_id": "s-1"})

        result = await provider.transcribe(audio, locale_hint="en-US", prompt="incident", options=options)

        assert result.transcript == "The deployment failed at noon"
        call = transcription_client.transcribe_short_audio.call_args
        assert call.args[0] == audio
        assert call.kwargs["locale_hint"] == "en-US"
        assert call.kwargs["prompt"] == "incident"
        assert call.kwargs["metadata"] == {"session_id": "s-1"}
        assert call.kwargs["signal"] is not None

    async def test_uses_configured_timeout(self, transcription_client):
        provider = RemoteTranscriptionProvider(transcription_client)

        assert provider.default_timeout_ms == 30000

    async def test_rejects_long_audio_before_calling(self, transcription_client):
        provider = RemoteTranscriptionProvider(transcription_client, max_duration_ms=60000)

        with pytest.raises(TranscriptionProviderError) as exc_info:
            await provider.transcribe(ShortAudioFileRef(uri="s3://a.webm", duration_ms=61000))

        assert exc_info.value.provider_code is ProviderErrorCode.BAD_REQUEST
        assert exc_info.value.details == {"duration_ms": 61000, "limit_ms": 60000}
        transcription_client.transcribe_short_audio.assert_not_awaited()

    async def test_rejects_large_audio_before_calling(self, transcription_client):
        provider = RemoteTranscriptionProvider(transcription_client, max_size_bytes=1024)

        with pytest.raises(TranscriptionProviderError) as exc_info:
            await provider.transcribe(ShortAudioFileRef(uri="s3://a.webm", size_bytes=2048))

        assert exc_info.value.provider_code is ProviderErrorCode.BAD_REQUEST
        transcription_client.transcribe_short_audio.assert_not_awaited()

    @pytest.mark.parametrize("result", [
        TranscriptionResult(transcript="hello", duration_ms=float("nan")),
        TranscriptionResult(transcript="hello", duration_ms=None),
        TranscriptionResult(transcript="   ", duration_ms=1000),
    ])
    async def test_invalid_result(self, transcription_client, result):
        transcription_client.transcribe_short_audio.return_value = result
        provider = RemoteTranscriptionProvider(transcription_client)

        with pytest.raises(TranscriptionProviderError) as exc_info:
            await provider.transcribe(ShortAudioFileRef(uri="s3://a.webm"))

        assert exc_info.value.provider_code is ProviderErrorCode.INVALID_RESPONSE

    async def test_client_error_is_classified(self, transcription_client):
        transcription_client.transcribe_short_audio.side_effect = ClientError("slow down", status=429)
        provider = RemoteTranscriptionProvider(transcription_client)

        with pytest.raises(TranscriptionProviderError) as exc_info:
            await provider.transcribe(ShortAudioFileRef(uri="s3://a.webm"))

        assert exc_info.value.provider_code is ProviderErrorCode.TOO_MANY_REQUESTS

    async def test_slow_client_times_out(self, transcription_client):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        transcription_client.transcribe_short_audio.side_effect = slow
        provider = RemoteTranscriptionProvider(transcription_client, default_timeout_ms=10)

        with pytest.raises(TranscriptionProviderError) as exc_info:
            await provider.transcribe(ShortAudioFileRef(uri="s3://a.webm"))

        assert exc_info.value.provider_code is ProviderErrorCode.TIMEOUT


class TestRemoteRubricEvaluationProvider:

    async def test_evaluates(self, evaluation_client):
        provider = RemoteRubricEvaluationProvider(evaluation_client)

        result = await provider.evaluate("The deployment failed at noon", RUBRIC, context={"question_id": "q"})

        assert result.overall_score == 72
        call = evaluation_client.evaluate_rubric.call_args
        assert call.args == ("The deployment failed at noon", RUBRIC)
        assert call.kwargs["context"] == {"question_id": "q"}

    async def test_uses_configured_timeout(self, evaluation_client):
        assert RemoteRubricEvaluationProvider(evaluation_client).default_timeout_ms == 45000

    @pytest.mark.parametrize("result, field", [
        (RubricEvaluationResult(overall_score=101, summary=""), "overall_score"),
        (RubricEvaluationResult(overall_score=-1, summary=""), "overall_score"),
        (
            RubricEvaluationResult(
                overall_score=50, summary="", criteria=[CriterionEvaluation(criterion_id="crit-fluency", score=140)]
            ),
            "criteria.crit-fluency",
        ),
    ])
    async def test_out_of_range_scores(self, evaluation_client, result, field):
        evaluation_client.evaluate_rubric.return_value = result
        provider = RemoteRubricEvaluationProvider(evaluation_client)

        with pytest.raises(RubricEvaluationProviderError) as exc_info:
            await provider.evaluate("text", RUBRIC)

        assert exc_info.value.provider_code is ProviderErrorCode.INVALID_RESPONSE
        assert exc_info.value.details["field"] == field

    async def test_server_error_is_classified(self, evaluation_client):
        evaluation_client.evaluate_rubric.side_effect = ClientError("upstream down", status=502)
        provider = RemoteRubricEvaluationProvider(evaluation_client)

        with pytest.raises(RubricEvaluationProviderError) as exc_info:
            await provider.evaluate("text", RUBRIC)

        assert exc_info.value.provider_code is ProviderErrorCode.SERVICE_UNAVAILABLE
        assert exc_info.value.retryable is True
