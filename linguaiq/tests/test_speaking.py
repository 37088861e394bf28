"""
Tests for the speaking response pipeline.
"""

import logging

import pytest

from linguaiq.common.error_handling import (
    CriterionNotFoundError,
    ProviderErrorCode,
    RubricEvaluationProviderError,
)
from linguaiq.common.logger import LoggerAdapter
from linguaiq.assessment.memory_repository import RecordingEventEmitter
from linguaiq.assessment.models import create_assessment_session
from linguaiq.assessment.repositories import LifecycleEvent, create_assessment_blueprint
from linguaiq.assessment.speaking import SpeakingResponsePipeline, resolve_rubric, to_rubric_criterion_spec
from linguaiq.providers.transcription import ShortAudioFileRef
from linguaiq.tests.conftest import STARTED_AT, SUBMITTED_AT

AUDIO = ShortAudioFileRef(uri="s3://answers/speaking-1.webm")


def make_session(blueprint):
    return create_assessment_session(
        id="session-1",
        user_id="user-1",
        blueprint_id=blueprint.id,
        questions=blueprint.questions,
        started_at=STARTED_AT,
        created_at=STARTED_AT,
        updated_at=STARTED_AT,
        status="inProgress",
    )


def speaking_question(blueprint):
    return blueprint.questions[2]


def test_rubric_entry_flattens_descriptors(blueprint):
    spec = to_rubric_criterion_spec(blueprint.criteria[0])

    assert spec.id == "crit-fluency"
    assert spec.title == "Fluency"
    assert spec.description == "Maintain flow during interviews (speaking)"
    assert spec.weight == 33
    assert spec.expectations.splitlines() == [
        "NEEDSSUPPORT: Frequent pauses (0-25)",
        "EMERGING: Some hesitations (26-50)",
        "PROFICIENT: Generally smooth (51-75)",
        "ADVANCED: Natural delivery (76-100)",
    ]


def test_resolve_rubric_rejects_unknown_criterion(blueprint):
    with pytest.raises(CriterionNotFoundError):
        resolve_rubric(speaking_question(blueprint), {})


async def test_builds_rounded_speaking_response(blueprint, speaking):
    response = await speaking.build_response(
        make_session(blueprint), blueprint, speaking_question(blueprint), AUDIO, SUBMITTED_AT
    )

    assert response.question_id == "speaking-1"
    assert response.submitted_at == SUBMITTED_AT
    assert response.score == 60
    assert response.rubric_scores == {"crit-fluency": 63}


async def test_evaluation_failure_is_reported_and_reraised(blueprint, speaking, evaluation, events):
    failure = RubricEvaluationProviderError("bad gateway", provider_code=ProviderErrorCode.SERVICE_UNAVAILABLE)
    evaluation.evaluate.side_effect = failure

    with pytest.raises(RubricEvaluationProviderError) as exc_info:
        await speaking.build_response(
            make_session(blueprint), blueprint, speaking_question(blueprint), AUDIO, SUBMITTED_AT
        )

    assert exc_info.value is failure
    degraded = events.named(LifecycleEvent.IA_DEGRADED)
    assert len(degraded) == 1
    assert degraded[0].payload["error_code"] == "SERVICE_UNAVAILABLE"


async def test_missing_criterion_is_reported_without_error_code(blueprint, transcription, evaluation):
    events = RecordingEventEmitter()
    pipeline = SpeakingResponsePipeline(transcription, evaluation, events)
    bare = create_assessment_blueprint(id="bp-bare", questions=blueprint.questions, criteria=())

    with pytest.raises(CriterionNotFoundError):
        await pipeline.build_response(make_session(bare), bare, speaking_question(bare), AUDIO, SUBMITTED_AT)

    evaluation.evaluate.assert_not_awaited()
    assert [item.payload for item in events.named(LifecycleEvent.IA_DEGRADED)] == [
        {"session_id": "session-1", "question_id": "speaking-1", "type": "speaking"},
    ]


async def test_failure_is_logged_with_session_and_question(blueprint, transcription, evaluation, events, caplog):
    transcription.transcribe.side_effect = RuntimeError("connection reset")
    pipeline = SpeakingResponsePipeline(
        transcription, evaluation, events,
        logger_instance=LoggerAdapter(logging.getLogger("linguaiq_tests.speaking"), {"request_id": "req-7"}),
    )

    with caplog.at_level(logging.ERROR, logger="linguaiq_tests.speaking"):
        with pytest.raises(RuntimeError):
            await pipeline.build_response(
                make_session(blueprint), blueprint, speaking_question(blueprint), AUDIO, SUBMITTED_AT
            )

    [record] = caplog.records
    assert record.data == {"request_id": "req-7", "session_id": "session-1", "question_id": "speaking-1"}
    assert "connection reset" in record.getMessage()
    assert "question_id=speaking-1" in record.getMessage()
