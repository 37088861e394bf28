"""
Shared fixtures: the leveling blueprint, in-memory adapters and mocked AI
providers.
"""

from unittest.mock import AsyncMock

import pytest

from linguaiq.assessment.blueprints import create_default_blueprint
from linguaiq.assessment.memory_repository import (
    MemoryAssessmentSessionRepository,
    MemoryUserRepository,
    RecordingEventEmitter,
    StaticBlueprintProvider,
)
from linguaiq.assessment.repositories import UserRecord
from linguaiq.assessment.speaking import SpeakingResponsePipeline
from linguaiq.providers.evaluation import (
    CriterionEvaluation,
    RubricEvaluationProvider,
    RubricEvaluationResult,
)
from linguaiq.providers.transcription import TranscriptionProvider, TranscriptionResult

STARTED_AT = "2024-05-01T09:00:00.000Z"
SUBMITTED_AT = "2024-05-01T09:05:00.000Z"
FINALIZED_AT = "2024-05-01T09:30:00.000Z"


@pytest.fixture
def blueprint():
    return create_default_blueprint()


@pytest.fixture
def blueprints(blueprint):
    return StaticBlueprintProvider([blueprint])


@pytest.fixture
def sessions():
    return MemoryAssessmentSessionRepository()


@pytest.fixture
def users():
    return MemoryUserRepository([
        UserRecord(id="user-1", email="learner@example.com", display_name="Ana Learner"),
    ])


@pytest.fixture
def events():
    return RecordingEventEmitter()


@pytest.fixture
def transcription():
    """Transcription provider returning a fixed transcript."""
    provider = AsyncMock(spec=TranscriptionProvider)
    provider.transcribe.return_value = TranscriptionResult(
        transcript="We rolled back the release and recovered in ten minutes",
        duration_ms=42000,
        language="en",
    )
    return provider


@pytest.fixture
def evaluation():
    """Rubric evaluation provider scoring the answer 60 overall."""
    provider = AsyncMock(spec=RubricEvaluationProvider)
    provider.evaluate.return_value = RubricEvaluationResult(
        overall_score=60,
        summary="Generally smooth delivery",
        criteria=[CriterionEvaluation(criterion_id="crit-fluency", score=62.5, evidence="Few pauses")],
    )
    return provider


@pytest.fixture
def speaking(transcription, evaluation, events):
    return SpeakingResponsePipeline(transcription, evaluation, events)
