"""
Tests for the learner-facing DTO mapping.
"""

from linguaiq.assessment.dto import (
    ListeningQuestionDTO,
    MultipleChoiceQuestionDTO,
    SpeakingQuestionDTO,
    to_question_dto,
    to_session_dto,
)
from linguaiq.assessment.models import (
    create_assessment_session,
    create_multiple_choice_response,
    create_speaking_response,
)
from linguaiq.assessment.scoring import build_assessment_diagnostic, compute_score_breakdown
from linguaiq.tests.conftest import FINALIZED_AT, STARTED_AT, SUBMITTED_AT


def test_questions_hide_answer_key(blueprint):
    dtos = [to_question_dto(question) for question in blueprint.questions]

    assert isinstance(dtos[0], MultipleChoiceQuestionDTO)
    assert isinstance(dtos[1], ListeningQuestionDTO)
    assert isinstance(dtos[2], SpeakingQuestionDTO)
    for dto in dtos:
        payload = dto.model_dump()
        assert "correct_option_ids" not in payload
        assert "explanation" not in payload
        assert "transcript" not in payload
    assert all(set(option) == {"id", "label", "text"} for option in dtos[0].model_dump()["options"])


def test_speaking_question_flattens_prompt(blueprint):
    dto = to_question_dto(blueprint.questions[2])

    assert dto.type == "speaking"
    assert dto.hints == ["Mention metrics", "Results"]
    assert dto.rubric_criterion_ids == ["crit-fluency"]
    assert dto.expected_duration_seconds == 90


def test_session_dto(blueprint):
    grammar, _, _ = blueprint.questions
    responses = [
        create_multiple_choice_response(grammar, ["b"], SUBMITTED_AT, score=100),
        create_speaking_response("speaking-1", "Incident story", SUBMITTED_AT, score=60, rubric_scores={"crit-fluency": 63}),
    ]
    diagnostic = build_assessment_diagnostic(compute_score_breakdown(blueprint.questions, responses))
    session = create_assessment_session(
        id="session-1",
        user_id="user-1",
        blueprint_id=blueprint.id,
        questions=blueprint.questions,
        responses=responses,
        started_at=STARTED_AT,
        created_at=STARTED_AT,
        updated_at=FINALIZED_AT,
        status="completed",
        completed_at=FINALIZED_AT,
        target_level=diagnostic.level,
        diagnostic=diagnostic,
    )

    dto = to_session_dto(session)

    assert dto.status == "completed"
    assert dto.progress == 0.67
    assert dto.target_level == "B1"
    assert [response.type for response in dto.responses] == ["multipleChoice", "speaking"]
    assert dto.responses[0].selected_option_ids == ["b"]
    assert dto.responses[0].transcript is None
    assert dto.responses[1].rubric_scores == {"crit-fluency": 63}
    assert dto.diagnostic.level == "B1"
    assert dto.diagnostic.overall.score == 59
    assert [skill.skill for skill in dto.diagnostic.skills] == ["grammar", "listening", "speaking"]


def test_session_without_diagnostic(blueprint):
    session = create_assessment_session(
        id="session-1",
        user_id="user-1",
        blueprint_id=blueprint.id,
        questions=blueprint.questions,
        started_at=STARTED_AT,
        created_at=STARTED_AT,
        updated_at=STARTED_AT,
    )

    dto = to_session_dto(session)

    assert dto.status == "inProgress"
    assert dto.progress == 0
    assert dto.diagnostic is None
    assert dto.target_level is None
