"""
Assessment DTOs

Pydantic models for what leaves the assessment core. Question DTOs are
learner-facing: they never carry the correct option ids, option rationales,
explanations or the listening transcript.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from linguaiq.assessment.diagnostics import AssessmentDiagnostic, CEFRDiagnosticProfile
from linguaiq.assessment.models import AssessmentResponse, AssessmentSession, calculate_session_progress
from linguaiq.assessment.questions import (
    AssessmentQuestion,
    ListeningQuestion,
    MultipleChoiceOption,
    MultipleChoiceQuestion,
    SpeakingQuestion,
)


class OptionDTO(BaseModel):
    id: str
    label: str
    text: str


class QuestionDTO(BaseModel):
    """Fields every question DTO shares."""
    id: str
    type: str
    title: str
    skill: str
    cefr_level: str
    weight: float
    tags: List[str] = Field(default_factory=list)


class MultipleChoiceQuestionDTO(QuestionDTO):
    stem: str
    options: List[OptionDTO]


class ListeningQuestionDTO(QuestionDTO):
    prompt: str
    audio_url: str
    options: Optional[List[OptionDTO]] = None
    follow_up_prompt: Optional[str] = None


class SpeakingQuestionDTO(QuestionDTO):
    context: str
    instruction: str
    hints: List[str] = Field(default_factory=list)
    rubric_criterion_ids: List[str]
    expected_duration_seconds: Optional[int] = None


AnyQuestionDTO = Union[MultipleChoiceQuestionDTO, ListeningQuestionDTO, SpeakingQuestionDTO]


class ResponseDTO(BaseModel):
    """A recorded answer; variant-specific fields are None when not applicable."""
    type: str
    question_id: str
    submitted_at: str
    score: Optional[float] = None
    selected_option_ids: Optional[List[str]] = None
    confidence: Optional[float] = None
    notes: Optional[str] = None
    transcript: Optional[str] = None
    audio_url: Optional[str] = None
    rubric_scores: Optional[Dict[str, float]] = None


class ProfileDTO(BaseModel):
    level: str
    score: int
    confidence: str
    band_label: str
    band_description: str
    rationale: List[str] = Field(default_factory=list)


class SkillDiagnosticDTO(BaseModel):
    skill: str
    profile: ProfileDTO
    percentile: Optional[float] = None
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)


class DiagnosticDTO(BaseModel):
    level: str
    overall: ProfileDTO
    skills: List[SkillDiagnosticDTO]
    recommendations: List[str] = Field(default_factory=list)
    notes: Optional[str] = None


class SessionDTO(BaseModel):
    id: str
    user_id: str
    blueprint_id: str
    status: str
    target_level: Optional[str] = None
    started_at: str
    completed_at: Optional[str] = None
    progress: float = Field(..., ge=0.0, le=1.0, description="Share of questions answered")
    questions: List[AnyQuestionDTO]
    responses: List[ResponseDTO]
    diagnostic: Optional[DiagnosticDTO] = None


def _option_dtos(options: Optional[tuple]) -> Optional[List[OptionDTO]]:
    if options is None:
        return None
    return [_option_dto(option) for option in options]


def _option_dto(option: MultipleChoiceOption) -> OptionDTO:
    return OptionDTO(id=option.id, label=option.label, text=option.text)


def to_question_dto(question: AssessmentQuestion) -> AnyQuestionDTO:
    common = {
        "id": question.id,
        "type": question.type.value,
        "title": question.title,
        "skill": question.skill.value,
        "cefr_level": question.cefr_level.value,
        "weight": question.weight,
        "tags": list(question.tags),
    }

    if isinstance(question, MultipleChoiceQuestion):
        return MultipleChoiceQuestionDTO(
            **common,
            stem=question.stem,
            options=_option_dtos(question.options),
        )

    if isinstance(question, ListeningQuestion):
        return ListeningQuestionDTO(
            **common,
            prompt=question.prompt,
            audio_url=question.stimulus.audio_url,
            options=_option_dtos(question.options),
            follow_up_prompt=question.follow_up_prompt,
        )

    if isinstance(question, SpeakingQuestion):
        return SpeakingQuestionDTO(
            **common,
            context=question.prompt.context,
            instruction=question.prompt.instruction,
            hints=list(question.prompt.hints),
            rubric_criterion_ids=list(question.rubric_criterion_ids),
            expected_duration_seconds=question.expected_duration_seconds,
        )

    raise TypeError(f"Unhandled question variant: {type(question).__name__}")


def to_response_dto(response: AssessmentResponse) -> ResponseDTO:
    selected = getattr(response, "selected_option_ids", None)
    rubric_scores = getattr(response, "rubric_scores", None)
    return ResponseDTO(
        type=response.type.value,
        question_id=response.question_id,
        submitted_at=response.submitted_at,
        score=response.score,
        selected_option_ids=list(selected) if selected is not None else None,
        confidence=getattr(response, "confidence", None),
        notes=getattr(response, "notes", None),
        transcript=getattr(response, "transcript", None),
        audio_url=getattr(response, "audio_url", None),
        rubric_scores=dict(rubric_scores) if rubric_scores is not None else None,
    )


def _profile_dto(profile: CEFRDiagnosticProfile) -> ProfileDTO:
    return ProfileDTO(
        level=profile.level.value,
        score=profile.score,
        confidence=profile.confidence.value,
        band_label=profile.band.label,
        band_description=profile.band.description,
        rationale=list(profile.rationale),
    )


def to_diagnostic_dto(diagnostic: AssessmentDiagnostic) -> DiagnosticDTO:
    return DiagnosticDTO(
        level=diagnostic.level.value,
        overall=_profile_dto(diagnostic.overall),
        skills=[
            SkillDiagnosticDTO(
                skill=skill.skill.value,
                profile=_profile_dto(skill.profile),
                percentile=skill.percentile,
                strengths=list(skill.strengths),
                improvements=list(skill.improvements),
            )
            for skill in diagnostic.skills
        ],
        recommendations=list(diagnostic.recommendations),
        notes=diagnostic.notes,
    )


def to_session_dto(session: AssessmentSession) -> SessionDTO:
    return SessionDTO(
        id=session.id,
        user_id=session.user_id,
        blueprint_id=session.blueprint_id,
        status=session.status.value,
        target_level=session.target_level.value if session.target_level else None,
        started_at=session.started_at,
        completed_at=session.completed_at,
        progress=calculate_session_progress(session),
        questions=[to_question_dto(question) for question in session.questions],
        responses=[to_response_dto(response) for response in session.responses],
        diagnostic=to_diagnostic_dto(session.diagnostic) if session.diagnostic else None,
    )
