"""
Assessment Session Models

This module defines the session aggregate and the response variants it
accumulates:
1. The session status state machine (draft, inProgress, completed, cancelled)
2. Multiple choice, listening and speaking responses with their validation
3. ``create_assessment_session``, which checks a session's question set,
   response/question correspondence and timestamps
4. Read helpers used by the use cases (progress, pending questions, guards)
"""

import enum
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from linguaiq.common.error_handling import (
    DuplicateResponseError,
    InvalidSessionStateError,
    ResponseTypeMismatchError,
    ValidationError,
)
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import clean_text, is_finite_number, parse_iso, round_half_up
from linguaiq.assessment.cefr import CEFRLevel
from linguaiq.assessment.diagnostics import AssessmentDiagnostic
from linguaiq.assessment.questions import (
    AssessmentQuestion,
    AssessmentSkill,
    ListeningQuestion,
    MultipleChoiceQuestion,
    QuestionType,
    build_question_index,
    ensure_assessment_question_set,
)


class SessionStatus(enum.Enum):
    """Lifecycle status of an assessment session."""
    DRAFT = "draft"
    IN_PROGRESS = "inProgress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        return self in (SessionStatus.DRAFT, SessionStatus.IN_PROGRESS)


ACTIVE_STATUSES = (SessionStatus.DRAFT, SessionStatus.IN_PROGRESS)

ALLOWED_TRANSITIONS = {
    SessionStatus.DRAFT: {SessionStatus.IN_PROGRESS, SessionStatus.CANCELLED},
    SessionStatus.IN_PROGRESS: {SessionStatus.COMPLETED, SessionStatus.CANCELLED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.CANCELLED: set(),
}

_LEGACY_STATUS_SPELLINGS = {
    "draft": SessionStatus.DRAFT,
    "pending": SessionStatus.DRAFT,
    "inprogress": SessionStatus.IN_PROGRESS,
    "in_progress": SessionStatus.IN_PROGRESS,
    "completed": SessionStatus.COMPLETED,
    "cancelled": SessionStatus.CANCELLED,
    "canceled": SessionStatus.CANCELLED,
}


def normalize_session_status(value: Union[str, SessionStatus, None]) -> SessionStatus:
    """
    Map a stored or legacy status spelling to a ``SessionStatus``.

    Accepts the domain values plus ``pending``, ``in_progress`` and
    ``canceled`` in any case.
    """
    if isinstance(value, SessionStatus):
        return value
    if value is None:
        return SessionStatus.IN_PROGRESS

    status = _LEGACY_STATUS_SPELLINGS.get(str(value).strip().lower())
    if status is None:
        raise ValidationError(f"Assessment session status {value!r} is not supported", field="status")
    return status


def can_transition(current: SessionStatus, target: SessionStatus) -> bool:
    return current is target or target in ALLOWED_TRANSITIONS[current]


def ensure_status_transition(
    current: SessionStatus,
    target: SessionStatus,
    session_id: Optional[str] = None
) -> None:
    """
    Raises:
        InvalidSessionStateError: if ``current`` may not move to ``target``
    """
    if not can_transition(current, target):
        raise InvalidSessionStateError(
            f"Assessment session cannot move from {current.value} to {target.value}",
            session_id=session_id,
            status=current.value,
        )


@dataclass(frozen=True)
class _ResponseBase(SerializableMixin):
    type: ClassVar[QuestionType]

    question_id: str
    submitted_at: str

    def to_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        data = super().to_dict(exclude_none)
        data["type"] = self.type.value
        return data


@dataclass(frozen=True)
class MultipleChoiceResponse(_ResponseBase):
    type: ClassVar[QuestionType] = QuestionType.MULTIPLE_CHOICE

    selected_option_ids: Tuple[str, ...]
    score: Optional[float] = None
    confidence: Optional[float] = None


@dataclass(frozen=True)
class ListeningResponse(_ResponseBase):
    type: ClassVar[QuestionType] = QuestionType.LISTENING

    selected_option_ids: Optional[Tuple[str, ...]] = None
    notes: Optional[str] = None
    score: Optional[float] = None
    confidence: Optional[float] = None


@dataclass(frozen=True)
class SpeakingResponse(_ResponseBase):
    type: ClassVar[QuestionType] = QuestionType.SPEAKING

    transcript: str
    audio_url: Optional[str] = None
    score: Optional[float] = None
    rubric_scores: Optional[Dict[str, float]] = None


AssessmentResponse = Union[MultipleChoiceResponse, ListeningResponse, SpeakingResponse]


def sanitize_score(score: Optional[float]) -> Optional[float]:
    if score is None:
        return None

    if not is_finite_number(score):
        raise ValidationError("Assessment response scores must be numeric", field="score")

    if score < 0 or score > 100:
        raise ValidationError("Assessment response scores must be within the 0-100 range", field="score")

    return round_half_up(score, 2)


def sanitize_confidence(confidence: Optional[float]) -> Optional[float]:
    if confidence is None:
        return None

    if not is_finite_number(confidence):
        raise ValidationError("Confidence values must be numeric when provided", field="confidence")

    if confidence < 0 or confidence > 1:
        raise ValidationError("Confidence values must be between 0 and 1", field="confidence")

    return round_half_up(confidence, 2)


def _sanitize_rubric_scores(scores: Optional[Mapping[str, float]]) -> Optional[Dict[str, float]]:
    if scores is None:
        return None

    sanitized = {}
    for criterion_id, value in scores.items():
        key = clean_text(criterion_id)
        if not key:
            raise ValidationError("Rubric score keys must be non-empty criterion ids", field="rubric_scores")
        if not is_finite_number(value):
            raise ValidationError("Rubric scores must be numeric", field="rubric_scores")
        if value < 0 or value > 100:
            raise ValidationError("Rubric scores must be within the 0-100 range", field="rubric_scores")
        sanitized[key] = round_half_up(value, 2)
    return sanitized


def _selected_ids(values: Optional[Iterable[str]]) -> List[str]:
    return list(dict.fromkeys(clean_text(value) for value in values or () if clean_text(value)))


def _check_selection(question: AssessmentQuestion, selected: Sequence[str]) -> None:
    known = {option.id for option in question.options or ()}
    for option_id in selected:
        if option_id not in known:
            raise ValidationError(
                f"Response for question {question.id!r} selected unknown option {option_id!r}",
                field="selected_option_ids"
            )


def create_multiple_choice_response(
    question: MultipleChoiceQuestion,
    selected_option_ids: Iterable[str],
    submitted_at: str,
    score: Optional[float] = None,
    confidence: Optional[float] = None
) -> MultipleChoiceResponse:
    """
    Build a validated multiple choice response.

    Raises:
        ValidationError: if nothing is selected or an unknown option is selected
    """
    selected = _selected_ids(selected_option_ids)
    if not selected:
        raise ValidationError(
            f"Question {question.id!r} responses must select at least one option",
            field="selected_option_ids"
        )
    _check_selection(question, selected)

    return MultipleChoiceResponse(
        question_id=question.id,
        submitted_at=submitted_at,
        selected_option_ids=tuple(selected),
        score=sanitize_score(score),
        confidence=sanitize_confidence(confidence),
    )


def create_listening_response(
    question: ListeningQuestion,
    submitted_at: str,
    selected_option_ids: Optional[Iterable[str]] = None,
    notes: Optional[str] = None,
    score: Optional[float] = None,
    confidence: Optional[float] = None
) -> ListeningResponse:
    selected = _selected_ids(selected_option_ids) or None
    if selected and question.options:
        _check_selection(question, selected)

    return ListeningResponse(
        question_id=question.id,
        submitted_at=submitted_at,
        selected_option_ids=tuple(selected) if selected else None,
        notes=notes.strip() if isinstance(notes, str) else None,
        score=sanitize_score(score),
        confidence=sanitize_confidence(confidence),
    )


def create_speaking_response(
    question_id: str,
    transcript: str,
    submitted_at: str,
    audio_url: Optional[str] = None,
    score: Optional[float] = None,
    rubric_scores: Optional[Mapping[str, float]] = None
) -> SpeakingResponse:
    """
    Build a validated speaking response.

    Raises:
        ValidationError: on a blank transcript or out-of-range scores
    """
    text = clean_text(transcript)
    if not text:
        raise ValidationError("Speaking responses must include a transcript for evaluation", field="transcript")

    return SpeakingResponse(
        question_id=question_id,
        submitted_at=submitted_at,
        transcript=text,
        audio_url=audio_url.strip() if isinstance(audio_url, str) else None,
        score=sanitize_score(score),
        rubric_scores=_sanitize_rubric_scores(rubric_scores),
    )


def sanitize_response(response: AssessmentResponse, question: AssessmentQuestion) -> AssessmentResponse:
    """
    Re-validate a response against the question it answers.

    Raises:
        ResponseTypeMismatchError: if the variants do not correspond
        ValidationError: if the response payload is invalid
    """
    if response.type is not question.type:
        raise ResponseTypeMismatchError(question.id, question.type.value, response.type.value)

    if isinstance(response, MultipleChoiceResponse):
        return create_multiple_choice_response(
            question, response.selected_option_ids, response.submitted_at,
            score=response.score, confidence=response.confidence,
        )
    if isinstance(response, ListeningResponse):
        return create_listening_response(
            question, response.submitted_at, response.selected_option_ids,
            notes=response.notes, score=response.score, confidence=response.confidence,
        )
    if isinstance(response, SpeakingResponse):
        return create_speaking_response(
            response.question_id, response.transcript, response.submitted_at,
            audio_url=response.audio_url, score=response.score, rubric_scores=response.rubric_scores,
        )
    raise TypeError(f"Unhandled response variant: {type(response).__name__}")


def response_from_dict(data: Mapping[str, Any]) -> AssessmentResponse:
    """Rebuild a response from its ``to_dict`` form; validation happens in the session."""
    response_type = QuestionType(data["type"])
    common = {"question_id": data["question_id"], "submitted_at": data["submitted_at"]}

    if response_type is QuestionType.MULTIPLE_CHOICE:
        return MultipleChoiceResponse(
            **common,
            selected_option_ids=tuple(data.get("selected_option_ids") or ()),
            score=data.get("score"),
            confidence=data.get("confidence"),
        )
    if response_type is QuestionType.LISTENING:
        selected = data.get("selected_option_ids")
        return ListeningResponse(
            **common,
            selected_option_ids=tuple(selected) if selected else None,
            notes=data.get("notes"),
            score=data.get("score"),
            confidence=data.get("confidence"),
        )
    if response_type is QuestionType.SPEAKING:
        return SpeakingResponse(
            **common,
            transcript=data.get("transcript", ""),
            audio_url=data.get("audio_url"),
            score=data.get("score"),
            rubric_scores=data.get("rubric_scores"),
        )
    raise TypeError(f"Unhandled response type: {response_type}")


@dataclass(frozen=True)
class AssessmentSession(SerializableMixin):
    id: str
    user_id: str
    blueprint_id: str
    status: SessionStatus
    questions: Tuple[AssessmentQuestion, ...]
    responses: Tuple[AssessmentResponse, ...]
    started_at: str
    created_at: str
    updated_at: str
    target_level: Optional[CEFRLevel] = None
    diagnostic: Optional[AssessmentDiagnostic] = None
    completed_at: Optional[str] = None


def _sanitize_responses(
    session_id: str,
    responses: Sequence[AssessmentResponse],
    questions: Sequence[AssessmentQuestion]
) -> Tuple[AssessmentResponse, ...]:
    if not responses:
        return ()

    seen = set()
    for response in responses:
        if response.question_id in seen:
            raise DuplicateResponseError(response.question_id, session_id)
        seen.add(response.question_id)

    index = build_question_index(questions)
    sanitized = []
    for response in responses:
        question = index.get(response.question_id)
        if question is None:
            raise ValidationError(
                f"Assessment response references unknown question {response.question_id!r}",
                field="responses.question_id"
            )
        sanitized.append(sanitize_response(response, question))
    return tuple(sanitized)


def create_assessment_session(
    id: str,
    user_id: str,
    blueprint_id: str,
    questions: Sequence[AssessmentQuestion],
    started_at: str,
    created_at: str,
    updated_at: str,
    responses: Optional[Sequence[AssessmentResponse]] = None,
    diagnostic: Optional[AssessmentDiagnostic] = None,
    status: Union[str, SessionStatus, None] = None,
    target_level: Union[str, CEFRLevel, None] = None,
    completed_at: Optional[str] = None
) -> AssessmentSession:
    """
    Build a validated assessment session.

    Args:
        id: Session id
        user_id: Learner id
        blueprint_id: Blueprint the questions come from
        questions: The session's question set
        started_at: ISO start timestamp
        created_at: ISO creation timestamp
        updated_at: ISO last-update timestamp
        responses: Responses recorded so far
        diagnostic: Attached diagnostic, once finalized
        status: Session status (inProgress when omitted)
        target_level: Target CEFR level
        completed_at: ISO completion timestamp

    Raises:
        ValidationError: on an invalid question set, a response for an unknown
            question, missing timestamps, or completion before start
        DuplicateResponseError: if two responses answer the same question
        ResponseTypeMismatchError: if a response does not match its question
    """
    questions = tuple(questions)
    ensure_assessment_question_set(questions)

    sanitized = _sanitize_responses(id, list(responses or ()), questions)

    if not clean_text(started_at):
        raise ValidationError("Assessment sessions must record a start timestamp", field="started_at")

    if not clean_text(created_at) or not clean_text(updated_at):
        raise ValidationError("Assessment sessions must include audit timestamps", field="created_at")

    if completed_at and parse_iso(completed_at) < parse_iso(started_at):
        raise ValidationError("Assessment completed_at timestamp must be after started_at", field="completed_at")

    return AssessmentSession(
        id=id,
        user_id=user_id,
        blueprint_id=blueprint_id,
        status=normalize_session_status(status),
        questions=questions,
        responses=sanitized,
        started_at=started_at,
        created_at=created_at,
        updated_at=updated_at,
        target_level=CEFRLevel.parse(target_level, "target_level") if target_level else None,
        diagnostic=diagnostic,
        completed_at=completed_at,
    )


def calculate_session_progress(session: AssessmentSession) -> float:
    """Share of questions answered, rounded to two decimals."""
    if not session.questions:
        return 0

    answered = len({response.question_id for response in session.responses})
    return round_half_up(answered / len(session.questions), 2)


def is_session_finalized(session: AssessmentSession) -> bool:
    return session.status is SessionStatus.COMPLETED and bool(session.completed_at)


def pending_question_ids(session: AssessmentSession) -> List[str]:
    answered = {response.question_id for response in session.responses}
    return [question.id for question in session.questions if question.id not in answered]


def can_record_response(
    session: AssessmentSession,
    question_id: str,
    skill: Optional[AssessmentSkill] = None,
    question_index: Optional[Mapping[str, AssessmentQuestion]] = None
) -> bool:
    """
    Whether a response for ``question_id`` may still be recorded.

    False once the session is finalized, for questions outside the session,
    for a skill other than ``skill``, and for questions already answered.
    """
    if is_session_finalized(session):
        return False

    index = question_index if question_index is not None else build_question_index(session.questions)
    question = index.get(question_id)
    if question is None:
        return False

    if skill is not None and question.skill is not skill:
        return False

    return all(response.question_id != question_id for response in session.responses)
