"""
Assessment Services

This module implements the assessment use cases on top of the ports in
``repositories``:
1. ``StartAssessmentService``: reuse the learner's active session or open one
2. ``SubmitAssessmentResponseService``: score and record one answer
3. ``FinalizeAssessmentService``: compute, persist and publish the diagnostic
4. ``CancelAssessmentService``: close a session without a diagnostic
5. ``CompletePlacementTestService``: flag the learner's placement test as done

Domain failures (unknown session, question or blueprint, a status that does
not allow the operation, a duplicate answer) raise and are never retried
here. AI provider failures during a speaking answer are reported by the
speaking pipeline and re-raised.
"""

import dataclasses
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Optional, Union

from linguaiq.common.config import get_config
from linguaiq.common.error_handling import (
    BlueprintNotFoundError,
    DuplicateResponseError,
    InvalidSessionStateError,
    QuestionNotFoundError,
    ResponseTypeMismatchError,
    SessionNotFoundError,
    UserNotFoundError,
    ValidationError,
    log_error,
)
from linguaiq.common.logger import app_logger, log_execution_time
from linguaiq.common.utils import parse_iso, round_score, unique_trimmed, utc_now_iso

from linguaiq.assessment.cefr import CEFRLevel
from linguaiq.assessment.diagnostics import AssessmentDiagnostic
from linguaiq.assessment.models import (
    AssessmentResponse,
    AssessmentSession,
    SessionStatus,
    can_record_response,
    create_assessment_session,
    create_listening_response,
    create_multiple_choice_response,
    ensure_status_transition,
    normalize_session_status,
)
from linguaiq.assessment.questions import (
    ListeningQuestion,
    MultipleChoiceQuestion,
    QuestionType,
    build_question_index,
)
from linguaiq.assessment.repositories import (
    AssessmentBlueprint,
    AssessmentBlueprintProvider,
    AssessmentSessionRepository,
    LifecycleEvent,
    RetentionEventEmitter,
    StoredAssessmentSession,
    UserRepository,
)
from linguaiq.assessment.scoring import (
    ConfidencePolicy,
    FeedbackPolicy,
    build_assessment_diagnostic,
    compute_score_breakdown,
)
from linguaiq.assessment.speaking import SpeakingResponsePipeline
from linguaiq.providers.remote_call import RemoteCallOptions
from linguaiq.providers.transcription import ShortAudioFileRef

logger = app_logger.getChild("assessment.services")


def default_id_factory() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Session loading and choice scoring
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LoadedAssessmentSession:
    stored: StoredAssessmentSession
    session: AssessmentSession
    blueprint: AssessmentBlueprint


def restore_session(stored: StoredAssessmentSession, blueprint: AssessmentBlueprint) -> AssessmentSession:
    """
    Rebuild the domain session from its stored record and its blueprint.

    Questions always come from the blueprint; legacy status spellings are
    normalized and the target level falls back to the blueprint's.
    """
    record = stored.session
    return create_assessment_session(
        id=record.id,
        user_id=record.user_id,
        blueprint_id=record.blueprint_id,
        status=normalize_session_status(record.status),
        target_level=record.target_level or blueprint.target_level,
        questions=blueprint.questions,
        responses=stored.responses,
        diagnostic=stored.diagnostic,
        started_at=record.started_at,
        completed_at=record.completed_at,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def load_assessment_session(
    session_id: str,
    sessions: AssessmentSessionRepository,
    blueprints: AssessmentBlueprintProvider
) -> LoadedAssessmentSession:
    """
    Raises:
        SessionNotFoundError: if the session does not exist
        BlueprintNotFoundError: if the session's blueprint is gone
    """
    stored = await sessions.find_by_id(session_id)
    if stored is None:
        raise SessionNotFoundError(session_id)

    blueprint = await blueprints.get_by_id(stored.session.blueprint_id)
    if blueprint is None:
        raise BlueprintNotFoundError(stored.session.blueprint_id)

    return LoadedAssessmentSession(stored=stored, session=restore_session(stored, blueprint), blueprint=blueprint)


def score_choice_response(
    question: Union[MultipleChoiceQuestion, ListeningQuestion],
    selected_option_ids: Optional[Iterable[str]]
) -> Optional[int]:
    """
    Option-overlap score of a choice answer.

    With no wrong selection the score is the share of correct options picked;
    any wrong selection switches to hits over everything selected, so false
    positives cost credit. None when the question has no correct options
    configured or nothing was selected.
    """
    correct = set(question.correct_option_ids or ())
    selected = list(dict.fromkeys(selected_option_ids or ()))
    if not correct or not selected:
        return None

    hits = sum(1 for option_id in selected if option_id in correct)
    misses = len(selected) - hits

    if misses > 0:
        return round_score(100 * hits / (hits + misses))
    return round_score(100 * hits / len(correct))


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------

@dataclass
class StartAssessmentInput:
    user_id: str
    blueprint_id: Optional[str] = None
    requested_at: Optional[str] = None
    target_level: Optional[Union[str, CEFRLevel]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class StartAssessmentResult:
    session_id: str
    session: AssessmentSession
    created: bool


class StartAssessmentService:
    """
    Opens an assessment session, at most one active session per learner.

    A learner with a draft or in-progress session gets that session back
    unchanged and no event is emitted.
    """

    def __init__(
        self,
        sessions: AssessmentSessionRepository,
        blueprints: AssessmentBlueprintProvider,
        events: RetentionEventEmitter,
        now: Callable[[], str] = utc_now_iso,
        id_factory: Callable[[], str] = default_id_factory
    ):
        self.sessions = sessions
        self.blueprints = blueprints
        self.events = events
        self.now = now
        self.id_factory = id_factory

    @log_execution_time(logger)
    async def execute(self, request: StartAssessmentInput) -> StartAssessmentResult:
        existing = await self.sessions.find_active_by_user(request.user_id)
        if existing is not None:
            blueprint = await self.blueprints.get_by_id(existing.session.blueprint_id)
            if blueprint is None:
                raise BlueprintNotFoundError(existing.session.blueprint_id)
            logger.info(f"Reusing active assessment session {existing.session.id} for user {request.user_id}")
            return StartAssessmentResult(
                session_id=existing.session.id,
                session=restore_session(existing, blueprint),
                created=False,
            )

        blueprint_id = request.blueprint_id or get_config().default_blueprint_id
        blueprint = await self.blueprints.get_by_id(blueprint_id)
        if blueprint is None:
            raise BlueprintNotFoundError(blueprint_id)

        timestamp = request.requested_at or self.now()
        session = create_assessment_session(
            id=self.id_factory(),
            user_id=request.user_id,
            blueprint_id=blueprint.id,
            target_level=request.target_level or blueprint.target_level,
            questions=blueprint.questions,
            responses=[],
            started_at=timestamp,
            created_at=timestamp,
            updated_at=timestamp,
            status=SessionStatus.IN_PROGRESS,
        )

        await self.sessions.create(session)
        self.events.emit(LifecycleEvent.STARTED, {
            "session_id": session.id,
            "user_id": request.user_id,
            "blueprint_id": blueprint.id,
            "skills": [skill.value for skill in blueprint.skills_covered],
        })
        logger.info(f"Started assessment session {session.id} for user {request.user_id}")

        return StartAssessmentResult(session_id=session.id, session=session, created=True)


# ---------------------------------------------------------------------------
# Submit
# ---------------------------------------------------------------------------

@dataclass
class SubmitMultipleChoiceResponseInput:
    type: ClassVar[QuestionType] = QuestionType.MULTIPLE_CHOICE

    session_id: str
    question_id: str
    submitted_at: str
    selected_option_ids: List[str]
    confidence: Optional[float] = None


@dataclass
class SubmitListeningResponseInput:
    type: ClassVar[QuestionType] = QuestionType.LISTENING

    session_id: str
    question_id: str
    submitted_at: str
    selected_option_ids: Optional[List[str]] = None
    notes: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class SubmitSpeakingResponseInput:
    type: ClassVar[QuestionType] = QuestionType.SPEAKING

    session_id: str
    question_id: str
    submitted_at: str
    audio: ShortAudioFileRef
    locale_hint: Optional[str] = None
    prompt: Optional[str] = None
    options: Optional[RemoteCallOptions] = None


SubmitAssessmentResponseInput = Union[
    SubmitMultipleChoiceResponseInput,
    SubmitListeningResponseInput,
    SubmitSpeakingResponseInput,
]


@dataclass(frozen=True)
class SubmitAssessmentResponseResult:
    session_id: str
    question_id: str
    total_responses: int
    response: AssessmentResponse


class SubmitAssessmentResponseService:
    """
    Scores and records one answer.

    Choice answers are scored locally by option overlap; speaking answers go
    through the ``SpeakingResponsePipeline``. Uniqueness of the answer is
    checked here and enforced again, atomically, by the repository.
    """

    def __init__(
        self,
        sessions: AssessmentSessionRepository,
        blueprints: AssessmentBlueprintProvider,
        events: RetentionEventEmitter,
        speaking: SpeakingResponsePipeline
    ):
        self.sessions = sessions
        self.blueprints = blueprints
        self.events = events
        self.speaking = speaking

    @log_execution_time(logger)
    async def execute(self, request: SubmitAssessmentResponseInput) -> SubmitAssessmentResponseResult:
        loaded = await load_assessment_session(request.session_id, self.sessions, self.blueprints)
        session = loaded.session

        if session.status.is_terminal:
            raise InvalidSessionStateError(
                "Cannot record responses for finalised assessment sessions",
                session_id=session.id,
                status=session.status.value,
            )

        question_index = build_question_index(session.questions)
        question = question_index.get(request.question_id)
        if question is None:
            raise QuestionNotFoundError(request.question_id, details={"session_id": session.id})

        if not can_record_response(session, question.id, question.skill, question_index):
            raise DuplicateResponseError(question.id, session.id)

        if request.type is not question.type:
            raise ResponseTypeMismatchError(question.id, question.type.value, request.type.value)

        response = await self._build_response(loaded, question, request)

        await self.sessions.append_response(session.id, response)

        answered = len(session.responses) + 1
        self.events.emit(LifecycleEvent.RESPONSE_RECORDED, {
            "session_id": session.id,
            "question_id": question.id,
            "type": response.type.value,
            "answered": answered,
            "total": len(session.questions),
        })

        return SubmitAssessmentResponseResult(
            session_id=session.id,
            question_id=question.id,
            total_responses=answered,
            response=response,
        )

    async def _build_response(
        self,
        loaded: LoadedAssessmentSession,
        question,
        request: SubmitAssessmentResponseInput
    ) -> AssessmentResponse:
        if isinstance(request, SubmitMultipleChoiceResponseInput):
            selected = unique_trimmed(request.selected_option_ids)
            return create_multiple_choice_response(
                question,
                selected,
                request.submitted_at,
                score=score_choice_response(question, selected),
                confidence=request.confidence,
            )

        if isinstance(request, SubmitListeningResponseInput):
            selected = unique_trimmed(request.selected_option_ids) if request.selected_option_ids else None
            return create_listening_response(
                question,
                request.submitted_at,
                selected_option_ids=selected,
                notes=request.notes,
                score=score_choice_response(question, selected),
                confidence=request.confidence,
            )

        if isinstance(request, SubmitSpeakingResponseInput):
            return await self.speaking.build_response(
                loaded.session,
                loaded.blueprint,
                question,
                request.audio,
                request.submitted_at,
                locale_hint=request.locale_hint,
                prompt=request.prompt,
                options=request.options,
            )

        raise TypeError(f"Unhandled response input: {type(request).__name__}")


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------

@dataclass
class FinalizeAssessmentInput:
    session_id: str
    requested_at: Optional[str] = None


@dataclass(frozen=True)
class FinalizeAssessmentResult:
    session_id: str
    recommended_level: Optional[CEFRLevel]
    diagnostic: Optional[AssessmentDiagnostic] = None


class FinalizeAssessmentService:
    """
    Closes an in-progress session with its CEFR diagnostic.

    Finalizing a completed session returns the stored level and changes
    nothing. The learner record update is best-effort: a missing user or a
    failing user store is logged and does not fail the finalization.
    """

    def __init__(
        self,
        sessions: AssessmentSessionRepository,
        blueprints: AssessmentBlueprintProvider,
        users: UserRepository,
        events: RetentionEventEmitter,
        confidence_policy: Optional[ConfidencePolicy] = None,
        feedback_policy: Optional[FeedbackPolicy] = None,
        now: Callable[[], str] = utc_now_iso
    ):
        self.sessions = sessions
        self.blueprints = blueprints
        self.users = users
        self.events = events
        self.confidence_policy = confidence_policy
        self.feedback_policy = feedback_policy
        self.now = now

    @log_execution_time(logger)
    async def execute(self, request: FinalizeAssessmentInput) -> FinalizeAssessmentResult:
        loaded = await load_assessment_session(request.session_id, self.sessions, self.blueprints)
        session = loaded.session

        if session.status is SessionStatus.COMPLETED:
            diagnostic = loaded.stored.diagnostic
            return FinalizeAssessmentResult(
                session_id=session.id,
                recommended_level=diagnostic.level if diagnostic else session.target_level,
                diagnostic=diagnostic,
            )

        ensure_status_transition(session.status, SessionStatus.COMPLETED, session.id)

        completed_at = request.requested_at or self.now()
        if parse_iso(completed_at) < parse_iso(session.started_at):
            raise ValidationError(
                f"Assessment session {session.id} cannot complete before it started",
                field="completed_at"
            )

        breakdown = compute_score_breakdown(session.questions, session.responses)
        diagnostic = build_assessment_diagnostic(breakdown, self.confidence_policy, self.feedback_policy)

        await self.sessions.save_diagnostic(session.id, diagnostic)
        await self.sessions.update_status(
            session.id,
            SessionStatus.COMPLETED,
            completed_at=completed_at,
            target_level=diagnostic.level,
        )

        await self._update_user_level(session, diagnostic.level)

        self.events.emit(LifecycleEvent.COMPLETED, {
            "session_id": session.id,
            "user_id": session.user_id,
            "level": diagnostic.level.value,
        })
        logger.info(
            f"Finalized assessment session {session.id}",
            extra={"data": {"level": diagnostic.level.value, "score": breakdown.overall_score,
                            "coverage": round(breakdown.coverage, 4)}}
        )

        return FinalizeAssessmentResult(
            session_id=session.id,
            recommended_level=diagnostic.level,
            diagnostic=diagnostic,
        )

    async def _update_user_level(self, session: AssessmentSession, level: CEFRLevel) -> None:
        try:
            user = await self.users.find_by_id(session.user_id)
            if user is None:
                logger.warning(
                    "Unable to update user level after assessment",
                    extra={"data": {"user_id": session.user_id, "session_id": session.id}}
                )
                return

            await self.users.save(dataclasses.replace(
                user, level=level.value, has_completed_placement_test=True
            ))
        except Exception as e:
            log_error(e, logger, {"user_id": session.user_id, "session_id": session.id}, level=logging.WARNING)


# ---------------------------------------------------------------------------
# Cancel
# ---------------------------------------------------------------------------

@dataclass
class CancelAssessmentInput:
    session_id: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class CancelAssessmentResult:
    session_id: str
    status: SessionStatus


class CancelAssessmentService:
    """Moves a draft or in-progress session to cancelled; repeats are no-ops."""

    def __init__(
        self,
        sessions: AssessmentSessionRepository,
        blueprints: AssessmentBlueprintProvider,
        events: RetentionEventEmitter
    ):
        self.sessions = sessions
        self.blueprints = blueprints
        self.events = events

    @log_execution_time(logger)
    async def execute(self, request: CancelAssessmentInput) -> CancelAssessmentResult:
        loaded = await load_assessment_session(request.session_id, self.sessions, self.blueprints)
        session = loaded.session

        if session.status is SessionStatus.CANCELLED:
            return CancelAssessmentResult(session_id=session.id, status=session.status)

        ensure_status_transition(session.status, SessionStatus.CANCELLED, session.id)
        await self.sessions.update_status(session.id, SessionStatus.CANCELLED)

        payload = {"session_id": session.id, "user_id": session.user_id}
        if request.reason:
            payload["reason"] = request.reason
        self.events.emit(LifecycleEvent.CANCELLED, payload)
        return CancelAssessmentResult(session_id=session.id, status=SessionStatus.CANCELLED)


# ---------------------------------------------------------------------------
# Placement test
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CompletePlacementTestResult:
    user_id: str
    has_completed_placement_test: bool


class CompletePlacementTestService:

    def __init__(self, users: UserRepository):
        self.users = users

    @log_execution_time(logger)
    async def execute(self, user_id: str) -> CompletePlacementTestResult:
        """
        Raises:
            UserNotFoundError: if the user does not exist
        """
        user = await self.users.find_by_id(user_id)
        if user is None:
            logger.warning(
                "Attempted to complete placement test for missing user",
                extra={"data": {"user_id": user_id}}
            )
            raise UserNotFoundError(user_id)

        if user.has_completed_placement_test:
            return CompletePlacementTestResult(user_id=user.id, has_completed_placement_test=True)

        updated = await self.users.save(dataclasses.replace(user, has_completed_placement_test=True))
        return CompletePlacementTestResult(
            user_id=updated.id,
            has_completed_placement_test=bool(updated.has_completed_placement_test),
        )
