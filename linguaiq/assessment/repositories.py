"""
Assessment Ports

This module defines the collaborators the assessment use cases depend on:
1. ``AssessmentBlueprintProvider``: question sets and rubric criteria by id
2. ``AssessmentSessionRepository``: durable session records and responses
3. ``UserRepository``: the learner record updated after finalization
4. ``RetentionEventEmitter``: fire-and-forget lifecycle events

Implementations live in ``memory_repository`` (in-process) and
``sql_repository`` (SQLAlchemy).
"""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple, Union

from linguaiq.assessment.cefr import CEFRLevel
from linguaiq.assessment.criteria import AssessmentCriterion, build_criterion_index
from linguaiq.assessment.diagnostics import AssessmentDiagnostic
from linguaiq.assessment.models import AssessmentResponse, AssessmentSession, SessionStatus
from linguaiq.assessment.questions import (
    AssessmentQuestion,
    AssessmentSkill,
    ensure_assessment_question_set,
)


@dataclass(frozen=True)
class AssessmentBlueprint:
    """The fixed questions and rubric criteria of one assessment."""
    id: str
    questions: Tuple[AssessmentQuestion, ...]
    criteria: Tuple[AssessmentCriterion, ...] = ()
    skills_covered: Tuple[AssessmentSkill, ...] = ()
    title: Optional[str] = None
    target_level: Optional[CEFRLevel] = None

    def criterion_index(self) -> Dict[str, AssessmentCriterion]:
        return build_criterion_index(self.criteria)


def create_assessment_blueprint(
    id: str,
    questions: Sequence[AssessmentQuestion],
    criteria: Sequence[AssessmentCriterion] = (),
    skills_covered: Optional[Sequence[Union[str, AssessmentSkill]]] = None,
    title: Optional[str] = None,
    target_level: Union[str, CEFRLevel, None] = None
) -> AssessmentBlueprint:
    """
    Build a blueprint, checking the question set invariants.

    ``skills_covered`` defaults to the skills of the questions, in order of
    first appearance.
    """
    questions = tuple(questions)
    ensure_assessment_question_set(questions)

    if skills_covered is None:
        skills = tuple(dict.fromkeys(question.skill for question in questions))
    else:
        skills = tuple(AssessmentSkill.parse(skill) for skill in skills_covered)

    return AssessmentBlueprint(
        id=id,
        questions=questions,
        criteria=tuple(criteria),
        skills_covered=skills,
        title=title,
        target_level=CEFRLevel.parse(target_level, "target_level") if target_level else None,
    )


class AssessmentBlueprintProvider(ABC):

    @abstractmethod
    async def get_by_id(self, blueprint_id: str) -> Optional[AssessmentBlueprint]:
        """Return the blueprint, or None when the id is unknown."""
        pass


@dataclass(frozen=True)
class StoredSessionRecord:
    """
    Session columns as persisted.

    ``status`` may hold a storage spelling (``IN_PROGRESS``, ``canceled``);
    ``load_assessment_session`` normalizes it.
    """
    id: str
    user_id: str
    blueprint_id: str
    status: Union[str, SessionStatus]
    started_at: str
    created_at: str
    updated_at: str
    target_level: Optional[CEFRLevel] = None
    completed_at: Optional[str] = None

    @classmethod
    def from_session(cls, session: AssessmentSession) -> "StoredSessionRecord":
        return cls(
            id=session.id,
            user_id=session.user_id,
            blueprint_id=session.blueprint_id,
            status=session.status,
            started_at=session.started_at,
            created_at=session.created_at,
            updated_at=session.updated_at,
            target_level=session.target_level,
            completed_at=session.completed_at,
        )


@dataclass(frozen=True)
class StoredAssessmentSession:
    session: StoredSessionRecord
    responses: Tuple[AssessmentResponse, ...] = ()
    diagnostic: Optional[AssessmentDiagnostic] = None


class AssessmentSessionRepository(ABC):
    """
    Durable store of assessment sessions.

    ``append_response`` must reject a second response for the same
    (session, question) pair atomically by raising ``DuplicateResponseError``;
    the use cases do not serialize concurrent submissions.
    """

    @abstractmethod
    async def find_by_id(self, session_id: str) -> Optional[StoredAssessmentSession]:
        pass

    @abstractmethod
    async def find_active_by_user(self, user_id: str) -> Optional[StoredAssessmentSession]:
        """Most recently created draft or in-progress session of the user."""
        pass

    @abstractmethod
    async def create(self, session: AssessmentSession) -> None:
        pass

    @abstractmethod
    async def append_response(self, session_id: str, response: AssessmentResponse) -> None:
        """
        Raises:
            SessionNotFoundError: if the session does not exist
            DuplicateResponseError: if the question already has a response
        """
        pass

    @abstractmethod
    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        completed_at: Optional[str] = None,
        target_level: Optional[CEFRLevel] = None
    ) -> None:
        pass

    @abstractmethod
    async def save_diagnostic(self, session_id: str, diagnostic: AssessmentDiagnostic) -> None:
        pass


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    display_name: Optional[str] = None
    level: Optional[str] = None
    role: str = "learner"
    has_completed_placement_test: bool = False


class UserRepository(ABC):

    @abstractmethod
    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        pass

    @abstractmethod
    async def save(self, user: UserRecord) -> UserRecord:
        """Insert or update the user and return the stored record."""
        pass


class LifecycleEvent(enum.Enum):
    STARTED = "assessment.started"
    RESPONSE_RECORDED = "assessment.response_recorded"
    COMPLETED = "assessment.completed"
    IA_DEGRADED = "assessment.ia_degraded"
    CANCELLED = "assessment.cancelled"


class RetentionEventEmitter(ABC):
    """Fire-and-forget sink for assessment lifecycle events."""

    @abstractmethod
    def emit(self, event: LifecycleEvent, payload: Optional[Dict[str, Any]] = None) -> None:
        pass

