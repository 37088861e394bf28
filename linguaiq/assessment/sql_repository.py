"""
SQL Assessment Repositories

SQLAlchemy (async) implementations of the session and user ports.

Domain values are translated at this boundary:
- session status ``draft/inProgress/completed/cancelled`` is stored as
  ``PENDING/IN_PROGRESS/COMPLETED/CANCELLED``; unknown stored spellings are
  passed through for ``normalize_session_status`` to resolve
- ISO timestamps are stored as naive UTC ``DateTime`` values
- the blueprint id and target level live in the session's JSON metadata
- a diagnostic is stored whole, next to a flat summary for reporting
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from linguaiq.common.error_handling import DuplicateResponseError, SessionNotFoundError
from linguaiq.common.logger import app_logger
from linguaiq.common.utils import parse_iso
from linguaiq.assessment.cefr import CEFRLevel, create_cefr_score_band, is_valid_cefr_level
from linguaiq.assessment.diagnostics import (
    AssessmentDiagnostic,
    create_cefr_diagnostic_profile,
    diagnostic_from_dict,
    diagnostic_summary,
)
from linguaiq.assessment.models import (
    AssessmentResponse,
    AssessmentSession,
    ListeningResponse,
    MultipleChoiceResponse,
    SessionStatus,
    SpeakingResponse,
    response_from_dict,
)
from linguaiq.assessment.questions import QuestionType
from linguaiq.assessment.repositories import (
    AssessmentSessionRepository,
    StoredAssessmentSession,
    StoredSessionRecord,
    UserRecord,
    UserRepository,
)
from linguaiq.database.base import Database, utcnow
from linguaiq.database.models import (
    AssessmentResponseModel,
    AssessmentResultModel,
    AssessmentSessionModel,
    UserModel,
)

logger = app_logger.getChild("assessment.sql_repository")

DOMAIN_TO_DB_STATUS = {
    SessionStatus.DRAFT: "PENDING",
    SessionStatus.IN_PROGRESS: "IN_PROGRESS",
    SessionStatus.COMPLETED: "COMPLETED",
    SessionStatus.CANCELLED: "CANCELLED",
}

DB_TO_DOMAIN_STATUS = {value: key for key, value in DOMAIN_TO_DB_STATUS.items()}

ACTIVE_DB_STATUSES = ("PENDING", "IN_PROGRESS")

QUESTION_TYPE_TO_DB = {
    QuestionType.MULTIPLE_CHOICE: "MCQ",
    QuestionType.LISTENING: "LISTENING",
    QuestionType.SPEAKING: "SPEAKING",
}

DB_TO_QUESTION_TYPE = {value: key for key, value in QUESTION_TYPE_TO_DB.items()}


def to_db_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return parse_iso(value).astimezone(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _response_payload(response: AssessmentResponse) -> Dict[str, Any]:
    if isinstance(response, MultipleChoiceResponse):
        content = {
            "selected_option_ids": list(response.selected_option_ids),
            "confidence": response.confidence,
            "submitted_at": response.submitted_at,
        }
        evaluation = None
    elif isinstance(response, ListeningResponse):
        content = {
            "selected_option_ids": list(response.selected_option_ids) if response.selected_option_ids else None,
            "notes": response.notes,
            "confidence": response.confidence,
            "submitted_at": response.submitted_at,
        }
        evaluation = None
    elif isinstance(response, SpeakingResponse):
        content = {
            "transcript": response.transcript,
            "audio_url": response.audio_url,
            "submitted_at": response.submitted_at,
        }
        evaluation = {"rubric_scores": response.rubric_scores}
    else:
        raise TypeError(f"Unhandled response variant: {type(response).__name__}")

    return {
        "question_type": QUESTION_TYPE_TO_DB[response.type],
        "content": content,
        "evaluation": evaluation,
        "score": response.score,
    }


def _to_domain_response(row: AssessmentResponseModel) -> AssessmentResponse:
    question_type = DB_TO_QUESTION_TYPE.get(row.question_type)
    if question_type is None:
        raise ValueError(f"Unsupported assessment answer type {row.question_type!r}")

    content = dict(row.content or {})
    evaluation = dict(row.evaluation or {})
    return response_from_dict({
        **content,
        "type": question_type.value,
        "question_id": row.question_id,
        "submitted_at": content.get("submitted_at") or to_iso(row.created_at),
        "score": row.score,
        "rubric_scores": evaluation.get("rubric_scores"),
    })


def _to_domain_diagnostic(row: AssessmentResultModel) -> AssessmentDiagnostic:
    if row.diagnostic and row.diagnostic.get("overall"):
        return diagnostic_from_dict(row.diagnostic)

    # Rows written before the full diagnostic was stored carry only the summary
    if not is_valid_cefr_level(row.level):
        raise ValueError(f"Assessment result stored with invalid CEFR level {row.level!r}")

    band = create_cefr_score_band(row.level, 0, 100, row.level, row.summary or "")
    return AssessmentDiagnostic(
        overall=create_cefr_diagnostic_profile(row.overall_score or 0, band=band),
        skills=(),
        recommendations=tuple(row.recommendations or ()),
        notes=row.summary,
    )


def _to_stored_session(row: AssessmentSessionModel) -> StoredAssessmentSession:
    session_metadata = dict(row.session_metadata or {})
    blueprint_id = session_metadata.get("blueprint_id")
    if not isinstance(blueprint_id, str):
        raise ValueError(f"Assessment session {row.id!r} is missing its blueprint id")

    target_level = session_metadata.get("target_level")
    record = StoredSessionRecord(
        id=row.id,
        user_id=row.user_id,
        blueprint_id=blueprint_id,
        status=DB_TO_DOMAIN_STATUS.get(row.status, row.status),
        target_level=CEFRLevel(target_level) if is_valid_cefr_level(target_level) else None,
        started_at=to_iso(row.started_at),
        completed_at=to_iso(row.completed_at),
        created_at=to_iso(row.created_at),
        updated_at=to_iso(row.updated_at),
    )

    return StoredAssessmentSession(
        session=record,
        responses=tuple(_to_domain_response(response) for response in row.responses),
        diagnostic=_to_domain_diagnostic(row.result) if row.result is not None else None,
    )


class SQLAssessmentSessionRepository(AssessmentSessionRepository):
    """
    Session repository on SQLAlchemy.

    Response uniqueness is enforced by the ``(session_id, question_id)``
    unique constraint, so two concurrent submissions for one question cannot
    both be stored.
    """

    def __init__(self, database: Database):
        self.database = database

    def _session_query(self):
        return select(AssessmentSessionModel).options(
            selectinload(AssessmentSessionModel.responses),
            selectinload(AssessmentSessionModel.result),
        )

    async def find_by_id(self, session_id: str) -> Optional[StoredAssessmentSession]:
        async with self.database.session_scope() as db:
            result = await db.execute(self._session_query().where(AssessmentSessionModel.id == session_id))
            row = result.scalar_one_or_none()
            return _to_stored_session(row) if row is not None else None

    async def find_active_by_user(self, user_id: str) -> Optional[StoredAssessmentSession]:
        query = (
            self._session_query()
            .where(AssessmentSessionModel.user_id == user_id)
            .where(AssessmentSessionModel.status.in_(ACTIVE_DB_STATUSES))
            .order_by(AssessmentSessionModel.created_at.desc())
            .limit(1)
        )
        async with self.database.session_scope() as db:
            result = await db.execute(query)
            row = result.scalars().first()
            return _to_stored_session(row) if row is not None else None

    async def create(self, session: AssessmentSession) -> None:
        async with self.database.session_scope() as db:
            row = AssessmentSessionModel(
                id=session.id,
                user_id=session.user_id,
                status=DOMAIN_TO_DB_STATUS[session.status],
                started_at=to_db_datetime(session.started_at),
                completed_at=to_db_datetime(session.completed_at),
                created_at=to_db_datetime(session.created_at),
                updated_at=to_db_datetime(session.updated_at),
                session_metadata={
                    "blueprint_id": session.blueprint_id,
                    "target_level": session.target_level.value if session.target_level else None,
                },
            )
            db.add(row)
            for response in session.responses:
                db.add(AssessmentResponseModel(session_id=session.id, question_id=response.question_id,
                                               **_response_payload(response)))
        logger.debug(f"Created assessment session {session.id}")

    async def append_response(self, session_id: str, response: AssessmentResponse) -> None:
        async with self.database.session_scope() as db:
            row = await db.get(AssessmentSessionModel, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)

            db.add(AssessmentResponseModel(
                session_id=session_id,
                question_id=response.question_id,
                **_response_payload(response)
            ))
            row.updated_at = utcnow()
            try:
                await db.flush()
            except IntegrityError as e:
                raise DuplicateResponseError(response.question_id, session_id, cause=e) from e

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        completed_at: Optional[str] = None,
        target_level: Optional[CEFRLevel] = None
    ) -> None:
        async with self.database.session_scope() as db:
            row = await db.get(AssessmentSessionModel, session_id)
            if row is None:
                raise SessionNotFoundError(session_id)

            row.status = DOMAIN_TO_DB_STATUS[status]
            if completed_at:
                row.completed_at = to_db_datetime(completed_at)
            if target_level:
                # Reassign so the JSON column is flagged dirty
                row.session_metadata = {**(row.session_metadata or {}), "target_level": target_level.value}
            row.updated_at = utcnow()

    async def save_diagnostic(self, session_id: str, diagnostic: AssessmentDiagnostic) -> None:
        summary = diagnostic_summary(diagnostic)
        values = {
            "level": summary["level"],
            "overall_score": summary["overall_score"],
            "diagnostic": diagnostic.to_dict(),
            "skill_scores": summary["skill_scores"],
            "strengths": summary["strengths"],
            "areas_to_improve": summary["areas_to_improve"],
            "recommendations": summary["recommendations"],
            "summary": summary["summary"],
        }

        async with self.database.session_scope() as db:
            if await db.get(AssessmentSessionModel, session_id) is None:
                raise SessionNotFoundError(session_id)

            row = await db.get(AssessmentResultModel, session_id)
            if row is None:
                db.add(AssessmentResultModel(session_id=session_id, **values))
            else:
                row.update(values)


def _to_user_record(row: UserModel) -> UserRecord:
    return UserRecord(
        id=row.id,
        email=row.email,
        display_name=row.display_name,
        level=row.level,
        role=row.role,
        has_completed_placement_test=bool(row.has_completed_placement_test),
    )


class SQLUserRepository(UserRepository):

    def __init__(self, database: Database):
        self.database = database

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        async with self.database.session_scope() as db:
            row = await db.get(UserModel, user_id)
            return _to_user_record(row) if row is not None else None

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        async with self.database.session_scope() as db:
            result = await db.execute(select(UserModel).where(UserModel.email == email.strip().lower()))
            row = result.scalar_one_or_none()
            return _to_user_record(row) if row is not None else None

    async def save(self, user: UserRecord) -> UserRecord:
        values = {
            "email": user.email.strip().lower(),
            "display_name": user.display_name,
            "level": user.level,
            "role": user.role,
            "has_completed_placement_test": user.has_completed_placement_test,
        }

        async with self.database.session_scope() as db:
            row = await db.get(UserModel, user.id) if user.id else None
            if row is None:
                row = UserModel(id=user.id or str(uuid.uuid4()), **values)
                db.add(row)
            else:
                row.update(values)
            await db.flush()
            return _to_user_record(row)
