"""
In-Memory Assessment Adapters

Process-local implementations of the assessment ports, used by tests and by
single-process deployments:
1. ``MemoryAssessmentSessionRepository`` with atomic duplicate-response checks
2. ``MemoryUserRepository``
3. ``StaticBlueprintProvider`` serving a fixed set of blueprints
4. ``RecordingEventEmitter`` and ``LoggingRetentionEventEmitter``
"""

import dataclasses
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from linguaiq.common.error_handling import DuplicateResponseError, SessionNotFoundError
from linguaiq.common.logger import app_logger
from linguaiq.common.utils import parse_iso, utc_now_iso
from linguaiq.assessment.cefr import CEFRLevel
from linguaiq.assessment.diagnostics import AssessmentDiagnostic
from linguaiq.assessment.models import AssessmentResponse, AssessmentSession, SessionStatus, normalize_session_status
from linguaiq.assessment.repositories import (
    AssessmentBlueprint,
    AssessmentBlueprintProvider,
    AssessmentSessionRepository,
    LifecycleEvent,
    RetentionEventEmitter,
    StoredAssessmentSession,
    StoredSessionRecord,
    UserRecord,
    UserRepository,
)

logger = app_logger.getChild("assessment.memory_repository")


@dataclass
class _SessionEntry:
    record: StoredSessionRecord
    responses: List[AssessmentResponse] = field(default_factory=list)
    diagnostic: Optional[AssessmentDiagnostic] = None

    def snapshot(self) -> StoredAssessmentSession:
        return StoredAssessmentSession(
            session=self.record,
            responses=tuple(self.responses),
            diagnostic=self.diagnostic,
        )


class MemoryAssessmentSessionRepository(AssessmentSessionRepository):
    """
    Session repository backed by a dictionary.

    Every mutation runs under one lock, so checking for an existing response
    and appending the new one is atomic.
    """

    def __init__(self):
        self._sessions: Dict[str, _SessionEntry] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def find_by_id(self, session_id: str) -> Optional[StoredAssessmentSession]:
        with self._lock:
            entry = self._sessions.get(session_id)
            return entry.snapshot() if entry else None

    async def find_active_by_user(self, user_id: str) -> Optional[StoredAssessmentSession]:
        with self._lock:
            candidates = [
                entry for entry in self._sessions.values()
                if entry.record.user_id == user_id and normalize_session_status(entry.record.status).is_active
            ]
            if not candidates:
                return None
            latest = max(candidates, key=lambda entry: parse_iso(entry.record.created_at))
            return latest.snapshot()

    async def create(self, session: AssessmentSession) -> None:
        with self._lock:
            self._sessions[session.id] = _SessionEntry(
                record=StoredSessionRecord.from_session(session),
                responses=list(session.responses),
                diagnostic=session.diagnostic,
            )
        logger.debug(f"Created assessment session {session.id}")

    async def append_response(self, session_id: str, response: AssessmentResponse) -> None:
        with self._lock:
            entry = self._require(session_id)
            if any(item.question_id == response.question_id for item in entry.responses):
                raise DuplicateResponseError(response.question_id, session_id)
            entry.responses.append(response)
            entry.record = dataclasses.replace(entry.record, updated_at=utc_now_iso())

    async def update_status(
        self,
        session_id: str,
        status: SessionStatus,
        completed_at: Optional[str] = None,
        target_level: Optional[CEFRLevel] = None
    ) -> None:
        with self._lock:
            entry = self._require(session_id)
            changes: Dict[str, Any] = {"status": status, "updated_at": utc_now_iso()}
            if completed_at:
                changes["completed_at"] = completed_at
            if target_level:
                changes["target_level"] = target_level
            entry.record = dataclasses.replace(entry.record, **changes)

    async def save_diagnostic(self, session_id: str, diagnostic: AssessmentDiagnostic) -> None:
        with self._lock:
            self._require(session_id).diagnostic = diagnostic

    def _require(self, session_id: str) -> _SessionEntry:
        entry = self._sessions.get(session_id)
        if entry is None:
            raise SessionNotFoundError(session_id)
        return entry


class MemoryUserRepository(UserRepository):

    def __init__(self, users: Optional[Iterable[UserRecord]] = None):
        self._users: Dict[str, UserRecord] = {user.id: user for user in users or ()}
        self._lock = threading.RLock()

    async def find_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(user_id)

    async def find_by_email(self, email: str) -> Optional[UserRecord]:
        normalized = email.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.email.lower() == normalized:
                    return user
        return None

    async def save(self, user: UserRecord) -> UserRecord:
        if not user.id:
            user = dataclasses.replace(user, id=str(uuid.uuid4()))
        with self._lock:
            self._users[user.id] = user
        return user


class StaticBlueprintProvider(AssessmentBlueprintProvider):
    """Serves a fixed set of blueprints by id."""

    def __init__(self, blueprints: Iterable[AssessmentBlueprint]):
        self._blueprints = {blueprint.id: blueprint for blueprint in blueprints}

    async def get_by_id(self, blueprint_id: str) -> Optional[AssessmentBlueprint]:
        return self._blueprints.get(blueprint_id)


@dataclass(frozen=True)
class EmittedEvent:
    event: LifecycleEvent
    payload: Dict[str, Any]


class RecordingEventEmitter(RetentionEventEmitter):
    """Keeps every emitted event in order; used by tests and audits."""

    def __init__(self):
        self.events: List[EmittedEvent] = []

    def emit(self, event: LifecycleEvent, payload: Optional[Dict[str, Any]] = None) -> None:
        self.events.append(EmittedEvent(event=event, payload=dict(payload or {})))

    def named(self, event: LifecycleEvent) -> List[EmittedEvent]:
        return [item for item in self.events if item.event is event]


class LoggingRetentionEventEmitter(RetentionEventEmitter):
    """Writes lifecycle events to the application log."""

    def __init__(self, logger_instance=None):
        self.logger = logger_instance or app_logger.getChild("assessment.events")

    def emit(self, event: LifecycleEvent, payload: Optional[Dict[str, Any]] = None) -> None:
        self.logger.info(f"Retention event {event.value}", extra={"data": dict(payload or {})})
