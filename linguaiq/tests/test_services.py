"""
Tests for the assessment use cases, run against the in-memory adapters.
"""

from unittest.mock import AsyncMock

import pytest

from linguaiq.common.error_handling import (
    BlueprintNotFoundError,
    DuplicateResponseError,
    InvalidSessionStateError,
    ProviderErrorCode,
    QuestionNotFoundError,
    ResponseTypeMismatchError,
    SessionNotFoundError,
    TranscriptionProviderError,
    UserNotFoundError,
    ValidationError,
)
from linguaiq.assessment.cefr import CEFRLevel, ConfidenceLevel
from linguaiq.assessment.memory_repository import StaticBlueprintProvider
from linguaiq.assessment.models import SessionStatus
from linguaiq.assessment.questions import (
    AssessmentSkill,
    MultipleChoiceOption,
    QuestionType,
    create_listening_question,
    create_multiple_choice_question,
)
from linguaiq.assessment.repositories import (
    AssessmentSessionRepository,
    LifecycleEvent,
    StoredAssessmentSession,
    StoredSessionRecord,
    UserRepository,
)
from linguaiq.assessment.services import (
    CancelAssessmentInput,
    CancelAssessmentService,
    CompletePlacementTestService,
    FinalizeAssessmentInput,
    FinalizeAssessmentService,
    StartAssessmentInput,
    StartAssessmentService,
    SubmitAssessmentResponseService,
    SubmitListeningResponseInput,
    SubmitMultipleChoiceResponseInput,
    SubmitSpeakingResponseInput,
    load_assessment_session,
    score_choice_response,
)
from linguaiq.providers.transcription import ShortAudioFileRef
from linguaiq.tests.conftest import FINALIZED_AT, STARTED_AT, SUBMITTED_AT

AUDIO = ShortAudioFileRef(uri="s3://answers/speaking-1.webm", size_bytes=120000, duration_ms=42000)


@pytest.fixture
def start_service(sessions, blueprints, events):
    return StartAssessmentService(sessions, blueprints, events, now=lambda: STARTED_AT)


@pytest.fixture
def submit_service(sessions, blueprints, events, speaking):
    return SubmitAssessmentResponseService(sessions, blueprints, events, speaking)


@pytest.fixture
def finalize_service(sessions, blueprints, users, events):
    return FinalizeAssessmentService(sessions, blueprints, users, events, now=lambda: FINALIZED_AT)


@pytest.fixture
def cancel_service(sessions, blueprints, events):
    return CancelAssessmentService(sessions, blueprints, events)


@pytest.fixture
async def session_id(start_service):
    result = await start_service.execute(StartAssessmentInput(user_id="user-1"))
    return result.session_id


def grammar_answer(session_id, selected=("b",)):
    return SubmitMultipleChoiceResponseInput(
        session_id=session_id,
        question_id="grammar-1",
        submitted_at=SUBMITTED_AT,
        selected_option_ids=list(selected),
    )


def listening_answer(session_id, selected=("a",)):
    return SubmitListeningResponseInput(
        session_id=session_id,
        question_id="listening-1",
        submitted_at=SUBMITTED_AT,
        selected_option_ids=list(selected),
    )


def speaking_answer(session_id):
    return SubmitSpeakingResponseInput(
        session_id=session_id,
        question_id="speaking-1",
        submitted_at=SUBMITTED_AT,
        audio=AUDIO,
        locale_hint="en-US",
    )


class TestScoreChoiceResponse:

    @pytest.fixture
    def question(self):
        return create_multiple_choice_question(
            id="vocab-1",
            title="Synonyms",
            skill="vocabulary",
            cefr_level="B1",
            weight=20,
            stem="Pick every synonym of 'fast'",
            options=[
                MultipleChoiceOption(id="a", label="A", text="quick"),
                MultipleChoiceOption(id="b", label="B", text="rapid"),
                MultipleChoiceOption(id="c", label="C", text="slow"),
            ],
            correct_option_ids=["a", "b"],
        )

    def test_exact_selection_scores_full_marks(self, question):
        assert score_choice_response(question, ["a", "b"]) == 100

    def test_partial_selection_without_mistakes(self, question):
        assert score_choice_response(question, ["a"]) == 50

    def test_wrong_selection_switches_to_precision(self, question):
        assert score_choice_response(question, ["a", "c"]) == 50
        assert score_choice_response(question, ["a", "b", "c"]) == 67
        assert score_choice_response(question, ["c"]) == 0

    def test_repeated_ids_count_once(self, question):
        assert score_choice_response(question, ["a", "a"]) == 50

    def test_no_selection_has_no_score(self, question):
        assert score_choice_response(question, []) is None
        assert score_choice_response(question, None) is None

    def test_question_without_correct_options_has_no_score(self):
        question = create_listening_question(
            id="listening-notes",
            title="Retro notes",
            skill="listening",
            cefr_level="B1",
            weight=10,
            prompt="Take notes",
            stimulus={"audio_url": "https://cdn.local/retro.mp3"},
        )
        assert score_choice_response(question, ["a"]) is None


class TestLoadAssessmentSession:

    def _stored(self, status, target_level=None):
        return StoredAssessmentSession(session=StoredSessionRecord(
            id="session-legacy",
            user_id="user-1",
            blueprint_id="bp-leveling",
            status=status,
            started_at=STARTED_AT,
            created_at=STARTED_AT,
            updated_at=STARTED_AT,
            target_level=target_level,
        ))

    async def test_missing_session(self, blueprints):
        sessions = AsyncMock(spec=AssessmentSessionRepository)
        sessions.find_by_id.return_value = None

        with pytest.raises(SessionNotFoundError):
            await load_assessment_session("nope", sessions, blueprints)

    async def test_missing_blueprint(self):
        sessions = AsyncMock(spec=AssessmentSessionRepository)
        sessions.find_by_id.return_value = self._stored("IN_PROGRESS")

        with pytest.raises(BlueprintNotFoundError):
            await load_assessment_session("session-legacy", sessions, StaticBlueprintProvider([]))

    @pytest.mark.parametrize("stored_status, expected", [
        ("IN_PROGRESS", SessionStatus.IN_PROGRESS),
        ("in_progress", SessionStatus.IN_PROGRESS),
        ("PENDING", SessionStatus.DRAFT),
        ("canceled", SessionStatus.CANCELLED),
    ])
    async def test_normalizes_stored_status(self, blueprints, stored_status, expected):
        sessions = AsyncMock(spec=AssessmentSessionRepository)
        sessions.find_by_id.return_value = self._stored(stored_status)

        loaded = await load_assessment_session("session-legacy", sessions, blueprints)

        assert loaded.session.status is expected

    async def test_target_level_falls_back_to_blueprint(self, blueprints):
        sessions = AsyncMock(spec=AssessmentSessionRepository)
        sessions.find_by_id.return_value = self._stored("IN_PROGRESS")

        loaded = await load_assessment_session("session-legacy", sessions, blueprints)

        assert loaded.session.target_level is CEFRLevel.B2
        assert [question.id for question in loaded.session.questions] == ["grammar-1", "listening-1", "speaking-1"]

    async def test_stored_target_level_wins(self, blueprints):
        sessions = AsyncMock(spec=AssessmentSessionRepository)
        sessions.find_by_id.return_value = self._stored("IN_PROGRESS", target_level=CEFRLevel.C1)

        loaded = await load_assessment_session("session-legacy", sessions, blueprints)

        assert loaded.session.target_level is CEFRLevel.C1


class TestStartAssessment:

    async def test_creates_in_progress_session(self, start_service, sessions, events):
        result = await start_service.execute(StartAssessmentInput(user_id="user-1"))

        assert result.created is True
        assert result.session.status is SessionStatus.IN_PROGRESS
        assert result.session.blueprint_id == "bp-leveling"
        assert result.session.target_level is CEFRLevel.B2
        assert result.session.started_at == STARTED_AT
        assert len(sessions) == 1

        started = events.named(LifecycleEvent.STARTED)
        assert len(started) == 1
        assert started[0].payload == {
            "session_id": result.session_id,
            "user_id": "user-1",
            "blueprint_id": "bp-leveling",
            "skills": ["grammar", "listening", "speaking"],
        }

    async def test_returns_active_session_on_repeat(self, start_service, sessions, events):
        first = await start_service.execute(StartAssessmentInput(user_id="user-1"))
        second = await start_service.execute(StartAssessmentInput(user_id="user-1"))

        assert second.session_id == first.session_id
        assert second.created is False
        assert len(sessions) == 1
        assert len(events.named(LifecycleEvent.STARTED)) == 1

    async def test_explicit_target_level(self, start_service):
        result = await start_service.execute(StartAssessmentInput(user_id="user-2", target_level="C1"))

        assert result.session.target_level is CEFRLevel.C1

    async def test_uses_injected_id_factory(self, sessions, blueprints, events):
        service = StartAssessmentService(
            sessions, blueprints, events, now=lambda: STARTED_AT, id_factory=lambda: "session-fixed"
        )

        result = await service.execute(StartAssessmentInput(user_id="user-1"))

        assert result.session_id == "session-fixed"

    async def test_unknown_blueprint(self, start_service, sessions, events):
        with pytest.raises(BlueprintNotFoundError):
            await start_service.execute(StartAssessmentInput(user_id="user-1", blueprint_id="bp-missing"))

        assert len(sessions) == 0
        assert events.events == []


class TestSubmitResponse:

    async def test_correct_multiple_choice_answer(self, submit_service, sessions, events, session_id):
        result = await submit_service.execute(grammar_answer(session_id))

        assert result.total_responses == 1
        assert result.response.score == 100
        assert result.response.selected_option_ids == ("b",)

        stored = await sessions.find_by_id(session_id)
        assert [response.question_id for response in stored.responses] == ["grammar-1"]

        recorded = events.named(LifecycleEvent.RESPONSE_RECORDED)
        assert recorded[0].payload == {
            "session_id": session_id,
            "question_id": "grammar-1",
            "type": QuestionType.MULTIPLE_CHOICE.value,
            "answered": 1,
            "total": 3,
        }

    async def test_wrong_multiple_choice_answer_scores_zero(self, submit_service, session_id):
        result = await submit_service.execute(grammar_answer(session_id, selected=("a",)))

        assert result.response.score == 0

    async def test_answered_count_grows(self, submit_service, events, session_id):
        await submit_service.execute(grammar_answer(session_id))
        result = await submit_service.execute(listening_answer(session_id))

        assert result.total_responses == 2
        assert [item.payload["answered"] for item in events.named(LifecycleEvent.RESPONSE_RECORDED)] == [1, 2]

    async def test_duplicate_answer_is_rejected(self, submit_service, sessions, session_id):
        await submit_service.execute(grammar_answer(session_id))

        with pytest.raises(DuplicateResponseError):
            await submit_service.execute(grammar_answer(session_id, selected=("a",)))

        stored = await sessions.find_by_id(session_id)
        assert len(stored.responses) == 1
        assert stored.responses[0].score == 100

    async def test_unknown_question(self, submit_service, session_id):
        request = SubmitMultipleChoiceResponseInput(
            session_id=session_id,
            question_id="grammar-99",
            submitted_at=SUBMITTED_AT,
            selected_option_ids=["a"],
        )

        with pytest.raises(QuestionNotFoundError):
            await submit_service.execute(request)

    async def test_unknown_session(self, submit_service):
        with pytest.raises(SessionNotFoundError):
            await submit_service.execute(grammar_answer("missing-session"))

    async def test_response_type_must_match_question(self, submit_service, session_id):
        request = SubmitListeningResponseInput(
            session_id=session_id,
            question_id="grammar-1",
            submitted_at=SUBMITTED_AT,
            selected_option_ids=["b"],
        )

        with pytest.raises(ResponseTypeMismatchError):
            await submit_service.execute(request)

    async def test_cancelled_session_rejects_answers(self, submit_service, cancel_service, session_id):
        await cancel_service.execute(CancelAssessmentInput(session_id=session_id))

        with pytest.raises(InvalidSessionStateError):
            await submit_service.execute(grammar_answer(session_id))

    async def test_speaking_answer_is_transcribed_and_evaluated(
        self, submit_service, transcription, evaluation, session_id
    ):
        result = await submit_service.execute(speaking_answer(session_id))

        response = result.response
        assert response.score == 60
        assert response.rubric_scores == {"crit-fluency": 63}
        assert response.transcript == "We rolled back the release and recovered in ten minutes"
        assert response.audio_url == AUDIO.uri

        transcription.transcribe.assert_awaited_once()
        assert transcription.transcribe.call_args.args[0] == AUDIO
        assert transcription.transcribe.call_args.kwargs["locale_hint"] == "en-US"

        rubric = evaluation.evaluate.call_args.args[1]
        assert [item.id for item in rubric] == ["crit-fluency"]

    async def test_transcription_failure_degrades_once_and_propagates(
        self, submit_service, sessions, transcription, evaluation, events, session_id
    ):
        failure = TranscriptionProviderError("upstream timed out", provider_code=ProviderErrorCode.TIMEOUT)
        transcription.transcribe.side_effect = failure

        with pytest.raises(TranscriptionProviderError) as exc_info:
            await submit_service.execute(speaking_answer(session_id))

        assert exc_info.value is failure
        evaluation.evaluate.assert_not_awaited()

        degraded = events.named(LifecycleEvent.IA_DEGRADED)
        assert len(degraded) == 1
        assert degraded[0].payload == {
            "session_id": session_id,
            "question_id": "speaking-1",
            "type": "speaking",
            "error_code": "TIMEOUT",
        }
        assert events.named(LifecycleEvent.RESPONSE_RECORDED) == []

        stored = await sessions.find_by_id(session_id)
        assert stored.responses == ()


class TestFinalizeAssessment:

    async def answer_everything(self, submit_service, session_id):
        await submit_service.execute(grammar_answer(session_id))
        await submit_service.execute(listening_answer(session_id))
        await submit_service.execute(speaking_answer(session_id))

    async def test_full_assessment_reaches_c1(
        self, submit_service, finalize_service, sessions, users, events, session_id
    ):
        await self.answer_everything(submit_service, session_id)

        result = await finalize_service.execute(
            FinalizeAssessmentInput(session_id=session_id, requested_at=FINALIZED_AT)
        )

        # (100 * 35 + 100 * 25 + 60 * 40) / 100
        assert result.diagnostic.overall.score == 84
        assert result.recommended_level is CEFRLevel.C1
        assert result.diagnostic.overall.confidence is ConfidenceLevel.HIGH
        assert {item.skill: item.profile.score for item in result.diagnostic.skills} == {
            AssessmentSkill.GRAMMAR: 100,
            AssessmentSkill.LISTENING: 100,
            AssessmentSkill.SPEAKING: 60,
        }

        stored = await sessions.find_by_id(session_id)
        assert stored.session.status is SessionStatus.COMPLETED
        assert stored.session.completed_at == FINALIZED_AT
        assert stored.session.target_level is CEFRLevel.C1
        assert stored.diagnostic == result.diagnostic

        user = await users.find_by_id("user-1")
        assert user.level == "C1"
        assert user.has_completed_placement_test is True

        completed = events.named(LifecycleEvent.COMPLETED)
        assert [item.payload for item in completed] == [
            {"session_id": session_id, "user_id": "user-1", "level": "C1"},
        ]
        assert [item.event for item in events.events] == [
            LifecycleEvent.STARTED,
            LifecycleEvent.RESPONSE_RECORDED,
            LifecycleEvent.RESPONSE_RECORDED,
            LifecycleEvent.RESPONSE_RECORDED,
            LifecycleEvent.COMPLETED,
        ]

    async def test_finalize_is_idempotent(self, submit_service, finalize_service, events, session_id):
        await self.answer_everything(submit_service, session_id)

        first = await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))
        second = await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))

        assert second.recommended_level is first.recommended_level
        assert second.diagnostic == first.diagnostic
        assert len(events.named(LifecycleEvent.COMPLETED)) == 1

    async def test_finalizing_completed_session_changes_nothing(
        self, submit_service, finalize_service, sessions, users, events, session_id
    ):
        await self.answer_everything(submit_service, session_id)
        await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id, requested_at=FINALIZED_AT))
        stored_before = await sessions.find_by_id(session_id)
        user_before = await users.find_by_id("user-1")
        events_before = list(events.events)

        result = await finalize_service.execute(
            FinalizeAssessmentInput(session_id=session_id, requested_at="2024-05-02T10:00:00.000Z")
        )

        assert result.recommended_level is CEFRLevel.C1
        assert await sessions.find_by_id(session_id) == stored_before
        assert await users.find_by_id("user-1") == user_before
        assert events.events == events_before

    async def test_completion_before_start_is_rejected(self, finalize_service, sessions, users, events, session_id):
        with pytest.raises(ValidationError) as exc_info:
            await finalize_service.execute(
                FinalizeAssessmentInput(session_id=session_id, requested_at="2024-04-01T09:00:00.000Z")
            )

        assert exc_info.value.details["field"] == "completed_at"
        stored = await sessions.find_by_id(session_id)
        assert stored.session.status is SessionStatus.IN_PROGRESS
        assert stored.session.completed_at is None
        assert stored.diagnostic is None
        assert (await users.find_by_id("user-1")).level is None
        assert events.named(LifecycleEvent.COMPLETED) == []

        result = await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))

        assert result.recommended_level is CEFRLevel.A1
        assert (await sessions.find_by_id(session_id)).session.completed_at == FINALIZED_AT

    async def test_unanswered_session_scores_a1_with_low_confidence(self, finalize_service, session_id):
        result = await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))

        assert result.diagnostic.overall.score == 0
        assert result.recommended_level is CEFRLevel.A1
        assert result.diagnostic.overall.confidence is ConfidenceLevel.LOW
        assert len(result.diagnostic.recommendations) == 3

    async def test_missing_user_does_not_block_completion(
        self, start_service, finalize_service, sessions, events
    ):
        started = await start_service.execute(StartAssessmentInput(user_id="ghost"))

        result = await finalize_service.execute(FinalizeAssessmentInput(session_id=started.session_id))

        stored = await sessions.find_by_id(started.session_id)
        assert stored.session.status is SessionStatus.COMPLETED
        assert result.recommended_level is CEFRLevel.A1
        assert len(events.named(LifecycleEvent.COMPLETED)) == 1

    async def test_failing_user_store_does_not_block_completion(self, sessions, blueprints, events, session_id):
        users = AsyncMock(spec=UserRepository)
        users.find_by_id.side_effect = RuntimeError("user store unavailable")
        service = FinalizeAssessmentService(sessions, blueprints, users, events, now=lambda: FINALIZED_AT)

        await service.execute(FinalizeAssessmentInput(session_id=session_id))

        stored = await sessions.find_by_id(session_id)
        assert stored.session.status is SessionStatus.COMPLETED
        users.save.assert_not_awaited()

    async def test_cancelled_session_cannot_be_finalized(self, finalize_service, cancel_service, session_id):
        await cancel_service.execute(CancelAssessmentInput(session_id=session_id))

        with pytest.raises(InvalidSessionStateError):
            await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))

    async def test_completed_session_rejects_answers(
        self, submit_service, finalize_service, session_id
    ):
        await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))

        with pytest.raises(InvalidSessionStateError):
            await submit_service.execute(grammar_answer(session_id))


class TestCancelAssessment:

    async def test_cancel_in_progress_session(self, cancel_service, sessions, events, session_id):
        result = await cancel_service.execute(CancelAssessmentInput(session_id=session_id, reason="user left"))

        assert result.status is SessionStatus.CANCELLED
        stored = await sessions.find_by_id(session_id)
        assert stored.session.status is SessionStatus.CANCELLED
        assert events.named(LifecycleEvent.CANCELLED)[0].payload == {
            "session_id": session_id,
            "user_id": "user-1",
            "reason": "user left",
        }

    async def test_cancel_is_idempotent(self, cancel_service, events, session_id):
        await cancel_service.execute(CancelAssessmentInput(session_id=session_id))
        result = await cancel_service.execute(CancelAssessmentInput(session_id=session_id))

        assert result.status is SessionStatus.CANCELLED
        assert len(events.named(LifecycleEvent.CANCELLED)) == 1

    async def test_completed_session_cannot_be_cancelled(self, cancel_service, finalize_service, session_id):
        await finalize_service.execute(FinalizeAssessmentInput(session_id=session_id))

        with pytest.raises(InvalidSessionStateError):
            await cancel_service.execute(CancelAssessmentInput(session_id=session_id))

    async def test_new_session_after_cancel(self, cancel_service, start_service, session_id):
        await cancel_service.execute(CancelAssessmentInput(session_id=session_id))

        result = await start_service.execute(StartAssessmentInput(user_id="user-1"))

        assert result.created is True
        assert result.session_id != session_id


class TestCompletePlacementTest:

    async def test_marks_placement_test_completed(self, users):
        service = CompletePlacementTestService(users)

        result = await service.execute("user-1")

        assert result.has_completed_placement_test is True
        assert (await users.find_by_id("user-1")).has_completed_placement_test is True

    async def test_is_idempotent(self, users):
        service = CompletePlacementTestService(users)

        await service.execute("user-1")
        result = await service.execute("user-1")

        assert result.user_id == "user-1"
        assert result.has_completed_placement_test is True

    async def test_unknown_user(self, users):
        with pytest.raises(UserNotFoundError):
            await CompletePlacementTestService(users).execute("nobody")
