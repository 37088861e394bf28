"""
Speaking Response Pipeline

Turns a recorded speaking answer into a scored ``SpeakingResponse``:
transcribe the audio, resolve the question's rubric criteria, have the
transcript evaluated against them, then round the scores.

A failure in any of the AI steps is logged with the session and question,
reported once as ``assessment.ia_degraded`` and re-raised unchanged. The
pipeline never retries; the caller of the submit use case owns that policy.
"""

import logging
from typing import List, Mapping, Optional, Union

from linguaiq.common.error_handling import CriterionNotFoundError, ProviderError
from linguaiq.common.logger import LoggerAdapter, app_logger
from linguaiq.common.utils import round_score
from linguaiq.assessment.criteria import AssessmentCriterion
from linguaiq.assessment.models import AssessmentSession, SpeakingResponse, create_speaking_response
from linguaiq.assessment.questions import QuestionType, SpeakingQuestion
from linguaiq.assessment.repositories import AssessmentBlueprint, LifecycleEvent, RetentionEventEmitter
from linguaiq.providers.evaluation import RubricCriterionSpec, RubricEvaluationProvider
from linguaiq.providers.remote_call import RemoteCallOptions
from linguaiq.providers.transcription import ShortAudioFileRef, TranscriptionProvider

logger = app_logger.getChild("assessment.speaking")


def to_rubric_criterion_spec(criterion: AssessmentCriterion) -> RubricCriterionSpec:
    """Flatten a criterion and its descriptors into the provider-facing rubric entry."""
    expectations = "\n".join(
        f"{descriptor.level.value.upper()}: {descriptor.descriptor} "
        f"({descriptor.min_score}-{descriptor.max_score})"
        for descriptor in criterion.descriptors
    )
    return RubricCriterionSpec(
        id=criterion.id,
        title=criterion.title,
        description=f"{criterion.focus} ({criterion.skill.value})",
        weight=criterion.weight,
        expectations=expectations,
    )


def resolve_rubric(
    question: SpeakingQuestion,
    criteria: Mapping[str, AssessmentCriterion]
) -> List[RubricCriterionSpec]:
    """
    Raises:
        CriterionNotFoundError: if the question references an unknown criterion
    """
    rubric = []
    for criterion_id in question.rubric_criterion_ids:
        criterion = criteria.get(criterion_id)
        if criterion is None:
            raise CriterionNotFoundError(criterion_id, details={"question_id": question.id})
        rubric.append(to_rubric_criterion_spec(criterion))
    return rubric


class SpeakingResponsePipeline:
    """
    Transcription then rubric evaluation for one speaking answer.

    The two calls are sequential: evaluation needs the transcript.
    """

    def __init__(
        self,
        transcription: TranscriptionProvider,
        evaluation: RubricEvaluationProvider,
        events: RetentionEventEmitter,
        logger_instance: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None
    ):
        self.transcription = transcription
        self.evaluation = evaluation
        self.events = events
        self.logger = logger_instance or logger

    def _context_logger(self, session: AssessmentSession, question: SpeakingQuestion) -> LoggerAdapter:
        base = self.logger if isinstance(self.logger, LoggerAdapter) else LoggerAdapter(self.logger)
        return base.with_context(session_id=session.id, question_id=question.id)

    async def build_response(
        self,
        session: AssessmentSession,
        blueprint: AssessmentBlueprint,
        question: SpeakingQuestion,
        audio: ShortAudioFileRef,
        submitted_at: str,
        locale_hint: Optional[str] = None,
        prompt: Optional[str] = None,
        options: Optional[RemoteCallOptions] = None
    ) -> SpeakingResponse:
        """
        Score a speaking answer.

        Args:
            session: Session the answer belongs to
            blueprint: Blueprint holding the rubric criteria
            question: The speaking question answered
            audio: Reference to the recorded answer
            submitted_at: ISO submission timestamp
            locale_hint: Language hint for transcription
            prompt: Context prompt for transcription
            options: Deadline and cancellation applied to both provider calls

        Returns:
            The speaking response with rounded overall and per-criterion scores

        Raises:
            ProviderError: if transcription or evaluation fails
            CriterionNotFoundError: if the question's rubric cannot be resolved
        """
        try:
            transcription = await self.transcription.transcribe(
                audio, locale_hint=locale_hint, prompt=prompt, options=options
            )
            rubric = resolve_rubric(question, blueprint.criterion_index())
            evaluation = await self.evaluation.evaluate(
                transcription.transcript, rubric, context={}, options=options
            )
        except Exception as e:
            self._context_logger(session, question).error(
                f"Failed to process speaking response with AI providers: {e}"
            )
            payload = {
                "session_id": session.id,
                "question_id": question.id,
                "type": QuestionType.SPEAKING.value,
            }
            if isinstance(e, ProviderError):
                payload["error_code"] = e.provider_code.value
            self.events.emit(LifecycleEvent.IA_DEGRADED, payload)
            raise

        rubric_scores = {item.criterion_id: round_score(item.score) for item in evaluation.criteria}
        return create_speaking_response(
            question.id,
            transcription.transcript,
            submitted_at,
            audio_url=audio.uri,
            score=round_score(evaluation.overall_score),
            rubric_scores=rubric_scores,
        )
