"""
Assessment domain: question and criterion value objects, CEFR diagnostics,
the scoring engine, session state and the session use cases.
"""

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
from linguaiq.assessment.speaking import SpeakingResponsePipeline

__all__ = [
    'CancelAssessmentInput',
    'CancelAssessmentService',
    'CompletePlacementTestService',
    'FinalizeAssessmentInput',
    'FinalizeAssessmentService',
    'StartAssessmentInput',
    'StartAssessmentService',
    'SubmitAssessmentResponseService',
    'SubmitListeningResponseInput',
    'SubmitMultipleChoiceResponseInput',
    'SubmitSpeakingResponseInput',
    'load_assessment_session',
    'score_choice_response',
    'SpeakingResponsePipeline',
]
