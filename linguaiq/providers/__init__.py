"""
AI provider ports and adapters.

Transcription and rubric evaluation calls both run through the shared
``RemoteCallExecutor``.
"""

from linguaiq.providers.remote_call import (
    CancellationController,
    CancellationSignal,
    ClientError,
    OperationAborted,
    RemoteCallContext,
    RemoteCallExecutor,
    RemoteCallOptions,
)
from linguaiq.providers.transcription import (
    RemoteTranscriptionProvider,
    ShortAudioFileRef,
    TranscriptionClient,
    TranscriptionProvider,
    TranscriptionResult,
)
from linguaiq.providers.evaluation import (
    CriterionEvaluation,
    RemoteRubricEvaluationProvider,
    RubricCriterionSpec,
    RubricEvaluationClient,
    RubricEvaluationProvider,
    RubricEvaluationResult,
)

__all__ = [
    'CancellationController',
    'CancellationSignal',
    'ClientError',
    'OperationAborted',
    'RemoteCallContext',
    'RemoteCallExecutor',
    'RemoteCallOptions',
    'RemoteTranscriptionProvider',
    'ShortAudioFileRef',
    'TranscriptionClient',
    'TranscriptionProvider',
    'TranscriptionResult',
    'CriterionEvaluation',
    'RemoteRubricEvaluationProvider',
    'RubricCriterionSpec',
    'RubricEvaluationClient',
    'RubricEvaluationProvider',
    'RubricEvaluationResult',
]
