"""
Rubric Evaluation Provider

Port and adapter for the language-model service that scores a transcript
against a rubric. The adapter runs every call through the remote call
executor and rejects results whose scores fall outside 0-100.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from linguaiq.common.config import get_config
from linguaiq.common.error_handling import ProviderErrorCode, RubricEvaluationProviderError
from linguaiq.common.logger import app_logger
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import is_finite_number
from linguaiq.providers.remote_call import (
    CancellationSignal,
    LoggerLike,
    RemoteCallContext,
    RemoteCallExecutor,
    RemoteCallOptions,
)

logger = app_logger.getChild("providers.evaluation")


@dataclass(frozen=True)
class RubricCriterionSpec(SerializableMixin):
    """Provider-facing description of one rubric criterion."""
    id: str
    title: str
    description: str
    weight: Optional[float] = None
    expectations: Optional[str] = None


@dataclass(frozen=True)
class CriterionEvaluation(SerializableMixin):
    criterion_id: str
    score: float
    evidence: str = ""
    notes: Optional[str] = None
    action_items: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RubricEvaluationResult(SerializableMixin):
    overall_score: float
    summary: str
    criteria: List[CriterionEvaluation] = field(default_factory=list)


class RubricEvaluationProvider(ABC):
    """Port used by the speaking pipeline to score a transcript."""

    @abstractmethod
    async def evaluate(
        self,
        transcript: str,
        rubric: Sequence[RubricCriterionSpec],
        context: Optional[Dict[str, Any]] = None,
        options: Optional[RemoteCallOptions] = None
    ) -> RubricEvaluationResult:
        """
        Score a transcript against a rubric.

        Raises:
            RubricEvaluationProviderError: for every failure
        """
        pass


class RubricEvaluationClient(ABC):
    """Vendor SDK boundary for rubric evaluation."""

    @abstractmethod
    async def evaluate_rubric(
        self,
        transcript: str,
        rubric: Sequence[RubricCriterionSpec],
        context: Optional[Dict[str, Any]] = None,
        signal: Optional[CancellationSignal] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> RubricEvaluationResult:
        pass


class RemoteRubricEvaluationProvider(RubricEvaluationProvider):
    """``RubricEvaluationProvider`` backed by a ``RubricEvaluationClient``."""

    SERVICE_NAME = "Rubric evaluation provider"

    def __init__(
        self,
        client: RubricEvaluationClient,
        default_timeout_ms: Optional[int] = None,
        logger_instance: Optional[LoggerLike] = None
    ):
        self.client = client
        self.default_timeout_ms = (
            default_timeout_ms if default_timeout_ms is not None
            else get_config().remote_call.evaluation_timeout_ms
        )
        self.logger = logger_instance or logger
        self.executor = RemoteCallExecutor(self.SERVICE_NAME, error_class=RubricEvaluationProviderError)

    async def evaluate(
        self,
        transcript: str,
        rubric: Sequence[RubricCriterionSpec],
        context: Optional[Dict[str, Any]] = None,
        options: Optional[RemoteCallOptions] = None
    ) -> RubricEvaluationResult:
        async def perform(call: RemoteCallContext) -> RubricEvaluationResult:
            return await self.client.evaluate_rubric(
                transcript,
                list(rubric),
                context=context or {},
                signal=call.signal,
                metadata=options.metadata if options else None,
            )

        result = await self.executor.execute(
            "evaluate_rubric",
            self.default_timeout_ms,
            perform,
            options=options,
            logger=self.logger,
        )
        self._validate_result(result)
        self.logger.info(
            "Rubric evaluated",
            extra={"data": {"rubric_items": len(rubric), "overall_score": result.overall_score}}
        )
        return result

    def _validate_result(self, result: RubricEvaluationResult) -> None:
        scores = {"overall_score": getattr(result, "overall_score", None)}
        for item in getattr(result, "criteria", None) or []:
            scores[f"criteria.{item.criterion_id}"] = item.score

        for name, score in scores.items():
            if not is_finite_number(score) or score < 0 or score > 100:
                self.logger.error(
                    "Rubric evaluation provider returned an out-of-range score",
                    extra={"data": {"field": name, "score": repr(score)}}
                )
                raise RubricEvaluationProviderError(
                    "Rubric evaluation provider returned an out-of-range score",
                    provider_code=ProviderErrorCode.INVALID_RESPONSE,
                    details={"field": name, "score": score},
                )
