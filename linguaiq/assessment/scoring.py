"""
Scoring and Diagnostic Engine

Pure functions that turn a question set and the responses collected for it
into a weighted score breakdown, a coverage-based confidence level and a
structured CEFR diagnostic.

Confidence and feedback thresholds are policy objects, not constants: the
defaults come from ``ScoringConfig`` and callers may inject their own.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from linguaiq.common.config import ScoringConfig, get_config
from linguaiq.common.utils import round_score
from linguaiq.assessment.cefr import ConfidenceLevel
from linguaiq.assessment.diagnostics import (
    AssessmentDiagnostic,
    SkillDiagnosticInput,
    create_assessment_diagnostic,
)
from linguaiq.assessment.models import AssessmentResponse
from linguaiq.assessment.questions import AssessmentQuestion, AssessmentSkill


@dataclass(frozen=True)
class SkillScore:
    score: int
    weight: float


@dataclass(frozen=True)
class ScoreBreakdown:
    overall_score: int
    skill_scores: Dict[AssessmentSkill, SkillScore]
    total_weight: float
    answered_weight: float
    evaluated_responses: int

    @property
    def coverage(self) -> float:
        """Answered weight over total weight."""
        return self.answered_weight / (self.total_weight or 1)


def compute_score_breakdown(
    questions: Sequence[AssessmentQuestion],
    responses: Iterable[AssessmentResponse]
) -> ScoreBreakdown:
    """
    Weighted score breakdown of a question set.

    Each response score is clamped to 0-100; a missing response or a
    response without a score contributes 0. Unanswered questions still count
    their weight toward the overall and per-skill denominators. Skills appear
    in the order their first question appears.

    Args:
        questions: The question set
        responses: Responses collected so far

    Returns:
        The overall score, per-skill scores and the coverage figures
    """
    responses_by_question = {response.question_id: response for response in responses}
    total_weight = sum(question.weight for question in questions) or 1

    skill_sums: Dict[AssessmentSkill, List[float]] = {}
    weighted_sum = 0.0
    answered_weight = 0.0
    evaluated = 0

    for question in questions:
        entry = skill_sums.setdefault(question.skill, [0.0, 0.0])
        entry[1] += question.weight

        response = responses_by_question.get(question.id)
        if response is None:
            continue

        score = max(0.0, min(100.0, response.score or 0))
        weighted_sum += score * question.weight
        answered_weight += question.weight
        evaluated += 1
        entry[0] += score * question.weight

    skill_scores = {
        skill: SkillScore(score=round_score(score_sum / (weight_sum or 1)), weight=weight_sum)
        for skill, (score_sum, weight_sum) in skill_sums.items()
    }

    return ScoreBreakdown(
        overall_score=round_score(weighted_sum / total_weight),
        skill_scores=skill_scores,
        total_weight=total_weight,
        answered_weight=answered_weight,
        evaluated_responses=evaluated,
    )


@dataclass(frozen=True)
class ConfidencePolicy:
    """Coverage thresholds for the high and medium confidence levels."""
    high_coverage: float = 0.85
    medium_coverage: float = 0.60

    @classmethod
    def from_config(cls, config: Optional[ScoringConfig] = None) -> "ConfidencePolicy":
        config = config or get_config().scoring
        return cls(
            high_coverage=config.high_confidence_coverage,
            medium_coverage=config.medium_confidence_coverage,
        )


def infer_confidence_from_coverage(
    breakdown: ScoreBreakdown,
    policy: Optional[ConfidencePolicy] = None
) -> ConfidenceLevel:
    policy = policy or ConfidencePolicy.from_config()
    coverage = breakdown.coverage
    if coverage >= policy.high_coverage:
        return ConfidenceLevel.HIGH
    if coverage >= policy.medium_coverage:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


@dataclass(frozen=True)
class FeedbackPolicy:
    """
    Score thresholds driving the strength and improvement notes.

    At or above ``strength_threshold`` a skill earns a strong note, at or
    above ``consolidation_threshold`` a keep-practising note. Below the
    consolidation threshold it gets a moderate improvement note down to
    ``moderate_improvement_threshold`` and a priority note under it.
    """
    strength_threshold: float = 75
    consolidation_threshold: float = 60
    moderate_improvement_threshold: float = 45
    strength_template: str = "Excellent command of {skill}, ready for high-stakes interviews."
    consolidation_template: str = "Good performance in {skill}, keep practising to consolidate it."
    moderate_template: str = "Reinforce {skill} with focused review and weekly exercises."
    priority_template: str = "Prioritise {skill} with guided sessions and structured feedback."

    @classmethod
    def from_config(cls, config: Optional[ScoringConfig] = None) -> "FeedbackPolicy":
        config = config or get_config().scoring
        return cls(
            strength_threshold=config.strength_threshold,
            consolidation_threshold=config.consolidation_threshold,
            moderate_improvement_threshold=config.moderate_improvement_threshold,
        )

    def strengths(self, score: float, skill: AssessmentSkill) -> List[str]:
        if score >= self.strength_threshold:
            return [self.strength_template.format(skill=skill.value)]
        if score >= self.consolidation_threshold:
            return [self.consolidation_template.format(skill=skill.value)]
        return []

    def improvements(self, score: float, skill: AssessmentSkill) -> List[str]:
        if score >= self.consolidation_threshold:
            return []
        if score >= self.moderate_improvement_threshold:
            return [self.moderate_template.format(skill=skill.value)]
        return [self.priority_template.format(skill=skill.value)]


def build_assessment_diagnostic(
    breakdown: ScoreBreakdown,
    confidence_policy: Optional[ConfidencePolicy] = None,
    feedback_policy: Optional[FeedbackPolicy] = None
) -> AssessmentDiagnostic:
    """
    Assemble the diagnostic for a score breakdown.

    Every skill gets strength and improvement notes from the feedback policy;
    the recommendations are the first improvement note of each skill that
    has one.
    """
    feedback_policy = feedback_policy or FeedbackPolicy.from_config()
    confidence = infer_confidence_from_coverage(breakdown, confidence_policy)

    skills = [
        SkillDiagnosticInput(
            skill=skill,
            score=entry.score,
            strengths=feedback_policy.strengths(entry.score, skill),
            improvements=feedback_policy.improvements(entry.score, skill),
        )
        for skill, entry in breakdown.skill_scores.items()
    ]

    recommendations = [item.improvements[0] for item in skills if item.improvements]

    return create_assessment_diagnostic(
        breakdown.overall_score,
        skills,
        confidence=confidence,
        recommendations=recommendations,
        rationale=[],
    )
