"""
Rubric Criteria

A rubric criterion is a named, weighted evaluation dimension (fluency,
pronunciation, ...) with ordered performance-level descriptors. Speaking
questions reference criteria by id; the speaking pipeline flattens them into
the rubric sent to the evaluation provider.
"""

import enum
import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from linguaiq.common.error_handling import ValidationError
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import clean_text, round_half_up, round_score, unique_trimmed
from linguaiq.assessment.questions import AssessmentSkill

MIN_CRITERION_WEIGHT = 1
MAX_CRITERION_WEIGHT = 100


class RubricPerformanceLevel(enum.Enum):
    NEEDS_SUPPORT = "needsSupport"
    EMERGING = "emerging"
    PROFICIENT = "proficient"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class RubricDescriptor(SerializableMixin):
    level: RubricPerformanceLevel
    min_score: int
    max_score: int
    descriptor: str
    evidence_examples: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AssessmentCriterion(SerializableMixin):
    id: str
    title: str
    skill: AssessmentSkill
    focus: str
    weight: float
    descriptors: Tuple[RubricDescriptor, ...]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AssessmentCriterion":
        return create_assessment_criterion(**dict(data))


def _coerce_descriptor(raw: Union[RubricDescriptor, Mapping[str, Any]]) -> RubricDescriptor:
    if isinstance(raw, RubricDescriptor):
        return raw
    return RubricDescriptor(
        level=raw.get("level"),
        min_score=raw.get("min_score"),
        max_score=raw.get("max_score"),
        descriptor=raw.get("descriptor", ""),
        evidence_examples=tuple(raw.get("evidence_examples") or ()),
    )


def _sanitize_descriptors(
    descriptors: Sequence[Union[RubricDescriptor, Mapping[str, Any]]]
) -> Tuple[RubricDescriptor, ...]:
    if not descriptors:
        raise ValidationError("Rubric criteria must contain at least one descriptor", field="descriptors")

    seen_levels = set()
    sanitized: List[RubricDescriptor] = []

    for raw in descriptors:
        descriptor = _coerce_descriptor(raw)

        text = clean_text(descriptor.descriptor)
        if not text:
            raise ValidationError(
                "Rubric descriptors must include descriptive guidance",
                field="descriptors.descriptor"
            )

        for name in ("min_score", "max_score"):
            value = getattr(descriptor, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
                raise ValidationError("Rubric descriptor scores must be numeric", field=f"descriptors.{name}")

        if descriptor.min_score < 0 or descriptor.max_score > 100:
            raise ValidationError(
                "Rubric descriptor score ranges must stay within 0-100",
                field="descriptors.min_score"
            )

        if descriptor.min_score > descriptor.max_score:
            raise ValidationError(
                "Rubric descriptor minimum score cannot exceed maximum score",
                field="descriptors.min_score"
            )

        try:
            level = RubricPerformanceLevel(descriptor.level)
        except ValueError:
            raise ValidationError(
                f"Unsupported rubric performance level {descriptor.level!r}",
                field="descriptors.level"
            ) from None

        if level in seen_levels:
            raise ValidationError(
                "Rubric descriptors must have unique performance levels",
                field="descriptors.level"
            )
        seen_levels.add(level)

        sanitized.append(RubricDescriptor(
            level=level,
            min_score=round_score(descriptor.min_score),
            max_score=round_score(descriptor.max_score),
            descriptor=text,
            evidence_examples=tuple(unique_trimmed(descriptor.evidence_examples)),
        ))

    sanitized.sort(key=lambda item: item.min_score)

    for current, following in zip(sanitized, sanitized[1:]):
        if current.max_score >= following.min_score:
            raise ValidationError(
                "Rubric descriptor score ranges cannot overlap",
                field="descriptors"
            )

    return tuple(sanitized)


def _sanitize_weight(weight: float) -> float:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or math.isnan(weight):
        raise ValidationError("Criterion weight must be a numeric value", field="weight")

    if weight < MIN_CRITERION_WEIGHT or weight > MAX_CRITERION_WEIGHT:
        raise ValidationError(
            f"Criterion weight must be between {MIN_CRITERION_WEIGHT} and {MAX_CRITERION_WEIGHT}",
            field="weight"
        )

    return round_half_up(weight, 2)


def create_assessment_criterion(
    id: str,
    title: str,
    skill: Union[str, AssessmentSkill],
    focus: str,
    weight: float,
    descriptors: Sequence[Union[RubricDescriptor, Mapping[str, Any]]]
) -> AssessmentCriterion:
    """
    Build a validated rubric criterion.

    Descriptors come back sorted by minimum score.

    Raises:
        ValidationError: on a weight outside 1-100, no descriptors, blank
            guidance, ranges outside 0-100, an inverted range, a repeated
            performance level, or overlapping ranges
    """
    criterion_id = clean_text(id)
    if not criterion_id:
        raise ValidationError("Rubric criteria must have a non-empty id", field="id")

    return AssessmentCriterion(
        id=criterion_id,
        title=clean_text(title),
        skill=AssessmentSkill.parse(skill),
        focus=clean_text(focus),
        weight=_sanitize_weight(weight),
        descriptors=_sanitize_descriptors(descriptors),
    )


def build_criterion_index(criteria: Iterable[AssessmentCriterion]) -> dict:
    return {criterion.id: criterion for criterion in criteria}


def find_descriptor_for_score(
    criterion: AssessmentCriterion,
    score: float
) -> Optional[RubricDescriptor]:
    """Descriptor whose range contains the rounded score, if any."""
    normalized = round_score(score)
    for descriptor in criterion.descriptors:
        if descriptor.min_score <= normalized <= descriptor.max_score:
            return descriptor
    return None
