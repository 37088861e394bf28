"""
Tests for rubric criteria and descriptor lookup.
"""

import pytest

from linguaiq.common.error_handling import ValidationError
from linguaiq.assessment.criteria import (
    RubricPerformanceLevel,
    create_assessment_criterion,
    find_descriptor_for_score,
)

DESCRIPTORS = [
    {"level": "advanced", "min_score": 76, "max_score": 100, "descriptor": "Natural delivery"},
    {"level": "needsSupport", "min_score": 0, "max_score": 25, "descriptor": "Frequent pauses"},
    {"level": "emerging", "min_score": 26, "max_score": 50, "descriptor": "Some hesitations"},
    {"level": "proficient", "min_score": 51, "max_score": 75, "descriptor": "Generally smooth"},
]


def criterion(descriptors=DESCRIPTORS, weight=33):
    return create_assessment_criterion(
        id=" crit-fluency ",
        title="Fluency",
        skill="speaking",
        focus="Maintain flow during interviews",
        weight=weight,
        descriptors=descriptors,
    )


def test_descriptors_are_sorted_by_minimum():
    built = criterion()

    assert built.id == "crit-fluency"
    assert [item.level for item in built.descriptors] == [
        RubricPerformanceLevel.NEEDS_SUPPORT,
        RubricPerformanceLevel.EMERGING,
        RubricPerformanceLevel.PROFICIENT,
        RubricPerformanceLevel.ADVANCED,
    ]


@pytest.mark.parametrize("weight", [0, 101, float("nan")])
def test_rejects_invalid_weight(weight):
    with pytest.raises(ValidationError):
        criterion(weight=weight)


def test_requires_descriptors():
    with pytest.raises(ValidationError):
        criterion(descriptors=[])


def test_rejects_overlapping_ranges():
    overlapping = [
        {"level": "emerging", "min_score": 0, "max_score": 50, "descriptor": "Some hesitations"},
        {"level": "proficient", "min_score": 50, "max_score": 100, "descriptor": "Generally smooth"},
    ]
    with pytest.raises(ValidationError):
        criterion(descriptors=overlapping)


def test_rejects_repeated_level():
    repeated = [
        {"level": "emerging", "min_score": 0, "max_score": 40, "descriptor": "Some hesitations"},
        {"level": "emerging", "min_score": 41, "max_score": 100, "descriptor": "Still hesitant"},
    ]
    with pytest.raises(ValidationError):
        criterion(descriptors=repeated)


@pytest.mark.parametrize("descriptor", [
    {"level": "emerging", "min_score": 60, "max_score": 40, "descriptor": "Inverted"},
    {"level": "emerging", "min_score": -1, "max_score": 40, "descriptor": "Below zero"},
    {"level": "emerging", "min_score": 0, "max_score": 40, "descriptor": "  "},
    {"level": "expert", "min_score": 0, "max_score": 40, "descriptor": "Unknown level"},
])
def test_rejects_invalid_descriptor(descriptor):
    with pytest.raises(ValidationError):
        criterion(descriptors=[descriptor])


@pytest.mark.parametrize("score, expected", [
    (0, RubricPerformanceLevel.NEEDS_SUPPORT),
    (25.4, RubricPerformanceLevel.NEEDS_SUPPORT),
    (25.5, RubricPerformanceLevel.EMERGING),
    (75, RubricPerformanceLevel.PROFICIENT),
    (100, RubricPerformanceLevel.ADVANCED),
])
def test_descriptor_for_score(score, expected):
    assert find_descriptor_for_score(criterion(), score).level is expected


def test_score_in_a_gap_has_no_descriptor():
    sparse = criterion(descriptors=[
        {"level": "needsSupport", "min_score": 0, "max_score": 25, "descriptor": "Frequent pauses"},
        {"level": "advanced", "min_score": 76, "max_score": 100, "descriptor": "Natural delivery"},
    ])

    assert find_descriptor_for_score(sparse, 50) is None
