"""
CEFR Levels and Score Bands

This module holds the CEFR vocabulary shared by questions, diagnostics and
learner records: the six ordered proficiency levels, the score bands that
map a 0-100 score onto them, and the confidence levels a diagnostic reports.
"""

import enum
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from linguaiq.common.error_handling import ValidationError
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import round_score


class CEFRLevel(enum.Enum):
    """Common European Framework of Reference proficiency levels."""
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"

    @property
    def order(self) -> int:
        return _LEVEL_ORDER[self]

    @classmethod
    def parse(cls, value: Union[str, "CEFRLevel"], field: str = "cefr_level") -> "CEFRLevel":
        """Coerce a string or member into a level, rejecting unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unsupported CEFR level: {value!r}", field=field) from None


_LEVEL_ORDER = {level: index for index, level in enumerate(CEFRLevel)}


def is_valid_cefr_level(value) -> bool:
    if isinstance(value, CEFRLevel):
        return True
    return isinstance(value, str) and value in CEFRLevel._value2member_map_


def compare_cefr_levels(a: CEFRLevel, b: CEFRLevel) -> int:
    """Negative when ``a`` is below ``b``, zero when equal, positive above."""
    return a.order - b.order


class ConfidenceLevel(enum.Enum):
    """How much of the assessment backs a diagnostic."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class CEFRScoreBand(SerializableMixin):
    """Inclusive score range mapped to one CEFR level."""
    level: CEFRLevel
    min_score: int
    max_score: int
    label: str
    description: str

    @classmethod
    def from_dict(cls, data: dict) -> "CEFRScoreBand":
        return create_cefr_score_band(
            level=data["level"],
            min_score=data["min_score"],
            max_score=data["max_score"],
            label=data.get("label", ""),
            description=data.get("description", ""),
        )


def create_cefr_score_band(
    level: Union[str, CEFRLevel],
    min_score: float,
    max_score: float,
    label: str,
    description: str
) -> CEFRScoreBand:
    """
    Build a validated score band.

    Raises:
        ValidationError: on non-numeric bounds, bounds outside 0-100 or
            a minimum above the maximum
    """
    for name, value in (("min_score", min_score), ("max_score", max_score)):
        if not isinstance(value, (int, float)) or math.isnan(value):
            raise ValidationError("CEFR score band must have numeric min and max scores", field=name)

    if min_score < 0 or max_score > 100:
        raise ValidationError("CEFR score band scores must be within the 0-100 range", field="min_score")

    if min_score > max_score:
        raise ValidationError("CEFR score band minimum score cannot exceed the maximum score", field="min_score")

    return CEFRScoreBand(
        level=CEFRLevel.parse(level, "level"),
        min_score=round_score(min_score),
        max_score=round_score(max_score),
        label=label,
        description=description,
    )


DEFAULT_CEFR_SCORE_BANDS: List[CEFRScoreBand] = [
    create_cefr_score_band(
        CEFRLevel.A1, 0, 20, "Beginner",
        "Communicates basic ideas with memorised phrases and simple vocabulary.",
    ),
    create_cefr_score_band(
        CEFRLevel.A2, 21, 40, "Elementary",
        "Understands familiar topics and asks simple questions about routines.",
    ),
    create_cefr_score_band(
        CEFRLevel.B1, 41, 60, "Intermediate",
        "Sustains predictable conversations and describes experiences with some fluency.",
    ),
    create_cefr_score_band(
        CEFRLevel.B2, 61, 75, "Upper Intermediate",
        "Argues about technical topics with good fluency and functional vocabulary.",
    ),
    create_cefr_score_band(
        CEFRLevel.C1, 76, 90, "Advanced",
        "Shows discursive flexibility and precision in complex professional contexts.",
    ),
    create_cefr_score_band(
        CEFRLevel.C2, 91, 100, "Proficient",
        "Communicates naturally and with nuance, close to a native speaker in demanding situations.",
    ),
]


def find_score_band(
    score: float,
    bands: Optional[Sequence[CEFRScoreBand]] = None
) -> CEFRScoreBand:
    """
    Map a 0-100 score to its CEFR band.

    The score is rounded first; the first band containing it wins. A score
    that falls in a gap between configured bands maps to the highest level.

    Raises:
        ValidationError: if the score is NaN, outside 0-100, or no bands exist
    """
    bands = DEFAULT_CEFR_SCORE_BANDS if bands is None else bands

    if not isinstance(score, (int, float)) or math.isnan(score):
        raise ValidationError("Score must be a numeric value to determine a CEFR band", field="score")

    if score < 0 or score > 100:
        raise ValidationError("Score must be within the 0-100 range to map to CEFR levels", field="score")

    normalized = round_score(score)
    for band in bands:
        if band.min_score <= normalized <= band.max_score:
            return band

    if not bands:
        raise ValidationError("No CEFR bands configured", field="bands")

    return max(bands, key=lambda band: band.level.order)
