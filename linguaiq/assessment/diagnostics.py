"""
CEFR Diagnostics

This module defines the computed outcome of an assessment: a CEFR profile
for the overall score, one skill diagnostic per assessed skill, and the
recommendations shown to the learner.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from linguaiq.common.error_handling import ValidationError
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import round_half_up, round_score
from linguaiq.assessment.cefr import (
    CEFRLevel,
    CEFRScoreBand,
    ConfidenceLevel,
    find_score_band,
)
from linguaiq.assessment.questions import AssessmentSkill


@dataclass(frozen=True)
class CEFRDiagnosticProfile(SerializableMixin):
    level: CEFRLevel
    score: int
    band: CEFRScoreBand
    confidence: ConfidenceLevel
    rationale: Tuple[str, ...] = ()


@dataclass(frozen=True)
class SkillDiagnostic(SerializableMixin):
    skill: AssessmentSkill
    profile: CEFRDiagnosticProfile
    percentile: Optional[float] = None
    strengths: Tuple[str, ...] = ()
    improvements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AssessmentDiagnostic(SerializableMixin):
    overall: CEFRDiagnosticProfile
    skills: Tuple[SkillDiagnostic, ...]
    recommendations: Tuple[str, ...] = ()
    notes: Optional[str] = None

    @property
    def level(self) -> CEFRLevel:
        return self.overall.level


@dataclass
class SkillDiagnosticInput:
    """Raw per-skill input accepted by ``create_assessment_diagnostic``."""
    skill: Union[str, AssessmentSkill]
    score: float
    confidence: Optional[Union[str, ConfidenceLevel]] = None
    band: Optional[CEFRScoreBand] = None
    rationale: Optional[List[str]] = None
    percentile: Optional[float] = None
    strengths: Optional[List[str]] = None
    improvements: Optional[List[str]] = None


def normalize_text_list(values: Optional[Iterable[str]]) -> Tuple[str, ...]:
    return tuple(value.strip() for value in values or () if value and value.strip())


def _parse_confidence(confidence: Optional[Union[str, ConfidenceLevel]]) -> ConfidenceLevel:
    if confidence is None:
        return ConfidenceLevel.MEDIUM
    if isinstance(confidence, ConfidenceLevel):
        return confidence
    try:
        return ConfidenceLevel(confidence)
    except ValueError:
        raise ValidationError(
            f"Unsupported confidence level {confidence!r} for CEFR diagnostics",
            field="confidence"
        ) from None


def create_cefr_diagnostic_profile(
    score: float,
    band: Optional[CEFRScoreBand] = None,
    confidence: Optional[Union[str, ConfidenceLevel]] = None,
    rationale: Optional[Iterable[str]] = None
) -> CEFRDiagnosticProfile:
    """
    Build a CEFR profile from a 0-100 score.

    The band is derived from the rounded score unless one is supplied;
    confidence defaults to medium; blank rationale lines are dropped.

    Raises:
        ValidationError: if the score is NaN or outside 0-100
    """
    if isinstance(score, bool) or not isinstance(score, (int, float)) or math.isnan(score):
        raise ValidationError("CEFR diagnostic profiles require a valid numeric score", field="score")

    if score < 0 or score > 100:
        raise ValidationError("CEFR diagnostic scores must be within the 0-100 range", field="score")

    rounded = round_score(score)
    resolved_band = band or find_score_band(rounded)

    return CEFRDiagnosticProfile(
        level=resolved_band.level,
        score=rounded,
        band=resolved_band,
        confidence=_parse_confidence(confidence),
        rationale=normalize_text_list(rationale),
    )


def _sanitize_percentile(percentile: Optional[float]) -> Optional[float]:
    if percentile is None:
        return None

    if isinstance(percentile, bool) or not isinstance(percentile, (int, float)) or math.isnan(percentile):
        raise ValidationError("Percentile must be a numeric value", field="percentile")

    if percentile < 0 or percentile > 100:
        raise ValidationError("Percentile values must be between 0 and 100", field="percentile")

    return round_half_up(percentile, 1)


def create_skill_diagnostic(
    skill: Union[str, AssessmentSkill],
    score: float,
    confidence: Optional[Union[str, ConfidenceLevel]] = None,
    band: Optional[CEFRScoreBand] = None,
    rationale: Optional[Iterable[str]] = None,
    percentile: Optional[float] = None,
    strengths: Optional[Iterable[str]] = None,
    improvements: Optional[Iterable[str]] = None
) -> SkillDiagnostic:
    profile = create_cefr_diagnostic_profile(score, band=band, confidence=confidence, rationale=rationale)

    return SkillDiagnostic(
        skill=AssessmentSkill.parse(skill),
        profile=profile,
        percentile=_sanitize_percentile(percentile),
        strengths=normalize_text_list(strengths),
        improvements=normalize_text_list(improvements),
    )


def create_assessment_diagnostic(
    score: float,
    skills: Sequence[Union[SkillDiagnosticInput, Mapping[str, Any]]],
    confidence: Optional[Union[str, ConfidenceLevel]] = None,
    band: Optional[CEFRScoreBand] = None,
    rationale: Optional[Iterable[str]] = None,
    recommendations: Optional[Iterable[str]] = None,
    notes: Optional[str] = None
) -> AssessmentDiagnostic:
    """
    Assemble an assessment diagnostic.

    Args:
        score: Overall 0-100 score
        skills: One input per assessed skill
        confidence: Overall confidence (medium when omitted)
        band: Explicit overall band, derived from the score when omitted
        rationale: Lines explaining the overall profile
        recommendations: Study recommendations shown to the learner
        notes: Free-form notes

    Raises:
        ValidationError: if no skills are given or a skill appears twice
    """
    if not skills:
        raise ValidationError(
            "Assessment diagnostics must include at least one skill diagnostic",
            field="skills"
        )

    overall = create_cefr_diagnostic_profile(score, band=band, confidence=confidence, rationale=rationale)

    skill_diagnostics = []
    seen_skills = set()
    for item in skills:
        values = item if isinstance(item, Mapping) else vars(item)
        diagnostic = create_skill_diagnostic(**values)
        if diagnostic.skill in seen_skills:
            raise ValidationError("Skill diagnostics must reference unique skills", field="skills")
        seen_skills.add(diagnostic.skill)
        skill_diagnostics.append(diagnostic)

    return AssessmentDiagnostic(
        overall=overall,
        skills=tuple(skill_diagnostics),
        recommendations=normalize_text_list(recommendations),
        notes=notes.strip() if isinstance(notes, str) else None,
    )


def get_skill_diagnostic(
    diagnostic: AssessmentDiagnostic,
    skill: Union[str, AssessmentSkill]
) -> Optional[SkillDiagnostic]:
    skill = AssessmentSkill.parse(skill)
    for item in diagnostic.skills:
        if item.skill is skill:
            return item
    return None


def _profile_from_dict(data: Mapping[str, Any]) -> CEFRDiagnosticProfile:
    band = CEFRScoreBand.from_dict(data["band"]) if data.get("band") else None
    return create_cefr_diagnostic_profile(
        data["score"],
        band=band,
        confidence=data.get("confidence"),
        rationale=data.get("rationale"),
    )


def diagnostic_from_dict(data: Mapping[str, Any]) -> AssessmentDiagnostic:
    """Rebuild a stored diagnostic from its ``to_dict`` form."""
    skills = []
    for item in data.get("skills") or []:
        profile = _profile_from_dict(item["profile"])
        skills.append({
            "skill": item["skill"],
            "score": profile.score,
            "confidence": profile.confidence,
            "band": profile.band,
            "rationale": profile.rationale,
            "percentile": item.get("percentile"),
            "strengths": item.get("strengths"),
            "improvements": item.get("improvements"),
        })

    overall = _profile_from_dict(data["overall"])
    return create_assessment_diagnostic(
        overall.score,
        skills,
        confidence=overall.confidence,
        band=overall.band,
        rationale=overall.rationale,
        recommendations=data.get("recommendations"),
        notes=data.get("notes"),
    )


def diagnostic_summary(diagnostic: AssessmentDiagnostic) -> Dict[str, Any]:
    """Flat view persisted next to the full diagnostic (level, skill scores, notes)."""
    strengths: List[str] = []
    improvements: List[str] = []
    for item in diagnostic.skills:
        strengths.extend(item.strengths)
        improvements.extend(item.improvements)

    return {
        "level": diagnostic.overall.level.value,
        "overall_score": diagnostic.overall.score,
        "skill_scores": {item.skill.value: item.profile.score for item in diagnostic.skills},
        "strengths": strengths,
        "areas_to_improve": improvements,
        "recommendations": list(diagnostic.recommendations),
        "summary": diagnostic.notes,
    }
