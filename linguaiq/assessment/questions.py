"""
Assessment Question Value Objects

This module defines the immutable question variants an assessment blueprint
is built from and the factories that validate raw input into them:
1. Multiple choice questions (stem, options, correct option ids)
2. Listening questions (audio stimulus, optional options)
3. Speaking questions (prompt, rubric criterion ids)

Every factory fails fast with a ``ValidationError`` naming the offending
field; nothing is silently coerced except whitespace and duplicate tags.
"""

import enum
import math
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from linguaiq.common.error_handling import ValidationError
from linguaiq.common.serialization import SerializableMixin
from linguaiq.common.utils import clean_text, round_half_up, unique_trimmed
from linguaiq.assessment.cefr import CEFRLevel

MIN_QUESTION_WEIGHT = 0.1
MAX_QUESTION_WEIGHT = 100
QUESTION_SET_WEIGHT_TOLERANCE = 0.001

MIN_SPEAKING_DURATION_SECONDS = 30
MAX_SPEAKING_DURATION_SECONDS = 600

OPTION_LABEL_LENGTH = 48


class AssessmentSkill(enum.Enum):
    """Skills an assessment question can measure."""
    LISTENING = "listening"
    SPEAKING = "speaking"
    READING = "reading"
    WRITING = "writing"
    GRAMMAR = "grammar"
    VOCABULARY = "vocabulary"

    @classmethod
    def parse(cls, value: Union[str, "AssessmentSkill"], field: str = "skill") -> "AssessmentSkill":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unsupported assessment skill: {value!r}", field=field) from None


class QuestionType(enum.Enum):
    """Discriminator of the question and response variants."""
    MULTIPLE_CHOICE = "multipleChoice"
    LISTENING = "listening"
    SPEAKING = "speaking"


@dataclass(frozen=True)
class MultipleChoiceOption(SerializableMixin):
    id: str
    label: str
    text: str
    rationale: Optional[str] = None


@dataclass(frozen=True)
class ListeningStimulus(SerializableMixin):
    audio_url: str
    transcript: Optional[str] = None


@dataclass(frozen=True)
class SpeakingPrompt(SerializableMixin):
    context: str
    instruction: str
    hints: Tuple[str, ...] = ()


@dataclass(frozen=True)
class _QuestionBase(SerializableMixin):
    """Fields shared by every question variant."""

    type: ClassVar[QuestionType]

    id: str
    title: str
    skill: AssessmentSkill
    cefr_level: CEFRLevel
    weight: float
    tags: Tuple[str, ...]
    metadata: Optional[Dict[str, Any]]

    def to_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        data = super().to_dict(exclude_none)
        data["type"] = self.type.value
        return data


@dataclass(frozen=True)
class MultipleChoiceQuestion(_QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.MULTIPLE_CHOICE

    stem: str
    options: Tuple[MultipleChoiceOption, ...]
    correct_option_ids: Tuple[str, ...]
    explanation: Optional[str] = None


@dataclass(frozen=True)
class ListeningQuestion(_QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.LISTENING

    prompt: str
    stimulus: ListeningStimulus
    options: Optional[Tuple[MultipleChoiceOption, ...]] = None
    correct_option_ids: Optional[Tuple[str, ...]] = None
    follow_up_prompt: Optional[str] = None


@dataclass(frozen=True)
class SpeakingQuestion(_QuestionBase):
    type: ClassVar[QuestionType] = QuestionType.SPEAKING

    prompt: SpeakingPrompt
    rubric_criterion_ids: Tuple[str, ...]
    expected_duration_seconds: Optional[int] = None


AssessmentQuestion = Union[MultipleChoiceQuestion, ListeningQuestion, SpeakingQuestion]

QUESTION_CLASSES = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceQuestion,
    QuestionType.LISTENING: ListeningQuestion,
    QuestionType.SPEAKING: SpeakingQuestion,
}


def _sanitize_weight(weight: float) -> float:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or math.isnan(weight):
        raise ValidationError("Question weight must be a numeric value", field="weight")

    if weight < MIN_QUESTION_WEIGHT or weight > MAX_QUESTION_WEIGHT:
        raise ValidationError(
            f"Question weight must be between {MIN_QUESTION_WEIGHT} and {MAX_QUESTION_WEIGHT}",
            field="weight"
        )

    return round_half_up(weight, 2)


def _require_text(value: Optional[str], field: str, message: str) -> str:
    text = clean_text(value)
    if not text:
        raise ValidationError(message, field=field)
    return text


def _optional_text(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else None


def _coerce_option(option: Union[MultipleChoiceOption, Mapping[str, Any]]) -> MultipleChoiceOption:
    if isinstance(option, MultipleChoiceOption):
        return option
    return MultipleChoiceOption(
        id=option.get("id", ""),
        label=option.get("label", ""),
        text=option.get("text", ""),
        rationale=option.get("rationale"),
    )


def _normalize_options(
    options: Optional[Sequence[Union[MultipleChoiceOption, Mapping[str, Any]]]],
    context: QuestionType
) -> Optional[Tuple[MultipleChoiceOption, ...]]:
    if options is None:
        return None

    if len(options) < 2:
        raise ValidationError(
            f"{context.value} questions must provide at least two answer options",
            field="options"
        )

    normalized = []
    seen = set()
    for raw in options:
        option = _coerce_option(raw)
        option_id = clean_text(option.id)
        if not option_id:
            raise ValidationError("Multiple choice options must have a non-empty id", field="options.id")
        text = clean_text(option.text)
        if not text:
            raise ValidationError("Multiple choice options must include display text", field="options.text")
        if option_id in seen:
            raise ValidationError(
                f"Multiple choice options must have unique ids. Duplicate {option_id!r}",
                field="options.id"
            )
        seen.add(option_id)
        normalized.append(MultipleChoiceOption(
            id=option_id,
            label=clean_text(option.label) or option.text[:OPTION_LABEL_LENGTH],
            text=text,
            rationale=_optional_text(option.rationale),
        ))

    return tuple(normalized)


def _normalize_correct_ids(
    correct_option_ids: Optional[Iterable[str]],
    options: Sequence[MultipleChoiceOption],
    context: QuestionType
) -> Tuple[str, ...]:
    ids = [clean_text(option_id) for option_id in correct_option_ids or []]
    if not ids:
        raise ValidationError(
            f"{context.value} questions must declare at least one correct option id",
            field="correct_option_ids"
        )

    option_ids = {option.id for option in options}
    for option_id in ids:
        if option_id not in option_ids:
            raise ValidationError(
                f"{context.value} question correct option {option_id!r} is not present in the available options",
                field="correct_option_ids"
            )

    return tuple(dict.fromkeys(ids))


def _common_fields(
    id: str,
    title: str,
    skill: Union[str, AssessmentSkill],
    cefr_level: Union[str, CEFRLevel],
    weight: float,
    tags: Optional[Iterable[str]],
    metadata: Optional[Dict[str, Any]]
) -> Dict[str, Any]:
    return {
        "id": _require_text(id, "id", "Assessment questions must have a non-empty id"),
        "title": clean_text(title),
        "skill": AssessmentSkill.parse(skill),
        "cefr_level": CEFRLevel.parse(cefr_level),
        "weight": _sanitize_weight(weight),
        "tags": tuple(unique_trimmed(tags, case_insensitive=True)),
        "metadata": metadata,
    }


def create_multiple_choice_question(
    id: str,
    title: str,
    skill: Union[str, AssessmentSkill],
    cefr_level: Union[str, CEFRLevel],
    weight: float,
    stem: str,
    options: Sequence[Union[MultipleChoiceOption, Mapping[str, Any]]],
    correct_option_ids: Iterable[str],
    explanation: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> MultipleChoiceQuestion:
    """
    Build a validated multiple choice question.

    Raises:
        ValidationError: on an invalid weight, level or skill, fewer than two
            options, blank or duplicate option ids, or correct option ids that
            are missing or not among the options
    """
    common = _common_fields(id, title, skill, cefr_level, weight, tags, metadata)
    if options is None:
        raise ValidationError("multipleChoice questions must provide answer options", field="options")
    normalized_options = _normalize_options(options, QuestionType.MULTIPLE_CHOICE)

    return MultipleChoiceQuestion(
        **common,
        stem=clean_text(stem),
        options=normalized_options,
        correct_option_ids=_normalize_correct_ids(
            correct_option_ids, normalized_options, QuestionType.MULTIPLE_CHOICE
        ),
        explanation=_optional_text(explanation),
    )


def create_listening_question(
    id: str,
    title: str,
    skill: Union[str, AssessmentSkill],
    cefr_level: Union[str, CEFRLevel],
    weight: float,
    prompt: str,
    stimulus: Union[ListeningStimulus, Mapping[str, Any]],
    options: Optional[Sequence[Union[MultipleChoiceOption, Mapping[str, Any]]]] = None,
    correct_option_ids: Optional[Iterable[str]] = None,
    follow_up_prompt: Optional[str] = None,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> ListeningQuestion:
    """
    Build a validated listening question.

    Options are optional; correct option ids are only checked when both
    options and correct ids are given.
    """
    if isinstance(stimulus, Mapping):
        stimulus = ListeningStimulus(
            audio_url=stimulus.get("audio_url", ""),
            transcript=stimulus.get("transcript"),
        )
    audio_url = _require_text(
        stimulus.audio_url if stimulus else None,
        "stimulus.audio_url",
        "Listening questions must include an audio URL stimulus"
    )

    common = _common_fields(id, title, skill, cefr_level, weight, tags, metadata)
    normalized_options = _normalize_options(options, QuestionType.LISTENING)
    correct_ids = None
    if normalized_options and correct_option_ids is not None:
        correct_ids = _normalize_correct_ids(correct_option_ids, normalized_options, QuestionType.LISTENING)

    return ListeningQuestion(
        **common,
        prompt=clean_text(prompt),
        stimulus=ListeningStimulus(audio_url=audio_url, transcript=_optional_text(stimulus.transcript)),
        options=normalized_options,
        correct_option_ids=correct_ids,
        follow_up_prompt=_optional_text(follow_up_prompt),
    )


def create_speaking_question(
    id: str,
    title: str,
    cefr_level: Union[str, CEFRLevel],
    weight: float,
    prompt: Union[SpeakingPrompt, Mapping[str, Any]],
    rubric_criterion_ids: Iterable[str],
    expected_duration_seconds: Optional[float] = None,
    tags: Optional[Iterable[str]] = None,
    metadata: Optional[Dict[str, Any]] = None,
    skill: Union[str, AssessmentSkill] = AssessmentSkill.SPEAKING
) -> SpeakingQuestion:
    """
    Build a validated speaking question.

    Speaking questions always measure the speaking skill. The expected
    duration, when given, is clamped to 30-600 seconds.
    """
    if AssessmentSkill.parse(skill) is not AssessmentSkill.SPEAKING:
        raise ValidationError("Speaking questions must assess the speaking skill", field="skill")

    raw_ids = list(rubric_criterion_ids or [])
    if not raw_ids:
        raise ValidationError(
            "Speaking questions must reference at least one rubric criterion",
            field="rubric_criterion_ids"
        )
    criterion_ids = unique_trimmed(raw_ids)
    if not criterion_ids:
        raise ValidationError(
            "Speaking questions must reference valid rubric criterion ids",
            field="rubric_criterion_ids"
        )

    if isinstance(prompt, Mapping):
        prompt = SpeakingPrompt(
            context=prompt.get("context", ""),
            instruction=prompt.get("instruction", ""),
            hints=tuple(prompt.get("hints") or ()),
        )
    context = _require_text(prompt.context, "prompt.context", "Speaking prompts must describe a scenario or context")
    instruction = _require_text(
        prompt.instruction, "prompt.instruction", "Speaking prompts must include an instruction for the learner"
    )
    hints = tuple(hint.strip() for hint in prompt.hints or () if hint and hint.strip())

    duration = None
    if isinstance(expected_duration_seconds, (int, float)) and not isinstance(expected_duration_seconds, bool):
        duration = max(
            MIN_SPEAKING_DURATION_SECONDS,
            min(MAX_SPEAKING_DURATION_SECONDS, int(round_half_up(expected_duration_seconds)))
        )

    common = _common_fields(id, title, AssessmentSkill.SPEAKING, cefr_level, weight, tags, metadata)
    return SpeakingQuestion(
        **common,
        prompt=SpeakingPrompt(context=context, instruction=instruction, hints=hints),
        rubric_criterion_ids=tuple(criterion_ids),
        expected_duration_seconds=duration,
    )


def question_from_dict(data: Mapping[str, Any]) -> AssessmentQuestion:
    """Rebuild a question from its ``to_dict`` form, re-running validation."""
    payload = dict(data)
    question_type = QuestionType(payload.pop("type"))
    if question_type is QuestionType.MULTIPLE_CHOICE:
        return create_multiple_choice_question(**payload)
    if question_type is QuestionType.LISTENING:
        return create_listening_question(**payload)
    if question_type is QuestionType.SPEAKING:
        return create_speaking_question(**payload)
    raise TypeError(f"Unhandled question type: {question_type}")


def calculate_question_set_weight(questions: Iterable[AssessmentQuestion]) -> float:
    return round_half_up(sum(question.weight for question in questions), 2)


def ensure_assessment_question_set(questions: Sequence[AssessmentQuestion]) -> None:
    """
    Enforce the invariants of a whole question set.

    Raises:
        ValidationError: if the set is empty, ids repeat, a weight is out of
            range, or the weights add up to more than 100
    """
    if not questions:
        raise ValidationError("Assessment blueprints must include at least one question", field="questions")

    seen_ids = set()
    for question in questions:
        if question.id in seen_ids:
            raise ValidationError(
                f"Assessment questions must have unique ids. Duplicate {question.id!r}",
                field="questions.id"
            )
        seen_ids.add(question.id)

        if question.weight < MIN_QUESTION_WEIGHT or question.weight > MAX_QUESTION_WEIGHT:
            raise ValidationError(
                f"Assessment question {question.id!r} has an invalid weight {question.weight!r}",
                field="questions.weight"
            )

    total_weight = calculate_question_set_weight(questions)
    if total_weight > MAX_QUESTION_WEIGHT + QUESTION_SET_WEIGHT_TOLERANCE:
        raise ValidationError(
            f"Assessment question weights exceed 100%. Current total: {total_weight:.2f}%",
            field="questions.weight"
        )


def build_question_index(questions: Iterable[AssessmentQuestion]) -> Dict[str, AssessmentQuestion]:
    """Map question ids to questions; built once per use-case call."""
    return {question.id: question for question in questions}
