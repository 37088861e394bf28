"""
Built-in assessment blueprints.

The leveling blueprint covers grammar, listening and speaking with one
question each; its question weights add up to exactly 100.
"""

from linguaiq.assessment.criteria import create_assessment_criterion
from linguaiq.assessment.memory_repository import StaticBlueprintProvider
from linguaiq.assessment.questions import (
    ListeningStimulus,
    MultipleChoiceOption,
    SpeakingPrompt,
    create_listening_question,
    create_multiple_choice_question,
    create_speaking_question,
)
from linguaiq.assessment.repositories import AssessmentBlueprint, create_assessment_blueprint

LEVELING_BLUEPRINT_ID = "bp-leveling"


def create_default_blueprint(blueprint_id: str = LEVELING_BLUEPRINT_ID) -> AssessmentBlueprint:
    fluency = create_assessment_criterion(
        id="crit-fluency",
        title="Fluency",
        skill="speaking",
        focus="Maintain flow during interviews",
        weight=33,
        descriptors=[
            {"level": "needsSupport", "min_score": 0, "max_score": 25, "descriptor": "Frequent pauses"},
            {"level": "emerging", "min_score": 26, "max_score": 50, "descriptor": "Some hesitations"},
            {"level": "proficient", "min_score": 51, "max_score": 75, "descriptor": "Generally smooth"},
            {"level": "advanced", "min_score": 76, "max_score": 100, "descriptor": "Natural delivery"},
        ],
    )

    grammar = create_multiple_choice_question(
        id="grammar-1",
        title="Verb agreement",
        skill="grammar",
        cefr_level="B1",
        weight=35,
        stem="Choose the correct sentence",
        options=[
            MultipleChoiceOption(id="a", label="A", text="She go to work"),
            MultipleChoiceOption(id="b", label="B", text="She goes to work"),
        ],
        correct_option_ids=["b"],
    )

    listening = create_listening_question(
        id="listening-1",
        title="Daily standup",
        skill="listening",
        cefr_level="B1",
        weight=25,
        prompt="What is the best summary?",
        stimulus=ListeningStimulus(audio_url="https://cdn.local/audio.mp3"),
        options=[
            MultipleChoiceOption(id="a", label="A", text="Team reviewing blockers"),
            MultipleChoiceOption(id="b", label="B", text="Planning a vacation"),
        ],
        correct_option_ids=["a"],
    )

    speaking = create_speaking_question(
        id="speaking-1",
        title="STAR story",
        cefr_level="B2",
        weight=40,
        prompt=SpeakingPrompt(
            context="Describe a production incident",
            instruction="Share what happened and outcome",
            hints=("Mention metrics", "Results"),
        ),
        rubric_criterion_ids=[fluency.id],
        expected_duration_seconds=90,
    )

    return create_assessment_blueprint(
        id=blueprint_id,
        title="Leveling v1",
        target_level="B2",
        questions=[grammar, listening, speaking],
        criteria=[fluency],
        skills_covered=["grammar", "listening", "speaking"],
    )


def default_blueprint_provider() -> StaticBlueprintProvider:
    """Provider serving only the leveling blueprint."""
    return StaticBlueprintProvider([create_default_blueprint()])
