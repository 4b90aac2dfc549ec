"""Shared vocabulary for the learning engine: modes, providers, levels, subjects."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple


class LearningMode(str, Enum):
    """Pedagogical strategy selected for a single tutor reply."""

    DISCOVERY = "discovery"
    PRACTICE = "practice"
    EXPLANATION = "explanation"
    CHALLENGE = "challenge"
    REVIEW = "review"
    ANSWER_CHECK = "answer_check"

    @classmethod
    def parse(cls, value: object) -> Optional["LearningMode"]:
        """Return the matching mode or ``None`` for unknown values."""

        if isinstance(value, cls):
            return value
        if value is None:
            return None
        key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        return _MODE_ALIASES.get(key)


_MODE_ALIASES: Dict[str, LearningMode] = {mode.value: mode for mode in LearningMode}
_MODE_ALIASES.update(
    {
        "homework": LearningMode.PRACTICE,
        "homework_help": LearningMode.PRACTICE,
        "explain": LearningMode.EXPLANATION,
        "quiz": LearningMode.CHALLENGE,
        "answer_verification": LearningMode.ANSWER_CHECK,
        "check": LearningMode.ANSWER_CHECK,
    }
)

# Modes whose replies must not hand over final answers.
SOCRATIC_MODES = frozenset(
    {
        LearningMode.DISCOVERY,
        LearningMode.PRACTICE,
        LearningMode.CHALLENGE,
        LearningMode.ANSWER_CHECK,
    }
)

# Modes in which the tutor is working through an exercise with the learner.
PRACTICE_FAMILY = frozenset(
    {
        LearningMode.PRACTICE,
        LearningMode.CHALLENGE,
        LearningMode.REVIEW,
        LearningMode.ANSWER_CHECK,
    }
)


class ProviderChoice(str, Enum):
    """Upstream chat-completion provider picked for an interaction."""

    OPENAI = "openai"
    CLAUDE = "claude"
    NONE = "none"

    @property
    def other(self) -> "ProviderChoice":
        if self is ProviderChoice.OPENAI:
            return ProviderChoice.CLAUDE
        if self is ProviderChoice.CLAUDE:
            return ProviderChoice.OPENAI
        return ProviderChoice.NONE


# ``model_used`` value when the canned response was returned.
FALLBACK_MODEL = "fallback"


class ProficiencyLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


_LEVEL_ALIASES: Dict[str, ProficiencyLevel] = {level.value: level for level in ProficiencyLevel}
_LEVEL_ALIASES.update(
    {
        "elementary": ProficiencyLevel.BEGINNER,
        "elementary (under 13)": ProficiencyLevel.BEGINNER,
        "elementary (5-8)": ProficiencyLevel.BEGINNER,
        "under 13": ProficiencyLevel.BEGINNER,
        "primary": ProficiencyLevel.BEGINNER,
        "middle": ProficiencyLevel.INTERMEDIATE,
        "middle school": ProficiencyLevel.INTERMEDIATE,
        "middle school (10-13)": ProficiencyLevel.INTERMEDIATE,
        "middle school (13-14)": ProficiencyLevel.INTERMEDIATE,
        "high": ProficiencyLevel.ADVANCED,
        "high school": ProficiencyLevel.ADVANCED,
        "high school (13+)": ProficiencyLevel.ADVANCED,
        "high school (15-17)": ProficiencyLevel.ADVANCED,
        "adult": ProficiencyLevel.EXPERT,
        "adult (18+)": ProficiencyLevel.EXPERT,
    }
)


def normalize_level(value: object) -> Optional[ProficiencyLevel]:
    """Map a stored or user-supplied level label onto :class:`ProficiencyLevel`."""

    if isinstance(value, ProficiencyLevel):
        return value
    if value is None:
        return None
    return _LEVEL_ALIASES.get(" ".join(str(value).strip().lower().split()))


class Subject(str, Enum):
    MATH = "math"
    SCIENCE = "science"
    READING = "reading"
    WRITING = "writing"
    HISTORY = "history"
    CODING = "coding"
    GENERAL = "general"


_SUBJECT_ALIASES: Dict[str, Subject] = {subject.value: subject for subject in Subject}
_SUBJECT_ALIASES.update(
    {
        "maths": Subject.MATH,
        "mathematics": Subject.MATH,
        "arithmetic": Subject.MATH,
        "algebra": Subject.MATH,
        "geometry": Subject.MATH,
        "biology": Subject.SCIENCE,
        "chemistry": Subject.SCIENCE,
        "physics": Subject.SCIENCE,
        "english": Subject.READING,
        "literature": Subject.READING,
        "language arts": Subject.READING,
        "essay": Subject.WRITING,
        "grammar": Subject.WRITING,
        "social studies": Subject.HISTORY,
        "geography": Subject.HISTORY,
        "programming": Subject.CODING,
        "computer science": Subject.CODING,
        "python": Subject.CODING,
    }
)


def normalize_subject(value: object) -> Optional[Subject]:
    """Map a free-form subject label onto :class:`Subject`, or ``None``."""

    if isinstance(value, Subject):
        return value
    if value is None:
        return None
    return _SUBJECT_ALIASES.get(" ".join(str(value).strip().lower().split()))


@dataclass(frozen=True)
class ModeDescription:
    name: str
    description: str
    best_provider: ProviderChoice
    icon: str
    example: str


MODE_CATALOG: Dict[LearningMode, ModeDescription] = {
    LearningMode.DISCOVERY: ModeDescription(
        name="Discovery Learning",
        description="Socratic questioning to guide discovery",
        best_provider=ProviderChoice.CLAUDE,
        icon="🔍",
        example='Asking "Why do you think that happens?" to explore concepts',
    ),
    LearningMode.PRACTICE: ModeDescription(
        name="Practice Mode",
        description="Step-by-step skill building and drills",
        best_provider=ProviderChoice.OPENAI,
        icon="💪",
        example="Breaking down math problems into manageable steps",
    ),
    LearningMode.EXPLANATION: ModeDescription(
        name="Explanation Mode",
        description="Clear explanations with examples and analogies",
        best_provider=ProviderChoice.CLAUDE,
        icon="💡",
        example="Explaining photosynthesis using familiar analogies",
    ),
    LearningMode.CHALLENGE: ModeDescription(
        name="Challenge Mode",
        description="Problem-solving and application of knowledge",
        best_provider=ProviderChoice.OPENAI,
        icon="🎯",
        example="Guiding through complex word problems",
    ),
    LearningMode.REVIEW: ModeDescription(
        name="Review Mode",
        description="Knowledge checking and reinforcement",
        best_provider=ProviderChoice.OPENAI,
        icon="📋",
        example="Quick quiz questions to check understanding",
    ),
    LearningMode.ANSWER_CHECK: ModeDescription(
        name="Answer Check",
        description="Confirms whether the learner's answer is right without revealing it",
        best_provider=ProviderChoice.OPENAI,
        icon="✅",
        example='Replying "Not quite, try counting again" to a wrong answer',
    ),
}


def mode_values() -> Tuple[str, ...]:
    return tuple(mode.value for mode in LearningMode)


__all__ = [
    "FALLBACK_MODEL",
    "LearningMode",
    "MODE_CATALOG",
    "ModeDescription",
    "PRACTICE_FAMILY",
    "ProficiencyLevel",
    "ProviderChoice",
    "SOCRATIC_MODES",
    "Subject",
    "mode_values",
    "normalize_level",
    "normalize_subject",
]
