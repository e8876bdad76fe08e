"""
Exam Families

The eight (skill x exam) combinations and the metadata that differs
between them: the score scale a submission is graded on and the structural
bounds a test's section list and a section's question list must respect.
"""

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

from examprep.common.exceptions import ValidationError


class ExamType(enum.Enum):
    """Exam providers."""
    IELTS = "ielts"
    PTE = "pte"


class Skill(enum.Enum):
    """Language skills."""
    LISTENING = "listening"
    READING = "reading"
    WRITING = "writing"
    SPEAKING = "speaking"


class ExamFamily(enum.Enum):
    """Family tag carried by every test, section, question and submission."""
    IELTS_LISTENING = "ielts_listening"
    IELTS_READING = "ielts_reading"
    IELTS_WRITING = "ielts_writing"
    IELTS_SPEAKING = "ielts_speaking"
    PTE_LISTENING = "pte_listening"
    PTE_READING = "pte_reading"
    PTE_WRITING = "pte_writing"
    PTE_SPEAKING = "pte_speaking"

    @property
    def exam_type(self) -> ExamType:
        return ExamType(self.value.split("_", 1)[0])

    @property
    def skill(self) -> Skill:
        return Skill(self.value.split("_", 1)[1])

    @classmethod
    def parse(cls, value: Union[str, 'ExamFamily']) -> 'ExamFamily':
        """
        Convert a family tag to the enum.

        Raises:
            ValidationError: If the tag names no known family
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(f"Unknown exam family: {value}", field="family")


class ScoreScale(enum.Enum):
    """Numeric scales submissions are graded on. Scales are never merged."""
    PERCENTAGE = "percentage"
    BAND = "band"
    PTE = "pte"


@dataclass(frozen=True)
class ScaleRange:
    """Inclusive bounds of a scale and how values on it are quantized."""
    minimum: float
    maximum: float
    step: Optional[float] = None
    integral: bool = False

    def contains(self, value: float) -> bool:
        return self.minimum <= value <= self.maximum


SCALE_RANGES: Dict[ScoreScale, ScaleRange] = {
    ScoreScale.PERCENTAGE: ScaleRange(0.0, 100.0),
    ScoreScale.BAND: ScaleRange(1.0, 9.0, step=0.5),
    ScoreScale.PTE: ScaleRange(0.0, 90.0, integral=True),
}


@dataclass(frozen=True)
class FamilyProfile:
    """
    Per-family rules.

    Attributes:
        family: The family this profile describes
        scale: Scale of the primary ``score`` field
        min_sections: Fewest sections a test may be left with by removal
        max_sections: Most sections a test may hold, None for unbounded
        capped_questions: Whether ``Section.question_count`` caps its question list
        band_score: Whether submissions also carry a derived IELTS band
        criteria: Band-scored marking criteria a grader may score individually
    """
    family: ExamFamily
    scale: ScoreScale
    min_sections: int = 0
    max_sections: Optional[int] = None
    capped_questions: bool = False
    band_score: bool = False
    criteria: Tuple[str, ...] = ()

    @property
    def score_range(self) -> ScaleRange:
        return SCALE_RANGES[self.scale]


WRITING_CRITERIA: Tuple[str, ...] = (
    "task_achievement",
    "coherence_and_cohesion",
    "lexical_resource",
    "grammatical_range_and_accuracy",
)

SPEAKING_CRITERIA: Tuple[str, ...] = (
    "fluency_and_coherence",
    "lexical_resource",
    "grammatical_range_and_accuracy",
    "pronunciation",
)

PROFILES: Dict[ExamFamily, FamilyProfile] = {
    ExamFamily.IELTS_LISTENING: FamilyProfile(
        ExamFamily.IELTS_LISTENING, ScoreScale.PERCENTAGE, min_sections=1, max_sections=4
    ),
    ExamFamily.IELTS_READING: FamilyProfile(
        ExamFamily.IELTS_READING, ScoreScale.PERCENTAGE, band_score=True
    ),
    ExamFamily.IELTS_WRITING: FamilyProfile(
        ExamFamily.IELTS_WRITING, ScoreScale.BAND, criteria=WRITING_CRITERIA
    ),
    ExamFamily.IELTS_SPEAKING: FamilyProfile(
        ExamFamily.IELTS_SPEAKING, ScoreScale.BAND, criteria=SPEAKING_CRITERIA
    ),
    ExamFamily.PTE_LISTENING: FamilyProfile(
        ExamFamily.PTE_LISTENING, ScoreScale.PTE, min_sections=1, max_sections=4
    ),
    ExamFamily.PTE_READING: FamilyProfile(
        ExamFamily.PTE_READING, ScoreScale.PTE, min_sections=1, max_sections=4, capped_questions=True
    ),
    ExamFamily.PTE_WRITING: FamilyProfile(ExamFamily.PTE_WRITING, ScoreScale.PTE),
    ExamFamily.PTE_SPEAKING: FamilyProfile(ExamFamily.PTE_SPEAKING, ScoreScale.PTE),
}


def get_profile(family: Union[str, ExamFamily]) -> FamilyProfile:
    """Look up the profile for a family tag."""
    return PROFILES[ExamFamily.parse(family)]
