"""
Exam Models

This module defines the core data models for exam content and learner
submissions:

- Test owns an ordered list of Section ids
- Section owns an ordered list of Question ids plus opaque media handles
- Question carries its answer key
- Submission records one learner attempt at a Test and its grade

Parents store only the ids of their children. ``revision`` counters on
Test and Section back the compare-and-set writes of the repositories.
"""

import uuid
import enum
import datetime
from typing import Dict, List, Any, Optional, Set
from dataclasses import dataclass, field

from examprep.common.serialization import SerializableMixin
from examprep.exams.families import ExamFamily


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime.datetime:
    return datetime.datetime.utcnow()


class SubmissionStatus(enum.Enum):
    """Status of a submission. GRADED is terminal."""
    PENDING = "pending"
    GRADED = "graded"


@dataclass
class Test(SerializableMixin):
    """
    A composed exam paper.

    ``variant`` distinguishes IELTS academic and general training papers
    and selects the reading band table.
    """

    __test__ = False

    __serializable_fields__ = [
        "id", "family", "title", "description", "difficulty", "duration_minutes",
        "variant", "section_ids", "created_by", "revision", "created_at", "updated_at"
    ]

    id: str
    family: ExamFamily
    title: str
    created_by: str
    description: str = ""
    difficulty: Optional[str] = None
    duration_minutes: Optional[int] = None
    variant: Optional[str] = None
    section_ids: List[str] = field(default_factory=list)
    revision: int = 0
    created_at: datetime.datetime = field(default_factory=_utcnow)
    updated_at: datetime.datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.id:
            self.id = _new_id()
        self.family = ExamFamily.parse(self.family)
        self.section_ids = list(self.section_ids or [])

    @classmethod
    def create(cls, family: Any, title: str, created_by: str, **kwargs) -> 'Test':
        """Create a new test with a generated ID."""
        return cls(id=_new_id(), family=family, title=title, created_by=created_by, **kwargs)


@dataclass
class Section(SerializableMixin):
    """
    A section of a test.

    ``test_id`` names the owning test while the section is attached.
    ``question_count`` is the declared size of the section; families with
    capped question lists never hold more questions than that.
    """

    __serializable_fields__ = [
        "id", "family", "title", "instructions", "test_id", "question_ids",
        "question_count", "media", "created_by", "revision", "created_at",
        "updated_at", "is_complete"
    ]

    id: str
    family: ExamFamily
    title: str
    created_by: str
    instructions: str = ""
    test_id: Optional[str] = None
    question_ids: List[str] = field(default_factory=list)
    question_count: Optional[int] = None
    media: Dict[str, str] = field(default_factory=dict)
    revision: int = 0
    created_at: datetime.datetime = field(default_factory=_utcnow)
    updated_at: datetime.datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.id:
            self.id = _new_id()
        self.family = ExamFamily.parse(self.family)
        self.question_ids = list(self.question_ids or [])
        self.media = dict(self.media or {})

    @property
    def is_complete(self) -> bool:
        """Whether the question list has reached its declared size."""
        if self.question_count is None:
            return True
        return len(self.question_ids) == self.question_count

    @classmethod
    def create(cls, family: Any, title: str, created_by: str, **kwargs) -> 'Section':
        """Create a new section with a generated ID."""
        return cls(id=_new_id(), family=family, title=title, created_by=created_by, **kwargs)


@dataclass
class Question(SerializableMixin):
    """A question and its answer key."""

    __serializable_fields__ = [
        "id", "family", "prompt", "question_type", "options", "correct_answers",
        "points", "section_id", "created_by", "created_at", "updated_at"
    ]

    id: str
    family: ExamFamily
    prompt: str
    created_by: str
    question_type: str = "multiple_choice"
    options: List[str] = field(default_factory=list)
    correct_answers: List[str] = field(default_factory=list)
    points: float = 1.0
    section_id: Optional[str] = None
    created_at: datetime.datetime = field(default_factory=_utcnow)
    updated_at: datetime.datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if not self.id:
            self.id = _new_id()
        self.family = ExamFamily.parse(self.family)
        self.options = list(self.options or [])
        self.correct_answers = list(self.correct_answers or [])

    @classmethod
    def create(cls, family: Any, prompt: str, created_by: str, **kwargs) -> 'Question':
        """Create a new question with a generated ID."""
        return cls(id=_new_id(), family=family, prompt=prompt, created_by=created_by, **kwargs)


@dataclass
class Answer(SerializableMixin):
    """A learner's answer to one question."""

    __serializable_fields__ = ["question_id", "value"]

    question_id: str
    value: Any = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Answer':
        return cls(question_id=data["question_id"], value=data.get("value"))


@dataclass
class Submission(SerializableMixin):
    """
    One learner attempt at a test.

    Created PENDING by submit, moved to GRADED exactly once by grade and
    never changed afterwards.
    """

    __serializable_fields__ = [
        "id", "family", "user_id", "test_id", "answers", "status", "score",
        "band_score", "criteria", "feedback", "graded_by", "graded_at", "submitted_at",
        "completion_time_minutes", "answer_sheet"
    ]

    id: str
    family: ExamFamily
    user_id: str
    test_id: str
    answers: List[Answer] = field(default_factory=list)
    status: SubmissionStatus = SubmissionStatus.PENDING
    score: Optional[float] = None
    band_score: Optional[float] = None
    criteria: Dict[str, float] = field(default_factory=dict)
    feedback: str = ""
    graded_by: Optional[str] = None
    graded_at: Optional[datetime.datetime] = None
    submitted_at: datetime.datetime = field(default_factory=_utcnow)
    completion_time_minutes: Optional[float] = None
    answer_sheet: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            self.id = _new_id()
        self.family = ExamFamily.parse(self.family)
        if isinstance(self.status, str):
            self.status = SubmissionStatus(self.status)
        self.answers = [
            a if isinstance(a, Answer) else Answer.from_dict(a)
            for a in (self.answers or [])
        ]
        self.criteria = dict(self.criteria or {})

    @property
    def is_graded(self) -> bool:
        return self.status == SubmissionStatus.GRADED

    @classmethod
    def create(cls, family: Any, user_id: str, test_id: str, answers: List[Answer], **kwargs) -> 'Submission':
        """Create a new pending submission with a generated ID."""
        return cls(id=_new_id(), family=family, user_id=user_id, test_id=test_id, answers=answers, **kwargs)


@dataclass
class TestTree(SerializableMixin):
    """
    A test loaded together with its sections and their questions.

    ``sections`` follow ``test.section_ids`` order; ``questions`` maps each
    section id to its questions in ``question_ids`` order.
    """

    __test__ = False

    __serializable_fields__ = ["test", "sections"]

    test: Test
    sections: List[Section] = field(default_factory=list)
    questions: Dict[str, List[Question]] = field(default_factory=dict)

    def question_ids(self) -> Set[str]:
        """Ids of every question reachable from the test."""
        return {qid for section in self.sections for qid in section.question_ids}

    def to_dict(self) -> Dict[str, Any]:
        result = self.test.to_dict()
        result["sections"] = []
        for section in self.sections:
            section_dict = section.to_dict()
            section_dict["questions"] = [q.to_dict() for q in self.questions.get(section.id, [])]
            result["sections"].append(section_dict)
        return result
