"""
Exam Module

Content hierarchy, submission lifecycle and scoring for the eight
IELTS / PTE skill families.
"""

from examprep.exams.families import ExamFamily, ScoreScale, get_profile
from examprep.exams.models import (
    Answer,
    Question,
    Section,
    Submission,
    SubmissionStatus,
    Test,
    TestTree
)
from examprep.exams.hierarchy import ContentHierarchy
from examprep.exams.lifecycle import SubmissionLifecycle
from examprep.exams.scoring import ScoringAggregator

__all__ = [
    'ExamFamily',
    'ScoreScale',
    'get_profile',
    'Answer',
    'Question',
    'Section',
    'Submission',
    'SubmissionStatus',
    'Test',
    'TestTree',
    'ContentHierarchy',
    'SubmissionLifecycle',
    'ScoringAggregator',
]
