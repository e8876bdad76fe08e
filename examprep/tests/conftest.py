"""
Shared fixtures for the exam test suite.

Services are built on the in-memory repositories; the SQL repositories
have their own fixtures in test_sql_repository.py.
"""

import pytest

from examprep.common.auth import Principal, UserRole
from examprep.exams.hierarchy import ContentHierarchy
from examprep.exams.lifecycle import SubmissionLifecycle
from examprep.exams.memory_repository import MemoryContentRepository, MemorySubmissionRepository
from examprep.exams.scoring import ScoringAggregator


@pytest.fixture
def admin():
    return Principal(id="admin-1", role=UserRole.ADMIN)


@pytest.fixture
def learner():
    return Principal(id="learner-1", role=UserRole.USER)


@pytest.fixture
def other_learner():
    return Principal(id="learner-2", role=UserRole.USER)


@pytest.fixture
def content_repository():
    return MemoryContentRepository()


@pytest.fixture
def submission_repository():
    return MemorySubmissionRepository()


@pytest.fixture
def hierarchy(content_repository):
    return ContentHierarchy(content_repository)


@pytest.fixture
def lifecycle(content_repository, submission_repository):
    return SubmissionLifecycle(content_repository, submission_repository)


@pytest.fixture
def aggregator(content_repository, submission_repository):
    return ScoringAggregator(content_repository, submission_repository)


@pytest.fixture
def build_test(hierarchy, admin):
    """
    Factory building a test with ``sections`` sections of ``questions``
    questions each. Returns the created Test.
    """
    async def _build(family="ielts_listening", sections=1, questions=2, **test_fields):
        section_ids = []
        for s in range(sections):
            question_ids = []
            for q in range(questions):
                question = await hierarchy.create_question(
                    admin, family, f"Question {s}.{q}",
                    options=["A", "B", "C"], correct_answers=["A"]
                )
                question_ids.append(question.id)
            section = await hierarchy.create_section(
                admin, family, f"Section {s}", question_ids=question_ids
            )
            section_ids.append(section.id)
        return await hierarchy.create_test(
            admin, family, "Practice Test", section_ids=section_ids, **test_fields
        )

    return _build
