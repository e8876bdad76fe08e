"""
Exam Repositories

This module defines the persistence ports used by the exam services. Each
entity type is a flat collection keyed by id. Writes that must not race
are expressed as conditional operations:

- child-list updates are compare-and-set on the parent's ``revision``
- claiming a child only succeeds while the child is unowned
- grading is a single "set GRADED where status is PENDING" update
- cascade delete is one all-or-nothing, idempotent operation
- the one-attempt rule is a uniqueness constraint, not a read
"""

import datetime
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence

from examprep.common.exceptions import ConflictError
from examprep.exams.families import ExamFamily
from examprep.exams.models import (
    Question,
    Section,
    Submission,
    SubmissionStatus,
    Test,
    TestTree
)


def owned_conflict(kind: str, child_ids: Iterable[str], parent_id: str) -> ConflictError:
    """Error for a claim on children that already belong to another parent."""
    ids = sorted(set(child_ids))
    return ConflictError(
        ConflictError.OWNED,
        f"{kind} {', '.join(ids)} cannot be claimed by {parent_id}",
        details={"ids": ids, "parent_id": parent_id}
    )


def already_submitted(user_id: str, test_id: str) -> ConflictError:
    """Error for a second attempt when only one is allowed."""
    return ConflictError(
        ConflictError.ALREADY_SUBMITTED,
        f"User {user_id} has already submitted test {test_id}",
        details={"user_id": user_id, "test_id": test_id}
    )


class ContentRepository(ABC):
    """
    Repository interface for tests, sections and questions.
    """

    @abstractmethod
    async def get_test(self, test_id: str) -> Optional[Test]:
        """Retrieve a test by id, or None."""
        pass

    @abstractmethod
    async def get_section(self, section_id: str) -> Optional[Section]:
        """Retrieve a section by id, or None."""
        pass

    @abstractmethod
    async def get_question(self, question_id: str) -> Optional[Question]:
        """Retrieve a question by id, or None."""
        pass

    @abstractmethod
    async def get_sections(self, section_ids: Sequence[str]) -> List[Section]:
        """
        Retrieve several sections.

        Returns:
            The sections that exist, in the order of ``section_ids``
        """
        pass

    @abstractmethod
    async def get_questions(self, question_ids: Sequence[str]) -> List[Question]:
        """
        Retrieve several questions.

        Returns:
            The questions that exist, in the order of ``question_ids``
        """
        pass

    @abstractmethod
    async def load_with_children(self, test_id: str) -> Optional[TestTree]:
        """
        Load a test, its sections and their questions.

        Issues one read for the test, one for its sections and one for all
        of their questions.
        """
        pass

    @abstractmethod
    async def add_test(self, test: Test, attach_section_ids: Sequence[str] = ()) -> Test:
        """
        Insert a new test.

        Sections named in ``attach_section_ids`` get their ``test_id`` set in
        the same write, provided none of them belongs to a test yet.

        Raises:
            ConflictError: Owned, when a section is missing or already
                claimed; nothing is written
        """
        pass

    @abstractmethod
    async def add_section(self, section: Section, attach_question_ids: Sequence[str] = ()) -> Section:
        """
        Insert a new section, claiming ``attach_question_ids`` in the same write.

        Raises:
            ConflictError: Owned, when a question is missing or already
                belongs to another section; nothing is written
        """
        pass

    @abstractmethod
    async def add_question(self, question: Question) -> Question:
        """Insert a new question."""
        pass

    @abstractmethod
    async def swap_section_ids(
        self,
        test_id: str,
        expected_revision: int,
        section_ids: Sequence[str],
        attach: Iterable[str] = (),
        detach: Iterable[str] = ()
    ) -> bool:
        """
        Replace a test's section list if its revision still matches.

        In the same atomic write, sections in ``attach`` are claimed by the
        test and sections in ``detach`` are released. A claim only succeeds
        for sections that are unowned or already owned by this test.

        Returns:
            True if the write happened, False if the revision had moved on

        Raises:
            ConflictError: Owned, when an attached section belongs to
                another test; nothing is written
        """
        pass

    @abstractmethod
    async def swap_question_ids(
        self,
        section_id: str,
        expected_revision: int,
        question_ids: Sequence[str],
        attach: Iterable[str] = (),
        detach: Iterable[str] = ()
    ) -> bool:
        """
        Replace a section's question list if its revision still matches.

        Claims and releases questions the same way ``swap_section_ids``
        does for sections.
        """
        pass

    @abstractmethod
    async def delete_tree(self, test_id: str, section_ids: Sequence[str], question_ids: Sequence[str]) -> None:
        """
        Delete a test and its sections and questions together.

        Besides the given ids, every section whose ``test_id`` points at the
        test and every question owned by one of those sections is removed,
        so children claimed after the caller's read do not survive. Ids that
        no longer exist are skipped, so a partially applied delete can be
        re-run.
        """
        pass

    @abstractmethod
    async def list_tests(
        self,
        family: Optional[ExamFamily] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Test]:
        """List tests, newest first."""
        pass

    @abstractmethod
    async def count_tests(self, family: Optional[ExamFamily] = None) -> int:
        """Count tests, optionally for one family."""
        pass


class SubmissionRepository(ABC):
    """
    Repository interface for learner submissions.
    """

    @abstractmethod
    async def get(self, submission_id: str) -> Optional[Submission]:
        """Retrieve a submission by id, or None."""
        pass

    @abstractmethod
    async def add(self, submission: Submission, exclusive: bool = False) -> Submission:
        """
        Insert a new submission.

        Args:
            submission: The pending submission
            exclusive: Refuse the insert if the user already has a
                submission for the test

        Raises:
            ConflictError: AlreadySubmitted, when ``exclusive`` and an
                attempt exists
        """
        pass

    @abstractmethod
    async def mark_graded(
        self,
        submission_id: str,
        score: float,
        feedback: str,
        graded_by: str,
        graded_at: datetime.datetime,
        band_score: Optional[float] = None,
        criteria: Optional[Dict[str, float]] = None
    ) -> bool:
        """
        Grade a submission if and only if it is still pending.

        Returns:
            True if this call graded it, False if it was missing or already graded
        """
        pass

    @abstractmethod
    async def exists_for(self, user_id: str, test_id: str) -> bool:
        """Whether the user has any submission for the test."""
        pass

    @abstractmethod
    async def find(
        self,
        family: Optional[ExamFamily] = None,
        user_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Submission]:
        """Find submissions, newest ``submitted_at`` first."""
        pass
