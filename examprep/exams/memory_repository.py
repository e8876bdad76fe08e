"""
Memory Exam Repositories

In-memory implementations of the exam repositories for development and
testing. Entities are copied on the way in and out so callers never share
state with the store, the way rows fetched from a database would behave.
Conditional writes run under an ``asyncio.Lock``.
"""

import asyncio
import copy
import datetime
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from examprep.exams.families import ExamFamily
from examprep.exams.models import (
    Question,
    Section,
    Submission,
    SubmissionStatus,
    Test,
    TestTree
)
from examprep.exams.repositories import (
    ContentRepository,
    SubmissionRepository,
    already_submitted,
    owned_conflict
)

logger = logging.getLogger(__name__)


class MemoryContentRepository(ContentRepository):
    """
    In-memory implementation of the ContentRepository.
    """

    def __init__(self):
        self._tests: Dict[str, Test] = {}
        self._sections: Dict[str, Section] = {}
        self._questions: Dict[str, Question] = {}
        self._lock = asyncio.Lock()

    async def get_test(self, test_id: str) -> Optional[Test]:
        return copy.deepcopy(self._tests.get(test_id))

    async def get_section(self, section_id: str) -> Optional[Section]:
        return copy.deepcopy(self._sections.get(section_id))

    async def get_question(self, question_id: str) -> Optional[Question]:
        return copy.deepcopy(self._questions.get(question_id))

    async def get_sections(self, section_ids: Sequence[str]) -> List[Section]:
        return [copy.deepcopy(self._sections[i]) for i in section_ids if i in self._sections]

    async def get_questions(self, question_ids: Sequence[str]) -> List[Question]:
        return [copy.deepcopy(self._questions[i]) for i in question_ids if i in self._questions]

    async def load_with_children(self, test_id: str) -> Optional[TestTree]:
        test = await self.get_test(test_id)
        if test is None:
            return None
        sections = await self.get_sections(test.section_ids)
        questions = {
            section.id: await self.get_questions(section.question_ids)
            for section in sections
        }
        return TestTree(test=test, sections=sections, questions=questions)

    def _check_claimable(self, store: Dict, owner_attr: str, kind: str, child_ids: Iterable[str], parent_id: str) -> None:
        child_ids = list(child_ids)
        blocked = [
            child_id for child_id in child_ids
            if child_id not in store or getattr(store[child_id], owner_attr) not in (None, parent_id)
        ]
        if blocked:
            raise owned_conflict(kind, blocked, parent_id)

    async def add_test(self, test: Test, attach_section_ids: Sequence[str] = ()) -> Test:
        async with self._lock:
            self._check_claimable(self._sections, "test_id", "Section", attach_section_ids, test.id)
            self._tests[test.id] = copy.deepcopy(test)
            for section_id in attach_section_ids:
                self._sections[section_id].test_id = test.id
        return test

    async def add_section(self, section: Section, attach_question_ids: Sequence[str] = ()) -> Section:
        async with self._lock:
            self._check_claimable(self._questions, "section_id", "Question", attach_question_ids, section.id)
            self._sections[section.id] = copy.deepcopy(section)
            for question_id in attach_question_ids:
                self._questions[question_id].section_id = section.id
        return section

    async def add_question(self, question: Question) -> Question:
        async with self._lock:
            self._questions[question.id] = copy.deepcopy(question)
        return question

    async def swap_section_ids(
        self,
        test_id: str,
        expected_revision: int,
        section_ids: Sequence[str],
        attach: Iterable[str] = (),
        detach: Iterable[str] = ()
    ) -> bool:
        attach = list(attach)
        async with self._lock:
            test = self._tests.get(test_id)
            if test is None or test.revision != expected_revision:
                return False
            self._check_claimable(self._sections, "test_id", "Section", attach, test_id)
            test.section_ids = list(section_ids)
            test.revision += 1
            test.updated_at = datetime.datetime.utcnow()
            for section_id in attach:
                self._sections[section_id].test_id = test_id
            for section_id in detach:
                section = self._sections.get(section_id)
                if section is not None and section.test_id == test_id:
                    section.test_id = None
            return True

    async def swap_question_ids(
        self,
        section_id: str,
        expected_revision: int,
        question_ids: Sequence[str],
        attach: Iterable[str] = (),
        detach: Iterable[str] = ()
    ) -> bool:
        attach = list(attach)
        async with self._lock:
            section = self._sections.get(section_id)
            if section is None or section.revision != expected_revision:
                return False
            self._check_claimable(self._questions, "section_id", "Question", attach, section_id)
            section.question_ids = list(question_ids)
            section.revision += 1
            section.updated_at = datetime.datetime.utcnow()
            for question_id in attach:
                self._questions[question_id].section_id = section_id
            for question_id in detach:
                question = self._questions.get(question_id)
                if question is not None and question.section_id == section_id:
                    question.section_id = None
            return True

    async def delete_tree(self, test_id: str, section_ids: Sequence[str], question_ids: Sequence[str]) -> None:
        async with self._lock:
            doomed_sections = {i for i in section_ids if i in self._sections}
            doomed_sections.update(s.id for s in self._sections.values() if s.test_id == test_id)
            doomed_questions = {i for i in question_ids if i in self._questions}
            doomed_questions.update(
                q.id for q in self._questions.values() if q.section_id in doomed_sections
            )
            for question_id in doomed_questions:
                del self._questions[question_id]
            for section_id in doomed_sections:
                del self._sections[section_id]
            removed = self._tests.pop(test_id, None)
        logger.debug(
            f"Deleted test {test_id} with {len(doomed_sections)} sections and {len(doomed_questions)} questions"
            if removed else f"Test {test_id} already deleted"
        )

    async def list_tests(
        self,
        family: Optional[ExamFamily] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Test]:
        tests = [t for t in self._tests.values() if family is None or t.family == family]
        tests.sort(key=lambda t: t.created_at, reverse=True)
        return [copy.deepcopy(t) for t in tests[offset:offset + limit]]

    async def count_tests(self, family: Optional[ExamFamily] = None) -> int:
        return sum(1 for t in self._tests.values() if family is None or t.family == family)


class MemorySubmissionRepository(SubmissionRepository):
    """
    In-memory implementation of the SubmissionRepository.
    """

    def __init__(self, initial_data: Optional[List[Submission]] = None):
        self._submissions: Dict[str, Submission] = {}
        self._lock = asyncio.Lock()

        if initial_data:
            for submission in initial_data:
                self._submissions[submission.id] = copy.deepcopy(submission)

    async def get(self, submission_id: str) -> Optional[Submission]:
        return copy.deepcopy(self._submissions.get(submission_id))

    async def add(self, submission: Submission, exclusive: bool = False) -> Submission:
        async with self._lock:
            if exclusive and self._has_attempt(submission.user_id, submission.test_id):
                raise already_submitted(submission.user_id, submission.test_id)
            self._submissions[submission.id] = copy.deepcopy(submission)
        return submission

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
        async with self._lock:
            submission = self._submissions.get(submission_id)
            if submission is None or submission.status != SubmissionStatus.PENDING:
                return False
            submission.score = score
            submission.band_score = band_score
            submission.criteria = dict(criteria or {})
            submission.feedback = feedback
            submission.graded_by = graded_by
            submission.graded_at = graded_at
            submission.status = SubmissionStatus.GRADED
            return True

    def _has_attempt(self, user_id: str, test_id: str) -> bool:
        return any(
            s.user_id == user_id and s.test_id == test_id
            for s in self._submissions.values()
        )

    async def exists_for(self, user_id: str, test_id: str) -> bool:
        return self._has_attempt(user_id, test_id)

    async def find(
        self,
        family: Optional[ExamFamily] = None,
        user_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Submission]:
        result = [
            s for s in self._submissions.values()
            if (family is None or s.family == family)
            and (user_id is None or s.user_id == user_id)
            and (status is None or s.status == status)
        ]
        result.sort(key=lambda s: s.id)
        result.sort(key=lambda s: s.submitted_at, reverse=True)
        end = None if limit is None else offset + limit
        return [copy.deepcopy(s) for s in result[offset:end]]
