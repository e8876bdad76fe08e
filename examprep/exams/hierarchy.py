"""
Content Hierarchy Service

This module composes tests out of sections and sections out of questions.
It enforces the structural rules of the hierarchy:

- a child list only names existing children of the same family
- a child list never names the same child twice
- a child belongs to at most one parent at a time
- section-count bounds for the listening and PTE reading families
- the declared question cap of PTE reading sections
- reorders are exact permutations of the current list

Every mutation validates against a freshly read parent and then writes
with compare-and-set on the parent's revision, so a concurrent change
makes the write fail instead of being overwritten. Ownership checks on the
read are only a fast path: the repository claims a child only while it is
unowned, so two parents racing for one child cannot both win.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from examprep.common.auth import (
    Principal,
    can_create_content,
    can_modify_content,
    ensure_allowed
)
from examprep.common.exceptions import (
    ConflictError,
    InvariantError,
    NotFoundError,
    ValidationError
)
from examprep.common.logger import app_logger
from examprep.exams.families import ExamFamily, get_profile
from examprep.exams.models import Question, Section, Test, TestTree
from examprep.exams.repositories import ContentRepository
from examprep.exams.validation import (
    check_can_add_section,
    check_can_remove_section,
    check_question_count,
    check_same_family,
    check_section_count,
    ensure_unique,
    require_number,
    require_text,
    validate_permutation
)

logger = app_logger.getChild("exams.hierarchy")


class ContentHierarchy:
    """
    Service for composing and restructuring exam content.

    Args:
        repository: Content persistence port
        creator_edit_families: Family tags whose creators may edit their
            own content; all other content is admin-only
    """

    def __init__(self, repository: ContentRepository, creator_edit_families: Optional[Iterable[str]] = None):
        self.repository = repository
        self.creator_edit_families = list(creator_edit_families or [])

    # --- Lookups ---

    async def _require_test(self, test_id: str) -> Test:
        test = await self.repository.get_test(test_id)
        if test is None:
            raise NotFoundError("Test", test_id)
        return test

    async def _require_section(self, section_id: str) -> Section:
        section = await self.repository.get_section(section_id)
        if section is None:
            raise NotFoundError("Section", section_id)
        return section

    async def _require_question(self, question_id: str) -> Question:
        question = await self.repository.get_question(question_id)
        if question is None:
            raise NotFoundError("Question", question_id)
        return question

    def _ensure_can_create(self, caller: Principal, family: ExamFamily, kind: str) -> None:
        ensure_allowed(
            can_create_content(caller, family, self.creator_edit_families),
            "create",
            f"{family.value} {kind}"
        )

    def _ensure_can_modify(self, caller: Principal, item: Any, kind: str) -> None:
        ensure_allowed(
            can_modify_content(caller, item, self.creator_edit_families),
            "modify",
            f"{kind} {item.id}"
        )

    async def _claimable_sections(self, family: ExamFamily, section_ids: Sequence[str]) -> List[Section]:
        sections = await self.repository.get_sections(section_ids)
        found = {s.id for s in sections}
        for section_id in section_ids:
            if section_id not in found:
                raise NotFoundError("Section", section_id)
        for section in sections:
            check_same_family(family, section.family, "section")
            if section.test_id is not None:
                raise ConflictError(
                    ConflictError.OWNED,
                    f"Section {section.id} already belongs to test {section.test_id}",
                    details={"section_id": section.id, "test_id": section.test_id}
                )
        return sections

    async def _claimable_questions(self, family: ExamFamily, question_ids: Sequence[str]) -> List[Question]:
        questions = await self.repository.get_questions(question_ids)
        found = {q.id for q in questions}
        for question_id in question_ids:
            if question_id not in found:
                raise NotFoundError("Question", question_id)
        for question in questions:
            check_same_family(family, question.family, "question")
            if question.section_id is not None:
                raise ConflictError(
                    ConflictError.OWNED,
                    f"Question {question.id} already belongs to section {question.section_id}",
                    details={"question_id": question.id, "section_id": question.section_id}
                )
        return questions

    # --- Creation ---

    async def create_test(
        self,
        caller: Principal,
        family: Any,
        title: str,
        section_ids: Sequence[str] = (),
        description: str = "",
        difficulty: Optional[str] = None,
        duration_minutes: Optional[int] = None,
        variant: Optional[str] = None
    ) -> Test:
        """
        Create a test, optionally claiming existing sections.

        A test created without sections is a draft; bounds are checked
        whenever sections are supplied and on every later add or remove.

        Raises:
            ValidationError: Unknown family or blank title
            ForbiddenError: Caller may not author this family
            NotFoundError: A named section does not exist
            InvariantError: Duplicate ids, family mismatch or section-count bounds
            ConflictError: A named section already belongs to another test
        """
        family = ExamFamily.parse(family)
        title = require_text(title, "title")
        self._ensure_can_create(caller, family, "test")

        section_ids = list(section_ids or [])
        ensure_unique(section_ids, "section")
        if section_ids:
            check_section_count(get_profile(family), len(section_ids))
            await self._claimable_sections(family, section_ids)

        if duration_minutes is not None and require_number(duration_minutes, "duration_minutes") <= 0:
            raise ValidationError("duration_minutes must be positive", field="duration_minutes")

        test = Test.create(
            family,
            title,
            caller.id,
            description=description or "",
            difficulty=difficulty,
            duration_minutes=duration_minutes,
            variant=variant,
            section_ids=section_ids
        )
        await self.repository.add_test(test, attach_section_ids=section_ids)
        logger.info(f"Created {family.value} test {test.id} with {len(section_ids)} sections")
        return test

    async def create_section(
        self,
        caller: Principal,
        family: Any,
        title: str,
        question_ids: Sequence[str] = (),
        question_count: Optional[int] = None,
        instructions: str = "",
        media: Optional[Dict[str, str]] = None
    ) -> Section:
        """
        Create a section, optionally claiming existing questions.

        ``media`` maps a kind (audio, image, pdf) to an opaque storage handle.
        """
        family = ExamFamily.parse(family)
        title = require_text(title, "title")
        self._ensure_can_create(caller, family, "section")

        if question_count is not None:
            if isinstance(question_count, bool) or not isinstance(question_count, int) or question_count < 0:
                raise ValidationError("question_count must be a non-negative integer", field="question_count")

        question_ids = list(question_ids or [])
        ensure_unique(question_ids, "question")

        section = Section.create(
            family,
            title,
            caller.id,
            instructions=instructions or "",
            question_ids=question_ids,
            question_count=question_count,
            media=media or {}
        )
        check_question_count(get_profile(family), section, len(question_ids))
        if question_ids:
            await self._claimable_questions(family, question_ids)

        await self.repository.add_section(section, attach_question_ids=question_ids)
        logger.info(f"Created {family.value} section {section.id} with {len(question_ids)} questions")
        return section

    async def create_question(
        self,
        caller: Principal,
        family: Any,
        prompt: str,
        options: Optional[List[str]] = None,
        correct_answers: Optional[List[str]] = None,
        points: float = 1.0,
        question_type: str = "multiple_choice"
    ) -> Question:
        """Create a detached question carrying its answer key."""
        family = ExamFamily.parse(family)
        prompt = require_text(prompt, "prompt")
        self._ensure_can_create(caller, family, "question")

        points = require_number(points, "points")
        if points < 0:
            raise ValidationError("points must not be negative", field="points")

        question = Question.create(
            family,
            prompt,
            caller.id,
            question_type=question_type or "multiple_choice",
            options=options or [],
            correct_answers=correct_answers or [],
            points=points
        )
        await self.repository.add_question(question)
        logger.debug(f"Created {family.value} question {question.id}")
        return question

    # --- Test level ---

    async def add_section(self, caller: Principal, test_id: str, section_id: str) -> Test:
        """
        Append a section to a test.

        Raises:
            NotFoundError: Test or section missing
            ConflictError: Section already listed (DuplicateMember), owned by
                another test (Owned) or the test changed meanwhile
                (ConcurrentModification)
            InvariantError: Family mismatch or the section bound would be exceeded
        """
        test = await self._require_test(test_id)
        self._ensure_can_modify(caller, test, "test")
        section = await self._require_section(section_id)

        if section_id in test.section_ids:
            raise ConflictError(
                ConflictError.DUPLICATE_MEMBER,
                f"Section {section_id} is already part of test {test_id}",
                details={"section_id": section_id, "test_id": test_id}
            )
        check_same_family(test.family, section.family, "section")
        if section.test_id is not None and section.test_id != test.id:
            raise ConflictError(
                ConflictError.OWNED,
                f"Section {section_id} already belongs to test {section.test_id}",
                details={"section_id": section_id, "test_id": section.test_id}
            )
        check_can_add_section(get_profile(test.family), len(test.section_ids))

        new_ids = test.section_ids + [section_id]
        if not await self.repository.swap_section_ids(test.id, test.revision, new_ids, attach=[section_id]):
            raise ConflictError(
                ConflictError.CONCURRENT_MODIFICATION,
                f"Test {test_id} was modified concurrently",
                details={"test_id": test_id}
            )
        logger.info(f"Added section {section_id} to test {test_id}")
        return await self._require_test(test_id)

    async def remove_section(self, caller: Principal, test_id: str, section_id: str) -> Test:
        """
        Detach a section from a test. The section itself is kept.

        Raises:
            NotFoundError: Test missing or section not in its list
            InvariantError: Removal would drop below the family minimum
            ConflictError: The test changed meanwhile
        """
        test = await self._require_test(test_id)
        self._ensure_can_modify(caller, test, "test")
        if section_id not in test.section_ids:
            raise NotFoundError("Section", section_id)
        check_can_remove_section(get_profile(test.family), len(test.section_ids))

        new_ids = [i for i in test.section_ids if i != section_id]
        if not await self.repository.swap_section_ids(test.id, test.revision, new_ids, detach=[section_id]):
            raise ConflictError(
                ConflictError.CONCURRENT_MODIFICATION,
                f"Test {test_id} was modified concurrently",
                details={"test_id": test_id}
            )
        logger.info(f"Removed section {section_id} from test {test_id}")
        return await self._require_test(test_id)

    async def reorder_sections(self, caller: Principal, test_id: str, new_order: Sequence[str]) -> Test:
        """
        Replace a test's section order.

        Raises:
            NotFoundError: Test missing
            InvariantError: ``new_order`` is not a permutation of the current
                list, or the list changed between validation and write
        """
        test = await self._require_test(test_id)
        self._ensure_can_modify(caller, test, "test")
        new_order = validate_permutation(test.section_ids, new_order, "section")

        if not await self.repository.swap_section_ids(test.id, test.revision, new_order):
            raise InvariantError(
                f"Sections of test {test_id} changed during reorder",
                details={"test_id": test_id}
            )
        logger.info(f"Reordered sections of test {test_id}")
        return await self._require_test(test_id)

    # --- Section level ---

    async def add_question(self, caller: Principal, section_id: str, question_id: str) -> Section:
        """
        Append a question to a section.

        Raises:
            NotFoundError: Section or question missing
            ConflictError: Question already listed, owned elsewhere or the
                section changed meanwhile
            InvariantError: Family mismatch or the section's question cap
        """
        section = await self._require_section(section_id)
        self._ensure_can_modify(caller, section, "section")
        question = await self._require_question(question_id)

        if question_id in section.question_ids:
            raise ConflictError(
                ConflictError.DUPLICATE_MEMBER,
                f"Question {question_id} is already part of section {section_id}",
                details={"question_id": question_id, "section_id": section_id}
            )
        check_same_family(section.family, question.family, "question")
        if question.section_id is not None and question.section_id != section.id:
            raise ConflictError(
                ConflictError.OWNED,
                f"Question {question_id} already belongs to section {question.section_id}",
                details={"question_id": question_id, "section_id": question.section_id}
            )
        check_question_count(get_profile(section.family), section, len(section.question_ids) + 1)

        new_ids = section.question_ids + [question_id]
        if not await self.repository.swap_question_ids(section.id, section.revision, new_ids, attach=[question_id]):
            raise ConflictError(
                ConflictError.CONCURRENT_MODIFICATION,
                f"Section {section_id} was modified concurrently",
                details={"section_id": section_id}
            )
        logger.info(f"Added question {question_id} to section {section_id}")
        return await self._require_section(section_id)

    async def remove_question(self, caller: Principal, section_id: str, question_id: str) -> Section:
        """Detach a question from a section. The question itself is kept."""
        section = await self._require_section(section_id)
        self._ensure_can_modify(caller, section, "section")
        if question_id not in section.question_ids:
            raise NotFoundError("Question", question_id)

        new_ids = [i for i in section.question_ids if i != question_id]
        if not await self.repository.swap_question_ids(section.id, section.revision, new_ids, detach=[question_id]):
            raise ConflictError(
                ConflictError.CONCURRENT_MODIFICATION,
                f"Section {section_id} was modified concurrently",
                details={"section_id": section_id}
            )
        logger.info(f"Removed question {question_id} from section {section_id}")
        return await self._require_section(section_id)

    async def reorder_questions(self, caller: Principal, section_id: str, new_order: Sequence[str]) -> Section:
        """Replace a section's question order; same rules as reorder_sections."""
        section = await self._require_section(section_id)
        self._ensure_can_modify(caller, section, "section")
        new_order = validate_permutation(section.question_ids, new_order, "question")

        if not await self.repository.swap_question_ids(section.id, section.revision, new_order):
            raise InvariantError(
                f"Questions of section {section_id} changed during reorder",
                details={"section_id": section_id}
            )
        logger.info(f"Reordered questions of section {section_id}")
        return await self._require_section(section_id)

    async def reorder_children(self, caller: Principal, parent_id: str, new_order: Sequence[str]) -> Any:
        """
        Reorder the children of a test or a section, whichever ``parent_id`` names.

        Returns:
            The updated Test or Section
        """
        if await self.repository.get_test(parent_id) is not None:
            return await self.reorder_sections(caller, parent_id, new_order)
        if await self.repository.get_section(parent_id) is not None:
            return await self.reorder_questions(caller, parent_id, new_order)
        raise NotFoundError("Parent", parent_id)

    # --- Whole tree ---

    async def get_test_tree(self, test_id: str) -> TestTree:
        """Load a test with its sections and questions, or raise NotFoundError."""
        tree = await self.repository.load_with_children(test_id)
        if tree is None:
            raise NotFoundError("Test", test_id)
        return tree

    async def delete_test(self, caller: Principal, test_id: str) -> None:
        """
        Delete a test together with its sections and their questions.

        The delete is a single repository call that either removes the whole
        tree or nothing. Children that joined the test after this read are
        removed with it.
        """
        tree = await self.get_test_tree(test_id)
        self._ensure_can_modify(caller, tree.test, "test")

        section_ids = list(tree.test.section_ids)
        question_ids = sorted(tree.question_ids())
        await self.repository.delete_tree(test_id, section_ids, question_ids)
        logger.info(
            f"Deleted test {test_id} with {len(section_ids)} sections and {len(question_ids)} questions"
        )

    async def list_tests(
        self,
        family: Optional[Any] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Test], int]:
        """
        List tests, newest first.

        Returns:
            The requested page and the total count
        """
        family = ExamFamily.parse(family) if family is not None else None
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative", field="limit")
        tests = await self.repository.list_tests(family, limit=limit, offset=offset)
        total = await self.repository.count_tests(family)
        return tests, total
