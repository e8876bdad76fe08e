"""
Tests for the SQLAlchemy exam repositories against SQLite.

Most tests share one in-memory connection. The race tests use a file
database so that concurrent sessions get their own connections.
"""

import asyncio
import datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from examprep.common.exceptions import ConflictError
from examprep.exams.database_models import Base
from examprep.exams.families import ExamFamily
from examprep.exams.hierarchy import ContentHierarchy
from examprep.exams.lifecycle import SubmissionLifecycle
from examprep.exams.models import Question, Section, Submission, SubmissionStatus, Test
from examprep.exams.sql_repository import SqlContentRepository, SqlSubmissionRepository

BASE_TIME = datetime.datetime(2024, 5, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'exams.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def content(session_factory):
    return SqlContentRepository(session_factory)


@pytest.fixture
def submissions(session_factory):
    return SqlSubmissionRepository(session_factory)


async def _seed_tree(content):
    """One ielts_reading test with two sections of two questions each."""
    questions = [
        await content.add_question(Question.create("ielts_reading", f"Q{i}", "admin-1", section_id=None))
        for i in range(4)
    ]
    first = Section.create("ielts_reading", "Passage 1", "admin-1", question_ids=[questions[1].id, questions[0].id])
    second = Section.create("ielts_reading", "Passage 2", "admin-1", question_ids=[questions[2].id, questions[3].id])
    await content.add_section(first, [questions[0].id, questions[1].id])
    await content.add_section(second, [questions[2].id, questions[3].id])

    test = Test.create("ielts_reading", "Reading Practice", "admin-1", section_ids=[second.id, first.id])
    await content.add_test(test, [first.id, second.id])
    return test, [second, first], questions


class TestSqlContentRepository:
    """Content reads and conditional writes."""

    @pytest.mark.asyncio
    async def test_load_with_children_keeps_order(self, content):
        test, sections, questions = await _seed_tree(content)

        tree = await content.load_with_children(test.id)

        assert [s.id for s in tree.sections] == [s.id for s in sections]
        assert all(s.test_id == test.id for s in tree.sections)
        first_id = sections[1].id
        assert [q.id for q in tree.questions[first_id]] == [questions[1].id, questions[0].id]
        assert tree.test.family == ExamFamily.IELTS_READING

    @pytest.mark.asyncio
    async def test_load_missing(self, content):
        assert await content.load_with_children("missing") is None

    @pytest.mark.asyncio
    async def test_swap_requires_current_revision(self, content):
        test, sections, _ = await _seed_tree(content)
        reversed_ids = [s.id for s in reversed(sections)]

        assert await content.swap_section_ids(test.id, 0, reversed_ids) is True
        assert await content.swap_section_ids(test.id, 0, [s.id for s in sections]) is False

        stored = await content.get_test(test.id)
        assert stored.section_ids == reversed_ids
        assert stored.revision == 1

    @pytest.mark.asyncio
    async def test_swap_detaches_and_attaches(self, content):
        test, sections, _ = await _seed_tree(content)
        kept, dropped = sections

        assert await content.swap_section_ids(test.id, 0, [kept.id], detach=[dropped.id])

        assert (await content.get_section(dropped.id)).test_id is None
        assert (await content.get_section(kept.id)).test_id == test.id

    @pytest.mark.asyncio
    async def test_swap_question_ids(self, content):
        _, sections, questions = await _seed_tree(content)
        section = await content.get_section(sections[0].id)
        extra = await content.add_question(Question.create("ielts_reading", "Extra", "admin-1"))

        new_ids = section.question_ids + [extra.id]
        assert await content.swap_question_ids(section.id, section.revision, new_ids, attach=[extra.id])

        assert (await content.get_section(section.id)).question_ids == new_ids
        assert (await content.get_question(extra.id)).section_id == section.id

    @pytest.mark.asyncio
    async def test_delete_tree_is_idempotent(self, content):
        test, sections, questions = await _seed_tree(content)
        section_ids = [s.id for s in sections]
        question_ids = [q.id for q in questions]

        await content.delete_tree(test.id, section_ids, question_ids)
        await content.delete_tree(test.id, section_ids, question_ids)

        assert await content.get_test(test.id) is None
        assert await content.get_sections(section_ids) == []
        assert await content.get_questions(question_ids) == []

    @pytest.mark.asyncio
    async def test_delete_tree_removes_children_claimed_later(self, content):
        # Arrange
        test, sections, questions = await _seed_tree(content)
        snapshot_sections = [s.id for s in sections]
        snapshot_questions = [q.id for q in questions]
        late_question = await content.add_question(Question.create("ielts_reading", "Late", "admin-1"))
        late = Section.create("ielts_reading", "Late passage", "admin-1", question_ids=[late_question.id])
        await content.add_section(late, [late_question.id])
        assert await content.swap_section_ids(test.id, 0, snapshot_sections + [late.id], attach=[late.id])

        # Act
        await content.delete_tree(test.id, snapshot_sections, snapshot_questions)

        # Assert
        assert await content.get_section(late.id) is None
        assert await content.get_question(late_question.id) is None

    @pytest.mark.asyncio
    async def test_claim_of_owned_section_rolls_back(self, content):
        # Arrange
        owner, sections, _ = await _seed_tree(content)
        rival = await content.add_test(Test.create("ielts_reading", "Rival", "admin-1"))
        taken = sections[0].id

        # Act
        with pytest.raises(ConflictError) as exc_info:
            await content.swap_section_ids(rival.id, 0, [taken], attach=[taken])

        # Assert
        assert exc_info.value.reason == ConflictError.OWNED
        stored = await content.get_test(rival.id)
        assert stored.section_ids == []
        assert stored.revision == 0
        assert (await content.get_section(taken)).test_id == owner.id

    @pytest.mark.asyncio
    async def test_insert_cannot_claim_owned_children(self, content):
        _, sections, questions = await _seed_tree(content)
        rival_test = Test.create("ielts_reading", "Rival", "admin-1", section_ids=[sections[0].id])
        rival_section = Section.create("ielts_reading", "Rival", "admin-1", question_ids=[questions[0].id])

        with pytest.raises(ConflictError):
            await content.add_test(rival_test, [sections[0].id])
        with pytest.raises(ConflictError):
            await content.add_section(rival_section, [questions[0].id])

        assert await content.get_test(rival_test.id) is None
        assert await content.get_section(rival_section.id) is None

    @pytest.mark.asyncio
    async def test_detach_only_releases_own_children(self, content):
        owner, sections, _ = await _seed_tree(content)
        rival = await content.add_test(Test.create("ielts_reading", "Rival", "admin-1"))

        assert await content.swap_section_ids(rival.id, 0, [], detach=[sections[0].id])

        assert (await content.get_section(sections[0].id)).test_id == owner.id

    @pytest.mark.asyncio
    async def test_list_and_count(self, content):
        await _seed_tree(content)
        await content.add_test(Test.create("pte_writing", "Essay", "admin-1"))

        assert await content.count_tests() == 2
        assert await content.count_tests(ExamFamily.PTE_WRITING) == 1
        listed = await content.list_tests(ExamFamily.IELTS_READING)
        assert [t.title for t in listed] == ["Reading Practice"]


class TestSqlSubmissionRepository:
    """Submission storage and the conditional grade."""

    @staticmethod
    def _submission(sid, minutes_ago=0, family="ielts_listening", user_id="learner-1"):
        return Submission(
            id=sid,
            family=family,
            user_id=user_id,
            test_id="test-1",
            answers=[{"question_id": "q1", "value": "A"}],
            submitted_at=BASE_TIME - datetime.timedelta(minutes=minutes_ago)
        )

    @pytest.mark.asyncio
    async def test_round_trip(self, submissions):
        await submissions.add(self._submission("s1"))

        stored = await submissions.get("s1")

        assert stored.status == SubmissionStatus.PENDING
        assert stored.answers[0].question_id == "q1"
        assert stored.answers[0].value == "A"
        assert stored.family == ExamFamily.IELTS_LISTENING

    @pytest.mark.asyncio
    async def test_mark_graded_only_once(self, submissions):
        await submissions.add(self._submission("s1"))

        first = await submissions.mark_graded("s1", 75.0, "Good", "admin-1", BASE_TIME)
        second = await submissions.mark_graded("s1", 40.0, "Bad", "admin-2", BASE_TIME)

        assert first is True
        assert second is False
        stored = await submissions.get("s1")
        assert stored.score == 75.0
        assert stored.graded_by == "admin-1"

    @pytest.mark.asyncio
    async def test_mark_graded_missing(self, submissions):
        assert await submissions.mark_graded("missing", 50.0, "", "admin-1", BASE_TIME) is False

    @pytest.mark.asyncio
    async def test_find_orders_newest_first(self, submissions):
        await submissions.add(self._submission("b", minutes_ago=5))
        await submissions.add(self._submission("a", minutes_ago=5))
        await submissions.add(self._submission("c", minutes_ago=1))
        await submissions.add(self._submission("d", minutes_ago=0, family="pte_reading"))

        result = await submissions.find(family=ExamFamily.IELTS_LISTENING)

        assert [s.id for s in result] == ["c", "a", "b"]
        assert [s.id for s in await submissions.find(limit=2, offset=1)] == ["c", "a"]

    @pytest.mark.asyncio
    async def test_exists_for(self, submissions):
        await submissions.add(self._submission("s1"))
        assert await submissions.exists_for("learner-1", "test-1") is True
        assert await submissions.exists_for("learner-2", "test-1") is False

    @pytest.mark.asyncio
    async def test_exclusive_add_refuses_second_attempt(self, submissions):
        await submissions.add(self._submission("s1"), exclusive=True)

        with pytest.raises(ConflictError) as exc_info:
            await submissions.add(self._submission("s2"), exclusive=True)

        assert exc_info.value.reason == ConflictError.ALREADY_SUBMITTED
        assert await submissions.get("s2") is None
        await submissions.add(self._submission("s3"))
        assert await submissions.get("s3") is not None

    @pytest.mark.asyncio
    async def test_criteria_stored_with_grade(self, submissions):
        await submissions.add(self._submission("s1", family="ielts_writing"))

        graded = await submissions.mark_graded(
            "s1", 6.5, "", "admin-1", BASE_TIME, criteria={"lexical_resource": 7.0}
        )

        assert graded is True
        stored = await submissions.get("s1")
        assert stored.criteria == {"lexical_resource": 7.0}
        assert stored.to_dict()["criteria"] == {"lexical_resource": 7.0}


class TestServicesOverSql:
    """The services behave the same on the SQL repositories."""

    @pytest.mark.asyncio
    async def test_compose_submit_and_grade(self, content, submissions, admin, learner):
        hierarchy = ContentHierarchy(content)
        lifecycle = SubmissionLifecycle(content, submissions)

        question = await hierarchy.create_question(admin, "ielts_listening", "Where is the station?")
        section = await hierarchy.create_section(admin, "ielts_listening", "Part 1", question_ids=[question.id])
        test = await hierarchy.create_test(admin, "ielts_listening", "Listening 1", section_ids=[section.id])

        submission = await lifecycle.submit(learner.id, test.id, [{"question_id": question.id, "value": "North"}])
        graded = await lifecycle.grade(submission.id, admin.id, 82.5)

        assert graded.status == SubmissionStatus.GRADED
        assert graded.score == 82.5
        with pytest.raises(ConflictError):
            await lifecycle.grade(submission.id, admin.id, 10)

    @pytest.mark.asyncio
    async def test_reorder_over_sql(self, content, admin):
        hierarchy = ContentHierarchy(content)
        test, sections, _ = await _seed_tree(content)
        new_order = [s.id for s in reversed(sections)]

        updated = await hierarchy.reorder_sections(admin, test.id, new_order)

        assert updated.section_ids == new_order
        assert updated.revision == 1


class TestSqlRaces:
    """Concurrent writers on separate connections."""

    @pytest.mark.asyncio
    async def test_two_tests_racing_for_one_section(self, file_session_factory, admin):
        # Arrange
        content = SqlContentRepository(file_session_factory)
        hierarchy = ContentHierarchy(content)
        section = await hierarchy.create_section(admin, "ielts_reading", "Passage")
        first = await hierarchy.create_test(admin, "ielts_reading", "First")
        second = await hierarchy.create_test(admin, "ielts_reading", "Second")

        # Act
        results = await asyncio.gather(
            hierarchy.add_section(admin, first.id, section.id),
            hierarchy.add_section(admin, second.id, section.id),
            return_exceptions=True
        )

        # Assert
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(failed) == 1
        assert isinstance(failed[0], ConflictError)
        owner = (await content.get_section(section.id)).test_id
        listing = {
            t.id: section.id in t.section_ids
            for t in (await content.get_test(first.id), await content.get_test(second.id))
        }
        assert listing == {first.id: owner == first.id, second.id: owner == second.id}

    @pytest.mark.asyncio
    async def test_one_attempt_policy_holds_across_connections(self, file_session_factory, admin, learner):
        # Arrange
        content = SqlContentRepository(file_session_factory)
        submissions = SqlSubmissionRepository(file_session_factory)
        hierarchy = ContentHierarchy(content)
        lifecycle = SubmissionLifecycle(content, submissions, allow_multiple_submissions=False)
        test = await hierarchy.create_test(admin, "ielts_writing", "Essay")

        # Act
        results = await asyncio.gather(
            *(lifecycle.submit(learner.id, test.id, []) for _ in range(3)),
            return_exceptions=True
        )

        # Assert
        failed = [r for r in results if isinstance(r, Exception)]
        assert len(failed) == 2
        assert all(isinstance(e, ConflictError) and e.reason == ConflictError.ALREADY_SUBMITTED for e in failed)
        assert len(await submissions.find(user_id=learner.id)) == 1
