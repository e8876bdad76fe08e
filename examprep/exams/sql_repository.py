"""
SQL Exam Repositories

SQLAlchemy asyncio implementations of the exam repositories. Every write
that must not race is issued as a single conditional statement:

- child-list swaps: ``UPDATE ... WHERE id = :id AND revision = :expected``
- claims: ``UPDATE ... SET test_id = :t WHERE id IN (...) AND test_id IS NULL``
- grading: ``UPDATE ... WHERE id = :id AND status = 'pending'``

and succeed only when the expected number of rows was affected. A short
claim raises inside the transaction, which rolls back the rest of the
write. Cascade delete runs in one transaction. The one-attempt rule rests
on a unique ``attempt_key``.
"""

import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete as sql_delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from examprep.common.db.repository import BaseRepository
from examprep.common.logger import app_logger, log_execution_time
from examprep.exams.database_models import (
    ExamQuestionRecord,
    ExamSectionRecord,
    ExamSubmissionRecord,
    ExamTestRecord
)
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

logger = app_logger.getChild("exams.sql_repository")


def _ordered(records: Iterable, ids: Sequence[str]) -> List:
    """Arrange fetched rows in the order of ``ids``, skipping missing ones."""
    by_id = {record.id: record for record in records}
    return [by_id[i] for i in ids if i in by_id]


async def _claim(session, model, owner_column: str, child_ids: Sequence[str], owner_id: str, kind: str) -> None:
    """Point unowned children at ``owner_id``, raising unless every one was claimed."""
    column = getattr(model, owner_column)
    result = await session.execute(
        update(model)
        .where(model.id.in_(list(child_ids)))
        .where(or_(column.is_(None), column == owner_id))
        .values({owner_column: owner_id})
    )
    if result.rowcount != len(set(child_ids)):
        raise owned_conflict(kind, child_ids, owner_id)


async def _release(session, model, owner_column: str, child_ids: Sequence[str], owner_id: str) -> None:
    """Clear the owner of children that still point at ``owner_id``."""
    column = getattr(model, owner_column)
    await session.execute(
        update(model)
        .where(model.id.in_(list(child_ids)))
        .where(column == owner_id)
        .values({owner_column: None})
    )


class SqlContentRepository(BaseRepository, ContentRepository):
    """
    SQLAlchemy implementation of the ContentRepository.
    """

    def __init__(self, session_factory: async_sessionmaker):
        super().__init__("exam content")
        self.async_session = session_factory

    # --- Mapping ---

    @staticmethod
    def _test_to_domain(record: ExamTestRecord) -> Test:
        return Test(
            id=record.id,
            family=record.family,
            title=record.title,
            created_by=record.created_by,
            description=record.description or "",
            difficulty=record.difficulty,
            duration_minutes=record.duration_minutes,
            variant=record.variant,
            section_ids=list(record.section_ids or []),
            revision=record.revision,
            created_at=record.created_at,
            updated_at=record.updated_at
        )

    @staticmethod
    def _section_to_domain(record: ExamSectionRecord) -> Section:
        return Section(
            id=record.id,
            family=record.family,
            title=record.title,
            created_by=record.created_by,
            instructions=record.instructions or "",
            test_id=record.test_id,
            question_ids=list(record.question_ids or []),
            question_count=record.question_count,
            media=dict(record.media or {}),
            revision=record.revision,
            created_at=record.created_at,
            updated_at=record.updated_at
        )

    @staticmethod
    def _question_to_domain(record: ExamQuestionRecord) -> Question:
        return Question(
            id=record.id,
            family=record.family,
            prompt=record.prompt,
            created_by=record.created_by,
            question_type=record.question_type,
            options=list(record.options or []),
            correct_answers=list(record.correct_answers or []),
            points=record.points,
            section_id=record.section_id,
            created_at=record.created_at,
            updated_at=record.updated_at
        )

    # --- Reads ---

    async def get_test(self, test_id: str) -> Optional[Test]:
        try:
            async with self.async_session() as session:
                record = await session.get(ExamTestRecord, test_id)
                return self._test_to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise self._wrap("get", test_id, e) from e

    async def get_section(self, section_id: str) -> Optional[Section]:
        try:
            async with self.async_session() as session:
                record = await session.get(ExamSectionRecord, section_id)
                return self._section_to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise self._wrap("get", section_id, e) from e

    async def get_question(self, question_id: str) -> Optional[Question]:
        try:
            async with self.async_session() as session:
                record = await session.get(ExamQuestionRecord, question_id)
                return self._question_to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise self._wrap("get", question_id, e) from e

    async def get_sections(self, section_ids: Sequence[str]) -> List[Section]:
        if not section_ids:
            return []
        try:
            async with self.async_session() as session:
                result = await session.execute(
                    select(ExamSectionRecord).where(ExamSectionRecord.id.in_(list(section_ids)))
                )
                records = _ordered(result.scalars().all(), section_ids)
                return [self._section_to_domain(r) for r in records]
        except SQLAlchemyError as e:
            raise self._wrap("get", list(section_ids), e) from e

    async def get_questions(self, question_ids: Sequence[str]) -> List[Question]:
        if not question_ids:
            return []
        try:
            async with self.async_session() as session:
                result = await session.execute(
                    select(ExamQuestionRecord).where(ExamQuestionRecord.id.in_(list(question_ids)))
                )
                records = _ordered(result.scalars().all(), question_ids)
                return [self._question_to_domain(r) for r in records]
        except SQLAlchemyError as e:
            raise self._wrap("get", list(question_ids), e) from e

    @log_execution_time(logger)
    async def load_with_children(self, test_id: str) -> Optional[TestTree]:
        try:
            async with self.async_session() as session:
                test_record = await session.get(ExamTestRecord, test_id)
                if test_record is None:
                    return None
                test = self._test_to_domain(test_record)

                sections: List[Section] = []
                if test.section_ids:
                    result = await session.execute(
                        select(ExamSectionRecord).where(ExamSectionRecord.id.in_(test.section_ids))
                    )
                    sections = [
                        self._section_to_domain(r)
                        for r in _ordered(result.scalars().all(), test.section_ids)
                    ]

                all_question_ids = [qid for s in sections for qid in s.question_ids]
                by_id: Dict[str, Question] = {}
                if all_question_ids:
                    result = await session.execute(
                        select(ExamQuestionRecord).where(ExamQuestionRecord.id.in_(all_question_ids))
                    )
                    by_id = {r.id: self._question_to_domain(r) for r in result.scalars().all()}

                questions = {
                    s.id: [by_id[qid] for qid in s.question_ids if qid in by_id]
                    for s in sections
                }
                return TestTree(test=test, sections=sections, questions=questions)
        except SQLAlchemyError as e:
            raise self._wrap("load", test_id, e) from e

    # --- Writes ---

    async def add_test(self, test: Test, attach_section_ids: Sequence[str] = ()) -> Test:
        try:
            async with self.async_session() as session:
                async with session.begin():
                    session.add(ExamTestRecord(
                        id=test.id,
                        family=test.family.value,
                        title=test.title,
                        description=test.description,
                        difficulty=test.difficulty,
                        duration_minutes=test.duration_minutes,
                        variant=test.variant,
                        created_by=test.created_by,
                        section_ids=list(test.section_ids),
                        revision=test.revision,
                        created_at=test.created_at,
                        updated_at=test.updated_at
                    ))
                    if attach_section_ids:
                        await _claim(session, ExamSectionRecord, "test_id", attach_section_ids, test.id, "Section")
            return test
        except SQLAlchemyError as e:
            raise self._wrap("insert", test.id, e) from e

    async def add_section(self, section: Section, attach_question_ids: Sequence[str] = ()) -> Section:
        try:
            async with self.async_session() as session:
                async with session.begin():
                    session.add(ExamSectionRecord(
                        id=section.id,
                        family=section.family.value,
                        title=section.title,
                        instructions=section.instructions,
                        test_id=section.test_id,
                        question_ids=list(section.question_ids),
                        question_count=section.question_count,
                        media=dict(section.media),
                        created_by=section.created_by,
                        revision=section.revision,
                        created_at=section.created_at,
                        updated_at=section.updated_at
                    ))
                    if attach_question_ids:
                        await _claim(
                            session, ExamQuestionRecord, "section_id", attach_question_ids, section.id, "Question"
                        )
            return section
        except SQLAlchemyError as e:
            raise self._wrap("insert", section.id, e) from e

    async def add_question(self, question: Question) -> Question:
        try:
            async with self.async_session() as session:
                async with session.begin():
                    session.add(ExamQuestionRecord(
                        id=question.id,
                        family=question.family.value,
                        prompt=question.prompt,
                        question_type=question.question_type,
                        options=list(question.options),
                        correct_answers=list(question.correct_answers),
                        points=question.points,
                        section_id=question.section_id,
                        created_by=question.created_by,
                        created_at=question.created_at,
                        updated_at=question.updated_at
                    ))
            return question
        except SQLAlchemyError as e:
            raise self._wrap("insert", question.id, e) from e

    @log_execution_time(logger)
    async def swap_section_ids(
        self,
        test_id: str,
        expected_revision: int,
        section_ids: Sequence[str],
        attach: Iterable[str] = (),
        detach: Iterable[str] = ()
    ) -> bool:
        attach, detach = list(attach), list(detach)
        try:
            async with self.async_session() as session:
                async with session.begin():
                    result = await session.execute(
                        update(ExamTestRecord)
                        .where(ExamTestRecord.id == test_id)
                        .where(ExamTestRecord.revision == expected_revision)
                        .values(
                            section_ids=list(section_ids),
                            revision=ExamTestRecord.revision + 1,
                            updated_at=datetime.datetime.utcnow()
                        )
                    )
                    if result.rowcount != 1:
                        return False
                    if attach:
                        await _claim(session, ExamSectionRecord, "test_id", attach, test_id, "Section")
                    if detach:
                        await _release(session, ExamSectionRecord, "test_id", detach, test_id)
            return True
        except SQLAlchemyError as e:
            raise self._wrap("update", test_id, e) from e

    @log_execution_time(logger)
    async def swap_question_ids(
        self,
        section_id: str,
        expected_revision: int,
        question_ids: Sequence[str],
        attach: Iterable[str] = (),
        detach: Iterable[str] = ()
    ) -> bool:
        attach, detach = list(attach), list(detach)
        try:
            async with self.async_session() as session:
                async with session.begin():
                    result = await session.execute(
                        update(ExamSectionRecord)
                        .where(ExamSectionRecord.id == section_id)
                        .where(ExamSectionRecord.revision == expected_revision)
                        .values(
                            question_ids=list(question_ids),
                            revision=ExamSectionRecord.revision + 1,
                            updated_at=datetime.datetime.utcnow()
                        )
                    )
                    if result.rowcount != 1:
                        return False
                    if attach:
                        await _claim(session, ExamQuestionRecord, "section_id", attach, section_id, "Question")
                    if detach:
                        await _release(session, ExamQuestionRecord, "section_id", detach, section_id)
            return True
        except SQLAlchemyError as e:
            raise self._wrap("update", section_id, e) from e

    @log_execution_time(logger)
    async def delete_tree(self, test_id: str, section_ids: Sequence[str], question_ids: Sequence[str]) -> None:
        owned_sections = or_(
            ExamSectionRecord.test_id == test_id,
            ExamSectionRecord.id.in_(list(section_ids))
        )
        try:
            async with self.async_session() as session:
                async with session.begin():
                    await session.execute(
                        sql_delete(ExamQuestionRecord)
                        .where(or_(
                            ExamQuestionRecord.id.in_(list(question_ids)),
                            ExamQuestionRecord.section_id.in_(select(ExamSectionRecord.id).where(owned_sections))
                        ))
                        .execution_options(synchronize_session=False)
                    )
                    await session.execute(
                        sql_delete(ExamSectionRecord)
                        .where(owned_sections)
                        .execution_options(synchronize_session=False)
                    )
                    result = await session.execute(
                        sql_delete(ExamTestRecord).where(ExamTestRecord.id == test_id)
                    )
                logger.debug(f"Deleted {result.rowcount} test(s) with ID {test_id}")
        except SQLAlchemyError as e:
            raise self._wrap("delete", test_id, e) from e

    async def list_tests(
        self,
        family: Optional[ExamFamily] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Test]:
        try:
            async with self.async_session() as session:
                stmt = select(ExamTestRecord)
                if family is not None:
                    stmt = stmt.where(ExamTestRecord.family == family.value)
                stmt = stmt.order_by(ExamTestRecord.created_at.desc()).limit(limit).offset(offset)
                result = await session.execute(stmt)
                return [self._test_to_domain(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._wrap("list", family.value if family else "all", e) from e

    async def count_tests(self, family: Optional[ExamFamily] = None) -> int:
        try:
            async with self.async_session() as session:
                stmt = select(func.count(ExamTestRecord.id))
                if family is not None:
                    stmt = stmt.where(ExamTestRecord.family == family.value)
                result = await session.execute(stmt)
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise self._wrap("count", family.value if family else "all", e) from e


class SqlSubmissionRepository(BaseRepository, SubmissionRepository):
    """
    SQLAlchemy implementation of the SubmissionRepository.
    """

    def __init__(self, session_factory: async_sessionmaker):
        super().__init__("submission")
        self.async_session = session_factory

    @staticmethod
    def _to_domain(record: ExamSubmissionRecord) -> Submission:
        data = record.to_dict()
        data.pop("attempt_key", None)
        data["answers"] = list(data["answers"] or [])
        data["criteria"] = dict(data["criteria"] or {})
        data["feedback"] = data["feedback"] or ""
        return Submission(**data)

    async def get(self, submission_id: str) -> Optional[Submission]:
        try:
            async with self.async_session() as session:
                record = await session.get(ExamSubmissionRecord, submission_id)
                return self._to_domain(record) if record else None
        except SQLAlchemyError as e:
            raise self._wrap("get", submission_id, e) from e

    async def add(self, submission: Submission, exclusive: bool = False) -> Submission:
        attempt_key = f"{submission.user_id}:{submission.test_id}" if exclusive else None
        try:
            async with self.async_session() as session:
                async with session.begin():
                    session.add(ExamSubmissionRecord(
                        id=submission.id,
                        family=submission.family.value,
                        user_id=submission.user_id,
                        test_id=submission.test_id,
                        answers=[a.to_dict() for a in submission.answers],
                        status=submission.status.value,
                        score=submission.score,
                        band_score=submission.band_score,
                        criteria=dict(submission.criteria),
                        feedback=submission.feedback,
                        graded_by=submission.graded_by,
                        graded_at=submission.graded_at,
                        submitted_at=submission.submitted_at,
                        completion_time_minutes=submission.completion_time_minutes,
                        answer_sheet=submission.answer_sheet,
                        attempt_key=attempt_key
                    ))
            return submission
        except IntegrityError as e:
            if exclusive:
                raise already_submitted(submission.user_id, submission.test_id) from e
            raise self._wrap("insert", submission.id, e) from e
        except SQLAlchemyError as e:
            raise self._wrap("insert", submission.id, e) from e

    @log_execution_time(logger)
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
        try:
            async with self.async_session() as session:
                async with session.begin():
                    result = await session.execute(
                        update(ExamSubmissionRecord)
                        .where(ExamSubmissionRecord.id == submission_id)
                        .where(ExamSubmissionRecord.status == SubmissionStatus.PENDING.value)
                        .values(
                            status=SubmissionStatus.GRADED.value,
                            score=score,
                            band_score=band_score,
                            criteria=dict(criteria or {}),
                            feedback=feedback,
                            graded_by=graded_by,
                            graded_at=graded_at
                        )
                    )
                    return result.rowcount == 1
        except SQLAlchemyError as e:
            raise self._wrap("grade", submission_id, e) from e

    async def exists_for(self, user_id: str, test_id: str) -> bool:
        try:
            async with self.async_session() as session:
                result = await session.execute(
                    select(ExamSubmissionRecord.id)
                    .where(ExamSubmissionRecord.user_id == user_id)
                    .where(ExamSubmissionRecord.test_id == test_id)
                    .limit(1)
                )
                return result.first() is not None
        except SQLAlchemyError as e:
            raise self._wrap("lookup", f"{user_id}/{test_id}", e) from e

    async def find(
        self,
        family: Optional[ExamFamily] = None,
        user_id: Optional[str] = None,
        status: Optional[SubmissionStatus] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Submission]:
        try:
            async with self.async_session() as session:
                stmt = select(ExamSubmissionRecord)
                if family is not None:
                    stmt = stmt.where(ExamSubmissionRecord.family == family.value)
                if user_id is not None:
                    stmt = stmt.where(ExamSubmissionRecord.user_id == user_id)
                if status is not None:
                    stmt = stmt.where(ExamSubmissionRecord.status == status.value)
                stmt = stmt.order_by(
                    ExamSubmissionRecord.submitted_at.desc(),
                    ExamSubmissionRecord.id.asc()
                )
                if limit is not None:
                    stmt = stmt.limit(limit)
                if offset:
                    stmt = stmt.offset(offset)
                result = await session.execute(stmt)
                return [self._to_domain(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise self._wrap("find", family.value if family else "all", e) from e
