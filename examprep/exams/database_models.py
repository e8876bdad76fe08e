"""
SQLAlchemy ORM models for exam content and submissions.

This module defines the database tables for the exam core, including:
- ExamTestRecord: A test and its ordered section id list
- ExamSectionRecord: A section, its ordered question id list and media handles
- ExamQuestionRecord: A question and its answer key
- ExamSubmissionRecord: A learner attempt and its grade

Collections are flat and keyed by id; parents store only child ids.
"""

import datetime
from typing import Any, Dict

from sqlalchemy import (
    Column, String, Integer, DateTime, Text, Float, JSON, Index, MetaData
)
from sqlalchemy.orm import declarative_base

from examprep.exams.models import SubmissionStatus

# Create metadata with naming convention
metadata = MetaData(naming_convention={
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
})

# Create declarative base with metadata
Base = declarative_base(metadata=metadata)


class ExamTestRecord(Base):
    """
    Row for a composed test.

    ``revision`` is bumped by every write to ``section_ids`` and guards
    compare-and-set updates.
    """
    __tablename__ = 'exam_tests'

    id = Column(String(36), primary_key=True)
    family = Column(String(32), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    difficulty = Column(String(32), nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    variant = Column(String(32), nullable=True)
    created_by = Column(String(255), nullable=False)
    section_ids = Column(JSON, nullable=False, default=list)
    revision = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ExamTestRecord(id='{self.id}', family='{self.family}', revision={self.revision})>"


class ExamSectionRecord(Base):
    """Row for a section; ``test_id`` names the owning test while attached."""
    __tablename__ = 'exam_sections'

    id = Column(String(36), primary_key=True)
    family = Column(String(32), nullable=False)
    title = Column(String(255), nullable=False)
    instructions = Column(Text, nullable=False, default="")
    test_id = Column(String(36), nullable=True, index=True)
    question_ids = Column(JSON, nullable=False, default=list)
    question_count = Column(Integer, nullable=True)
    media = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(255), nullable=False)
    revision = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ExamSectionRecord(id='{self.id}', test_id='{self.test_id}', revision={self.revision})>"


class ExamQuestionRecord(Base):
    __tablename__ = 'exam_questions'

    id = Column(String(36), primary_key=True)
    family = Column(String(32), nullable=False)
    prompt = Column(Text, nullable=False)
    question_type = Column(String(50), nullable=False, default="multiple_choice")
    options = Column(JSON, nullable=False, default=list)
    correct_answers = Column(JSON, nullable=False, default=list)
    points = Column(Float, nullable=False, default=1.0)
    section_id = Column(String(36), nullable=True, index=True)
    created_by = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)


class ExamSubmissionRecord(Base):
    """
    Row for a learner submission.

    ``status`` only ever moves from pending to graded, through a single
    conditional UPDATE.
    """
    __tablename__ = 'exam_submissions'

    id = Column(String(36), primary_key=True)
    family = Column(String(32), nullable=False, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    test_id = Column(String(36), nullable=False, index=True)
    answers = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, default=SubmissionStatus.PENDING.value, index=True)
    score = Column(Float, nullable=True)
    band_score = Column(Float, nullable=True)
    criteria = Column(JSON, nullable=True)
    feedback = Column(Text, nullable=False, default="")
    graded_by = Column(String(255), nullable=True)
    graded_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False, index=True)
    completion_time_minutes = Column(Float, nullable=True)
    answer_sheet = Column(String(512), nullable=True)
    # "user_id:test_id" when only one attempt is allowed, NULL otherwise
    attempt_key = Column(String(300), nullable=True)

    # Indexes for query optimization
    __table_args__ = (
        Index('idx_exam_submission_user_test', user_id, test_id),
        Index('uq_exam_submission_attempt_key', attempt_key, unique=True),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert the row to a plain dictionary."""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }
