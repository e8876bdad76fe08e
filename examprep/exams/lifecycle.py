"""
Submission Lifecycle Service

A learner's attempt at a test moves through two states:

    PENDING --grade--> GRADED

``submit`` creates the PENDING submission, ``grade`` performs the only
transition. GRADED is terminal. Grading goes through one conditional
update in the repository, so two graders racing on the same submission
cannot both succeed. Likewise, under the one-attempt policy the repository
refuses a second insert for the same learner and test.
"""

import datetime
from typing import Any, Dict, Iterable, List, Optional

from examprep.common.auth import Principal, can_grade, can_view, ensure_allowed
from examprep.common.exceptions import ConflictError, NotFoundError, ValidationError
from examprep.common.logger import LoggerAdapter, app_logger
from examprep.exams.bands import band_from_percentage
from examprep.exams.families import ExamFamily, get_profile
from examprep.exams.models import Submission, SubmissionStatus
from examprep.exams.repositories import ContentRepository, SubmissionRepository, already_submitted
from examprep.exams.validation import (
    require_number,
    require_text,
    validate_answers,
    validate_band_score,
    validate_criteria,
    validate_score
)

logger = LoggerAdapter(app_logger.getChild("exams.lifecycle"))


class SubmissionLifecycle:
    """
    Service for submitting and grading attempts.

    Args:
        content: Content repository, used to resolve tests and their questions
        submissions: Submission repository
        allow_multiple_submissions: When False, a learner gets one submission per test
    """

    def __init__(
        self,
        content: ContentRepository,
        submissions: SubmissionRepository,
        allow_multiple_submissions: bool = True
    ):
        self.content = content
        self.submissions = submissions
        self.allow_multiple_submissions = allow_multiple_submissions

    async def submit(
        self,
        user_id: str,
        test_id: str,
        answers: Iterable[Any],
        completion_time_minutes: Optional[float] = None,
        answer_sheet: Optional[str] = None
    ) -> Submission:
        """
        Record a learner's answers as a pending submission.

        Args:
            user_id: Submitting learner
            test_id: Test being answered
            answers: Answer objects or ``{"question_id", "value"}`` mappings
            completion_time_minutes: Optional time the learner took
            answer_sheet: Optional opaque file-storage handle of an uploaded sheet

        Returns:
            The created submission

        Raises:
            ValidationError: Malformed answers or completion time
            NotFoundError: Unknown test, or an answer names a question outside the test
            ConflictError: The learner already submitted and only one submission is allowed
        """
        user_id = require_text(user_id, "user_id")
        answers = validate_answers(answers)

        if completion_time_minutes is not None:
            completion_time_minutes = require_number(completion_time_minutes, "completion_time_minutes")
            if completion_time_minutes < 0:
                raise ValidationError(
                    "completion_time_minutes must not be negative",
                    field="completion_time_minutes"
                )

        tree = await self.content.load_with_children(test_id)
        if tree is None:
            raise NotFoundError("Test", test_id)

        known = tree.question_ids()
        for answer in answers:
            if answer.question_id not in known:
                raise NotFoundError("Question", answer.question_id)

        exclusive = not self.allow_multiple_submissions
        if exclusive and await self.submissions.exists_for(user_id, test_id):
            raise already_submitted(user_id, test_id)

        submission = Submission.create(
            tree.test.family,
            user_id,
            test_id,
            answers,
            completion_time_minutes=completion_time_minutes,
            answer_sheet=answer_sheet
        )
        await self.submissions.add(submission, exclusive=exclusive)
        logger.with_context(submission_id=submission.id, user_id=user_id, test_id=test_id).info(
            f"Submission {submission.id} created for {tree.test.family.value} test {test_id}"
        )
        return submission

    async def _resolve_band(self, submission: Submission, score: float, band_score: Any) -> Optional[float]:
        profile = get_profile(submission.family)
        if not profile.band_score:
            if band_score is not None:
                raise ValidationError(
                    f"band_score does not apply to {submission.family.value}",
                    field="band_score"
                )
            return None

        if band_score is not None:
            return validate_band_score(band_score)

        test = await self.content.get_test(submission.test_id)
        return band_from_percentage(score, test.variant if test else None)

    async def grade(
        self,
        submission_id: str,
        grader_id: str,
        score: Any,
        feedback: Optional[str] = "",
        band_score: Any = None,
        criteria: Optional[Dict[str, Any]] = None
    ) -> Submission:
        """
        Grade a pending submission exactly once.

        Band-scaled scores are rounded to the nearest half band. IELTS reading
        submissions also get a band, explicit or derived from the percentage.
        IELTS writing and speaking graders may add bands per marking
        criterion next to the overall score.

        Raises:
            NotFoundError: Unknown submission
            ValidationError: Score, band or criteria invalid for the family
            ConflictError: The submission is already graded (AlreadyGraded)
        """
        submission = await self.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError("Submission", submission_id)
        if submission.is_graded:
            logger.warning(f"Rejected grading of already graded submission {submission_id}")
            raise ConflictError(
                ConflictError.ALREADY_GRADED,
                f"Submission {submission_id} is already graded",
                details={"submission_id": submission_id}
            )

        value = validate_score(submission.family, score)
        band = await self._resolve_band(submission, value, band_score)
        marks = validate_criteria(submission.family, criteria)
        if feedback is not None and not isinstance(feedback, str):
            raise ValidationError("feedback must be text", field="feedback")

        graded = await self.submissions.mark_graded(
            submission_id,
            score=value,
            feedback=feedback or "",
            graded_by=grader_id,
            graded_at=datetime.datetime.utcnow(),
            band_score=band,
            criteria=marks
        )
        if not graded:
            logger.warning(f"Lost grading race on submission {submission_id}")
            raise ConflictError(
                ConflictError.ALREADY_GRADED,
                f"Submission {submission_id} is already graded",
                details={"submission_id": submission_id}
            )

        logger.with_context(submission_id=submission_id, graded_by=grader_id).info(
            f"Submission {submission_id} graded {value:g}"
        )
        result = await self.submissions.get(submission_id)
        if result is None:
            raise NotFoundError("Submission", submission_id)
        return result

    async def grade_submission(
        self,
        caller: Principal,
        submission_id: str,
        score: Any,
        feedback: Optional[str] = "",
        band_score: Any = None,
        criteria: Optional[Dict[str, Any]] = None
    ) -> Submission:
        """Grade on behalf of ``caller``, who must be allowed to grade."""
        ensure_allowed(can_grade(caller), "grade", f"submission {submission_id}")
        return await self.grade(submission_id, caller.id, score, feedback, band_score, criteria)

    async def get_submission(self, submission_id: str, caller: Principal) -> Submission:
        """
        Fetch a submission the caller may see.

        Raises:
            NotFoundError: Unknown submission
            ForbiddenError: Caller is neither its owner nor an admin
        """
        submission = await self.submissions.get(submission_id)
        if submission is None:
            raise NotFoundError("Submission", submission_id)
        ensure_allowed(can_view(submission, caller), "view", f"submission {submission_id}")
        return submission

    async def list_user_submissions(
        self,
        caller: Principal,
        user_id: Optional[str] = None,
        family: Optional[Any] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Submission]:
        """
        A learner's submission history, newest first.

        Learners see their own history; admins may ask for anyone's.
        """
        target = user_id or caller.id
        ensure_allowed(caller.is_admin or target == caller.id, "view submissions of", f"user {target}")
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative", field="limit")
        family = ExamFamily.parse(family) if family is not None else None
        return await self.submissions.find(family=family, user_id=target, limit=limit, offset=offset)

    async def list_submissions(
        self,
        caller: Principal,
        family: Optional[Any] = None,
        status: Optional[Any] = None,
        limit: int = 50,
        offset: int = 0
    ) -> List[Submission]:
        """
        Submissions across all learners, newest first, for graders.

        ``status="pending"`` gives the grading queue.

        Raises:
            ForbiddenError: Caller may not grade
            ValidationError: Unknown family or status, or bad paging
        """
        ensure_allowed(can_grade(caller), "list", "submissions")
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative", field="limit")
        family = ExamFamily.parse(family) if family is not None else None
        if status is not None and not isinstance(status, SubmissionStatus):
            try:
                status = SubmissionStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown submission status: {status}", field="status")
        return await self.submissions.find(family=family, status=status, limit=limit, offset=offset)
