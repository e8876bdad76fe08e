"""
Exam API Router

HTTP endpoints over the exam services. Handlers only translate between
JSON and service calls; domain errors propagate to the exception handlers
registered in ``examprep.api``.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field

from examprep.api import APIResponse
from examprep.common.auth import Principal, can_view_stats, ensure_allowed
from examprep.common.auth.dependencies import get_current_principal
from examprep.common.logger import get_logger
from examprep.common.serialization import serialize
from examprep.exams.hierarchy import ContentHierarchy
from examprep.exams.lifecycle import SubmissionLifecycle
from examprep.exams.scoring import ScoringAggregator

# Set up logger
logger = get_logger(__name__)

# Create router
router = APIRouter()


# Request Models
class CreateTestRequest(BaseModel):
    family: str = Field(..., description="Family tag, e.g. ielts_listening")
    title: str
    section_ids: List[str] = Field(default_factory=list, description="Existing sections to claim, in order")
    description: str = ""
    difficulty: Optional[str] = None
    duration_minutes: Optional[int] = Field(None, gt=0)
    variant: Optional[str] = Field(None, description="academic or general for IELTS papers")


class CreateSectionRequest(BaseModel):
    family: str
    title: str
    question_ids: List[str] = Field(default_factory=list)
    question_count: Optional[int] = Field(None, ge=0, description="Declared number of questions")
    instructions: str = ""
    media: Dict[str, str] = Field(default_factory=dict, description="Opaque storage handles by kind")


class CreateQuestionRequest(BaseModel):
    family: str
    prompt: str
    question_type: str = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct_answers: List[str] = Field(default_factory=list)
    points: float = Field(1.0, ge=0)


class ReorderRequest(BaseModel):
    order: List[str] = Field(..., description="The complete child id list in its new order")


class AnswerPayload(BaseModel):
    question_id: str
    value: Any = None


class SubmitRequest(BaseModel):
    answers: List[AnswerPayload]
    completion_time_minutes: Optional[float] = Field(None, ge=0)
    answer_sheet: Optional[str] = Field(None, description="Opaque storage handle of an uploaded sheet")


class GradeRequest(BaseModel):
    score: float
    feedback: str = ""
    band_score: Optional[float] = Field(None, description="Explicit IELTS reading band")
    criteria: Dict[str, float] = Field(default_factory=dict, description="IELTS writing or speaking band per criterion")


# Service providers, populated on application startup
def get_hierarchy(request: Request) -> ContentHierarchy:
    return request.app.state.hierarchy


def get_lifecycle(request: Request) -> SubmissionLifecycle:
    return request.app.state.lifecycle


def get_aggregator(request: Request) -> ScoringAggregator:
    return request.app.state.aggregator


# --- Content ---

@router.get("/tests")
async def list_tests(
    family: Optional[str] = None,
    limit: int = Query(50, gt=0, le=200),
    offset: int = Query(0, ge=0),
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    """List tests, newest first."""
    tests, total = await hierarchy.list_tests(family, limit=limit, offset=offset)
    return APIResponse.success({"items": serialize(tests), "total": total, "limit": limit, "offset": offset})


@router.post("/tests", status_code=status.HTTP_201_CREATED)
async def create_test(
    payload: CreateTestRequest,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    test = await hierarchy.create_test(caller, **payload.model_dump())
    return APIResponse.success(serialize(test), "Test created")


@router.get("/tests/{test_id}")
async def get_test(
    test_id: str,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    """A test with its sections and their questions."""
    tree = await hierarchy.get_test_tree(test_id)
    return APIResponse.success(serialize(tree))


@router.delete("/tests/{test_id}")
async def delete_test(
    test_id: str,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    """Delete a test together with its sections and questions."""
    await hierarchy.delete_test(caller, test_id)
    return APIResponse.success({"id": test_id}, "Test deleted")


@router.post("/tests/{test_id}/sections/{section_id}")
async def add_section(
    test_id: str,
    section_id: str,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    test = await hierarchy.add_section(caller, test_id, section_id)
    return APIResponse.success(serialize(test), "Section added")


@router.delete("/tests/{test_id}/sections/{section_id}")
async def remove_section(
    test_id: str,
    section_id: str,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    test = await hierarchy.remove_section(caller, test_id, section_id)
    return APIResponse.success(serialize(test), "Section removed")


@router.put("/tests/{test_id}/order")
async def reorder_sections(
    test_id: str,
    payload: ReorderRequest,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    test = await hierarchy.reorder_sections(caller, test_id, payload.order)
    return APIResponse.success(serialize(test), "Sections reordered")


@router.post("/sections", status_code=status.HTTP_201_CREATED)
async def create_section(
    payload: CreateSectionRequest,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    section = await hierarchy.create_section(caller, **payload.model_dump())
    return APIResponse.success(serialize(section), "Section created")


@router.post("/sections/{section_id}/questions/{question_id}")
async def add_question(
    section_id: str,
    question_id: str,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    section = await hierarchy.add_question(caller, section_id, question_id)
    return APIResponse.success(serialize(section), "Question added")


@router.delete("/sections/{section_id}/questions/{question_id}")
async def remove_question(
    section_id: str,
    question_id: str,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    section = await hierarchy.remove_question(caller, section_id, question_id)
    return APIResponse.success(serialize(section), "Question removed")


@router.put("/sections/{section_id}/order")
async def reorder_questions(
    section_id: str,
    payload: ReorderRequest,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    section = await hierarchy.reorder_questions(caller, section_id, payload.order)
    return APIResponse.success(serialize(section), "Questions reordered")


@router.put("/children/{parent_id}/order")
async def reorder_children(
    parent_id: str,
    payload: ReorderRequest,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    """Reorder the children of whichever test or section ``parent_id`` names."""
    parent = await hierarchy.reorder_children(caller, parent_id, payload.order)
    return APIResponse.success(serialize(parent), "Children reordered")


@router.post("/questions", status_code=status.HTTP_201_CREATED)
async def create_question(
    payload: CreateQuestionRequest,
    caller: Principal = Depends(get_current_principal),
    hierarchy: ContentHierarchy = Depends(get_hierarchy)
):
    question = await hierarchy.create_question(caller, **payload.model_dump())
    return APIResponse.success(serialize(question), "Question created")


# --- Submissions ---

@router.post("/tests/{test_id}/submissions", status_code=status.HTTP_201_CREATED)
async def submit_answers(
    test_id: str,
    payload: SubmitRequest,
    caller: Principal = Depends(get_current_principal),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    submission = await lifecycle.submit(
        caller.id,
        test_id,
        [answer.model_dump() for answer in payload.answers],
        completion_time_minutes=payload.completion_time_minutes,
        answer_sheet=payload.answer_sheet
    )
    return APIResponse.success(serialize(submission), "Submission received")


@router.get("/submissions")
async def list_submissions(
    status_filter: Optional[str] = Query(None, alias="status", description="pending for the grading queue"),
    family: Optional[str] = None,
    limit: int = Query(50, gt=0, le=200),
    offset: int = Query(0, ge=0),
    caller: Principal = Depends(get_current_principal),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    """Submissions across learners, for graders."""
    submissions = await lifecycle.list_submissions(
        caller, family=family, status=status_filter, limit=limit, offset=offset
    )
    return APIResponse.success(serialize(submissions))


@router.get("/submissions/mine")
async def my_submissions(
    family: Optional[str] = None,
    user_id: Optional[str] = Query(None, description="Admins only: another user's history"),
    limit: int = Query(50, gt=0, le=200),
    offset: int = Query(0, ge=0),
    caller: Principal = Depends(get_current_principal),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    submissions = await lifecycle.list_user_submissions(
        caller, user_id=user_id, family=family, limit=limit, offset=offset
    )
    return APIResponse.success(serialize(submissions))


@router.get("/submissions/{submission_id}")
async def get_submission(
    submission_id: str,
    caller: Principal = Depends(get_current_principal),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    submission = await lifecycle.get_submission(submission_id, caller)
    return APIResponse.success(serialize(submission))


@router.post("/submissions/{submission_id}/grade")
async def grade_submission(
    submission_id: str,
    payload: GradeRequest,
    caller: Principal = Depends(get_current_principal),
    lifecycle: SubmissionLifecycle = Depends(get_lifecycle)
):
    submission = await lifecycle.grade_submission(
        caller, submission_id, payload.score, payload.feedback, payload.band_score, payload.criteria
    )
    return APIResponse.success(serialize(submission), "Submission graded")


# --- Statistics ---

@router.get("/stats")
async def get_stats(
    family: Optional[str] = None,
    caller: Principal = Depends(get_current_principal),
    aggregator: ScoringAggregator = Depends(get_aggregator)
):
    """Per-family statistics and the dashboard totals."""
    ensure_allowed(can_view_stats(caller), "view", "statistics")
    report = await aggregator.get_stats(family)
    return APIResponse.success(serialize(report))


@router.get("/stats/distribution")
async def get_distribution(
    request: Request,
    family: Optional[str] = None,
    buckets: Optional[List[float]] = Query(None, description="Bucket edges, e.g. buckets=0&buckets=50&buckets=100"),
    caller: Principal = Depends(get_current_principal),
    aggregator: ScoringAggregator = Depends(get_aggregator)
):
    ensure_allowed(can_view_stats(caller), "view", "statistics")
    edges = buckets or request.app.state.settings.SCORE_BUCKETS
    distribution = await aggregator.get_distribution(edges, family)
    return APIResponse.success(distribution)


@router.get("/activity")
async def get_activity(
    request: Request,
    limit: Optional[int] = Query(None, ge=0, le=100),
    caller: Principal = Depends(get_current_principal),
    aggregator: ScoringAggregator = Depends(get_aggregator)
):
    """Most recent submissions across all families."""
    ensure_allowed(can_view_stats(caller), "view", "recent activity")
    if limit is None:
        limit = request.app.state.settings.RECENT_ACTIVITY_LIMIT
    submissions = await aggregator.get_recent_activity(limit)
    return APIResponse.success(serialize(submissions))


logger.info(f"Exam router loaded with {len(router.routes)} routes")

__all__ = ['router']
