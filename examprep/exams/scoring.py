"""
Scoring Aggregator

Per-family score normalization and statistics.

Scores live on three scales (percentage, IELTS band, PTE points) and are
never averaged across scales. Statistics are computed per family; where a
single figure per scale is wanted, the family averages are combined as an
unweighted mean of means. Bucketed distributions use percentage
equivalents so every family fits the same buckets.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from examprep.common.exceptions import ValidationError
from examprep.common.logger import app_logger
from examprep.common.serialization import SerializableMixin
from examprep.exams.families import ExamFamily, ScoreScale, get_profile
from examprep.exams.models import Submission, SubmissionStatus
from examprep.exams.repositories import ContentRepository, SubmissionRepository
from examprep.exams.validation import require_number, validate_buckets

logger = app_logger.getChild("exams.scoring")


@dataclass(frozen=True)
class NormalizedScore(SerializableMixin):
    """A raw score tagged with its scale and its 0-100 equivalent."""

    __serializable_fields__ = ["value", "scale", "percentage"]

    value: float
    scale: ScoreScale
    percentage: float


@dataclass
class FamilyStats(SerializableMixin):
    """Submission statistics for one family."""

    __serializable_fields__ = [
        "family", "scale", "total_submissions", "pending_count", "graded_count",
        "average_score", "completion_rate", "highest_score", "lowest_score",
        "average_completion_time"
    ]

    family: Optional[ExamFamily]
    scale: Optional[ScoreScale]
    total_submissions: int = 0
    pending_count: int = 0
    graded_count: int = 0
    average_score: float = 0.0
    completion_rate: float = 0.0
    highest_score: Optional[float] = None
    lowest_score: Optional[float] = None
    average_completion_time: float = 0.0


@dataclass
class StatsReport(SerializableMixin):
    """
    Statistics across one or all families.

    ``scale_averages`` maps each scale to the mean of the average scores of
    the families on that scale that have graded submissions.
    """

    __serializable_fields__ = [
        "families", "scale_averages", "total_tests", "total_submissions",
        "pending_submissions", "active_users"
    ]

    families: Dict[str, FamilyStats] = field(default_factory=dict)
    scale_averages: Dict[str, float] = field(default_factory=dict)
    total_tests: Dict[str, int] = field(default_factory=dict)
    total_submissions: int = 0
    pending_submissions: int = 0
    active_users: int = 0


def _mean(values: Sequence[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0


def normalize(raw_score: Any, family: Any) -> NormalizedScore:
    """
    Tag a raw score with its family's scale.

    Raises:
        ValidationError: If the score is not a number or is outside the scale
    """
    profile = get_profile(family)
    value = require_number(raw_score, "score")
    scale_range = profile.score_range
    if not scale_range.contains(value):
        raise ValidationError(
            f"Score {value:g} is outside the {profile.scale.value} scale",
            field="score",
            details={"score": value, "family": profile.family.value}
        )
    return NormalizedScore(
        value=value,
        scale=profile.scale,
        percentage=round(value / scale_range.maximum * 100, 2)
    )


def aggregate_stats(submissions: Iterable[Submission], family: Optional[Any] = None) -> FamilyStats:
    """
    Summarize submissions of a single family.

    ``completion_rate`` is the mean number of submissions per distinct
    submitting user. Averages are 0 when nothing is graded.

    Raises:
        ValidationError: If the submissions span more than one family
    """
    submissions = list(submissions)
    families = {s.family for s in submissions}
    if family is not None:
        families.add(ExamFamily.parse(family))
    if len(families) > 1:
        raise ValidationError(
            "Statistics are computed per family; got "
            + ", ".join(sorted(f.value for f in families)),
            field="family"
        )
    resolved = next(iter(families)) if families else None

    graded = [s.score for s in submissions if s.status == SubmissionStatus.GRADED and s.score is not None]
    times = [s.completion_time_minutes for s in submissions if s.completion_time_minutes is not None]
    users = {s.user_id for s in submissions}

    return FamilyStats(
        family=resolved,
        scale=get_profile(resolved).scale if resolved else None,
        total_submissions=len(submissions),
        pending_count=sum(1 for s in submissions if s.status == SubmissionStatus.PENDING),
        graded_count=len(graded),
        average_score=_mean(graded),
        completion_rate=round(len(submissions) / len(users), 2) if users else 0.0,
        highest_score=max(graded) if graded else None,
        lowest_score=min(graded) if graded else None,
        average_completion_time=_mean(times)
    )


def combine_averages(stats: Iterable[FamilyStats]) -> Dict[str, float]:
    """Unweighted mean of family averages, one figure per scale."""
    by_scale: Dict[str, List[float]] = defaultdict(list)
    for item in stats:
        if item.graded_count and item.scale is not None:
            by_scale[item.scale.value].append(item.average_score)
    return {scale: _mean(values) for scale, values in by_scale.items()}


def score_distribution(submissions: Iterable[Submission], buckets: Sequence[Any]) -> List[Dict[str, Any]]:
    """
    Count graded submissions into percentage buckets.

    ``buckets`` are edges: ``[0, 20, 40]`` means ``[0, 20]`` and ``(20, 40]``.
    Scores outside every bucket are not counted.
    """
    ranges = validate_buckets(buckets)
    counts = [0] * len(ranges)

    for submission in submissions:
        if submission.status != SubmissionStatus.GRADED or submission.score is None:
            continue
        percentage = normalize(submission.score, submission.family).percentage
        for index, (lower, upper) in enumerate(ranges):
            above_lower = percentage >= lower if index == 0 else percentage > lower
            if above_lower and percentage <= upper:
                counts[index] += 1
                break

    return [
        {"lower": lower, "upper": upper, "count": count}
        for (lower, upper), count in zip(ranges, counts)
    ]


def _check_limit(limit: Any) -> None:
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise ValidationError("limit must be a non-negative integer", field="limit")


def recent_activity(streams: Iterable[Iterable[Submission]], limit: int) -> List[Submission]:
    """
    Merge submission streams, newest first, ties broken by id, and truncate.
    """
    _check_limit(limit)
    merged = [s for stream in streams for s in stream]
    merged.sort(key=lambda s: s.id)
    merged.sort(key=lambda s: s.submitted_at, reverse=True)
    return merged[:limit]


class ScoringAggregator:
    """
    Statistics over the stored submissions.

    Args:
        content: Content repository, for test counts
        submissions: Submission repository
    """

    def __init__(self, content: ContentRepository, submissions: SubmissionRepository):
        self.content = content
        self.submissions = submissions

    async def get_stats(self, family: Optional[Any] = None) -> StatsReport:
        """
        Build the statistics report for one family, or all of them.
        """
        families = [ExamFamily.parse(family)] if family is not None else list(ExamFamily)
        report = StatsReport()
        users = set()

        for item in families:
            submissions = await self.submissions.find(family=item)
            stats = aggregate_stats(submissions, item)
            report.families[item.value] = stats
            report.total_tests[item.value] = await self.content.count_tests(item)
            report.total_submissions += stats.total_submissions
            report.pending_submissions += stats.pending_count
            users.update(s.user_id for s in submissions)

        report.scale_averages = combine_averages(report.families.values())
        report.active_users = len(users)
        logger.debug(f"Built stats report for {len(families)} families")
        return report

    async def get_distribution(
        self,
        buckets: Sequence[Any],
        family: Optional[Any] = None
    ) -> List[Dict[str, Any]]:
        """Score distribution over one family or all of them."""
        family = ExamFamily.parse(family) if family is not None else None
        submissions = await self.submissions.find(family=family, status=SubmissionStatus.GRADED)
        return score_distribution(submissions, buckets)

    async def get_recent_activity(self, limit: int) -> List[Submission]:
        """The newest submissions across all families."""
        _check_limit(limit)
        streams = [await self.submissions.find(family=item, limit=limit) for item in ExamFamily]
        return recent_activity(streams, limit)
