"""
Exam Validation

Explicit validation functions run by the services before any write. They
are pure: no persistence access, no side effects, only a return value or a
raised domain error.
"""

import math
from collections import Counter
from numbers import Real
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from examprep.common.exceptions import InvariantError, ValidationError
from examprep.exams.families import ExamFamily, FamilyProfile, ScoreScale, SCALE_RANGES, get_profile
from examprep.exams.models import Answer, Section


def round_to_half(value: float) -> float:
    """Round to the nearest 0.5, halves rounding up (6.25 -> 6.5)."""
    return math.floor(value * 2 + 0.5) / 2


def require_text(value: Optional[str], field: str) -> str:
    """Reject missing or blank text fields."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


def require_number(value: Any, field: str) -> float:
    """Reject anything that is not a finite real number (booleans included)."""
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ValidationError(f"{field} must be a number", field=field)
    value = float(value)
    if not math.isfinite(value):
        raise ValidationError(f"{field} must be finite", field=field)
    return value


def ensure_unique(ids: Sequence[str], kind: str) -> None:
    """A child list may not name the same id twice."""
    duplicates = sorted(i for i, n in Counter(ids).items() if n > 1)
    if duplicates:
        raise InvariantError(
            f"Duplicate {kind} ids: {', '.join(duplicates)}",
            details={"duplicates": duplicates}
        )


def validate_permutation(current: Sequence[str], new_order: Sequence[str], kind: str) -> List[str]:
    """
    Check that ``new_order`` is exactly a reordering of ``current``.

    Returns:
        The new order as a list

    Raises:
        InvariantError: If any id was added, removed, repeated or is foreign
    """
    new_order = list(new_order)
    if Counter(new_order) != Counter(current):
        added = sorted(set(new_order) - set(current))
        missing = sorted(set(current) - set(new_order))
        raise InvariantError(
            f"New {kind} order must be a permutation of the current {kind} ids",
            details={"added": added, "missing": missing, "expected_count": len(current)}
        )
    return new_order


def check_section_count(profile: FamilyProfile, count: int) -> None:
    """A full section list must respect the family's bounds."""
    if profile.max_sections is not None and count > profile.max_sections:
        raise InvariantError(
            f"A {profile.family.value} test can have at most {profile.max_sections} sections",
            details={"count": count, "max_sections": profile.max_sections}
        )
    if count < profile.min_sections:
        raise InvariantError(
            f"A {profile.family.value} test needs at least {profile.min_sections} sections",
            details={"count": count, "min_sections": profile.min_sections}
        )


def check_can_add_section(profile: FamilyProfile, current_count: int) -> None:
    if profile.max_sections is not None and current_count + 1 > profile.max_sections:
        raise InvariantError(
            f"A {profile.family.value} test can have at most {profile.max_sections} sections",
            details={"count": current_count, "max_sections": profile.max_sections}
        )


def check_can_remove_section(profile: FamilyProfile, current_count: int) -> None:
    if current_count - 1 < profile.min_sections:
        raise InvariantError(
            f"A {profile.family.value} test needs at least {profile.min_sections} sections",
            details={"count": current_count, "min_sections": profile.min_sections}
        )


def check_question_count(profile: FamilyProfile, section: Section, count: int) -> None:
    """Capped families may not hold more questions than the section declares."""
    if profile.capped_questions and section.question_count is not None and count > section.question_count:
        raise InvariantError(
            f"Section {section.id} holds at most {section.question_count} questions",
            details={"count": count, "question_count": section.question_count}
        )


def check_same_family(parent_family: ExamFamily, child_family: ExamFamily, kind: str) -> None:
    if parent_family != child_family:
        raise InvariantError(
            f"Cannot attach a {child_family.value} {kind} to a {parent_family.value} parent",
            details={"parent_family": parent_family.value, "child_family": child_family.value}
        )


def validate_score(family: Union[str, ExamFamily], score: Any) -> float:
    """
    Validate a grade against the family's scale and normalize it.

    Band scores inside the range are rounded to the nearest half band;
    PTE scores must be whole numbers.

    Raises:
        ValidationError: If the score is not a number or is out of range
    """
    profile = get_profile(family)
    value = require_number(score, "score")
    scale_range = profile.score_range

    if not scale_range.contains(value):
        raise ValidationError(
            f"Score for {profile.family.value} must be between "
            f"{scale_range.minimum:g} and {scale_range.maximum:g}",
            field="score",
            details={"score": value, "scale": profile.scale.value}
        )

    if scale_range.integral and not value.is_integer():
        raise ValidationError(
            f"Score for {profile.family.value} must be a whole number",
            field="score",
            details={"score": value}
        )

    if scale_range.step == 0.5:
        value = round_to_half(value)
    return value


def validate_band_score(band_score: Any, field: str = "band_score") -> float:
    """Validate an explicit IELTS band and round it to the nearest half band."""
    value = require_number(band_score, field)
    band_range = SCALE_RANGES[ScoreScale.BAND]
    if not band_range.contains(value):
        raise ValidationError(
            "Band score must be between 1 and 9",
            field=field,
            details={field: value}
        )
    return round_to_half(value)


def validate_criteria(family: Union[str, ExamFamily], criteria: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """
    Validate per-criterion bands for a grade.

    Only families with marking criteria accept them. A grader may score
    any subset of the family's criteria; each band is rounded like an
    explicit band score.

    Raises:
        ValidationError: On unknown criteria or out-of-range bands
    """
    if not criteria:
        return {}
    if not isinstance(criteria, dict):
        raise ValidationError("criteria must be a mapping of name to band", field="criteria")

    profile = get_profile(family)
    unknown = sorted(name for name in criteria if name not in profile.criteria)
    if unknown:
        raise ValidationError(
            f"Unknown marking criteria for {profile.family.value}: {', '.join(unknown)}",
            field="criteria",
            details={"unknown": unknown, "allowed": list(profile.criteria)}
        )

    return {
        name: validate_band_score(value, f"criteria.{name}")
        for name, value in criteria.items()
    }


def validate_answers(answers: Iterable[Any]) -> List[Answer]:
    """
    Normalize raw answers into Answer objects.

    Accepts Answer instances or mappings with ``question_id`` and ``value``.
    """
    if answers is None:
        raise ValidationError("answers are required", field="answers")

    result: List[Answer] = []
    for index, raw in enumerate(answers):
        if isinstance(raw, Answer):
            answer = raw
        elif isinstance(raw, dict):
            answer = Answer(question_id=raw.get("question_id"), value=raw.get("value"))
        else:
            raise ValidationError(f"Answer {index} must be an object", field="answers")

        if not answer.question_id or not isinstance(answer.question_id, str):
            raise ValidationError(f"Answer {index} is missing question_id", field="answers")
        result.append(answer)

    seen: Dict[str, int] = Counter(a.question_id for a in result)
    repeated = sorted(qid for qid, n in seen.items() if n > 1)
    if repeated:
        raise ValidationError(
            f"Questions answered more than once: {', '.join(repeated)}",
            field="answers",
            details={"question_ids": repeated}
        )
    return result


def validate_buckets(edges: Sequence[Any]) -> List[Tuple[float, float]]:
    """
    Turn bucket edges into (lower, upper) pairs.

    ``[0, 20, 40]`` becomes ``[(0, 20), (20, 40)]``.

    Raises:
        ValidationError: If fewer than two edges are given or they do not increase
    """
    values = [require_number(edge, "buckets") for edge in edges]
    if len(values) < 2:
        raise ValidationError("At least two bucket edges are required", field="buckets")
    if any(b <= a for a, b in zip(values, values[1:])):
        raise ValidationError("Bucket edges must be strictly increasing", field="buckets")
    return list(zip(values, values[1:]))
