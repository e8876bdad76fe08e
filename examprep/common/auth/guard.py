"""
Authorization Guard

Pure decision functions answering "may this principal view, grade or
modify this entity". None of them perform I/O; callers load the entity
first and pass it in.
"""

from typing import Iterable, Optional

from examprep.common.auth.user import Principal
from examprep.common.exceptions import ForbiddenError


def can_view(submission, caller: Principal) -> bool:
    """A submission is visible to admins and to the learner who made it."""
    return caller.is_admin or caller.id == submission.user_id


def can_grade(caller: Principal) -> bool:
    """Only admins grade."""
    return caller.is_admin


def can_modify_content(
    caller: Principal,
    item=None,
    creator_edit_families: Optional[Iterable[str]] = None
) -> bool:
    """
    Content authoring is admin-only.

    When ``item`` belongs to a family listed in ``creator_edit_families`` its
    creator is allowed as well. The list is empty unless configured, so by
    default ownership grants nothing beyond the role.
    """
    if caller.is_admin:
        return True
    if item is None or not creator_edit_families:
        return False
    family = getattr(item.family, "value", item.family)
    return family in set(creator_edit_families) and item.created_by == caller.id


def can_create_content(
    caller: Principal,
    family=None,
    creator_edit_families: Optional[Iterable[str]] = None
) -> bool:
    """
    New content is admin-only, except in families that grant creator edit
    rights, where any authenticated user may author (and then owns) it.
    """
    if caller.is_admin:
        return True
    if family is None or not creator_edit_families:
        return False
    return getattr(family, "value", family) in set(creator_edit_families)


def can_view_stats(caller: Principal) -> bool:
    """Statistics and the activity feed are admin views."""
    return caller.is_admin


def ensure_allowed(allowed: bool, action: str, resource: Optional[str] = None) -> None:
    """
    Raise ForbiddenError unless ``allowed``.

    Args:
        allowed: Result of one of the predicates above
        action: Verb phrase for the error message, e.g. "grade"
        resource: Optional resource description
    """
    if not allowed:
        raise ForbiddenError(action, resource)


__all__ = [
    'can_view',
    'can_grade',
    'can_create_content',
    'can_modify_content',
    'can_view_stats',
    'ensure_allowed',
]
