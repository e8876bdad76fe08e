"""
Authentication and Authorization

Principal model for already-authenticated callers and the pure
authorization predicates used by the exam services.
"""

from examprep.common.auth.user import Principal, UserRole
from examprep.common.auth.guard import (
    can_view,
    can_grade,
    can_create_content,
    can_modify_content,
    can_view_stats,
    ensure_allowed
)

__all__ = [
    'Principal',
    'UserRole',
    'can_view',
    'can_grade',
    'can_create_content',
    'can_modify_content',
    'can_view_stats',
    'ensure_allowed',
]
