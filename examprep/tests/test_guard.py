"""
Tests for the authorization predicates.
"""

import pytest

from examprep.common.auth import (
    Principal,
    UserRole,
    can_create_content,
    can_grade,
    can_modify_content,
    can_view,
    can_view_stats,
    ensure_allowed
)
from examprep.common.exceptions import ForbiddenError
from examprep.exams.models import Submission, Test


@pytest.fixture
def submission():
    return Submission.create("ielts_writing", "learner-1", "test-1", [])


class TestViewAndGrade:

    def test_owner_can_view(self, submission, learner):
        assert can_view(submission, learner)

    def test_other_user_cannot_view(self, submission, other_learner):
        assert not can_view(submission, other_learner)

    def test_admin_can_view(self, submission, admin):
        assert can_view(submission, admin)

    def test_only_admin_grades(self, admin, learner):
        assert can_grade(admin)
        assert not can_grade(learner)

    def test_only_admin_sees_stats(self, admin, learner):
        assert can_view_stats(admin)
        assert not can_view_stats(learner)


class TestContentRights:

    def test_admin_only_by_default(self, admin, learner):
        test = Test.create("pte_reading", "Mock", learner.id)
        assert can_modify_content(admin, test)
        assert not can_modify_content(learner, test)
        assert not can_create_content(learner, "pte_reading")

    def test_creator_rights_when_enabled(self, learner, other_learner):
        test = Test.create("pte_reading", "Mock", learner.id)
        families = ["pte_reading"]
        assert can_modify_content(learner, test, families)
        assert not can_modify_content(other_learner, test, families)
        assert can_create_content(learner, "pte_reading", families)

    def test_creator_rights_limited_to_listed_families(self, learner):
        test = Test.create("ielts_reading", "Mock", learner.id)
        assert not can_modify_content(learner, test, ["pte_reading"])
        assert not can_create_content(learner, "ielts_reading", ["pte_reading"])


class TestEnsureAllowed:

    def test_raises_forbidden(self):
        with pytest.raises(ForbiddenError) as exc_info:
            ensure_allowed(False, "grade", "submission s-1")
        assert exc_info.value.action == "grade"

    def test_passes_when_allowed(self):
        ensure_allowed(True, "grade")


class TestPrincipal:

    def test_role_coerced_from_string(self):
        principal = Principal(id="u-1", role="ADMIN")
        assert principal.role is UserRole.ADMIN
        assert principal.is_admin

    def test_unknown_role_rejected(self):
        with pytest.raises(ValueError):
            Principal(id="u-1", role="superuser")
