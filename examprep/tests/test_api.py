"""
API tests for the exam endpoints, run against the in-memory backend.
"""

import pytest
from fastapi.testclient import TestClient

from examprep.config import Settings
from examprep.main import create_app

API = "/api/v1/exams"
ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
LEARNER = {"X-User-Id": "learner-1", "X-User-Role": "user"}
OTHER_LEARNER = {"X-User-Id": "learner-2", "X-User-Role": "user"}


@pytest.fixture
def client():
    app = create_app(Settings(REPOSITORY_BACKEND="memory", CREATOR_EDIT_FAMILIES=[]))
    with TestClient(app) as test_client:
        yield test_client


def _create_listening_test(client, sections=1):
    return _create_test(client, "ielts_listening", sections)


def _create_test(client, family, sections=1):
    """Compose a test through the API and return its tree."""
    section_ids = []
    for s in range(sections):
        question = client.post(
            f"{API}/questions",
            json={"family": family, "prompt": f"Question {s}", "options": ["A", "B"], "correct_answers": ["A"]},
            headers=ADMIN
        )
        assert question.status_code == 201
        section = client.post(
            f"{API}/sections",
            json={"family": family, "title": f"Part {s + 1}", "question_ids": [question.json()["data"]["id"]]},
            headers=ADMIN
        )
        assert section.status_code == 201
        section_ids.append(section.json()["data"]["id"])

    test = client.post(
        f"{API}/tests",
        json={"family": family, "title": "Practice Test", "section_ids": section_ids},
        headers=ADMIN
    )
    assert test.status_code == 201
    return client.get(f"{API}/tests/{test.json()['data']['id']}", headers=LEARNER).json()["data"]


def _submit(client, tree, headers=LEARNER):
    question_id = tree["sections"][0]["questions"][0]["id"]
    response = client.post(
        f"{API}/tests/{tree['id']}/submissions",
        json={"answers": [{"question_id": question_id, "value": "A"}], "completion_time_minutes": 28},
        headers=headers
    )
    assert response.status_code == 201
    return response.json()["data"]


class TestRoot:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "ExamPrep" in response.json()["message"]


class TestContentEndpoints:
    """Composing and reading tests."""

    def test_compose_and_read_tree(self, client):
        tree = _create_listening_test(client, sections=2)

        assert tree["family"] == "ielts_listening"
        assert len(tree["sections"]) == 2
        assert tree["section_ids"] == [s["id"] for s in tree["sections"]]
        assert tree["sections"][0]["questions"][0]["prompt"] == "Question 0"

    def test_list_tests(self, client):
        _create_listening_test(client)

        response = client.get(f"{API}/tests", params={"family": "ielts_listening"}, headers=LEARNER)

        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1

    def test_missing_identity(self, client):
        response = client.get(f"{API}/tests")
        assert response.status_code == 401

    def test_learner_cannot_create(self, client):
        response = client.post(
            f"{API}/questions",
            json={"family": "ielts_listening", "prompt": "Q"},
            headers=LEARNER
        )
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_unknown_test(self, client):
        response = client.get(f"{API}/tests/missing", headers=LEARNER)
        assert response.status_code == 404
        assert response.json()["status"] == "error"

    def test_reorder(self, client):
        tree = _create_listening_test(client, sections=2)
        new_order = list(reversed(tree["section_ids"]))

        response = client.put(f"{API}/tests/{tree['id']}/order", json={"order": new_order}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["data"]["section_ids"] == new_order

    def test_reorder_rejects_non_permutation(self, client):
        tree = _create_listening_test(client, sections=2)

        response = client.put(
            f"{API}/tests/{tree['id']}/order",
            json={"order": tree["section_ids"][:1]},
            headers=ADMIN
        )

        assert response.status_code == 422
        assert response.json()["code"] == "invariant_violation"

    def test_reorder_children_of_section(self, client):
        tree = _create_listening_test(client)
        section = tree["sections"][0]

        response = client.put(
            f"{API}/children/{section['id']}/order",
            json={"order": section["question_ids"]},
            headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["data"]["id"] == section["id"]

    def test_duplicate_membership_conflict(self, client):
        tree = _create_listening_test(client)
        section_id = tree["section_ids"][0]

        response = client.post(f"{API}/tests/{tree['id']}/sections/{section_id}", headers=ADMIN)

        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "DuplicateMember"

    def test_delete_test(self, client):
        tree = _create_listening_test(client)

        assert client.delete(f"{API}/tests/{tree['id']}", headers=ADMIN).status_code == 200
        assert client.get(f"{API}/tests/{tree['id']}", headers=ADMIN).status_code == 404


class TestSubmissionEndpoints:
    """Submitting, grading and viewing."""

    def test_submit_and_grade_once(self, client):
        tree = _create_listening_test(client)
        submission = _submit(client, tree)
        assert submission["status"] == "pending"

        graded = client.post(
            f"{API}/submissions/{submission['id']}/grade",
            json={"score": 75, "feedback": "Well done"},
            headers=ADMIN
        )
        assert graded.status_code == 200
        assert graded.json()["data"]["status"] == "graded"
        assert graded.json()["data"]["score"] == 75

        again = client.post(
            f"{API}/submissions/{submission['id']}/grade",
            json={"score": 40},
            headers=ADMIN
        )
        assert again.status_code == 409
        assert again.json()["details"]["reason"] == "AlreadyGraded"

        stored = client.get(f"{API}/submissions/{submission['id']}", headers=LEARNER)
        assert stored.json()["data"]["score"] == 75

    def test_learner_cannot_grade(self, client):
        tree = _create_listening_test(client)
        submission = _submit(client, tree)

        response = client.post(
            f"{API}/submissions/{submission['id']}/grade",
            json={"score": 90},
            headers=LEARNER
        )

        assert response.status_code == 403

    def test_out_of_range_grade(self, client):
        tree = _create_listening_test(client)
        submission = _submit(client, tree)

        response = client.post(
            f"{API}/submissions/{submission['id']}/grade",
            json={"score": 120},
            headers=ADMIN
        )

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_other_learner_cannot_view(self, client):
        tree = _create_listening_test(client)
        submission = _submit(client, tree)

        response = client.get(f"{API}/submissions/{submission['id']}", headers=OTHER_LEARNER)

        assert response.status_code == 403

    def test_unknown_question_in_answers(self, client):
        tree = _create_listening_test(client)

        response = client.post(
            f"{API}/tests/{tree['id']}/submissions",
            json={"answers": [{"question_id": "not-in-test", "value": "A"}]},
            headers=LEARNER
        )

        assert response.status_code == 404

    def test_my_submissions(self, client):
        tree = _create_listening_test(client)
        _submit(client, tree)
        _submit(client, tree)
        _submit(client, tree, headers=OTHER_LEARNER)

        response = client.get(f"{API}/submissions/mine", headers=LEARNER)

        assert response.status_code == 200
        assert len(response.json()["data"]) == 2

    def test_grading_queue(self, client):
        tree = _create_listening_test(client)
        graded = _submit(client, tree)
        _submit(client, tree, headers=OTHER_LEARNER)
        client.post(f"{API}/submissions/{graded['id']}/grade", json={"score": 70}, headers=ADMIN)

        response = client.get(f"{API}/submissions", params={"status": "pending"}, headers=ADMIN)

        assert response.status_code == 200
        queue = response.json()["data"]
        assert [s["user_id"] for s in queue] == ["learner-2"]
        assert client.get(f"{API}/submissions", headers=LEARNER).status_code == 403
        assert client.get(f"{API}/submissions", params={"status": "lost"}, headers=ADMIN).status_code == 422

    def test_grade_with_criteria(self, client):
        tree = _create_test(client, "ielts_writing")
        submission = _submit(client, tree)

        response = client.post(
            f"{API}/submissions/{submission['id']}/grade",
            json={"score": 6.5, "criteria": {"task_achievement": 6, "lexical_resource": 7.2}},
            headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["data"]["criteria"] == {"task_achievement": 6.0, "lexical_resource": 7.0}

    def test_unknown_criterion_rejected(self, client):
        tree = _create_test(client, "ielts_speaking")
        submission = _submit(client, tree)

        response = client.post(
            f"{API}/submissions/{submission['id']}/grade",
            json={"score": 7, "criteria": {"task_achievement": 7}},
            headers=ADMIN
        )

        assert response.status_code == 422
        assert response.json()["details"]["field"] == "criteria"


class TestStatsEndpoints:
    """Admin dashboards."""

    def test_stats(self, client):
        tree = _create_listening_test(client)
        for score in (60, 80):
            submission = _submit(client, tree)
            client.post(f"{API}/submissions/{submission['id']}/grade", json={"score": score}, headers=ADMIN)

        response = client.get(f"{API}/stats", params={"family": "ielts_listening"}, headers=ADMIN)

        assert response.status_code == 200
        stats = response.json()["data"]["families"]["ielts_listening"]
        assert stats["average_score"] == 70.0
        assert stats["graded_count"] == 2
        assert stats["scale"] == "percentage"

    def test_distribution_uses_default_buckets(self, client):
        tree = _create_listening_test(client)
        submission = _submit(client, tree)
        client.post(f"{API}/submissions/{submission['id']}/grade", json={"score": 55}, headers=ADMIN)

        response = client.get(f"{API}/stats/distribution", headers=ADMIN)

        assert response.status_code == 200
        buckets = response.json()["data"]
        assert len(buckets) == 5
        assert buckets[2] == {"lower": 40.0, "upper": 60.0, "count": 1}

    def test_activity(self, client):
        tree = _create_listening_test(client)
        _submit(client, tree)

        response = client.get(f"{API}/activity", params={"limit": 5}, headers=ADMIN)

        assert response.status_code == 200
        assert len(response.json()["data"]) == 1

    @pytest.mark.parametrize("path", ["/stats", "/stats/distribution", "/activity"])
    def test_learners_cannot_see_dashboards(self, client, path):
        response = client.get(f"{API}{path}", headers=LEARNER)
        assert response.status_code == 403
