"""Integration tests for the test catalog endpoints."""

import uuid

from lms.db.models import QuestionTypeEnum

from _helpers import auth_for, multiple_choice, single_choice, text_question


def test_list_only_published(client, student, make_test):
    published = make_test([single_choice(0)], title="Published")
    make_test([single_choice(0)], title="Draft", is_published=False)

    resp = client.get("/api/tests/", headers=auth_for(student))
    assert resp.status_code == 200
    rows = resp.json()
    assert [r["id"] for r in rows] == [str(published.id)]
    assert rows[0]["question_count"] == 1
    assert rows[0]["total_marks"] == 2


def test_get_test_hides_key(client, student, make_test):
    test = make_test([multiple_choice({1, 3}), text_question("42", qtype=QuestionTypeEnum.NUMERICAL)])
    resp = client.get(f"/api/tests/{test.id}", headers=auth_for(student))
    assert resp.status_code == 200
    body = resp.json()
    assert "is_correct" not in resp.text
    assert body["questions"][0]["options"][1] == {"index": 1, "text": "Option 1", "image_url": None}
    assert body["questions"][1]["options"] == []


def test_missing_test(client, student):
    resp = client.get(f"/api/tests/{uuid.uuid4()}", headers=auth_for(student))
    assert resp.status_code == 404


def test_answer_key_admin_only(client, student, admin, make_test):
    test = make_test([single_choice(2), text_question("Kigali", "kigali city")])

    assert client.get(f"/api/tests/{test.id}/answer-key", headers=auth_for(student)).status_code == 403

    resp = client.get(f"/api/tests/{test.id}/answer-key", headers=auth_for(admin))
    assert resp.status_code == 200
    entries = resp.json()["entries"]
    assert entries[0]["correct_options"] == [2]
    assert entries[1]["accepted_answers"] == ["Kigali", "kigali city"]


def test_answer_key_reports_broken_questions(client, admin, make_test):
    test = make_test([single_choice(0), dict(single_choice(0), options=[{"text": "a"}, {"text": "b"}])])
    resp = client.get(f"/api/tests/{test.id}/answer-key", headers=auth_for(admin))
    assert resp.status_code == 409


def test_bad_token(client, make_test):
    test = make_test([single_choice(0)])
    resp = client.get(f"/api/tests/{test.id}", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "healthy", "service": "lms-attempts"}
