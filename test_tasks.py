from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from taskboard.ai.parsing import AISuggestion
from taskboard.database import get_db
from taskboard.main import app


def _create(client, headers, **fields):
    body = {"title": "Test"}
    body.update(fields)
    response = client.post("/api/tasks", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["task"]


def test_create_with_title_only_applies_defaults(client, alice):
    response = client.post("/api/tasks", json={"title": "Test"}, headers=alice)

    assert response.status_code == 201
    data = response.json()
    assert data["message"] == "Task created successfully"
    task = data["task"]
    assert task["title"] == "Test"
    assert task["description"] == ""
    assert task["status"] == "todo"
    assert task["priority"] == "medium"
    assert task["tags"] == []
    assert task["dueDate"] is None
    assert task["aiSuggested"] is False


@pytest.mark.parametrize("title", ["", "   ", "x" * 201])
def test_create_rejects_out_of_range_titles(client, alice, title):
    response = client.post("/api/tasks", json={"title": title}, headers=alice)

    assert response.status_code == 400
    assert "title" in response.json()["detail"]


@pytest.mark.parametrize("title", ["x", "x" * 200])
def test_create_accepts_boundary_titles(client, alice, title):
    response = client.post("/api/tasks", json={"title": title}, headers=alice)

    assert response.status_code == 201
    assert response.json()["task"]["title"] == title


def test_create_tag_limit(client, alice):
    ten = [f"tag{i}" for i in range(10)]

    ok = client.post("/api/tasks", json={"title": "Tagged", "tags": ten}, headers=alice)
    too_many = client.post("/api/tasks", json={"title": "Tagged", "tags": ten + ["extra"]}, headers=alice)

    assert ok.status_code == 201
    assert ok.json()["task"]["tags"] == ten
    assert too_many.status_code == 400
    assert too_many.json()["errors"][0]["field"] == "tags"


def test_create_rejects_invalid_enum_and_long_description(client, alice):
    bad_priority = client.post("/api/tasks", json={"title": "T", "priority": "urgent"}, headers=alice)
    bad_status = client.post("/api/tasks", json={"title": "T", "status": "done"}, headers=alice)
    long_description = client.post("/api/tasks", json={"title": "T", "description": "d" * 1001}, headers=alice)

    assert bad_priority.status_code == 400
    assert bad_status.status_code == 400
    assert long_description.status_code == 400
    assert bad_priority.json()["detail"].startswith("Validation error")


def test_create_then_fetch_round_trips_fields(client, alice):
    created = _create(
        client,
        alice,
        title="  Write report  ",
        description="Quarterly numbers",
        status="in_progress",
        priority="high",
        tags=[" work ", "reports"],
        dueDate="2030-05-01T10:00:00+02:00",
    )

    response = client.get(f"/api/tasks/{created['id']}", headers=alice)

    assert response.status_code == 200
    task = response.json()["task"]
    assert task["title"] == "Write report"
    assert task["description"] == "Quarterly numbers"
    assert task["status"] == "in_progress"
    assert task["priority"] == "high"
    assert task["tags"] == ["work", "reports"]
    assert datetime.fromisoformat(task["dueDate"]) == datetime.fromisoformat("2030-05-01T10:00:00+02:00")


def test_empty_due_date_is_treated_as_absent(client, alice):
    task = _create(client, alice, dueDate="")

    assert task["dueDate"] is None


def test_naive_due_date_is_stored_and_returned_as_utc(client, alice):
    created = _create(client, alice, dueDate="2030-05-01T10:00:00")

    task = client.get(f"/api/tasks/{created['id']}", headers=alice).json()["task"]

    assert datetime.fromisoformat(task["dueDate"]) == datetime(2030, 5, 1, 10, tzinfo=timezone.utc)
    assert datetime.fromisoformat(task["createdAt"]).tzinfo is not None
    assert datetime.fromisoformat(task["updatedAt"]).tzinfo is not None


def test_requests_without_session_are_unauthorized(client):
    assert client.get("/api/tasks").status_code == 401
    assert client.post("/api/tasks", json={"title": "T"}).status_code == 401
    assert client.get("/api/tasks/ai/suggestions").status_code == 401
    assert client.get("/api/tasks", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_owner_isolation(client, alice, bob):
    task = _create(client, alice, title="Alice only")
    body = {"title": "Hijacked"}

    assert client.get("/api/tasks", headers=bob).json()["tasks"] == []
    assert client.get(f"/api/tasks/{task['id']}", headers=bob).status_code == 404
    assert client.put(f"/api/tasks/{task['id']}", json=body, headers=bob).status_code == 404
    assert client.delete(f"/api/tasks/{task['id']}", headers=bob).status_code == 404

    still_there = client.get(f"/api/tasks/{task['id']}", headers=alice)
    assert still_there.status_code == 200
    assert still_there.json()["task"]["title"] == "Alice only"


def test_search_is_case_insensitive_substring(client, alice):
    _create(client, alice, title="Buy Milk")
    _create(client, alice, title="Call plumber", description="kitchen sink leaks")

    for term in ("milk", "MILK", "uy Mi"):
        titles = [t["title"] for t in client.get("/api/tasks", params={"search": term}, headers=alice).json()["tasks"]]
        assert titles == ["Buy Milk"]

    by_description = client.get("/api/tasks", params={"search": "SINK"}, headers=alice).json()["tasks"]
    assert [t["title"] for t in by_description] == ["Call plumber"]


def test_search_folds_case_beyond_ascii(client, alice):
    _create(client, alice, title="Ärger klären")
    _create(client, alice, title="Arger")

    for term in ("ärger", "ÄRGER", "KLÄREN"):
        titles = [t["title"] for t in client.get("/api/tasks", params={"search": term}, headers=alice).json()["tasks"]]
        assert titles == ["Ärger klären"]


def test_search_treats_wildcards_literally(client, alice):
    _create(client, alice, title="100% done")
    _create(client, alice, title="Nothing here")

    tasks = client.get("/api/tasks", params={"search": "%"}, headers=alice).json()["tasks"]

    assert [t["title"] for t in tasks] == ["100% done"]


def test_list_filters_and_ordering(client, alice):
    _create(client, alice, title="First", status="completed", priority="low")
    _create(client, alice, title="Second", status="todo", priority="high")
    _create(client, alice, title="Third", status="todo", priority="low")

    everything = client.get("/api/tasks", headers=alice).json()["tasks"]
    todo = client.get("/api/tasks", params={"status": "todo"}, headers=alice).json()["tasks"]
    low_todo = client.get("/api/tasks", params={"status": "todo", "priority": "low"}, headers=alice).json()["tasks"]
    unknown = client.get("/api/tasks", params={"status": "archived"}, headers=alice).json()["tasks"]

    assert [t["title"] for t in everything] == ["Third", "Second", "First"]
    assert [t["title"] for t in todo] == ["Third", "Second"]
    assert [t["title"] for t in low_todo] == ["Third"]
    assert len(unknown) == 3


def test_update_replaces_fields(client, alice):
    task = _create(client, alice, title="Draft", priority="high", tags=["a"])

    response = client.put(
        f"/api/tasks/{task['id']}",
        json={"title": "Final", "status": "completed"},
        headers=alice,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Task updated successfully"
    assert data["task"]["title"] == "Final"
    assert data["task"]["status"] == "completed"
    assert data["task"]["priority"] == "medium"
    assert data["task"]["tags"] == []
    assert data["task"]["id"] == task["id"]


def test_update_validates_payload(client, alice):
    task = _create(client, alice)

    response = client.put(f"/api/tasks/{task['id']}", json={"title": ""}, headers=alice)

    assert response.status_code == 400
    assert "title" in response.json()["detail"]


@pytest.mark.parametrize("body", [{"title": "Valid"}, {"title": ""}, {"priority": "nope"}, ["not", "an", "object"]])
def test_update_unknown_task_is_not_found_regardless_of_body(client, alice, body):
    response = client.put("/api/tasks/does-not-exist", json=body, headers=alice)

    assert response.status_code == 404
    assert response.json()["detail"] == "Task not found"


def test_update_unknown_task_with_malformed_json_is_not_found(client, alice):
    response = client.put(
        "/api/tasks/does-not-exist",
        content=b"{not json",
        headers={**alice, "Content-Type": "application/json"},
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Task not found"


def test_update_with_malformed_json_requires_session(client):
    response = client.put(
        "/api/tasks/does-not-exist",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 401


def test_update_existing_task_with_malformed_json_is_rejected(client, alice):
    task = _create(client, alice, title="Keep me")

    response = client.put(
        f"/api/tasks/{task['id']}",
        content=b"{not json",
        headers={**alice, "Content-Type": "application/json"},
    )

    assert response.status_code == 400
    assert response.json()["errors"][0]["field"] == "body"
    assert client.get(f"/api/tasks/{task['id']}", headers=alice).json()["task"]["title"] == "Keep me"


def test_update_moves_updated_at_forward(client, alice):
    task = _create(client, alice, title="Draft", dueDate="2030-01-01T09:00:00Z")

    updated = client.put(
        f"/api/tasks/{task['id']}",
        json={"title": "Final", "dueDate": "2030-01-02T09:00:00"},
        headers=alice,
    ).json()["task"]

    assert datetime.fromisoformat(updated["updatedAt"]) >= datetime.fromisoformat(task["createdAt"])
    assert datetime.fromisoformat(updated["dueDate"]) == datetime(2030, 1, 2, 9, tzinfo=timezone.utc)


def test_delete_returns_only_confirmation(client, alice):
    task = _create(client, alice)

    response = client.delete(f"/api/tasks/{task['id']}", headers=alice)

    assert response.status_code == 200
    assert response.json() == {"message": "Task deleted successfully"}
    assert client.get(f"/api/tasks/{task['id']}", headers=alice).status_code == 404
    assert client.delete(f"/api/tasks/{task['id']}", headers=alice).status_code == 404


def test_accepting_a_suggestion_persists_it(client, alice):
    task = _create(client, alice, title="Review weekly goals", tags=["work", "planning"], aiSuggested=True)

    assert task["aiSuggested"] is True
    assert task["tags"] == ["work", "planning"]


def test_suggestions_use_only_the_callers_tasks(client, alice, bob):
    _create(client, alice, title="Team meeting", tags=["work"])
    _create(client, bob, title="Bob's secret")
    suggestion = AISuggestion(title="Prepare agenda", description="For the next meeting", tags=["work"])

    with patch("taskboard.routers.tasks.generate_task_suggestions") as mock_generate:
        mock_generate.return_value = [suggestion]
        response = client.get("/api/tasks/ai/suggestions", params={"context": "busy week"}, headers=alice)

    assert response.status_code == 200
    assert response.json() == {
        "suggestions": [
            {"title": "Prepare agenda", "description": "For the next meeting", "priority": "medium", "tags": ["work"]}
        ]
    }
    contexts = mock_generate.call_args.args[0]
    assert [c.title for c in contexts] == ["Team meeting"]
    assert mock_generate.call_args.kwargs["user_context"] == "busy week"


def test_suggestions_fall_back_without_vendor_credentials(client, alice, monkeypatch):
    monkeypatch.delenv("GENAI_API_KEY", raising=False)
    monkeypatch.delenv("GENAI_PROVIDER", raising=False)
    _create(client, alice, title="Project deadline", description="Finish the report")

    response = client.get("/api/tasks/ai/suggestions", headers=alice)

    assert response.status_code == 200
    suggestions = response.json()["suggestions"]
    assert 1 <= len(suggestions) <= 3
    assert suggestions[0]["title"] == "Review weekly goals"


def test_categorize_falls_back_to_keywords(client, alice, monkeypatch):
    monkeypatch.delenv("GENAI_API_KEY", raising=False)
    monkeypatch.delenv("GENAI_PROVIDER", raising=False)

    response = client.post(
        "/api/tasks/ai/categorize",
        json={"title": "Urgent: buy printer ink", "description": "for the office"},
        headers=alice,
    )

    assert response.status_code == 200
    assert response.json() == {"tags": ["urgent", "work", "shopping"], "priority": "high"}


def test_unexpected_errors_become_generic_500(database, alice):
    broken_session = Mock()
    broken_session.query.side_effect = RuntimeError("connection reset by peer")

    def _broken_db():
        yield broken_session

    app.dependency_overrides[get_db] = _broken_db
    try:
        with TestClient(app, raise_server_exceptions=False) as broken_client:
            response = broken_client.get("/api/tasks", headers=alice)
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
