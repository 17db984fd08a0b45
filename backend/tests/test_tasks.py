"""
Tests for task CRUD, filtering and creator-only access.
"""

import logging

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)


# ============== Create ==============


def test_create_task_defaults_to_pending(
    client: TestClient, member_user: models.User, member_project: models.Project, member_headers
):
    response = client.post(
        "/api/tasks",
        json={"title": "Write copy", "project_id": member_project.id},
        headers=member_headers
    )

    assert response.status_code == 201, response.json()
    task = response.json()["task"]
    assert task["mode"] == "pending"
    assert task["user_id"] == member_user.id
    assert task["project_id"] == member_project.id


def test_create_task_with_invalid_mode_rejected(client: TestClient, member_project: models.Project, member_headers):
    response = client.post(
        "/api/tasks",
        json={"title": "Bad mode", "mode": "done", "project_id": member_project.id},
        headers=member_headers
    )

    assert response.status_code == 422


def test_create_task_in_missing_project(client: TestClient, member_headers):
    response = client.post(
        "/api/tasks",
        json={"title": "Orphan", "project_id": 9999},
        headers=member_headers
    )

    assert response.status_code == 404


def test_create_task_in_other_users_project_forbidden(
    client: TestClient, test_db: Session, member_project: models.Project, another_headers
):
    response = client.post(
        "/api/tasks",
        json={"title": "Intruder", "project_id": member_project.id},
        headers=another_headers
    )

    assert response.status_code == 403, f"Expected 403, got {response.status_code}: {response.json()}"
    # Adding a task counts as updating the project
    assert response.json()["error"] == "You are not authorized to update this project."
    assert test_db.query(models.Task).count() == 0


# ============== List / Filter ==============


def test_list_tasks_filters_by_mode_and_search(
    client: TestClient, member_project: models.Project, member_headers, task_factory
):
    task_factory(member_project, "Design logo", models.TaskMode.completed)
    task_factory(member_project, "Design banner", models.TaskMode.pending)
    task_factory(member_project, "Deploy", models.TaskMode.completed, description="Includes design review")
    task_factory(member_project, "Invoice", models.TaskMode.completed)

    response = client.get(
        "/api/tasks",
        params={"mode": "completed", "search": "DESIGN"},
        headers=member_headers
    )

    assert response.status_code == 200
    titles = [t["title"] for t in response.json()["data"]]
    assert titles == ["Design logo", "Deploy"]
    assert response.json()["total"] == 2


def test_blank_search_is_ignored(client: TestClient, member_project: models.Project, member_headers, task_factory):
    task_factory(member_project, "One")
    task_factory(member_project, "Two")

    response = client.get("/api/tasks", params={"search": "   "}, headers=member_headers)

    assert response.status_code == 200
    assert len(response.json()["data"]) == 2


def test_search_treats_wildcards_literally(
    client: TestClient, member_project: models.Project, member_headers, task_factory
):
    task_factory(member_project, "100% done")
    task_factory(member_project, "Halfway")

    response = client.get("/api/tasks", params={"search": "%"}, headers=member_headers)

    assert [t["title"] for t in response.json()["data"]] == ["100% done"]


def test_list_tasks_excludes_other_users(
    client: TestClient,
    another_user: models.User,
    member_task: models.Task,
    member_headers,
    project_factory,
    task_factory,
):
    task_factory(project_factory(another_user), "Not mine")

    response = client.get("/api/tasks", headers=member_headers)

    assert [t["id"] for t in response.json()["data"]] == [member_task.id]


def test_list_tasks_pagination(client: TestClient, member_project: models.Project, member_headers, task_factory):
    for i in range(5):
        task_factory(member_project, f"Task {i}")

    response = client.get("/api/tasks", params={"limit": 2, "offset": 2}, headers=member_headers)

    assert response.status_code == 200
    assert [t["title"] for t in response.json()["data"]] == ["Task 2", "Task 3"]
    assert response.json()["total"] == 5


def test_list_tasks_limit_capped(client: TestClient, member_headers):
    response = client.get("/api/tasks", params={"limit": 101}, headers=member_headers)

    assert response.status_code == 422


# ============== Show / Update / Delete ==============


def test_get_task_includes_attachments(client: TestClient, member_task: models.Task, member_headers):
    response = client.get(f"/api/tasks/{member_task.id}", headers=member_headers)

    assert response.status_code == 200
    task = response.json()["task"]
    assert task["title"] == "Member Task"
    assert task["attachments"] == []


def test_other_users_task_forbidden_missing_task_not_found(
    client: TestClient, member_task: models.Task, another_headers
):
    response = client.get(f"/api/tasks/{member_task.id}", headers=another_headers)
    assert response.status_code == 403
    assert response.json()["error"] == "You are not authorized to view this task."

    response = client.get("/api/tasks/9999", headers=another_headers)
    assert response.status_code == 404
    assert response.json()["error"] == "Task not found"


def test_update_task_mode(client: TestClient, test_db: Session, member_task: models.Task, member_headers):
    response = client.put(
        f"/api/tasks/{member_task.id}",
        json={"mode": "in_progress"},
        headers=member_headers
    )

    assert response.status_code == 200, response.json()
    test_db.refresh(member_task)
    assert member_task.mode == models.TaskMode.in_progress
    assert member_task.title == "Member Task"


def test_update_other_users_task_forbidden(
    client: TestClient, test_db: Session, member_task: models.Task, owner_headers
):
    response = client.put(
        f"/api/tasks/{member_task.id}",
        json={"title": "Taken over"},
        headers=owner_headers
    )

    assert response.status_code == 403
    test_db.refresh(member_task)
    assert member_task.title == "Member Task"


def test_delete_task(client: TestClient, test_db: Session, member_task: models.Task, member_headers):
    task_id = member_task.id

    response = client.delete(f"/api/tasks/{task_id}", headers=member_headers)

    assert response.status_code == 200
    test_db.expire_all()
    assert test_db.query(models.Task).filter(models.Task.id == task_id).first() is None


def test_delete_other_users_task_forbidden(client: TestClient, test_db: Session, member_task: models.Task, another_headers):
    response = client.delete(f"/api/tasks/{member_task.id}", headers=another_headers)

    assert response.status_code == 403
    assert test_db.query(models.Task).filter(models.Task.id == member_task.id).first() is not None
