"""
Test configuration and fixtures for task manager tests.

Provides:
- Test database with SQLite in-memory for speed
- FastAPI test client with database dependency override
- Attachment storage served by the /storage mount, emptied between tests
- Authentication helpers that issue real, tracked access tokens
- Common fixtures for users, projects and tasks
"""

import os
import sys
import logging
import shutil
import tempfile
from typing import Callable, Dict, Generator

# Configure the app for tests before anything reads the environment
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")
# Always a throwaway directory: the suite empties it between tests
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="task-manager-uploads-")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base, get_db
from main import app
import models
import storage
from auth.security import hash_password
from auth.routes import issue_access_token

# Configure logging for tests
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# SQLite in-memory database for fast testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def test_db() -> Generator[Session, None, None]:
    """
    Create a fresh in-memory SQLite database for each test.

    This ensures test isolation and fast execution.
    """
    engine = create_engine(
        SQLALCHEMY_TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function", autouse=True)
def upload_dir():
    """
    Attachment storage directory served by the /storage mount, emptied around each test.
    """
    attachments = storage.UPLOAD_DIR / storage.ATTACHMENT_FOLDER
    shutil.rmtree(attachments, ignore_errors=True)
    yield storage.UPLOAD_DIR
    shutil.rmtree(attachments, ignore_errors=True)


@pytest.fixture(scope="function")
def client(test_db: Session) -> TestClient:
    """
    Create FastAPI test client with database dependency override.
    """
    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def make_user(db: Session, name: str, email: str, role: models.UserRole) -> models.User:
    user = models.User(
        name=name,
        email=email,
        password_hash=hash_password("password123"),
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created {role.value} user with ID: {user.id}")
    return user


@pytest.fixture(scope="function")
def owner_user(test_db: Session) -> models.User:
    return make_user(test_db, "Owner User", "owner@example.com", models.UserRole.owner)


@pytest.fixture(scope="function")
def member_user(test_db: Session) -> models.User:
    return make_user(test_db, "Member User", "member@example.com", models.UserRole.member)


@pytest.fixture(scope="function")
def another_user(test_db: Session) -> models.User:
    return make_user(test_db, "Another User", "another@example.com", models.UserRole.member)


@pytest.fixture(scope="function")
def headers_for(test_db: Session) -> Callable[[models.User], Dict[str, str]]:
    """
    Return a helper that issues a tracked access token for a user.

    Example:
        >>> response = client.get("/api/projects", headers=headers_for(member_user))
    """
    def _headers_for(user: models.User) -> Dict[str, str]:
        token = issue_access_token(user, test_db)
        test_db.commit()
        return {"Authorization": f"Bearer {token}"}

    return _headers_for


@pytest.fixture(scope="function")
def owner_headers(owner_user: models.User, headers_for) -> Dict[str, str]:
    return headers_for(owner_user)


@pytest.fixture(scope="function")
def member_headers(member_user: models.User, headers_for) -> Dict[str, str]:
    return headers_for(member_user)


@pytest.fixture(scope="function")
def another_headers(another_user: models.User, headers_for) -> Dict[str, str]:
    return headers_for(another_user)


def make_project(db: Session, user: models.User, name: str = "Project") -> models.Project:
    project = models.Project(name=name, description=f"{name} description", user_id=user.id)
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def make_task(
    db: Session,
    project: models.Project,
    title: str = "Task",
    mode: models.TaskMode = models.TaskMode.pending,
    description: str = None,
) -> models.Task:
    task = models.Task(
        title=title,
        description=description,
        mode=mode,
        project_id=project.id,
        user_id=project.user_id,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


@pytest.fixture(scope="function")
def member_project(test_db: Session, member_user: models.User) -> models.Project:
    return make_project(test_db, member_user, "Member Project")


@pytest.fixture(scope="function")
def member_task(test_db: Session, member_project: models.Project) -> models.Task:
    return make_task(test_db, member_project, "Member Task", description="Belongs to the member")


@pytest.fixture(scope="function")
def project_factory(test_db: Session) -> Callable[..., models.Project]:
    return lambda user, name="Project": make_project(test_db, user, name)


@pytest.fixture(scope="function")
def task_factory(test_db: Session) -> Callable[..., models.Task]:
    return lambda project, title="Task", mode=models.TaskMode.pending, description=None: make_task(
        test_db, project, title, mode, description
    )
