from fastapi import FastAPI, HTTPException, Depends, Query, UploadFile, File, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy import func, or_, case
from typing import List, Optional
import logging
import os
import sys

from database import get_db, engine, Base
import models
import schemas
import storage
from auth.routes import router as auth_router
from auth.dependencies import get_current_user, get_current_owner, require_role
from auth.permissions import (
    Action,
    RoleAction,
    apply_role_transition,
    owned_query,
    require_resource_access,
)

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Task Manager API",
    description="Projects, tasks with attachments, and role-based user administration",
    version="1.0.0"
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip()
        for origin in os.environ.get("CORS_ORIGINS", "http://localhost:3000").split(",")
        if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register authentication router
app.include_router(auth_router)


# ============== Error Handlers ==============

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors as {"error": <message>}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Render request validation failures as 422 with the offending fields."""
    logger.info(f"Validation failed for {request.method} {request.url.path}")
    return JSONResponse(
        status_code=422,
        content={
            "error": "The given data was invalid.",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Log the traceback; never return it."""
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ============== Startup: Ensure Owner User Exists ==============

@app.on_event("startup")
async def ensure_owner_user():
    """
    Create tables and ensure an initial owner account exists.

    Uses OWNER_EMAIL / OWNER_PASSWORD env vars, defaulting to
    owner@example.com / owner123 for local dev. Refuses to start in
    production-like environments with a weak or default password.
    """
    from database import SessionLocal
    from auth.security import hash_password, is_production_like

    Base.metadata.create_all(bind=engine)

    owner_email = os.getenv("OWNER_EMAIL", "owner@example.com")
    owner_password = os.getenv("OWNER_PASSWORD", "owner123")
    is_default_password = owner_password.strip() == "owner123"

    if is_production_like() and (is_default_password or len(owner_password.strip()) < 8):
        logger.error(
            "=" * 80 + "\n"
            "❌ STARTUP FAILED: Secure OWNER_PASSWORD is required in production/staging!\n"
            "❌ Password must not be the default and must be at least 8 characters long.\n"
            "❌ Example: OWNER_PASSWORD=$(openssl rand -base64 32)\n" +
            "=" * 80
        )
        sys.exit(1)

    db = SessionLocal()
    try:
        owner = db.query(models.User).filter(models.User.email == owner_email).first()
        if owner:
            logger.info(f"Owner user already exists (email: {owner_email})")
            return

        owner = models.User(
            name="Owner",
            email=owner_email,
            password_hash=hash_password(owner_password),
            role=models.UserRole.owner,
        )
        db.add(owner)
        db.commit()

        if is_default_password:
            logger.warning(
                "=" * 80 + "\n"
                f"⚠️  SECURITY WARNING: Owner user created with DEFAULT password 'owner123'\n"
                f"⚠️  Login with {owner_email} / owner123 and CHANGE IT for anything but local dev.\n" +
                "=" * 80
            )
        else:
            logger.info(f"✅ Owner user created with custom password (email: {owner_email})")

    except SQLAlchemyError as e:
        logger.error(f"Failed to ensure owner user exists: {e}")
        db.rollback()
        # Don't fail startup - let the app run even if owner creation fails
    finally:
        db.close()


# ============== File Storage ==============

try:
    storage.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    app.mount("/storage", StaticFiles(directory=str(storage.UPLOAD_DIR)), name="storage")
except (OSError, PermissionError) as e:
    logger.warning(f"Could not create upload directory: {e}. Stored files will not be served.")


def attachment_payload(attachment: models.Attachment) -> dict:
    return schemas.Attachment(
        id=attachment.id,
        task_id=attachment.task_id,
        file_path=attachment.file_path,
        file_type=attachment.file_type,
        url=storage.public_url(attachment.file_path),
        created_at=attachment.created_at,
        updated_at=attachment.updated_at,
    ).model_dump()


def remove_stored_files(paths: List[str]) -> None:
    """Delete stored files whose records are already gone; failures are logged."""
    for path in paths:
        storage.delete_stored_file(path)


def updates_from(payload) -> dict:
    """Fields the client actually sent, ignoring explicit nulls."""
    return {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}


# Health check
@app.get("/health")
def health_check():
    return {"status": "healthy"}


# ============== Users ==============

@app.get("/api/users")
def list_users(
    limit: Optional[int] = Query(None, ge=1, le=100, description="Optional page size (max 100)"),
    offset: int = Query(0, ge=0, description="Offset for pagination (only used with limit)"),
    current_user: models.User = Depends(
        require_role(models.UserRole.owner, "You are not authorized to view users.")
    ),
    db: Session = Depends(get_db)
):
    """List all users (owner only)."""
    logger.debug(f"Owner {current_user.id} listing users")

    query = db.query(models.User).order_by(models.User.id)
    total = query.count()
    if limit is not None:
        query = query.offset(offset).limit(limit)

    users = [schemas.User.model_validate(u) for u in query.all()]
    return {"users": users, "total": total, "message": "Users retrieved successfully"}


@app.get("/api/users/{user_id}")
def get_user(
    user_id: int,
    current_user: models.User = Depends(
        require_role(models.UserRole.owner, "You are not authorized to view users.")
    ),
    db: Session = Depends(get_db)
):
    """Get any user by ID (owner only)."""
    logger.debug(f"Owner {current_user.id} requesting user {user_id}")

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return {"user": schemas.User.model_validate(user), "message": "User retrieved successfully"}


@app.put("/api/users/{user_id}")
def update_user(
    user_id: int,
    user_update: schemas.UserUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a user's name/email (the user themself or an owner)."""
    logger.debug(f"User {current_user.id} updating user {user_id}")

    if current_user.id != user_id and not current_user.is_owner:
        logger.info(f"User {current_user.id} denied update of user {user_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unauthorized")

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    update_data = updates_from(user_update)

    # Email must be unique among all other users; keeping one's own email is fine
    if "email" in update_data:
        existing_user = db.query(models.User).filter(
            models.User.email == update_data["email"],
            models.User.id != user_id
        ).first()
        if existing_user:
            logger.info(f"Email {update_data['email']} already used by user {existing_user.id}")
            raise HTTPException(status_code=422, detail="The email has already been taken.")

    for key, value in update_data.items():
        setattr(user, key, value)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=422, detail="The email has already been taken.")
    db.refresh(user)

    logger.info(f"User updated: {user.email} (ID: {user.id})")
    return {"message": "User updated successfully", "user": schemas.User.model_validate(user)}


def change_role(user_id: int, action: RoleAction, current_user: models.User, db: Session) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if apply_role_transition(user, action):
        db.commit()
        db.refresh(user)
        logger.info(f"Owner {current_user.id} applied '{action.value}' to user {user_id}")

    return user


@app.post("/api/users/{user_id}/promote")
def promote_user(
    user_id: int,
    current_user: models.User = Depends(
        require_role(models.UserRole.owner, "You are not authorized to promote members")
    ),
    db: Session = Depends(get_db)
):
    """Promote a member to owner. Promoting an owner is a no-op."""
    user = change_role(user_id, RoleAction.promote, current_user, db)
    return {"message": "User promoted to owner successfully", "user": schemas.User.model_validate(user)}


@app.post("/api/users/{user_id}/downgrade")
def downgrade_user(
    user_id: int,
    current_user: models.User = Depends(
        require_role(models.UserRole.owner, "You are not authorized to downgrade owners")
    ),
    db: Session = Depends(get_db)
):
    """
    Downgrade an owner to member. Downgrading a member is a no-op.

    There is no protection against removing the last owner, including the caller.
    """
    user = change_role(user_id, RoleAction.downgrade, current_user, db)
    return {"message": "User downgraded to member successfully", "user": schemas.User.model_validate(user)}


@app.delete("/api/users/{user_id}")
def delete_user(
    user_id: int,
    current_user: models.User = Depends(get_current_owner),
    db: Session = Depends(get_db)
):
    """Delete a user together with their projects, tasks and attachment files (owner only)."""
    logger.debug(f"Owner {current_user.id} deleting user {user_id}")

    user = db.query(models.User).filter(models.User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    stored_paths = [
        a.file_path
        for a in db.query(models.Attachment).join(models.Task).filter(models.Task.user_id == user_id)
    ]

    db.delete(user)
    db.commit()
    remove_stored_files(stored_paths)

    logger.info(f"User deleted: {user_id} ({len(stored_paths)} attachment files removed)")
    return {"message": "User deleted successfully"}


# ============== Projects ==============

@app.get("/api/projects")
def list_projects(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List the current user's projects with their tasks."""
    logger.debug(f"User {current_user.id} listing projects")

    projects = (
        owned_query(db, models.Project, current_user)
        .options(selectinload(models.Project.tasks))
        .order_by(models.Project.id)
        .all()
    )

    logger.info(f"User {current_user.id} retrieved {len(projects)} projects")
    return {
        "projects": [schemas.ProjectWithTasks.model_validate(p) for p in projects],
        "message": "Projects retrieved successfully",
    }


@app.post("/api/projects", status_code=status.HTTP_201_CREATED)
def create_project(
    project: schemas.ProjectCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a project owned by the current user."""
    logger.debug(f"User {current_user.id} creating project: {project.name}")

    # Ownership always comes from the authenticated user
    db_project = models.Project(**project.model_dump(), user_id=current_user.id)
    db.add(db_project)
    db.commit()
    db.refresh(db_project)

    logger.info(f"Project created: {db_project.name} (ID: {db_project.id}) by user {current_user.id}")
    return {"project": schemas.Project.model_validate(db_project), "message": "Project created successfully"}


@app.get("/api/projects/{project_id}")
def get_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a project with its tasks (creator only)."""
    logger.debug(f"User {current_user.id} requesting project {project_id}")

    project = (
        db.query(models.Project)
        .options(selectinload(models.Project.tasks))
        .filter(models.Project.id == project_id)
        .first()
    )
    project = require_resource_access(current_user, project, Action.view, "project")

    return {"project": schemas.ProjectWithTasks.model_validate(project), "message": "Project retrieved successfully"}


@app.put("/api/projects/{project_id}")
def update_project(
    project_id: int,
    project_update: schemas.ProjectUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a project's name/description (creator only)."""
    logger.debug(f"User {current_user.id} updating project {project_id}")

    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    project = require_resource_access(current_user, project, Action.update, "project")

    for key, value in updates_from(project_update).items():
        setattr(project, key, value)

    db.commit()
    db.refresh(project)

    logger.info(f"Project updated: {project.name} (ID: {project_id})")
    return {"project": schemas.Project.model_validate(project), "message": "Project updated successfully"}


@app.delete("/api/projects/{project_id}")
def delete_project(
    project_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a project with its tasks and their attachment files (creator only)."""
    logger.debug(f"User {current_user.id} deleting project {project_id}")

    project = db.query(models.Project).filter(models.Project.id == project_id).first()
    project = require_resource_access(current_user, project, Action.delete, "project")

    stored_paths = [
        a.file_path
        for a in db.query(models.Attachment).join(models.Task).filter(models.Task.project_id == project_id)
    ]

    db.delete(project)
    db.commit()
    remove_stored_files(stored_paths)

    logger.info(f"Project deleted: {project_id} by user {current_user.id}")
    return {"message": "Project deleted successfully"}


# ============== Tasks ==============

@app.get("/api/tasks")
def list_tasks(
    current_user: models.User = Depends(get_current_user),
    mode: Optional[schemas.TaskMode] = Query(None, description="Exact match on task mode"),
    search: Optional[str] = Query(None, description="Case-insensitive substring of title or description"),
    limit: Optional[int] = Query(None, ge=1, le=100, description="Optional page size (max 100)"),
    offset: int = Query(0, ge=0, description="Offset for pagination (only used with limit)"),
    db: Session = Depends(get_db)
):
    """List the current user's tasks, optionally filtered by mode and search text."""
    logger.debug(f"User {current_user.id} listing tasks: mode={mode}, search={search}")

    query = owned_query(db, models.Task, current_user)

    if mode:
        query = query.filter(models.Task.mode == mode)

    # Blank search terms are treated as absent
    if search and search.strip():
        term = search.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{term}%"
        query = query.filter(
            or_(
                models.Task.title.ilike(pattern, escape="\\"),
                models.Task.description.ilike(pattern, escape="\\"),
            )
        )

    total = query.count()
    query = query.order_by(models.Task.id)
    if limit is not None:
        query = query.offset(offset).limit(limit)

    tasks = [schemas.Task.model_validate(t) for t in query.all()]

    logger.info(f"list_tasks returned {len(tasks)} of {total} tasks for user {current_user.id}")
    return {"data": tasks, "total": total, "message": "Tasks retrieved successfully"}


@app.post("/api/tasks", status_code=status.HTTP_201_CREATED)
def create_task(
    task: schemas.TaskCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Create a task in one of the current user's projects."""
    logger.info(f"User {current_user.id} creating task: {task.title} in project {task.project_id}")

    project = db.query(models.Project).filter(models.Project.id == task.project_id).first()
    require_resource_access(current_user, project, Action.update, "project")

    # Ownership always comes from the authenticated user
    db_task = models.Task(**task.model_dump(), user_id=current_user.id)
    db.add(db_task)
    db.commit()
    db.refresh(db_task)

    logger.info(f"Task created successfully: id={db_task.id}")
    return {"task": schemas.Task.model_validate(db_task), "message": "Task created successfully"}


@app.get("/api/tasks/{task_id}")
def get_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get a task with its attachments (creator only)."""
    logger.debug(f"User {current_user.id} requesting task {task_id}")

    task = (
        db.query(models.Task)
        .options(selectinload(models.Task.attachments))
        .filter(models.Task.id == task_id)
        .first()
    )
    task = require_resource_access(current_user, task, Action.view, "task")

    task_dict = {
        **schemas.Task.model_validate(task).model_dump(),
        "attachments": [attachment_payload(a) for a in task.attachments],
    }
    return {"task": task_dict, "message": "Task retrieved successfully"}


@app.put("/api/tasks/{task_id}")
def update_task(
    task_id: int,
    task_update: schemas.TaskUpdate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update a task's title, description or mode (creator only)."""
    logger.info(f"User {current_user.id} updating task {task_id}")

    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    task = require_resource_access(current_user, task, Action.update, "task")

    update_data = updates_from(task_update)
    if "mode" in update_data and update_data["mode"] != task.mode:
        logger.info(f"Task {task_id} mode change: {task.mode.value} -> {update_data['mode'].value}")

    for key, value in update_data.items():
        setattr(task, key, value)

    db.commit()
    db.refresh(task)

    return {"task": schemas.Task.model_validate(task), "message": "Task updated successfully"}


@app.delete("/api/tasks/{task_id}")
def delete_task(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete a task together with its attachments and their stored files (creator only)."""
    logger.debug(f"User {current_user.id} deleting task {task_id}")

    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    task = require_resource_access(current_user, task, Action.delete, "task")

    stored_paths = [a.file_path for a in task.attachments]

    db.delete(task)
    db.commit()
    remove_stored_files(stored_paths)

    logger.info(f"Task {task_id} deleted by user {current_user.id}")
    return {"message": "Task deleted successfully"}


# ============== Attachments ==============

def get_owned_task(db: Session, current_user: models.User, task_id: int) -> models.Task:
    """
    Load a task through the caller's ownership scope.

    Someone else's task is indistinguishable from a missing one here (404).
    """
    task = owned_query(db, models.Task, current_user).filter(models.Task.id == task_id).first()
    if not task:
        logger.info(f"Task {task_id} not found in scope of user {current_user.id}")
        raise HTTPException(status_code=404, detail="Task not found")
    return task


def get_task_attachment(db: Session, task: models.Task, attachment_id: int) -> models.Attachment:
    attachment = db.query(models.Attachment).filter(
        models.Attachment.id == attachment_id,
        models.Attachment.task_id == task.id
    ).first()
    if not attachment:
        raise HTTPException(status_code=404, detail="Attachment not found for this task")
    return attachment


@app.get("/api/attachments")
def list_all_attachments(
    current_user: models.User = Depends(
        require_role(models.UserRole.owner, "You are not authorized to view all attachments.")
    ),
    db: Session = Depends(get_db)
):
    """List every attachment in the system with its task (owner only)."""
    logger.debug(f"Owner {current_user.id} listing all attachments")

    attachments = (
        db.query(models.Attachment)
        .options(selectinload(models.Attachment.task))
        .order_by(models.Attachment.id)
        .all()
    )

    data = [
        {
            **attachment_payload(a),
            "task": {"id": a.task.id, "title": a.task.title, "user_id": a.task.user_id},
        }
        for a in attachments
    ]
    return {"data": data, "message": "All attachments retrieved successfully"}


@app.get("/api/tasks/{task_id}/attachments")
def list_attachments(
    task_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """List attachments of one of the current user's tasks."""
    task = get_owned_task(db, current_user, task_id)

    return {
        "data": {
            "task": task.title,
            "attachments": [attachment_payload(a) for a in task.attachments],
        },
        "message": "Attachments retrieved successfully",
    }


@app.post("/api/tasks/{task_id}/attachments", status_code=status.HTTP_201_CREATED)
async def upload_attachment(
    task_id: int,
    file: Optional[UploadFile] = File(None),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upload a file attachment to one of the current user's tasks."""
    logger.debug(f"Uploading attachment to task {task_id}: {file.filename if file else None}")

    extension = storage.validate_file_upload(file)
    task = get_owned_task(db, current_user, task_id)

    file_path = await storage.save_upload_file(file, extension)

    # Create attachment record, removing the stored file if that fails
    try:
        attachment = models.Attachment(task_id=task.id, file_path=file_path, file_type=extension)
        db.add(attachment)
        db.commit()
        db.refresh(attachment)
    except SQLAlchemyError as e:
        db.rollback()
        storage.delete_stored_file(file_path)
        logger.error(f"Failed to create attachment record: {e}")
        raise HTTPException(status_code=500, detail="Failed to save attachment")

    logger.info(f"Uploaded attachment {attachment.id} to task {task_id}")
    return {
        "data": {"attachment": attachment_payload(attachment), "url": storage.public_url(file_path)},
        "message": "File uploaded successfully",
    }


@app.get("/api/tasks/{task_id}/attachments/{attachment_id}")
def get_attachment(
    task_id: int,
    attachment_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Get one attachment of one of the current user's tasks."""
    task = get_owned_task(db, current_user, task_id)
    attachment = get_task_attachment(db, task, attachment_id)

    return {
        "data": {"attachment": attachment_payload(attachment), "url": storage.public_url(attachment.file_path)},
        "message": "Attachment retrieved successfully",
    }


@app.put("/api/tasks/{task_id}/attachments/{attachment_id}")
async def replace_attachment(
    task_id: int,
    attachment_id: int,
    file: Optional[UploadFile] = File(None),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Replace the file behind an attachment.

    The new file is stored and the record updated before the old file is
    removed, so a failure part-way never leaves the record pointing at a
    missing file. At worst the old file is left behind in storage.
    """
    logger.debug(f"Replacing attachment {attachment_id} on task {task_id}")

    task = get_owned_task(db, current_user, task_id)
    attachment = get_task_attachment(db, task, attachment_id)

    extension = storage.validate_file_upload(file)
    new_path = await storage.save_upload_file(file, extension)
    old_path = attachment.file_path

    try:
        attachment.file_path = new_path
        attachment.file_type = extension
        db.commit()
        db.refresh(attachment)
    except SQLAlchemyError as e:
        db.rollback()
        storage.delete_stored_file(new_path)
        logger.error(f"Failed to update attachment {attachment_id}, kept {old_path}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update attachment")

    if not storage.delete_stored_file(old_path):
        logger.warning(f"Attachment {attachment_id} replaced but old file {old_path} was left in storage")

    logger.info(f"Replaced attachment {attachment_id}: {old_path} -> {new_path}")
    return {
        "data": {"attachment": attachment_payload(attachment), "url": storage.public_url(new_path)},
        "message": "Attachment updated successfully",
    }


@app.delete("/api/tasks/{task_id}/attachments/{attachment_id}")
def delete_attachment(
    task_id: int,
    attachment_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Delete an attachment and its stored file."""
    logger.debug(f"Deleting attachment {attachment_id} from task {task_id}")

    task = get_owned_task(db, current_user, task_id)
    attachment = get_task_attachment(db, task, attachment_id)

    # The record goes even if the file cannot be removed
    storage.delete_stored_file(attachment.file_path)

    db.delete(attachment)
    db.commit()

    logger.info(f"Deleted attachment {attachment_id} from task {task_id}")
    return {"message": "Attachment deleted successfully"}


# ============== Dashboard ==============

@app.get("/api/dashboard", response_model=schemas.Dashboard)
def get_dashboard(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Aggregate task, project and user counts.

    Owners see system-wide figures; members see figures over their own rows.
    """
    logger.debug(f"User {current_user.id} requesting dashboard")

    scoped = current_user.is_member

    mode_query = db.query(models.Task.mode, func.count(models.Task.id))
    if scoped:
        mode_query = mode_query.filter(models.Task.user_id == current_user.id)
    mode_counts = {mode: count for mode, count in mode_query.group_by(models.Task.mode).all()}

    total_tasks = sum(mode_counts.values())

    project_query = db.query(models.Project)
    user_query = db.query(models.User)
    if scoped:
        project_query = project_query.filter(models.Project.user_id == current_user.id)
        user_query = user_query.filter(models.User.id == current_user.id)

    def mode_sum(mode: models.TaskMode):
        return func.sum(case((models.Task.mode == mode, 1), else_=0))

    user_rows_query = (
        db.query(
            models.User.id,
            models.User.name,
            models.User.email,
            models.User.role,
            func.count(models.Task.id),
            mode_sum(models.TaskMode.completed),
            mode_sum(models.TaskMode.in_progress),
            mode_sum(models.TaskMode.pending),
        )
        .outerjoin(models.Task, models.Task.user_id == models.User.id)
    )
    if scoped:
        user_rows_query = user_rows_query.filter(models.User.id == current_user.id)
    user_rows = (
        user_rows_query
        .group_by(models.User.id, models.User.name, models.User.email, models.User.role)
        .order_by(models.User.id)
        .all()
    )

    users = [
        schemas.UserStats(
            id=row[0],
            name=row[1],
            email=row[2],
            role=row[3],
            total_tasks=row[4] or 0,
            completed_tasks=row[5] or 0,
            in_progress_tasks=row[6] or 0,
            pending_tasks=row[7] or 0,
        )
        for row in user_rows
    ]

    return schemas.Dashboard(
        tasks=schemas.TaskModeCounts(
            total=total_tasks,
            completed=mode_counts.get(models.TaskMode.completed, 0),
            in_progress=mode_counts.get(models.TaskMode.in_progress, 0),
            pending=mode_counts.get(models.TaskMode.pending, 0),
        ),
        totals=schemas.Totals(
            users=user_query.count(),
            projects=project_query.count(),
            tasks=total_tasks,
        ),
        users=users,
        message="Dashboard statistics retrieved successfully",
    )
