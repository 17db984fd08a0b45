from pydantic import AfterValidator, BaseModel, EmailStr, Field
from datetime import datetime
from typing import Annotated, Optional, List
from enum import Enum

# Matches the users.email column width
MAX_EMAIL_LENGTH = 200


def _check_email_length(value: str) -> str:
    if len(value) > MAX_EMAIL_LENGTH:
        raise ValueError(f"The email may not be greater than {MAX_EMAIL_LENGTH} characters.")
    return value


BoundedEmail = Annotated[EmailStr, AfterValidator(_check_email_length)]


class UserRole(str, Enum):
    owner = "owner"
    member = "member"


class TaskMode(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"


# User schemas
class UserBase(BaseModel):
    name: str
    email: EmailStr


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[BoundedEmail] = None


class User(UserBase):
    id: int
    role: UserRole
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserStats(BaseModel):
    id: int
    name: str
    email: str
    role: UserRole
    total_tasks: int = 0
    completed_tasks: int = 0
    in_progress_tasks: int = 0
    pending_tasks: int = 0


# Attachment schemas
class Attachment(BaseModel):
    id: int
    task_id: int
    file_path: str
    file_type: str
    url: str
    created_at: datetime
    updated_at: Optional[datetime] = None


# Task schemas
class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    mode: TaskMode = TaskMode.pending


class TaskCreate(TaskBase):
    project_id: int


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    mode: Optional[TaskMode] = None


class Task(TaskBase):
    id: int
    user_id: int
    project_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Project schemas
class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None


class Project(ProjectBase):
    id: int
    user_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectWithTasks(Project):
    tasks: List[Task] = []

    class Config:
        from_attributes = True


# Dashboard schemas
class TaskModeCounts(BaseModel):
    total: int
    completed: int
    in_progress: int
    pending: int


class Totals(BaseModel):
    users: int
    projects: int
    tasks: int


class Dashboard(BaseModel):
    tasks: TaskModeCounts
    totals: Totals
    users: List[UserStats] = []
    message: str
