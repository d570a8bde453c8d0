from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime
from sqlmodel import Column, Field, SQLModel


def get_utc_now():
    """Helper function to get current UTC time with timezone"""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class TaskPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class User(SQLModel, table=True):
    """Account row backing a Principal"""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(max_length=100, unique=True, index=True)
    password_hash: str = Field(max_length=255)
    email: str = Field(max_length=255)
    role: str = Field(default="USER", max_length=32)
    created_at: datetime = Field(
        default_factory=get_utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


@dataclass(frozen=True)
class Principal:
    """Verified identity for the duration of one request."""

    id: int
    name: str
    secret_hash: str
    role: str = "USER"
    email: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "Principal":
        return cls(
            id=user.id,
            name=user.username,
            secret_hash=user.password_hash,
            role=user.role,
            email=user.email,
        )


class TaskBase(SQLModel):
    """Base model with shared fields"""

    title: str = Field(min_length=1, max_length=200, index=True)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus = Field(default=TaskStatus.TODO, index=True)
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, index=True)


class Task(TaskBase, table=True):
    """Database model"""

    __tablename__ = "tasks"

    id: int | None = Field(default=None, primary_key=True)
    owner_id: int = Field(foreign_key="users.id", index=True)
    # assigned by the store on first save
    created_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    completed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )


class TaskCreate(TaskBase):
    """Schema for creating a task"""

    pass


class TaskRequest(SQLModel):
    """Schema for replacing a task - every field required"""

    title: str = Field(min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus
    priority: TaskPriority


class TaskUpdate(SQLModel):
    """Schema for updating a task - all fields optional"""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=1000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None


class TaskResponse(TaskBase):
    """Schema for task responses"""

    id: int
    created_at: datetime
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class TaskStats(SQLModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    pending_tasks: int = 0
    average_completion_time_hours: float = 0.0
    todo_tasks: int = 0
    in_progress_tasks: int = 0


class LoginRequest(SQLModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class LoginResponse(SQLModel):
    token: str
    username: str
    email: str | None = None
    message: str = "Login successful"


class NaturalLanguageTaskRequest(SQLModel):
    text: str = Field(min_length=1, max_length=2000)


class TaskSuggestion(SQLModel):
    """Structured fields proposed by the advisory model"""

    title: str
    description: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM


class TaskSuggestions(SQLModel):
    suggestions: list[str] = []
    insight: str


class PriorityRecommendation(SQLModel):
    recommended_priority: TaskPriority
    title: str


class ProductivityInsight(SQLModel):
    insight: str


class AdvisoryStatus(SQLModel):
    available: bool
    provider: str
    model: str
