from typing import List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator
from server.enums import TaskStatus, TaskPriority

# =========================================================
# TIMESTAMPS
# =========================================================
# Columns are naive DateTime holding UTC. Offsets are converted on the way in
# and put back on the way out.
def to_utc_naive(v: Optional[datetime]) -> Optional[datetime]:
    if v is None or v.tzinfo is None:
        return v
    return v.astimezone(timezone.utc).replace(tzinfo=None)

def as_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None or v.tzinfo is not None:
        return v
    return v.replace(tzinfo=timezone.utc)

# =========================================================
# PYDANTIC SCHEMAS
# =========================================================

# User Schemas
class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=30)
    password: str = Field(min_length=6)
    email: Optional[str] = None

    @field_validator("username")
    @classmethod
    def strip_username(cls, v):
        return v.strip()

class UserLogin(BaseModel):
    username: str
    password: str

class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: Optional[str] = None
    created_at: datetime

class AuthResponse(BaseModel):
    success: bool = True
    message: str
    token: str
    user: UserResponse

# Task Schemas
class TaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default="", max_length=500)
    status: Optional[TaskStatus] = TaskStatus.pending
    priority: Optional[TaskPriority] = TaskPriority.medium
    due_date: Optional[datetime] = None
    reminder_time: Optional[datetime] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("due_date", "reminder_time")
    @classmethod
    def store_as_utc(cls, v):
        return to_utc_naive(v)

class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None
    reminder_time: Optional[datetime] = None
    notification_id: Optional[str] = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("due_date", "reminder_time")
    @classmethod
    def store_as_utc(cls, v):
        return to_utc_naive(v)

class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    description: Optional[str]
    status: TaskStatus
    priority: TaskPriority
    due_date: Optional[datetime]
    reminder_time: Optional[datetime]
    notification_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    @field_validator("due_date", "reminder_time", "created_at", "updated_at")
    @classmethod
    def mark_utc(cls, v):
        return as_utc(v)

class TaskEnvelope(BaseModel):
    success: bool = True
    message: str
    task: TaskResponse

class TaskListEnvelope(BaseModel):
    success: bool = True
    message: str
    tasks: List[TaskResponse] = []
