"""
Task Models

Defines schemas for to-do tasks and the search/pagination options used to
list them.
"""

from typing import Optional, Literal
from datetime import datetime, timezone
from pydantic import BaseModel, Field, field_validator


SortField = Literal["completed", "created_at", "updated_at", "description"]


def _required_description(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Description is required")
    return v


class TaskCreate(BaseModel):
    """Schema for creating a task. The owner is always the caller."""

    description: str = Field(..., min_length=1, description="What needs to be done")
    completed: bool = Field(default=False, description="Completion status")

    model_config = {"extra": "forbid"}

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        return _required_description(v)


class TaskUpdate(BaseModel):
    """Schema for updating a task (all fields optional)."""

    description: Optional[str] = Field(default=None, min_length=1)
    completed: Optional[bool] = None

    model_config = {"extra": "forbid"}

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: Optional[str]) -> Optional[str]:
        return _required_description(v) if v is not None else v


class TaskInDB(BaseModel):
    """Schema for task stored in database."""

    id: str
    owner: str
    description: str
    completed: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: dict) -> "TaskInDB":
        """Build a task from a raw MongoDB document."""
        return cls(
            id=str(doc["_id"]),
            owner=str(doc["owner"]),
            description=doc["description"],
            completed=doc.get("completed", False),
            created_at=doc["created_at"],
            updated_at=doc.get("updated_at"),
        )


class TaskSortOption(BaseModel):
    """A single sort key."""

    field: SortField
    direction: Literal["asc", "desc"] = "asc"

    @field_validator("direction", mode="before")
    @classmethod
    def lowercase_direction(cls, v):
        return v.lower() if isinstance(v, str) else v

    @property
    def order(self) -> int:
        """MongoDB sort order (1 or -1)."""
        return -1 if self.direction == "desc" else 1


class TaskQueryOptions(BaseModel):
    """Pagination and ordering options."""

    limit: int = Field(default=10, ge=1, le=100)
    skip: int = Field(default=0, ge=0)
    sort: list[TaskSortOption] = Field(default_factory=list)


class TaskSearchOptions(BaseModel):
    """Filters applied when listing a user's tasks."""

    completed: Optional[bool] = None
    start_created_at: Optional[datetime] = None
    end_created_at: Optional[datetime] = None
    start_updated_at: Optional[datetime] = None
    end_updated_at: Optional[datetime] = None
    options: TaskQueryOptions = Field(default_factory=TaskQueryOptions)

    model_config = {"extra": "forbid"}

    @field_validator(
        "start_created_at", "end_created_at", "start_updated_at", "end_updated_at"
    )
    @classmethod
    def to_naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC
        if v is not None and v.tzinfo is not None:
            v = v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class TaskPage(BaseModel):
    """A slice of a user's tasks plus pagination data."""

    total_results: int
    total_pages: int
    current_page: int
    page_size: int
    tasks: list[TaskInDB]


class DeleteResult(BaseModel):
    """Number of tasks removed by a bulk delete."""

    deleted_count: int
