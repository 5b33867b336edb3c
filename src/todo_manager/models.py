"""
Pydantic models for the To-Do Manager.

Defines the task record held by the store, its persisted JSON layout, and
the request/response models used by the dashboard API.
"""

from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TaskRole(str, Enum):
    """Position of a task in the two-level hierarchy."""

    PARENT = "standalone-or-parent"
    SUBTASK = "subtask"


class RecordFlags(BaseModel):
    """Boolean fields of a persisted record, validated rather than truth-tested."""

    completed: bool = False
    is_subtask: bool = Field(False, alias="isSubtask")

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "RecordFlags":
        """Read the flags; a missing or null value counts as False."""
        return cls.model_validate({
            key: record[key] for key in ("completed", "isSubtask") if record.get(key) is not None
        })


class Task(BaseModel):
    """
    A single to-do entry.

    Tasks are immutable; every mutation produces a copy via ``model_copy``.
    A subtask always references its owning parent through ``parent_id`` and
    parent-role tasks never carry one.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(description="Opaque identifier, stable for the task's lifetime")
    text: str = Field("", description="Label; empty while the task is being composed")
    completed: bool = False
    role: TaskRole = TaskRole.PARENT
    parent_id: Optional[int] = Field(None, description="Owning task id, subtasks only")
    created_at: str = Field(default_factory=utc_now_iso, description="ISO-8601 creation time")

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v):
        """Reject timestamps that are not ISO-8601."""
        try:
            datetime.fromisoformat(v.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"created_at is not an ISO-8601 timestamp: {v!r}")
        return v

    @model_validator(mode="after")
    def validate_role(self):
        if self.role == TaskRole.SUBTASK and self.parent_id is None:
            raise ValueError("Subtasks must reference a parent_id")
        if self.role == TaskRole.PARENT and self.parent_id is not None:
            raise ValueError("Parent tasks cannot reference a parent_id")
        return self

    @property
    def is_subtask(self) -> bool:
        return self.role == TaskRole.SUBTASK

    @property
    def is_parent(self) -> bool:
        return self.role == TaskRole.PARENT

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the persisted record layout (camelCase, boolean role flags)."""
        record: Dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "isParent": self.is_parent,
            "isSubtask": self.is_subtask,
        }
        if self.is_subtask:
            record["parentId"] = self.parent_id
        record["createdAt"] = self.created_at
        return record

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Task":
        """
        Build a task from a persisted record.

        Records carrying neither ``isParent`` nor ``isSubtask`` were written
        before roles existed and load as parent-role tasks.

        Raises:
            ValueError: If the record is not a mapping or fails validation.
                Flag values such as ``"false"`` are parsed, not truth-tested.
        """
        if not isinstance(record, dict):
            raise ValueError(f"Task record must be an object, got {type(record).__name__}")
        if "id" not in record:
            raise ValueError("Task record is missing 'id'")

        flags = RecordFlags.from_record(record)
        return cls(
            id=record["id"],
            text=record.get("text") or "",
            completed=flags.completed,
            role=TaskRole.SUBTASK if flags.is_subtask else TaskRole.PARENT,
            parent_id=record.get("parentId") if flags.is_subtask else None,
            created_at=record.get("createdAt") or utc_now_iso(),
        )


class TaskCreateRequest(BaseModel):
    """Request model for adding a task; blank text is ignored, not rejected."""

    text: str = Field("", description="Task label")


class TaskEditRequest(BaseModel):
    """Request model for replacing a task's text."""

    text: str = Field(description="New task label")


class ReorderRequest(BaseModel):
    """Request model for committing a drag-and-drop move."""

    active_id: int = Field(description="Id of the task being dragged")
    over_id: Optional[int] = Field(None, description="Id of the drop target; omit when dropped outside")


class ExpandRequest(BaseModel):
    """Request model for AI subtask expansion of a new task."""

    text: str = Field("", description="Title of the new parent task")


class TaskListResponse(BaseModel):
    """Response model for the full ordered task sequence."""

    success: bool = True
    tasks: List[Dict[str, Any]]
    count: int


class TaskMutationResponse(BaseModel):
    """Response model for store mutations; ``changed`` is False for no-ops."""

    success: bool = True
    changed: bool
    task: Optional[Dict[str, Any]] = None
    removed_ids: List[int] = Field(default_factory=list)
    message: Optional[str] = None


class ExpandResponse(BaseModel):
    """
    Response model for AI expansion.

    ``error`` holds the user-facing message. ``discarded`` is True when the
    expansion was cancelled and its subtasks were dropped.
    """

    success: bool = True
    parent: Optional[Dict[str, Any]] = None
    subtasks: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    discarded: bool = False


class ThemeResponse(BaseModel):
    """Response model for theme preference."""

    theme: str
    is_dark: bool


class HealthResponse(BaseModel):
    """Response model for /healthz."""

    status: str
    storage_connected: bool
    task_count: int
    active_websocket_connections: int
    timestamp: str


class ErrorResponse(BaseModel):
    """Standard error response model."""

    success: bool = False
    error: str
    code: Optional[int] = None
    details: Optional[Dict[str, Any]] = None


# Utility function to create consistent error responses
def create_error_response(
    message: str, code: Optional[int] = None, details: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Create a standardized error response dictionary."""
    return {"success": False, "error": message, "code": code, "details": details}
