"""
API request and response models for the Portal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
tracker/models.py and audit/models.py, which own the internal domain
representation. Route handlers map between the two.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.tokens import MAX_PASSWORD_BYTES, password_too_long

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Error envelope returned on every 4xx/5xx response."""

    model_config = ConfigDict(frozen=True)

    error: str
    code: str
    details: Optional[list[Any]] = None


def validation_details(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Reduce pydantic error dicts to JSON-safe loc/msg/type entries.

    Inputs are dropped so a failed login never echoes the password.
    """
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")} for e in errors]


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    The route validates this explicitly (not via FastAPI's body binding) so
    that malformed attempts are audited as failed logins too.
    """

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        if password_too_long(value):
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class UserInfo(BaseModel):
    id: int
    email: str
    role: str
    status: str


class LoginResponse(BaseModel):
    token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserInfo


class ProfileResponse(UserInfo):
    created_at: Optional[str] = None


class VerifyResponse(BaseModel):
    valid: bool = True
    user: UserInfo


# ---------------------------------------------------------------------------
# Projects and tasks
# ---------------------------------------------------------------------------


class TaskStatusEnum(str, Enum):
    new = "new"
    in_progress = "in_progress"
    done = "done"


class ProjectCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)


class ProjectUpdate(BaseModel):
    """PATCH body. At least one field must be present."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def require_one_field(self) -> "ProjectUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    owner_id: int
    created_at: str
    updated_at: str
    task_count: int = 0
    completed_tasks: int = 0


class TaskCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: TaskStatusEnum = TaskStatusEnum.new


class TaskUpdate(BaseModel):
    """PATCH body. At least one field must be present."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TaskStatusEnum] = None

    @model_validator(mode="after")
    def require_one_field(self) -> "TaskUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class TaskResponse(BaseModel):
    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    status: str
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


class UserRow(UserInfo):
    """One row of GET /api/v1/admin/users."""

    created_at: Optional[str] = None
    project_count: int = 0
    last_login: Optional[str] = None


class UserListResponse(BaseModel):
    users: list[UserRow]
    pagination: Pagination


class AuditLogRow(BaseModel):
    id: int
    ts: str
    actor_user_id: Optional[int] = None
    actor_email: Optional[str] = None
    actor_role: Optional[str] = None
    action: str
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    result: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class AuditLogListResponse(BaseModel):
    logs: list[AuditLogRow]
    pagination: Pagination


class UserDetailResponse(UserRow):
    """GET /api/v1/admin/users/{id}: identity plus activity aggregates."""

    task_count: int = 0
    login_count: int = 0
    recent_projects: list[ProjectResponse] = []
    recent_activity: list[AuditLogRow] = []


class StatusChangeResponse(BaseModel):
    message: str
    user: UserInfo
    previous_status: str


class TopUserRow(BaseModel):
    id: int
    email: str
    project_count: int


class StatsResponse(BaseModel):
    users: dict[str, int]
    projects: dict[str, int]
    tasks: dict[str, int]
    activity: dict[str, int]
    recent_registrations: int
    top_users: list[TopUserRow]


class AdminProjectRow(ProjectResponse):
    owner_email: Optional[str] = None


class AdminProjectListResponse(BaseModel):
    projects: list[AdminProjectRow]
    pagination: Pagination
