"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from typing import Any

from pydantic import BaseModel, Field

from src.domain.models import CeremonyPhase, Role, Step
from src.domain.ports import NotificationLevel


class NotificationModel(BaseModel):
    """A user-facing message published since the previous response."""

    level: NotificationLevel
    message: str


class ErrorModel(BaseModel):
    """The error currently shown on the step."""

    kind: str
    message: str
    field: str | None = None


class FlowStateResponse(BaseModel):
    """Snapshot of one onboarding flow."""

    flow_id: str
    step: Step
    role: Role | None = None
    step_number: int
    total_steps: int
    progress: float = Field(..., ge=0.0, le=1.0)
    in_flight: bool = False
    email: str = ""
    account_id: str | None = None
    authenticated: bool = False
    selected_skills: list[str] = Field(default_factory=list)
    custom_skills: list[str] = Field(default_factory=list)
    resend_available_in: float = 0.0
    passkey_phase: CeremonyPhase = CeremonyPhase.INTRO
    passkey_enrolled: bool = False
    error: ErrorModel | None = None
    notifications: list[NotificationModel] = Field(default_factory=list)


class RoleRequest(BaseModel):
    """Request model for role selection."""

    role: Role


class DetailsRequest(BaseModel):
    """
    Request model for the account details step.

    Fields left out keep their current draft value.
    """

    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    email: str | None = Field(None, max_length=254)
    password: str | None = Field(None, max_length=128)
    confirm_password: str | None = Field(None, max_length=128)
    location: str | None = Field(None, max_length=200)
    phone: str | None = Field(None, max_length=32)


class VerifyRequest(BaseModel):
    """Request model for email verification."""

    code: str = Field(..., min_length=1, max_length=16, description="Code from the verification email")


class SkillsRequest(BaseModel):
    """
    Request model for the skills step.

    `skills` replaces the current selection; `custom_skills` are added to
    the catalog before the selection is submitted.
    """

    skills: list[str] = Field(default_factory=list)
    custom_skills: list[str] = Field(default_factory=list)


class SkillModel(BaseModel):
    id: str
    name: str
    category: str
    custom: bool = False


class SkillCatalogResponse(BaseModel):
    """Response model for the skills catalog."""

    categories: list[str]
    skills: list[SkillModel]


class PasskeyBeginRequest(BaseModel):
    """Request model for starting passkey enrollment."""

    device_label: str | None = Field(None, max_length=100, description="Leave empty to detect from the browser")
    supports_webauthn: bool = Field(True, description="Whether the browser exposes credential creation")


class PasskeyBeginResponse(BaseModel):
    """Creation options to pass to navigator.credentials.create()."""

    device_label: str
    options: dict[str, Any]
    state: FlowStateResponse


class PasskeyFinishRequest(BaseModel):
    """Request model carrying the credential created by the browser."""

    credential: dict[str, Any]


class PasskeyAbortRequest(BaseModel):
    """Request model for a credential creation failure in the browser."""

    error_name: str = Field(..., min_length=1, max_length=64, description="DOMException name")
    message: str | None = Field(None, max_length=500)


class CompleteResponse(BaseModel):
    """Response model for a finished onboarding flow."""

    destination: str
    state: FlowStateResponse


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: dict[str, Any] | str
