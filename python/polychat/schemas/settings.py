"""Settings, system prompt and model preference schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# User settings
# =============================================================================


class UserSettingsOut(BaseModel):
    theme: str
    language: str
    font_size: int
    notifications_enabled: bool
    auto_save: bool
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UpdateUserSettingsRequest(BaseModel):
    """Partial update; absent fields keep their stored value."""

    theme: str | None = None
    language: str | None = None
    font_size: int | None = Field(default=None, ge=6, le=72)
    notifications_enabled: bool | None = None
    auto_save: bool | None = None


# =============================================================================
# System prompts
# =============================================================================


class SystemPromptOut(BaseModel):
    id: UUID
    name: str
    prompt: str
    description: str | None = None
    is_default: bool
    category: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CreateSystemPromptRequest(BaseModel):
    name: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1)
    description: str | None = None
    is_default: bool = False
    category: str = "general"


class UpdateSystemPromptRequest(BaseModel):
    name: str | None = None
    prompt: str | None = None
    description: str | None = None
    is_default: bool | None = None
    category: str | None = None


class TogglePromptOut(BaseModel):
    id: UUID
    is_default: bool


# =============================================================================
# Model preferences
# =============================================================================


class FetchModelsRequest(BaseModel):
    provider: str


class UserModelOut(BaseModel):
    provider: str
    model_id: str
    model_name: str
    is_enabled: bool
    display_order: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserModelIn(BaseModel):
    provider: str
    model_id: str
    model_name: str
    is_enabled: bool = True
    display_order: int = 0


class SaveUserModelsRequest(BaseModel):
    """Replaces every stored preference for the caller."""

    models: list[UserModelIn]


class ToggleModelRequest(BaseModel):
    provider: str
    model_id: str
    model_name: str


class ToggleModelOut(BaseModel):
    success: bool
    is_enabled: bool
    model_id: str
    provider: str
