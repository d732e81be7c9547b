"""Chat and Message Pydantic schemas.

Contains request and response models for the chat, message and streaming
endpoints. Responses are serialized straight from ORM rows.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Valid message roles - must match DB constraint
MESSAGE_ROLES = Literal["user", "assistant", "system"]

# Max content length
MAX_MESSAGE_CONTENT_LENGTH = 100_000


# =============================================================================
# Response Schemas
# =============================================================================


class ChatOut(BaseModel):
    """Response schema for a chat.

    Branch chats carry the parent they were copied from and the user message
    the copy diverged at.
    """

    id: UUID
    user_id: UUID
    title: str
    system_prompt: str | None = None
    provider: str
    model: str
    pinned: bool
    is_branch: bool
    parent_chat_id: UUID | None = None
    branch_point_message_id: UUID | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageOut(BaseModel):
    """Response schema for a message.

    This is also the payload pushed to WebSocket subscribers.
    """

    id: UUID
    chat_id: UUID
    role: str  # "user" | "assistant" | "system"
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Request Schemas
# =============================================================================


class CreateChatRequest(BaseModel):
    """Request body for POST /chats."""

    title: str
    system_prompt: str | None = None
    provider: str | None = None
    model: str | None = None
    is_branch: bool | None = None
    parent_chat_id: UUID | None = None
    branch_point_message_id: UUID | None = None


class UpdateChatRequest(BaseModel):
    """Request body for PATCH /chats/{id}. Only fields present are written."""

    title: str | None = None
    system_prompt: str | None = None
    provider: str | None = None
    model: str | None = None
    pinned: bool | None = None


class SendMessageRequest(BaseModel):
    """Request body for POST /chats/{id}/messages and /stream.

    Clients send `webSearch`; `web_search` is accepted too.
    """

    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CONTENT_LENGTH)
    web_search: bool = Field(default=False, alias="webSearch")

    model_config = ConfigDict(populate_by_name=True)


class ModelChoice(BaseModel):
    """A {provider, model} pair for parallel branching."""

    provider: str
    model: str


class ParallelRequest(BaseModel):
    """Request body for POST /chats/{id}/parallel."""

    content: str = Field(..., min_length=1, max_length=MAX_MESSAGE_CONTENT_LENGTH)
    web_search: bool = Field(default=False, alias="webSearch")
    models: list[ModelChoice] = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class BulkMessageItem(BaseModel):
    role: MESSAGE_ROLES
    content: str


class BulkMessagesRequest(BaseModel):
    """Request body for POST /chats/{id}/messages/bulk."""

    messages: list[BulkMessageItem]


class UpdateMessageRequest(BaseModel):
    content: str
