"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from polychat.schemas.chats import (
    BulkMessagesRequest,
    ChatOut,
    CreateChatRequest,
    MessageOut,
    ModelChoice,
    ParallelRequest,
    SendMessageRequest,
    UpdateChatRequest,
    UpdateMessageRequest,
)
from polychat.schemas.keys import ApiKeyCreate, ApiKeyOut, ApiKeyRevealOut, ApiKeyStatusOut
from polychat.schemas.settings import (
    CreateSystemPromptRequest,
    FetchModelsRequest,
    SaveUserModelsRequest,
    SystemPromptOut,
    ToggleModelOut,
    ToggleModelRequest,
    TogglePromptOut,
    UpdateSystemPromptRequest,
    UpdateUserSettingsRequest,
    UserModelOut,
    UserSettingsOut,
)

__all__ = [
    # Chats
    "ChatOut",
    "MessageOut",
    "CreateChatRequest",
    "UpdateChatRequest",
    "SendMessageRequest",
    "ModelChoice",
    "ParallelRequest",
    "BulkMessagesRequest",
    "UpdateMessageRequest",
    # Keys
    "ApiKeyCreate",
    "ApiKeyOut",
    "ApiKeyStatusOut",
    "ApiKeyRevealOut",
    # Settings
    "UserSettingsOut",
    "UpdateUserSettingsRequest",
    "SystemPromptOut",
    "CreateSystemPromptRequest",
    "UpdateSystemPromptRequest",
    "TogglePromptOut",
    "FetchModelsRequest",
    "UserModelOut",
    "SaveUserModelsRequest",
    "ToggleModelRequest",
    "ToggleModelOut",
]
