"""Database module for Polychat.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from polychat.db.engine import create_db_engine, get_engine
from polychat.db.models import (
    Base,
    Chat,
    LLMProvider,
    Message,
    MessageRole,
    SystemPrompt,
    User,
    UserApiKey,
    UserModel,
    UserSettings,
)
from polychat.db.session import get_db, get_session_factory, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "get_session_factory",
    "transaction",
    # Base
    "Base",
    # Enums
    "MessageRole",
    "LLMProvider",
    # Models
    "User",
    "Chat",
    "Message",
    "UserApiKey",
    "SystemPrompt",
    "UserModel",
    "UserSettings",
]
