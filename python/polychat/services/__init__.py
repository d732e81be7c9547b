"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations.
"""

from polychat.services.chats import get_chat_for_viewer_or_404, insert_message
from polychat.services.users import ensure_user

__all__ = [
    "ensure_user",
    "get_chat_for_viewer_or_404",
    "insert_message",
]
