"""Conversation assembly for provider calls.

Builds the ordered turn list sent to an adapter:
- The most recent N messages of the chat, oldest first
- Prefixed by one system turn built from the user's active system prompts
  (joined with a separator), else the chat's stored system_prompt, else
  nothing

Active prompts always win over the chat's stored snapshot, so editing a
prompt changes every later turn of existing chats.
"""

from sqlalchemy.orm import Session

from polychat.db.models import Chat, Message
from polychat.services.chats import get_recent_messages
from polychat.services.llm.types import Turn
from polychat.services.prompts import combine_prompts, get_active_prompts

# Messages sent to the provider per request
DEFAULT_HISTORY_LIMIT = 10


def resolve_system_prompt(db: Session, chat: Chat) -> str | None:
    """Active prompts for the chat owner, falling back to the chat snapshot."""
    combined = combine_prompts(get_active_prompts(db, chat.user_id))
    if combined:
        return combined
    return chat.system_prompt or None


def message_to_turn(message: Message) -> Turn:
    return Turn(role=message.role, content=message.content)


def assemble_conversation(
    db: Session, chat: Chat, history_limit: int = DEFAULT_HISTORY_LIMIT
) -> list[Turn]:
    """Ordered turns for a provider request.

    Args:
        db: Database session.
        chat: The chat being answered (already ownership-checked).
        history_limit: Maximum number of stored messages to include.

    Returns:
        [system?] + recent messages in chronological order.
    """
    turns: list[Turn] = []

    system_prompt = resolve_system_prompt(db, chat)
    if system_prompt:
        turns.append(Turn(role="system", content=system_prompt))

    turns.extend(message_to_turn(m) for m in get_recent_messages(db, chat.id, history_limit))
    return turns
