"""Sequence assignment helper for message ordering.

Each chat has a `next_seq` counter (starts at 1). Assignment locks the chat
row, reads next_seq and increments it. The returned value is the seq for the
new message. Messages are ordered by (created_at, seq), so rows inserted
within the same clock tick still come back in insertion order.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from polychat.db.models import Chat, utcnow
from polychat.logging import get_logger

logger = get_logger(__name__)


def assign_next_message_seq(db: Session, chat_id: UUID) -> int:
    """Atomically assign the next message sequence number for a chat.

    This function MUST be called within an existing transaction context.
    It does NOT open or commit its own transaction.

    Args:
        db: Database session (must be in a transaction)
        chat_id: UUID of the chat to assign seq for

    Returns:
        The sequence number to use for the new message

    Raises:
        ValueError: If the chat does not exist
    """
    # FOR UPDATE on PostgreSQL; SQLite serializes writers on its own
    current_seq = db.execute(
        select(Chat.next_seq).where(Chat.id == chat_id).with_for_update()
    ).scalar_one_or_none()

    if current_seq is None:
        raise ValueError(f"Chat {chat_id} not found")

    db.execute(
        update(Chat)
        .where(Chat.id == chat_id)
        .values(next_seq=Chat.next_seq + 1, updated_at=utcnow())
    )

    logger.debug("assigned_message_seq", chat_id=str(chat_id), seq=current_seq)

    return current_seq
