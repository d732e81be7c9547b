"""Chat and Message service layer.

All operations:
- Enforce owner-only access
- Report a chat that is absent and a chat owned by someone else the same
  way (404), so existence cannot be probed
- Order messages by (created_at, seq)

Service functions correspond 1:1 with route handlers, plus the collaborator
helpers the streaming pipeline builds on (ownership lookup, message insert,
recent-history fetch, title rule).
"""

from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.orm import Session

from polychat.db import transaction
from polychat.db.models import Chat, Message, MessageRole, utcnow
from polychat.errors import InvalidRequestError, NotFoundError
from polychat.logging import get_logger
from polychat.schemas.chats import (
    BulkMessagesRequest,
    ChatOut,
    CreateChatRequest,
    MessageOut,
    UpdateChatRequest,
)
from polychat.services.prompts import combine_prompts, get_active_prompts
from polychat.services.seq import assign_next_message_seq
from polychat.services.titles import PLACEHOLDER_TITLE, generate_chat_title

logger = get_logger(__name__)

DEFAULT_PROVIDER = "openai"
DEFAULT_MODEL = "gpt-4o"


# =============================================================================
# Helpers
# =============================================================================


def get_chat_for_viewer_or_404(db: Session, viewer_id: UUID, chat_id: UUID) -> Chat:
    """Load chat and verify ownership.

    Raises:
        NotFoundError: If chat doesn't exist OR viewer is not the owner.
    """
    chat = db.get(Chat, chat_id)
    if chat is None or chat.user_id != viewer_id:
        raise NotFoundError("Chat not found")
    return chat


def get_message_in_chat_or_404(db: Session, chat_id: UUID, message_id: UUID) -> Message:
    message = db.get(Message, message_id)
    if message is None or message.chat_id != chat_id:
        raise NotFoundError("Message not found")
    return message


def get_chat_owner_id(db: Session, chat_id: UUID) -> UUID | None:
    """Owner of a chat, or None if the chat no longer exists."""
    return db.scalar(select(Chat.user_id).where(Chat.id == chat_id))


def chat_to_out(chat: Chat) -> ChatOut:
    """Convert Chat ORM model to ChatOut schema."""
    return ChatOut.model_validate(chat)


def message_to_out(message: Message) -> MessageOut:
    """Convert Message ORM model to MessageOut schema."""
    return MessageOut.model_validate(message)


def _ordered(stmt):
    return stmt.order_by(Message.created_at.asc(), Message.seq.asc())


def _later_than(target: Message):
    """Messages strictly after target in (created_at, seq) order."""
    return or_(
        Message.created_at > target.created_at,
        and_(Message.created_at == target.created_at, Message.seq > target.seq),
    )


# =============================================================================
# Collaborators used by the streaming pipeline
# =============================================================================


def insert_message(db: Session, chat_id: UUID, role: str, content: str) -> Message:
    """Insert one message and commit.

    The seq counter is taken under the chat row lock so that rows written
    within the same timestamp still sort in insertion order.
    """
    with transaction(db):
        seq = assign_next_message_seq(db, chat_id)
        message = Message(
            chat_id=chat_id,
            seq=seq,
            role=role,
            content=content,
            created_at=utcnow(),
        )
        db.add(message)

    return message


def get_recent_messages(db: Session, chat_id: UUID, limit: int) -> list[Message]:
    """Most recent `limit` messages, returned oldest first."""
    stmt = (
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.desc(), Message.seq.desc())
        .limit(limit)
    )
    messages = list(db.scalars(stmt).all())
    messages.reverse()
    return messages


def get_all_messages(db: Session, chat_id: UUID) -> list[Message]:
    return list(db.scalars(_ordered(select(Message).where(Message.chat_id == chat_id))).all())


def count_user_messages(db: Session, chat_id: UUID) -> int:
    result = db.scalar(
        select(func.count())
        .select_from(Message)
        .where(Message.chat_id == chat_id, Message.role == MessageRole.user.value)
    )
    return result or 0


def apply_first_message_title(db: Session, chat_id: UUID, content: str) -> str | None:
    """Retitle a placeholder-titled chat after its first user message.

    Applies only while the title still contains "New Chat" and exactly one
    user message exists. Returns the new title, or None when unchanged.
    """
    chat = db.get(Chat, chat_id)
    if chat is None or PLACEHOLDER_TITLE not in chat.title:
        return None

    if count_user_messages(db, chat_id) != 1:
        return None

    chat.title = generate_chat_title(content)
    chat.updated_at = utcnow()
    db.commit()

    logger.info("chat_retitled", chat_id=str(chat_id), title_chars=len(chat.title))
    return chat.title


# =============================================================================
# Chat CRUD
# =============================================================================


def list_chats(db: Session, viewer_id: UUID) -> list[ChatOut]:
    """The viewer's chats, newest first."""
    stmt = select(Chat).where(Chat.user_id == viewer_id).order_by(Chat.created_at.desc())
    return [chat_to_out(c) for c in db.scalars(stmt).all()]


def create_chat(db: Session, viewer_id: UUID, request: CreateChatRequest) -> ChatOut:
    """Create a chat.

    Without an explicit system_prompt the viewer's active prompts are
    snapshotted onto the chat.

    Raises:
        NotFoundError: If parent_chat_id names a chat the viewer does not own.
    """
    if request.parent_chat_id is not None:
        get_chat_for_viewer_or_404(db, viewer_id, request.parent_chat_id)

    system_prompt = request.system_prompt
    if system_prompt is None:
        system_prompt = combine_prompts(get_active_prompts(db, viewer_id))

    chat = Chat(
        user_id=viewer_id,
        title=request.title,
        system_prompt=system_prompt,
        provider=request.provider or DEFAULT_PROVIDER,
        model=request.model or DEFAULT_MODEL,
        pinned=False,
        is_branch=bool(request.is_branch),
        parent_chat_id=request.parent_chat_id,
        branch_point_message_id=request.branch_point_message_id,
        next_seq=1,
    )
    db.add(chat)
    db.commit()

    logger.info("chat_created", chat_id=str(chat.id), is_branch=chat.is_branch)
    return chat_to_out(chat)


def get_chat(db: Session, viewer_id: UUID, chat_id: UUID) -> ChatOut:
    return chat_to_out(get_chat_for_viewer_or_404(db, viewer_id, chat_id))


def update_chat(
    db: Session, viewer_id: UUID, chat_id: UUID, request: UpdateChatRequest
) -> ChatOut:
    """Set only the fields present in the request.

    Raises:
        NotFoundError: Chat absent or not owned.
        InvalidRequestError: No updatable field was given.
    """
    chat = get_chat_for_viewer_or_404(db, viewer_id, chat_id)

    fields = {k: v for k, v in request.model_dump(exclude_unset=True).items() if v is not None}
    if not fields:
        raise InvalidRequestError("No fields to update")

    for field, value in fields.items():
        setattr(chat, field, value)
    chat.updated_at = utcnow()

    db.commit()
    return chat_to_out(chat)


def delete_chat(db: Session, viewer_id: UUID, chat_id: UUID) -> None:
    """Delete a chat, its messages and every descendant branch.

    Branches are found through parent_chat_id, recursively, restricted to
    the viewer's own chats.
    """
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)

    doomed = [chat_id]
    frontier = [chat_id]
    while frontier:
        children = db.scalars(
            select(Chat.id).where(Chat.parent_chat_id.in_(frontier), Chat.user_id == viewer_id)
        ).all()
        frontier = [c for c in children if c not in doomed]
        doomed.extend(frontier)

    with transaction(db):
        db.execute(delete(Message).where(Message.chat_id.in_(doomed)))
        db.execute(delete(Chat).where(Chat.id.in_(doomed)))

    logger.info("chat_deleted", chat_id=str(chat_id), branch_count=len(doomed) - 1)


# =============================================================================
# Message CRUD
# =============================================================================


def list_messages(db: Session, viewer_id: UUID, chat_id: UUID) -> list[MessageOut]:
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    return [message_to_out(m) for m in get_all_messages(db, chat_id)]


def bulk_insert_messages(
    db: Session, viewer_id: UUID, chat_id: UUID, request: BulkMessagesRequest
) -> list[MessageOut]:
    """Insert messages in the given order, in one transaction."""
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)

    inserted = []
    with transaction(db):
        for item in request.messages:
            message = Message(
                chat_id=chat_id,
                seq=assign_next_message_seq(db, chat_id),
                role=item.role,
                content=item.content,
                created_at=utcnow(),
            )
            db.add(message)
            inserted.append(message)

    return [message_to_out(m) for m in inserted]


def update_message(
    db: Session, viewer_id: UUID, chat_id: UUID, message_id: UUID, content: str
) -> MessageOut:
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    message = get_message_in_chat_or_404(db, chat_id, message_id)

    message.content = content
    db.commit()
    return message_to_out(message)


def delete_message(db: Session, viewer_id: UUID, chat_id: UUID, message_id: UUID) -> None:
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    message = get_message_in_chat_or_404(db, chat_id, message_id)

    db.delete(message)
    db.commit()


def delete_message_and_subsequent(
    db: Session, viewer_id: UUID, chat_id: UUID, message_id: UUID
) -> list[UUID]:
    """Delete the target message and everything after it. Returns deleted ids."""
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    target = get_message_in_chat_or_404(db, chat_id, message_id)

    condition = or_(Message.id == target.id, _later_than(target))
    return _delete_where(db, chat_id, condition)


def delete_subsequent_messages(
    db: Session, viewer_id: UUID, chat_id: UUID, message_id: UUID
) -> list[UUID]:
    """Delete only the messages after the target. Returns deleted ids."""
    get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    target = get_message_in_chat_or_404(db, chat_id, message_id)

    return _delete_where(db, chat_id, _later_than(target))


def _delete_where(db: Session, chat_id: UUID, condition) -> list[UUID]:
    with transaction(db):
        ids = list(
            db.scalars(_ordered(select(Message.id).where(Message.chat_id == chat_id, condition)))
        )
        if ids:
            db.execute(delete(Message).where(Message.id.in_(ids)))
    return ids
