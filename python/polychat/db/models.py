"""SQLAlchemy ORM models for Polychat.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Column types are portable between SQLite and PostgreSQL.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# =============================================================================
# Enums
# =============================================================================


class MessageRole(str, PyEnum):
    """Roles for messages in a chat."""

    user = "user"
    assistant = "assistant"
    system = "system"


class LLMProvider(str, PyEnum):
    """Supported LLM providers."""

    openai = "openai"
    anthropic = "anthropic"
    openrouter = "openrouter"
    xai = "xai"
    gemini = "gemini"


# =============================================================================
# Users
# =============================================================================


class User(Base):
    """User account model.

    The user ID matches the `sub` claim of the caller's bearer token.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, nullable=False, default="")
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    password_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    external_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(Text, nullable=False, default="user")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Relationships
    chats: Mapped[list["Chat"]] = relationship(
        "Chat", back_populates="owner", cascade="all, delete-orphan"
    )


# =============================================================================
# Chats and messages
# =============================================================================


class Chat(Base):
    """Chat model - a thread of messages owned by one user.

    Branch chats point at their parent through parent_chat_id. The reference
    is soft: there is no foreign key, so a branch outlives a parent that was
    removed by other means.
    """

    __tablename__ = "chats"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider: Mapped[str] = mapped_column(Text, nullable=False, default="openai")
    model: Mapped[str] = mapped_column(Text, nullable=False, default="gpt-4o")
    pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_branch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_chat_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    branch_point_message_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    next_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("next_seq >= 1", name="ck_chats_next_seq_positive"),
        Index("ix_chats_user_id", "user_id"),
        Index("ix_chats_parent_chat_id", "parent_chat_id"),
    )

    # Relationships
    owner: Mapped["User"] = relationship("User", back_populates="chats")
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="(Message.created_at, Message.seq)",
    )


class Message(Base):
    """Message model - a single message in a chat.

    Ordering is (created_at, seq). seq is a per-chat insertion counter that
    breaks ties between rows written within the same timestamp resolution.
    """

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    chat_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("seq >= 1", name="ck_messages_seq_positive"),
        CheckConstraint(
            "role IN ('user', 'assistant', 'system')",
            name="ck_messages_role",
        ),
        Index("ix_messages_chat_order", "chat_id", "created_at", "seq"),
    )

    # Relationships
    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")


# =============================================================================
# Keys, prompts, preferences
# =============================================================================


class UserApiKey(Base):
    """UserApiKey model - one encrypted provider key per (user, provider)."""

    __tablename__ = "user_api_keys"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    provider: Mapped[str] = mapped_column(Text, primary_key=True)
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "provider IN ('openai', 'anthropic', 'openrouter', 'xai', 'gemini')",
            name="ck_user_api_keys_provider",
        ),
    )


class SystemPrompt(Base):
    """SystemPrompt model - reusable instructions; is_default marks it active."""

    __tablename__ = "system_prompts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, default="general")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (Index("ix_system_prompts_user_id", "user_id"),)


class UserModel(Base):
    """UserModel model - per-user model picker preferences."""

    __tablename__ = "user_models"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    provider: Mapped[str] = mapped_column(Text, primary_key=True)
    model_id: Mapped[str] = mapped_column(Text, primary_key=True)
    model_name: Mapped[str] = mapped_column(Text, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class UserSettings(Base):
    """UserSettings model - UI preferences, created with defaults on first read."""

    __tablename__ = "user_settings"

    user_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    theme: Mapped[str] = mapped_column(Text, nullable=False, default="dark")
    language: Mapped[str] = mapped_column(Text, nullable=False, default="en")
    font_size: Mapped[int] = mapped_column(Integer, nullable=False, default=14)
    notifications_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_save: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
