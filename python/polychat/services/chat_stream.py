"""Streaming orchestrator: user turn in, provider stream out, reply saved.

A stream request runs in two halves.

prepare_stream() / prepare_regenerate() run before the response starts, so
their failures are ordinary HTTP errors:
- Validate chat ownership (404 on any mismatch)
- Decrypt the provider key (400 if absent, 500 if undecryptable)
- Check the provider is available (400 if unknown or disabled)
- Persist and broadcast the user turn (stream only)
- Detach the first-message title update (stream only)
- Assemble the conversation

relay_stream() is the response body. Each delta is yielded to the client
and appended to the accumulator before the next one is requested. A
provider failure after the response has started is reported in-band as a
single "ERROR: <message>" chunk. Whichever way the body ends (completion,
provider failure, client disconnect) the finally block saves the
accumulated text as one assistant message and broadcasts it. Nothing is
written when no content arrived.

Sync DB access uses run_in_threadpool (starlette) with a fresh session per
unit of work, because the body outlives the request-scoped session.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable, Coroutine
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import anyio
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from polychat.db import transaction
from polychat.db.models import Chat, Message, MessageRole, utcnow
from polychat.errors import InvalidRequestError, NotFoundError
from polychat.logging import get_logger
from polychat.schemas.chats import ChatOut, MessageOut, ModelChoice
from polychat.services.broadcast import BroadcastHub
from polychat.services.chats import (
    apply_first_message_title,
    chat_to_out,
    get_all_messages,
    get_chat_for_viewer_or_404,
    insert_message,
    message_to_out,
)
from polychat.services.conversation import DEFAULT_HISTORY_LIMIT, assemble_conversation
from polychat.services.llm import LLMError, LLMRouter, Turn, to_api_error
from polychat.services.redact import safe_kv
from polychat.services.seq import assign_next_message_seq
from polychat.services.titles import PLACEHOLDER_TITLE, branch_title, generate_chat_title
from polychat.services.user_keys import get_decrypted_key

logger = get_logger(__name__)

ERROR_PREFIX = "ERROR: "

# Detached side effects (title updates). Held here so they are not garbage
# collected mid-flight and so shutdown can wait for them.
_background_tasks: set[asyncio.Task] = set()


@dataclass
class StreamPlan:
    """Everything relay_stream needs, resolved before the response starts."""

    chat_id: UUID
    provider: str
    model: str
    api_key: str
    turns: list[Turn]
    web_search: bool = False
    user_message: MessageOut | None = None


# =============================================================================
# Session helpers
# =============================================================================


def _run(session_factory: sessionmaker[Session], fn: Callable[..., Any], *args: Any) -> Any:
    db = session_factory()
    try:
        return fn(db, *args)
    finally:
        db.close()


async def _in_session(
    session_factory: sessionmaker[Session], fn: Callable[..., Any], *args: Any
) -> Any:
    """Run fn(db, *args) in the threadpool with its own session."""
    return await run_in_threadpool(_run, session_factory, fn, *args)


def _spawn(coro: Coroutine[Any, Any, None]) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks() -> None:
    """Wait for every detached side effect started so far."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


# =============================================================================
# Unit-of-work functions (run in the threadpool)
# =============================================================================


def _resolve_chat_and_key(db: Session, viewer_id: UUID, chat_id: UUID) -> tuple[Chat, str]:
    chat = get_chat_for_viewer_or_404(db, viewer_id, chat_id)
    api_key = get_decrypted_key(db, viewer_id, chat.provider)
    if api_key is None:
        raise InvalidRequestError(f"api key for provider '{chat.provider}' not found.")
    return chat, api_key


def _insert_out(db: Session, chat_id: UUID, role: str, content: str) -> MessageOut:
    return message_to_out(insert_message(db, chat_id, role, content))


def _fetch_chat(db: Session, chat_id: UUID) -> Chat:
    chat = db.get(Chat, chat_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    return chat


def _create_branches(
    db: Session,
    viewer_id: UUID,
    parent: Chat,
    user_message: MessageOut,
    base_title: str,
    models: list[ModelChoice],
) -> list[ChatOut]:
    """Create one branch per model, each a copy of the parent's history.

    The history copy excludes the new user message; it is appended once at
    the end of every branch.
    """
    history = [m for m in get_all_messages(db, parent.id) if m.id != user_message.id]
    created: list[Chat] = []

    with transaction(db):
        for choice in models:
            branch = Chat(
                user_id=viewer_id,
                title=branch_title(base_title, choice.model),
                system_prompt=parent.system_prompt,
                provider=choice.provider,
                model=choice.model,
                pinned=False,
                is_branch=True,
                parent_chat_id=parent.id,
                branch_point_message_id=user_message.id,
                next_seq=1,
            )
            db.add(branch)
            db.flush()

            for role, content in [(m.role, m.content) for m in history] + [
                (MessageRole.user.value, user_message.content)
            ]:
                db.add(
                    Message(
                        chat_id=branch.id,
                        seq=assign_next_message_seq(db, branch.id),
                        role=role,
                        content=content,
                        created_at=utcnow(),
                    )
                )
            created.append(branch)

    return [chat_to_out(c) for c in created]


# =============================================================================
# Stream preparation
# =============================================================================


def _ensure_provider(router: LLMRouter, provider: str) -> None:
    if not router.is_provider_available(provider):
        raise InvalidRequestError(f"provider '{provider}' is not supported.")


async def _update_title(
    session_factory: sessionmaker[Session], chat_id: UUID, content: str
) -> None:
    """Best-effort first-message retitle; failures are logged and dropped."""
    try:
        await _in_session(session_factory, apply_first_message_title, chat_id, content)
    except Exception as e:
        logger.warning(
            "chat_stream.title_failed",
            chat_id=str(chat_id),
            error_type=type(e).__name__,
        )


async def prepare_stream(
    session_factory: sessionmaker[Session],
    router: LLMRouter,
    hub: BroadcastHub,
    viewer_id: UUID,
    chat_id: UUID,
    content: str,
    *,
    web_search: bool = False,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> StreamPlan:
    """Validate, persist the user turn and assemble the conversation.

    Raises:
        NotFoundError: Chat absent or not owned by the viewer.
        InvalidRequestError: No key stored for the chat's provider, or the
            provider is unknown or disabled.
        InternalError: The stored key cannot be decrypted.
    """
    chat, api_key = await _in_session(session_factory, _resolve_chat_and_key, viewer_id, chat_id)
    _ensure_provider(router, chat.provider)

    # The insert and the full chat read are independent.
    user_message, chat = await asyncio.gather(
        _in_session(session_factory, _insert_out, chat_id, MessageRole.user.value, content),
        _in_session(session_factory, _fetch_chat, chat_id),
    )
    hub.publish(user_message)

    if PLACEHOLDER_TITLE in chat.title:
        _spawn(_update_title(session_factory, chat_id, content))

    turns = await _in_session(session_factory, assemble_conversation, chat, history_limit)

    logger.info(
        "chat_stream.prepared",
        **safe_kv(
            chat_id=str(chat_id),
            provider=chat.provider,
            model_name=chat.model,
            turn_count=len(turns),
            content_chars=len(content),
            web_search=web_search,
        ),
    )
    return StreamPlan(
        chat_id=chat_id,
        provider=chat.provider,
        model=chat.model,
        api_key=api_key,
        turns=turns,
        web_search=web_search,
        user_message=user_message,
    )


async def prepare_regenerate(
    session_factory: sessionmaker[Session],
    router: LLMRouter,
    viewer_id: UUID,
    chat_id: UUID,
    *,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> StreamPlan:
    """Same as prepare_stream without a new user turn or title update."""
    chat, api_key = await _in_session(session_factory, _resolve_chat_and_key, viewer_id, chat_id)
    _ensure_provider(router, chat.provider)

    turns = await _in_session(session_factory, assemble_conversation, chat, history_limit)

    logger.info(
        "chat_stream.prepared",
        **safe_kv(
            chat_id=str(chat_id),
            provider=chat.provider,
            model_name=chat.model,
            turn_count=len(turns),
            regenerate=True,
        ),
    )
    return StreamPlan(
        chat_id=chat_id,
        provider=chat.provider,
        model=chat.model,
        api_key=api_key,
        turns=turns,
    )


# =============================================================================
# Relay
# =============================================================================


async def _save_reply(
    session_factory: sessionmaker[Session], hub: BroadcastHub, chat_id: UUID, content: str
) -> MessageOut | None:
    try:
        message = await _in_session(
            session_factory, _insert_out, chat_id, MessageRole.assistant.value, content
        )
    except Exception:
        logger.exception("chat_stream.save_failed", chat_id=str(chat_id))
        return None

    hub.publish(message)
    return message


async def relay_stream(
    session_factory: sessionmaker[Session],
    router: LLMRouter,
    hub: BroadcastHub,
    plan: StreamPlan,
) -> AsyncIterator[str]:
    """Response body for a prepared stream.

    Yields:
        Raw text deltas, possibly followed by one "ERROR: <message>" chunk.
    """
    accumulator: list[str] = []
    outcome = "complete"
    start = time.monotonic()

    try:
        async with aclosing(
            router.stream(
                plan.provider,
                plan.model,
                plan.turns,
                plan.api_key,
                web_search=plan.web_search,
            )
        ) as deltas:
            async for delta in deltas:
                accumulator.append(delta)
                yield delta
    except LLMError as e:
        outcome = "error"
        logger.warning(
            "chat_stream.provider_error",
            chat_id=str(plan.chat_id),
            error_class=e.error_class.value,
            chunks=len(accumulator),
        )
        yield f"{ERROR_PREFIX}{e}"
    except (asyncio.CancelledError, GeneratorExit):
        outcome = "disconnected"
        logger.info("chat_stream.client_disconnect", chat_id=str(plan.chat_id))
        raise
    finally:
        # Runs on every exit path; shielded so a cancelled request still saves.
        content = "".join(accumulator)
        saved = None
        with anyio.CancelScope(shield=True):
            if content.strip():
                saved = await _save_reply(session_factory, hub, plan.chat_id, content)

        logger.info(
            "chat_stream.finished",
            **safe_kv(
                chat_id=str(plan.chat_id),
                provider=plan.provider,
                model_name=plan.model,
                outcome=outcome,
                chunks=len(accumulator),
                response_chars=len(content),
                saved=saved is not None,
                total_ms=int((time.monotonic() - start) * 1000),
            ),
        )


# =============================================================================
# Non-streaming variants
# =============================================================================


async def send_message(
    session_factory: sessionmaker[Session],
    router: LLMRouter,
    hub: BroadcastHub,
    viewer_id: UUID,
    chat_id: UUID,
    content: str,
    *,
    history_limit: int = DEFAULT_HISTORY_LIMIT,
) -> MessageOut:
    """Send one message and wait for the whole reply.

    The user turn is persisted and broadcast before the provider is called,
    so it survives a provider failure.

    Raises:
        NotFoundError: Chat absent or not owned by the viewer.
        InvalidRequestError: Missing key, or unknown or disabled provider.
        ProviderApiError: The vendor call failed.
        InternalError: Undecryptable key or unparseable vendor response.
    """
    chat = await _in_session(session_factory, get_chat_for_viewer_or_404, viewer_id, chat_id)

    user_message = await _in_session(
        session_factory, _insert_out, chat_id, MessageRole.user.value, content
    )
    hub.publish(user_message)

    if PLACEHOLDER_TITLE in chat.title:
        await _in_session(session_factory, apply_first_message_title, chat_id, content)

    turns = await _in_session(session_factory, assemble_conversation, chat, history_limit)

    api_key = await _in_session(session_factory, get_decrypted_key, viewer_id, chat.provider)
    if api_key is None:
        raise InvalidRequestError(f"api key for provider '{chat.provider}' not found.")
    _ensure_provider(router, chat.provider)

    try:
        reply = await router.complete(chat.provider, chat.model, turns, api_key)
    except LLMError as e:
        raise to_api_error(e) from e

    assistant_message = await _in_session(
        session_factory, _insert_out, chat_id, MessageRole.assistant.value, reply
    )
    hub.publish(assistant_message)
    return assistant_message


async def create_parallel_branches(
    session_factory: sessionmaker[Session],
    hub: BroadcastHub,
    viewer_id: UUID,
    chat_id: UUID,
    content: str,
    models: list[ModelChoice],
) -> list[ChatOut]:
    """Persist the user turn on the parent, then fork one branch per model.

    No provider is called here; each branch is answered later through its
    own stream request.

    Raises:
        NotFoundError: Parent chat absent or not owned by the viewer.
    """
    parent = await _in_session(session_factory, get_chat_for_viewer_or_404, viewer_id, chat_id)

    user_message = await _in_session(
        session_factory, _insert_out, chat_id, MessageRole.user.value, content
    )
    hub.publish(user_message)

    if PLACEHOLDER_TITLE in parent.title:
        base_title = generate_chat_title(content)
        await _in_session(session_factory, apply_first_message_title, chat_id, content)
    else:
        base_title = parent.title

    branches = await _in_session(
        session_factory, _create_branches, viewer_id, parent, user_message, base_title, models
    )

    logger.info(
        "chat_branches_created",
        parent_chat_id=str(chat_id),
        branch_count=len(branches),
    )
    return branches
