"""Message routes.

Routes are transport-only: each calls exactly one service function.
The non-streaming send lives here too; it calls the provider and waits for
the whole reply.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session, sessionmaker

from polychat.api.deps import get_broadcast_hub, get_db, get_llm_router, get_session_factory
from polychat.auth.middleware import Viewer, get_viewer
from polychat.config import get_settings
from polychat.schemas.chats import (
    BulkMessagesRequest,
    MessageOut,
    SendMessageRequest,
    UpdateMessageRequest,
)
from polychat.services import chat_stream
from polychat.services import chats as chats_service
from polychat.services.broadcast import BroadcastHub
from polychat.services.llm import LLMRouter

router = APIRouter(tags=["messages"])


@router.get("/chats/{chat_id}/messages")
def list_messages(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[MessageOut]:
    """All messages of a chat in (created_at, seq) order."""
    return chats_service.list_messages(db, viewer.user_id, chat_id)


@router.post("/chats/{chat_id}/messages")
async def send_message(
    chat_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
) -> MessageOut:
    """Send a message and return the assistant's complete reply.

    Errors:
        400: No key for the chat's provider, or provider not supported.
        404: Chat absent or not owned.
        4xx/5xx: Vendor failure, with the vendor's status when valid (else 502).
    """
    return await chat_stream.send_message(
        session_factory,
        llm_router,
        hub,
        viewer.user_id,
        chat_id,
        body.content,
        history_limit=get_settings().history_limit,
    )


@router.post("/chats/{chat_id}/messages/bulk")
def bulk_insert_messages(
    chat_id: UUID,
    body: BulkMessagesRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[MessageOut]:
    """Insert messages in the given order."""
    return chats_service.bulk_insert_messages(db, viewer.user_id, chat_id, body)


@router.patch("/chats/{chat_id}/messages/{message_id}")
def update_message(
    chat_id: UUID,
    message_id: UUID,
    body: UpdateMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> MessageOut:
    return chats_service.update_message(db, viewer.user_id, chat_id, message_id, body.content)


@router.delete("/chats/{chat_id}/messages/{message_id}", status_code=204)
def delete_message(
    chat_id: UUID,
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    chats_service.delete_message(db, viewer.user_id, chat_id, message_id)
    return Response(status_code=204)


@router.delete("/chats/{chat_id}/messages/{message_id}/and-subsequent")
def delete_message_and_subsequent(
    chat_id: UUID,
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[UUID]:
    """Delete the message and everything after it. Returns the deleted ids."""
    return chats_service.delete_message_and_subsequent(db, viewer.user_id, chat_id, message_id)


@router.delete("/chats/{chat_id}/messages/{message_id}/subsequent")
def delete_subsequent_messages(
    chat_id: UUID,
    message_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[UUID]:
    """Delete everything after the message. Returns the deleted ids."""
    return chats_service.delete_subsequent_messages(db, viewer.user_id, chat_id, message_id)
