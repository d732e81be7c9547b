"""Chat routes.

Routes are transport-only: each calls exactly one service function.
Ownership failures are always 404.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from polychat.api.deps import get_db
from polychat.auth.middleware import Viewer, get_viewer
from polychat.schemas.chats import ChatOut, CreateChatRequest, UpdateChatRequest
from polychat.services import chats as chats_service

router = APIRouter(tags=["chats"])


@router.get("/chats")
def list_chats(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[ChatOut]:
    """The viewer's chats, newest first."""
    return chats_service.list_chats(db, viewer.user_id)


@router.post("/chats", status_code=201)
def create_chat(
    body: CreateChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> ChatOut:
    """Create a chat, or a branch of one of the viewer's chats."""
    return chats_service.create_chat(db, viewer.user_id, body)


@router.get("/chats/{chat_id}")
def get_chat(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> ChatOut:
    return chats_service.get_chat(db, viewer.user_id, chat_id)


@router.patch("/chats/{chat_id}")
def update_chat(
    chat_id: UUID,
    body: UpdateChatRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> ChatOut:
    """Update title, system prompt, provider, model or pinned flag.

    Errors:
        400: Empty body.
        404: Chat absent or not owned.
    """
    return chats_service.update_chat(db, viewer.user_id, chat_id, body)


@router.delete("/chats/{chat_id}", status_code=204)
def delete_chat(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Delete a chat with its messages and every branch below it."""
    chats_service.delete_chat(db, viewer.user_id, chat_id)
    return Response(status_code=204)
