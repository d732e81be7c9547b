"""Streaming and branching routes.

- POST /chats/{id}/stream: send a message, stream the reply as raw text
- POST /chats/{id}/regenerate: stream a fresh reply to the existing history
- POST /chats/{id}/parallel: fork one branch chat per requested model

Validation, key lookup and the user-turn insert happen before the response
starts, so their failures are ordinary JSON errors. Once the body is
streaming the status is already 200; failures then arrive in-band as a
single "ERROR: <message>" chunk.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from polychat.api.deps import get_broadcast_hub, get_llm_router, get_session_factory
from polychat.auth.middleware import Viewer, get_viewer
from polychat.config import get_settings
from polychat.logging import set_chat_id
from polychat.schemas.chats import ChatOut, ParallelRequest, SendMessageRequest
from polychat.services import chat_stream
from polychat.services.broadcast import BroadcastHub
from polychat.services.llm import LLMRouter

router = APIRouter(tags=["streaming"])

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "X-Accel-Buffering": "no",
}


def _streaming_response(
    session_factory: sessionmaker[Session],
    llm_router: LLMRouter,
    hub: BroadcastHub,
    plan: chat_stream.StreamPlan,
) -> StreamingResponse:
    return StreamingResponse(
        chat_stream.relay_stream(session_factory, llm_router, hub, plan),
        media_type=STREAM_MEDIA_TYPE,
        headers=STREAM_HEADERS,
    )


@router.post("/chats/{chat_id}/stream")
async def stream_message(
    chat_id: UUID,
    body: SendMessageRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
) -> StreamingResponse:
    """Send a message and stream the assistant reply.

    Errors (before streaming starts):
        400: No key for the chat's provider, or provider not supported.
        404: Chat absent or not owned.
        500: Stored key cannot be decrypted.
    """
    set_chat_id(str(chat_id))
    plan = await chat_stream.prepare_stream(
        session_factory,
        llm_router,
        hub,
        viewer.user_id,
        chat_id,
        body.content,
        web_search=body.web_search,
        history_limit=get_settings().history_limit,
    )
    return _streaming_response(session_factory, llm_router, hub, plan)


@router.post("/chats/{chat_id}/regenerate")
async def regenerate_response(
    chat_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
) -> StreamingResponse:
    """Stream a new reply to the current history without adding a user turn."""
    set_chat_id(str(chat_id))
    plan = await chat_stream.prepare_regenerate(
        session_factory,
        llm_router,
        viewer.user_id,
        chat_id,
        history_limit=get_settings().history_limit,
    )
    return _streaming_response(session_factory, llm_router, hub, plan)


@router.post("/chats/{chat_id}/parallel")
async def parallel_query(
    chat_id: UUID,
    body: ParallelRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    hub: Annotated[BroadcastHub, Depends(get_broadcast_hub)],
) -> list[ChatOut]:
    """Create one branch chat per {provider, model}.

    Replies for the branches are requested later through their own stream
    calls.
    """
    return await chat_stream.create_parallel_branches(
        session_factory,
        hub,
        viewer.user_id,
        chat_id,
        body.content,
        body.models,
    )
