"""WebSocket route pushing newly created messages to their owner.

GET /ws?token=<jwt>

- The token is verified before the upgrade is accepted; a bad or missing
  token closes with 1008 (policy violation)
- Every hub event is checked against the chat's current owner with a fresh
  DB lookup before it is forwarded
- There is no client-to-server protocol; inbound frames are read only to
  notice the disconnect
"""

from collections.abc import Awaitable, Callable
from typing import Annotated
from uuid import UUID

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from polychat.api.deps import get_session_factory
from polychat.errors import ApiError
from polychat.logging import get_logger
from polychat.services.broadcast import Subscription
from polychat.services.chats import get_chat_owner_id

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


async def forward_owned_messages(
    subscription: Subscription,
    viewer_id: UUID,
    owner_of: Callable[[UUID], Awaitable[UUID | None]],
    send: Callable[[dict], Awaitable[None]],
) -> int:
    """Forward hub events for chats owned by viewer_id until a send fails.

    An event whose owner lookup fails is skipped; the subscription stays open.

    Returns:
        Number of messages forwarded.
    """
    forwarded = 0
    async for message in subscription:
        try:
            owner_id = await owner_of(message.chat_id)
        except SQLAlchemyError:
            logger.warning(
                "ws.owner_lookup_failed", chat_id=str(message.chat_id), exc_info=True
            )
            continue
        if owner_id != viewer_id:
            continue
        try:
            await send(message.model_dump(mode="json"))
        except (WebSocketDisconnect, RuntimeError):
            break
        forwarded += 1
    return forwarded


def _lookup_owner(session_factory: sessionmaker[Session], chat_id: UUID) -> UUID | None:
    db = session_factory()
    try:
        return get_chat_owner_id(db, chat_id)
    finally:
        db.close()


def _authenticate(websocket: WebSocket, token: str | None) -> UUID | None:
    """Viewer id from the query-string token, or None when it does not verify."""
    if not token:
        logger.warning("ws_auth_failed", reason="missing_token")
        return None
    try:
        claims = websocket.app.state.token_verifier.verify(token)
    except ApiError as e:
        logger.warning("ws_auth_failed", reason=e.message)
        return None
    return UUID(str(claims["sub"]))


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    token: str | None = None,
) -> None:
    viewer_id = _authenticate(websocket, token)
    if viewer_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    hub = websocket.app.state.broadcast_hub

    async def owner_of(chat_id: UUID) -> UUID | None:
        return await run_in_threadpool(_lookup_owner, session_factory, chat_id)

    # Subscribe before accepting so nothing published after the handshake is missed.
    async with hub.subscribe() as subscription:
        await websocket.accept()
        logger.info("ws_connected", user_id=str(viewer_id))

        forwarded = 0
        async with anyio.create_task_group() as tg:

            async def watch() -> None:
                await _wait_for_disconnect(websocket)
                tg.cancel_scope.cancel()

            tg.start_soon(watch)
            forwarded = await forward_owned_messages(
                subscription, viewer_id, owner_of, websocket.send_json
            )
            tg.cancel_scope.cancel()

        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()

    logger.info("ws_closed", user_id=str(viewer_id), forwarded=forwarded)
