"""User settings and system prompt routes.

Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from polychat.api.deps import get_db
from polychat.auth.middleware import Viewer, get_viewer
from polychat.schemas.keys import ApiKeyStatusOut
from polychat.schemas.settings import (
    CreateSystemPromptRequest,
    SystemPromptOut,
    TogglePromptOut,
    UpdateSystemPromptRequest,
    UpdateUserSettingsRequest,
    UserSettingsOut,
)
from polychat.services import prompts as prompts_service
from polychat.services import user_keys as user_keys_service
from polychat.services import user_settings as user_settings_service

router = APIRouter(prefix="/settings", tags=["settings"])


@router.get("")
def get_settings(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> UserSettingsOut:
    """The viewer's UI settings; defaults are stored on first read."""
    return user_settings_service.get_user_settings(db, viewer.user_id)


@router.put("")
def update_settings(
    body: UpdateUserSettingsRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> UserSettingsOut:
    return user_settings_service.update_user_settings(db, viewer.user_id, body)


@router.get("/api-keys")
def get_api_key_status(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[ApiKeyStatusOut]:
    """Which providers have a stored key."""
    return user_keys_service.list_key_status(db, viewer.user_id)


# =============================================================================
# System prompts
# =============================================================================


@router.get("/prompts")
def list_prompts(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[SystemPromptOut]:
    return prompts_service.list_prompts(db, viewer.user_id)


@router.get("/prompts/active")
def list_active_prompts(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[SystemPromptOut]:
    """Active prompts in the order they are combined into context."""
    return prompts_service.list_active_prompts(db, viewer.user_id)


@router.post("/prompts", status_code=201)
def create_prompt(
    body: CreateSystemPromptRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> SystemPromptOut:
    return prompts_service.create_prompt(db, viewer.user_id, body)


@router.put("/prompts/{prompt_id}")
def update_prompt(
    prompt_id: UUID,
    body: UpdateSystemPromptRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> SystemPromptOut:
    return prompts_service.update_prompt(db, viewer.user_id, prompt_id, body)


@router.delete("/prompts/{prompt_id}", status_code=204)
def delete_prompt(
    prompt_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    prompts_service.delete_prompt(db, viewer.user_id, prompt_id)
    return Response(status_code=204)


@router.post("/prompts/{prompt_id}/activate")
def activate_prompt(
    prompt_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Make this prompt the only active one."""
    prompts_service.activate_prompt(db, viewer.user_id, prompt_id)
    return {"success": True}


@router.post("/prompts/{prompt_id}/toggle")
def toggle_prompt(
    prompt_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> TogglePromptOut:
    return prompts_service.toggle_prompt(db, viewer.user_id, prompt_id)
