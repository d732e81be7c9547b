"""Model catalogue and model preference routes.

Routes are transport-only: each calls exactly one service function.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from polychat.api.deps import get_db, get_llm_router, get_session_factory
from polychat.auth.middleware import Viewer, get_viewer
from polychat.schemas.settings import (
    FetchModelsRequest,
    SaveUserModelsRequest,
    ToggleModelOut,
    ToggleModelRequest,
    UserModelOut,
)
from polychat.services import user_models as user_models_service
from polychat.services.llm import LLMRouter
from polychat.services.provider_models import fetch_provider_models

router = APIRouter(prefix="/settings/models", tags=["models"])


@router.post("/fetch")
async def fetch_models(
    body: FetchModelsRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    session_factory: Annotated[sessionmaker[Session], Depends(get_session_factory)],
    llm_router: Annotated[LLMRouter, Depends(get_llm_router)],
) -> list[dict]:
    """Live model list from the provider, using the viewer's stored key.

    Errors:
        400: No key stored, or unknown provider.
        4xx/5xx: The provider rejected the call.
    """
    models = await fetch_provider_models(session_factory, llm_router, viewer.user_id, body.provider)
    return [m.to_dict() for m in models]


@router.get("")
def list_user_models(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[UserModelOut]:
    return user_models_service.list_user_models(db, viewer.user_id)


@router.put("")
def save_user_models(
    body: SaveUserModelsRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Replace every stored preference."""
    user_models_service.save_user_models(db, viewer.user_id, body)
    return {"success": True}


@router.get("/enabled")
def list_enabled_models(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[UserModelOut]:
    return user_models_service.list_enabled_models(db, viewer.user_id)


@router.post("/toggle")
def toggle_model(
    body: ToggleModelRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> ToggleModelOut:
    return user_models_service.toggle_model(db, viewer.user_id, body)
