"""User API key routes.

Routes are transport-only: each calls exactly one service function.

- POST /keys: Upsert the key for a provider (encrypted at rest)
- GET /keys: Key metadata, never key material
- GET /keys/{provider}: The decrypted key
- DELETE /keys/{provider}: Remove the key

Security invariants:
- List responses never include encrypted_key
- Plaintext keys are never logged
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from polychat.api.deps import get_db
from polychat.auth.middleware import Viewer, get_viewer
from polychat.schemas.keys import ApiKeyCreate, ApiKeyOut, ApiKeyRevealOut
from polychat.services import user_keys as user_keys_service

router = APIRouter(tags=["keys"])


@router.post("/keys")
def upsert_key(
    body: ApiKeyCreate,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> ApiKeyOut:
    """Add or replace the API key for a provider.

    Errors:
        400: Unknown provider or blank key.
        500: Master key not configured.
    """
    return user_keys_service.upsert_user_key(db, viewer.user_id, body.provider, body.api_key)


@router.get("/keys")
def list_keys(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> list[ApiKeyOut]:
    return user_keys_service.list_user_keys(db, viewer.user_id)


@router.get("/keys/{provider}")
def reveal_key(
    provider: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> ApiKeyRevealOut:
    """Return the decrypted key.

    Errors:
        404: No key stored for the provider.
        500: Stored key cannot be decrypted.
    """
    return user_keys_service.reveal_user_key(db, viewer.user_id, provider)


@router.delete("/keys/{provider}", status_code=204)
def delete_key(
    provider: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    user_keys_service.delete_user_key(db, viewer.user_id, provider)
    return Response(status_code=204)
