"""Model preference service layer.

Preferences are keyed by (user, provider, model_id) and drive the client's
model picker. Saving replaces the whole set in one transaction.
"""

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from polychat.db import transaction
from polychat.db.models import UserModel
from polychat.logging import get_logger
from polychat.schemas.settings import (
    SaveUserModelsRequest,
    ToggleModelOut,
    ToggleModelRequest,
    UserModelOut,
)

logger = get_logger(__name__)


def list_user_models(db: Session, viewer_id: UUID) -> list[UserModelOut]:
    stmt = (
        select(UserModel)
        .where(UserModel.user_id == viewer_id)
        .order_by(UserModel.display_order.asc(), UserModel.created_at.asc())
    )
    return [UserModelOut.model_validate(m) for m in db.scalars(stmt).all()]


def list_enabled_models(db: Session, viewer_id: UUID) -> list[UserModelOut]:
    stmt = (
        select(UserModel)
        .where(UserModel.user_id == viewer_id, UserModel.is_enabled.is_(True))
        .order_by(UserModel.display_order.asc())
    )
    return [UserModelOut.model_validate(m) for m in db.scalars(stmt).all()]


def save_user_models(db: Session, viewer_id: UUID, request: SaveUserModelsRequest) -> None:
    """Replace every stored preference with the given list."""
    with transaction(db):
        db.execute(delete(UserModel).where(UserModel.user_id == viewer_id))
        db.flush()
        # Later duplicates of (provider, model_id) win
        rows = {(m.provider, m.model_id): m for m in request.models}
        for m in rows.values():
            db.add(
                UserModel(
                    user_id=viewer_id,
                    provider=m.provider,
                    model_id=m.model_id,
                    model_name=m.model_name,
                    is_enabled=m.is_enabled,
                    display_order=m.display_order,
                )
            )

    logger.info("user_models_saved", model_count=len(rows))


def toggle_model(db: Session, viewer_id: UUID, request: ToggleModelRequest) -> ToggleModelOut:
    """Flip an existing preference, or create it enabled with order 0."""
    model = db.get(UserModel, (viewer_id, request.provider, request.model_id))
    if model is None:
        model = UserModel(
            user_id=viewer_id,
            provider=request.provider,
            model_id=request.model_id,
            model_name=request.model_name,
            is_enabled=True,
            display_order=0,
        )
        db.add(model)
    else:
        model.is_enabled = not model.is_enabled

    db.commit()
    return ToggleModelOut(
        success=True,
        is_enabled=model.is_enabled,
        model_id=model.model_id,
        provider=model.provider,
    )
