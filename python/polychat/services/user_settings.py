"""User settings service layer. A row with defaults is created on first read."""

from uuid import UUID

from sqlalchemy.orm import Session

from polychat.db.models import UserSettings, utcnow
from polychat.schemas.settings import UpdateUserSettingsRequest, UserSettingsOut


def _get_or_create(db: Session, user_id: UUID) -> UserSettings:
    settings = db.get(UserSettings, user_id)
    if settings is None:
        settings = UserSettings(user_id=user_id)
        db.add(settings)
        db.commit()
    return settings


def get_user_settings(db: Session, viewer_id: UUID) -> UserSettingsOut:
    return UserSettingsOut.model_validate(_get_or_create(db, viewer_id))


def update_user_settings(
    db: Session, viewer_id: UUID, request: UpdateUserSettingsRequest
) -> UserSettingsOut:
    """Partial update; fields absent from the request keep their value."""
    settings = _get_or_create(db, viewer_id)

    for field, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(settings, field, value)
    settings.updated_at = utcnow()

    db.commit()
    return UserSettingsOut.model_validate(settings)
