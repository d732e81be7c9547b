"""User bootstrap service.

Creates the users row for a token subject on first sight.
"""

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from polychat.db.models import User
from polychat.logging import get_logger

logger = get_logger(__name__)


def ensure_user(db: Session, user_id: UUID) -> None:
    """Ensure a users row exists for user_id.

    Idempotent and race-safe: a concurrent insert of the same id surfaces as
    an IntegrityError, which means the row now exists.
    """
    if db.get(User, user_id) is not None:
        return

    db.add(User(id=user_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return

    logger.info("user_created", user_id=str(user_id))
