"""System prompt service layer.

A user may have several prompts active (is_default) at once. Active prompts
are combined in creation order when building conversation context, and they
take precedence over the snapshot stored on each chat.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from polychat.db.models import SystemPrompt
from polychat.errors import NotFoundError
from polychat.logging import get_logger
from polychat.schemas.settings import (
    CreateSystemPromptRequest,
    SystemPromptOut,
    TogglePromptOut,
    UpdateSystemPromptRequest,
)

logger = get_logger(__name__)

SYSTEM_PROMPT_SEPARATOR = "\n\n---\n\n"


def get_active_prompts(db: Session, user_id: UUID) -> list[SystemPrompt]:
    """Active prompts for a user, oldest first."""
    stmt = (
        select(SystemPrompt)
        .where(SystemPrompt.user_id == user_id, SystemPrompt.is_default.is_(True))
        .order_by(SystemPrompt.created_at.asc(), SystemPrompt.id.asc())
    )
    return list(db.scalars(stmt).all())


def combine_prompts(prompts: list[SystemPrompt]) -> str | None:
    """Join prompt texts with the separator; None when there are none."""
    if not prompts:
        return None
    return SYSTEM_PROMPT_SEPARATOR.join(p.prompt for p in prompts)


def get_prompt_for_viewer_or_404(db: Session, viewer_id: UUID, prompt_id: UUID) -> SystemPrompt:
    prompt = db.get(SystemPrompt, prompt_id)
    if prompt is None or prompt.user_id != viewer_id:
        raise NotFoundError("System prompt not found")
    return prompt


def list_prompts(db: Session, viewer_id: UUID) -> list[SystemPromptOut]:
    stmt = (
        select(SystemPrompt)
        .where(SystemPrompt.user_id == viewer_id)
        .order_by(SystemPrompt.created_at.desc())
    )
    return [SystemPromptOut.model_validate(p) for p in db.scalars(stmt).all()]


def list_active_prompts(db: Session, viewer_id: UUID) -> list[SystemPromptOut]:
    return [SystemPromptOut.model_validate(p) for p in get_active_prompts(db, viewer_id)]


def create_prompt(
    db: Session, viewer_id: UUID, request: CreateSystemPromptRequest
) -> SystemPromptOut:
    prompt = SystemPrompt(
        user_id=viewer_id,
        name=request.name,
        prompt=request.prompt,
        description=request.description,
        is_default=request.is_default,
        category=request.category,
    )
    db.add(prompt)
    db.commit()

    logger.info("system_prompt_created", prompt_id=str(prompt.id), prompt_chars=len(prompt.prompt))
    return SystemPromptOut.model_validate(prompt)


def update_prompt(
    db: Session, viewer_id: UUID, prompt_id: UUID, request: UpdateSystemPromptRequest
) -> SystemPromptOut:
    prompt = get_prompt_for_viewer_or_404(db, viewer_id, prompt_id)

    for field, value in request.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(prompt, field, value)

    db.commit()
    return SystemPromptOut.model_validate(prompt)


def delete_prompt(db: Session, viewer_id: UUID, prompt_id: UUID) -> None:
    prompt = get_prompt_for_viewer_or_404(db, viewer_id, prompt_id)
    db.delete(prompt)
    db.commit()


def activate_prompt(db: Session, viewer_id: UUID, prompt_id: UUID) -> None:
    """Make this prompt the only active one."""
    get_prompt_for_viewer_or_404(db, viewer_id, prompt_id)

    db.execute(
        update(SystemPrompt).where(SystemPrompt.user_id == viewer_id).values(is_default=False)
    )
    db.execute(
        update(SystemPrompt)
        .where(SystemPrompt.id == prompt_id, SystemPrompt.user_id == viewer_id)
        .values(is_default=True)
    )
    db.commit()


def toggle_prompt(db: Session, viewer_id: UUID, prompt_id: UUID) -> TogglePromptOut:
    """Flip a prompt's active flag, leaving the others untouched."""
    prompt = get_prompt_for_viewer_or_404(db, viewer_id, prompt_id)
    prompt.is_default = not prompt.is_default
    db.commit()
    return TogglePromptOut(id=prompt.id, is_default=prompt.is_default)
