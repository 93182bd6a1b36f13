"""Story models - one row per playthrough and one per narrative step."""

import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from storyflow.db.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class StoryRun(Base):
    """A single playthrough. Completed runs carry their ending."""
    __tablename__ = "story_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    genre: Mapped[str] = mapped_column(String(30))
    length: Mapped[str] = mapped_column(String(20))  # "quick", "standard", ...
    challenge: Mapped[str] = mapped_column(String(20))  # "casual" or "challenging"

    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    ending_title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    ending_rarity: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ending_tag: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class StoryStep(Base):
    """One narrative beat: text, offered choices and the state after setup."""
    __tablename__ = "story_steps"
    __table_args__ = (UniqueConstraint("story_run_id", "step_number", name="uq_story_step_number"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    story_run_id: Mapped[str] = mapped_column(ForeignKey("story_runs.id"), index=True)
    step_number: Mapped[int] = mapped_column(Integer)  # 1-based
    story_text: Mapped[str] = mapped_column(Text)

    # JSON documents, camelCase keys (see storyflow.schemas.game_state)
    choices: Mapped[list] = mapped_column(JSON, default=list)
    game_state: Mapped[dict] = mapped_column(JSON, default=dict)
    traits_snapshot: Mapped[dict] = mapped_column(JSON, default=dict)

    choice_slug: Mapped[str | None] = mapped_column(String(50), nullable=True)
    decision_key_hash: Mapped[str | None] = mapped_column(String(16), nullable=True)
    selected_choice_id: Mapped[str | None] = mapped_column(String(1), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
