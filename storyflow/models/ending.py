"""Ending catalog model - every ending tag ever reached, with global counts."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from storyflow.db.database import Base


class EndingCatalogEntry(Base):
    __tablename__ = "ending_catalog"

    ending_tag: Mapped[str] = mapped_column(String(100), primary_key=True)
    genre: Mapped[str] = mapped_column(String(30))
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    global_completions: Mapped[int] = mapped_column(Integer, default=0)

    first_discovered_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
