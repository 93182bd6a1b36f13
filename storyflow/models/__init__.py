"""Database models package."""

from storyflow.models.story import StoryRun, StoryStep
from storyflow.models.ending import EndingCatalogEntry

__all__ = ["StoryRun", "StoryStep", "EndingCatalogEntry"]
