"""Ending classification and collection schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EndingRarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    ULTRA_RARE = "ultra-rare"


class EndingCategory(str, Enum):
    HEROIC = "heroic"
    TRAGIC = "tragic"
    MYSTERIOUS = "mysterious"
    TRIUMPHANT = "triumphant"
    BITTERSWEET = "bittersweet"


class EndingClassification(BaseModel):
    ending_tag: str
    title: str
    description: str
    rarity: EndingRarity
    category: EndingCategory


class EndingDetectionResult(BaseModel):
    is_ending: bool
    classification: EndingClassification | None = None


def empty_rarity_breakdown() -> dict[str, int]:
    return {rarity.value: 0 for rarity in EndingRarity}


class EndingEntry(BaseModel):
    ending_tag: str
    title: str
    description: str
    rarity: EndingRarity
    genre: str
    discovered_at: datetime
    story_run_id: str


class UserEndingCollection(BaseModel):
    user_id: str
    discovered_endings: list[EndingEntry]
    completion_percentage: float
    rarity_breakdown: dict[str, int] = Field(default_factory=empty_rarity_breakdown)
    last_discovered: datetime | None = None
    total_stories_completed: int = 0


class EndingStatistics(BaseModel):
    total_endings: int
    endings_by_genre: dict[str, int]
    endings_by_rarity: dict[str, int] = Field(default_factory=empty_rarity_breakdown)
    completion_rate: float
