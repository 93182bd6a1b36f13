"""Story-related Pydantic schemas: generation contract and API payloads."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from storyflow.schemas.ending import EndingCategory, EndingRarity
from storyflow.schemas.game_state import Choice, GameState, PersonalityTraits, parse_game_state

Genre = Literal["fantasy", "mystery", "sci-fi", "horror", "romance", "thriller"]
StoryLength = Literal["quick", "standard", "extended"]
Challenge = Literal["casual", "challenging"]


class StoryGenerationRequest(BaseModel):
    """What the narrative generator needs to write the next segment.

    The continuation fields are only set after the first step.
    """
    genre: Genre
    length: StoryLength = "standard"
    challenge: Challenge = "casual"
    session_id: str = Field(min_length=1)
    user_id: str | None = None

    story_run_id: str | None = None
    current_step: int | None = None
    game_state: GameState | None = None
    previous_choice: str | None = None

    @property
    def is_continuation(self) -> bool:
        return self.current_step is not None and self.game_state is not None


class StoryResponse(BaseModel):
    """A generated narrative segment."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    story_text: str = Field(min_length=1)
    choices: list[Choice] = Field(min_length=1, max_length=4)
    game_state: GameState | None = None
    is_ending: bool = False
    ending_type: str | None = None

    @field_validator("game_state", mode="before")
    @classmethod
    def _lenient_game_state(cls, value):
        if value is None or isinstance(value, GameState):
            return value
        return parse_game_state(value)


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------


class CreateStoryRequest(BaseModel):
    genre: Genre
    length: StoryLength = "standard"
    challenge: Challenge = "casual"
    session_id: str = Field(min_length=1, max_length=100)
    user_id: str | None = Field(default=None, max_length=64)


class SelectChoiceRequest(BaseModel):
    step_id: str
    choice_id: str = Field(min_length=1, max_length=1)
    choice_slug: str = Field(min_length=1, max_length=50)


class StoryRunOut(BaseModel):
    id: str
    user_id: str | None
    session_id: str | None
    genre: str
    length: str
    challenge: str
    completed: bool
    ending_title: str | None
    ending_rarity: str | None
    ending_tag: str | None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"from_attributes": True}


class StoryStepOut(BaseModel):
    id: str
    story_run_id: str
    step_number: int
    story_text: str
    choices: list[dict]
    game_state: dict
    traits_snapshot: dict
    choice_slug: str | None
    decision_key_hash: str | None
    selected_choice_id: str | None

    model_config = {"from_attributes": True}


class StorySessionOut(BaseModel):
    story_run: StoryRunOut
    current_step: StoryStepOut | None
    game_state: dict
    personality_traits: dict
    is_completed: bool


class EndingData(BaseModel):
    title: str
    description: str
    rarity: EndingRarity
    tag: str
    type: EndingCategory


class StoryProgressionOut(BaseModel):
    session: StorySessionOut
    new_step: StoryStepOut
    is_ending: bool
    detector_says_ending: bool
    step_limit_reached: bool
    ending: EndingData | None = None


class ChoiceSelectionOut(BaseModel):
    updated_step: StoryStepOut
    personality_traits: PersonalityTraits
    progression: StoryProgressionOut | None = None
