"""Game state value objects: personality traits, game state and choices.

All three are frozen pydantic models. Python attributes are snake_case while
the JSON written to the store and exchanged with the generator is camelCase
(``personalityTraits``, ``riskTaking``), so dump with ``by_alias=True``.

``parse_game_state`` and ``parse_personality_traits`` are the only lenient
entry points: they accept whatever JSON came back from the store or the model
and return a valid value, filling defaults for missing or broken fields.
"""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

TRAIT_MIN = 0
TRAIT_MAX = 100
TRAIT_DEFAULT = 50
RELATIONSHIP_MIN = -100
RELATIONSHIP_MAX = 100

# Attribute name -> wire name, in canonical order (ties resolve to the first)
TRAIT_NAMES: dict[str, str] = {
    "risk_taking": "riskTaking",
    "empathy": "empathy",
    "pragmatism": "pragmatism",
    "creativity": "creativity",
    "leadership": "leadership",
}
_TRAIT_LOOKUP = {**{v: k for k, v in TRAIT_NAMES.items()}, **{k: k for k in TRAIT_NAMES}}


def clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


def trait_attribute(name: str) -> str | None:
    """Map a trait name in either spelling to its attribute name, or None."""
    return _TRAIT_LOOKUP.get(name)


def _dedupe(items) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


class _ValueModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class PersonalityTraits(_ValueModel):
    """The five personality axes, each in [0, 100]."""

    risk_taking: int = Field(default=TRAIT_DEFAULT, ge=TRAIT_MIN, le=TRAIT_MAX)
    empathy: int = Field(default=TRAIT_DEFAULT, ge=TRAIT_MIN, le=TRAIT_MAX)
    pragmatism: int = Field(default=TRAIT_DEFAULT, ge=TRAIT_MIN, le=TRAIT_MAX)
    creativity: int = Field(default=TRAIT_DEFAULT, ge=TRAIT_MIN, le=TRAIT_MAX)
    leadership: int = Field(default=TRAIT_DEFAULT, ge=TRAIT_MIN, le=TRAIT_MAX)

    def as_dict(self) -> dict[str, int]:
        """Wire-named mapping in canonical trait order."""
        return {wire: getattr(self, attr) for attr, wire in TRAIT_NAMES.items()}


class GameState(_ValueModel):
    """Mutable-by-copy narrative document owned by one story run."""

    act: int = Field(default=1, ge=1)
    flags: tuple[str, ...] = ()
    relationships: dict[str, int] = Field(default_factory=dict)
    inventory: tuple[str, ...] = ()
    personality_traits: PersonalityTraits = Field(default_factory=PersonalityTraits)

    @field_validator("flags", "inventory")
    @classmethod
    def _unique(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return _dedupe(value)

    @field_validator("relationships")
    @classmethod
    def _clamp_relationships(cls, value: dict[str, int]) -> dict[str, int]:
        return {k: clamp(v, RELATIONSHIP_MIN, RELATIONSHIP_MAX) for k, v in value.items()}

    def has_flag(self, flag: str) -> bool:
        return flag in self.flags

    def has_item(self, item: str) -> bool:
        return item in self.inventory

    def relationship(self, character: str) -> int:
        return self.relationships.get(character, 0)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Choice(_ValueModel):
    """One option offered to the player in a story step."""

    id: str = Field(min_length=1, max_length=1)
    text: str = Field(min_length=1)
    slug: str = Field(min_length=1, max_length=50)
    consequences: list[str] = Field(default_factory=list)
    traits_impact: dict[str, int] = Field(default_factory=dict, alias="traits_impact")

    @field_validator("text", "slug")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


# ---------------------------------------------------------------------------
# Untrusted JSON boundary
# ---------------------------------------------------------------------------


def _to_int(value: Any, fallback: int) -> int:
    if isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        return int(round(value))
    if isinstance(value, str):
        try:
            return int(round(float(value)))
        except ValueError:
            return fallback
    return fallback


def parse_personality_traits(raw: Any) -> PersonalityTraits:
    """Build traits from untrusted JSON, defaulting and clamping each axis."""
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning("Personality traits are not an object, using defaults: %r", raw)
        return PersonalityTraits()
    values = {}
    for attr, wire in TRAIT_NAMES.items():
        value = raw.get(wire, raw.get(attr))
        values[attr] = clamp(_to_int(value, TRAIT_DEFAULT), TRAIT_MIN, TRAIT_MAX)
    return PersonalityTraits(**values)


def parse_game_state(raw: Any) -> GameState:
    """Build a game state from untrusted JSON.

    Missing or malformed fields fall back to their defaults, numbers are
    clamped, non-string flags/items are dropped and duplicates removed.
    """
    if not isinstance(raw, dict):
        if raw is not None:
            logger.warning("Game state is not an object, using defaults: %r", raw)
        return GameState()

    act = max(1, _to_int(raw.get("act"), 1))

    flags = raw.get("flags")
    flags = [f for f in flags if isinstance(f, str)] if isinstance(flags, list) else []

    inventory = raw.get("inventory")
    inventory = [i for i in inventory if isinstance(i, str)] if isinstance(inventory, list) else []

    relationships = {}
    raw_relationships = raw.get("relationships")
    if isinstance(raw_relationships, dict):
        for name, value in raw_relationships.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                relationships[str(name)] = clamp(int(round(value)), RELATIONSHIP_MIN, RELATIONSHIP_MAX)

    traits = parse_personality_traits(raw.get("personalityTraits", raw.get("personality_traits")))

    return GameState(
        act=act,
        flags=tuple(flags),
        relationships=relationships,
        inventory=tuple(inventory),
        personality_traits=traits,
    )
