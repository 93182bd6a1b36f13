"""Ending detection and classification.

Runs once per generated narrative step. ``detect_ending`` decides whether the
story has concluded; when it has, ``classify_ending`` assigns a category,
a rarity tier, a deterministic ending tag and a title/description picked from
``data/ending_templates.yaml``.

Title and description are chosen with a ``random.Random`` so that repeat
playthroughs read differently. Pass a seeded instance for reproducible text;
category, rarity and tag never depend on it.
"""

import logging
import random
from pathlib import Path

import yaml

from storyflow.core.traits import dominant_trait
from storyflow.schemas.ending import (
    EndingCategory,
    EndingClassification,
    EndingDetectionResult,
    EndingRarity,
)
from storyflow.schemas.game_state import TRAIT_NAMES, GameState, PersonalityTraits

logger = logging.getLogger(__name__)

TEMPLATES_FILE = Path(__file__).parent.parent / "data" / "ending_templates.yaml"
DEFAULT_GENRE = "fantasy"

ENDING_KEYWORDS = (
    "the end", "finally", "at last", "years later", "epilogue",
    "concluded", "finished", "completed", "resolution", "farewell",
)
RESOLUTION_MARKERS = ("resolved", "concluded", "ended", "complete", "defeated", "solved")

POSITIVE_WORDS = ("victory", "triumph", "success", "joy", "happiness", "peace", "saved", "rescued")
NEGATIVE_WORDS = ("defeat", "death", "loss", "tragedy", "sorrow", "failed", "destroyed", "betrayed")
MYSTERIOUS_WORDS = ("mystery", "unknown", "vanished", "disappeared", "enigma", "puzzle", "secret")

RARE_FLAG_MARKERS = ("rare", "secret", "hidden")
HIGH_TRAIT = 70
EXTREME_TRAIT = 80
HIGH_RELATIONSHIP = 80
LOW_RELATIONSHIP = 20


class EndingTemplates:
    """Lazily loaded title/description table."""

    def __init__(self, path: Path = TEMPLATES_FILE):
        self._path = path
        self._data: dict | None = None

    def load(self) -> dict:
        if self._data is None:
            with open(self._path, "r", encoding="utf-8") as f:
                self._data = yaml.safe_load(f) or {}
        return self._data

    def options(self, genre: str, category: EndingCategory) -> list[dict]:
        templates = self.load().get("templates", {})
        by_genre = templates.get(genre) or templates[DEFAULT_GENRE]
        return by_genre.get(category.value) or templates[DEFAULT_GENRE][category.value]

    def trait_label(self, trait: str) -> str:
        return self.load().get("trait_labels", {}).get(trait, "Determined")


ending_templates = EndingTemplates()


def _score(text: str, words: tuple[str, ...]) -> int:
    return sum(1 for word in words if word in text)


def has_ending_keywords(story_text: str) -> bool:
    text = story_text.lower()
    return any(keyword in text for keyword in ENDING_KEYWORDS)


def has_resolution_flags(state: GameState) -> bool:
    return any(marker in flag for flag in state.flags for marker in RESOLUTION_MARKERS)


def is_long_enough(state: GameState, story_length: str) -> bool:
    return state.act >= 3 or (story_length == "quick" and state.act >= 2)


def detect_ending(
    story_text: str,
    state: GameState,
    traits: PersonalityTraits,
    genre: str,
    story_length: str,
    rng: random.Random | None = None,
) -> EndingDetectionResult:
    """Decide whether ``story_text`` concludes the story and classify it if so.

    Either signal is enough: an ending keyword in the text, or a late enough
    act combined with a resolution flag.
    """
    keyword_ending = has_ending_keywords(story_text)
    flag_ending = is_long_enough(state, story_length) and has_resolution_flags(state)

    if not (keyword_ending or flag_ending):
        return EndingDetectionResult(is_ending=False)

    logger.debug(
        "Ending detected (keywords=%s, act/flags=%s, act=%d)", keyword_ending, flag_ending, state.act
    )
    return EndingDetectionResult(
        is_ending=True,
        classification=classify_ending(story_text, state, traits, genre, rng=rng),
    )


def classify_category(
    story_text: str, state: GameState, traits: PersonalityTraits, genre: str
) -> EndingCategory:
    text = story_text.lower()
    positive = _score(text, POSITIVE_WORDS)
    negative = _score(text, NEGATIVE_WORDS)
    mysterious = _score(text, MYSTERIOUS_WORDS)
    high_relationships = sum(1 for v in state.relationships.values() if v > HIGH_RELATIONSHIP)

    if positive > negative and positive > mysterious:
        if traits.leadership > HIGH_TRAIT and high_relationships > 2:
            return EndingCategory.TRIUMPHANT
        return EndingCategory.HEROIC
    if negative > positive:
        return EndingCategory.TRAGIC
    if mysterious > 0 or genre == "mystery":
        return EndingCategory.MYSTERIOUS
    return EndingCategory.BITTERSWEET


def classify_rarity(state: GameState, traits: PersonalityTraits) -> EndingRarity:
    rare_flags = sum(
        1 for flag in state.flags if any(marker in flag for marker in RARE_FLAG_MARKERS)
    )
    values = list(state.relationships.values())
    high_relationships = sum(1 for v in values if v > HIGH_RELATIONSHIP)
    low_relationships = sum(1 for v in values if v < LOW_RELATIONSHIP)

    if rare_flags > 2 or (
        traits.risk_taking > HIGH_TRAIT and traits.creativity > HIGH_TRAIT and high_relationships > 3
    ):
        return EndingRarity.ULTRA_RARE
    if rare_flags > 0 or high_relationships > 2 or low_relationships > 2:
        return EndingRarity.RARE
    if len(values) > 3 or any(v > EXTREME_TRAIT for v in traits.as_dict().values()):
        return EndingRarity.UNCOMMON
    return EndingRarity.COMMON


def generate_ending_tag(state: GameState, traits: PersonalityTraits, genre: str) -> str:
    """``{genre}_{condition}`` where the condition is the most telling flag or trait."""

    def flagged(marker: str) -> bool:
        return any(marker in flag for flag in state.flags)

    if flagged("sacrifice"):
        condition = "noble_sacrifice"
    elif flagged("betrayed"):
        condition = "betrayed_trust"
    elif flagged("alliance"):
        condition = "united_front"
    elif flagged("secret"):
        condition = "hidden_truth"
    else:
        condition = f"{TRAIT_NAMES[dominant_trait(traits)]}_path"
    return f"{genre}_{condition}"


def classify_ending(
    story_text: str,
    state: GameState,
    traits: PersonalityTraits,
    genre: str,
    rng: random.Random | None = None,
) -> EndingClassification:
    category = classify_category(story_text, state, traits, genre)
    rarity = classify_rarity(state, traits)
    ending_tag = generate_ending_tag(state, traits, genre)

    template = (rng or random).choice(ending_templates.options(genre, category))
    trait_label = ending_templates.trait_label(TRAIT_NAMES[dominant_trait(traits)])
    title = template["title"].replace("{trait}", trait_label).replace("{genre}", genre)
    description = (
        template["description"]
        .replace("{trait}", trait_label)
        .replace("{relationships}", str(len(state.relationships)))
        .replace("{flags}", str(len(state.flags)))
    )

    return EndingClassification(
        ending_tag=ending_tag,
        title=title,
        description=description,
        rarity=rarity,
        category=category,
    )


def calculate_ending_rarity(total_completions: int, ending_completions: int) -> EndingRarity:
    """Rarity from how often an ending has been reached across all players."""
    if total_completions == 0:
        return EndingRarity.COMMON
    percentage = ending_completions / total_completions * 100
    if percentage < 2:
        return EndingRarity.ULTRA_RARE
    if percentage < 10:
        return EndingRarity.RARE
    if percentage < 25:
        return EndingRarity.UNCOMMON
    return EndingRarity.COMMON
