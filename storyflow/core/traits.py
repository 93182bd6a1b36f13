"""Personality trait updates and descriptions."""

import logging

from storyflow.schemas.game_state import (
    TRAIT_MAX,
    TRAIT_MIN,
    TRAIT_NAMES,
    PersonalityTraits,
    clamp,
    trait_attribute,
)

logger = logging.getLogger(__name__)

TRAIT_DESCRIPTIONS = {
    "risk_taking": ("Cautious and careful", "Balanced risk assessment", "Bold and adventurous"),
    "empathy": ("Pragmatic and detached", "Considerate of others", "Deeply compassionate"),
    "pragmatism": ("Idealistic and principled", "Practical when needed", "Results-oriented"),
    "creativity": ("Conventional approach", "Occasionally innovative", "Highly creative thinker"),
    "leadership": ("Prefers to follow", "Leads when necessary", "Natural born leader"),
}


def update_traits(current: PersonalityTraits, impact: dict[str, int]) -> PersonalityTraits:
    """Apply signed deltas to the trait vector, clamping each axis to [0, 100].

    Trait names may use either spelling (``riskTaking`` or ``risk_taking``).
    Unknown names are ignored.
    """
    updates = {}
    for name, delta in impact.items():
        attr = trait_attribute(name)
        if attr is None:
            logger.debug("Ignoring unknown trait %r in impact", name)
            continue
        base = updates.get(attr, getattr(current, attr))
        updates[attr] = clamp(base + int(delta), TRAIT_MIN, TRAIT_MAX)
    if not updates:
        return current
    return current.model_copy(update=updates)


def dominant_trait(traits: PersonalityTraits) -> str:
    """Attribute name of the highest trait; ties go to the earliest axis."""
    return max(TRAIT_NAMES, key=lambda attr: getattr(traits, attr))


def get_trait_description(trait: str, value: int) -> str:
    attr = trait_attribute(trait)
    if attr is None:
        raise KeyError(f"Unknown trait: {trait}")
    low, medium, high = TRAIT_DESCRIPTIONS[attr]
    if value < 33:
        return low
    if value < 67:
        return medium
    return high


def get_dominant_traits(traits: PersonalityTraits, count: int = 2) -> list[dict]:
    """Top ``count`` traits as ``{"trait", "value", "description"}`` dicts."""
    ranked = sorted(TRAIT_NAMES, key=lambda attr: getattr(traits, attr), reverse=True)
    return [
        {
            "trait": TRAIT_NAMES[attr],
            "value": getattr(traits, attr),
            "description": get_trait_description(attr, getattr(traits, attr)),
        }
        for attr in ranked[:count]
    ]
