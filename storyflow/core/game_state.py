"""Game state construction and the context handed to narrative generation."""

from storyflow.core.traits import get_dominant_traits, update_traits
from storyflow.schemas.game_state import GameState, PersonalityTraits

GENRE_TRAIT_MODIFIERS = {
    "fantasy": {"creativity": 5, "empathy": 3},
    "mystery": {"pragmatism": 5, "creativity": 3},
    "sci-fi": {"pragmatism": 3, "leadership": 5},
}

# Steps per story length class; anything else gets DEFAULT_MAX_STEPS
MAX_STEPS_BY_LENGTH = {"quick": 6, "standard": 10}
DEFAULT_MAX_STEPS = 8

STORY_PHASES = ("setup", "rising_action", "climax", "resolution")

PHASE_GUIDANCE = {
    "setup": "Establish the world and the protagonist, introduce the central conflict and first relationships.",
    "rising_action": "Escalate conflicts and stakes, develop relationships, advance open plot threads.",
    "climax": "Bring the major conflict to a head and force the most important decision.",
    "resolution": "Resolve the main plot threads and give the story a satisfying conclusion.",
}


def get_max_steps_for_length(length: str) -> int:
    return MAX_STEPS_BY_LENGTH.get(length, DEFAULT_MAX_STEPS)


def create_initial_game_state(genre: str) -> GameState:
    """Fresh act-1 state with the genre's starting trait tilt."""
    traits = update_traits(PersonalityTraits(), GENRE_TRAIT_MODIFIERS.get(genre, {}))
    return GameState(
        act=1,
        flags=("story_started", f"genre_{genre}"),
        personality_traits=traits,
    )


def get_story_phase(step_number: int, length: str) -> str:
    """Narrative phase for a step, from how far through the story it falls."""
    progress = step_number / get_max_steps_for_length(length)
    if progress <= 0.25:
        return "setup"
    if progress <= 0.7:
        return "rising_action"
    if progress <= 0.9:
        return "climax"
    return "resolution"


def generate_story_context(state: GameState) -> str:
    """Plain-text summary of the game state for the generation prompt."""
    lines = [f"Currently in Act {state.act}"]

    flags = [f for f in state.flags if not f.startswith("genre_") and f != "story_started"]
    if flags:
        lines.append(f"Story flags: {', '.join(flags)}")

    relationships = [
        f"{name}: {'positive' if value > 0 else 'negative'} ({value})"
        for name, value in state.relationships.items()
        if abs(value) > 20
    ]
    if relationships:
        lines.append(f"Key relationships: {', '.join(relationships)}")

    if state.inventory:
        lines.append(f"Inventory: {', '.join(state.inventory)}")

    dominant = get_dominant_traits(state.personality_traits)
    lines.append("Personality: " + ", ".join(f"{t['trait']}: {t['value']}" for t in dominant))
    return "\n".join(lines)
