"""Choice slugs, step identifiers and choice validation helpers."""

import logging
import re
from typing import Any

from storyflow.exceptions import InvalidChoiceError
from storyflow.schemas.game_state import Choice

logger = logging.getLogger(__name__)

NO_CHOICES_SLUG = "no_choices"
UNKNOWN_CHOICE_SLUG = "unknown_choice"
VALID_CHOICE_IDS = ("A", "B", "C", "D")
MAX_SLUG_LENGTH = 50

_SLUG_RE = re.compile(r"^[a-z0-9_]{1,50}$")


def generate_step_choice_slug(choices: list[Choice]) -> str:
    """Representative slug of a step, used to aggregate choice statistics."""
    if not choices:
        return NO_CHOICES_SLUG
    return choices[0].slug or UNKNOWN_CHOICE_SLUG


def generate_decision_key_hash(story_run_id: str, step_number: int, choices: list[Choice]) -> str:
    """Deterministic 32-bit rolling hash of a step's decision context, as hex.

    Same choice slugs can occur in different branches; this key tells those
    decisions apart. Not cryptographic.
    """
    choice_texts = "|".join(c.text for c in choices)
    hash_input = f"{story_run_id}_{step_number}_{choice_texts}"

    # Rolled over UTF-16 code units so keys written by web clients line up
    encoded = hash_input.encode("utf-16-le")
    value = 0
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    # Interpret as signed 32-bit before taking the magnitude
    if value >= 0x80000000:
        value -= 0x100000000
    return format(abs(value), "x")


def generate_choice_slug(text: str) -> str:
    """"Trust the stranger!" -> "trust_the_stranger"."""
    slug = re.sub(r"[^a-z0-9\s]", "", text.lower()).strip()
    slug = re.sub(r"\s+", "_", slug)
    return slug[:MAX_SLUG_LENGTH]


def is_valid_choice_slug(slug: str) -> bool:
    return bool(_SLUG_RE.match(slug))


def normalize_choice_id(choice_id: str, index: int) -> str:
    """Uppercase a valid A-D id, otherwise derive one from the position."""
    if choice_id and choice_id.upper() in VALID_CHOICE_IDS:
        return choice_id.upper()
    return VALID_CHOICE_IDS[index] if index < len(VALID_CHOICE_IDS) else "A"


def sanitize_choice_text(text: str) -> str:
    text = re.sub(r"\s+", " ", text.strip())
    return re.sub(r"[<>]", "", text)[:200]


def validate_choice(raw: Any) -> list[str]:
    """List the problems with a raw generated choice; empty means valid."""
    if not isinstance(raw, dict):
        return ["Choice must be an object"]

    errors = []
    if not isinstance(raw.get("id"), str) or not raw["id"]:
        errors.append("Choice must have a valid ID")
    if not isinstance(raw.get("text"), str) or not raw["text"].strip():
        errors.append("Choice must have non-empty text")
    if not isinstance(raw.get("slug"), str) or not is_valid_choice_slug(raw["slug"]):
        errors.append("Choice must have a valid slug (snake_case, alphanumeric with underscores)")
    if "traits_impact" in raw and not isinstance(raw["traits_impact"], dict):
        errors.append("Choice traits_impact must be an object")
    if "consequences" in raw and not isinstance(raw["consequences"], list):
        errors.append("Choice consequences must be an array")
    return errors


def repair_choice(raw: Any, index: int) -> Choice:
    """Turn a raw generated choice into a ``Choice``, fixing what can be fixed.

    A missing or invalid id is derived from the position and a bad slug is
    rebuilt from the text. Raises ``InvalidChoiceError`` when the text itself
    is unusable.
    """
    problems = validate_choice(raw)
    if not isinstance(raw, dict):
        raise InvalidChoiceError(f"Choice {index + 1}: {problems[0]}")
    if problems:
        logger.info("Repairing generated choice %d: %s", index + 1, "; ".join(problems))

    text = raw.get("text")
    if not isinstance(text, str) or not sanitize_choice_text(text):
        raise InvalidChoiceError(f"Choice {index + 1}: Choice must have non-empty text")
    text = sanitize_choice_text(text)

    slug = raw.get("slug")
    if not isinstance(slug, str) or not is_valid_choice_slug(slug):
        slug = generate_choice_slug(text) or f"choice_{index + 1}"

    consequences = raw.get("consequences")
    consequences = [c for c in consequences if isinstance(c, str)] if isinstance(consequences, list) else []

    impact = raw.get("traits_impact")
    impact = (
        {k: int(v) for k, v in impact.items() if isinstance(v, (int, float)) and not isinstance(v, bool)}
        if isinstance(impact, dict)
        else {}
    )

    return Choice(
        id=normalize_choice_id(str(raw.get("id") or ""), index),
        text=text,
        slug=slug,
        consequences=consequences,
        traits_impact=impact,
    )


def calculate_choice_rarity(percentage: float) -> str:
    """Rarity label for a choice picked by ``percentage`` of players."""
    if percentage >= 50:
        return "common"
    if percentage >= 25:
        return "uncommon"
    if percentage >= 10:
        return "rare"
    return "ultra-rare"
