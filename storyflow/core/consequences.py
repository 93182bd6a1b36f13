"""Consequence directives and how they fold into game state.

A directive is a colon-delimited string attached to a choice, e.g.
``add_flag:met_wizard`` or ``modify_relationship:wizard:10``. Directives are
parsed into one of a closed set of frozen dataclasses and applied with a
``match`` statement; anything that doesn't parse becomes an
``UnknownConsequence`` and is skipped with a warning.
"""

import logging
import re
from dataclasses import dataclass

from storyflow.schemas.game_state import (
    RELATIONSHIP_MAX,
    RELATIONSHIP_MIN,
    Choice,
    GameState,
    PersonalityTraits,
    clamp,
)
from storyflow.core.traits import update_traits

logger = logging.getLogger(__name__)

# Reaching any of these advances the act once more after a choice resolves
MILESTONE_FLAGS = ("completed_first_quest", "reached_midpoint", "final_confrontation")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class AddFlag:
    flag: str


@dataclass(frozen=True)
class RemoveFlag:
    flag: str


@dataclass(frozen=True)
class SetRelationship:
    character: str
    value: int


@dataclass(frozen=True)
class ModifyRelationship:
    character: str
    delta: int


@dataclass(frozen=True)
class AddItem:
    item: str


@dataclass(frozen=True)
class RemoveItem:
    item: str


@dataclass(frozen=True)
class IncrementAct:
    pass


@dataclass(frozen=True)
class UnknownConsequence:
    directive: str
    reason: str


Consequence = (
    AddFlag
    | RemoveFlag
    | SetRelationship
    | ModifyRelationship
    | AddItem
    | RemoveItem
    | IncrementAct
    | UnknownConsequence
)


def _parse_int(raw: str) -> int:
    """Leading integer of ``raw``; anything non-numeric counts as 0."""
    found = _LEADING_INT.match(raw)
    return int(found.group(1)) if found else 0


def parse_consequence(directive: str) -> Consequence:
    """Parse a directive string into a consequence variant."""
    action, *params = directive.split(":")
    action = action.strip()
    params = [p.strip() for p in params]
    first = params[0] if params else ""
    second = params[1] if len(params) > 1 else ""

    if action in ("add_flag", "remove_flag", "add_item", "remove_item"):
        if not first:
            return UnknownConsequence(directive, f"{action} needs a parameter")
        return {
            "add_flag": AddFlag,
            "remove_flag": RemoveFlag,
            "add_item": AddItem,
            "remove_item": RemoveItem,
        }[action](first)

    if action in ("set_relationship", "modify_relationship"):
        if not first or not second:
            return UnknownConsequence(directive, f"{action} needs a character and a value")
        if action == "set_relationship":
            return SetRelationship(first, _parse_int(second))
        return ModifyRelationship(first, _parse_int(second))

    if action == "increment_act":
        return IncrementAct()

    return UnknownConsequence(directive, f"unknown action {action!r}")


def apply_consequence(state: GameState, consequence: str | Consequence) -> GameState:
    """Return a new state with one consequence applied. Never mutates ``state``."""
    if isinstance(consequence, str):
        consequence = parse_consequence(consequence)

    match consequence:
        case AddFlag(flag=flag):
            if state.has_flag(flag):
                return state
            return state.model_copy(update={"flags": state.flags + (flag,)})
        case RemoveFlag(flag=flag):
            if not state.has_flag(flag):
                return state
            return state.model_copy(update={"flags": tuple(f for f in state.flags if f != flag)})
        case SetRelationship(character=character, value=value):
            relationships = dict(state.relationships)
            relationships[character] = clamp(value, RELATIONSHIP_MIN, RELATIONSHIP_MAX)
            return state.model_copy(update={"relationships": relationships})
        case ModifyRelationship(character=character, delta=delta):
            relationships = dict(state.relationships)
            relationships[character] = clamp(
                state.relationship(character) + delta, RELATIONSHIP_MIN, RELATIONSHIP_MAX
            )
            return state.model_copy(update={"relationships": relationships})
        case AddItem(item=item):
            if state.has_item(item):
                return state
            return state.model_copy(update={"inventory": state.inventory + (item,)})
        case RemoveItem(item=item):
            if not state.has_item(item):
                return state
            return state.model_copy(
                update={"inventory": tuple(i for i in state.inventory if i != item)}
            )
        case IncrementAct():
            return state.model_copy(update={"act": state.act + 1})
        case UnknownConsequence(directive=directive, reason=reason):
            logger.warning("Skipping consequence %r: %s", directive, reason)
            return state


def apply_consequences(state: GameState, consequences: list[str]) -> GameState:
    for consequence in consequences:
        state = apply_consequence(state, consequence)
    return state


def reached_milestone(state: GameState) -> bool:
    return any(state.has_flag(flag) for flag in MILESTONE_FLAGS)


def apply_choice(
    state: GameState, choice: Choice, traits: PersonalityTraits | None = None
) -> GameState:
    """Fold a selected choice into the game state.

    ``traits`` is the already-updated trait vector; when omitted the choice's
    ``traits_impact`` is applied to the state's own traits. After every
    directive has been applied the act advances once more if a milestone flag
    is set.
    """
    if traits is None:
        traits = update_traits(state.personality_traits, choice.traits_impact)

    new_state = state.model_copy(update={"personality_traits": traits})
    new_state = apply_consequences(new_state, choice.consequences)

    if reached_milestone(new_state):
        new_state = new_state.model_copy(update={"act": new_state.act + 1})
    return new_state
