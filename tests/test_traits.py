"""Tests for personality trait updates and descriptions."""

import pytest

from storyflow.core.traits import (
    dominant_trait,
    get_dominant_traits,
    get_trait_description,
    update_traits,
)
from storyflow.schemas.game_state import PersonalityTraits


def test_update_named_traits_only():
    traits = update_traits(PersonalityTraits(), {"empathy": 2, "riskTaking": -3})

    assert traits.empathy == 52
    assert traits.risk_taking == 47
    assert traits.pragmatism == 50
    assert traits.creativity == 50
    assert traits.leadership == 50


def test_update_accepts_snake_case_names():
    assert update_traits(PersonalityTraits(), {"risk_taking": 3}).risk_taking == 53


def test_unknown_traits_are_ignored():
    current = PersonalityTraits()
    assert update_traits(current, {"charisma": 10, "luck": -4}) == current


@pytest.mark.parametrize(
    "start,delta,expected",
    [(99, 3, 100), (1, -3, 0), (100, 100, 100), (0, -100, 0), (40, 0, 40)],
)
def test_traits_are_clamped(start, delta, expected):
    traits = update_traits(PersonalityTraits(creativity=start), {"creativity": delta})
    assert traits.creativity == expected


def test_update_returns_new_value():
    current = PersonalityTraits()
    update_traits(current, {"leadership": 2})
    assert current.leadership == 50


def test_dominant_trait_ties_go_to_first_axis():
    assert dominant_trait(PersonalityTraits()) == "risk_taking"
    assert dominant_trait(PersonalityTraits(leadership=80, empathy=80)) == "empathy"


@pytest.mark.parametrize(
    "value,expected",
    [(10, "Cautious and careful"), (50, "Balanced risk assessment"), (90, "Bold and adventurous")],
)
def test_trait_description(value, expected):
    assert get_trait_description("riskTaking", value) == expected


def test_trait_description_unknown_trait():
    with pytest.raises(KeyError):
        get_trait_description("charisma", 50)


def test_get_dominant_traits():
    traits = PersonalityTraits(creativity=90, leadership=70)

    top = get_dominant_traits(traits)

    assert [t["trait"] for t in top] == ["creativity", "leadership"]
    assert top[0] == {"trait": "creativity", "value": 90, "description": "Highly creative thinker"}
