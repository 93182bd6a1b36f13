"""Tests for the story flow service over the test DB, fake Redis and a scripted generator."""

import logging

import pytest
from sqlalchemy import select

from storyflow.exceptions import (
    ChoiceNotFoundError,
    CollaboratorError,
    SessionNotFoundError,
    StepNotFoundError,
)
from storyflow.models.ending import EndingCatalogEntry
from storyflow.schemas.ending import EndingCategory
from storyflow.schemas.game_state import Choice, GameState, PersonalityTraits
from storyflow.schemas.story import StoryGenerationRequest
from storyflow.services.analytics import EventType
from storyflow.services.choice_stats_service import ChoiceStatsService
from storyflow.services.story_repository import StoryRepository

from conftest import make_choices


def _request(genre="fantasy", length="standard", user_id="user-1"):
    return StoryGenerationRequest(genre=genre, length=length, session_id="sess-1", user_id=user_id)


def _event_types(analytics):
    return [event["event_type"] for event in analytics.events]


# ---------------------------------------------------------------------------
# Creating and loading sessions
# ---------------------------------------------------------------------------


async def test_create_story_session(story_service, fake_redis, analytics):
    session = await story_service.create_story_session(_request())

    step = session.current_step
    assert step.step_number == 1
    assert [c["slug"] for c in step.choices] == ["step1_1", "step1_2", "step1_3"]
    assert step.choice_slug == "step1_1"
    assert step.decision_key_hash
    assert session.is_completed is False
    assert session.story_run.user_id == "user-1"
    # No state from the generator: every axis starts at 50
    assert session.game_state.flags == ("story_started",)
    assert session.personality_traits == PersonalityTraits()
    assert set(session.current_step.traits_snapshot.values()) == {50}

    assert fake_redis.hashes["choice_stats:fantasy:step1_1"] == {
        "A:impressions": "1", "B:impressions": "1", "C:impressions": "1",
    }
    assert _event_types(analytics) == [EventType.STORY_STARTED.value]
    assert analytics.session_id == "sess-1"


async def test_create_uses_generated_state(story_service, generator):
    generator.queue("A quiet village.", game_state=GameState(personality_traits=PersonalityTraits(empathy=70)))

    session = await story_service.create_story_session(_request())

    assert session.personality_traits.empathy == 70
    assert session.current_step.traits_snapshot["empathy"] == 70


async def test_load_story_session(story_service):
    created = await story_service.create_story_session(_request())

    loaded = await story_service.load_story_session(created.story_run.id)

    assert loaded.current_step.id == created.current_step.id
    assert loaded.game_state == created.game_state
    assert loaded.personality_traits == created.personality_traits
    assert await story_service.load_story_session("missing") is None


# ---------------------------------------------------------------------------
# Selecting choices
# ---------------------------------------------------------------------------


async def test_trust_the_stranger(story_service, generator):
    trust = Choice(
        id="A",
        text="Trust the stranger",
        slug="trust_stranger",
        consequences=["add_flag:met_wizard", "modify_relationship:wizard:10"],
        traits_impact={"empathy": 2},
    )
    generator.queue("A stranger waits by the fire.", choices=[trust, *make_choices(count=2)[1:]], game_state=GameState())
    session = await story_service.create_story_session(_request())

    result = await story_service.select_choice(
        session.story_run.id, session.current_step.id, "A", "trust_stranger"
    )

    assert result.updated_step.selected_choice_id == "A"
    assert result.personality_traits == PersonalityTraits(empathy=52)
    state = result.progression.session.game_state
    assert state.act == 1
    assert state.flags == ("met_wizard",)
    assert state.relationships == {"wizard": 10}
    assert state.inventory == ()
    assert state.personality_traits.empathy == 52

    sent = generator.requests[-1]
    assert sent.previous_choice == "Trust the stranger"
    assert sent.current_step == 2
    assert sent.game_state == state


async def test_selection_is_counted(story_service, fake_redis, analytics):
    session = await story_service.create_story_session(_request())

    await story_service.select_choice(session.story_run.id, session.current_step.id, "B", "step1_2")

    stats = await ChoiceStatsService(fake_redis).get_choice_statistics("step1_1", "fantasy")
    by_option = {s.option_id: s for s in stats}
    assert by_option["B"].selections == 1
    assert by_option["B"].percentage == 100.0
    assert by_option["A"].selections == 0
    assert EventType.CHOICE_MADE.value in _event_types(analytics)


async def test_steps_are_strictly_sequential_until_step_limit(story_service, db):
    session = await story_service.create_story_session(_request(length="quick"))
    run_id = session.story_run.id
    step = session.current_step

    progression = None
    while True:
        result = await story_service.select_choice(run_id, step.id, "A")
        progression = result.progression
        step = progression.new_step
        if progression.is_ending:
            break

    steps = await StoryRepository(db).list_steps(run_id)
    assert [s.step_number for s in steps] == [1, 2, 3, 4, 5, 6]
    assert progression.step_limit_reached is True
    assert progression.detector_says_ending is False
    assert progression.ending is not None
    assert step.choices == []
    assert step.choice_slug is None
    assert step.decision_key_hash is None
    assert progression.session.story_run.completed is True
    assert progression.session.story_run.ending_tag == progression.ending.ending_tag

    # The ending step has nothing left to choose
    with pytest.raises(ChoiceNotFoundError):
        await story_service.select_choice(run_id, step.id, "A")


async def test_detector_ends_story_early(story_service, generator, db, analytics):
    session = await story_service.create_story_session(_request())
    generator.queue("At last the kingdom is saved, and peace returns.")

    result = await story_service.select_choice(session.story_run.id, session.current_step.id, "A")

    progression = result.progression
    assert progression.is_ending is True
    assert progression.detector_says_ending is True
    assert progression.step_limit_reached is False
    assert progression.ending.category == EndingCategory.HEROIC
    assert progression.new_step.step_number == 2

    entry = (await db.execute(select(EndingCatalogEntry))).scalar_one()
    assert entry.ending_tag == progression.ending.ending_tag
    assert entry.global_completions == 1
    assert _event_types(analytics)[-2:] == [
        EventType.STORY_COMPLETED.value, EventType.ENDING_DISCOVERED.value,
    ]


async def test_anonymous_ending_is_not_collected(story_service, generator, db):
    session = await story_service.create_story_session(_request(user_id=None))
    generator.queue("The end.")

    result = await story_service.select_choice(session.story_run.id, session.current_step.id, "A")

    assert result.progression.is_ending
    assert (await db.execute(select(EndingCatalogEntry))).scalar_one_or_none() is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


async def test_unknown_session(story_service):
    with pytest.raises(SessionNotFoundError):
        await story_service.select_choice("missing", "step", "A")


async def test_stale_step_is_rejected(story_service):
    session = await story_service.create_story_session(_request())
    first_step = session.current_step
    await story_service.select_choice(session.story_run.id, first_step.id, "A")

    with pytest.raises(StepNotFoundError):
        await story_service.select_choice(session.story_run.id, first_step.id, "B")


async def test_unknown_choice(story_service):
    session = await story_service.create_story_session(_request())

    with pytest.raises(ChoiceNotFoundError, match="'D'"):
        await story_service.select_choice(session.story_run.id, session.current_step.id, "D")


async def test_persistence_failure_is_wrapped(story_service, db):
    class BrokenRepository(StoryRepository):
        async def create_run(self, *args, **kwargs):
            raise RuntimeError("database is down")

    story_service.repository = BrokenRepository(db)

    with pytest.raises(CollaboratorError, match="Failed to create story session: database is down"):
        await story_service.create_story_session(_request())


async def test_generation_failure_is_wrapped(story_service, generator):
    session = await story_service.create_story_session(_request())

    async def explode(request):
        raise RuntimeError("model unavailable")

    generator.generate = explode

    with pytest.raises(CollaboratorError, match="Failed to progress story: model unavailable"):
        await story_service.select_choice(session.story_run.id, session.current_step.id, "A")


async def test_ending_discovery_failure_does_not_block(story_service, generator, caplog):
    class BrokenEndings:
        async def record_ending_discovery(self, **kwargs):
            raise RuntimeError("catalog offline")

    story_service.endings = BrokenEndings()
    session = await story_service.create_story_session(_request())
    generator.queue("The end.")

    with caplog.at_level(logging.ERROR):
        result = await story_service.select_choice(session.story_run.id, session.current_step.id, "A")

    assert result.progression.is_ending
    assert result.progression.session.story_run.completed is True
    assert "Failed to record ending" in caplog.text


async def test_choice_tracking_failure_does_not_block(story_service, caplog):
    class BrokenRedis:
        async def hincrby(self, *args):
            raise ConnectionError("redis unreachable")

    story_service.choice_stats = ChoiceStatsService(BrokenRedis())

    with caplog.at_level(logging.ERROR):
        session = await story_service.create_story_session(_request())
        result = await story_service.select_choice(session.story_run.id, session.current_step.id, "A")

    assert result.progression.new_step.step_number == 2
    assert "Failed to track impression" in caplog.text
    assert "Failed to track selection" in caplog.text
