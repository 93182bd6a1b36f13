"""Story flow service - drives a story run from its first step to its ending.

A run is either active or completed. Selecting a choice on the current step
records it, updates the trait vector and, while the run is active and under
its step limit, generates the next step. The next step is an ending when the
ending detector says so or when the step limit is reached.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Protocol

from storyflow.core.consequences import apply_choice
from storyflow.core.ending_detection import classify_ending, detect_ending
from storyflow.core.game_state import get_max_steps_for_length
from storyflow.core.identifiers import generate_decision_key_hash, generate_step_choice_slug
from storyflow.core.traits import update_traits
from storyflow.exceptions import (
    ChoiceNotFoundError,
    CollaboratorError,
    SessionNotFoundError,
    StepNotFoundError,
    StoryFlowError,
)
from storyflow.models.story import StoryRun, StoryStep
from storyflow.schemas.ending import EndingClassification
from storyflow.schemas.game_state import (
    Choice,
    GameState,
    PersonalityTraits,
    parse_game_state,
    parse_personality_traits,
)
from storyflow.schemas.story import StoryGenerationRequest, StoryResponse
from storyflow.services.analytics import AnalyticsClient, EventType
from storyflow.services.choice_stats_service import ChoiceStatsService
from storyflow.services.ending_collection_service import EndingCollectionService
from storyflow.services.story_repository import StoryRepository

logger = logging.getLogger(__name__)


class StoryGenerator(Protocol):
    async def generate(self, request: StoryGenerationRequest) -> StoryResponse: ...


@dataclass
class StorySession:
    story_run: StoryRun
    current_step: StoryStep | None
    game_state: GameState
    personality_traits: PersonalityTraits
    is_completed: bool


@dataclass
class StoryProgressionResult:
    session: StorySession
    new_step: StoryStep
    is_ending: bool
    detector_says_ending: bool
    step_limit_reached: bool
    ending: EndingClassification | None = None


@dataclass
class ChoiceSelectionResult:
    updated_step: StoryStep
    personality_traits: PersonalityTraits
    progression: StoryProgressionResult | None = None


class StoryFlowService:
    def __init__(
        self,
        repository: StoryRepository,
        generator: StoryGenerator,
        endings: EndingCollectionService,
        choice_stats: ChoiceStatsService,
        analytics: AnalyticsClient | None = None,
        rng: random.Random | None = None,
    ):
        self.repository = repository
        self.generator = generator
        self.endings = endings
        self.choice_stats = choice_stats
        self.analytics = analytics
        self.rng = rng

    # --- Public operations ---

    async def create_story_session(self, request: StoryGenerationRequest) -> StorySession:
        """Start a run and generate its first step."""
        if self.analytics is not None:
            self.analytics.start(request.session_id, request.user_id)

        try:
            run = await self.repository.create_run(
                genre=request.genre,
                length=request.length,
                challenge=request.challenge,
                user_id=request.user_id,
                session_id=request.session_id,
            )
            self._track(EventType.STORY_STARTED, story_run_id=run.id, genre=run.genre, length=run.length)

            response = await self.generator.generate(
                request.model_copy(update={"story_run_id": run.id})
            )
            game_state = response.game_state or GameState(flags=("story_started",))
            traits = game_state.personality_traits

            step = await self._create_step(run, 1, response.story_text, response.choices, game_state, traits)
        except StoryFlowError:
            raise
        except Exception as e:
            logger.exception("Failed to create story session for %s", request.session_id)
            raise CollaboratorError(f"Failed to create story session: {e}") from e

        return StorySession(
            story_run=run,
            current_step=step,
            game_state=game_state,
            personality_traits=traits,
            is_completed=False,
        )

    async def load_story_session(self, story_run_id: str) -> StorySession | None:
        """Rebuild a session from the run and its latest step; None if the run is unknown."""
        try:
            run = await self.repository.get_run(story_run_id)
            if run is None:
                return None
            step = await self.repository.get_latest_step(story_run_id)
        except Exception as e:
            logger.exception("Failed to load story session %s", story_run_id)
            raise CollaboratorError(f"Failed to load story session: {e}") from e

        if step is None:
            game_state = GameState(flags=("story_started",))
            traits = game_state.personality_traits
        else:
            game_state = parse_game_state(step.game_state)
            traits = parse_personality_traits(step.traits_snapshot)

        return StorySession(
            story_run=run,
            current_step=step,
            game_state=game_state,
            personality_traits=traits,
            is_completed=run.completed,
        )

    async def select_choice(
        self, story_run_id: str, step_id: str, choice_id: str, choice_slug: str | None = None
    ) -> ChoiceSelectionResult:
        """Record the player's choice on the current step and advance the story."""
        session = await self.load_story_session(story_run_id)
        if session is None:
            raise SessionNotFoundError(story_run_id)

        step = session.current_step
        if step is None or step.id != step_id:
            raise StepNotFoundError(step_id, story_run_id)

        choice = self._find_choice(step, choice_id)
        run = session.story_run
        if self.analytics is not None:
            self.analytics.start(run.session_id, run.user_id)

        try:
            updated_step = await self.repository.record_choice(step.id, choice.id, choice.slug)
            traits = update_traits(session.personality_traits, choice.traits_impact)

            await self._track_selection(step.choice_slug or choice_slug or choice.slug, choice.id, run.genre)
            self._track(
                EventType.CHOICE_MADE,
                story_run_id=run.id,
                step_number=step.step_number,
                choice_id=choice.id,
                choice_slug=choice.slug,
            )

            progression = None
            if not run.completed and step.step_number < get_max_steps_for_length(run.length):
                progression = await self.progress_story(session, choice, traits)
        except StoryFlowError:
            raise
        except Exception as e:
            logger.exception("Failed to select choice %s on step %s", choice_id, step_id)
            raise CollaboratorError(f"Failed to select choice: {e}") from e

        return ChoiceSelectionResult(
            updated_step=updated_step,
            personality_traits=traits,
            progression=progression,
        )

    async def progress_story(
        self, session: StorySession, choice: Choice, traits: PersonalityTraits
    ) -> StoryProgressionResult:
        """Apply ``choice`` and generate the step that follows it."""
        run = session.story_run
        current_number = session.current_step.step_number if session.current_step else 0
        next_number = current_number + 1

        try:
            game_state = apply_choice(session.game_state, choice, traits)

            response = await self.generator.generate(StoryGenerationRequest(
                genre=run.genre,
                length=run.length,
                challenge=run.challenge,
                session_id=run.session_id or run.id,
                user_id=run.user_id,
                story_run_id=run.id,
                current_step=next_number,
                game_state=game_state,
                previous_choice=choice.text,
            ))

            detection = detect_ending(
                response.story_text, game_state, traits, run.genre, run.length, rng=self.rng
            )
            detector_says_ending = detection.is_ending
            step_limit_reached = next_number >= get_max_steps_for_length(run.length)
            is_ending = detector_says_ending or step_limit_reached

            ending = None
            if is_ending:
                ending = detection.classification or classify_ending(
                    response.story_text, game_state, traits, run.genre, rng=self.rng
                )
                run = await self.repository.mark_completed(
                    run.id, ending.title, ending.rarity.value, ending.ending_tag
                )
                self._track(
                    EventType.STORY_COMPLETED,
                    story_run_id=run.id,
                    ending_tag=ending.ending_tag,
                    steps=next_number,
                    step_limit_reached=step_limit_reached,
                )
                await self._record_discovery(run, ending)

            choices = [] if is_ending else response.choices
            new_step = await self._create_step(
                run, next_number, response.story_text, choices, game_state, traits
            )
        except StoryFlowError:
            raise
        except Exception as e:
            logger.exception("Failed to progress story %s to step %d", run.id, next_number)
            raise CollaboratorError(f"Failed to progress story: {e}") from e

        return StoryProgressionResult(
            session=StorySession(
                story_run=run,
                current_step=new_step,
                game_state=game_state,
                personality_traits=traits,
                is_completed=is_ending,
            ),
            new_step=new_step,
            is_ending=is_ending,
            detector_says_ending=detector_says_ending,
            step_limit_reached=step_limit_reached,
            ending=ending,
        )

    # --- Helpers ---

    @staticmethod
    def _find_choice(step: StoryStep, choice_id: str) -> Choice:
        for raw in step.choices or []:
            if raw.get("id") == choice_id:
                return Choice.model_validate(raw)
        raise ChoiceNotFoundError(choice_id, step.id)

    async def _create_step(
        self,
        run: StoryRun,
        step_number: int,
        story_text: str,
        choices: list[Choice],
        game_state: GameState,
        traits: PersonalityTraits,
    ) -> StoryStep:
        # Ending steps offer nothing to choose, so they get no slug or hash
        choice_slug = generate_step_choice_slug(choices) if choices else None
        decision_key_hash = generate_decision_key_hash(run.id, step_number, choices) if choices else None

        step = await self.repository.create_step(
            story_run_id=run.id,
            step_number=step_number,
            story_text=story_text,
            choices=choices,
            game_state=game_state,
            traits=traits,
            choice_slug=choice_slug,
            decision_key_hash=decision_key_hash,
        )
        for choice in choices:
            await self._track_impression(choice_slug, choice.id, run.genre)
        return step

    async def _record_discovery(self, run: StoryRun, ending: EndingClassification) -> None:
        if not run.user_id:
            return
        try:
            await self.endings.record_ending_discovery(
                user_id=run.user_id,
                story_run_id=run.id,
                ending_tag=ending.ending_tag,
                title=ending.title,
                rarity=ending.rarity,
                genre=run.genre,
            )
        except Exception:
            logger.exception("Failed to record ending %s for user %s", ending.ending_tag, run.user_id)
            return
        self._track(EventType.ENDING_DISCOVERED, story_run_id=run.id, ending_tag=ending.ending_tag)

    async def _track_impression(self, choice_slug: str, option_id: str, genre: str) -> None:
        try:
            await self.choice_stats.increment_impressions(choice_slug, option_id, genre)
        except Exception:
            logger.exception("Failed to track impression for %s/%s", choice_slug, option_id)

    async def _track_selection(self, choice_slug: str, option_id: str, genre: str) -> None:
        try:
            await self.choice_stats.increment_selections(choice_slug, option_id, genre)
        except Exception:
            logger.exception("Failed to track selection for %s/%s", choice_slug, option_id)

    def _track(self, event_type: EventType, **metadata) -> None:
        if self.analytics is not None:
            self.analytics.track(event_type, **metadata)
