"""Story repository - create/read/update over story runs and steps."""

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storyflow.models.story import StoryRun, StoryStep
from storyflow.schemas.game_state import Choice, GameState, PersonalityTraits


class StoryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Runs ---

    async def create_run(
        self,
        genre: str,
        length: str,
        challenge: str,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> StoryRun:
        run = StoryRun(
            user_id=user_id,
            session_id=session_id,
            genre=genre,
            length=length,
            challenge=challenge,
            completed=False,
        )
        self.db.add(run)
        await self.db.flush()
        await self.db.refresh(run)
        return run

    async def get_run(self, story_run_id: str) -> StoryRun | None:
        result = await self.db.execute(select(StoryRun).where(StoryRun.id == story_run_id))
        return result.scalar_one_or_none()

    async def mark_completed(
        self, story_run_id: str, ending_title: str, ending_rarity: str, ending_tag: str
    ) -> StoryRun:
        run = await self.get_run(story_run_id)
        if run is None:
            raise LookupError(f"Story run {story_run_id} disappeared before completion")
        run.completed = True
        run.ending_title = ending_title
        run.ending_rarity = ending_rarity
        run.ending_tag = ending_tag
        run.completed_at = datetime.now(timezone.utc).replace(tzinfo=None)
        await self.db.flush()
        return run

    # --- Steps ---

    async def create_step(
        self,
        story_run_id: str,
        step_number: int,
        story_text: str,
        choices: list[Choice],
        game_state: GameState,
        traits: PersonalityTraits,
        choice_slug: str | None = None,
        decision_key_hash: str | None = None,
    ) -> StoryStep:
        step = StoryStep(
            story_run_id=story_run_id,
            step_number=step_number,
            story_text=story_text,
            choices=[c.model_dump(by_alias=True, mode="json") for c in choices],
            game_state=game_state.to_json(),
            traits_snapshot=traits.as_dict(),
            choice_slug=choice_slug,
            decision_key_hash=decision_key_hash,
        )
        self.db.add(step)
        await self.db.flush()
        await self.db.refresh(step)
        return step

    async def get_step(self, step_id: str) -> StoryStep | None:
        result = await self.db.execute(select(StoryStep).where(StoryStep.id == step_id))
        return result.scalar_one_or_none()

    async def get_latest_step(self, story_run_id: str) -> StoryStep | None:
        result = await self.db.execute(
            select(StoryStep)
            .where(StoryStep.story_run_id == story_run_id)
            .order_by(StoryStep.step_number.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_steps(self, story_run_id: str) -> list[StoryStep]:
        result = await self.db.execute(
            select(StoryStep)
            .where(StoryStep.story_run_id == story_run_id)
            .order_by(StoryStep.step_number)
        )
        return list(result.scalars().all())

    async def record_choice(self, step_id: str, choice_id: str, choice_slug: str | None = None) -> StoryStep:
        """Store the player's selection on a step (the only post-persist update)."""
        step = await self.get_step(step_id)
        if step is None:
            raise LookupError(f"Story step {step_id} not found")
        step.selected_choice_id = choice_id
        if choice_slug and not step.choice_slug:
            step.choice_slug = choice_slug
        await self.db.flush()
        return step
