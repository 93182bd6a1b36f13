"""Ending collection service - discovered endings per user and globally."""

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storyflow.core.ending_detection import calculate_ending_rarity
from storyflow.models.ending import EndingCatalogEntry
from storyflow.models.story import StoryRun
from storyflow.schemas.ending import (
    EndingEntry,
    EndingRarity,
    EndingStatistics,
    UserEndingCollection,
    empty_rarity_breakdown,
)

logger = logging.getLogger(__name__)


class EndingCollectionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_ending_discovery(
        self,
        user_id: str,
        story_run_id: str,
        ending_tag: str,
        title: str,
        rarity: EndingRarity | str,
        genre: str,
    ) -> EndingCatalogEntry:
        """Add the ending to the global catalog and bump its completion count.

        Runs in a savepoint so a failure here leaves the caller's transaction usable.
        """
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(EndingCatalogEntry).where(EndingCatalogEntry.ending_tag == ending_tag)
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                entry = EndingCatalogEntry(
                    ending_tag=ending_tag, genre=genre, title=title, global_completions=0
                )
                self.db.add(entry)
                logger.info(
                    "New ending %s (%s) discovered by user %s (run %s)",
                    ending_tag, rarity, user_id, story_run_id,
                )
            entry.global_completions += 1
        return entry

    async def get_total_possible_endings(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(EndingCatalogEntry))
        return result.scalar_one()

    async def get_user_collection(self, user_id: str) -> UserEndingCollection:
        """Unique endings the user has reached, most recent first."""
        result = await self.db.execute(
            select(StoryRun)
            .where(
                StoryRun.user_id == user_id,
                StoryRun.completed.is_(True),
                StoryRun.ending_tag.is_not(None),
            )
            .order_by(StoryRun.completed_at.desc())
        )
        runs = result.scalars().all()

        unique: dict[str, EndingEntry] = {}
        for run in runs:
            if run.ending_tag in unique or run.completed_at is None:
                continue
            rarity = run.ending_rarity or EndingRarity.COMMON.value
            unique[run.ending_tag] = EndingEntry(
                ending_tag=run.ending_tag,
                title=run.ending_title or "Unknown Ending",
                description=f"A {rarity} ending in {run.genre}",
                rarity=rarity,
                genre=run.genre,
                discovered_at=run.completed_at,
                story_run_id=run.id,
            )
        endings = list(unique.values())

        breakdown = empty_rarity_breakdown()
        for ending in endings:
            breakdown[ending.rarity.value] += 1

        total_possible = await self.get_total_possible_endings()
        completion = round(len(endings) / total_possible * 100, 2) if total_possible else 0.0

        return UserEndingCollection(
            user_id=user_id,
            discovered_endings=endings,
            completion_percentage=completion,
            rarity_breakdown=breakdown,
            last_discovered=endings[0].discovered_at if endings else None,
            total_stories_completed=len(runs),
        )

    async def get_user_statistics(self, user_id: str) -> EndingStatistics:
        collection = await self.get_user_collection(user_id)

        by_genre: dict[str, int] = {}
        by_rarity = empty_rarity_breakdown()
        for ending in collection.discovered_endings:
            by_genre[ending.genre] = by_genre.get(ending.genre, 0) + 1
            by_rarity[ending.rarity.value] += 1

        return EndingStatistics(
            total_endings=len(collection.discovered_endings),
            endings_by_genre=by_genre,
            endings_by_rarity=by_rarity,
            completion_rate=collection.completion_percentage,
        )

    async def get_global_statistics(self) -> EndingStatistics:
        """Catalog-wide counts; rarity here reflects how often each ending is reached."""
        result = await self.db.execute(select(EndingCatalogEntry))
        entries = result.scalars().all()
        total_completions = sum(e.global_completions for e in entries)

        by_genre: dict[str, int] = {}
        by_rarity = empty_rarity_breakdown()
        for entry in entries:
            by_genre[entry.genre] = by_genre.get(entry.genre, 0) + 1
            rarity = calculate_ending_rarity(total_completions, entry.global_completions)
            by_rarity[rarity.value] += 1

        return EndingStatistics(
            total_endings=len(entries),
            endings_by_genre=by_genre,
            endings_by_rarity=by_rarity,
            completion_rate=100.0,
        )
