"""Choice statistics - how often each option is shown and picked, per genre.

Counters live in one Redis hash per (genre, slug):
``choice_stats:{genre}:{slug}`` -> ``{option_id}:impressions`` / ``{option_id}:selections``.
"""

import redis.asyncio as aioredis
from pydantic import BaseModel

from storyflow.config import settings
from storyflow.core.identifiers import calculate_choice_rarity


class ChoiceStatistics(BaseModel):
    choice_slug: str
    option_id: str
    genre: str
    impressions: int
    selections: int
    percentage: float
    rarity_level: str


class ChoiceStatsService:
    def __init__(self, redis: aioredis.Redis):
        self.redis = redis

    def _stats_key(self, choice_slug: str, genre: str) -> str:
        return f"choice_stats:{genre}:{choice_slug}"

    async def _increment(self, choice_slug: str, option_id: str, genre: str, counter: str) -> None:
        key = self._stats_key(choice_slug, genre)
        await self.redis.hincrby(key, f"{option_id}:{counter}", 1)
        if settings.CHOICE_STATS_TTL:
            await self.redis.expire(key, settings.CHOICE_STATS_TTL)

    async def increment_impressions(self, choice_slug: str, option_id: str, genre: str) -> None:
        await self._increment(choice_slug, option_id, genre, "impressions")

    async def increment_selections(self, choice_slug: str, option_id: str, genre: str) -> None:
        await self._increment(choice_slug, option_id, genre, "selections")

    async def get_choice_statistics(self, choice_slug: str, genre: str) -> list[ChoiceStatistics]:
        """Per-option statistics, ordered by option id."""
        raw = await self.redis.hgetall(self._stats_key(choice_slug, genre))

        counts: dict[str, dict[str, int]] = {}
        for field, value in raw.items():
            option_id, _, counter = field.partition(":")
            counts.setdefault(option_id, {"impressions": 0, "selections": 0})[counter] = int(value)

        stats = []
        for option_id in sorted(counts):
            impressions = counts[option_id]["impressions"]
            selections = counts[option_id]["selections"]
            percentage = round(selections / impressions * 100, 1) if impressions else 0.0
            stats.append(ChoiceStatistics(
                choice_slug=choice_slug,
                option_id=option_id,
                genre=genre,
                impressions=impressions,
                selections=selections,
                percentage=percentage,
                rarity_level=calculate_choice_rarity(percentage),
            ))
        return stats
