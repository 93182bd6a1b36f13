"""Choice statistics endpoints."""

from fastapi import APIRouter, Depends, Query

from storyflow.db.redis import get_redis
from storyflow.services.choice_stats_service import ChoiceStatistics, ChoiceStatsService

router = APIRouter()


@router.get("/{choice_slug}/stats", response_model=list[ChoiceStatistics])
async def get_choice_statistics(
    choice_slug: str,
    genre: str = Query(..., min_length=1),
    redis=Depends(get_redis),
):
    """How often each option of a decision was shown and picked in a genre."""
    return await ChoiceStatsService(redis).get_choice_statistics(choice_slug, genre)
