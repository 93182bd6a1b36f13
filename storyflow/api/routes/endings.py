"""Ending endpoints - a user's ending collection and ending statistics."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storyflow.db.database import get_db
from storyflow.schemas.ending import EndingStatistics, UserEndingCollection
from storyflow.services.ending_collection_service import EndingCollectionService

router = APIRouter()


@router.get("/", response_model=EndingStatistics)
async def get_global_statistics(db: AsyncSession = Depends(get_db)):
    """Every ending reached by anyone, by genre and by how rarely it is reached."""
    return await EndingCollectionService(db).get_global_statistics()


@router.get("/{user_id}", response_model=UserEndingCollection)
async def get_user_collection(user_id: str, db: AsyncSession = Depends(get_db)):
    """Unique endings this user has discovered, most recent first."""
    return await EndingCollectionService(db).get_user_collection(user_id)


@router.get("/{user_id}/stats", response_model=EndingStatistics)
async def get_user_statistics(user_id: str, db: AsyncSession = Depends(get_db)):
    return await EndingCollectionService(db).get_user_statistics(user_id)
