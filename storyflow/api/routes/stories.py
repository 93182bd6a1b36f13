"""Story endpoints - start a story, read its progress, select choices."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from storyflow.db.database import get_db
from storyflow.db.redis import get_redis
from storyflow.exceptions import CollaboratorError, InvalidChoiceError, NotFoundError
from storyflow.schemas.story import (
    ChoiceSelectionOut,
    CreateStoryRequest,
    EndingData,
    SelectChoiceRequest,
    StoryGenerationRequest,
    StoryProgressionOut,
    StoryRunOut,
    StorySessionOut,
    StoryStepOut,
)
from storyflow.services.analytics import AnalyticsClient, get_analytics
from storyflow.services.choice_stats_service import ChoiceStatsService
from storyflow.services.ending_collection_service import EndingCollectionService
from storyflow.services.llm_service import LLMStoryGenerator, get_story_generator
from storyflow.services.story_flow_service import (
    StoryFlowService,
    StoryProgressionResult,
    StorySession,
)
from storyflow.services.story_repository import StoryRepository

router = APIRouter()


def get_story_flow_service(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
    generator: LLMStoryGenerator = Depends(get_story_generator),
    analytics: AnalyticsClient = Depends(get_analytics),
) -> StoryFlowService:
    return StoryFlowService(
        repository=StoryRepository(db),
        generator=generator,
        endings=EndingCollectionService(db),
        choice_stats=ChoiceStatsService(redis),
        analytics=analytics,
    )


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidChoiceError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


def _session_out(session: StorySession) -> StorySessionOut:
    return StorySessionOut(
        story_run=StoryRunOut.model_validate(session.story_run),
        current_step=StoryStepOut.model_validate(session.current_step) if session.current_step else None,
        game_state=session.game_state.to_json(),
        personality_traits=session.personality_traits.as_dict(),
        is_completed=session.is_completed,
    )


def _progression_out(result: StoryProgressionResult) -> StoryProgressionOut:
    ending = None
    if result.ending is not None:
        ending = EndingData(
            title=result.ending.title,
            description=result.ending.description,
            rarity=result.ending.rarity,
            tag=result.ending.ending_tag,
            type=result.ending.category,
        )
    return StoryProgressionOut(
        session=_session_out(result.session),
        new_step=StoryStepOut.model_validate(result.new_step),
        is_ending=result.is_ending,
        detector_says_ending=result.detector_says_ending,
        step_limit_reached=result.step_limit_reached,
        ending=ending,
    )


@router.post("/", response_model=StorySessionOut, status_code=201)
async def create_story(
    req: CreateStoryRequest, service: StoryFlowService = Depends(get_story_flow_service)
):
    """Start a new story run and generate its first step."""
    try:
        session = await service.create_story_session(StoryGenerationRequest(**req.model_dump()))
    except (NotFoundError, InvalidChoiceError, CollaboratorError) as e:
        raise _http_error(e)
    return _session_out(session)


@router.get("/{story_run_id}", response_model=StorySessionOut)
async def get_story(story_run_id: str, service: StoryFlowService = Depends(get_story_flow_service)):
    """Current state of a story run."""
    try:
        session = await service.load_story_session(story_run_id)
    except CollaboratorError as e:
        raise _http_error(e)
    if session is None:
        raise HTTPException(status_code=404, detail="Story session not found")
    return _session_out(session)


@router.get("/{story_run_id}/steps", response_model=list[StoryStepOut])
async def list_steps(story_run_id: str, db: AsyncSession = Depends(get_db)):
    """All steps of a run, in order."""
    repository = StoryRepository(db)
    if await repository.get_run(story_run_id) is None:
        raise HTTPException(status_code=404, detail="Story session not found")
    return await repository.list_steps(story_run_id)


@router.post("/{story_run_id}/choices", response_model=ChoiceSelectionOut)
async def select_choice(
    story_run_id: str,
    req: SelectChoiceRequest,
    service: StoryFlowService = Depends(get_story_flow_service),
):
    """Select a choice on the current step; generates the next step unless the story is over."""
    try:
        result = await service.select_choice(story_run_id, req.step_id, req.choice_id, req.choice_slug)
    except (NotFoundError, InvalidChoiceError, CollaboratorError) as e:
        raise _http_error(e)

    return ChoiceSelectionOut(
        updated_step=StoryStepOut.model_validate(result.updated_step),
        personality_traits=result.personality_traits,
        progression=_progression_out(result.progression) if result.progression else None,
    )
