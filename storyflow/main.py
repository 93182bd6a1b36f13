"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from storyflow.config import settings
from storyflow.db.database import Base, engine
from storyflow.db.redis import close_redis

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables (dev only; use migrations in production)
    import storyflow.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("StoryFlow API started (env=%s, model=%s)", settings.APP_ENV, settings.LLM_MODEL)
    yield
    # Shutdown: close connections
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title="StoryFlow API",
    description="Branching interactive stories: game state, personality traits and endings",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routes ---
from storyflow.api.routes import choices, endings, stories  # noqa: E402

app.include_router(stories.router, prefix="/api/stories", tags=["stories"])
app.include_router(endings.router, prefix="/api/endings", tags=["endings"])
app.include_router(choices.router, prefix="/api/choices", tags=["choices"])


@app.get("/health")
async def health_check():
    return {"status": "ok"}
