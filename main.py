import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from griva.config import get_settings
from griva.database import Base, SessionLocal, engine
from griva.errors import register_error_handlers
from griva.routes.community import router as community_router
from griva.routes.feed import router as feed_router
from griva.routes.ops import router as ops_router
from griva.scheduler import WorkerScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("Creating database tables if they don't exist...")
    Base.metadata.create_all(bind=engine)

    scheduler = None
    if get_settings().scheduler_enabled:
        # First round fires immediately in the background; startup does not wait for it
        logger.info("Starting background ingestion scheduler...")
        scheduler = WorkerScheduler(SessionLocal)
        scheduler.start()

    yield

    # --- Shutdown ---
    if scheduler is not None:
        logger.info("Shutting down background scheduler...")
        await scheduler.stop()


app = FastAPI(
    title="Griva API",
    description="AI news, papers and models in one feed, plus hot-ranked community posts.",
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)
app.include_router(ops_router)
app.include_router(feed_router)
app.include_router(community_router)
