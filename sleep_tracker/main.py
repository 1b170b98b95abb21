import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sleep_tracker.config import settings
from sleep_tracker.database import SleepDatabase
from sleep_tracker.routes import quality, tracker
from sleep_tracker.services import SleepTrackerService

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared database and the tracker on startup; cancel their
    pending work on shutdown."""
    database = SleepDatabase.get_instance(settings)
    app.state.database = database
    app.state.websockets = []
    app.state.quality_flows = {}
    app.state.tracker = SleepTrackerService(database.dao)
    app.state.tracker.add_listener(tracker.broadcaster(app))
    logger.info("Sleep history at %s (schema v%d)", database.db_path, database.version)
    yield
    app.state.tracker.close()
    for flow in app.state.quality_flows.values():
        flow.close()
    app.state.quality_flows.clear()


app = FastAPI(
    title="sleep-tracker",
    description="Record sleep sessions, rate their quality and browse the history",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(tracker.router)
app.include_router(quality.router)
