from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from activity_dedup.api.deduplicate import router as deduplicate_router
from activity_dedup.config.settings import settings
from activity_dedup.core.logger import setup_logger
from activity_dedup.db.models import Base
from activity_dedup.db.session import check_database_connection, get_engine

setup_logger(level=settings.log_level, log_file=settings.log_file, serialize=settings.log_json)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Ensure tables exist before serving requests."""
    check_database_connection()
    logger.info("Ensuring database tables exist")
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables verified")
    yield


app = FastAPI(title="Activity Dedup", lifespan=lifespan)
app.include_router(deduplicate_router)


@app.get("/health")
def health():
    return {"status": "ok"}
