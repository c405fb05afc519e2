from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booking_engine.api.v1.api import api_router
from booking_engine.core.config import settings
from booking_engine.core.database import init_db
from booking_engine.core.logging import configure_logging
from booking_engine.core.redis import redis_client

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db()
    if redis_client.is_configured:
        await redis_client.init_redis()
    logger.info(
        "Booking engine started",
        environment=settings.ENVIRONMENT,
        version=settings.VERSION,
    )
    yield
    await redis_client.close()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix=settings.API_V1_STR)


@app.get("/health")
async def health():
    return {"status": "ok", "version": settings.VERSION}
