import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gp_backend.api.routes import orgstats, sync
from gp_backend.core.config import get_settings
from gp_backend.core.errors import SyncError, sync_exception_handler
from gp_database import create_tables

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.create_tables_on_start:
        logger.info("Creating tables on start")
        await create_tables()
    yield


app = FastAPI(
    title="gitpulse API",
    description="GitHub organization activity sync and contributor statistics",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_exception_handler(SyncError, sync_exception_handler)

if settings.environment == "production" and not settings.cors_origins:
    raise ValueError("CORS_ORIGINS must be configured in production")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(",") if settings.cors_origins else ["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    max_age=86400,
)


@app.get("/health")
async def health_check():
    return {"status": "ok"}


app.include_router(orgstats.router, prefix="/orgstats", tags=["orgstats"])
app.include_router(sync.router, prefix="/sync", tags=["sync"])
