from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from petcontest.config import settings
from petcontest.core.scheduler import CompetitionScheduler
from petcontest.database import Database
from petcontest.logging_setup import configure_logging
from petcontest.routes.admin_routes import router as admin_router
from petcontest.routes.competition_routes import router as competition_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for the application"""
    # Startup
    configure_logging()
    await Database.connect_db()

    competition_scheduler = CompetitionScheduler(Database.get_db, settings=settings)
    app.state.competition_scheduler = competition_scheduler
    if settings.scheduler_enabled:
        competition_scheduler.setup()
        competition_scheduler.start()
        await competition_scheduler.run_startup_jobs()
    else:
        logger.info("Competition scheduler disabled")

    yield
    # Shutdown
    competition_scheduler.stop()
    await Database.close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Daily pet photo competitions: entries, voting and prize distribution",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /api prefix
app.include_router(competition_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
async def read_root():
    """Root endpoint"""
    return {
        "message": f"Welcome to {settings.app_name} API",
        "version": settings.app_version,
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "database": "connected" if Database.get_db() is not None else "disconnected"
    }
