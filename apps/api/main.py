"""
Video Study Assistant - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from database import engine, Base
import models  # noqa: F401
from routers import health, video
from services.analysis_queue import drain_inline_analyses, recover_stalled_analyses

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

SHUTDOWN_DRAIN_SECONDS = 30


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Video Study Assistant API...")
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered = await recover_stalled_analyses()
        if recovered:
            print(f"♻️ Marked {recovered} stalled analyses as failed after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled analysis recovery skipped: {exc}")
    yield
    # Shutdown
    await drain_inline_analyses(timeout=SHUTDOWN_DRAIN_SECONDS)
    print("👋 Shutting down API...")


app = FastAPI(
    title="Video Study Assistant API",
    description="Turn videos into transcripts, topics, summaries and flashcards",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(video.router, prefix="/video", tags=["Video"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Video Study Assistant API",
        "version": "0.1.0",
        "status": "running"
    }
