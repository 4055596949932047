"""
FitProof API
============
FastAPI application entry point. Mount routers here.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fitproof.config import get_settings
from fitproof.routers import points, streaks, sync

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title="FitProof API",
    description="Workout points, streaks and offline session sync",
    version="0.1.0",
    docs_url="/api/docs" if settings.environment != "production" else None,
    redoc_url="/api/redoc" if settings.environment != "production" else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync.router)
app.include_router(points.router)
app.include_router(streaks.router)


@app.get("/api/v1/health")
async def health_check() -> dict:
    return {"status": "ok", "service": "fitproof-api"}
