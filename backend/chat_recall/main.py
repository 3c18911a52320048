"""Application bootstrap for the chat recall API.

This module wires the FastAPI application, attaches middleware, and exposes small lifecycle utilities.

Functions:
    lifespan(app: FastAPI): Initialise database state and the optional retry sweeper around the app's lifetime.
    health_check(): Lightweight readiness check used by monitoring and local smoke tests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_recall.api import api_router
from chat_recall.api.deps import get_embedding_generator, get_retry_processor
from chat_recall.core.config import get_settings
from chat_recall.db.session import get_session_factory, init_db
from chat_recall.services.scheduler import RetrySweeper

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    sweeper = None
    if settings.enable_retry_sweeper:
        processor = get_retry_processor(get_session_factory(), get_embedding_generator())
        sweeper = RetrySweeper(
            processor.sweep,
            interval_seconds=settings.retry_sweep_interval_seconds,
            timeout_seconds=settings.retry_sweep_timeout_seconds,
        )
        sweeper.start()
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
