"""FastAPI application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from textblocker.api.routes import config, health, jobs


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler.

    Configures logging on startup and stops the job queue worker on shutdown.
    """

    from textblocker.api.services.state import get_settings, stop_queue
    from textblocker.logging_setup import setup_logging

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_file)
    yield
    stop_queue()


app = FastAPI(title="TextBlocker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(config.router)
app.include_router(jobs.router)


if __name__ == "__main__":
    uvicorn.run("textblocker.api.main:app", host="0.0.0.0", port=8000, reload=True)
