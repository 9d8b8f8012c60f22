# /backend/practice/main.py

from __future__ import annotations
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from practice import config as settings
from practice.api.routers import (
    auth, calendly, clients, cron, recordings, reminders, session_notes, sessions,
)
from practice.api.routers import settings as settings_router
from practice.kafka import start_kafka, stop_kafka

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await start_kafka()
    try:
        yield
    finally:
        await stop_kafka()


app = FastAPI(
    title="Practice API",
    lifespan=lifespan,
)

# CORS first so it applies to every route
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(settings.AUDIO_STORAGE_DIR, exist_ok=True)

for module in (auth, clients, sessions, session_notes, recordings, cron, reminders, settings_router, calendly):
    app.include_router(module.router, prefix="/api")


@app.get("/health")
async def health():
    return {"ok": True}
