"""
main.py — FastAPI Application Entry Point
==========================================

Boots the API, configures logging and CORS, registers error handlers
and routers, and inits the DB.
Run with:  uvicorn miraidub.main:app --reload --port 8000
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from miraidub.config import get_settings
from miraidub.database import init_db
from miraidub.errors import register_exception_handlers
from miraidub.responses import success_response
from miraidub.routers import auth, checkout, credits, jobs, upload, videos, webhooks

VERSION = "1.0.0"

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# ── Create the FastAPI application ───────────────────────────
app = FastAPI(
    title="Mirai Dub API",
    description="Upload a video, get it back dubbed into another language",
    version=VERSION,
)

# ── CORS: allow the mobile/web client to call us ───────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# ── Register API routers ─────────────────────────────────────
app.include_router(auth.router, prefix="/api", tags=["auth"])
app.include_router(videos.router, prefix="/api", tags=["videos"])
app.include_router(upload.router, prefix="/api", tags=["upload"])
app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(credits.router, prefix="/api", tags=["credits"])
app.include_router(webhooks.router, prefix="/api", tags=["webhooks"])
app.include_router(checkout.router, tags=["checkout"])


# ── Startup event: create DB tables ─────────────────────────
@app.on_event("startup")
async def on_startup():
    init_db()


def _health() -> dict:
    return success_response({
        "status": "ok",
        "service": "miraidub-api",
        "version": VERSION,
        "environment": settings.environment,
    })


@app.get("/")
async def root():
    return _health()


@app.get("/health")
async def health_check():
    return _health()
