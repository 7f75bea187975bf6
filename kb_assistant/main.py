# kb_assistant/main.py
# -*- coding: utf-8 -*-
"""
KB Article Assistant - FastAPI application entrypoint
-----------------------------------------------------
This file wires everything together:

- Sets up central logging.
- Creates the FastAPI app.
- Adds middleware (CORS outside production).
- Mounts routers:
    * /chat     (HTTP)      -> run one assistant turn
    * /chats/*  (HTTP)      -> saved chats of the calling user
    * /ws/chat  (WebSocket) -> same turn, streamed frame by frame
- Exposes an ASGI `app` object for uvicorn.

Typical run command (dev):

    uvicorn kb_assistant.main:app --host 0.0.0.0 --port 8000 --reload
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kb_assistant import __version__
from kb_assistant.core.config import settings
from kb_assistant.routers.chat import router as chat_router
from kb_assistant.routers.chats import router as chats_router
from kb_assistant.routers.ws import router as ws_router
from kb_assistant.utils import get_logger, setup_logging


setup_logging(debug=settings.debug)
logger = get_logger(__name__)
logger.info(
    "KB Article Assistant starting (env=%s, model=%s, search_configured=%s)",
    settings.environment,
    settings.model_name,
    bool(settings.search_url),
)


def create_app() -> FastAPI:
    """
    Application factory.

    Returns a configured FastAPI instance ready for uvicorn.
    """
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Browser UIs in development call the API from another origin.
    if settings.environment != "production":
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=False,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(chat_router)
    app.include_router(chats_router)
    app.include_router(ws_router)

    @app.get("/", tags=["meta"])
    async def root():
        """Quick check that the server is alive."""
        return {
            "name": settings.app_name,
            "environment": settings.environment,
            "message": "KB Article Assistant is running.",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        return {
            "status": "ok",
            "environment": settings.environment,
            "debug": settings.debug,
            "model": settings.model_name,
            "search_configured": bool(settings.search_url),
            "persist_chats": settings.persist_chats,
        }

    logger.info("FastAPI app created (env=%s)", settings.environment)
    return app


# ASGI app for uvicorn / gunicorn
app = create_app()
